#!/usr/bin/env python3
"""Modular configuration system for the dispatch service

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- dispatch_config: Reconciliation loop, optimizer and pricing settings
- logging_config: Logging configuration
"""
import os
from dataclasses import dataclass
from dotenv import load_dotenv
from .logging_config import LoggingConfig, setup_logging
from .infra_config import InfraConfig
from .dispatch_config import DispatchConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)


@dataclass
class DispatchSettings:
    """Combined settings for the dispatch service"""
    infra: InfraConfig
    dispatch: DispatchConfig
    logging: LoggingConfig
    environment: str = "development"

    @classmethod
    def from_env(cls) -> 'DispatchSettings':
        return cls(
            infra=InfraConfig.from_env(),
            dispatch=DispatchConfig.from_env(),
            logging=LoggingConfig.from_env(),
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
        )


# Create global settings instance
settings = DispatchSettings.from_env()

def get_settings() -> DispatchSettings:
    """Get global settings instance"""
    return settings

def reload_settings() -> DispatchSettings:
    """Reload settings from environment"""
    global settings
    settings = DispatchSettings.from_env()
    return settings

__all__ = [
    # Main config
    'DispatchSettings',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'setup_logging',
    'InfraConfig',
    'DispatchConfig',
]
