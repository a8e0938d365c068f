#!/usr/bin/env python3
"""Dispatch service configuration

Timing, pricing and integration settings for the dispatch control loop.
"""
import os
from dataclasses import dataclass, field
from typing import List

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default

def _float_list(val: str, default: List[float]) -> List[float]:
    try:
        return [float(v) for v in val.split(",") if v.strip()] if val else list(default)
    except ValueError:
        return list(default)


@dataclass
class DispatchConfig:
    """Dispatch loop and admission settings"""

    # ===========================================
    # Reconciliation loop
    # ===========================================
    process_interval_seconds: int = 10
    courier_stale_seconds: int = 90
    courier_reminder_seconds: int = 300

    # ===========================================
    # Optimizer
    # ===========================================
    optimizer_url: str = "http://localhost:8270"
    optimizer_timeout_seconds: float = 30.0
    optimizer_alert_threshold: int = 3

    # ===========================================
    # Zones / pricing
    # ===========================================
    service_timezone: str = "America/Los_Angeles"
    default_zip_code: str = "90210"
    tire_pressure_check_price: int = 700
    gallon_choices: List[float] = field(default_factory=lambda: [7.5, 10.0, 15.0])
    octanes: List[str] = field(default_factory=lambda: ["87", "91"])

    # ===========================================
    # HTTP host
    # ===========================================
    service_host: str = "0.0.0.0"
    service_port: int = 8250

    @classmethod
    def from_env(cls) -> 'DispatchConfig':
        """Load dispatch config from environment variables"""
        return cls(
            process_interval_seconds=_int(os.getenv("DISPATCH_PROCESS_INTERVAL_SECONDS", "10"), 10),
            courier_stale_seconds=_int(os.getenv("DISPATCH_COURIER_STALE_SECONDS", "90"), 90),
            courier_reminder_seconds=_int(os.getenv("DISPATCH_COURIER_REMINDER_SECONDS", "300"), 300),
            optimizer_url=os.getenv("OPTIMIZER_URL", "http://localhost:8270"),
            optimizer_timeout_seconds=_float(os.getenv("OPTIMIZER_TIMEOUT_SECONDS", "30"), 30.0),
            optimizer_alert_threshold=_int(os.getenv("DISPATCH_OPTIMIZER_ALERT_THRESHOLD", "3"), 3),
            service_timezone=os.getenv("DISPATCH_TIMEZONE", "America/Los_Angeles"),
            default_zip_code=os.getenv("DISPATCH_DEFAULT_ZIP", "90210"),
            tire_pressure_check_price=_int(os.getenv("TIRE_PRESSURE_CHECK_PRICE", "700"), 700),
            gallon_choices=_float_list(os.getenv("DISPATCH_GALLON_CHOICES", ""), [7.5, 10.0, 15.0]),
            service_host=os.getenv("DISPATCH_SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("DISPATCH_SERVICE_PORT", "8250"), 8250),
        )
