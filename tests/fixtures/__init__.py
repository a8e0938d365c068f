"""
Shared Test Fixtures

Centralized factories and a settable clock used across all test layers.

Structure:
    - dispatch_fixtures.py: Row factories, request builders, FakeClock
"""

from .dispatch_fixtures import (
    FakeClock,
    MIDNIGHT,
    SIX_AM,
    TEN_AM,
    make_coupon_row,
    make_courier,
    make_courier_id,
    make_courier_row,
    make_order,
    make_order_request,
    make_order_row,
    make_subscription_row,
    make_user_row,
    make_zone_row,
)

__all__ = [
    'FakeClock',
    'MIDNIGHT',
    'SIX_AM',
    'TEN_AM',
    'make_coupon_row',
    'make_courier',
    'make_courier_id',
    'make_courier_row',
    'make_order',
    'make_order_request',
    'make_order_row',
    'make_subscription_row',
    'make_user_row',
    'make_zone_row',
]
