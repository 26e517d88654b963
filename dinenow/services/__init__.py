"""
                        Services Module

Business logic for table ordering. Each module works against an open
session; OrderingService wraps them in one transaction per call.

Services:
    - pricing: variant price resolution
    - orders: order aggregate builder
    - status: order status state machine
    - kitchen: kitchen load estimator
    - projections: order and menu read views
    - menu: menu maintenance
    - ordering: OrderingService facade
"""

from dinenow.services.ordering import OrderingService

__all__ = ["OrderingService"]
