from commerce.api.errors import register_commerce_exception_handlers
from commerce.api.routes import (
    checkout_router,
    maintenance_router,
    order_router,
    payment_router,
    reservation_router,
    stock_router,
    tracking_router,
)

routers = [
    checkout_router,
    order_router,
    stock_router,
    reservation_router,
    payment_router,
    tracking_router,
    maintenance_router,
]

__all__ = ["register_commerce_exception_handlers", "routers"]
