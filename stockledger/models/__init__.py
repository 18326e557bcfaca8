from .activity_log import ActivityLog
from .product import Product
from .bundle_component import BundleComponent
from .order import Order, OrderItem
from .stock_movement import StockMovement

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'ActivityLog',
    'Product',
    'BundleComponent',
    'Order',
    'OrderItem',
    'StockMovement',
]
