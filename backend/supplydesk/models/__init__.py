from .auth import User, UserType, UserRole
from .catalog import Category, Product
from .orders import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderNumberSequence,
    OrderStatus,
    OrderType,
    ShippingMethod,
)
from .activity import ActivityLog

__all__ = [
    'User', 'UserType', 'UserRole',
    'Category', 'Product',
    'Order', 'OrderItem', 'OrderStatusHistory', 'OrderNumberSequence',
    'OrderStatus', 'OrderType', 'ShippingMethod',
    'ActivityLog',
]
