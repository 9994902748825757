from .catalog import Product, Customer, Supplier
from .auth import User, SessionToken
from .sales import Sale, SaleItem, PaymentRecord
from .inventory import StockIn, StockOut
from .activity import ActivityLog

__all__ = [
    'Product', 'Customer', 'Supplier',
    'User', 'SessionToken',
    'Sale', 'SaleItem', 'PaymentRecord',
    'StockIn', 'StockOut',
    'ActivityLog',
]
