from .tenancy import Tenant
from .inventory import Product, ProductCategory, StockMovement
from .sales import Sale, SaleItem
from .refunds import Refund, RefundItem

__all__ = [
    'Tenant',
    'Product', 'ProductCategory', 'StockMovement',
    'Sale', 'SaleItem',
    'Refund', 'RefundItem',
]
