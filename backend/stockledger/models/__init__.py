from .tenancy import Shop
from .inventory import Product, StockMovement
from .sales import Transaction

__all__ = [
    'Shop',
    'Product', 'StockMovement',
    'Transaction',
]
