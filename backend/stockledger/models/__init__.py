from .catalog import Category, Supplier, Product, ProductPriceHistory
from .inventory import StockAdjustment
from .sales import Sale, SaleItem

__all__ = [
    'Category', 'Supplier', 'Product', 'ProductPriceHistory',
    'StockAdjustment',
    'Sale', 'SaleItem',
]
