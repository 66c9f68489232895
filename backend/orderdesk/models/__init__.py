from .catalog import Product, StockMovement
from .sales import Sale, SaleItem, SaleStatusEvent
from .payments import Payment
from .documents import DocumentSequence

__all__ = [
    'Product', 'StockMovement',
    'Sale', 'SaleItem', 'SaleStatusEvent',
    'Payment',
    'DocumentSequence',
]
