from .catalog import Product, Variant, Color
from .stock import StockInHistory, StockOutHistory, StockMovementSummary
from .sales import Sale, SaleItem, PaymentHistory
from .returns import Return, ReturnItem
from .customers import CustomerAccount
from .offline import PendingSale
from .sync import SyncConnection, SyncJob

__all__ = [
    'Product', 'Variant', 'Color',
    'StockInHistory', 'StockOutHistory', 'StockMovementSummary',
    'Sale', 'SaleItem', 'PaymentHistory',
    'Return', 'ReturnItem',
    'CustomerAccount',
    'PendingSale',
    'SyncConnection', 'SyncJob',
]
