from .catalog import Store, Product
from .stock import StockRecord
from .sales import Sale, SaleLine
from .refunds import Refund, RefundLine
from .idempotency import IdempotencyKey

__all__ = [
    'Store', 'Product',
    'StockRecord',
    'Sale', 'SaleLine',
    'Refund', 'RefundLine',
    'IdempotencyKey',
]
