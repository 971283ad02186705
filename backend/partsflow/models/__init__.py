from .inventory import StockItem, StockMovement, DocumentSequence
from .purchasing import (
    PurchaseOrder, PurchaseOrderLine, PurchaseOrderReceipt,
    StockInward, StockInwardLine,
    PurchaseReturn, PurchaseReturnLine,
)
from .documents import StockIssue, StockIssueLine, StockTransfer, StockTransferLine
from .sales import CounterSale, CounterSaleLine, CounterSalePayment
from .alerts import StockAlert

__all__ = [
    'StockItem', 'StockMovement', 'DocumentSequence',
    'PurchaseOrder', 'PurchaseOrderLine', 'PurchaseOrderReceipt',
    'StockInward', 'StockInwardLine',
    'PurchaseReturn', 'PurchaseReturnLine',
    'StockIssue', 'StockIssueLine', 'StockTransfer', 'StockTransferLine',
    'CounterSale', 'CounterSaleLine', 'CounterSalePayment',
    'StockAlert',
]
