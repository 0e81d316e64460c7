# backoffice/models/__init__.py
from .catalog import (
    Store, Supplier, Product, Customer, Order, OrderLine,
    ProductCategory, ManagementType, OrderStatus,
)
from .purchasing import (
    PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus,
    PurchaseOrderNumberSeries, DocumentNumberSeries,
)
from .receiving import Receiving, ReceivingLine, ReceivingStatus, QualityStatus
from .serialized_item import SerializedItem, SerializedItemStatus, SerializedItemStatusHistory
from .stock import StockLevel, StockAdjustmentRecord, AdjustmentType

__all__ = [
    "Store",
    "Supplier",
    "Product",
    "Customer",
    "Order",
    "OrderLine",
    "ProductCategory",
    "ManagementType",
    "OrderStatus",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderStatus",
    "PurchaseOrderNumberSeries",
    "DocumentNumberSeries",
    "Receiving",
    "ReceivingLine",
    "ReceivingStatus",
    "QualityStatus",
    "SerializedItem",
    "SerializedItemStatus",
    "SerializedItemStatusHistory",
    "StockLevel",
    "StockAdjustmentRecord",
    "AdjustmentType",
]
