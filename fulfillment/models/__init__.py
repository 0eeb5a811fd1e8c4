# Models module
from fulfillment.models.business import Business
from fulfillment.models.user import User
from fulfillment.models.product import Product
from fulfillment.models.warehouse import Warehouse, WarehouseStatus, WarehouseType
from fulfillment.models.stock import StockAllocation
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.models.shipment import Shipment
from fulfillment.models.audit_log import AuditLog
from fulfillment.models.notification import Notification

__all__ = [
    "Business",
    "User",
    "Product",
    "Warehouse",
    "WarehouseStatus",
    "WarehouseType",
    "StockAllocation",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Shipment",
    "AuditLog",
    "Notification",
]
