# Services module
from fulfillment.services import order_state_machine
from fulfillment.services.audit_service import AuditService
from fulfillment.services.notification_service import NotificationService
from fulfillment.services.stock_ledger import StockLedger
from fulfillment.services.warehouse_resolver import WarehouseResolver
from fulfillment.services.warehouse_service import WarehouseService
from fulfillment.services.product_service import ProductService
from fulfillment.services.order_service import OrderService

# Bulk ingestion
from fulfillment.services.bulk_import import (
    DelimitedTextParser,
    ProductImportPipeline,
    OrderImportPipeline,
)

__all__ = [
    "order_state_machine",
    "AuditService",
    "NotificationService",
    "StockLedger",
    "WarehouseResolver",
    "WarehouseService",
    "ProductService",
    "OrderService",
    # Bulk ingestion
    "DelimitedTextParser",
    "ProductImportPipeline",
    "OrderImportPipeline",
]
