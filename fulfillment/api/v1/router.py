from fastapi import APIRouter

from fulfillment.api.v1.endpoints import (
    # Catalogue
    products,
    # Warehouses & stock
    warehouses,
    stock,
    # Orders
    orders,
    # Audit
    audit_logs,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(products.router, prefix="/products")
api_router.include_router(warehouses.router, prefix="/warehouses")
api_router.include_router(stock.router)
api_router.include_router(orders.router, prefix="/orders")
api_router.include_router(audit_logs.router, prefix="/audit-logs")
