# backoffice/api/router.py
from fastapi import APIRouter
from backoffice.api import (
    routes_purchase_orders,
    routes_receiving,
    routes_serialized_items,
    routes_inventory,
)

api_router = APIRouter()

api_router.include_router(routes_purchase_orders.router)
api_router.include_router(routes_receiving.router)
api_router.include_router(routes_serialized_items.router)
api_router.include_router(routes_inventory.router)
