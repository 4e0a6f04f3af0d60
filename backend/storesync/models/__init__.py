from storesync.models.base import Base
from storesync.models.tenant import Tenant
from storesync.models.store import Store
from storesync.models.commerce import Customer, Order, OrderLineItem, Product
from storesync.models.sync_run import SyncRun

__all__ = [
    "Base",
    "Tenant",
    "Store",
    "Customer", "Product", "Order", "OrderLineItem",
    "SyncRun",
]
