from fastapi import APIRouter

from stockledger.app.api.v1.endpoints.suppliers import router as suppliers_router
from stockledger.app.api.v1.endpoints.items import router as items_router
from stockledger.app.api.v1.endpoints.transactions import router as transactions_router
from stockledger.app.api.v1.endpoints.alerts import router as alerts_router
from stockledger.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from stockledger.app.api.v1.endpoints.allocations import router as allocations_router

router = APIRouter()
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(items_router, tags=["items"])
router.include_router(transactions_router, tags=["transactions"])
router.include_router(alerts_router, tags=["alerts"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(allocations_router, tags=["allocations"])
