"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.orders import router as orders_router
from app.api.routes.remittances import router as remittances_router
from app.api.routes.wallets import router as wallets_router
from app.api.routes.inventory import router as inventory_router
from app.api.routes.users import router as users_router
from app.api.routes.products import router as products_router
from app.api.routes.investments import router as investments_router
from app.api.routes.settings import router as settings_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["orders"])
router.include_router(remittances_router, prefix="/remittances", tags=["remittances"])
router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
router.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
router.include_router(users_router, prefix="/users", tags=["users"])
router.include_router(products_router, prefix="/products", tags=["products"])
router.include_router(investments_router, prefix="/investments", tags=["investments"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
