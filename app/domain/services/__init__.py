"""
Domain Services
"""
from app.domain.services.currency_service import CurrencyService, CurrencyTables
from app.domain.services.inventory_service import InventoryService
from app.domain.services.commission_service import CommissionService
from app.domain.services.order_service import OrderService
from app.domain.services.remittance_service import RemittanceService
from app.domain.services.outbox_service import OutboxService

__all__ = [
    "CurrencyService",
    "CurrencyTables",
    "InventoryService",
    "CommissionService",
    "OrderService",
    "RemittanceService",
    "OutboxService",
]
