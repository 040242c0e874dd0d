from backoffice.infrastructure.repositories.base import BaseRepository, TenantScopeRequiredError, require_tenant
from backoffice.infrastructure.repositories.procurement_repository import SqlProcurementRepository

__all__ = [
    "BaseRepository",
    "SqlProcurementRepository",
    "TenantScopeRequiredError",
    "require_tenant",
]
