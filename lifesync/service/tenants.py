from __future__ import annotations

from typing import Optional, Protocol

from lifesync.service.errors import NotFoundError
from lifesync.storage.models import Tenant


class TenantStore(Protocol):
    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]: ...


class TenantResolver:
    """Maps a company domain to its tenant record."""

    def __init__(self, store: TenantStore) -> None:
        self.store = store

    def find_by_domain(self, domain: str) -> Optional[Tenant]:
        # Exact, case-sensitive match; domains are stored as seeded
        if not domain:
            return None
        return self.store.get_tenant_by_domain(domain)

    def resolve_by_domain(self, domain: str) -> Tenant:
        tenant = self.find_by_domain(domain)
        if tenant is None:
            raise NotFoundError("Company domain not found", detail={"domain": domain})
        return tenant
