"""Multi-tenancy: row-level isolation by organization.

Every billing row carries ``organization_id``.  Routes resolve an
OrganizationContext from the bearer token (see ``app.auth.deps``) and
hand it to the services, which scope all reads and writes to it.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class OrganizationContext:
    """Authorized organization context.

    Permission checks have already been performed by the time a service
    receives one of these; ``capabilities`` is kept so services can make
    finer-grained decisions.
    """
    organization_id: str
    user_id: str | None = None
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities
