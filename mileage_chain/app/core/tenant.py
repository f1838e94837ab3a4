"""
Tenant context threaded through every chain operation.

A chain is keyed by (owner_id, vehicle_id); nothing below the API layer reads
tenant identity from ambient state.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TenantContext:
    """Who is acting, and on whose trip chains."""
    owner_id: int
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None
    role: Optional[str] = None

    def chain_key(self, vehicle_id: int) -> str:
        return f"{self.owner_id}:{vehicle_id}"
