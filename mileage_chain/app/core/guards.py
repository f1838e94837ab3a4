"""
Security guards for role-based access control and tenant scoping.

Provides dependencies for protecting endpoints and resolving the
TenantContext every chain operation is scoped to.
"""

from typing import List
from fastapi import Depends
from mileage_chain.app.models.enums import UserRole
from mileage_chain.app.core.dependencies import get_current_user
from mileage_chain.app.core.exceptions import InsufficientPermissionsError
from mileage_chain.app.core.jwt import TokenClaims
from mileage_chain.app.core.tenant import TenantContext


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/vehicles/{vehicle_id}/chain/rebuild")
        async def rebuild(claims: TokenClaims = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        InsufficientPermissionsError if the token's role is not in allowed_roles
    """
    async def role_checker(claims: TokenClaims = Depends(get_current_user)) -> TokenClaims:
        if claims.role not in allowed_roles:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return claims

    return role_checker


async def get_tenant_context(claims: TokenClaims = Depends(get_current_user)) -> TenantContext:
    """
    Dependency resolving the TenantContext for the request.

    Raises:
        InsufficientPermissionsError if the token cannot be scoped to a tenant
    """
    if claims.owner_id is None:
        raise InsufficientPermissionsError("Token is not scoped to a tenant")

    return TenantContext(
        owner_id=claims.owner_id,
        actor_id=claims.user_id,
        actor_username=claims.sub,
        role=claims.role.value,
    )


require_chain_admin = require_role([UserRole.ADMIN, UserRole.FLEET_OWNER])
