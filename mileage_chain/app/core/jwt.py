"""
Bearer token claims for the mileage chain.

Tokens are issued by the identity service; this module turns one into
TokenClaims and resolves which owner's chains the caller may touch.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from mileage_chain.app.core.config import settings
from mileage_chain.app.core.exceptions import AuthenticationError
from mileage_chain.app.models.enums import UserRole


class TokenClaims(BaseModel):
    """
    Claims this service reads from a bearer token.

    Example payload:
        {
            "sub": "driver_42",
            "user_id": 42,
            "role": "DRIVER",
            "fleet_owner_id": 7,
            "exp": 1234567890
        }
    """
    model_config = ConfigDict(extra="ignore")

    user_id: int
    role: UserRole
    sub: Optional[str] = None
    fleet_owner_id: Optional[int] = None
    tenant_id: Optional[int] = None

    @property
    def owner_id(self) -> Optional[int]:
        """
        Owner whose trip chains the caller works on.

        An explicit tenant_id wins. Drivers act for their fleet owner, fleet
        owners for themselves; an admin token without tenant_id is unscoped.
        """
        if self.tenant_id is not None:
            return self.tenant_id
        if self.role == UserRole.DRIVER:
            return self.fleet_owner_id
        if self.role == UserRole.ADMIN:
            return None
        return self.user_id

    @property
    def can_repair_chains(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.FLEET_OWNER)


def create_access_token(claims: TokenClaims, expires_delta: Optional[timedelta] = None) -> str:
    """Encode `claims` with an expiry (default from settings)."""
    to_encode = claims.model_dump(mode="json", exclude_none=True)
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_claims(token: str) -> TokenClaims:
    """
    Verify a token and read its claims.

    Raises:
        AuthenticationError: bad signature, expired, or claims missing or malformed
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise AuthenticationError("Could not validate credentials")

    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as e:
        raise AuthenticationError(
            "Invalid token payload",
            details={"fields": sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})},
        )
