"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication
and for building the per-request chain engine.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from mileage_chain.app.core import reliability
from mileage_chain.app.core.jwt import TokenClaims, decode_claims
from mileage_chain.app.core.redis_client import get_redis
from mileage_chain.app.db.session import get_db, get_session_factory
from mileage_chain.app.services.audit import AuditRecorder, DatabaseAuditSink
from mileage_chain.app.services.chain_locking import ChainLockManager
from mileage_chain.app.services.mileage_engine import MileageChainEngine

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenClaims:
    """
    FastAPI dependency for JWT authentication.

    Identity is issued elsewhere; this service only verifies the token and
    reads its claims.

    Raises:
        AuthenticationError: 401 if the token is invalid, expired or incomplete
    """
    return decode_claims(credentials.credentials)


async def get_chain_engine(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> MileageChainEngine:
    """
    FastAPI dependency building the chain engine for one request.

    Audit entries are written through their own sessions, behind the shared
    audit circuit breaker.
    """
    recorder = AuditRecorder(DatabaseAuditSink(session_factory), reliability.audit_circuit_breaker)
    return MileageChainEngine(db=db, audit=recorder, locks=ChainLockManager(redis=redis))
