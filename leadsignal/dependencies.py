import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from leadsignal.core.constants import SCORE_LEAD_SCOPE, WILDCARD_SCOPE
from leadsignal.core.database import get_db
from leadsignal.core.exceptions import AuthenticationError, PermissionDeniedError
from leadsignal.core.security import PayloadCipher, hash_api_key
from leadsignal.models.organization import ApiKey
from leadsignal.schemas.common import Platform

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)

# Every issued key starts with this; anything else is rejected before lookup
_API_KEY_MARKER = "sk_"


# ---------------------------------------------------------------------------
# Shared clients
# ---------------------------------------------------------------------------


async def get_redis_client(request: Request) -> Redis:
    """The Redis client opened in the application lifespan."""
    return request.app.state.redis


async def get_payload_cipher() -> PayloadCipher:
    return PayloadCipher()


async def get_dispatch_queues(
    redis_client: Redis = Depends(get_redis_client),
) -> Dict[Platform, object]:
    from leadsignal.services.dispatch.runtime import build_queues

    return build_queues(redis_client)


# ---------------------------------------------------------------------------
# Repository factory functions (one per repository, each gets the shared db)
# ---------------------------------------------------------------------------


async def get_api_key_repo(
    db: AsyncSession = Depends(get_db),
):
    from leadsignal.repositories.api_key_repository import ApiKeyRepository

    return ApiKeyRepository(db)


async def get_config_repo(
    db: AsyncSession = Depends(get_db),
):
    from leadsignal.repositories.config_repository import (
        OrganizationConfigRepository,
    )

    return OrganizationConfigRepository(db)


async def get_lead_repo(
    db: AsyncSession = Depends(get_db),
):
    from leadsignal.repositories.lead_repository import LeadRepository

    return LeadRepository(db)


# ---------------------------------------------------------------------------
# API key authentication
# ---------------------------------------------------------------------------


async def get_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    api_key_repo=Depends(get_api_key_repo),
) -> ApiKey:
    """Resolve the ``Authorization: Bearer sk_...`` header to an API key.

    Raises:
        AuthenticationError: Missing, unknown or expired key.
    """
    if credentials is None or not credentials.credentials.startswith(_API_KEY_MARKER):
        raise AuthenticationError("Missing or malformed API key")

    api_key = await api_key_repo.get_by_hash(hash_api_key(credentials.credentials))
    if api_key is None:
        raise AuthenticationError()

    if api_key.expires_at is not None and api_key.expires_at <= datetime.now(
        timezone.utc
    ):
        logger.warning("Expired API key %s used", api_key.id)
        raise AuthenticationError("API key expired")

    await api_key_repo.touch(api_key.id)
    return api_key


def require_scope(scope: str) -> Callable:
    """Dependency factory: the key must carry *scope* or the wildcard."""

    async def _check(api_key: ApiKey = Depends(get_api_key)) -> ApiKey:
        scopes = api_key.scopes or []
        if scope not in scopes and WILDCARD_SCOPE not in scopes:
            logger.warning("API key %s lacks scope %s", api_key.id, scope)
            raise PermissionDeniedError(f"API key lacks the '{scope}' scope")
        return api_key

    return _check


require_score_lead = require_scope(SCORE_LEAD_SCOPE)


# ---------------------------------------------------------------------------
# Service factory functions
# ---------------------------------------------------------------------------


async def get_event_valuation_service(
    cipher: PayloadCipher = Depends(get_payload_cipher),
    queues=Depends(get_dispatch_queues),
):
    """Build an :class:`EventValuationService` with injected dependencies."""
    from leadsignal.services.event_valuation import EventValuationService

    return EventValuationService(cipher=cipher, dispatch_queues=queues)
