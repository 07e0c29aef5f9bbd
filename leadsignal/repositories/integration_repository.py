import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update

from leadsignal.core.security import PayloadCipher
from leadsignal.models.integration import Integration
from leadsignal.repositories.base import BaseRepository
from leadsignal.schemas.common import IntegrationStatus, IntegrationType
from leadsignal.schemas.integration import (
    ActiveIntegration,
    GoogleAdsCredentials,
    MetaCapiCredentials,
)

logger = logging.getLogger(__name__)

_CREDENTIAL_MODELS: Dict[IntegrationType, Type[Any]] = {
    IntegrationType.META_CAPI: MetaCapiCredentials,
    IntegrationType.GOOGLE_ADS: GoogleAdsCredentials,
}


class IntegrationRepository(BaseRepository):
    """Access to ``integrations`` with credential decryption."""

    def __init__(self, db, cipher: PayloadCipher) -> None:
        super().__init__(db)
        self._cipher = cipher

    async def get_active(
        self, organization_id: UUID, integration_type: IntegrationType
    ) -> Optional[ActiveIntegration]:
        """Return the organisation's ``ACTIVE`` integration of this type.

        A bundle that cannot be decrypted or does not match the expected
        credential shape is logged and treated as not configured.
        """
        result = await self._db.execute(
            select(Integration)
            .where(
                Integration.organization_id == organization_id,
                Integration.type == integration_type.value,
                Integration.status == IntegrationStatus.ACTIVE.value,
            )
            .order_by(Integration.created_at.asc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None

        try:
            bundle = self._cipher.decrypt(row.credentials)
            model = _CREDENTIAL_MODELS[integration_type]
            credentials = model.model_validate(bundle)
        except (ValueError, PydanticValidationError) as exc:
            logger.error(
                "Unusable credentials for %s integration %s: %s",
                integration_type.value,
                row.id,
                exc,
            )
            return None

        return ActiveIntegration[model](
            id=row.id,
            type=integration_type,
            status=IntegrationStatus(row.status),
            credentials=credentials,
            settings=row.settings or {},
        )

    async def update_status(
        self,
        integration_id: UUID,
        status: IntegrationStatus,
        last_error: Optional[str] = None,
    ) -> None:
        await self._db.execute(
            update(Integration)
            .where(Integration.id == integration_id)
            .values(status=status.value, last_error=last_error)
        )

    async def touch_sync(self, integration_id: UUID) -> None:
        await self._db.execute(
            update(Integration)
            .where(Integration.id == integration_id)
            .values(last_sync_at=datetime.now(timezone.utc))
        )
