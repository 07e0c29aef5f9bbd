"""Decrypted integration credential bundles."""

from typing import Any, Dict, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from leadsignal.schemas.common import IntegrationStatus, IntegrationType


class _Credentials(BaseModel):
    # Bundles are written by the integrations UI with camelCase keys
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class MetaCapiCredentials(_Credentials):
    pixel_id: str
    access_token: str
    test_event_code: Optional[str] = None


class GoogleAdsCredentials(_Credentials):
    customer_id: str  # without dashes, e.g. "1234567890"
    refresh_token: str
    login_customer_id: Optional[str] = None  # MCC account when using a manager
    conversion_action_id: Optional[str] = None


CredentialsT = TypeVar("CredentialsT", bound=_Credentials)


class ActiveIntegration(BaseModel, Generic[CredentialsT]):
    """An ``ACTIVE`` integration with its credentials decrypted."""

    id: UUID
    type: IntegrationType
    status: IntegrationStatus
    credentials: CredentialsT
    settings: Dict[str, Any] = {}
