"""Google Ads offline click-conversion adapter."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from leadsignal.core.config import settings
from leadsignal.core.constants import (
    GOOGLE_AUTH_ERROR_CODES,
    GOOGLE_DUPLICATE_ERROR_CODE,
    GOOGLE_NON_RETRYABLE_ERROR_CODES,
)
from leadsignal.core.exceptions import (
    DispatchError,
    TerminalDispatchError,
    TransientDispatchError,
)
from leadsignal.core.security import PayloadCipher
from leadsignal.schemas.common import Platform
from leadsignal.schemas.dispatch import DispatchJob, UserDataSnapshot
from leadsignal.schemas.integration import ActiveIntegration, GoogleAdsCredentials
from leadsignal.services.dispatch.base import DeliveryResult, PlatformDispatcher
from leadsignal.services.dispatch.token_cache import TokenCache

logger = logging.getLogger(__name__)

# Error codes implied by the HTTP status when the body carries none
_HTTP_STATUS_CODES = {401: "UNAUTHORIZED", 403: "PERMISSION_DENIED"}
_GRPC_STATUS_CODES = {
    "UNAUTHENTICATED": "UNAUTHORIZED",
    "PERMISSION_DENIED": "PERMISSION_DENIED",
}
_DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


def format_conversion_datetime(value: datetime) -> str:
    """``YYYY-MM-DD HH:MM:SS+HH:MM``; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(sep=" ", timespec="seconds")


def build_user_identifiers(user_data: UserDataSnapshot) -> List[Dict[str, str]]:
    identifiers: List[Dict[str, str]] = []
    if user_data.email_hash:
        identifiers.append({"hashedEmail": user_data.email_hash})
    if user_data.phone_hash:
        identifiers.append({"hashedPhoneNumber": user_data.phone_hash})
    return identifiers


def build_conversion(
    job: DispatchJob, customer_id: str, conversion_action_id: str
) -> Dict[str, Any]:
    conversion: Dict[str, Any] = {
        "conversionAction": (
            f"customers/{customer_id}/conversionActions/{conversion_action_id}"
        ),
        "conversionDateTime": format_conversion_datetime(job.event.occurred_at),
        "conversionValue": job.event.value,
        "currencyCode": job.event.currency,
        # Google dedups uploads on orderId
        "orderId": job.event.id,
    }
    if job.user_data.gclid:
        conversion["gclid"] = job.user_data.gclid
    identifiers = build_user_identifiers(job.user_data)
    if identifiers:
        conversion["userIdentifiers"] = identifiers
    return conversion


def has_minimum_data(user_data: UserDataSnapshot) -> bool:
    return bool(user_data.gclid or user_data.email_hash or user_data.phone_hash)


def resolve_conversion_action(
    event_name: str,
    credentials: GoogleAdsCredentials,
    integration_settings: Mapping[str, Any],
) -> Optional[str]:
    """Per-event action from ``conversionActions``, else the credential default."""
    actions = integration_settings.get("conversionActions") or {}
    return actions.get(event_name) or credentials.conversion_action_id


def extract_error_code(body: Mapping[str, Any]) -> Optional[str]:
    """First error code in ``partialFailureError`` or ``error`` details.

    Codes arrive as one-entry objects such as
    ``{"conversionUploadError": "EXPIRED_GCLID"}``.
    """
    for source in (body.get("partialFailureError"), body.get("error")):
        if not isinstance(source, dict):
            continue
        for detail in source.get("details") or []:
            if not isinstance(detail, dict):
                continue
            for error in detail.get("errors") or []:
                code = error.get("errorCode") if isinstance(error, dict) else None
                if isinstance(code, dict) and code:
                    return str(next(iter(code.values())))
    return None


def classify_error(code: Optional[str], message: str) -> DispatchError:
    if code in GOOGLE_NON_RETRYABLE_ERROR_CODES:
        return TerminalDispatchError(
            message, error_code=code, auth_failure=code in GOOGLE_AUTH_ERROR_CODES
        )
    return TransientDispatchError(message, error_code=code)


def interpret_upload_response(
    status_code: int, body: Mapping[str, Any]
) -> DeliveryResult:
    """Turn an upload response into a result, or raise the classified error.

    Some conversions accepted means success with the accepted count even
    when others were rejected.  A wholly rejected batch is classified by
    its first error code.
    """
    ok = 200 <= status_code < 300
    uploaded = len([r for r in body.get("results") or [] if r])
    partial_error = body.get("partialFailureError")

    if ok and (uploaded or not partial_error):
        if partial_error:
            logger.warning(
                "Google Ads partial failure: %d uploaded, error=%s",
                uploaded,
                extract_error_code(body),
            )
        return DeliveryResult(
            detail=None if not partial_error else "Partial failure",
            columns={"google_uploaded_count": uploaded},
        )

    code = extract_error_code(body)
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    if code is None and not ok:
        code = _HTTP_STATUS_CODES.get(status_code) or _GRPC_STATUS_CODES.get(
            error.get("status", "")
        )

    if code == GOOGLE_DUPLICATE_ERROR_CODE:
        logger.info("Google Ads already holds this conversion")
        return DeliveryResult(
            detail="Conversion already uploaded",
            columns={"google_uploaded_count": 0},
        )

    source = partial_error if isinstance(partial_error, dict) else error
    message = (source or {}).get("message") or f"HTTP {status_code}"
    logger.warning(
        "Google Ads upload rejected: status=%s code=%s message=%s",
        status_code,
        code,
        message,
    )
    raise classify_error(code, message)


class GoogleAdsClient:
    """OAuth token refresh plus ``uploadClickConversions`` calls.

    Access tokens are cached per customer id in the injected
    :class:`TokenCache`, so concurrent jobs for one account share a
    single refresh.
    """

    def __init__(
        self,
        token_cache: TokenCache,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        developer_token: Optional[str] = None,
    ) -> None:
        self._tokens = token_cache
        self._http = http_client
        self._base_url = (base_url or settings.GOOGLE_ADS_API_BASE_URL).rstrip("/")
        self._api_version = api_version or settings.GOOGLE_ADS_API_VERSION
        self._token_url = token_url or settings.GOOGLE_OAUTH_TOKEN_URL
        self._timeout = timeout or settings.GOOGLE_ADS_REQUEST_TIMEOUT_SECONDS
        self._client_id = (
            client_id if client_id is not None else settings.GOOGLE_ADS_CLIENT_ID
        )
        self._client_secret = (
            client_secret
            if client_secret is not None
            else settings.GOOGLE_ADS_CLIENT_SECRET
        )
        self._developer_token = (
            developer_token
            if developer_token is not None
            else settings.GOOGLE_ADS_DEVELOPER_TOKEN
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, **kwargs)

    async def access_token(self, credentials: GoogleAdsCredentials) -> str:
        return await self._tokens.get_token(
            credentials.customer_id, lambda: self._fetch_token(credentials)
        )

    async def _fetch_token(
        self, credentials: GoogleAdsCredentials
    ) -> Tuple[str, float]:
        if not self._client_id or not self._client_secret:
            raise TerminalDispatchError(
                "Google Ads OAuth client credentials not configured",
                error_code="CONFIGURATION",
            )
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": credentials.refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._request("POST", self._token_url, data=form)
        except httpx.TimeoutException as exc:
            raise TransientDispatchError(
                "OAuth token refresh timed out", error_code="TIMEOUT"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientDispatchError(f"OAuth token refresh failed: {exc}") from exc

        if response.status_code in (400, 401):
            logger.error(
                "Google OAuth token refresh rejected for customer %s: %s",
                credentials.customer_id,
                response.status_code,
            )
            raise TerminalDispatchError(
                f"OAuth token refresh failed: {response.status_code}",
                error_code="UNAUTHORIZED",
                auth_failure=True,
            )
        if not response.is_success:
            raise TransientDispatchError(
                f"OAuth token refresh failed: {response.status_code}",
                error_code=str(response.status_code),
            )

        try:
            data = response.json()
            token = data["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise TransientDispatchError("Malformed OAuth token response") from exc
        return token, float(data.get("expires_in") or _DEFAULT_TOKEN_LIFETIME_SECONDS)

    async def upload(
        self,
        credentials: GoogleAdsCredentials,
        conversions: List[Dict[str, Any]],
    ) -> DeliveryResult:
        if not self._developer_token:
            raise TerminalDispatchError(
                "Google Ads developer token not configured",
                error_code="CONFIGURATION",
            )

        token = await self.access_token(credentials)
        url = (
            f"{self._base_url}/{self._api_version}/customers/"
            f"{credentials.customer_id}:uploadClickConversions"
        )
        headers = {
            "Authorization": f"Bearer {token}",
            "developer-token": self._developer_token,
        }
        if credentials.login_customer_id:
            headers["login-customer-id"] = credentials.login_customer_id
        body = {"conversions": conversions, "partialFailure": True, "validateOnly": False}

        try:
            response = await self._request("POST", url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Google Ads upload timed out: %s", exc)
            raise TransientDispatchError("Request timeout", error_code="TIMEOUT") from exc
        except httpx.HTTPError as exc:
            logger.warning("Google Ads upload failed: %s", exc)
            raise TransientDispatchError(f"Google Ads request failed: {exc}") from exc

        if response.status_code == 401:
            # A revoked token must not be served from cache on the next attempt
            self._tokens.invalidate(credentials.customer_id)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise TransientDispatchError(
                f"Unreadable Google Ads response (HTTP {response.status_code})",
                error_code=str(response.status_code),
            )
        return interpret_upload_response(response.status_code, data)


class GoogleAdsDispatcher(PlatformDispatcher):
    platform = Platform.GOOGLE_ADS

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        cipher: PayloadCipher,
        client: GoogleAdsClient,
    ) -> None:
        super().__init__(session_factory, cipher)
        self._client = client

    def skip_reason(self, job: DispatchJob) -> Optional[str]:
        if not has_minimum_data(job.user_data):
            return "No click identifier or hashed user data"
        return None

    def integration_skip_reason(
        self, job: DispatchJob, integration: ActiveIntegration
    ) -> Optional[str]:
        action = resolve_conversion_action(
            job.event.name, integration.credentials, integration.settings
        )
        if not action:
            return f"No conversion action configured for {job.event.name}"
        return None

    async def deliver(
        self, job: DispatchJob, integration: ActiveIntegration
    ) -> DeliveryResult:
        credentials: GoogleAdsCredentials = integration.credentials
        action = resolve_conversion_action(
            job.event.name, credentials, integration.settings
        )
        conversion = build_conversion(job, credentials.customer_id, action)
        result = await self._client.upload(credentials, [conversion])
        logger.info(
            "Google Ads upload for %s: %s conversion(s) accepted",
            job.job_id,
            result.columns.get("google_uploaded_count"),
        )
        return result
