"""Meta Conversions API adapter (server-side pixel events)."""

import json
import logging
import math
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from leadsignal.core.config import settings
from leadsignal.core.constants import (
    META_AUTH_ERROR_CODES,
    META_DEFAULT_EVENT_NAME,
    META_EVENT_NAME_MAP,
    META_NON_RETRYABLE_ERROR_CODES,
)
from leadsignal.core.exceptions import TerminalDispatchError, TransientDispatchError
from leadsignal.core.security import PayloadCipher
from leadsignal.schemas.common import Platform
from leadsignal.schemas.dispatch import DispatchJob, UserDataSnapshot
from leadsignal.schemas.integration import ActiveIntegration, MetaCapiCredentials
from leadsignal.services.dispatch.base import DeliveryResult, PlatformDispatcher

logger = logging.getLogger(__name__)


def map_event_name(event_name: str) -> str:
    return META_EVENT_NAME_MAP.get(event_name, META_DEFAULT_EVENT_NAME)


def build_user_data(user_data: UserDataSnapshot) -> Dict[str, Any]:
    """Only the identifiers that are present; absent keys are left out."""
    result: Dict[str, Any] = {}
    if user_data.email_hash:
        result["em"] = [user_data.email_hash]
    if user_data.phone_hash:
        result["ph"] = [user_data.phone_hash]
    if user_data.fbc:
        result["fbc"] = user_data.fbc
    if user_data.fbp:
        result["fbp"] = user_data.fbp
    if user_data.ip_address:
        result["client_ip_address"] = user_data.ip_address
    if user_data.user_agent:
        result["client_user_agent"] = user_data.user_agent
    if user_data.external_id:
        result["external_id"] = [user_data.external_id]
    return result


def build_event_payload(
    job: DispatchJob, test_event_code: Optional[str] = None
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "event_name": map_event_name(job.event.name),
        "event_time": int(job.event.occurred_at.timestamp()),
        "event_id": job.event.id,
        "action_source": "website",
        "user_data": build_user_data(job.user_data),
        "custom_data": {"value": job.event.value, "currency": job.event.currency},
    }
    if job.event.page_url:
        event["event_source_url"] = job.event.page_url

    payload: Dict[str, Any] = {"data": [event]}
    if test_event_code:
        payload["test_event_code"] = test_event_code
    return payload


def estimate_emq_score(user_data: Dict[str, Any]) -> int:
    """Rough 0–10 Event Match Quality estimate for the identifiers sent."""
    score = 0.0
    if user_data.get("em"):
        score += 3
    if user_data.get("ph"):
        score += 2
    if user_data.get("fbc"):
        score += 4
    if user_data.get("fbp"):
        score += 2
    if user_data.get("client_ip_address"):
        score += 0.5
    if user_data.get("client_user_agent"):
        score += 0.5
    if user_data.get("external_id"):
        score += 1
    return min(10, math.floor(score * 0.8 + 0.5))


def has_minimum_user_data(user_data: UserDataSnapshot) -> bool:
    return bool(
        user_data.email_hash
        or user_data.phone_hash
        or user_data.fbc
        or (user_data.fbp and user_data.ip_address)
    )


class MetaCapiClient:
    """Posts event batches to ``/{pixel_id}/events``.

    Pass an ``httpx.AsyncClient`` to reuse a connection pool; otherwise a
    short-lived client is opened per call.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._http = http_client
        self._base_url = (base_url or settings.META_API_BASE_URL).rstrip("/")
        self._api_version = api_version or settings.META_API_VERSION
        self._timeout = timeout or settings.META_REQUEST_TIMEOUT_SECONDS

    async def _post(self, url: str, form: Dict[str, str]) -> httpx.Response:
        if self._http is not None:
            return await self._http.post(url, data=form, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, data=form)

    async def send(
        self, credentials: MetaCapiCredentials, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Send *payload* and return the decoded success body.

        Raises:
            TransientDispatchError: Timeout, transport failure, non-JSON
                body or an error code outside the terminal set.
            TerminalDispatchError: Meta reported a non-retryable error.
        """
        url = f"{self._base_url}/{self._api_version}/{credentials.pixel_id}/events"
        form = {
            "data": json.dumps(payload["data"]),
            "access_token": credentials.access_token,
        }
        if payload.get("test_event_code"):
            form["test_event_code"] = payload["test_event_code"]

        try:
            response = await self._post(url, form)
        except httpx.TimeoutException as exc:
            logger.warning("Meta CAPI request timed out: %s", exc)
            raise TransientDispatchError("Request timeout", error_code="TIMEOUT") from exc
        except httpx.HTTPError as exc:
            logger.warning("Meta CAPI request failed: %s", exc)
            raise TransientDispatchError(f"Meta CAPI request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise TransientDispatchError(
                f"Unreadable Meta CAPI response (HTTP {response.status_code})",
                error_code=str(response.status_code),
            )

        if response.is_success:
            return body

        error = body.get("error") or {}
        code = error.get("code")
        message = error.get("message") or f"HTTP {response.status_code}"
        logger.warning(
            "Meta CAPI error response: status=%s code=%s fbtrace_id=%s message=%s",
            response.status_code,
            code,
            error.get("fbtrace_id"),
            message,
        )
        if isinstance(code, int) and code in META_NON_RETRYABLE_ERROR_CODES:
            raise TerminalDispatchError(
                message,
                error_code=str(code),
                auth_failure=code in META_AUTH_ERROR_CODES,
            )
        raise TransientDispatchError(
            message,
            error_code=str(code) if code is not None else str(response.status_code),
        )


class MetaCapiDispatcher(PlatformDispatcher):
    platform = Platform.META_CAPI

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        cipher: PayloadCipher,
        client: Optional[MetaCapiClient] = None,
    ) -> None:
        super().__init__(session_factory, cipher)
        self._client = client or MetaCapiClient()

    def skip_reason(self, job: DispatchJob) -> Optional[str]:
        if not has_minimum_user_data(job.user_data):
            return "Insufficient user data for Meta CAPI"
        return None

    async def deliver(
        self, job: DispatchJob, integration: ActiveIntegration
    ) -> DeliveryResult:
        credentials: MetaCapiCredentials = integration.credentials
        payload = build_event_payload(job, credentials.test_event_code)
        logger.debug(
            "Meta CAPI payload for %s built (estimated EMQ %d)",
            job.job_id,
            estimate_emq_score(payload["data"][0]["user_data"]),
        )

        body = await self._client.send(credentials, payload)
        trace_id = body.get("fbtrace_id")
        logger.info(
            "Meta CAPI accepted %s event(s) for %s (fbtrace_id=%s)",
            body.get("events_received"),
            job.job_id,
            trace_id,
        )
        return DeliveryResult(
            detail=f"events_received={body.get('events_received')}",
            columns={"meta_trace_id": trace_id},
        )
