"""Tests for the Google Ads click-conversion adapter."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from leadsignal.core.exceptions import TerminalDispatchError, TransientDispatchError
from leadsignal.schemas.common import (
    DispatchStatus,
    IntegrationStatus,
    IntegrationType,
    Platform,
)
from leadsignal.schemas.integration import ActiveIntegration, GoogleAdsCredentials
from leadsignal.services.dispatch.google_ads import (
    GoogleAdsClient,
    GoogleAdsDispatcher,
    build_conversion,
    format_conversion_datetime,
    interpret_upload_response,
    resolve_conversion_action,
)
from leadsignal.services.dispatch.token_cache import TokenCache

TOKEN_URL = "https://oauth.test/token"
UPLOAD_URL = "https://ads.test/v16/customers/1234567890:uploadClickConversions"
CREDENTIALS = GoogleAdsCredentials(
    customer_id="1234567890", refresh_token="refresh", conversion_action_id="555"
)


def _partial_failure(code, message="Conversion rejected"):
    return {
        "message": message,
        "details": [
            {"errors": [{"errorCode": {"conversionUploadError": code}, "message": message}]}
        ],
    }


class FakeGoogle:
    """Routes token and upload requests; records what was sent."""

    def __init__(self, upload_status=200, upload_body=None, token_status=200):
        self.upload_status = upload_status
        self.upload_body = (
            upload_body if upload_body is not None else {"results": [{"gclid": "g"}]}
        )
        self.token_status = token_status
        self.token_calls = 0
        self.uploads = []

    def __call__(self, request):
        if str(request.url) == TOKEN_URL:
            self.token_calls += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200, json={"access_token": f"at-{self.token_calls}", "expires_in": 3600}
            )
        self.uploads.append(request)
        return httpx.Response(self.upload_status, json=self.upload_body)


def _client(fake, **kwargs):
    options = {
        "base_url": "https://ads.test",
        "api_version": "v16",
        "token_url": TOKEN_URL,
        "client_id": "cid",
        "client_secret": "secret",
        "developer_token": "dev-token",
    }
    options.update(kwargs)
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return GoogleAdsClient(TokenCache(), http, **options)


def _integration(settings=None, **credentials):
    values = {"customer_id": "1234567890", "refresh_token": "refresh"}
    values.update(credentials)
    return ActiveIntegration[GoogleAdsCredentials](
        id=uuid4(),
        type=IntegrationType.GOOGLE_ADS,
        status=IntegrationStatus.ACTIVE,
        credentials=GoogleAdsCredentials(**values),
        settings=settings or {},
    )


class TestConversionPayload:
    def test_conversion_datetime_format(self):
        aware = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert format_conversion_datetime(aware) == "2024-01-15 10:30:00+00:00"
        assert format_conversion_datetime(datetime(2024, 1, 15, 10, 30)) == (
            "2024-01-15 10:30:00+00:00"
        )

    def test_build_conversion(self, job_factory):
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K", email_hash="e" * 64)

        conversion = build_conversion(job, "1234567890", "555")

        assert conversion == {
            "conversionAction": "customers/1234567890/conversionActions/555",
            "conversionDateTime": "2024-01-15 10:30:00+00:00",
            "conversionValue": 250.0,
            "currencyCode": "AUD",
            "orderId": "evt-123",
            "gclid": "Cj0K",
            "userIdentifiers": [{"hashedEmail": "e" * 64}],
        }

    def test_conversion_action_per_event_overrides_default(self):
        settings = {"conversionActions": {"signup_complete": "777"}}
        assert resolve_conversion_action("signup_complete", CREDENTIALS, settings) == "777"
        assert resolve_conversion_action("email_captured", CREDENTIALS, settings) == "555"

    def test_no_conversion_action(self):
        credentials = GoogleAdsCredentials(customer_id="1", refresh_token="r")
        assert resolve_conversion_action("email_captured", credentials, {}) is None


class TestInterpretUploadResponse:
    def test_success(self):
        result = interpret_upload_response(200, {"results": [{"gclid": "g"}]})
        assert result.detail is None
        assert result.columns == {"google_uploaded_count": 1}

    def test_partial_success_counts_accepted(self):
        body = {
            "results": [{"gclid": "g"}, {}],
            "partialFailureError": _partial_failure("EXPIRED_GCLID"),
        }
        result = interpret_upload_response(200, body)
        assert result.detail == "Partial failure"
        assert result.columns == {"google_uploaded_count": 1}

    def test_rejected_batch_is_classified(self):
        body = {"results": [{}], "partialFailureError": _partial_failure("EXPIRED_GCLID")}
        with pytest.raises(TerminalDispatchError) as exc_info:
            interpret_upload_response(200, body)
        assert exc_info.value.error_code == "EXPIRED_GCLID"
        assert exc_info.value.auth_failure is False

    def test_duplicate_counts_as_delivered(self):
        body = {
            "results": [{}],
            "partialFailureError": _partial_failure("DUPLICATE_CLICK_CONVERSION"),
        }
        result = interpret_upload_response(200, body)
        assert result.detail == "Conversion already uploaded"
        assert result.columns == {"google_uploaded_count": 0}

    def test_unauthorized_status_is_auth_failure(self):
        with pytest.raises(TerminalDispatchError) as exc_info:
            interpret_upload_response(401, {"error": {"message": "Unauthenticated"}})
        assert exc_info.value.error_code == "UNAUTHORIZED"
        assert exc_info.value.auth_failure is True

    def test_grpc_status_is_mapped(self):
        body = {"error": {"message": "denied", "status": "PERMISSION_DENIED"}}
        with pytest.raises(TerminalDispatchError) as exc_info:
            interpret_upload_response(400, body)
        assert exc_info.value.auth_failure is True

    def test_server_error_is_transient(self):
        with pytest.raises(TransientDispatchError):
            interpret_upload_response(503, {"error": {"message": "Unavailable"}})


class TestGoogleAdsClient:
    @pytest.mark.asyncio
    async def test_upload_request(self):
        fake = FakeGoogle()
        client = _client(fake)
        credentials = GoogleAdsCredentials(
            customer_id="1234567890", refresh_token="refresh", login_customer_id="999"
        )

        result = await client.upload(credentials, [{"orderId": "evt-1"}])

        assert result.columns == {"google_uploaded_count": 1}
        request = fake.uploads[0]
        assert str(request.url) == UPLOAD_URL
        assert request.headers["Authorization"] == "Bearer at-1"
        assert request.headers["developer-token"] == "dev-token"
        assert request.headers["login-customer-id"] == "999"
        assert json.loads(request.content) == {
            "conversions": [{"orderId": "evt-1"}],
            "partialFailure": True,
            "validateOnly": False,
        }

    @pytest.mark.asyncio
    async def test_token_is_cached_per_customer(self):
        fake = FakeGoogle()
        client = _client(fake)

        await client.upload(CREDENTIALS, [{"orderId": "1"}])
        await client.upload(CREDENTIALS, [{"orderId": "2"}])

        assert fake.token_calls == 1

    @pytest.mark.asyncio
    async def test_unauthorized_upload_drops_cached_token(self):
        fake = FakeGoogle(upload_status=401, upload_body={"error": {"message": "x"}})
        client = _client(fake)

        for _ in range(2):
            with pytest.raises(TerminalDispatchError):
                await client.upload(CREDENTIALS, [{"orderId": "1"}])

        assert fake.token_calls == 2

    @pytest.mark.asyncio
    async def test_rejected_refresh_token_is_auth_failure(self):
        fake = FakeGoogle(token_status=400)

        with pytest.raises(TerminalDispatchError) as exc_info:
            await _client(fake).upload(CREDENTIALS, [{"orderId": "1"}])

        assert exc_info.value.error_code == "UNAUTHORIZED"
        assert exc_info.value.auth_failure is True
        assert fake.uploads == []

    @pytest.mark.asyncio
    async def test_token_server_error_is_transient(self):
        with pytest.raises(TransientDispatchError):
            await _client(FakeGoogle(token_status=503)).upload(CREDENTIALS, [{}])

    @pytest.mark.asyncio
    async def test_missing_developer_token_is_not_an_auth_failure(self):
        fake = FakeGoogle()

        with pytest.raises(TerminalDispatchError) as exc_info:
            await _client(fake, developer_token="").upload(CREDENTIALS, [{}])

        assert exc_info.value.error_code == "CONFIGURATION"
        assert exc_info.value.auth_failure is False
        assert fake.token_calls == 0

    @pytest.mark.asyncio
    async def test_upload_timeout_is_transient(self):
        def handler(request):
            if str(request.url) == TOKEN_URL:
                return httpx.Response(200, json={"access_token": "at"})
            raise httpx.ReadTimeout("timed out", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = GoogleAdsClient(
            TokenCache(),
            http,
            base_url="https://ads.test",
            api_version="v16",
            token_url=TOKEN_URL,
            client_id="cid",
            client_secret="secret",
            developer_token="dev-token",
        )

        with pytest.raises(TransientDispatchError) as exc_info:
            await client.upload(CREDENTIALS, [{}])
        assert exc_info.value.error_code == "TIMEOUT"


class TestGoogleAdsDispatcher:
    @pytest.mark.asyncio
    async def test_job_without_identifiers_is_skipped(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        client = AsyncMock()
        dispatcher = GoogleAdsDispatcher(mock_session_factory, cipher, client)
        job = job_factory(Platform.GOOGLE_ADS, ip_address="203.0.113.7")

        assert await dispatcher.handle(job) is DispatchStatus.SKIPPED

        dispatch_repos.integrations.get_active.assert_not_awaited()
        dispatch_repos.integrations.update_status.assert_not_awaited()
        client.upload.assert_not_awaited()
        key = (job.conversion_event_id, Platform.GOOGLE_ADS)
        assert dispatch_repos.events.statuses[key] is DispatchStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_missing_conversion_action_is_skipped(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        dispatch_repos.integrations.get_active = AsyncMock(return_value=_integration())
        client = AsyncMock()
        dispatcher = GoogleAdsDispatcher(mock_session_factory, cipher, client)
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K")

        assert await dispatcher.handle(job) is DispatchStatus.SKIPPED

        client.upload.assert_not_awaited()
        key = (job.conversion_event_id, Platform.GOOGLE_ADS)
        assert dispatch_repos.events.details[key] == (
            "No conversion action configured for email_captured"
        )

    @pytest.mark.asyncio
    async def test_delivers_and_records_uploaded_count(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        dispatch_repos.integrations.get_active = AsyncMock(
            return_value=_integration(
                settings={"conversionActions": {"email_captured": "777"}}
            )
        )
        fake = FakeGoogle()
        dispatcher = GoogleAdsDispatcher(mock_session_factory, cipher, _client(fake))
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K")

        assert await dispatcher.handle(job) is DispatchStatus.SENT

        key = (job.conversion_event_id, Platform.GOOGLE_ADS)
        assert dispatch_repos.events.columns[key] == {"google_uploaded_count": 1}
        sent = json.loads(fake.uploads[0].content)["conversions"][0]
        assert sent["conversionAction"] == "customers/1234567890/conversionActions/777"

    @pytest.mark.asyncio
    async def test_duplicate_conversion_is_marked_sent(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        dispatch_repos.integrations.get_active = AsyncMock(
            return_value=_integration(conversion_action_id="555")
        )
        fake = FakeGoogle(
            upload_body={
                "results": [{}],
                "partialFailureError": _partial_failure("DUPLICATE_CLICK_CONVERSION"),
            }
        )
        dispatcher = GoogleAdsDispatcher(mock_session_factory, cipher, _client(fake))
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K")

        assert await dispatcher.handle(job) is DispatchStatus.SENT
        key = (job.conversion_event_id, Platform.GOOGLE_ADS)
        assert dispatch_repos.events.details[key] == "Conversion already uploaded"

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_flags_integration(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        integration = _integration(conversion_action_id="555")
        dispatch_repos.integrations.get_active = AsyncMock(return_value=integration)
        dispatcher = GoogleAdsDispatcher(
            mock_session_factory, cipher, _client(FakeGoogle(token_status=401))
        )
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K")

        with pytest.raises(TerminalDispatchError):
            await dispatcher.handle(job)

        dispatch_repos.integrations.update_status.assert_awaited_once()
        assert (
            dispatch_repos.integrations.update_status.await_args.args[1]
            is IntegrationStatus.ERROR
        )
        key = (job.conversion_event_id, Platform.GOOGLE_ADS)
        assert dispatch_repos.events.statuses[key] is DispatchStatus.FAILED

    @pytest.mark.asyncio
    async def test_redelivery_after_success_uploads_once(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        dispatch_repos.integrations.get_active = AsyncMock(
            return_value=_integration(conversion_action_id="555")
        )
        fake = FakeGoogle()
        dispatcher = GoogleAdsDispatcher(mock_session_factory, cipher, _client(fake))
        job = job_factory(Platform.GOOGLE_ADS, gclid="Cj0K")

        await dispatcher.handle(job)
        await dispatcher.handle(job)

        order_ids = {
            json.loads(r.content)["conversions"][0]["orderId"] for r in fake.uploads
        }
        assert order_ids == {"evt-123"}
        assert len(fake.uploads) == 1
