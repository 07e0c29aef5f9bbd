"""Tests for the dispatch worker's retry, failure and lifecycle handling."""

import asyncio
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from leadsignal.core.exceptions import TerminalDispatchError, TransientDispatchError
from leadsignal.schemas.common import (
    DispatchOutcome,
    DispatchStatus,
    IntegrationStatus,
    IntegrationType,
    Platform,
)
from leadsignal.schemas.integration import ActiveIntegration, MetaCapiCredentials
from leadsignal.services.dispatch.meta_capi import MetaCapiClient, MetaCapiDispatcher
from leadsignal.services.dispatch.worker import AttemptState, DispatchWorker


def _queue():
    queue = AsyncMock()
    queue.name = "meta-capi"
    return queue


def _worker(queue, dispatcher, **kwargs):
    options = {
        "concurrency": 1,
        "max_attempts": 3,
        "backoff_seconds": 2.0,
        "poll_timeout": 0.01,
        "maintenance_interval": 0.01,
    }
    options.update(kwargs)
    return DispatchWorker(queue, dispatcher, **options)


class TestProcess:
    @pytest.mark.asyncio
    async def test_success_acks(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(return_value=DispatchStatus.SENT)
        job = job_factory()

        state = await _worker(queue, dispatcher).process(job)

        assert state is AttemptState.DISPATCHED_OK
        queue.ack.assert_awaited_once_with(job)
        queue.retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_acks(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(return_value=DispatchStatus.SKIPPED)

        state = await _worker(queue, dispatcher).process(job_factory())

        assert state is AttemptState.SKIPPED
        queue.ack.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transient_error_is_retried_with_backoff(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(side_effect=TransientDispatchError("503"))
        job = job_factory()

        state = await _worker(queue, dispatcher).process(job)

        assert state is AttemptState.RETRYABLE_ERROR
        retried, delay = queue.retry.await_args.args
        assert retried.job_id == job.job_id
        assert retried.attempts == 1
        assert delay == 2.0
        queue.ack.assert_not_awaited()
        queue.fail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retried(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(side_effect=RuntimeError("boom"))

        state = await _worker(queue, dispatcher).process(job_factory())

        assert state is AttemptState.RETRYABLE_ERROR
        queue.retry.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_last_attempt_exhausts_retries(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        error = TransientDispatchError("still down")
        dispatcher.handle = AsyncMock(side_effect=error)
        job = job_factory().next_attempt().next_attempt()

        state = await _worker(queue, dispatcher).process(job)

        assert state is AttemptState.EXHAUSTED
        queue.retry.assert_not_awaited()
        dispatcher.record_exhausted.assert_awaited_once_with(job, error)
        failed, reason = queue.fail.await_args.args
        assert failed.attempts == 3
        assert reason == "Retries exhausted: still down"

    @pytest.mark.asyncio
    async def test_exhaustion_bookkeeping_failure_still_fails_job(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(side_effect=TransientDispatchError("down"))
        dispatcher.record_exhausted = AsyncMock(side_effect=RuntimeError("db gone"))
        job = job_factory().next_attempt().next_attempt()

        await _worker(queue, dispatcher).process(job)

        queue.fail.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_error_is_never_retried(self, job_factory):
        queue, dispatcher = _queue(), AsyncMock()
        dispatcher.handle = AsyncMock(
            side_effect=TerminalDispatchError("Invalid parameter", error_code="100")
        )

        state = await _worker(queue, dispatcher).process(job_factory())

        assert state is AttemptState.TERMINAL_ERROR
        queue.retry.assert_not_awaited()
        failed, reason = queue.fail.await_args.args
        assert failed.attempts == 1
        assert reason == "Invalid parameter"

    def test_backoff_doubles(self):
        worker = _worker(_queue(), AsyncMock())
        assert [worker.backoff_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestWithMetaDispatcher:
    """Attempts run through the real Meta dispatcher with HTTP mocked."""

    @staticmethod
    def _dispatcher(handler, session_factory, cipher):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = MetaCapiClient(http_client=http, base_url="https://graph.test")
        return MetaCapiDispatcher(session_factory, cipher, client)

    @staticmethod
    def _integration():
        return ActiveIntegration[MetaCapiCredentials](
            id=uuid4(),
            type=IntegrationType.META_CAPI,
            status=IntegrationStatus.ACTIVE,
            credentials=MetaCapiCredentials(pixel_id="123", access_token="tok"),
        )

    @pytest.mark.asyncio
    async def test_timeout_requeues_with_next_attempt(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        dispatch_repos.integrations.get_active = AsyncMock(
            return_value=self._integration()
        )
        queue = _queue()
        worker = _worker(
            queue,
            self._dispatcher(handler, mock_session_factory, cipher),
            backoff_seconds=1.0,
        )
        job = job_factory(email_hash="a" * 64)

        state = await worker.process(job)

        assert state is AttemptState.RETRYABLE_ERROR
        retried, delay = queue.retry.await_args.args
        assert retried.attempts == job.attempts + 1
        assert delay == 1.0
        record = dispatch_repos.logs.record.await_args.kwargs
        assert record["outcome"] is DispatchOutcome.RETRYABLE_ERROR
        assert record["error_code"] == "TIMEOUT"
        key = (job.conversion_event_id, Platform.META_CAPI)
        assert key not in dispatch_repos.events.statuses
        dispatch_repos.integrations.update_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auth_error_fails_job_and_flags_integration(
        self, job_factory, mock_session_factory, cipher, dispatch_repos
    ):
        def handler(request):
            return httpx.Response(
                400,
                json={
                    "error": {
                        "message": "Invalid OAuth access token",
                        "code": 190,
                        "fbtrace_id": "AbC",
                    }
                },
            )

        integration = self._integration()
        dispatch_repos.integrations.get_active = AsyncMock(return_value=integration)
        queue = _queue()
        worker = _worker(queue, self._dispatcher(handler, mock_session_factory, cipher))
        job = job_factory(email_hash="a" * 64)

        state = await worker.process(job)

        assert state is AttemptState.TERMINAL_ERROR
        queue.retry.assert_not_awaited()
        queue.fail.assert_awaited_once()
        dispatch_repos.integrations.update_status.assert_awaited_once_with(
            integration.id, IntegrationStatus.ERROR, "Invalid OAuth access token"
        )
        key = (job.conversion_event_id, Platform.META_CAPI)
        assert dispatch_repos.events.statuses[key] is DispatchStatus.FAILED
        assert dispatch_repos.events.details[key] == (
            "ERROR:190:Invalid OAuth access token"
        )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_processes_jobs_until_stopped(self, job_factory):
        jobs = [job_factory()]
        queue = _queue()

        async def claim(timeout):
            await asyncio.sleep(0.005)
            return jobs.pop() if jobs else None

        queue.claim = AsyncMock(side_effect=claim)
        dispatcher = AsyncMock()
        dispatcher.handle = AsyncMock(return_value=DispatchStatus.SENT)
        worker = _worker(queue, dispatcher, concurrency=2)

        run_task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.1)
        await worker.stop(grace_seconds=1.0)
        await asyncio.wait_for(run_task, timeout=1.0)

        dispatcher.handle.assert_awaited_once()
        queue.ack.assert_awaited_once()
        queue.promote_due.assert_awaited()
        queue.requeue_expired.assert_awaited()

    @pytest.mark.asyncio
    async def test_claim_errors_do_not_stop_consumer(self, job_factory):
        queue = _queue()
        calls = []

        async def claim(timeout):
            calls.append(timeout)
            if len(calls) == 1:
                raise ConnectionError("redis down")
            await asyncio.sleep(0.005)
            return None

        queue.claim = AsyncMock(side_effect=claim)
        worker = _worker(queue, AsyncMock())

        run_task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.1)
        await worker.stop(grace_seconds=1.0)
        await asyncio.wait_for(run_task, timeout=1.0)

        assert len(calls) > 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "settle, handle_effect",
        [
            ("ack", None),
            ("retry", TransientDispatchError("503")),
            ("fail", TerminalDispatchError("Invalid parameter", error_code="100")),
        ],
    )
    async def test_settle_errors_do_not_stop_consumer(
        self, job_factory, settle, handle_effect
    ):
        jobs = [job_factory(event_id="evt-2"), job_factory(event_id="evt-1")]
        queue = _queue()

        async def claim(timeout):
            await asyncio.sleep(0.005)
            return jobs.pop() if jobs else None

        queue.claim = AsyncMock(side_effect=claim)
        setattr(
            queue,
            settle,
            AsyncMock(side_effect=[ConnectionError("redis down"), None]),
        )
        dispatcher = AsyncMock()
        if handle_effect is None:
            dispatcher.handle = AsyncMock(return_value=DispatchStatus.SENT)
        else:
            dispatcher.handle = AsyncMock(side_effect=handle_effect)
        worker = _worker(queue, dispatcher)

        run_task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.2)
        await worker.stop(grace_seconds=1.0)
        await asyncio.wait_for(run_task, timeout=1.0)

        assert dispatcher.handle.await_count == 2
        assert getattr(queue, settle).await_count == 2
        assert not jobs
