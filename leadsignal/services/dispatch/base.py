import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leadsignal.core.constants import PLATFORM_INTEGRATION_TYPES
from leadsignal.core.exceptions import (
    DispatchError,
    TerminalDispatchError,
    TransientDispatchError,
)
from leadsignal.core.security import PayloadCipher
from leadsignal.repositories.conversion_event_repository import (
    ConversionEventRepository,
)
from leadsignal.repositories.dispatch_log_repository import DispatchLogRepository
from leadsignal.repositories.integration_repository import IntegrationRepository
from leadsignal.schemas.common import (
    DispatchOutcome,
    DispatchStatus,
    IntegrationStatus,
    IntegrationType,
    Platform,
)
from leadsignal.schemas.dispatch import DispatchJob
from leadsignal.schemas.integration import ActiveIntegration

logger = logging.getLogger(__name__)

INTEGRATION_NOT_CONFIGURED = "Integration not configured"


@dataclass
class DeliveryResult:
    """What a successful destination call reports back.

    ``columns`` holds extra ``conversion_events`` values to write with
    the ``SENT`` status (trace id, uploaded count).
    """

    detail: Optional[str] = None
    columns: Dict[str, Any] = field(default_factory=dict)


class PlatformDispatcher:
    """Shared per-job flow for a destination platform.

    Subclasses supply :meth:`skip_reason`, optionally
    :meth:`integration_skip_reason`, and :meth:`deliver`.  Everything
    else (status bookkeeping, integration flips, audit entries) happens
    here.  No session is open while the destination call is in flight.
    """

    platform: Platform

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        cipher: PayloadCipher,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher

    @property
    def integration_type(self) -> IntegrationType:
        return PLATFORM_INTEGRATION_TYPES[self.platform]

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def skip_reason(self, job: DispatchJob) -> Optional[str]:
        """Reason the job cannot be matched by the destination, if any."""
        return None

    def integration_skip_reason(
        self, job: DispatchJob, integration: ActiveIntegration
    ) -> Optional[str]:
        return None

    async def deliver(
        self, job: DispatchJob, integration: ActiveIntegration
    ) -> DeliveryResult:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def handle(self, job: DispatchJob) -> DispatchStatus:
        """Deliver *job* and record the outcome.

        The lookup session is released before the destination call and
        the outcome is written in a second, short session.

        Returns the event's final status for this platform.  Raises
        :class:`TransientDispatchError` or :class:`TerminalDispatchError`
        after the attempt has been recorded.
        """
        async with self._session_factory() as session:
            events = ConversionEventRepository(session)
            logs = DispatchLogRepository(session)
            integrations = IntegrationRepository(session, self._cipher)

            current = await events.get_platform_status(
                job.conversion_event_id, self.platform
            )
            if current is None:
                logger.warning(
                    "Conversion event %s no longer exists; dropping job %s",
                    job.conversion_event_id,
                    job.job_id,
                )
                return DispatchStatus.SKIPPED
            if current is not DispatchStatus.PENDING:
                # Redelivery of a job that already settled
                logger.info("Job %s already settled as %s", job.job_id, current.value)
                return current

            reason = self.skip_reason(job)
            if reason:
                return await self._skip(session, events, logs, job, reason)

            integration = await integrations.get_active(
                job.organization_id, self.integration_type
            )
            if integration is None:
                logger.warning(
                    "%s integration not active for organization %s",
                    self.platform.value,
                    job.organization_id,
                )
                return await self._skip(
                    session, events, logs, job, INTEGRATION_NOT_CONFIGURED
                )

            reason = self.integration_skip_reason(job, integration)
            if reason:
                return await self._skip(
                    session, events, logs, job, reason, integration.id
                )
            await session.commit()

        try:
            result = await self.deliver(job, integration)
        except TerminalDispatchError as exc:
            await self._record_terminal(job, integration, exc)
            raise
        except TransientDispatchError as exc:
            async with self._session_factory() as session:
                await self._audit(
                    DispatchLogRepository(session),
                    job,
                    DispatchOutcome.RETRYABLE_ERROR,
                    integration.id,
                    exc,
                )
                await session.commit()
            raise

        await self._record_sent(job, integration, result)
        logger.info("Job %s delivered to %s", job.job_id, self.platform.value)
        return DispatchStatus.SENT

    async def _record_terminal(
        self,
        job: DispatchJob,
        integration: ActiveIntegration,
        exc: TerminalDispatchError,
    ) -> None:
        async with self._session_factory() as session:
            await ConversionEventRepository(session).mark_status(
                job.conversion_event_id,
                self.platform,
                DispatchStatus.FAILED,
                _status_detail(exc),
            )
            if exc.auth_failure:
                logger.error(
                    "Authentication failure on %s integration %s; marking ERROR",
                    self.platform.value,
                    integration.id,
                )
                await IntegrationRepository(session, self._cipher).update_status(
                    integration.id, IntegrationStatus.ERROR, exc.detail
                )
            await self._audit(
                DispatchLogRepository(session),
                job,
                DispatchOutcome.TERMINAL_ERROR,
                integration.id,
                exc,
            )
            await session.commit()

    async def _record_sent(
        self,
        job: DispatchJob,
        integration: ActiveIntegration,
        result: DeliveryResult,
    ) -> None:
        async with self._session_factory() as session:
            await ConversionEventRepository(session).mark_status(
                job.conversion_event_id,
                self.platform,
                DispatchStatus.SENT,
                result.detail,
                **result.columns,
            )
            await IntegrationRepository(session, self._cipher).touch_sync(
                integration.id
            )
            await DispatchLogRepository(session).record(
                organization_id=job.organization_id,
                conversion_event_id=job.conversion_event_id,
                platform=self.platform,
                job_id=job.job_id,
                attempt=job.attempts + 1,
                outcome=DispatchOutcome.SENT,
                integration_id=integration.id,
                message=result.detail,
            )
            await session.commit()

    async def record_exhausted(self, job: DispatchJob, error: Exception) -> None:
        """Mark the event ``FAILED`` once the retry budget is used up."""
        async with self._session_factory() as session:
            events = ConversionEventRepository(session)
            logs = DispatchLogRepository(session)
            await events.mark_status(
                job.conversion_event_id,
                self.platform,
                DispatchStatus.FAILED,
                f"Retries exhausted: {error}"[:255],
            )
            await self._audit(logs, job, DispatchOutcome.EXHAUSTED, None, error)
            await session.commit()

    async def _skip(
        self,
        session: AsyncSession,
        events: ConversionEventRepository,
        logs: DispatchLogRepository,
        job: DispatchJob,
        reason: str,
        integration_id=None,
    ) -> DispatchStatus:
        logger.warning("Skipping job %s: %s", job.job_id, reason)
        await events.mark_status(
            job.conversion_event_id, self.platform, DispatchStatus.SKIPPED, reason
        )
        await logs.record(
            organization_id=job.organization_id,
            conversion_event_id=job.conversion_event_id,
            platform=self.platform,
            job_id=job.job_id,
            attempt=job.attempts + 1,
            outcome=DispatchOutcome.SKIPPED,
            integration_id=integration_id,
            message=reason,
        )
        await session.commit()
        return DispatchStatus.SKIPPED

    async def _audit(
        self,
        logs: DispatchLogRepository,
        job: DispatchJob,
        outcome: DispatchOutcome,
        integration_id,
        error: Exception,
    ) -> None:
        error_code = error.error_code if isinstance(error, DispatchError) else None
        message = error.detail if isinstance(error, DispatchError) else str(error)
        await logs.record(
            organization_id=job.organization_id,
            conversion_event_id=job.conversion_event_id,
            platform=self.platform,
            job_id=job.job_id,
            attempt=job.attempts + 1,
            outcome=outcome,
            integration_id=integration_id,
            error_code=error_code,
            message=message,
        )


def _status_detail(error: DispatchError) -> str:
    code = error.error_code or "UNKNOWN"
    return f"ERROR:{code}:{error.detail}"[:255]
