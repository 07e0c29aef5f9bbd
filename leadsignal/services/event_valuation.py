import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple
from uuid import UUID, uuid4

from pydantic import ValidationError as PydanticValidationError

from leadsignal.core.config import settings
from leadsignal.core.exceptions import ConfigurationError, ValidationError
from leadsignal.core.security import PayloadCipher
from leadsignal.models.conversion_event import ConversionEvent
from leadsignal.models.lead import Lead
from leadsignal.repositories.config_repository import OrganizationConfigRepository
from leadsignal.repositories.lead_repository import LeadRepository
from leadsignal.schemas.common import DispatchStatus, Platform
from leadsignal.schemas.dispatch import DispatchJob, EventSnapshot, UserDataSnapshot
from leadsignal.schemas.funnel import BusinessMetricsInput, FunnelStep
from leadsignal.schemas.webhook import ScoreLeadRequest
from leadsignal.services.funnel_value import fallback_value, get_event_value
from leadsignal.services.hashing import get_email_type, hash_email, hash_phone
from leadsignal.services.lead_scoring import (
    CompiledRule,
    ScoringResult,
    calculate_score,
    compile_rules,
)
from leadsignal.services.segments import (
    SegmentRule,
    classify_segment,
    compile_segments,
)

logger = logging.getLogger(__name__)

GOOGLE_NOT_ELIGIBLE = "No click identifier"


class DispatchQueue(Protocol):
    async def enqueue(self, job: DispatchJob) -> bool: ...


class _OrganizationConfig:
    __slots__ = ("steps", "metrics", "rules", "segments")

    def __init__(
        self,
        steps: List[FunnelStep],
        metrics: BusinessMetricsInput,
        rules: List[CompiledRule],
        segments: List[SegmentRule],
    ) -> None:
        self.steps = steps
        self.metrics = metrics
        self.rules = rules
        self.segments = segments


class EventValuationService:
    """Scores, values, stores and queues one inbound conversion event.

    Dependencies are injected so the service holds no per-request state
    and can be shared by every request.
    """

    def __init__(
        self,
        cipher: PayloadCipher,
        dispatch_queues: Mapping[Platform, DispatchQueue],
        latency_budget_ms: Optional[int] = None,
    ) -> None:
        self._cipher = cipher
        self._queues = dispatch_queues
        self._latency_budget_ms = (
            latency_budget_ms
            if latency_budget_ms is not None
            else settings.WEBHOOK_LATENCY_BUDGET_MS
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_event(
        self,
        organization_id: UUID,
        payload: ScoreLeadRequest,
        config_repo: OrganizationConfigRepository,
        lead_repo: LeadRepository,
    ) -> Dict[str, Any]:
        """Run the full valuation pipeline for one webhook call.

        Steps:
        1. Load funnel, current metrics, enabled rules and active segments
        2. Hash PII and build the fact dictionary
        3. Score, value and segment the event
        4. Persist the lead and its conversion event in one transaction
        5. Queue a Meta job, and a Google job when a gclid is present

        Returns a dict suitable for building ``ScoreLeadResponse``.

        Raises:
            ValidationError: If the event name is blank.
            ConfigurationError: If the funnel or business metrics are
                missing or invalid.  Nothing is persisted.
        """
        started = time.perf_counter()

        if not payload.event_name.strip():
            raise ValidationError("event_name must not be blank")

        config = await self._load_config(organization_id, config_repo)

        email = str(payload.email) if payload.email else None
        email_hash = hash_email(email)
        phone_hash = hash_phone(payload.phone)
        facts = self.build_facts(payload, email)

        scoring = calculate_score(config.rules, facts)
        base_value, currency = self._base_value(payload.event_name, config)
        adjusted_value = base_value * scoring.multiplier
        segment = classify_segment(config.segments, facts)

        event_id = payload.event_id or str(uuid4())
        occurred_at = payload.timestamp or datetime.now(timezone.utc)
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        ip_address = str(payload.ip_address) if payload.ip_address else None
        page_url = str(payload.page_url) if payload.page_url else None
        google_eligible = bool(payload.gclid)

        lead, event = await self._persist(
            lead_repo,
            organization_id=organization_id,
            payload=payload,
            email=email,
            email_hash=email_hash,
            phone_hash=phone_hash,
            ip_address=ip_address,
            scoring=scoring,
            adjusted_value=adjusted_value,
            segment=segment,
            event_id=event_id,
            currency=currency,
            occurred_at=occurred_at,
            page_url=page_url,
            google_eligible=google_eligible,
        )

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self._latency_budget_ms:
            logger.warning(
                "Event %s for organization %s took %.1fms (budget %dms)",
                event_id,
                organization_id,
                elapsed_ms,
                self._latency_budget_ms,
            )

        event_snapshot = EventSnapshot(
            name=payload.event_name,
            id=event_id,
            value=adjusted_value,
            currency=currency,
            occurred_at=occurred_at,
            page_url=page_url,
        )
        user_data = UserDataSnapshot(
            email_hash=email_hash,
            phone_hash=phone_hash,
            gclid=payload.gclid,
            fbc=payload.fbc,
            fbp=payload.fbp,
            ip_address=ip_address,
            user_agent=payload.user_agent,
            external_id=payload.external_id,
        )
        meta_queued = await self._enqueue(
            Platform.META_CAPI, organization_id, lead, event, event_snapshot, user_data
        )
        google_queued = False
        if google_eligible:
            google_queued = await self._enqueue(
                Platform.GOOGLE_ADS,
                organization_id,
                lead,
                event,
                event_snapshot,
                user_data,
            )

        return {
            "success": True,
            "lead_id": lead.id,
            "event_id": event_id,
            "scoring": {
                "raw_score": scoring.total_points,
                "normalized_score": scoring.normalized_score,
                "multiplier": scoring.multiplier,
                "applied_rules": [
                    {"rule_id": r.rule_id, "field": r.field, "points": r.points}
                    for r in scoring.applied_rules
                ],
            },
            "value": {
                "base_value": base_value,
                "adjusted_value": adjusted_value,
                "currency": currency,
                "segment": segment,
            },
            "platform_status": {
                "meta_capi": {"queued": meta_queued},
                "google_ads": {
                    "queued": google_queued,
                    "gclid_captured": google_eligible,
                },
            },
            "processing_time_ms": (time.perf_counter() - started) * 1000,
        }

    @staticmethod
    def build_facts(payload: ScoreLeadRequest, email: Optional[str]) -> Dict[str, Any]:
        """Fact dictionary the scoring rules and segments are evaluated on."""
        email_type = get_email_type(email)
        return {
            "event_name": payload.event_name,
            "email_type": email_type.value if email_type else None,
            "page_path": payload.page_path,
            "session_duration": payload.session_duration,
            "pages_viewed": payload.pages_viewed,
            "scroll_depth": payload.scroll_depth,
            "session_count": payload.session_count,
            "form_type": payload.form_type,
            "company_size": payload.company_size,
            "industry": payload.industry,
            "job_title": payload.job_title,
            "utm_source": payload.utm_source,
            "utm_medium": payload.utm_medium,
            "utm_campaign": payload.utm_campaign,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load_config(
        self, organization_id: UUID, config_repo: OrganizationConfigRepository
    ) -> _OrganizationConfig:
        # One session, so these run one after another
        funnel = await config_repo.get_default_funnel(organization_id)
        metrics = await config_repo.get_current_metrics(organization_id)
        if funnel is None or metrics is None:
            logger.warning(
                "Organization %s is missing a funnel or business metrics",
                organization_id,
            )
            raise ConfigurationError()

        try:
            steps = [FunnelStep.model_validate(s) for s in funnel.steps or []]
            metrics_input = BusinessMetricsInput(
                ltv=float(metrics.ltv),
                ltv_cac_ratio=float(metrics.ltv_cac_ratio),
                gross_margin=float(metrics.gross_margin),
                currency=metrics.currency,
            )
        except PydanticValidationError as exc:
            logger.warning(
                "Organization %s has invalid funnel configuration: %s",
                organization_id,
                exc,
            )
            raise ConfigurationError("Funnel or business metrics are invalid") from exc

        rules = compile_rules(await config_repo.get_enabled_rules(organization_id))
        segments = compile_segments(
            await config_repo.get_active_segments(organization_id)
        )
        return _OrganizationConfig(steps, metrics_input, rules, segments)

    @staticmethod
    def _base_value(
        event_name: str, config: _OrganizationConfig
    ) -> Tuple[float, str]:
        step = get_event_value(event_name, config.steps, config.metrics)
        if step is None:
            return fallback_value(config.metrics), config.metrics.currency
        return step.base_value, config.metrics.currency

    async def _persist(
        self,
        lead_repo: LeadRepository,
        *,
        organization_id: UUID,
        payload: ScoreLeadRequest,
        email: Optional[str],
        email_hash: Optional[str],
        phone_hash: Optional[str],
        ip_address: Optional[str],
        scoring: ScoringResult,
        adjusted_value: float,
        segment: Optional[str],
        event_id: str,
        currency: str,
        occurred_at: datetime,
        page_url: Optional[str],
        google_eligible: bool,
    ) -> Tuple[Lead, ConversionEvent]:
        raw_data = self._cipher.encrypt(
            {
                "email": email,
                "phone": payload.phone,
                "ip_address": ip_address,
                "user_agent": payload.user_agent,
            }
        )
        try:
            lead = await lead_repo.create(
                organization_id=organization_id,
                email_hash=email_hash,
                phone_hash=phone_hash,
                external_id=payload.external_id,
                score=scoring.total_points,
                normalized_score=scoring.normalized_score,
                multiplier=scoring.multiplier,
                value=adjusted_value,
                segment=segment,
                signals=[
                    {"ruleId": r.rule_id, "field": r.field, "points": r.points}
                    for r in scoring.applied_rules
                ],
                raw_data=raw_data,
                source=payload.utm_source,
                medium=payload.utm_medium,
                campaign=payload.utm_campaign,
                gclid=payload.gclid,
                fbc=payload.fbc,
                fbp=payload.fbp,
                ip_address=ip_address,
                user_agent=payload.user_agent,
            )
            event_fields: Dict[str, Any] = {
                "event_name": payload.event_name,
                "event_id": event_id,
                "value": adjusted_value,
                "currency": currency,
                "page_url": page_url,
                "occurred_at": occurred_at,
                "meta_status": DispatchStatus.PENDING.value,
                "google_status": DispatchStatus.PENDING.value,
            }
            if not google_eligible:
                event_fields["google_status"] = DispatchStatus.SKIPPED.value
                event_fields["google_status_detail"] = GOOGLE_NOT_ELIGIBLE
            event = await lead_repo.create_event(lead, **event_fields)
            await lead_repo.commit()
        except Exception:
            await lead_repo.rollback()
            raise
        logger.info(
            "Stored lead %s with event %s (score=%d, value=%.2f %s)",
            lead.id,
            event_id,
            scoring.normalized_score,
            adjusted_value,
            currency,
        )
        return lead, event

    async def _enqueue(
        self,
        platform: Platform,
        organization_id: UUID,
        lead: Lead,
        event: ConversionEvent,
        event_snapshot: EventSnapshot,
        user_data: UserDataSnapshot,
    ) -> bool:
        """Queue a job for *platform*; failures are logged, never raised."""
        queue = self._queues.get(platform)
        if queue is None:
            logger.error("No dispatch queue configured for %s", platform.value)
            return False
        job = DispatchJob.build(
            platform,
            conversion_event_id=event.id,
            organization_id=organization_id,
            lead_id=lead.id,
            event=event_snapshot,
            user_data=user_data,
        )
        try:
            await queue.enqueue(job)
        except Exception:
            logger.error(
                "Failed to queue %s job for event %s after it was stored",
                platform.value,
                event.id,
                exc_info=True,
            )
            return False
        return True
