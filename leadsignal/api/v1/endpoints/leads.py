from fastapi import APIRouter, Depends, Request

from leadsignal.api.deps import (
    get_config_repo,
    get_event_valuation_service,
    get_lead_repo,
    require_score_lead,
)
from leadsignal.core.config import settings
from leadsignal.core.rate_limit import limiter
from leadsignal.models.organization import ApiKey
from leadsignal.repositories.config_repository import OrganizationConfigRepository
from leadsignal.repositories.lead_repository import LeadRepository
from leadsignal.schemas.webhook import ScoreLeadRequest, ScoreLeadResponse
from leadsignal.services.event_valuation import EventValuationService

router = APIRouter(tags=["Leads"])


@router.post(
    "/score-lead",
    response_model=ScoreLeadResponse,
    response_model_by_alias=True,
)
@limiter.limit(settings.WEBHOOK_RATE_LIMIT)
async def score_lead(
    request: Request,
    request_body: ScoreLeadRequest,
    api_key: ApiKey = Depends(require_score_lead),
    service: EventValuationService = Depends(get_event_valuation_service),
    config_repo: OrganizationConfigRepository = Depends(get_config_repo),
    lead_repo: LeadRepository = Depends(get_lead_repo),
) -> ScoreLeadResponse:
    """Score, value and store one conversion event.

    Platform delivery happens later on the dispatch workers; the
    response only reports whether each platform job was queued.
    """
    result = await service.process_event(
        organization_id=api_key.organization_id,
        payload=request_body,
        config_repo=config_repo,
        lead_repo=lead_repo,
    )
    return ScoreLeadResponse(**result)
