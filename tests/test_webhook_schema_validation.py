import pytest
from pydantic import ValidationError

from leadsignal.schemas.webhook import ScoreLeadRequest, ScoreLeadResponse


class TestScoreLeadRequest:
    def test_minimal_event(self):
        event = ScoreLeadRequest(event_name="email_captured")
        assert event.event_id is None
        assert event.email is None

    def test_event_name_is_required(self):
        with pytest.raises(ValidationError):
            ScoreLeadRequest(email="a@acme.io")

    def test_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            ScoreLeadRequest(event_name="email_captured", email="nope")

    def test_rejects_phone_without_digits(self):
        with pytest.raises(ValidationError):
            ScoreLeadRequest(event_name="email_captured", phone="call me")

    def test_rejects_out_of_range_scroll_depth(self):
        with pytest.raises(ValidationError):
            ScoreLeadRequest(event_name="email_captured", scroll_depth=120)

    def test_rejects_invalid_ip(self):
        with pytest.raises(ValidationError):
            ScoreLeadRequest(event_name="email_captured", ip_address="999.1.1.1")

    def test_company_size_accepts_number_or_band(self):
        assert ScoreLeadRequest(event_name="e", company_size=120).company_size == 120
        assert ScoreLeadRequest(event_name="e", company_size="51-200").company_size == (
            "51-200"
        )


class TestScoreLeadResponse:
    def test_serializes_camel_case(self):
        response = ScoreLeadResponse(
            lead_id="5f0c6b6e-8d1e-4a43-9d0a-4d5d1b1f4b2a",
            event_id="evt-1",
            scoring={
                "raw_score": 120,
                "normalized_score": 100,
                "multiplier": 2.0,
                "applied_rules": [],
            },
            value={"base_value": 10, "adjusted_value": 20, "currency": "AUD"},
            platform_status={
                "meta_capi": {"queued": True},
                "google_ads": {"queued": True, "gclid_captured": True},
            },
            processing_time_ms=3.2,
        )

        body = response.model_dump(by_alias=True)

        assert body["leadId"] is not None
        assert body["scoring"]["rawScore"] == 120
        assert body["value"]["adjustedValue"] == 20
        assert body["platformStatus"]["googleAds"]["gclidCaptured"] is True

    def test_multiplier_outside_range_is_rejected(self):
        with pytest.raises(ValidationError):
            ScoreLeadResponse(
                lead_id="5f0c6b6e-8d1e-4a43-9d0a-4d5d1b1f4b2a",
                event_id="evt-1",
                scoring={"raw_score": 0, "normalized_score": 0, "multiplier": 3.0},
                value={"base_value": 0, "adjusted_value": 0, "currency": "AUD"},
                platform_status={
                    "meta_capi": {"queued": False},
                    "google_ads": {"queued": False, "gclid_captured": False},
                },
                processing_time_ms=1.0,
            )
