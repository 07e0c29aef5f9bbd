from typing import Dict, FrozenSet

from leadsignal.schemas.common import (
    DispatchStatus,
    IntegrationStatus,
    IntegrationType,
    Platform,
    ScoringCategory,
)

DISPATCH_STATUS_CHECK_CLAUSE: str = (
    "{col} IN (" + ", ".join(repr(s.value) for s in DispatchStatus) + ")"
)

INTEGRATION_STATUS_CHECK_CLAUSE: str = (
    f"status IN ({', '.join(repr(s.value) for s in IntegrationStatus)})"
)

SCORING_CATEGORY_CHECK_CLAUSE: str = (
    f"category IN ({', '.join(repr(c.value) for c in ScoringCategory)})"
)

# Each platform queue is fed by exactly one integration type
PLATFORM_INTEGRATION_TYPES: Dict[Platform, IntegrationType] = {
    Platform.META_CAPI: IntegrationType.META_CAPI,
    Platform.GOOGLE_ADS: IntegrationType.GOOGLE_ADS,
}

# Redis queue names, one durable queue per destination
PLATFORM_QUEUE_NAMES: Dict[Platform, str] = {
    Platform.META_CAPI: "meta-capi",
    Platform.GOOGLE_ADS: "google-ads",
}

# Scope an API key needs to post conversion events
SCORE_LEAD_SCOPE: str = "score-lead"
WILDCARD_SCOPE: str = "*"

# Multiplier range mapped linearly from the 0–100 score
MIN_SCORE: int = 0
MAX_SCORE: int = 100
MIN_MULTIPLIER: str = "0.1"
MAX_MULTIPLIER: str = "2.0"

# Google Ads monthly-volume guidance for conversion actions (advisory)
VOLUME_MINIMUM: int = 15
VOLUME_RECOMMENDED: int = 50

# Funnel event name -> Meta standard event
META_EVENT_NAME_MAP: Dict[str, str] = {
    "email_captured": "Lead",
    "application_started": "InitiateCheckout",
    "signup_complete": "CompleteRegistration",
    "first_transaction": "Purchase",
    "activated": "Purchase",
}
META_DEFAULT_EVENT_NAME: str = "Lead"

META_NON_RETRYABLE_ERROR_CODES: FrozenSet[int] = frozenset(
    {
        190,  # Invalid OAuth access token
        100,  # Invalid parameter
        2,  # API Unknown (bad request)
    }
)
META_AUTH_ERROR_CODES: FrozenSet[int] = frozenset({190})

GOOGLE_NON_RETRYABLE_ERROR_CODES: FrozenSet[str] = frozenset(
    {
        "INVALID_CONVERSION_ACTION",
        "CUSTOMER_NOT_ENABLED",
        "EXPIRED_GCLID",
        "INVALID_GCLID",
        "UNAUTHORIZED",
        "PERMISSION_DENIED",
        "TOO_RECENT_CONVERSION_ACTION",
    }
)
GOOGLE_AUTH_ERROR_CODES: FrozenSet[str] = frozenset(
    {"UNAUTHORIZED", "PERMISSION_DENIED"}
)
# The conversion is already stored on Google's side
GOOGLE_DUPLICATE_ERROR_CODE: str = "DUPLICATE_CLICK_CONVERSION"

CONSUMER_EMAIL_DOMAINS: FrozenSet[str] = frozenset(
    {
        # Global
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.co.uk",
        "hotmail.com",
        "hotmail.co.uk",
        "outlook.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "mac.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "zoho.com",
        "gmx.com",
        "gmx.net",
        "mail.com",
        # Australia
        "bigpond.com",
        "bigpond.net.au",
        "optusnet.com.au",
        "ozemail.com.au",
        "tpg.com.au",
        "internode.on.net",
        "dodo.com.au",
        # Regional
        "qq.com",
        "163.com",
        "126.com",
        "mail.ru",
        "yandex.ru",
        "yandex.com",
        "naver.com",
        "daum.net",
        "web.de",
        "orange.fr",
        "free.fr",
        "libero.it",
        "wp.pl",
        "o2.pl",
    }
)
