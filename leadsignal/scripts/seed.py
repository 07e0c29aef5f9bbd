"""Demo data seeder: one organisation with a funnel, metrics, rules,
a segment, inactive integrations and an API key.

Run with ``python -m leadsignal.scripts.seed``.  Prints the generated
API key once; only its hash is stored.
"""

import asyncio

from sqlalchemy import select

from leadsignal.core.database import AsyncSessionLocal, engine
from leadsignal.core.security import PayloadCipher, generate_api_key, hash_api_key
from leadsignal.models import (
    ApiKey,
    AudienceSegment,
    BusinessMetrics,
    Funnel,
    Integration,
    Organization,
    ScoringRule,
)
from leadsignal.schemas.common import (
    IntegrationStatus,
    IntegrationType,
    ScoringCategory,
)

DEMO_SLUG = "demo"

DEMO_FUNNEL_STEPS = [
    {"id": "s1", "name": "Email captured", "order": 0, "conversionRate": 40,
     "monthlyVolume": 1200, "isTrackable": True, "eventName": "email_captured"},
    {"id": "s2", "name": "Application started", "order": 1, "conversionRate": 50,
     "monthlyVolume": 480, "isTrackable": True, "eventName": "application_started"},
    {"id": "s3", "name": "Signup complete", "order": 2, "conversionRate": 60,
     "monthlyVolume": 240, "isTrackable": True, "eventName": "signup_complete"},
    {"id": "s4", "name": "First transaction", "order": 3, "conversionRate": 100,
     "monthlyVolume": 144, "isTrackable": True, "eventName": "first_transaction"},
]

DEMO_RULES = [
    (ScoringCategory.FIRMOGRAPHIC, "email_type", "equals:business", 15),
    (ScoringCategory.FIRMOGRAPHIC, "company_size", "greater_than_or_equal:50", 10),
    (ScoringCategory.FIRMOGRAPHIC, "industry", "in_list:saas,fintech,ecommerce", 10),
    (ScoringCategory.BEHAVIORAL, "pages_viewed", "greater_than:3", 10),
    (ScoringCategory.BEHAVIORAL, "scroll_depth", "greater_than_or_equal:75", 5),
    (ScoringCategory.ENGAGEMENT, "session_count", "greater_than:1", 10),
    (ScoringCategory.ENGAGEMENT, "utm_medium", "equals:cpc", 5),
    (ScoringCategory.FIRMOGRAPHIC, "email_type", "equals:consumer", -5),
]


async def seed() -> None:
    cipher = PayloadCipher()

    async with AsyncSessionLocal() as session:
        existing = await session.execute(
            select(Organization).where(Organization.slug == DEMO_SLUG)
        )
        if existing.scalar_one_or_none() is not None:
            print("Demo organization already exists; nothing to do")
            return

        org = Organization(name="Demo Co", slug=DEMO_SLUG)
        session.add(org)
        await session.flush()

        session.add(
            Funnel(
                organization_id=org.id,
                name="Default funnel",
                is_default=True,
                steps=DEMO_FUNNEL_STEPS,
            )
        )
        session.add(
            BusinessMetrics(
                organization_id=org.id,
                ltv=3000,
                ltv_cac_ratio=3,
                gross_margin=80,
                currency="AUD",
            )
        )
        for order, (category, field, condition, points) in enumerate(DEMO_RULES):
            session.add(
                ScoringRule(
                    organization_id=org.id,
                    category=category.value,
                    field=field,
                    condition=condition,
                    points=points,
                    order=order,
                )
            )
        session.add(
            AudienceSegment(
                organization_id=org.id,
                name="B2B",
                multiplier=1.2,
                identification_type="email_domain",
                identification_condition="not_in_blocklist",
            )
        )
        session.add(
            Integration(
                organization_id=org.id,
                type=IntegrationType.META_CAPI.value,
                name="Meta pixel",
                status=IntegrationStatus.PENDING.value,
                credentials=cipher.encrypt(
                    {"pixelId": "000000000000000", "accessToken": "replace-me"}
                ),
            )
        )
        session.add(
            Integration(
                organization_id=org.id,
                type=IntegrationType.GOOGLE_ADS.value,
                name="Google Ads",
                status=IntegrationStatus.PENDING.value,
                credentials=cipher.encrypt(
                    {"customerId": "0000000000", "refreshToken": "replace-me"}
                ),
                settings={"conversionActions": {}},
            )
        )

        key = generate_api_key()
        session.add(
            ApiKey(
                organization_id=org.id,
                name="Demo webhook key",
                key_hash=hash_api_key(key),
                scopes=["score-lead"],
            )
        )
        await session.commit()

        print(f"Seeded organization {org.id}")
        print(f"API key (shown once): {key}")


async def main() -> None:
    try:
        await seed()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
