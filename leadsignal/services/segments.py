import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from leadsignal.schemas.common import EmailType, SegmentIdentificationType
from leadsignal.services.lead_scoring import Condition

logger = logging.getLogger(__name__)

IN_BLOCKLIST = "in_blocklist"
NOT_IN_BLOCKLIST = "not_in_blocklist"


@dataclass(frozen=True)
class SegmentRule:
    """An active audience segment with its identification rule parsed.

    ``email_domain`` segments match on the ``email_type`` fact;
    ``form_field`` and ``behavioral`` segments carry a
    ``field:operator:operand`` condition evaluated with the scoring
    condition grammar.
    """

    segment_id: str
    name: str
    identification_type: Optional[SegmentIdentificationType]
    field: Optional[str]
    condition: Optional[Condition]
    blocklist_mode: Optional[str] = None

    @classmethod
    def from_model(cls, segment: Any) -> "SegmentRule":
        try:
            id_type: Optional[SegmentIdentificationType] = SegmentIdentificationType(
                segment.identification_type
            )
        except ValueError:
            logger.warning(
                "Segment %s has unknown identification type %r",
                segment.id,
                segment.identification_type,
            )
            id_type = None

        raw = (segment.identification_condition or "").strip()
        field: Optional[str] = None
        condition: Optional[Condition] = None
        blocklist_mode: Optional[str] = None

        if id_type is SegmentIdentificationType.email_domain:
            blocklist_mode = raw
        elif id_type is not None:
            field, _, rest = raw.partition(":")
            if field and rest:
                condition = Condition.parse(rest)
            else:
                logger.warning("Segment %s has malformed condition %r", segment.id, raw)

        return cls(
            segment_id=str(segment.id),
            name=segment.name,
            identification_type=id_type,
            field=field or None,
            condition=condition,
            blocklist_mode=blocklist_mode,
        )

    def matches(self, facts: Mapping[str, Any]) -> bool:
        if self.identification_type is SegmentIdentificationType.email_domain:
            email_type = facts.get("email_type")
            if email_type is None:
                return False
            if self.blocklist_mode == IN_BLOCKLIST:
                return email_type == EmailType.consumer.value
            if self.blocklist_mode == NOT_IN_BLOCKLIST:
                return email_type == EmailType.business.value
            return False

        if self.condition is None or self.field is None:
            return False
        return self.condition.evaluate(facts.get(self.field))


def compile_segments(segments: Iterable[Any]) -> List[SegmentRule]:
    return [SegmentRule.from_model(s) for s in segments if getattr(s, "is_active", True)]


def classify_segment(
    segments: Iterable[SegmentRule],
    facts: Mapping[str, Any],
) -> Optional[str]:
    """Name of the first segment whose rule matches, or ``None``."""
    for segment in segments:
        if segment.matches(facts):
            return segment.name
    return None
