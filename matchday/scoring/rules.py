"""Contest rules documents.

A rules document is a tagged variant over four shapes, selected by ``type``:

    standard     -> "scoring"      five non-negative point values
    risky        -> "risky"        max selections + catalogue of signed events
    totalizator  -> "totalizator"  event count + embedded standard block
    relay        -> "relay"        team size, event count, reassign flag + standard block

Parsing fills a missing variant block with that variant's defaults and
validates bounds; any failure surfaces as ``InvalidRules``.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic import ValidationError as PydanticValidationError

from matchday.config.scoring_params import RulesBounds, get_scoring_params
from matchday.shared.enums import ContestType

from .types import InvalidRules


def _points_to_json(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


Points = Annotated[Decimal, PlainSerializer(_points_to_json, when_used="json")]
NonNegativePoints = Annotated[
    Decimal,
    Field(ge=Decimal("0")),
    PlainSerializer(_points_to_json, when_used="json"),
]


class StandardScoring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exact_score: NonNegativePoints = Decimal("0")
    goal_difference: NonNegativePoints = Decimal("0")
    correct_outcome: NonNegativePoints = Decimal("0")
    outcome_plus_team_goals: NonNegativePoints = Decimal("0")
    any_other: NonNegativePoints = Decimal("0")

    @classmethod
    def defaults(cls) -> "StandardScoring":
        return cls(
            exact_score=Decimal("5"),
            goal_difference=Decimal("3"),
            correct_outcome=Decimal("1"),
            outcome_plus_team_goals=Decimal("1"),
            any_other=Decimal("4"),
        )


class RiskyEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str = Field(min_length=1)
    name: str = ""
    name_en: Optional[str] = None
    points: Points
    description: Optional[str] = None


class RiskyRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_selections: int = 5
    events: List[RiskyEvent] = Field(default_factory=list)

    def event_by_slug(self, slug: str) -> RiskyEvent | None:
        for event in self.events:
            if event.slug == slug:
                return event
        return None

    @classmethod
    def defaults(cls) -> "RiskyRules":
        return cls(max_selections=5, events=default_risky_events())


class TotalizatorRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_count: int = 15
    scoring: StandardScoring = Field(default_factory=StandardScoring.defaults)


class RelayRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    team_size: int = 5
    event_count: int = 15
    scoring: StandardScoring = Field(default_factory=StandardScoring.defaults)
    allow_reassign: bool = True


class RulesDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: ContestType = ContestType.STANDARD
    scoring: Optional[StandardScoring] = None
    risky: Optional[RiskyRules] = None
    totalizator: Optional[TotalizatorRules] = None
    relay: Optional[RelayRules] = None

    @property
    def is_risky(self) -> bool:
        return self.type == ContestType.RISKY

    def standard_block(self) -> StandardScoring:
        """Point values used for score-style grading under this document."""
        if self.type == ContestType.STANDARD and self.scoring is not None:
            return self.scoring
        if self.type == ContestType.TOTALIZATOR and self.totalizator is not None:
            return self.totalizator.scoring
        if self.type == ContestType.RELAY and self.relay is not None:
            return self.relay.scoring
        raise InvalidRules(f"no standard scoring block for contest type {self.type.value}")

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def default_risky_events() -> List[RiskyEvent]:
    """Default football catalogue."""
    return [
        RiskyEvent(slug="penalty", name="Будет пенальти", name_en="Penalty awarded", points=Decimal("3")),
        RiskyEvent(slug="red_card", name="Будет удаление", name_en="Red card shown", points=Decimal("4")),
        RiskyEvent(slug="own_goal", name="Будет автогол", name_en="Own goal scored", points=Decimal("5")),
        RiskyEvent(slug="hat_trick", name="Будет хет-трик", name_en="Hat-trick scored", points=Decimal("6")),
        RiskyEvent(slug="clean_sheet_home", name="Хозяева на ноль", name_en="Home clean sheet", points=Decimal("2")),
        RiskyEvent(slug="clean_sheet_away", name="Гости на ноль", name_en="Away clean sheet", points=Decimal("3")),
        RiskyEvent(slug="both_teams_score", name="Обе забьют", name_en="Both teams score", points=Decimal("2")),
        RiskyEvent(slug="over_3_goals", name="Больше 3 голов", name_en="Over 3.5 goals", points=Decimal("2")),
        RiskyEvent(slug="first_half_draw", name="Ничья в 1-м тайме", name_en="First half draw", points=Decimal("2")),
        RiskyEvent(slug="comeback", name="Камбэк (отыграться)", name_en="Comeback from 0:2+", points=Decimal("7")),
    ]


def default_rules() -> RulesDocument:
    return RulesDocument(type=ContestType.STANDARD, scoring=StandardScoring.defaults())


def _fill_defaults(doc: RulesDocument) -> RulesDocument:
    updates: dict[str, Any] = {}
    if doc.type == ContestType.STANDARD and doc.scoring is None:
        updates["scoring"] = StandardScoring.defaults()
    elif doc.type == ContestType.RISKY and doc.risky is None:
        updates["risky"] = RiskyRules.defaults()
    elif doc.type == ContestType.TOTALIZATOR and doc.totalizator is None:
        updates["totalizator"] = TotalizatorRules()
    elif doc.type == ContestType.RELAY and doc.relay is None:
        updates["relay"] = RelayRules()
    return doc.model_copy(update=updates) if updates else doc


def validate_rules(doc: RulesDocument, bounds: RulesBounds | None = None) -> RulesDocument:
    """Check variant bounds. Returns the document unchanged or raises InvalidRules."""
    bounds = bounds or get_scoring_params().rules

    if doc.type == ContestType.STANDARD:
        if doc.scoring is None:
            raise InvalidRules("standard rules required for standard contest")

    elif doc.type == ContestType.RISKY:
        risky = doc.risky
        if risky is None:
            raise InvalidRules("risky rules required for risky contest")
        if not bounds.risky_min_selections <= risky.max_selections <= bounds.risky_max_selections:
            raise InvalidRules(
                f"max_selections must be between {bounds.risky_min_selections} "
                f"and {bounds.risky_max_selections}"
            )
        if not risky.events:
            raise InvalidRules("risky contest must have at least one event")
        slugs = [e.slug for e in risky.events]
        if len(set(slugs)) != len(slugs):
            raise InvalidRules("risky event slugs must be unique")

    elif doc.type == ContestType.TOTALIZATOR:
        tot = doc.totalizator
        if tot is None:
            raise InvalidRules("totalizator rules required for totalizator contest")
        if not bounds.totalizator_min_events <= tot.event_count <= bounds.totalizator_max_events:
            raise InvalidRules(
                f"event_count must be between {bounds.totalizator_min_events} "
                f"and {bounds.totalizator_max_events}"
            )

    elif doc.type == ContestType.RELAY:
        relay = doc.relay
        if relay is None:
            raise InvalidRules("relay rules required for relay contest")
        if not bounds.relay_min_team_size <= relay.team_size <= bounds.relay_max_team_size:
            raise InvalidRules(
                f"team_size must be between {bounds.relay_min_team_size} "
                f"and {bounds.relay_max_team_size}"
            )
        if not bounds.relay_min_events <= relay.event_count <= bounds.relay_max_events:
            raise InvalidRules(
                f"event_count must be between {bounds.relay_min_events} "
                f"and {bounds.relay_max_events}"
            )

    return doc


def parse_rules(raw: Any, bounds: RulesBounds | None = None) -> RulesDocument:
    """Parse and validate a rules document.

    Accepts a JSON string/bytes, a mapping, an existing ``RulesDocument``
    or an empty value (which yields the default standard rules).

    Raises:
        InvalidRules: on malformed JSON, unknown type, negative standard
            points or out-of-range variant parameters.
    """
    if isinstance(raw, RulesDocument):
        return validate_rules(_fill_defaults(raw), bounds)
    if raw is None or raw == "" or raw == b"" or raw == {}:
        return default_rules()
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRules(f"rules are not valid JSON: {e}")
    if not isinstance(raw, dict):
        raise InvalidRules(f"rules must be a JSON object, got {type(raw).__name__}")
    if raw.get("type") in (None, ""):
        raw = {**raw, "type": ContestType.STANDARD.value}

    try:
        doc = RulesDocument.model_validate(raw)
    except PydanticValidationError as e:
        raise InvalidRules(f"invalid rules document: {e.errors(include_url=False)}")
    return validate_rules(_fill_defaults(doc), bounds)


__all__ = [
    "StandardScoring",
    "RiskyEvent",
    "RiskyRules",
    "TotalizatorRules",
    "RelayRules",
    "RulesDocument",
    "default_risky_events",
    "default_rules",
    "validate_rules",
    "parse_rules",
]
