"""Prediction payload parsing."""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Tuple

from matchday.shared.enums import ContestType

from .types import (
    InvalidInput,
    InvalidSelection,
    OverUnderPayload,
    PredictionPayload,
    PropPick,
    PropsPayload,
    RiskyPayload,
    ScorePayload,
    WinnerPayload,
)

WINNER_PICKS = ("home", "away", "draw")
OVER_UNDER_PICKS = ("over", "under")

# prop slug -> allowed selections; over/under props also need a line
PROP_MARKETS: Dict[str, Tuple[str, ...]] = {
    "total-goals-ou": OVER_UNDER_PICKS,
    "total-corners-ou": OVER_UNDER_PICKS,
    "total-cards-ou": OVER_UNDER_PICKS,
    "btts": ("yes", "no"),
    "first-to-score": ("home", "away", "none"),
}

_TYPED = (ScorePayload, RiskyPayload, WinnerPayload, OverUnderPayload, PropsPayload)


def _as_score(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    if value < 0:
        raise InvalidInput(f"{name} cannot be negative")
    return value


def _as_number(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidInput(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInput(f"{name} must be finite")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise InvalidInput(f"{name} must be a number") from None
    if not number.is_finite() or number < 0:
        raise InvalidInput(f"{name} must be a non-negative number")
    return number


def _parse_prop(raw: Any) -> PropPick:
    if not isinstance(raw, Mapping):
        raise InvalidInput("each prop must be an object")
    slug = raw.get("prop_slug")
    if slug not in PROP_MARKETS:
        raise InvalidSelection(f"unknown prop: {slug}")
    selection = raw.get("selection")
    if selection not in PROP_MARKETS[slug]:
        raise InvalidSelection(f"{slug} selection must be one of {', '.join(PROP_MARKETS[slug])}")

    line = None
    if PROP_MARKETS[slug] is OVER_UNDER_PICKS:
        if raw.get("line") is None:
            raise InvalidInput(f"{slug} requires a line")
        line = _as_number(raw["line"], f"{slug} line")

    points = None
    if raw.get("points_value"):
        points = _as_number(raw["points_value"], f"{slug} points_value")
    return PropPick(slug=slug, selection=selection, line=line, points=points)


def _parse_market(kind: str, raw: Mapping[str, Any]) -> PredictionPayload:
    if kind == "winner":
        winner = raw.get("winner")
        if winner not in WINNER_PICKS:
            raise InvalidInput("winner must be one of home, away, draw")
        return WinnerPayload(winner=winner)

    if kind == "over_under":
        side = raw.get("over_under")
        if side not in OVER_UNDER_PICKS:
            raise InvalidInput("over_under must be over or under")
        if raw.get("threshold") is None:
            raise InvalidInput("over_under prediction requires a threshold")
        return OverUnderPayload(side=side, threshold=_as_number(raw["threshold"], "threshold"))

    props = raw.get("props")
    if not isinstance(props, (list, tuple)) or not props:
        raise InvalidInput("props prediction requires a non-empty list of props")
    picks = tuple(_parse_prop(p) for p in props)
    slugs = [p.slug for p in picks]
    if len(set(slugs)) != len(slugs):
        raise InvalidSelection("duplicate prop selection")
    return PropsPayload(props=picks)


def parse_payload(raw: Mapping[str, Any] | PredictionPayload, contest_type: ContestType) -> PredictionPayload:
    """Turn a wire payload into a typed prediction.

    Score payloads look like ``{"home_score": 2, "away_score": 1}`` or
    ``{"type": "any_other"}``; risky payloads ``{"selections": [...]}``.
    Outside risky contests a ``type`` of ``winner``, ``over_under`` or
    ``props`` selects one of the market picks instead.
    """
    if isinstance(raw, _TYPED):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidInput("prediction payload must be an object")

    if contest_type == ContestType.RISKY:
        selections = raw.get("selections")
        if not isinstance(selections, (list, tuple)) or not all(isinstance(s, str) for s in selections):
            raise InvalidInput("selections must be a list of event slugs")
        return RiskyPayload(selections=tuple(selections))

    kind = raw.get("type")
    if kind in ("winner", "over_under", "props"):
        return _parse_market(kind, raw)
    if kind == "any_other" or raw.get("any_other") is True:
        return ScorePayload(any_other=True)
    if "home_score" not in raw or "away_score" not in raw:
        raise InvalidInput("score prediction requires home_score and away_score")
    return ScorePayload(
        home=_as_score(raw["home_score"], "home_score"),
        away=_as_score(raw["away_score"], "away_score"),
    )


__all__ = ["OVER_UNDER_PICKS", "PROP_MARKETS", "WINNER_PICKS", "parse_payload"]
