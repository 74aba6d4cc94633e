"""Rules engine: base points for one prediction against one result.

Pure computation; no clock and no I/O. Totalizator and relay contests are
graded per prediction exactly like standard ones; their per-contest and
per-team sums happen in the ledger aggregate and the leaderboard.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping

from matchday.config.scoring_params import ScoringParams, get_scoring_params
from matchday.shared.enums import ContestType, Outcome

from .rules import RulesDocument, StandardScoring
from .types import (
    ZERO,
    InvalidInput,
    InvalidRules,
    InvalidSelection,
    MatchResult,
    OverUnderPayload,
    PredictionPayload,
    PropPick,
    PropsPayload,
    RiskyPayload,
    ScorePayload,
    ScoringResult,
    WinnerPayload,
)


def determine_outcome(home: int, away: int) -> Outcome:
    if home > away:
        return Outcome.HOME
    if away > home:
        return Outcome.AWAY
    return Outcome.DRAW


def derive_risky_outcomes(home_score: int, away_score: int) -> Dict[str, bool]:
    """Outcomes of catalogue events that follow from the final score alone."""
    return {
        "clean_sheet_home": away_score == 0,
        "clean_sheet_away": home_score == 0,
        "both_teams_score": home_score > 0 and away_score > 0,
        "over_3_goals": home_score + away_score > 3,
    }


def resolve_risky_outcomes(result: MatchResult) -> Dict[str, bool]:
    """Score-derived outcomes overlaid with explicitly recorded ones."""
    outcomes = derive_risky_outcomes(result.home_score, result.away_score)
    outcomes.update({str(k): bool(v) for k, v in result.risky_outcomes.items()})
    return outcomes


_PROP_STATS = {"total-corners-ou": "corners", "total-cards-ou": "cards"}


def _over_under_hit(side: str, value: Decimal, line: Decimal) -> bool:
    # landing exactly on the line wins neither side
    if side == "over":
        return value > line
    if side == "under":
        return value < line
    return False


def _stat(stats: Mapping[str, Any], key: str) -> Decimal | None:
    value = stats.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def evaluate_prop(prop: PropPick, result: MatchResult) -> bool:
    """Whether one prop pick came true. Unknown props and missing stats are misses."""
    goals = result.home_score + result.away_score
    if prop.slug == "btts":
        both = result.home_score > 0 and result.away_score > 0
        return prop.selection == ("yes" if both else "no")
    if prop.slug == "first-to-score":
        first = result.stats.get("first_to_score")
        if first is None and goals == 0:
            first = "none"
        return first is not None and prop.selection == str(first)
    if prop.line is None:
        return False
    if prop.slug == "total-goals-ou":
        return _over_under_hit(prop.selection, Decimal(goals), prop.line)
    stat_key = _PROP_STATS.get(prop.slug)
    if stat_key is None:
        return False
    value = _stat(result.stats, stat_key)
    if value is None:
        return False
    return _over_under_hit(prop.selection, value, prop.line)


class RulesEngine:
    """Grades predictions under one contest's rules document."""

    def __init__(self, rules: RulesDocument, params: ScoringParams | None = None):
        self.rules = rules
        self.params = params or get_scoring_params()

    # ── validation ──────────────────────────────────────────────────────────

    def validate_payload(self, payload: PredictionPayload) -> None:
        """Check that a payload fits this contest's rules.

        Raises:
            InvalidInput: payload shape does not match the contest type
            InvalidSelection: bad risky selections or duplicated props
        """
        if self.rules.type == ContestType.RISKY:
            if not isinstance(payload, RiskyPayload):
                raise InvalidInput("risky contest requires a list of selections")
            self.validate_selections(payload.selections)
            return
        if isinstance(payload, (WinnerPayload, OverUnderPayload)):
            return
        if isinstance(payload, PropsPayload):
            if not payload.props:
                raise InvalidSelection("at least one prop must be picked")
            slugs = [p.slug for p in payload.props]
            if len(set(slugs)) != len(slugs):
                raise InvalidSelection("duplicate prop selection")
            return
        if not isinstance(payload, ScorePayload):
            raise InvalidInput(f"{self.rules.type.value} contest requires a score prediction")
        if not payload.any_other and (payload.home < 0 or payload.away < 0):
            raise InvalidInput("predicted scores cannot be negative")

    def validate_selections(self, selections: Iterable[str]) -> None:
        risky = self.rules.risky
        if risky is None:
            raise InvalidRules("contest has no risky rules")
        selections = list(selections)
        if not selections:
            raise InvalidSelection("at least one risky event must be selected")
        if len(selections) > risky.max_selections:
            raise InvalidSelection(
                f"too many selections: max {risky.max_selections} allowed, got {len(selections)}"
            )
        if len(set(selections)) != len(selections):
            raise InvalidSelection("duplicate risky event selection")
        for slug in selections:
            if risky.event_by_slug(slug) is None:
                raise InvalidSelection(f"unknown event: {slug}")

    # ── scoring ─────────────────────────────────────────────────────────────

    def score(self, payload: PredictionPayload, result: MatchResult) -> ScoringResult:
        """Dispatch on the rules variant."""
        self.validate_payload(payload)
        if self.rules.type == ContestType.RISKY:
            return self.score_risky(payload.selections, resolve_risky_outcomes(result))
        if isinstance(payload, WinnerPayload):
            return self.score_winner(payload, result.home_score, result.away_score)
        if isinstance(payload, OverUnderPayload):
            return self.score_over_under(payload, result.home_score, result.away_score)
        if isinstance(payload, PropsPayload):
            return self.score_props(payload.props, result)
        return self.score_standard(payload, result.home_score, result.away_score)

    def score_standard(self, prediction: ScorePayload, home_score: int, away_score: int) -> ScoringResult:
        scoring: StandardScoring = self.rules.standard_block()
        details: Dict[str, Any] = {
            "type": self.rules.type.value,
            "predicted_score": f"{prediction.home}:{prediction.away}",
            "actual_score": f"{home_score}:{away_score}",
            "is_any_other": prediction.any_other,
        }

        if prediction.any_other:
            threshold = self.params.rules.any_other_threshold
            is_other = home_score > threshold or away_score > threshold
            details["result_is_other"] = is_other
            if is_other:
                details["match_type"] = "any_other_correct"
                return ScoringResult(scoring.any_other, details)
            details["match_type"] = "any_other_incorrect"
            return ScoringResult(ZERO, details)

        if prediction.home == home_score and prediction.away == away_score:
            details["match_type"] = "exact_score"
            return ScoringResult(scoring.exact_score, details)

        predicted_outcome = determine_outcome(prediction.home, prediction.away)
        actual_outcome = determine_outcome(home_score, away_score)
        details["predicted_outcome"] = predicted_outcome.value
        details["actual_outcome"] = actual_outcome.value

        if prediction.home - prediction.away == home_score - away_score:
            details["match_type"] = "goal_difference"
            return ScoringResult(scoring.goal_difference, details)

        if predicted_outcome == actual_outcome:
            home_match = prediction.home == home_score
            away_match = prediction.away == away_score
            if home_match or away_match:
                details["match_type"] = "outcome_plus_team_goals"
                details["home_goals_match"] = home_match
                details["away_goals_match"] = away_match
                return ScoringResult(scoring.correct_outcome + scoring.outcome_plus_team_goals, details)
            details["match_type"] = "correct_outcome"
            return ScoringResult(scoring.correct_outcome, details)

        details["match_type"] = "none"
        return ScoringResult(ZERO, details)

    def score_winner(self, prediction: WinnerPayload, home_score: int, away_score: int) -> ScoringResult:
        actual = determine_outcome(home_score, away_score)
        correct = prediction.winner == actual.value
        details = {
            "type": self.rules.type.value,
            "match_type": "winner_correct" if correct else "winner_incorrect",
            "predicted_winner": prediction.winner,
            "actual_winner": actual.value,
            "actual_score": f"{home_score}:{away_score}",
        }
        return ScoringResult(self.params.markets.winner if correct else ZERO, details)

    def score_over_under(self, prediction: OverUnderPayload, home_score: int, away_score: int) -> ScoringResult:
        total = home_score + away_score
        correct = _over_under_hit(prediction.side, Decimal(total), prediction.threshold)
        details = {
            "type": self.rules.type.value,
            "match_type": "over_under_correct" if correct else "over_under_incorrect",
            "over_under": prediction.side,
            "threshold": str(prediction.threshold),
            "total_goals": total,
        }
        return ScoringResult(self.params.markets.over_under if correct else ZERO, details)

    def score_props(self, props: Iterable[PropPick], result: MatchResult) -> ScoringResult:
        """Sum the points of every correct prop. Props whose stat is unknown score nothing."""
        total = ZERO
        prop_results: List[Dict[str, Any]] = []
        for prop in props:
            correct = evaluate_prop(prop, result)
            points = prop.points if prop.points is not None else self.params.markets.prop_default
            earned = points if correct else ZERO
            total += earned
            prop_results.append({
                "prop_slug": prop.slug,
                "selection": prop.selection,
                "line": str(prop.line) if prop.line is not None else None,
                "correct": correct,
                "earned": earned,
            })

        details = {
            "type": self.rules.type.value,
            "match_type": "props",
            "props_results": prop_results,
            "total_props": len(prop_results),
            "correct_props": sum(1 for r in prop_results if r["correct"]),
        }
        return ScoringResult(total, details)

    def score_risky(self, selections: Iterable[str], outcomes: Mapping[str, bool]) -> ScoringResult:
        risky = self.rules.risky
        if risky is None:
            raise InvalidRules("contest has no risky rules")

        selections = list(selections)
        total = ZERO
        event_results: List[Dict[str, Any]] = []
        for slug in selections:
            event = risky.event_by_slug(slug)
            if event is None or slug not in outcomes:
                continue
            occurred = bool(outcomes[slug])
            earned: Decimal = event.points if occurred else -event.points
            total += earned
            event_results.append({
                "slug": slug,
                "name": event.name,
                "points": event.points,
                "occurred": occurred,
                "earned": earned,
            })

        details = {
            "type": ContestType.RISKY.value,
            "selections": selections,
            "event_results": event_results,
            "resolved": len(event_results),
            "total_points": total,
        }
        return ScoringResult(total, details)


__all__ = [
    "RulesEngine",
    "determine_outcome",
    "evaluate_prop",
    "derive_risky_outcomes",
    "resolve_risky_outcomes",
]
