"""Tests for the rules engine."""

from decimal import Decimal

import pytest

from matchday.scoring.engine import (
    RulesEngine,
    derive_risky_outcomes,
    determine_outcome,
    evaluate_prop,
    resolve_risky_outcomes,
)
from matchday.scoring.rules import default_rules, parse_rules
from matchday.scoring.types import (
    InvalidInput,
    InvalidSelection,
    MatchResult,
    OverUnderPayload,
    PropPick,
    PropsPayload,
    RiskyPayload,
    ScorePayload,
    WinnerPayload,
)
from matchday.shared.enums import Outcome


@pytest.fixture
def standard():
    return RulesEngine(default_rules())


@pytest.fixture
def risky():
    return RulesEngine(parse_rules({
        "type": "risky",
        "risky": {
            "max_selections": 3,
            "events": [
                {"slug": "penalty", "points": 3},
                {"slug": "red_card", "points": 4},
                {"slug": "own_goal", "points": 5},
            ],
        },
    }))


def _result(home, away, **outcomes):
    return MatchResult(match_id=1, home_score=home, away_score=away, risky_outcomes=outcomes)


class TestDetermineOutcome:
    def test_outcomes(self):
        assert determine_outcome(2, 1) == Outcome.HOME
        assert determine_outcome(0, 3) == Outcome.AWAY
        assert determine_outcome(1, 1) == Outcome.DRAW


class TestStandardScoring:
    """Tests for score-style grading with the default points table."""

    def test_exact_score(self, standard):
        """Should award exact_score when both scores match."""
        res = standard.score(ScorePayload(2, 1), _result(2, 1))
        assert res.base_points == Decimal("5")
        assert res.details["match_type"] == "exact_score"

    def test_goal_difference(self, standard):
        """Should award goal_difference for (2,0) against (3,1)."""
        res = standard.score(ScorePayload(2, 0), _result(3, 1))
        assert res.base_points == Decimal("3")
        assert res.details["match_type"] == "goal_difference"

    def test_draw_goal_difference(self, standard):
        """Should treat a different draw as a goal difference hit."""
        res = standard.score(ScorePayload(0, 0), _result(2, 2))
        assert res.base_points == Decimal("3")

    def test_wrong_outcome(self, standard):
        """Should give nothing when outcomes differ, even with one side right."""
        res = standard.score(ScorePayload(1, 0), _result(1, 2))
        assert res.base_points == Decimal("0")
        assert res.details["match_type"] == "none"

    def test_outcome_plus_team_goals(self, standard):
        """Should add the team goals bonus to a correct outcome."""
        res = standard.score(ScorePayload(2, 0), _result(2, 1))
        assert res.base_points == Decimal("2")
        assert res.details["match_type"] == "outcome_plus_team_goals"
        assert res.details["home_goals_match"] is True
        assert res.details["away_goals_match"] is False

    def test_correct_outcome_only(self, standard):
        """Should award correct_outcome alone when no team total matches."""
        res = standard.score(ScorePayload(3, 0), _result(2, 1))
        assert res.base_points == Decimal("1")
        assert res.details["match_type"] == "correct_outcome"

    def test_any_other_hit(self, standard):
        """Should award any_other when a side scores more than four."""
        res = standard.score(ScorePayload(any_other=True), _result(5, 0))
        assert res.base_points == Decimal("4")
        assert res.details["result_is_other"] is True

    def test_any_other_boundary(self, standard):
        """Should not treat four goals as 'any other'."""
        res = standard.score(ScorePayload(any_other=True), _result(4, 4))
        assert res.base_points == Decimal("0")
        assert res.details["match_type"] == "any_other_incorrect"

    def test_totalizator_uses_embedded_block(self):
        """Should grade totalizator contests with their standard block."""
        engine = RulesEngine(parse_rules({
            "type": "totalizator",
            "totalizator": {"event_count": 10, "scoring": {"exact_score": 9}},
        }))
        assert engine.score(ScorePayload(1, 1), _result(1, 1)).base_points == Decimal("9")

    def test_rejects_risky_payload(self, standard):
        """Should reject selections for a score contest."""
        with pytest.raises(InvalidInput):
            standard.score(RiskyPayload(("penalty",)), _result(1, 0))


class TestRiskyScoring:
    """Tests for signed risky selections."""

    def test_mixed_outcomes(self, risky):
        """Should add occurred events and subtract missed ones."""
        res = risky.score(
            RiskyPayload(("penalty", "red_card")),
            _result(1, 0, penalty=True, red_card=False, own_goal=True),
        )
        assert res.base_points == Decimal("-1")
        assert res.details["resolved"] == 2
        earned = {r["slug"]: r["earned"] for r in res.details["event_results"]}
        assert earned == {"penalty": Decimal("3"), "red_card": Decimal("-4")}

    def test_unresolved_slug_ignored(self, risky):
        """Should skip selections whose outcome is not known."""
        res = risky.score(RiskyPayload(("penalty", "own_goal")), _result(0, 0, penalty=True))
        assert res.base_points == Decimal("3")
        assert res.details["resolved"] == 1

    def test_score_derived_outcomes(self):
        """Should derive clean sheets and goal totals from the score."""
        engine = RulesEngine(parse_rules({"type": "risky"}))
        res = engine.score(
            RiskyPayload(("clean_sheet_home", "both_teams_score", "over_3_goals")),
            _result(4, 0),
        )
        # +2 clean sheet, -2 both teams score, +2 over 3 goals
        assert res.base_points == Decimal("2")

    def test_recorded_outcome_overrides_derived(self):
        """Should prefer an explicitly recorded outcome."""
        outcomes = resolve_risky_outcomes(_result(1, 0, clean_sheet_home=False))
        assert outcomes["clean_sheet_home"] is False
        assert derive_risky_outcomes(1, 0)["clean_sheet_home"] is True


class TestSelectionValidation:
    """Tests for risky selection checks."""

    def test_too_many(self, risky):
        with pytest.raises(InvalidSelection):
            risky.validate_selections(["penalty", "red_card", "own_goal", "penalty"])

    def test_duplicate(self, risky):
        with pytest.raises(InvalidSelection):
            risky.validate_selections(["penalty", "penalty"])

    def test_unknown(self, risky):
        with pytest.raises(InvalidSelection):
            risky.validate_selections(["hat_trick"])

    def test_empty(self, risky):
        with pytest.raises(InvalidSelection):
            risky.validate_selections([])

    def test_valid(self, risky):
        risky.validate_selections(["own_goal", "penalty"])

    def test_score_payload_rejected(self, risky):
        """Should reject a scoreline for a risky contest."""
        with pytest.raises(InvalidInput):
            risky.validate_payload(ScorePayload(1, 0))


class TestMarketScoring:
    """Tests for winner, over/under and prop picks."""

    @pytest.mark.parametrize("winner,points", [("home", Decimal("3")), ("draw", Decimal("0")), ("away", Decimal("0"))])
    def test_winner(self, standard, winner, points):
        res = standard.score(WinnerPayload(winner), _result(2, 1))
        assert res.base_points == points
        assert res.details["actual_winner"] == "home"

    @pytest.mark.parametrize(
        "side,threshold,points",
        [
            ("over", "2.5", Decimal("2")),
            ("under", "2.5", Decimal("0")),
            ("under", "3.5", Decimal("2")),
            ("over", "3", Decimal("0")),
            ("under", "3", Decimal("0")),
        ],
    )
    def test_over_under(self, standard, side, threshold, points):
        """Should pay neither side when the total lands on the line."""
        res = standard.score(OverUnderPayload(side, Decimal(threshold)), _result(2, 1))
        assert res.base_points == points
        assert res.details["total_goals"] == 3

    def test_props_sum_correct_picks(self, standard):
        result = MatchResult(1, 2, 1, stats={"corners": 11, "cards": 3, "first_to_score": "away"})
        payload = PropsPayload((
            PropPick("total-corners-ou", "over", line=Decimal("9.5")),
            PropPick("total-cards-ou", "over", line=Decimal("4.5"), points=Decimal("5")),
            PropPick("btts", "yes", points=Decimal("3")),
            PropPick("first-to-score", "away"),
        ))
        res = standard.score(payload, result)
        assert res.base_points == Decimal("7")
        assert res.details["total_props"] == 4
        assert res.details["correct_props"] == 3
        assert [r["correct"] for r in res.details["props_results"]] == [True, False, True, True]

    def test_props_missing_stats_miss(self, standard):
        """Should count a prop whose statistic was never recorded as incorrect."""
        payload = PropsPayload((
            PropPick("total-corners-ou", "under", line=Decimal("9.5")),
            PropPick("first-to-score", "home"),
        ))
        res = standard.score(payload, _result(1, 0))
        assert res.base_points == Decimal("0")
        assert res.details["correct_props"] == 0

    def test_market_payload_rejected_in_risky(self, risky):
        with pytest.raises(InvalidInput):
            risky.validate_payload(WinnerPayload("home"))

    def test_duplicate_props_rejected(self, standard):
        payload = PropsPayload((PropPick("btts", "yes"), PropPick("btts", "no")))
        with pytest.raises(InvalidSelection):
            standard.validate_payload(payload)


class TestEvaluateProp:
    def test_goalless_draw_has_no_first_scorer(self):
        assert evaluate_prop(PropPick("first-to-score", "none"), MatchResult(1, 0, 0))
        assert not evaluate_prop(PropPick("first-to-score", "home"), MatchResult(1, 0, 0))

    def test_total_goals_line(self):
        assert evaluate_prop(PropPick("total-goals-ou", "under", line=Decimal("2.5")), MatchResult(1, 1, 1))

    def test_unknown_slug_misses(self):
        assert not evaluate_prop(PropPick("hat-trick", "yes", line=Decimal("1")), MatchResult(1, 3, 0))

    def test_non_numeric_stat_misses(self):
        result = MatchResult(1, 1, 0, stats={"cards": "several"})
        assert not evaluate_prop(PropPick("total-cards-ou", "over", line=Decimal("0.5")), result)
