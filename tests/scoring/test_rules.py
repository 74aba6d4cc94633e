"""Tests for rules document parsing and validation."""

import json
from decimal import Decimal

import pytest

from matchday.config.scoring_params import RulesBounds
from matchday.scoring.rules import (
    RiskyRules,
    RulesDocument,
    StandardScoring,
    default_risky_events,
    default_rules,
    parse_rules,
)
from matchday.scoring.types import InvalidRules
from matchday.shared.enums import ContestType


class TestParseRulesDefaults:
    """Tests for empty and partial documents."""

    @pytest.mark.parametrize("raw", [None, "", b"", {}])
    def test_empty_gives_standard_defaults(self, raw):
        """Should return the default standard rules for an empty value."""
        doc = parse_rules(raw)
        assert doc.type == ContestType.STANDARD
        assert doc.scoring == StandardScoring.defaults()

    def test_missing_type_is_standard(self):
        """Should treat a document without type as standard."""
        doc = parse_rules({"scoring": {"exact_score": 7}})
        assert doc.type == ContestType.STANDARD
        assert doc.scoring.exact_score == Decimal("7")
        assert doc.scoring.goal_difference == Decimal("0")

    def test_risky_block_filled(self):
        """Should fill a missing risky block with the default catalogue."""
        doc = parse_rules({"type": "risky"})
        assert doc.risky.max_selections == 5
        assert [e.slug for e in doc.risky.events] == [e.slug for e in default_risky_events()]

    def test_totalizator_block_filled(self):
        """Should fill a missing totalizator block with 15 events and standard points."""
        doc = parse_rules({"type": "totalizator"})
        assert doc.totalizator.event_count == 15
        assert doc.standard_block() == StandardScoring.defaults()

    def test_relay_block_filled(self):
        """Should fill a missing relay block."""
        doc = parse_rules({"type": "relay"})
        assert doc.relay.team_size == 5
        assert doc.relay.allow_reassign is True

    def test_json_string_accepted(self):
        """Should accept a JSON string."""
        doc = parse_rules(json.dumps({"type": "relay", "relay": {"team_size": 3, "event_count": 10}}))
        assert doc.relay.team_size == 3
        assert doc.relay.event_count == 10

    def test_document_instance_accepted(self):
        """Should validate an existing document."""
        doc = parse_rules(default_rules())
        assert doc.type == ContestType.STANDARD


class TestParseRulesRejections:
    """Tests for invalid documents."""

    def test_invalid_json(self):
        """Should reject malformed JSON."""
        with pytest.raises(InvalidRules):
            parse_rules("{not json")

    def test_non_object(self):
        """Should reject a JSON array."""
        with pytest.raises(InvalidRules):
            parse_rules("[1, 2]")

    def test_unknown_type(self):
        """Should reject an unknown contest type."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "lottery"})

    def test_negative_standard_points(self):
        """Should reject negative standard point values."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "standard", "scoring": {"exact_score": -1}})

    @pytest.mark.parametrize("max_selections", [0, 11])
    def test_risky_selection_bounds(self, max_selections):
        """Should keep max_selections within 1..10."""
        with pytest.raises(InvalidRules):
            parse_rules({
                "type": "risky",
                "risky": {"max_selections": max_selections, "events": [{"slug": "penalty", "points": 3}]},
            })

    def test_risky_needs_events(self):
        """Should reject a risky contest with an empty catalogue."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "risky", "risky": {"max_selections": 3, "events": []}})

    def test_risky_duplicate_slugs(self):
        """Should reject duplicate event slugs."""
        with pytest.raises(InvalidRules):
            parse_rules({
                "type": "risky",
                "risky": {
                    "max_selections": 3,
                    "events": [{"slug": "penalty", "points": 3}, {"slug": "penalty", "points": 4}],
                },
            })

    def test_risky_points_may_be_negative(self):
        """Should allow signed risky event points."""
        doc = parse_rules({
            "type": "risky",
            "risky": {"max_selections": 2, "events": [{"slug": "no_goals", "points": -2}]},
        })
        assert doc.risky.events[0].points == Decimal("-2")

    @pytest.mark.parametrize("count", [4, 31])
    def test_totalizator_event_bounds(self, count):
        """Should keep totalizator event_count within 5..30."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "totalizator", "totalizator": {"event_count": count}})

    @pytest.mark.parametrize("team_size", [1, 11])
    def test_relay_team_size_bounds(self, team_size):
        """Should keep relay team_size within 2..10."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "relay", "relay": {"team_size": team_size, "event_count": 10}})

    @pytest.mark.parametrize("count", [4, 51])
    def test_relay_event_bounds(self, count):
        """Should keep relay event_count within 5..50."""
        with pytest.raises(InvalidRules):
            parse_rules({"type": "relay", "relay": {"team_size": 4, "event_count": count}})

    def test_custom_bounds(self):
        """Should honour explicit bounds."""
        bounds = RulesBounds(relay_max_team_size=3)
        with pytest.raises(InvalidRules):
            parse_rules({"type": "relay", "relay": {"team_size": 4, "event_count": 10}}, bounds)


class TestRulesDocument:
    """Tests for document helpers."""

    def test_standard_block_missing(self):
        """Should refuse a standard block for a risky document."""
        doc = RulesDocument(type=ContestType.RISKY, risky=RiskyRules.defaults())
        with pytest.raises(InvalidRules):
            doc.standard_block()

    def test_to_dict_points_are_numbers(self):
        """Should serialise integral points as ints and drop empty blocks."""
        data = default_rules().to_dict()
        assert data == {
            "type": "standard",
            "scoring": {
                "exact_score": 5,
                "goal_difference": 3,
                "correct_outcome": 1,
                "outcome_plus_team_goals": 1,
                "any_other": 4,
            },
        }

    def test_round_trip_through_json(self):
        """Should parse its own JSON back to an equal document."""
        doc = parse_rules({"type": "risky"})
        assert parse_rules(doc.to_json()) == doc

    def test_event_by_slug(self):
        """Should find catalogue events by slug."""
        risky = RiskyRules.defaults()
        assert risky.event_by_slug("comeback").points == Decimal("7")
        assert risky.event_by_slug("nope") is None
