"""Tests for grading events and sinks."""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from matchday.events import (
    Event,
    LoggingEventSink,
    MemoryEventSink,
    PredictionRegraded,
    PredictionScored,
    PredictionVoided,
)


def _scored(prediction_id=1, final="10.00"):
    return PredictionScored(
        user_id=5,
        contest_id=2,
        prediction_id=prediction_id,
        base_points=Decimal("5"),
        time_coefficient=Decimal("2.0"),
        streak_multiplier=Decimal("1.00"),
        final_points=Decimal(final),
        new_total=Decimal("10.00"),
        new_rank=1,
        rank_delta=None,
    )


class TestEventIds:
    """Tests for deterministic event ids."""

    def test_same_prediction_same_id(self):
        """Should derive the id from type and prediction only."""
        assert _scored().event_id == _scored(final="3.00").event_id

    def test_other_prediction_other_id(self):
        assert _scored(1).event_id != _scored(2).event_id

    def test_types_do_not_collide(self):
        voided = PredictionVoided(user_id=5, contest_id=2, prediction_id=1, reason="x", compensated_points=None)
        assert voided.event_id != _scored().event_id

    def test_regrades_keyed_by_points(self):
        """Should give each distinct correction its own id."""
        def regraded(old, new):
            return PredictionRegraded(
                user_id=5, contest_id=2, prediction_id=1, old_points=Decimal(old), new_points=Decimal(new), reason="r"
            )
        assert regraded("10.00", "6.00").event_id != regraded("6.00", "10.00").event_id
        assert regraded("10.00", "6.00").event_id == regraded("10.00", "6.00").event_id

    def test_generic_event_id_from_payload(self):
        a = Event(event_id=None, event_type="t", event_data={"a": 1, "b": 2})
        b = Event(event_id=None, event_type="t", event_data={"b": 2, "a": 1})
        assert a.event_id == b.event_id
        assert len(a.event_id) == 32


class TestPayload:
    def test_to_dict(self):
        data = _scored().to_dict()
        assert data["event_type"] == "scoring.prediction_scored"
        assert data["data"]["prediction_id"] == 1
        assert data["data"]["final_points"] == Decimal("10.00")

    def test_canonical_json(self):
        """Should serialise decimals as strings with sorted keys."""
        text = Event.canonical_json(_scored().event_data)
        assert json.loads(text)["final_points"] == "10.00"
        assert text.index('"base_points"') < text.index('"user_id"')


class TestMemoryEventSink:
    @pytest.mark.asyncio
    async def test_dedupes(self):
        """Should keep one event per id."""
        sink = MemoryEventSink()
        for _ in range(3):
            await sink.emit(_scored())
        await sink.emit(_scored(2))
        assert len(sink.events) == 2
        assert len(sink.of_type("scoring.prediction_scored")) == 2
        assert sink.of_type("scoring.prediction_voided") == []


class TestLoggingEventSink:
    @pytest.mark.asyncio
    async def test_uses_event_level(self):
        """Should call .event() when the logger has it."""
        event_logger = MagicMock()
        await LoggingEventSink(event_logger).emit(_scored())
        event_logger.event.assert_called_once()
        assert json.loads(event_logger.event.call_args[0][0])["event_type"] == "scoring.prediction_scored"

    @pytest.mark.asyncio
    async def test_falls_back_to_info(self):
        event_logger = MagicMock(spec=["info"])
        await LoggingEventSink(event_logger).emit(_scored())
        event_logger.info.assert_called_once()
