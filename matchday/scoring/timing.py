"""Timing coefficient: a bonus for predicting well ahead of kick-off."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from matchday.config.scoring_params import TimingParams, get_scoring_params

from .determinism import as_utc
from .types import TimingResult

_SECONDS_PER_HOUR = Decimal(3600)


def timing_coefficient(
    submitted_at: datetime,
    event_start_at: datetime,
    params: TimingParams | None = None,
) -> TimingResult:
    """Map lead time to a multiplier and tier name.

    Lower bounds are inclusive; lead times are compared as exact
    ``timedelta`` values so 168h to the microsecond earns the top tier.
    """
    params = params or get_scoring_params().timing
    lead = as_utc(event_start_at) - as_utc(submitted_at)
    lead_hours = Decimal(lead.total_seconds()) / _SECONDS_PER_HOUR

    tiers = sorted(params.tiers, key=lambda t: t.min_hours, reverse=True)
    for tier in tiers:
        if lead >= timedelta(hours=tier.min_hours):
            return TimingResult(tier.multiplier, tier.name, lead_hours)
    base = tiers[-1]
    return TimingResult(base.multiplier, base.name, lead_hours)


__all__ = ["timing_coefficient"]
