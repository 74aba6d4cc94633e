"""Analytics view: per-user accuracy over the score ledger.

Read-only and lock-free. Every figure is derived from ledger grade rows
at query time:
- correct means the row earned more than zero points
- accuracy is a percentage of predictions in the group
- trends bucket by day for 7d/30d and by ISO week for 90d/all
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Hashable, List, Mapping, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from matchday.database import DBM
from matchday.database.repository import analytics as analytics_repo
from matchday.scoring.determinism import as_utc, utcnow
from matchday.scoring.types import InvalidInput

logger = logging.getLogger(__name__)

TIME_RANGES: Dict[str, int | None] = {"7d": 7, "30d": 30, "90d": 90, "all": None}
DEFAULT_TIME_RANGE = "30d"


def resolve_time_range(time_range: str | None, now: datetime | None = None) -> Tuple[str, datetime | None]:
    """Normalise ``time_range`` and return the window start (None for all time)."""
    key = time_range or DEFAULT_TIME_RANGE
    if key not in TIME_RANGES:
        raise InvalidInput(
            f"time_range must be one of {', '.join(TIME_RANGES)}, got {time_range!r}",
            reason="invalid_time_range",
        )
    days = TIME_RANGES[key]
    if days is None:
        return key, None
    return key, (as_utc(now) if now is not None else utcnow()) - timedelta(days=days)


def trend_period(scored_at: datetime, time_range: str) -> str:
    if time_range in ("90d", "all"):
        year, week, _ = scored_at.isocalendar()
        return f"{year}-W{week:02d}"
    return scored_at.strftime("%Y-%m-%d")


def _accuracy(correct: int, total: int) -> float:
    return correct / total * 100 if total > 0 else 0.0


def group_totals(
    labels: Sequence[Hashable],
    points: NDArray[np.float64],
) -> Dict[Hashable, Tuple[int, int, float]]:
    """(count, correct, points sum) per label, vectorised over the rows."""
    if len(labels) == 0:
        return {}
    index: Dict[Hashable, int] = {}
    codes = np.fromiter(
        (index.setdefault(label, len(index)) for label in labels),
        dtype=np.int64,
        count=len(labels),
    )
    n = len(index)
    counts = np.bincount(codes, minlength=n)
    correct = np.bincount(codes, weights=(points > 0).astype(np.float64), minlength=n)
    sums = np.bincount(codes, weights=points, minlength=n)
    return {
        label: (int(counts[i]), int(round(correct[i])), float(sums[i]))
        for label, i in index.items()
    }


class AnalyticsView:
    def __init__(self, dbm: DBM):
        self.dbm = dbm

    async def user_analytics(
        self,
        user_id: int,
        time_range: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Dict[str, Any]:
        key, since = resolve_time_range(time_range, now)
        rows = await analytics_repo.user_ledger_rows(self.dbm, user_id, since)
        report = self.summarize(user_id, key, rows)
        report["platform_comparison"] = await self.platform_stats(since)
        return report

    def summarize(self, user_id: int, time_range: str, rows: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        points = np.array([float(r["points"]) for r in rows], dtype=np.float64)
        total = len(rows)
        correct = int(np.count_nonzero(points > 0)) if total else 0

        by_sport = group_totals([r["sport"] or "unknown" for r in rows], points)
        league_rows = [r for r in rows if r["league_id"] is not None]
        by_league = group_totals(
            [(r["league_id"], r["league_name"] or "", r["sport"] or "unknown") for r in league_rows],
            np.array([float(r["points"]) for r in league_rows], dtype=np.float64),
        )
        by_type = group_totals([r["prediction_type"] or "unknown" for r in rows], points)
        trends = group_totals([trend_period(as_utc(r["scored_at"]), time_range) for r in rows], points)

        return {
            "user_id": user_id,
            "time_range": time_range,
            "total_predictions": total,
            "correct_predictions": correct,
            "overall_accuracy": _accuracy(correct, total),
            "total_points": round(float(points.sum()), 2) if total else 0.0,
            "by_sport": [
                {
                    "sport_type": sport,
                    "total_predictions": n,
                    "correct_predictions": c,
                    "accuracy_percentage": _accuracy(c, n),
                    "total_points": round(s, 2),
                }
                for sport, (n, c, s) in sorted(by_sport.items())
            ],
            "by_league": [
                {
                    "league_id": league_id,
                    "league_name": league_name,
                    "sport_type": sport,
                    "total_predictions": n,
                    "correct_predictions": c,
                    "accuracy_percentage": _accuracy(c, n),
                }
                for (league_id, league_name, sport), (n, c, _s) in sorted(by_league.items())
            ],
            "by_type": [
                {
                    "prediction_type": ptype,
                    "total_predictions": n,
                    "correct_predictions": c,
                    "accuracy_percentage": _accuracy(c, n),
                    "average_points": s / n if n else 0.0,
                }
                for ptype, (n, c, s) in sorted(by_type.items())
            ],
            "trends": [
                {
                    "period": period,
                    "total_predictions": n,
                    "correct_predictions": c,
                    "accuracy_percentage": _accuracy(c, n),
                    "total_points": round(s, 2),
                }
                for period, (n, c, s) in sorted(trends.items())
            ],
        }

    async def platform_stats(self, since: datetime | None) -> Dict[str, Any]:
        rows = await analytics_repo.platform_ledger_rows(self.dbm, since)
        if not rows:
            return {
                "average_accuracy": 0.0,
                "average_points_per_prediction": 0.0,
                "total_users": 0,
                "total_predictions": 0,
            }
        points = np.array([float(r["points"]) for r in rows], dtype=np.float64)
        users = np.array([int(r["user_id"]) for r in rows], dtype=np.int64)
        total = len(rows)
        return {
            "average_accuracy": _accuracy(int(np.count_nonzero(points > 0)), total),
            "average_points_per_prediction": float(points.mean()),
            "total_users": int(np.unique(users).size),
            "total_predictions": total,
        }

    async def export_csv(
        self,
        user_id: int,
        time_range: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Tuple[str, str]:
        """Return (filename, csv text) for a user's analytics report."""
        report = await self.user_analytics(user_id, time_range, now=now)
        filename = f"analytics_{user_id}_{report['time_range']}.csv"
        return filename, render_csv(report)


def render_csv(report: Mapping[str, Any]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")

    w.writerow(["User Analytics Report"])
    w.writerow(["User ID", report["user_id"]])
    w.writerow(["Time Range", report["time_range"]])
    w.writerow([])

    w.writerow(["Overall Statistics"])
    w.writerow(["Metric", "Value"])
    w.writerow(["Total Predictions", report["total_predictions"]])
    w.writerow(["Correct Predictions", report["correct_predictions"]])
    w.writerow(["Overall Accuracy", f"{report['overall_accuracy']:.2f}%"])
    w.writerow(["Total Points", f"{report['total_points']:.2f}"])
    w.writerow([])

    if report["by_sport"]:
        w.writerow(["Performance by Sport"])
        w.writerow(["Sport", "Total", "Correct", "Accuracy", "Points"])
        for s in report["by_sport"]:
            w.writerow([
                s["sport_type"],
                s["total_predictions"],
                s["correct_predictions"],
                f"{s['accuracy_percentage']:.2f}%",
                f"{s['total_points']:.2f}",
            ])
        w.writerow([])

    if report["by_type"]:
        w.writerow(["Performance by Prediction Type"])
        w.writerow(["Type", "Total", "Correct", "Accuracy", "Avg Points"])
        for t in report["by_type"]:
            w.writerow([
                t["prediction_type"],
                t["total_predictions"],
                t["correct_predictions"],
                f"{t['accuracy_percentage']:.2f}%",
                f"{t['average_points']:.2f}",
            ])
        w.writerow([])

    if report["trends"]:
        w.writerow(["Accuracy Trends"])
        w.writerow(["Period", "Total", "Correct", "Accuracy", "Points"])
        for tr in report["trends"]:
            w.writerow([
                tr["period"],
                tr["total_predictions"],
                tr["correct_predictions"],
                f"{tr['accuracy_percentage']:.2f}%",
                f"{tr['total_points']:.2f}",
            ])

    return buf.getvalue()


__all__ = [
    "AnalyticsView",
    "TIME_RANGES",
    "group_totals",
    "render_csv",
    "resolve_time_range",
    "trend_period",
]
