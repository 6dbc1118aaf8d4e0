"""
Trend & Anomaly Analyzer

Consumes the ordered daily snapshot history and the hourly/daily page-view
counters and produces:
- Week-over-week direction for revenue, orders and traffic
- A 7-day revenue forecast (needs two weeks of history)
- Seasonality: peak hours and peak weekdays
- Traffic anomalies for today (spike / drop)

All functions are pure; the report is rebuilt from scratch on every call.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from customer_intel.core.exceptions import InsufficientDataError
from customer_intel.core.records import coerce_utc, utcnow
from customer_intel.tracking.tracker import DailySnapshot

logger = logging.getLogger(__name__)

WINDOW_DAYS = 7
MIN_HISTORY_DAYS = 7
MIN_FORECAST_DAYS = 14
FORECAST_HORIZON = 7

TREND_THRESHOLD_PCT = 5.0
PEAK_HOUR_FACTOR = 1.5
SPIKE_FACTOR = 2.0
DROP_FACTOR = 0.5


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass(frozen=True)
class MetricTrend:
    direction: TrendDirection
    change: float       # percent
    current: float      # mean of the last 7 days
    previous: float     # mean of the 7 days before


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    predicted: float
    confidence: int     # percent


@dataclass(frozen=True)
class Seasonality:
    peak_hours: List[int] = field(default_factory=list)
    peak_days: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Anomaly:
    type: str           # traffic_spike | traffic_drop
    title: str
    message: str
    severity: str       # medium | high
    metric: float = 0.0


@dataclass(frozen=True)
class TrendReport:
    trends: Dict[str, MetricTrend]
    forecast: List[ForecastPoint]
    seasonality: Seasonality
    anomalies: List[Anomaly]
    computed_at: datetime
    history_days: int = 0

    @property
    def has_trends(self) -> bool:
        return bool(self.trends)

    def direction_of(self, metric: str) -> Optional[TrendDirection]:
        trend = self.trends.get(metric)
        return trend.direction if trend else None


def classify_change(change_pct: float) -> TrendDirection:
    if change_pct > TREND_THRESHOLD_PCT:
        return TrendDirection.UP
    if change_pct < -TREND_THRESHOLD_PCT:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def direction(values: Sequence[float], window: int = WINDOW_DAYS) -> MetricTrend:
    """
    Compare the mean of the last `window` values with the mean of the (up to)
    `window` values before them. A zero previous mean yields change 0.
    """
    arr = np.asarray(values, dtype=float)
    recent = arr[-window:]
    older = arr[-2 * window:-window] if arr.size > window else np.asarray([], dtype=float)

    current = float(recent.mean()) if recent.size else 0.0
    previous = float(older.mean()) if older.size else 0.0
    change = (current - previous) / previous * 100 if previous > 0 else 0.0

    return MetricTrend(
        direction=classify_change(change),
        change=round(change, 1),
        current=current,
        previous=previous,
    )


def forecast_revenue(
    revenues: Sequence[float],
    change_pct: float,
    start: date,
    horizon: int = FORECAST_HORIZON
) -> List[ForecastPoint]:
    """
    Linear projection of the last-7-day average revenue.

    predicted_i = avg7 * (1 + growth / 7 * i), floored at 0, with
    confidence max(50, 90 - 5i) for day i in [1, horizon].

    Raises:
        InsufficientDataError: fewer than 14 days of revenue
    """
    if len(revenues) < MIN_FORECAST_DAYS:
        raise InsufficientDataError(
            "Revenue forecast needs two weeks of history",
            {"days": len(revenues), "required": MIN_FORECAST_DAYS}
        )

    recent = np.asarray(revenues[-WINDOW_DAYS:], dtype=float)
    avg = float(recent.mean()) if recent.size else 0.0
    growth = change_pct / 100

    return [
        ForecastPoint(
            date=start + timedelta(days=i),
            predicted=round(max(0.0, avg * (1 + growth / WINDOW_DAYS * i)), 2),
            confidence=max(50, 90 - i * 5),
        )
        for i in range(1, horizon + 1)
    ]


def peak_hours(page_views_by_hour: Sequence[int], top: int = 3) -> List[int]:
    """Hours whose traffic exceeds 1.5x the 24h average, busiest first."""
    hourly = np.asarray(page_views_by_hour, dtype=float)
    if hourly.size == 0:
        return []
    threshold = hourly.sum() / 24 * PEAK_HOUR_FACTOR
    candidates = [(int(count), hour) for hour, count in enumerate(hourly) if count > threshold]
    candidates.sort(key=lambda c: (-c[0], c[1]))
    return [hour for _, hour in candidates[:top]]


def peak_days(page_views_by_day: Mapping[str, int], top: int = 3) -> List[str]:
    """Top weekdays by average daily traffic; needs at least 7 recorded days."""
    if len(page_views_by_day) < MIN_HISTORY_DAYS:
        return []

    series = pd.Series(page_views_by_day, dtype=float)
    series.index = pd.to_datetime(series.index)
    by_weekday = series.groupby(series.index.dayofweek).mean().reindex(range(7), fill_value=0.0)

    names = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
    ranked = by_weekday.sort_values(ascending=False, kind="stable")
    return [names[int(day)] for day in ranked.index[:top]]


def detect_anomalies(page_views_by_day: Mapping[str, int]) -> List[Anomaly]:
    """
    Compare today's page views (the latest recorded day) with the mean of the
    previous days. Needs more than 7 recorded days.
    """
    if len(page_views_by_day) <= MIN_HISTORY_DAYS:
        return []

    ordered = [page_views_by_day[key] for key in sorted(page_views_by_day)]
    history = np.asarray(ordered[:-1], dtype=float)
    today = float(ordered[-1])
    avg = float(history.mean())
    if avg <= 0:
        return []

    if today > avg * SPIKE_FACTOR:
        return [Anomaly(
            type="traffic_spike",
            title="Unusual Traffic Spike",
            message=f"Today's traffic is {(today / avg - 1) * 100:.0f}% higher than average. "
                    f"Check for viral content or bot traffic.",
            severity="medium",
            metric=today,
        )]
    if today < avg * DROP_FACTOR:
        return [Anomaly(
            type="traffic_drop",
            title="Traffic Drop Detected",
            message=f"Today's traffic is {(1 - today / avg) * 100:.0f}% lower than average. "
                    f"Check for technical issues or external factors.",
            severity="high",
            metric=today,
        )]
    return []


def analyze_trends(
    history: Sequence[DailySnapshot],
    page_views_by_hour: Sequence[int] = (),
    page_views_by_day: Optional[Mapping[str, int]] = None,
    now: Optional[datetime] = None
) -> TrendReport:
    """
    Build a full trend report.

    Args:
        history: Daily snapshots ordered oldest first
        page_views_by_hour: 24 hourly page-view counters
        page_views_by_day: ISO date -> page views
        now: Reference time (forecast dates start the day after)

    Returns:
        TrendReport; trends, forecast and seasonality are empty with fewer
        than 7 days of history
    """
    now = coerce_utc(now) or utcnow()
    page_views_by_day = page_views_by_day or {}
    history = sorted(history, key=lambda s: s.date)
    anomalies = detect_anomalies(page_views_by_day)

    if len(history) < MIN_HISTORY_DAYS:
        logger.debug(f"Trend analysis skipped: {len(history)} days of history")
        return TrendReport(
            trends={},
            forecast=[],
            seasonality=Seasonality(),
            anomalies=anomalies,
            computed_at=now,
            history_days=len(history),
        )

    revenues = [s.revenue for s in history]
    trends = {
        "revenue": direction(revenues),
        "orders": direction([s.orders for s in history]),
        "traffic": direction([s.visitors for s in history]),
    }

    try:
        forecast = forecast_revenue(revenues, trends["revenue"].change, now.date())
    except InsufficientDataError as e:
        logger.debug(f"Forecast skipped: {e.message}")
        forecast = []

    return TrendReport(
        trends=trends,
        forecast=forecast,
        seasonality=Seasonality(
            peak_hours=peak_hours(page_views_by_hour),
            peak_days=peak_days(page_views_by_day),
        ),
        anomalies=anomalies,
        computed_at=now,
        history_days=len(history),
    )
