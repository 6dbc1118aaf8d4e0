"""
Insight Generator

Rule engine over the current aggregate state. Produces alerts,
opportunities, recommendations and anomalies; the triggering thresholds and
categories are stable, the message wording is not.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from customer_intel.analytics.trends import Anomaly, TrendDirection, TrendReport
from customer_intel.core.records import utcnow
from customer_intel.scoring.ltv import LTVReport, LTVSegment
from customer_intel.scoring.rfm import RFMReport, RFMSegment
from customer_intel.tracking.tracker import TrackerSnapshot

ABANDONMENT_ALERT_PCT = 70.0
CONVERSION_WARNING_PCT = 2.0
CONVERSION_MIN_PAGE_VIEWS = 100
BOUNCE_WARNING_PCT = 60.0
MOBILE_SHARE_THRESHOLD = 0.5
SHORT_SESSION_SECONDS = 60.0
SHORT_SESSION_MIN_SESSIONS = 10


@dataclass(frozen=True)
class Insight:
    kind: str                  # critical | warning | growth | retention | reactivation | timing | ux | engagement
    category: str
    title: str
    message: str
    metric: Optional[float] = None
    threshold: Optional[float] = None
    impact: Optional[str] = None
    actionable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class InsightReport:
    alerts: List[Insight] = field(default_factory=list)
    opportunities: List[Insight] = field(default_factory=list)
    recommendations: List[Insight] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)
    generated_at: Optional[datetime] = None


def _alerts(tracker: TrackerSnapshot) -> List[Insight]:
    alerts: List[Insight] = []

    abandonment = tracker.cart_abandonment_rate
    if abandonment > ABANDONMENT_ALERT_PCT:
        alerts.append(Insight(
            kind="critical",
            category="conversion",
            title="High Cart Abandonment Rate",
            message=f"Cart abandonment is at {abandonment:.1f}%. Consider exit-intent offers "
                    f"or email recovery campaigns.",
            metric=abandonment,
            threshold=ABANDONMENT_ALERT_PCT,
        ))

    conversion = tracker.conversion_rate
    if conversion < CONVERSION_WARNING_PCT and tracker.page_views_total > CONVERSION_MIN_PAGE_VIEWS:
        alerts.append(Insight(
            kind="warning",
            category="conversion",
            title="Low Conversion Rate",
            message=f"Only {conversion:.1f}% of carts convert. Review the checkout process and pricing.",
            metric=conversion,
            threshold=CONVERSION_WARNING_PCT,
        ))

    bounce = tracker.bounce_rate
    if bounce > BOUNCE_WARNING_PCT:
        alerts.append(Insight(
            kind="warning",
            category="engagement",
            title="High Bounce Rate",
            message=f"{bounce:.1f}% of visitors leave after one page. Improve landing page content and CTAs.",
            metric=bounce,
            threshold=BOUNCE_WARNING_PCT,
        ))

    return alerts


def _opportunities(
    trends: Optional[TrendReport],
    ltv: Optional[LTVReport],
    rfm: Optional[RFMReport]
) -> List[Insight]:
    opportunities: List[Insight] = []

    revenue = trends.trends.get("revenue") if trends else None
    if revenue and revenue.direction == TrendDirection.UP:
        opportunities.append(Insight(
            kind="growth",
            category="revenue",
            title="Revenue Growing",
            message=f"Revenue is up {revenue.change:.1f}% vs last week. "
                    f"Consider increasing ad spend to capitalize on momentum.",
            metric=revenue.change,
            impact="high",
        ))

    high_value = len(ltv.segments.get(LTVSegment.HIGH, ())) if ltv else 0
    if high_value > 0:
        opportunities.append(Insight(
            kind="retention",
            category="ltv",
            title="VIP Customer Segment",
            message=f"{high_value} high-value customers identified. "
                    f"Create exclusive offers or a loyalty program to retain them.",
            metric=float(high_value),
            impact="high",
            actionable=True,
        ))

    at_risk = len(rfm.segments.get(RFMSegment.AT_RISK, ())) if rfm else 0
    if at_risk > 0:
        opportunities.append(Insight(
            kind="reactivation",
            category="rfm",
            title="At-Risk Customers Need Attention",
            message=f"{at_risk} previously valuable customers are at risk of churning. "
                    f"Send win-back campaigns with special offers.",
            metric=float(at_risk),
            impact="high",
            actionable=True,
        ))

    return opportunities


def _recommendations(tracker: TrackerSnapshot, trends: Optional[TrendReport]) -> List[Insight]:
    recommendations: List[Insight] = []
    seasonality = trends.seasonality if trends else None

    if seasonality and seasonality.peak_hours:
        hours = ", ".join(f"{h}:00" for h in seasonality.peak_hours)
        recommendations.append(Insight(
            kind="timing",
            category="timing",
            title="Optimal Posting Times",
            message=f"Peak traffic hours are {hours}. Schedule promotions around these times.",
        ))

    if seasonality and seasonality.peak_days:
        recommendations.append(Insight(
            kind="timing",
            category="timing",
            title="Best Days for Sales",
            message=f"{', '.join(seasonality.peak_days)} see the most traffic. Plan flash sales for these days.",
        ))

    total_devices = sum(tracker.device_types.values())
    mobile = tracker.device_types.get("mobile", 0)
    if total_devices > 0 and mobile / total_devices > MOBILE_SHARE_THRESHOLD:
        share = mobile / total_devices
        recommendations.append(Insight(
            kind="ux",
            category="ux",
            title="Mobile-First Optimization",
            message=f"{share * 100:.0f}% of traffic is mobile. Prioritize mobile UX and page speed.",
            metric=share,
        ))

    if (tracker.sessions_total > SHORT_SESSION_MIN_SESSIONS
            and tracker.avg_session_duration_seconds < SHORT_SESSION_SECONDS):
        recommendations.append(Insight(
            kind="engagement",
            category="engagement",
            title="Improve Content Engagement",
            message=f"Average session is only {tracker.avg_session_duration_seconds:.0f}s. "
                    f"Add more engaging content.",
            metric=tracker.avg_session_duration_seconds,
        ))

    return recommendations


def generate_insights(
    tracker: TrackerSnapshot,
    trends: Optional[TrendReport] = None,
    ltv: Optional[LTVReport] = None,
    rfm: Optional[RFMReport] = None,
    now: Optional[datetime] = None
) -> InsightReport:
    """
    Evaluate every rule against the current state.

    Args:
        tracker: Real-time counters
        trends: Latest trend report
        ltv: Latest LTV report
        rfm: Latest RFM report
        now: Generation timestamp

    Returns:
        InsightReport
    """
    return InsightReport(
        alerts=_alerts(tracker),
        opportunities=_opportunities(trends, ltv, rfm),
        recommendations=_recommendations(tracker, trends),
        anomalies=list(trends.anomalies) if trends else [],
        generated_at=now or utcnow(),
    )
