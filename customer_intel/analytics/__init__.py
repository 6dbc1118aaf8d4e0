"""
Analytics

Trend/seasonality/anomaly analysis over the daily history and the rule-based
insight generator.
"""

from customer_intel.analytics.insights import Insight, InsightReport, generate_insights
from customer_intel.analytics.trends import (
    Anomaly,
    ForecastPoint,
    MetricTrend,
    Seasonality,
    TrendDirection,
    TrendReport,
    analyze_trends,
    direction,
)

__all__ = [
    "Insight",
    "InsightReport",
    "generate_insights",
    "Anomaly",
    "ForecastPoint",
    "MetricTrend",
    "Seasonality",
    "TrendDirection",
    "TrendReport",
    "analyze_trends",
    "direction",
]
