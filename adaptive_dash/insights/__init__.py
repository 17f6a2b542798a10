from __future__ import annotations

from .engine import Insight, DataQualityIssue, FunnelStage, InsightsReport, generate_insights
