"""
SnapshotEvaluator Class - Turns window state into an assessment

This module computes request rate, error ratio and threat level from a
MetricsWindow. It never mutates the window.
"""

from dataclasses import dataclass
from typing import List

from guildsite.models.data_models import SecuritySnapshot, SourceCount, StatusLevel
from guildsite.services.metrics import MetricsWindow


@dataclass(frozen=True)
class Thresholds:
    rpm_warn: int = 400
    rpm_crit: int = 600
    error_warn: float = 0.10
    error_crit: float = 0.20


class SnapshotEvaluator:
    """
    Derives a SecuritySnapshot from a MetricsWindow.
    Responsibilities:
    - Extrapolate requests per minute from the window sample
    - Compute the server error ratio
    - Classify the level and explain non-OK levels
    - Rank the top sources
    """

    def __init__(self, thresholds: Thresholds = Thresholds(), top_n: int = 5):
        self.thresholds = thresholds
        self.top_n = top_n

    def evaluate(self, window: MetricsWindow, now: int, disaster_mode: bool = False) -> SecuritySnapshot:
        requests_in_window = window.request_count
        rpm = round(requests_in_window / (window.window_ms / 1000) * 60)

        status_counts = window.status_counts()
        total_responses = sum(status_counts.values()) or 1
        errors = sum(count for code, count in status_counts.items() if code >= 500)
        error_ratio = errors / total_responses

        source_counts = window.source_counts()
        level = self.classify(rpm, error_ratio)

        return SecuritySnapshot(
            since=now - window.window_ms,
            rpm=rpm,
            requests_in_window=requests_in_window,
            unique_sources=len(source_counts),
            total_responses=total_responses,
            error_ratio=error_ratio,
            status_level=level,
            top_sources=self._top_sources(source_counts),
            disaster_mode=disaster_mode,
            notes=self._notes(level, rpm, error_ratio),
        )

    def classify(self, rpm: int, error_ratio: float) -> StatusLevel:
        t = self.thresholds
        if rpm >= t.rpm_crit or error_ratio >= t.error_crit:
            return StatusLevel.CRITICAL
        if rpm >= t.rpm_warn or error_ratio >= t.error_warn:
            return StatusLevel.WARNING
        return StatusLevel.OK

    def _top_sources(self, source_counts: dict) -> List[SourceCount]:
        # sorted() is stable, so ties keep first-registered order
        ranked = sorted(source_counts.items(), key=lambda kv: kv[1], reverse=True)
        return [SourceCount(source=s, count=c) for s, c in ranked[: self.top_n]]

    def _notes(self, level: StatusLevel, rpm: int, error_ratio: float) -> List[str]:
        if level is StatusLevel.OK:
            return []

        t = self.thresholds
        notes: List[str] = []
        if rpm >= t.rpm_warn:
            notes.append(f"High traffic ({rpm}/min)")
        if error_ratio >= t.error_warn:
            notes.append(f"High error rate ({error_ratio * 100:.1f}%)")
        return notes
