"""
signal_quality.py — Accelerometer Signal Quality Scoring
=========================================================

Scores how trustworthy a normalized reading is. A resting tag should only
measure gravity, so everything is judged against an ideal 1 g magnitude with
one dominant axis:

    clarity_score     — 1 - |m - 1|, floored at 0.8 inside [0.8, 1.2] g
    magnitude_quality — excellent / good / acceptable / poor
    noise_level       — share of the magnitude not explained by the
                        dominant axis (0 = single clean axis)
    signal_stability  — very_stable / stable / moderately_stable / unstable
    recommendations   — advisory codes for operators

The analysis is advisory only: it never blocks classification, it just
flags sensors that should be recalibrated or physically checked.
"""

import logging
from dataclasses import dataclass, field

from . import config
from .normalizer import AccelerometerSample, clarity_from_magnitude

logger = logging.getLogger("door_detection.signal_quality")

# Recommendation codes
SIGNAL_TOO_WEAK = "signal_too_weak"
CHECK_SENSOR_PLACEMENT = "check_sensor_placement"
SIGNAL_TOO_STRONG = "signal_too_strong"
CHECK_FOR_INTERFERENCE = "check_for_interference"
HIGH_NOISE_DETECTED = "high_noise_detected"
CONSIDER_RECALIBRATION = "consider_recalibration"
LOW_ACTIVITY_DETECTED = "low_activity_detected"
SENSOR_MAY_BE_DISCONNECTED = "sensor_may_be_disconnected"

POOR = "poor"
UNSTABLE = "unstable"


@dataclass(frozen=True)
class SignalQualityReport:
    clarity_score: float
    magnitude_quality: str
    noise_level: float
    signal_stability: str
    recommendations: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "clarity_score": self.clarity_score,
            "magnitude_quality": self.magnitude_quality,
            "noise_level": self.noise_level,
            "signal_stability": self.signal_stability,
            "recommendations": list(self.recommendations),
        }


class SignalQualityAnalyzer:
    """Advisory signal quality scoring for normalized samples."""

    def analyze(self, sample: AccelerometerSample) -> SignalQualityReport:
        """
        Produce a full quality report for one sample.

        Args:
            sample: Normalized reading in g.

        Returns:
            SignalQualityReport.
        """
        magnitude = sample.magnitude()
        noise = self.estimate_noise_level(sample)

        return SignalQualityReport(
            clarity_score=clarity_from_magnitude(magnitude),
            magnitude_quality=self.assess_magnitude_quality(magnitude),
            noise_level=noise,
            signal_stability=self.assess_stability(magnitude),
            recommendations=self._recommendations(sample, magnitude, noise),
        )

    @staticmethod
    def assess_magnitude_quality(magnitude: float) -> str:
        for label, low, high in config.MAGNITUDE_QUALITY_BANDS:
            if low <= magnitude <= high:
                return label
        return POOR

    @staticmethod
    def estimate_noise_level(sample: AccelerometerSample) -> float:
        """
        Ratio of non-dominant-axis energy to total magnitude, capped at 1.

        A single axis carrying (almost) the whole magnitude means a clean
        gravity reading; energy spread over several axes suggests vibration
        or noise. A zero vector has no noise to speak of and returns 0.
        """
        magnitude = sample.magnitude()
        if magnitude <= 0.0:
            return 0.0
        dominant = max(abs(sample.x), abs(sample.y), abs(sample.z))
        return min(1.0, (magnitude - dominant) / magnitude)

    @staticmethod
    def assess_stability(magnitude: float) -> str:
        deviation = abs(magnitude - config.IDEAL_MAGNITUDE)
        for label, limit in config.STABILITY_BANDS:
            if deviation < limit:
                return label
        return UNSTABLE

    @staticmethod
    def _recommendations(sample: AccelerometerSample, magnitude: float,
                         noise: float) -> list:
        codes = []

        if magnitude < 0.6:
            codes += [SIGNAL_TOO_WEAK, CHECK_SENSOR_PLACEMENT]

        if magnitude > 1.4:
            codes += [SIGNAL_TOO_STRONG, CHECK_FOR_INTERFERENCE]

        if noise > config.NOISE_THRESHOLD:
            codes += [HIGH_NOISE_DETECTED, CONSIDER_RECALIBRATION]

        if abs(sample.x) + abs(sample.y) + abs(sample.z) < config.LOW_ACTIVITY_THRESHOLD:
            codes += [LOW_ACTIVITY_DETECTED, SENSOR_MAY_BE_DISCONNECTED]

        return codes

    def should_trigger_recalibration(self, sample: AccelerometerSample,
                                     report: SignalQualityReport = None) -> bool:
        """
        True when clarity < 0.5, noise is flagged, or magnitude quality is poor.

        Args:
            sample: Normalized reading.
            report: Precomputed report for the same sample (optional).
        """
        report = report or self.analyze(sample)
        return (
            report.clarity_score < config.RECALIBRATION_CLARITY_THRESHOLD
            or HIGH_NOISE_DETECTED in report.recommendations
            or report.magnitude_quality == POOR
        )
