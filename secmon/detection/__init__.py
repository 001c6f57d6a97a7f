"""Traffic spike detection, request anomaly scoring and log classification."""

from .spike import SpikeDetector, SlidingWindowSpikeDetector
from .scoring import AnomalyScore, score_request
from .classifier import SuspiciousActivityClassifier, find_risk_terms, assign_severity

__all__ = [
    'SpikeDetector',
    'SlidingWindowSpikeDetector',
    'AnomalyScore',
    'score_request',
    'SuspiciousActivityClassifier',
    'find_risk_terms',
    'assign_severity'
]
