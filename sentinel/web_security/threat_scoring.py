"""
Threat scoring engine

Composes the signal analyzers into one ThreatAnalysis per request.

The aggregate is suspicious when any analyzer says so, independent of the
score. The risk score is the sum of analyzer scores capped at 100 and is used
only for tiering and automated blocking.
"""

import logging
from typing import List, Optional, Tuple

from ..core.config import ThresholdConfig
from ..core.models import RequestContext, ThreatAnalysis
from ..monitoring.sliding_window import SlidingWindowTracker
from .analyzers import ANALYZERS, Analyzer

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 100


class ThreatScoringEngine:
    """
    Runs every analyzer against a request

    Reads the tracker but never mutates it; the caller records the request
    before analysis and the suspicious outcome after.
    """

    def __init__(self, tracker: SlidingWindowTracker,
                 thresholds: Optional[ThresholdConfig] = None,
                 analyzers: Optional[List[Tuple[str, str, Analyzer]]] = None):
        self.tracker = tracker
        self.thresholds = thresholds or ThresholdConfig()
        self.analyzers = list(analyzers) if analyzers is not None else list(ANALYZERS)

    def analyze_threat(self, context: RequestContext) -> ThreatAnalysis:
        """
        Score a request

        Args:
            context: Request to analyze

        Returns:
            ThreatAnalysis with ordered, de-duplicated threat tags
        """
        threats = []
        total = 0
        suspicious = False
        analyses = {}

        for name, tag, analyzer in self.analyzers:
            verdict = analyzer(context, self.tracker, self.thresholds)
            analyses[name] = verdict

            if verdict.suspicious or verdict.score > 0:
                if tag not in threats:
                    threats.append(tag)
                total += verdict.score
            if verdict.suspicious:
                suspicious = True

        analysis = ThreatAnalysis(
            is_suspicious=suspicious,
            threats=threats,
            risk_score=max(0, min(total, MAX_RISK_SCORE)),
            analyses=analyses,
        )

        if suspicious:
            logger.debug(
                f"Request {context.request_id} from {context.identity} scored "
                f"{analysis.risk_score}: {', '.join(threats)}"
            )
        return analysis
