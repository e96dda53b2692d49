"""
Request analysis: signature rules, signal analyzers and the threat scoring engine.
"""

from .rules import RULESET_VERSION, RULE_TABLE, SignatureRule
from .analyzers import ANALYZERS
from .threat_scoring import ThreatScoringEngine
from .request_context import build_context, descriptor_from_flask

__all__ = [
    'RULESET_VERSION',
    'RULE_TABLE',
    'SignatureRule',
    'ANALYZERS',
    'ThreatScoringEngine',
    'build_context',
    'descriptor_from_flask',
]
