"""
Signal analyzers

Each analyzer inspects one facet of a request and returns an AnalyzerVerdict.
Analyzers are pure: they read the sliding window tracker but never write to
it, and never perform I/O.

Analyzer signature:
    analyzer(context, tracker, thresholds) -> AnalyzerVerdict
"""

import json
from typing import Any, Callable, List, Tuple

from ..core.config import ThresholdConfig
from ..core.models import AnalyzerVerdict, EventKind, RequestContext
from ..monitoring.sliding_window import SlidingWindowTracker
from .rules import (
    BOT_SIGNATURE_RULE,
    MALICIOUS_CONTENT_RULE,
    PATH_TRAVERSAL_RULE,
    SQL_INJECTION_RULE,
    SUSPICIOUS_USER_AGENT_RULE,
    XSS_RULE,
    SignatureRule,
)

Analyzer = Callable[[RequestContext, SlidingWindowTracker, ThresholdConfig], AnalyzerVerdict]

MISSING_USER_AGENT_SCORE = 20
MULTIPLE_USER_AGENTS_SCORE = 25
RATE_LIMIT_SCORE = 30
SEVERE_RATE_LIMIT_SCORE = 50
LARGE_PAYLOAD_SCORE = 15
BOT_VOLUME_SCORE = 20


def as_text(value: Any) -> str:
    """
    Render a request facet as text for signature matching

    Anything that cannot be rendered is treated as empty input.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    if isinstance(value, (dict, list, tuple)) or hasattr(value, 'items'):
        if not value:
            return ""
        try:
            return json.dumps(dict(value) if hasattr(value, 'items') else list(value), default=str)
        except (TypeError, ValueError):
            return ""
    return str(value)


def _match_inputs(rule: SignatureRule, inputs: List[Tuple[str, Any]]) -> AnalyzerVerdict:
    """Score a rule once per matching input"""
    verdict = AnalyzerVerdict()
    for label, value in inputs:
        if rule.matches(as_text(value)):
            verdict.score += rule.score
            verdict.issues.append(f"{rule.tag} in {label}")
            if rule.triggers_suspicious:
                verdict.suspicious = True
    return verdict


# ============================================================================
# ANALYZERS
# ============================================================================

def analyze_rate(context: RequestContext, tracker: SlidingWindowTracker,
                 thresholds: ThresholdConfig) -> AnalyzerVerdict:
    """Request volume and repeated suspicious activity per identity"""
    verdict = AnalyzerVerdict()
    window = thresholds.rate_window_seconds

    requests = tracker.recent_count(context.identity, EventKind.REQUEST, window, now=context.timestamp)
    if requests > thresholds.requests_per_minute:
        verdict.suspicious = True
        verdict.score += RATE_LIMIT_SCORE
        verdict.issues.append(f"rate_limit_exceeded: {requests} requests in {window}s")

    suspicious = tracker.recent_count(context.identity, EventKind.SUSPICIOUS, window, now=context.timestamp)
    if suspicious > thresholds.suspicious_requests_per_minute:
        verdict.suspicious = True
        verdict.score += SEVERE_RATE_LIMIT_SCORE
        verdict.issues.append(f"rate_limit_exceeded: {suspicious} suspicious requests in {window}s")

    return verdict


def analyze_content(context: RequestContext, tracker: SlidingWindowTracker,
                    thresholds: ThresholdConfig) -> AnalyzerVerdict:
    """Malicious signatures anywhere in URL, query, body or referer"""
    return _match_inputs(MALICIOUS_CONTENT_RULE, [
        ('url', context.url),
        ('query', context.query),
        ('body', context.body),
        ('referer', context.referer),
    ])


def analyze_user_agent(context: RequestContext, tracker: SlidingWindowTracker,
                       thresholds: ThresholdConfig) -> AnalyzerVerdict:
    """Blacklisted, missing or rapidly rotating user agents"""
    verdict = AnalyzerVerdict()
    agent = context.user_agent

    if not agent:
        verdict.suspicious = True
        verdict.score += MISSING_USER_AGENT_SCORE
        verdict.issues.append("suspicious_user_agent: missing")
    elif SUSPICIOUS_USER_AGENT_RULE.matches(agent):
        verdict.suspicious = True
        verdict.score += SUSPICIOUS_USER_AGENT_RULE.score
        verdict.issues.append("suspicious_user_agent: blacklisted signature")

    distinct = tracker.distinct_user_agents(
        context.identity, thresholds.user_agent_window_seconds, now=context.timestamp
    )
    if distinct > thresholds.suspicious_user_agents:
        verdict.suspicious = True
        verdict.score += MULTIPLE_USER_AGENTS_SCORE
        verdict.issues.append(f"suspicious_user_agent: {distinct} distinct agents")

    return verdict


def analyze_payload(context: RequestContext, tracker: SlidingWindowTracker,
                    thresholds: ThresholdConfig) -> AnalyzerVerdict:
    """Oversized bodies raise the score but are not suspicious on their own"""
    verdict = AnalyzerVerdict()
    if context.content_length > thresholds.large_payload_threshold:
        verdict.score += LARGE_PAYLOAD_SCORE
        verdict.issues.append(f"large_payload: {context.content_length} bytes")
    return verdict


def analyze_path(context: RequestContext, tracker: SlidingWindowTracker,
                 thresholds: ThresholdConfig) -> AnalyzerVerdict:
    return _match_inputs(PATH_TRAVERSAL_RULE, [('url', context.url)])


def analyze_sql(context: RequestContext, tracker: SlidingWindowTracker,
                thresholds: ThresholdConfig) -> AnalyzerVerdict:
    return _match_inputs(SQL_INJECTION_RULE, [
        ('url', context.url),
        ('query', context.query),
        ('body', context.body),
    ])


def analyze_xss(context: RequestContext, tracker: SlidingWindowTracker,
                thresholds: ThresholdConfig) -> AnalyzerVerdict:
    return _match_inputs(XSS_RULE, [
        ('url', context.url),
        ('query', context.query),
        ('body', context.body),
    ])


def analyze_bot(context: RequestContext, tracker: SlidingWindowTracker,
                thresholds: ThresholdConfig) -> AnalyzerVerdict:
    """Automation signatures (informational) and bot-like request volume"""
    verdict = AnalyzerVerdict()

    if BOT_SIGNATURE_RULE.matches(context.user_agent):
        verdict.score += BOT_SIGNATURE_RULE.score
        verdict.issues.append("bot_activity: automation signature in user agent")

    requests = tracker.recent_count(
        context.identity, EventKind.REQUEST, thresholds.rate_window_seconds, now=context.timestamp
    )
    if requests > thresholds.bot_requests_per_minute:
        verdict.suspicious = True
        verdict.score += BOT_VOLUME_SCORE
        verdict.issues.append(f"bot_activity: {requests} requests per minute")

    return verdict


# Evaluation order; also the order threat tags appear in an analysis
ANALYZERS: List[Tuple[str, str, Analyzer]] = [
    ('rate', 'rate_limit_exceeded', analyze_rate),
    ('content', 'malicious_content', analyze_content),
    ('user_agent', 'suspicious_user_agent', analyze_user_agent),
    ('payload', 'large_payload', analyze_payload),
    ('path', 'path_traversal', analyze_path),
    ('sql', 'sql_injection', analyze_sql),
    ('xss', 'xss_attempt', analyze_xss),
    ('bot', 'bot_activity', analyze_bot),
]
