"""
Signature rule table for the signal analyzers

Each rule is data: a threat tag, the compiled patterns that match it, the
score a match contributes and whether a match alone makes a request
suspicious. Analyzers evaluate rules through SignatureRule.matches(); adding or removing
a signature never needs new control flow.
"""

import re
from dataclasses import dataclass
from typing import List, Pattern, Sequence, Tuple

RULESET_VERSION = "2024.1"


@dataclass(frozen=True)
class SignatureRule:
    """One tagged signature family"""
    tag: str
    patterns: Tuple[Pattern, ...]
    score: int
    triggers_suspicious: bool = True

    def matches(self, text: str) -> bool:
        """True if any pattern matches the text"""
        if not text:
            return False
        return any(pattern.search(text) for pattern in self.patterns)

    def matching_patterns(self, text: str) -> List[str]:
        """Source of every pattern that matches, for explanations"""
        if not text:
            return []
        return [pattern.pattern for pattern in self.patterns if pattern.search(text)]


def _compile(patterns: Sequence[str], flags: int = re.IGNORECASE) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


# ============================================================================
# SIGNATURE FAMILIES
# ============================================================================

XSS_PATTERNS = [
    r"<script[^>]*>.*?</script>",
    r"javascript\s*:",
    r"vbscript\s*:",
    r"on(load|error|click|focus|blur|mouseover|mouseout)\s*=",
    r"<iframe[^>]*>",
    r"<object[^>]*>",
]

SQL_INJECTION_PATTERNS = [
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE)\s+",
    r"\bUNION\s+SELECT\b",
    r"'(\s*(OR|AND)\s+.*=)|('.*;\s*--)",
    r"(;|'|\"|`)\s*(DROP|DELETE|UPDATE|INSERT)",
    r"'\s*(OR|AND)\s+\d+\s*=\s*\d+",
    r"'[^']*--",
]

PATH_TRAVERSAL_PATTERNS = [
    r"\.\./",
    r"\.\.\\+",
    r"%2e%2e%2f",
    r"%2e%2e%5c",
    r"%2e%2e/",
    r"\.\.%2f",
    r"/etc/passwd",
    r"/etc/shadow",
    r"/windows/system32",
]

COMMAND_INJECTION_PATTERNS = [
    r"\|\s*(rm|del|format|wget|curl|nc|netcat)\b",
    r";\s*(rm|del|format|wget|curl|nc|netcat|python|perl|ruby|php|bash|sh|cmd|powershell)\b",
    r"`.*`",
]

DATA_EXFILTRATION_PATTERNS = [
    r"data:.*base64",
    r"data:text/html",
    r"data:application/javascript",
]

# General malicious-content family: every signature the content analyzer
# looks for, across injection classes.
MALICIOUS_CONTENT_PATTERNS = (
    XSS_PATTERNS
    + [r"<embed[^>]*>", r"<link[^>]*>", r"<meta[^>]*>"]
    + SQL_INJECTION_PATTERNS[:4]
    + PATH_TRAVERSAL_PATTERNS[:4]
    + COMMAND_INJECTION_PATTERNS
    + DATA_EXFILTRATION_PATTERNS
)

SUSPICIOUS_USER_AGENT_PATTERNS = [
    r"sqlmap",
    r"nikto",
    r"nessus",
    r"nmap",
    r"<script",
    r"javascript:",
    r"vbscript:",
    r"python-requests",
    r"libwww-perl",
    r"wget",
    r"curl/[0-9]",
]

BOT_USER_AGENT_PATTERNS = [
    r"bot",
    r"crawler",
    r"spider",
    r"scraper",
    r"python-requests",
    r"curl",
    r"wget",
]


# ============================================================================
# RULE TABLE
# ============================================================================

MALICIOUS_CONTENT_RULE = SignatureRule(
    tag='malicious_content',
    patterns=_compile(MALICIOUS_CONTENT_PATTERNS),
    score=40,
)

PATH_TRAVERSAL_RULE = SignatureRule(
    tag='path_traversal',
    patterns=_compile(PATH_TRAVERSAL_PATTERNS),
    score=45,
)

SQL_INJECTION_RULE = SignatureRule(
    tag='sql_injection',
    patterns=_compile(SQL_INJECTION_PATTERNS),
    score=50,
)

XSS_RULE = SignatureRule(
    tag='xss_attempt',
    patterns=_compile(XSS_PATTERNS, re.IGNORECASE | re.DOTALL),
    score=45,
)

SUSPICIOUS_USER_AGENT_RULE = SignatureRule(
    tag='suspicious_user_agent',
    patterns=_compile(SUSPICIOUS_USER_AGENT_PATTERNS),
    score=35,
)

# Bot signatures are informational: the bot analyzer only marks a request
# suspicious on request volume.
BOT_SIGNATURE_RULE = SignatureRule(
    tag='bot_activity',
    patterns=_compile(BOT_USER_AGENT_PATTERNS),
    score=10,
    triggers_suspicious=False,
)

RULE_TABLE = {
    rule.tag: rule for rule in (
        MALICIOUS_CONTENT_RULE,
        PATH_TRAVERSAL_RULE,
        SQL_INJECTION_RULE,
        XSS_RULE,
        SUSPICIOUS_USER_AGENT_RULE,
        BOT_SIGNATURE_RULE,
    )
}


def get_rule(tag: str) -> SignatureRule:
    """Look up a rule by threat tag"""
    return RULE_TABLE[tag]
