"""
Request context construction

Adapts an inbound request (a Flask request object or a plain descriptor
dict) into the immutable RequestContext the analyzers read. Malformed
headers, bodies or lengths are treated as empty input.
"""

import json
import logging
import time
import uuid
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..core.models import RequestContext

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"
MAX_BODY_BYTES = 1024 * 1024  # Bodies beyond this are not read for analysis


def _normalize_headers(headers: Any) -> Mapping[str, str]:
    normalized = {}
    if not headers:
        return MappingProxyType(normalized)
    try:
        items = headers.items()
    except AttributeError:
        items = headers
    try:
        for name, value in items:
            normalized[str(name).lower()] = str(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed request headers")
        normalized = {}
    return MappingProxyType(normalized)


def _parse_length(value: Any) -> int:
    try:
        length = int(value)
    except (TypeError, ValueError):
        return 0
    return max(length, 0)


def _parse_body(body: Any) -> Any:
    """Decode JSON bodies where possible; keep other text as-is"""
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    if isinstance(body, str):
        stripped = body.strip()
        if stripped[:1] in ('{', '['):
            try:
                return json.loads(stripped)
            except ValueError:
                return body
        return body
    return body


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_context(descriptor: Dict[str, Any], now: Optional[float] = None) -> RequestContext:
    """
    Build a context from a plain request descriptor

    Recognized keys: ``ip``, ``method``, ``url`` (or ``path``), ``headers``,
    ``query``, ``body``, ``content_length``, ``request_id``, ``timestamp``.
    """
    headers = _normalize_headers(descriptor.get('headers'))
    content_length = descriptor.get('content_length')
    if content_length is None:
        content_length = headers.get('content-length', 0)

    query = descriptor.get('query') or {}
    if not isinstance(query, Mapping):
        query = {}

    timestamp = descriptor.get('timestamp')
    if timestamp is None:
        timestamp = time.time() if now is None else now

    return RequestContext(
        identity=str(descriptor.get('ip') or UNKNOWN_IDENTITY),
        user_agent=headers.get('user-agent', ''),
        timestamp=float(timestamp),
        url=str(descriptor.get('url') or descriptor.get('path') or '/'),
        method=str(descriptor.get('method') or 'GET').upper(),
        headers=headers,
        body=_parse_body(descriptor.get('body')),
        query=MappingProxyType(dict(query)),
        content_length=_parse_length(content_length),
        referer=headers.get('referer', headers.get('referrer', '')),
        request_id=str(descriptor.get('request_id') or headers.get('x-request-id') or new_request_id()),
    )


def descriptor_from_flask(request, trust_proxy: bool = False) -> Dict[str, Any]:
    """
    Convert a Flask/Werkzeug request into a descriptor dict

    Args:
        request: flask.request (or any werkzeug Request)
        trust_proxy: Take the identity from X-Forwarded-For when set
    """
    ip = request.remote_addr
    if trust_proxy:
        forwarded = request.headers.get('X-Forwarded-For', '')
        if forwarded:
            ip = forwarded.split(',')[0].strip()

    content_length = request.content_length or 0
    body = None
    if 0 < content_length <= MAX_BODY_BYTES:
        body = request.get_json(silent=True)
        if body is None:
            body = request.get_data(cache=True, as_text=True)

    return {
        'ip': ip,
        'method': request.method,
        'url': request.full_path.rstrip('?') if request.query_string else request.path,
        'headers': dict(request.headers),
        'query': request.args.to_dict(flat=True),
        'body': body,
        'content_length': content_length,
    }
