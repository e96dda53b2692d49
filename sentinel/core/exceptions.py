"""
Exception hierarchy for Request Sentinel.

Only configuration and lookup problems surface as exceptions. Persistence
failures are reported by the storage layer as a boolean result so that the
request path never depends on disk availability.
"""


class SentinelError(Exception):
    """Base exception for all Request Sentinel errors"""
    pass


class ConfigurationError(SentinelError):
    """Raised when an explicitly requested configuration file cannot be parsed"""
    pass


class PersistenceError(SentinelError):
    """Raised when a durable write cannot be completed"""
    pass


class IncidentNotFoundError(SentinelError):
    """Raised when an incident id does not exist in the incident store"""
    pass
