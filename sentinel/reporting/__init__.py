"""
Security reporting.
"""

from .security_reporter import SecurityReporter

__all__ = ['SecurityReporter']
