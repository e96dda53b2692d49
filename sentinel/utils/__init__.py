"""
Utility modules: logging setup and file persistence.
"""

from .logging_utils import JSONFormatter, setup_logger
from .storage import SecurityStore

__all__ = ['JSONFormatter', 'setup_logger', 'SecurityStore']
