"""
Utility functions and helper classes
"""

from .logger import get_logger
from .formatting import format_bytes, format_uptime
from .notification import NotificationManager
from .threads import run_blocking

__all__ = [
    'get_logger',
    'format_bytes',
    'format_uptime',
    'NotificationManager',
    'run_blocking',
]
