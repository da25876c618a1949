"""
Utils Module

Logging configuration, async helpers and class loading.
"""

from .logging import setup_logging, get_logger, get_trial_logger, PerformanceTimer
from .async_helpers import create_task_with_name, cancel_tasks
from .loading import load_class, class_identifier

__all__ = [
    "setup_logging",
    "get_logger",
    "get_trial_logger",
    "PerformanceTimer",
    "create_task_with_name",
    "cancel_tasks",
    "load_class",
    "class_identifier",
]
