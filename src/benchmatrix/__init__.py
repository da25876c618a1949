"""
Benchmatrix

A benchmark orchestration engine that runs every combination of benchmark
scenario, interpreter variant and measurement instrument in isolated
worker processes and forwards the recorded trials to result processors.
"""

__version__ = "1.0.0"

from .core.config import ConfigStore, load_config_store
from .core.exceptions import BenchmatrixException

__all__ = [
    "ConfigStore",
    "load_config_store",
    "BenchmatrixException",
]
