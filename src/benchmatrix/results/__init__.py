"""
Results Module

Result processor contract, bundled sinks and the factory instantiating
the configured ones.
"""

from typing import List

from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.utils.loading import class_identifier

from .base import ResultProcessor
from .console import ConsoleResultProcessor
from .jsonl import JsonLinesResultProcessor


def create_result_processors(resolver: ConfigResolver) -> List[ResultProcessor]:
    """
    Instantiate every configured result processor, ordered by class name.

    If one constructor fails, processors already created are closed before
    the error propagates.
    """
    processors: List[ResultProcessor] = []
    try:
        for cls in sorted(resolver.get_configured_result_processors(), key=class_identifier):
            processors.append(cls(resolver.get_result_processor_config(cls)))
    except Exception:
        for processor in processors:
            processor.close()
        raise
    return processors


__all__ = [
    "ResultProcessor",
    "ConsoleResultProcessor",
    "JsonLinesResultProcessor",
    "create_result_processors",
]
