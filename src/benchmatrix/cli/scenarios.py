"""
Scenario Input

Builds benchmark scenarios from command-line options and YAML scenario
files. A parameter given several values expands into one scenario per
combination.
"""

from itertools import product
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml

from benchmatrix.benchmark.types import BenchmarkScenario
from benchmatrix.core.exceptions import InvalidConfigurationError, UsageError


def parse_param_options(params: Sequence[str]) -> Dict[str, List[str]]:
    """
    Parse ``--param name=v1,v2`` options into value lists.

    Raises:
        UsageError: For malformed or repeated parameters
    """
    values: Dict[str, List[str]] = {}
    for item in params:
        name, sep, raw = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise UsageError(f"Parameter must look like name=value[,value...], got '{item}'")
        if name in values:
            raise UsageError(f"Parameter '{name}' given more than once")
        values[name] = raw.split(",")
    return values


def expand_parameters(values: Dict[str, List[str]]) -> List[Dict[str, str]]:
    """Every assignment of one value per parameter, in declaration order."""
    names = list(values)
    return [dict(zip(names, combination)) for combination in product(*(values[n] for n in names))]


def scenarios_from_options(targets: Sequence[str],
                           params: Sequence[str] = (),
                           before: Sequence[str] = (),
                           after: Sequence[str] = ()) -> List[BenchmarkScenario]:
    """Scenarios for ``--benchmark`` targets sharing the same parameters."""
    assignments = expand_parameters(parse_param_options(params))
    return [
        BenchmarkScenario(target=target, parameters=assignment,
                          before_experiment=tuple(before), after_experiment=tuple(after))
        for target in targets
        for assignment in assignments
    ]


def load_scenario_file(path: Path) -> List[BenchmarkScenario]:
    """
    Read scenarios from YAML.

    The document is a list of entries (or a mapping with a ``scenarios``
    list). Each entry has ``target`` and optional ``parameters`` (a value
    may be a list), ``before`` and ``after``.

    Raises:
        InvalidConfigurationError: If the file is unreadable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise InvalidConfigurationError(f"Cannot read scenario file {path}: {e}")

    if isinstance(document, dict):
        document = document.get("scenarios")
    if not isinstance(document, list):
        raise InvalidConfigurationError(f"Scenario file {path} must contain a list of scenarios")

    scenarios: List[BenchmarkScenario] = []
    for position, entry in enumerate(document, start=1):
        if not isinstance(entry, dict) or not entry.get("target"):
            raise InvalidConfigurationError(f"Scenario {position} in {path} needs a target")

        parameters = entry.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise InvalidConfigurationError(f"Parameters of scenario {position} in {path} must be a mapping")

        values = {str(name): [_scalar(v) for v in _as_list(value)] for name, value in parameters.items()}
        for assignment in expand_parameters(values):
            scenarios.append(BenchmarkScenario(
                target=str(entry["target"]),
                parameters=assignment,
                before_experiment=tuple(str(r) for r in _as_list(entry.get("before"))),
                after_experiment=tuple(str(r) for r in _as_list(entry.get("after"))),
            ))
    return scenarios


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
