"""
Experiment Matrix

Expands scenarios, runtime variants and instruments into the ordered list
of experiments a run executes.
"""

from itertools import product
from typing import List, Sequence

from benchmatrix.core.exceptions import UsageError
from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.core.types import VmConfig
from benchmatrix.utils.logging import get_logger

from .types import BenchmarkScenario, Experiment

logger = get_logger(__name__)

DEFAULT_INSTRUMENTS = ("runtime",)


class ExperimentMatrixBuilder:
    """
    Builds the cartesian product scenario x runtime variant x instrument.

    Ordering is deterministic: scenarios vary slowest, instruments fastest,
    each axis in the order given.
    """

    def __init__(self,
                 scenarios: Sequence[BenchmarkScenario],
                 vm_configs: Sequence[VmConfig],
                 instrument_names: Sequence[str]):
        _reject_duplicates("runtime variant", [vm.name for vm in vm_configs])
        _reject_duplicates("instrument", list(instrument_names))
        self.scenarios = list(scenarios)
        self.vm_configs = list(vm_configs)
        self.instrument_names = list(instrument_names)

    @classmethod
    def from_names(cls,
                   resolver: ConfigResolver,
                   device,
                   scenarios: Sequence[BenchmarkScenario],
                   vm_names: Sequence[str] = (),
                   instrument_names: Sequence[str] = ()) -> "ExperimentMatrixBuilder":
        """
        Resolve runtime variant and instrument names through ``resolver``.

        Without variant names the device's default variant is used; without
        instrument names the ``runtime`` instrument is used.

        Raises:
            UsageError: If a name is given twice
            MissingConfigurationError: If an instrument is not configured
        """
        _reject_duplicates("runtime variant", list(vm_names))
        if vm_names:
            vm_configs = [resolver.get_vm_config(name) for name in vm_names]
        else:
            vm_configs = [device.default_vm_config()]

        instrument_names = list(instrument_names) or list(DEFAULT_INSTRUMENTS)
        _reject_duplicates("instrument", instrument_names)
        for name in instrument_names:
            resolver.get_instrument_config(name)

        return cls(scenarios, vm_configs, instrument_names)

    def build(self) -> List[Experiment]:
        experiments = [
            Experiment(scenario=scenario, vm_config=vm_config, instrument_name=instrument)
            for scenario, vm_config, instrument in product(
                self.scenarios, self.vm_configs, self.instrument_names
            )
        ]
        logger.info(
            f"Built matrix of {len(experiments)} experiments "
            f"({len(self.scenarios)} scenarios x {len(self.vm_configs)} variants x "
            f"{len(self.instrument_names)} instruments)"
        )
        return experiments


def _reject_duplicates(kind: str, names: List[str]) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise UsageError(f"Duplicate {kind} '{name}'")
        seen.add(name)
