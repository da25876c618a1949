"""
Bundled Instruments

Wall-clock runtime and peak allocation measurement.
"""

from benchmatrix.core.types import InstrumentConfig

from .base import Instrument


class RuntimeInstrument(Instrument):
    """Times ``reps`` calls of the routine per measurement, after warmup."""

    mode = "runtime"
    required_keys = ("elapsed_ns", "reps")

    def __init__(self, name: str, config: InstrumentConfig):
        super().__init__(name, config)
        self.warmup = self.int_option("warmup", 1)
        self.reps = self.int_option("reps", 1, minimum=1)


class AllocationInstrument(Instrument):
    """Reports the peak traced allocation of ``reps`` calls per measurement."""

    mode = "allocation"
    required_keys = ("peak_bytes", "reps")

    def __init__(self, name: str, config: InstrumentConfig):
        super().__init__(name, config)
        self.reps = self.int_option("reps", 1, minimum=1)
