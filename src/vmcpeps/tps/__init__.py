"""Split-index TPS, Monte-Carlo samples and their statistics."""
from __future__ import annotations

from vmcpeps.tps.accumulator import SampleAccumulator
from vmcpeps.tps.sample import TPSSample, random_configuration
from vmcpeps.tps.split_index_tps import SplitIndexTPS

__all__ = [
    "SplitIndexTPS",
    "TPSSample",
    "random_configuration",
    "SampleAccumulator",
]
