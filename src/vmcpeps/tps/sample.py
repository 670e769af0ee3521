"""Monte-Carlo sample: a configuration together with its contracted network."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import logging
from typing import Sequence

import jax
import jax.numpy as jnp
import numpy as np

from vmcpeps.tn2d.lattice import HORIZONTAL, LEFT, RIGHT
from vmcpeps.tn2d.network import TensorNetwork2D
from vmcpeps.tn2d.truncate import BMPSTruncatePara
from vmcpeps.tps.split_index_tps import SplitIndexTPS

logger = logging.getLogger(__name__)

__all__ = ["TPSSample", "random_configuration"]


def random_configuration(
    key: jax.Array, shape: tuple[int, int], occupancy: Sequence[int]
) -> np.ndarray:
    """Random configuration with exactly ``occupancy[v]`` sites in state ``v``."""
    n_rows, n_cols = shape
    occupancy = [int(n) for n in occupancy]
    if any(n < 0 for n in occupancy) or sum(occupancy) != n_rows * n_cols:
        raise ValueError(
            f"Occupation numbers {occupancy} do not fill a {n_rows}x{n_cols} lattice."
        )
    values = jnp.repeat(jnp.arange(len(occupancy)), jnp.asarray(occupancy),
                        total_repeat_length=n_rows * n_cols)
    return np.asarray(jax.random.permutation(key, values)).reshape(n_rows, n_cols)


class TPSSample:
    """Configuration, its sliced network and its amplitude.

    The network is left with the row-0 window seeded, which is the state the
    amplitude was read from; energy solvers regenerate whatever they need.
    """

    def __init__(
        self,
        sitps: SplitIndexTPS,
        configuration,
        trunc_para: BMPSTruncatePara,
    ):
        self.configuration = np.asarray(configuration)
        self.trunc_para = trunc_para
        self.tn = TensorNetwork2D(sitps, self.configuration)
        self.amplitude = self.contract()

    def __repr__(self) -> str:
        return f"TPSSample(shape={self.configuration.shape}, amplitude={self.amplitude})"

    def contract(self) -> jax.Array:
        """Amplitude ``<configuration|TPS>`` with the sample's truncation policy."""
        tn = self.tn
        tn.grow_bmps_for_row(0, self.trunc_para)
        tn.grow_full_bten(RIGHT, 0, min(2, tn.cols), True)
        tn.init_bten(LEFT, 0)
        amplitude = tn.trace((0, 0), HORIZONTAL)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("sample amplitude=%s", complex(amplitude))
        return amplitude
