"""Per-sample energy and log-derivative statistics."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import logging
from typing import Sequence

import jax
import jax.numpy as jnp
import numpy as np

from vmcpeps.tps.split_index_tps import SplitIndexTPS

logger = logging.getLogger(__name__)

__all__ = ["SampleAccumulator"]


class SampleAccumulator:
    """Running sums of ``O*`` and ``O* E`` for every site and basis value.

    ``O*`` of a sample is ``conj(hole) / conj(psi)`` placed at the basis value
    the site holds in that sample; the other basis slices receive zero. The
    accumulator owns both grids and hands out fresh arrays on read.
    """

    def __init__(self, sitps: SplitIndexTPS):
        self.shape = sitps.shape
        self.dtype = sitps.dtype
        self._site_shapes = [
            [sitps[(r, c)].shape for c in range(sitps.cols)] for r in range(sitps.rows)
        ]
        self.clear()

    def clear(self) -> None:
        self._o_sum = [[jnp.zeros(s, dtype=self.dtype) for s in row] for row in self._site_shapes]
        self._oe_sum = [[jnp.zeros(s, dtype=self.dtype) for s in row] for row in self._site_shapes]
        self._energies: list[complex] = []

    @property
    def n_samples(self) -> int:
        return len(self._energies)

    def add(
        self,
        configuration,
        amplitude: jax.Array,
        energy: jax.Array,
        holes: Sequence[Sequence[jax.Array]],
    ) -> None:
        """Record one sample; ``holes`` are the conjugated holes of the solver."""
        configuration = np.asarray(configuration)
        if configuration.shape != self.shape:
            raise ValueError(
                f"Configuration shape {configuration.shape} does not match lattice {self.shape}"
            )
        inv_psi_conj = 1.0 / jnp.conj(amplitude)
        for r in range(self.shape[0]):
            for c in range(self.shape[1]):
                value = int(configuration[r, c])
                o_star = holes[r][c] * inv_psi_conj
                self._o_sum[r][c] = self._o_sum[r][c].at[value].add(o_star)
                self._oe_sum[r][c] = self._oe_sum[r][c].at[value].add(o_star * energy)
        self._energies.append(complex(energy))

    def _require_samples(self) -> int:
        if not self._energies:
            raise ValueError("No samples have been accumulated.")
        return len(self._energies)

    def energy_mean(self) -> complex:
        n = self._require_samples()
        return sum(self._energies) / n

    def energy_error(self) -> float:
        """Standard error of the mean energy, ignoring autocorrelation."""
        n = self._require_samples()
        if n < 2:
            return 0.0
        energies = np.asarray(self._energies)
        return float(np.sqrt(np.sum(np.abs(energies - energies.mean()) ** 2) / (n * (n - 1))))

    def gradient(self) -> list[list[jax.Array]]:
        """``E[O* E] - E[O*] E[E]`` shaped like the split-index TPS."""
        n = self._require_samples()
        e_mean = self.energy_mean()
        grad = [
            [oe / n - o / n * e_mean for o, oe in zip(o_row, oe_row)]
            for o_row, oe_row in zip(self._o_sum, self._oe_sum)
        ]
        if logger.isEnabledFor(logging.DEBUG):
            norm = np.sqrt(sum(float(jnp.sum(jnp.abs(g) ** 2)) for row in grad for g in row))
            logger.debug("gradient over %d samples: |g|=%.6e E=%s", n, norm, e_mean)
        return grad
