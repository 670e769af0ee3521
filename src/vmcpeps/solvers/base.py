"""Energy-solver interface driven by the boundary-MPS engine."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import abc
from typing import Callable

import jax

from vmcpeps.tn2d.lattice import SiteIdx
from vmcpeps.tn2d.truncate import BMPSTruncatePara
from vmcpeps.tps.sample import TPSSample
from vmcpeps.tps.split_index_tps import SplitIndexTPS

__all__ = ["ModelEnergySolver", "HoleGrid", "exchange_bond_energy"]

HoleGrid = list[list[jax.Array]]


class ModelEnergySolver(abc.ABC):
    """Local energy and log-derivative holes of one Monte-Carlo sample.

    Subclasses enumerate the bonds of a model and drive the sample's
    :class:`~vmcpeps.tn2d.network.TensorNetwork2D` through its sweeps. The
    truncation policy is handed to every boundary-MPS growth.
    """

    def __init__(self, trunc_para: BMPSTruncatePara):
        self.trunc_para = trunc_para

    @abc.abstractmethod
    def cal_energy_and_holes(
        self, sitps: SplitIndexTPS, sample: TPSSample
    ) -> tuple[jax.Array, HoleGrid]:
        """Return the local energy and the grid of conjugated hole tensors."""


def exchange_bond_energy(
    sitps: SplitIndexTPS,
    configuration,
    site1: SiteIdx,
    site2: SiteIdx,
    inv_psi: jax.Array,
    exchanged_trace: Callable[[jax.Array, jax.Array], jax.Array],
) -> jax.Array | float:
    """Spin-1/2 Heisenberg bond ``S1 . S2`` in the sampled basis.

    Aligned spins are an eigenstate of the bond and contribute ``+1/4``
    without touching the network. Otherwise the diagonal part gives ``-1/4``
    and the spin flip ``psi_ex / psi / 2``, where ``exchanged_trace`` gets the
    two sites' tensors with their basis values swapped.
    """
    v1 = int(configuration[site1])
    v2 = int(configuration[site2])
    if v1 == v2:
        return 0.25
    psi_ex = exchanged_trace(sitps[site1][v2], sitps[site2][v1])
    return -0.25 + 0.5 * psi_ex * inv_psi
