"""Spin-1/2 Heisenberg solvers on square-lattice PEPS.

All solvers share the same two sweeps. The horizontal sweep runs the
boundary MPS down from the top edge; on every row it collects the holes and
horizontal bonds with a one-line window and, between two rows, the diagonal
bonds with a two-line window. The vertical sweep runs the boundary MPS in
from the left edge for the vertical bonds (and, for the triangular J1-J2
model, the vertical sqrt(5) bonds).
"""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import logging
from functools import partial

import jax
import jax.numpy as jnp

from vmcpeps.solvers.base import HoleGrid, ModelEnergySolver, exchange_bond_energy
from vmcpeps.tn2d.lattice import (
    DOWN,
    HORIZONTAL,
    LEFT,
    LEFTDOWN_TO_RIGHTUP,
    LEFTUP_TO_RIGHTDOWN,
    RIGHT,
    UP,
    VERTICAL,
)
from vmcpeps.tn2d.network import TensorNetwork2D
from vmcpeps.tn2d.truncate import BMPSTruncatePara
from vmcpeps.tps.sample import TPSSample
from vmcpeps.tps.split_index_tps import SplitIndexTPS

logger = logging.getLogger(__name__)

__all__ = [
    "SpinOneHalfHeisenbergSquare",
    "SpinOneHalfJ1J2HeisenbergSquare",
    "SpinOneHalfTriHeisenbergSqrPEPS",
    "SpinOneHalfTriJ1J2HeisenbergSqrPEPS",
]


def _diagonal_sites(row: int, col: int, nnn_dir: str, span: int):
    """Sites exchanged on a diagonal of the 2 x ``span`` window at (row, col)."""
    if nnn_dir == LEFTDOWN_TO_RIGHTUP:
        return (row + 1, col), (row, col + span - 1)
    return (row, col), (row + 1, col + span - 1)


class _HeisenbergSweeps(ModelEnergySolver):
    """Sweep driver shared by the Heisenberg solvers.

    ``_j1_diagonals`` and ``_j2_diagonals`` list the plaquette diagonals
    carrying J1 and J2 bonds; ``_j2_sqrt5`` switches on the sqrt(5) bonds of
    the triangular lattice drawn on the square PEPS.
    """

    _j1_diagonals: tuple[str, ...] = ()
    _j2_diagonals: tuple[str, ...] = ()
    _j2_sqrt5: bool = False

    def __init__(self, trunc_para: BMPSTruncatePara, j2: float = 0.0):
        super().__init__(trunc_para)
        self.j2 = float(j2)

    def cal_energy_and_holes(
        self, sitps: SplitIndexTPS, sample: TPSSample
    ) -> tuple[jax.Array, HoleGrid]:
        tn = sample.tn
        inv_psi = 1.0 / sample.amplitude
        holes: HoleGrid = [[None] * tn.cols for _ in range(tn.rows)]
        energy = [0.0, 0.0]

        self._horizontal_sweep(tn, sitps, sample.configuration, inv_psi, holes, energy)
        if tn.rows > 1:
            self._vertical_sweep(tn, sitps, sample.configuration, inv_psi, energy)

        e1, e2 = energy
        total = e1 + self.j2 * e2 if self._has_j2 else e1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s: E=%s (J1 part %s, J2 part %s)",
                type(self).__name__, complex(total), complex(e1), complex(e2),
            )
        return jnp.asarray(total), holes

    @property
    def _has_j2(self) -> bool:
        return bool(self._j2_diagonals) or self._j2_sqrt5

    def _horizontal_sweep(self, tn: TensorNetwork2D, sitps, configuration, inv_psi, holes, energy):
        trunc_para = self.trunc_para
        rows, cols = tn.rows, tn.cols
        bond = partial(exchange_bond_energy, sitps, configuration, inv_psi=inv_psi)
        tn.generate_bmps_approach(UP, trunc_para)
        for row in range(rows):
            tn.init_bten(LEFT, row)
            tn.grow_full_bten(RIGHT, row, 1, True)
            for col in range(cols):
                site1 = (row, col)
                holes[row][col] = jnp.conj(tn.punch_hole(site1, HORIZONTAL))
                if col < cols - 1:
                    site2 = (row, col + 1)
                    energy[0] += bond(
                        site1, site2,
                        exchanged_trace=partial(
                            tn.replace_nn_site_trace, site1, site2, HORIZONTAL
                        ),
                    )
                    tn.bten_move_step(RIGHT)
            if row < rows - 1:
                if cols > 1 and (self._j1_diagonals or self._has_j2):
                    self._diagonal_row(tn, row, bond, energy)
                tn.bmps_move_step(DOWN, trunc_para)

    def _diagonal_row(self, tn: TensorNetwork2D, row, bond, energy):
        cols = tn.cols
        tn.init_bten2(LEFT, row)
        tn.grow_full_bten2(RIGHT, row, 2, True)
        terms = [(0, d) for d in self._j1_diagonals] + [(1, d) for d in self._j2_diagonals]
        for col in range(cols - 1):
            for slot, nnn_dir in terms:
                site_left, site_right = _diagonal_sites(row, col, nnn_dir, 2)
                energy[slot] += bond(
                    site_left, site_right,
                    exchanged_trace=partial(
                        tn.replace_nnn_site_trace, (row, col), nnn_dir, HORIZONTAL
                    ),
                )
            if self._j2_sqrt5 and col < cols - 2:
                site_left, site_right = _diagonal_sites(row, col, LEFTDOWN_TO_RIGHTUP, 3)
                energy[1] += bond(
                    site_left, site_right,
                    exchanged_trace=partial(
                        tn.replace_sqrt5_dist_two_site_trace,
                        (row, col), LEFTDOWN_TO_RIGHTUP, HORIZONTAL,
                    ),
                )
            if col < cols - 2:
                tn.bten2_move_step(RIGHT, row)

    def _vertical_sweep(self, tn: TensorNetwork2D, sitps, configuration, inv_psi, energy):
        trunc_para = self.trunc_para
        rows, cols = tn.rows, tn.cols
        bond = partial(exchange_bond_energy, sitps, configuration, inv_psi=inv_psi)
        tn.generate_bmps_approach(LEFT, trunc_para)
        for col in range(cols):
            tn.init_bten(UP, col)
            tn.grow_full_bten(DOWN, col, 2, True)
            for row in range(rows - 1):
                site1 = (row, col)
                site2 = (row + 1, col)
                energy[0] += bond(
                    site1, site2,
                    exchanged_trace=partial(
                        tn.replace_nn_site_trace, site1, site2, VERTICAL
                    ),
                )
                if row < rows - 2:
                    tn.bten_move_step(DOWN)
            if self._j2_sqrt5 and col < cols - 1 and rows > 2:
                self._vertical_sqrt5_column(tn, col, bond, energy)
            if col < cols - 1:
                tn.bmps_move_step(RIGHT, trunc_para)

    def _vertical_sqrt5_column(self, tn: TensorNetwork2D, col, bond, energy):
        rows = tn.rows
        tn.init_bten2(UP, col)
        tn.grow_full_bten2(DOWN, col, 3, True)
        for row in range(rows - 2):
            # (row + 2, col) - (row, col + 1)
            energy[1] += bond(
                (row + 2, col), (row, col + 1),
                exchanged_trace=partial(
                    tn.replace_sqrt5_dist_two_site_trace,
                    (row, col), LEFTDOWN_TO_RIGHTUP, VERTICAL,
                ),
            )
            if row < rows - 3:
                tn.bten2_move_step(DOWN, col)


class SpinOneHalfHeisenbergSquare(_HeisenbergSweeps):
    """Nearest-neighbour Heisenberg model on the square lattice."""

    def __init__(self, trunc_para: BMPSTruncatePara):
        super().__init__(trunc_para)


class SpinOneHalfJ1J2HeisenbergSquare(_HeisenbergSweeps):
    """Square-lattice J1-J2 model; J2 acts on both plaquette diagonals."""

    _j2_diagonals = (LEFTUP_TO_RIGHTDOWN, LEFTDOWN_TO_RIGHTUP)

    def __init__(self, trunc_para: BMPSTruncatePara, j2: float):
        super().__init__(trunc_para, j2)


class SpinOneHalfTriHeisenbergSqrPEPS(_HeisenbergSweeps):
    """Triangular-lattice Heisenberg model on a square PEPS.

    The third nearest neighbour of each site is its left-down/right-up
    plaquette partner.
    """

    _j1_diagonals = (LEFTDOWN_TO_RIGHTUP,)

    def __init__(self, trunc_para: BMPSTruncatePara):
        super().__init__(trunc_para)


class SpinOneHalfTriJ1J2HeisenbergSqrPEPS(_HeisenbergSweeps):
    """Triangular-lattice J1-J2 model on a square PEPS.

    The sqrt(3)-distance neighbours of the triangular lattice map to the
    left-up/right-down plaquette diagonal and to the two sqrt(5)-distance
    pairs ``(r+1, c)-(r, c+2)`` and ``(r+2, c)-(r, c+1)``.
    """

    _j1_diagonals = (LEFTDOWN_TO_RIGHTUP,)
    _j2_diagonals = (LEFTUP_TO_RIGHTDOWN,)
    _j2_sqrt5 = True

    def __init__(self, trunc_para: BMPSTruncatePara, j2: float):
        super().__init__(trunc_para, j2)
