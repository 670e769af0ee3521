"""Model energy solvers."""
from __future__ import annotations

from vmcpeps.solvers.base import ModelEnergySolver, exchange_bond_energy
from vmcpeps.solvers.heisenberg import (
    SpinOneHalfHeisenbergSquare,
    SpinOneHalfJ1J2HeisenbergSquare,
    SpinOneHalfTriHeisenbergSqrPEPS,
    SpinOneHalfTriJ1J2HeisenbergSqrPEPS,
)

__all__ = [
    "ModelEnergySolver",
    "exchange_bond_energy",
    "SpinOneHalfHeisenbergSquare",
    "SpinOneHalfJ1J2HeisenbergSquare",
    "SpinOneHalfTriHeisenbergSqrPEPS",
    "SpinOneHalfTriJ1J2HeisenbergSqrPEPS",
]
