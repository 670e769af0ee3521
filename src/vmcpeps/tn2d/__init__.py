"""Boundary-MPS contraction of sliced 2D tensor networks."""
from __future__ import annotations

from vmcpeps.tn2d.lattice import (
    DOWN,
    HORIZONTAL,
    LEFT,
    LEFTDOWN_TO_RIGHTUP,
    LEFTUP_TO_RIGHTDOWN,
    RIGHT,
    UP,
    VERTICAL,
    SiteIdx,
    opposite,
)
from vmcpeps.tn2d.network import TensorNetwork2D
from vmcpeps.tn2d.truncate import (
    BMPSTruncatePara,
    CompressScheme,
    SVDCompress,
    Variation1Site,
    Variation2Site,
    truncated_svd,
)

__all__ = [
    "UP",
    "DOWN",
    "LEFT",
    "RIGHT",
    "HORIZONTAL",
    "VERTICAL",
    "LEFTDOWN_TO_RIGHTUP",
    "LEFTUP_TO_RIGHTDOWN",
    "SiteIdx",
    "opposite",
    "TensorNetwork2D",
    "BMPSTruncatePara",
    "CompressScheme",
    "SVDCompress",
    "Variation1Site",
    "Variation2Site",
    "truncated_svd",
]
