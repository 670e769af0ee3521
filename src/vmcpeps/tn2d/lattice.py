"""Lattice positions, orientations and site helpers."""
from __future__ import annotations

from typing import TypeAlias

__all__ = [
    "SiteIdx",
    "UP",
    "DOWN",
    "LEFT",
    "RIGHT",
    "HORIZONTAL",
    "VERTICAL",
    "LEFTDOWN_TO_RIGHTUP",
    "LEFTUP_TO_RIGHTDOWN",
    "opposite",
    "orientation_of",
    "check_position",
    "check_orientation",
    "check_diagonal",
]

SiteIdx: TypeAlias = tuple[int, int]

UP = "up"
DOWN = "down"
LEFT = "left"
RIGHT = "right"

HORIZONTAL = "horizontal"
VERTICAL = "vertical"

LEFTDOWN_TO_RIGHTUP = "leftdown_to_rightup"
LEFTUP_TO_RIGHTDOWN = "leftup_to_rightdown"

_OPPOSITE = {UP: DOWN, DOWN: UP, LEFT: RIGHT, RIGHT: LEFT}


def check_position(position: str) -> str:
    if position not in _OPPOSITE:
        raise ValueError(f"Unknown position: {position!r}")
    return position


def check_orientation(orientation: str) -> str:
    if orientation not in (HORIZONTAL, VERTICAL):
        raise ValueError(f"Unknown orientation: {orientation!r}")
    return orientation


def check_diagonal(direction: str) -> str:
    if direction not in (LEFTDOWN_TO_RIGHTUP, LEFTUP_TO_RIGHTDOWN):
        raise ValueError(f"Unknown diagonal direction: {direction!r}")
    return direction


def opposite(position: str) -> str:
    return _OPPOSITE[check_position(position)]


def orientation_of(position: str) -> str:
    """Orientation of the lines a boundary-tensor cache at `position` runs along.

    LEFT/RIGHT caches walk along a row, UP/DOWN caches along a column.
    """
    return HORIZONTAL if check_position(position) in (LEFT, RIGHT) else VERTICAL
