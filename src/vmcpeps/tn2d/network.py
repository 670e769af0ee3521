"""Sliced 2D tensor network with boundary-MPS environments.

The network is the single-layer contraction ``<configuration|PEPS>``: every site
holds the ``(up, down, left, right)`` tensor selected by the configuration.
It is contracted with four boundary-MPS stacks that grow in from the lattice
edges, and with boundary-tensor windows along one line (or a pair of lines)
that let local traces, substitutions and holes be evaluated with a constant
number of contractions per site.

Column sweeps reuse the row algorithm on the transposed lattice: in the
vertical frame line ``k`` is lattice column ``k``, position ``p`` is lattice
row ``p`` and every tensor is permuted to ``(left, right, up, down)``.
"""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import logging
from typing import Any, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from vmcpeps.tn2d.bten import (
    HEAD,
    TAIL,
    BTenCache,
    absorb_head,
    absorb_tail,
    close_window,
    hole_env,
    trivial_env,
)
from vmcpeps.tn2d.compress import compress_mpo_product, max_bond_dim
from vmcpeps.tn2d.lattice import (
    DOWN,
    HORIZONTAL,
    LEFT,
    LEFTDOWN_TO_RIGHTUP,
    RIGHT,
    UP,
    VERTICAL,
    SiteIdx,
    check_diagonal,
    check_orientation,
    check_position,
    opposite,
    orientation_of,
)
from vmcpeps.tn2d.truncate import BMPSTruncatePara

logger = logging.getLogger(__name__)

__all__ = ["TensorNetwork2D"]

# (top role, bottom role) of the boundary-MPS stacks in each frame
_BMPS_ROLES = {HORIZONTAL: (UP, DOWN), VERTICAL: (LEFT, RIGHT)}
_BMPS_FRAME = {UP: HORIZONTAL, DOWN: HORIZONTAL, LEFT: VERTICAL, RIGHT: VERTICAL}

# Boundary-tensor stacks: head grows from LEFT/UP, tail from RIGHT/DOWN
_BTEN_SIDE = {LEFT: HEAD, RIGHT: TAIL, UP: HEAD, DOWN: TAIL}

# (up, down, left, right) <-> (left, right, up, down); the permutation is its own inverse
_TRANSPOSE = (2, 3, 0, 1)
_MPO_FROM_TOP = (2, 3, 0, 1)
_MPO_FROM_BOTTOM = (2, 3, 1, 0)


class TensorNetwork2D:
    """Boundary-MPS contraction engine for one sampled configuration.

    Args:
        split_index_tps: Any object with ``project(configuration)`` returning the
            ``rows x cols`` grid of sliced site tensors.
        configuration: Integer configuration grid of shape ``(rows, cols)``.

    The engine is stateful and must be driven in a fixed order: grow the
    boundary MPS, seed and grow the boundary tensors, then query and move one
    step at a time. Queries never mutate the engine.
    """

    def __init__(self, split_index_tps: Any, configuration: Any):
        configuration = np.asarray(configuration)
        self._setup(split_index_tps.project(configuration))
        self.configuration = configuration

    @classmethod
    def from_tensors(cls, grid: Sequence[Sequence[jax.Array]]) -> "TensorNetwork2D":
        """Build the engine from an already sliced grid of site tensors."""
        tn = cls.__new__(cls)
        tn._setup(grid)
        tn.configuration = None
        return tn

    def _setup(self, grid: Sequence[Sequence[jax.Array]]) -> None:
        rows = len(grid)
        if rows == 0 or len(grid[0]) == 0:
            raise ValueError("TensorNetwork2D requires a non-empty lattice.")
        cols = len(grid[0])
        if any(len(row) != cols for row in grid):
            raise ValueError("All rows of the lattice must have the same length.")
        for r, row in enumerate(grid):
            for c, tensor in enumerate(row):
                if jnp.ndim(tensor) != 4:
                    raise ValueError(
                        f"Site ({r}, {c}) tensor must have 4 legs "
                        f"(up, down, left, right), got shape {jnp.shape(tensor)}"
                    )
        self._rows = rows
        self._cols = cols
        horizontal = tuple(tuple(jnp.asarray(t) for t in row) for row in grid)
        vertical = tuple(
            tuple(jnp.transpose(horizontal[r][c], _TRANSPOSE) for r in range(rows))
            for c in range(cols)
        )
        self._frames = {HORIZONTAL: horizontal, VERTICAL: vertical}
        self._dtype = jnp.result_type(*[t for row in horizontal for t in row])

        self._bmps: dict[str, list[tuple]] = {}
        self._trunc_err: dict[str, list[float]] = {}
        self._bmps_para: dict[str, BMPSTruncatePara | None] = {}
        self._bmps_version = {HORIZONTAL: 0, VERTICAL: 0}
        for position in (UP, DOWN, LEFT, RIGHT):
            self._reset_bmps(position)
        self._bten: dict[str, BTenCache | None] = {HORIZONTAL: None, VERTICAL: None}
        self._bten2: dict[str, BTenCache | None] = {HORIZONTAL: None, VERTICAL: None}

    def __repr__(self) -> str:
        return f"TensorNetwork2D(rows={self._rows}, cols={self._cols}, dtype={self._dtype})"

    def __getitem__(self, site: SiteIdx) -> jax.Array:
        row, col = self._check_site(site)
        return self._frames[HORIZONTAL][row][col]

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def dtype(self):
        return self._dtype

    # ------------------------------------------------------------------ #
    # Frame helpers
    # ------------------------------------------------------------------ #

    def _n_lines(self, orientation: str) -> int:
        return self._rows if orientation == HORIZONTAL else self._cols

    def _line_length(self, orientation: str) -> int:
        return self._cols if orientation == HORIZONTAL else self._rows

    def _check_site(self, site: SiteIdx) -> tuple[int, int]:
        row, col = site
        if not (0 <= row < self._rows and 0 <= col < self._cols):
            raise ValueError(
                f"Site {tuple(site)} is outside the {self._rows}x{self._cols} lattice."
            )
        return int(row), int(col)

    def _to_frame(self, orientation: str, site: SiteIdx) -> tuple[int, int]:
        """Map a lattice site to ``(line, position)`` in ``orientation``'s frame."""
        row, col = self._check_site(site)
        return (row, col) if orientation == HORIZONTAL else (col, row)

    def _frame_tensor(self, orientation: str, tensor: jax.Array) -> jax.Array:
        tensor = jnp.asarray(tensor)
        return tensor if orientation == HORIZONTAL else jnp.transpose(tensor, _TRANSPOSE)

    def _check_line(self, orientation: str, line: int, n_lines: int = 1) -> int:
        if not 0 <= line <= self._n_lines(orientation) - n_lines:
            kind = "row" if orientation == HORIZONTAL else "column"
            raise ValueError(
                f"{kind.capitalize()} {line} cannot hold a {n_lines}-line window "
                f"on a {self._rows}x{self._cols} lattice."
            )
        return int(line)

    # ------------------------------------------------------------------ #
    # Boundary MPS
    # ------------------------------------------------------------------ #

    def _reset_bmps(self, position: str) -> None:
        length = self._line_length(_BMPS_FRAME[position])
        trivial = tuple(jnp.ones((1, 1, 1), dtype=self._dtype) for _ in range(length))
        self._bmps[position] = [trivial]
        self._trunc_err[position] = [0.0]
        self._bmps_para[position] = None
        self._bmps_version[_BMPS_FRAME[position]] += 1

    def _pop_bmps(self, position: str) -> None:
        self._bmps[position].pop()
        self._trunc_err[position].pop()
        self._bmps_version[_BMPS_FRAME[position]] += 1

    def _grow_bmps_step(self, position: str, trunc_para: BMPSTruncatePara) -> None:
        orientation = _BMPS_FRAME[position]
        top_role, _ = _BMPS_ROLES[orientation]
        stack = self._bmps[position]
        n_lines = self._n_lines(orientation)
        if len(stack) > n_lines:
            raise RuntimeError(f"The {position} boundary MPS already covers the lattice.")
        if position == top_role:
            line, perm = len(stack) - 1, _MPO_FROM_TOP
        else:
            line, perm = n_lines - len(stack), _MPO_FROM_BOTTOM
        mpo = tuple(jnp.transpose(t, perm) for t in self._frames[orientation][line])
        mps, trunc_err = compress_mpo_product(
            trunc_para.compress_scheme, stack[-1], mpo, trunc_para
        )
        stack.append(mps)
        self._trunc_err[position].append(trunc_err)
        self._bmps_para[position] = trunc_para
        self._bmps_version[orientation] += 1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "absorbed line %d into %s boundary MPS: depth=%d bond=%d discarded=%.3e",
                line, position, len(stack) - 1, max_bond_dim(mps), trunc_err,
            )

    def _grow_bmps_to(
        self, position: str, length: int, trunc_para: BMPSTruncatePara
    ) -> None:
        """Pop or grow the stack at ``position`` until it holds ``length`` entries.

        A stack grown under another truncation policy is rebuilt from the edge.
        """
        grown_with = self._bmps_para[position]
        if grown_with is not None and grown_with != trunc_para:
            self._reset_bmps(position)
        while len(self._bmps[position]) > length:
            self._pop_bmps(position)
        while len(self._bmps[position]) < length:
            self._grow_bmps_step(position, trunc_para)

    def generate_bmps_approach(
        self, position: str, trunc_para: BMPSTruncatePara
    ) -> None:
        """Prepare a sweep that starts at the ``position`` edge.

        Both stacks of the orientation are reset to the trivial edge MPS and
        the opposite one regrown with ``trunc_para`` until it covers every
        other line. Boundary MPS of the orthogonal orientation and all
        boundary tensors are dropped.
        """
        check_position(position)
        orientation = _BMPS_FRAME[position]
        other = VERTICAL if orientation == HORIZONTAL else HORIZONTAL
        for pos in _BMPS_ROLES[other]:
            self._reset_bmps(pos)
        self._bten = {HORIZONTAL: None, VERTICAL: None}
        self._bten2 = {HORIZONTAL: None, VERTICAL: None}
        self._reset_bmps(position)
        self._reset_bmps(opposite(position))
        self._grow_bmps_to(opposite(position), self._n_lines(orientation), trunc_para)

    def grow_bmps_for_row(self, row: int, trunc_para: BMPSTruncatePara) -> None:
        """Make ``bmps(UP)[row]`` and ``bmps(DOWN)[rows - 1 - row]`` available."""
        row = self._check_line(HORIZONTAL, row)
        self._grow_bmps_to(UP, row + 1, trunc_para)
        self._grow_bmps_to(DOWN, self._rows - row, trunc_para)

    def grow_bmps_for_col(self, col: int, trunc_para: BMPSTruncatePara) -> None:
        """Make ``bmps(LEFT)[col]`` and ``bmps(RIGHT)[cols - 1 - col]`` available."""
        col = self._check_line(VERTICAL, col)
        self._grow_bmps_to(LEFT, col + 1, trunc_para)
        self._grow_bmps_to(RIGHT, self._cols - col, trunc_para)

    def bmps_move_step(self, position: str, trunc_para: BMPSTruncatePara) -> None:
        """Move the evaluated line one step towards the ``position`` edge."""
        check_position(position)
        if len(self._bmps[position]) < 2:
            raise RuntimeError(
                f"Cannot move towards {position}: the {position} boundary MPS has "
                "not been grown."
            )
        target = len(self._bmps[opposite(position)]) + 1
        self._pop_bmps(position)
        self._grow_bmps_to(opposite(position), target, trunc_para)

    def bmps(self, position: str) -> tuple[tuple, ...]:
        """Stack of boundary MPS at ``position``; entry ``k`` covers ``k`` lines."""
        return tuple(self._bmps[check_position(position)])

    def bmps_trunc_err(self, position: str) -> tuple[float, ...]:
        """Discarded weight of each absorption that built ``bmps(position)``."""
        return tuple(self._trunc_err[check_position(position)])

    def _boundaries(self, orientation: str, line: int, n_lines: int) -> tuple[tuple, tuple]:
        top_role, bottom_role = _BMPS_ROLES[orientation]
        top_idx = line
        bottom_idx = self._n_lines(orientation) - n_lines - line
        if len(self._bmps[top_role]) <= top_idx or len(self._bmps[bottom_role]) <= bottom_idx:
            raise RuntimeError(
                f"Boundary MPS {top_role}[{top_idx}] and {bottom_role}[{bottom_idx}] "
                f"are required for line {line} ({orientation}); grow them first."
            )
        return self._bmps[top_role][top_idx], self._bmps[bottom_role][bottom_idx]

    # ------------------------------------------------------------------ #
    # Boundary tensors
    # ------------------------------------------------------------------ #

    def _cache(
        self, n_lines: int, orientation: str, line: int | None, create: bool = False
    ) -> BTenCache:
        caches = self._bten if n_lines == 1 else self._bten2
        cache = caches[orientation]
        version = self._bmps_version[orientation]
        fresh = cache is not None and cache.bmps_version == version
        if fresh and (line is None or cache.line == line):
            return cache
        if create:
            self._boundaries(orientation, line, n_lines)
            cache = BTenCache(
                orientation, line, n_lines, self._line_length(orientation), version
            )
            caches[orientation] = cache
            return cache
        kind = "boundary tensors" if n_lines == 1 else "two-line boundary tensors"
        if cache is None:
            raise RuntimeError(f"No {orientation} {kind} have been initialised.")
        if not fresh:
            raise RuntimeError(
                f"The {orientation} {kind} were built on boundary MPS that have "
                "since changed; initialise them again."
            )
        raise RuntimeError(
            f"The {orientation} {kind} are built for line {cache.line}, not {line}."
        )

    def _grow_bten_step(self, cache: BTenCache, side: int) -> None:
        pos = cache.next_position(side)
        if not 0 <= pos < cache.length:
            raise RuntimeError(f"Boundary tensors already cover line {cache.line}.")
        top, bottom = self._boundaries(cache.orientation, cache.line, cache.n_lines)
        frame = self._frames[cache.orientation]
        column = [frame[cache.line + i][pos] for i in range(cache.n_lines)]
        kernel = absorb_head if side == HEAD else absorb_tail
        cache.push(side, kernel(cache.top(side), top[pos], column, bottom[pos]))

    def _init(self, n_lines: int, position: str, line: int) -> None:
        orientation = orientation_of(position)
        line = self._check_line(orientation, line, n_lines)
        cache = self._cache(n_lines, orientation, line, create=True)
        cache.reset(_BTEN_SIDE[position], trivial_env(n_lines, self._dtype))

    def _grow_full(
        self, n_lines: int, position: str, line: int, dsite: int, init: bool
    ) -> None:
        orientation = orientation_of(position)
        line = self._check_line(orientation, line, n_lines)
        side = _BTEN_SIDE[position]
        length = self._line_length(orientation)
        if not 0 <= dsite <= length:
            raise ValueError(f"dsite must lie in [0, {length}], got {dsite}")
        if init:
            cache = self._cache(n_lines, orientation, line, create=True)
            cache.reset(side, trivial_env(n_lines, self._dtype))
        else:
            cache = self._cache(n_lines, orientation, line)
        target = length - dsite + 1
        while cache.size(side) < target:
            self._grow_bten_step(cache, side)

    def _move(self, n_lines: int, position: str, line: int | None) -> None:
        orientation = orientation_of(position)
        side = _BTEN_SIDE[position]
        cache = self._cache(n_lines, orientation, line)
        cache.pop(side)
        self._grow_bten_step(cache, TAIL if side == HEAD else HEAD)

    def init_bten(self, position: str, line: int) -> None:
        """Seed the ``position`` side of the one-line window on ``line``.

        LEFT/RIGHT windows run along a row, UP/DOWN windows along a column.
        A window for another line, or built on older boundary MPS, is
        replaced.
        """
        self._init(1, position, line)

    def grow_full_bten(
        self, position: str, line: int, dsite: int = 1, init: bool = True
    ) -> None:
        """Grow the ``position`` side until only ``dsite`` far sites stay uncovered."""
        self._grow_full(1, position, line, dsite, init)

    def bten_move_step(self, position: str) -> None:
        """Advance the one-line window one site towards the ``position`` edge."""
        self._move(1, position, None)

    def init_bten2(self, position: str, line: int) -> None:
        """Seed the two-line window over ``line`` and ``line + 1``."""
        self._init(2, position, line)

    def grow_full_bten2(
        self, position: str, line: int, dsite: int = 2, init: bool = True
    ) -> None:
        self._grow_full(2, position, line, dsite, init)

    def bten2_move_step(self, position: str, line: int) -> None:
        self._move(2, position, line)

    # ------------------------------------------------------------------ #
    # Evaluators
    # ------------------------------------------------------------------ #

    def _window(
        self,
        n_lines: int,
        orientation: str,
        line: int,
        start: int,
        width: int,
        replacements: dict[tuple[int, int], jax.Array] | None = None,
    ) -> jax.Array:
        cache = self._cache(n_lines, orientation, line)
        head = cache.get(HEAD, start)
        tail = cache.get(TAIL, cache.length - start - width)
        top, bottom = self._boundaries(orientation, line, n_lines)
        frame = self._frames[orientation]
        replacements = replacements or {}
        columns = [
            [
                replacements.get((line + i, pos), frame[line + i][pos])
                for i in range(n_lines)
            ]
            for pos in range(start, start + width)
        ]
        return close_window(
            head, top[start:start + width], columns, bottom[start:start + width], tail
        )

    def _covering_window(self, orientation: str, line: int, pos: int) -> tuple[int, int]:
        """Smallest cached one-line window containing ``pos``."""
        cache = self._cache(1, orientation, line)
        length = cache.length
        for start, width in ((pos, 1), (pos, 2), (pos - 1, 2)):
            if start < 0 or start + width > length:
                continue
            if cache.has(HEAD, start) and cache.has(TAIL, length - start - width):
                return start, width
        raise RuntimeError(
            f"No cached boundary tensors cover position {pos} on line {line} "
            f"({orientation}); head={cache.size(HEAD)}, tail={cache.size(TAIL)}."
        )

    def _replacement(self, site: SiteIdx, tensor: jax.Array) -> jax.Array:
        expected = jnp.shape(self[site])
        if jnp.shape(tensor) != expected:
            raise ValueError(
                f"Replacement for site {tuple(site)} has shape {jnp.shape(tensor)}, "
                f"expected {expected}."
            )
        return tensor

    def trace(self, site: SiteIdx, orientation: str) -> jax.Array:
        """Amplitude of the network, read off the window around ``site``."""
        check_orientation(orientation)
        line, pos = self._to_frame(orientation, site)
        start, width = self._covering_window(orientation, line, pos)
        return self._window(1, orientation, line, start, width)

    def replace_one_site_trace(
        self, site: SiteIdx, tensor: jax.Array, orientation: str
    ) -> jax.Array:
        check_orientation(orientation)
        tensor = self._replacement(site, tensor)
        line, pos = self._to_frame(orientation, site)
        start, width = self._covering_window(orientation, line, pos)
        return self._window(
            1, orientation, line, start, width,
            {(line, pos): self._frame_tensor(orientation, tensor)},
        )

    def replace_nn_site_trace(
        self,
        site1: SiteIdx,
        site2: SiteIdx,
        orientation: str,
        tensor1: jax.Array,
        tensor2: jax.Array,
    ) -> jax.Array:
        """Amplitude with the bond ``site1``-``site2`` along ``orientation`` substituted."""
        check_orientation(orientation)
        line1, pos1 = self._to_frame(orientation, site1)
        line2, pos2 = self._to_frame(orientation, site2)
        if line1 != line2 or abs(pos1 - pos2) != 1:
            raise ValueError(
                f"Sites {tuple(site1)} and {tuple(site2)} are not a {orientation} "
                "nearest-neighbour bond."
            )
        replacements = {
            (line1, pos1): self._frame_tensor(orientation, self._replacement(site1, tensor1)),
            (line2, pos2): self._frame_tensor(orientation, self._replacement(site2, tensor2)),
        }
        return self._window(1, orientation, line1, min(pos1, pos2), 2, replacements)

    def _two_line_replace(
        self,
        left_up_site: SiteIdx,
        nnn_dir: str,
        orientation: str,
        span: int,
        tensor_left: jax.Array,
        tensor_right: jax.Array,
    ) -> jax.Array:
        check_diagonal(nnn_dir)
        check_orientation(orientation)
        row, col = self._check_site(left_up_site)
        # Window is `span` sites long along the line and two lines deep
        if orientation == HORIZONTAL:
            far_row, far_col = row + 1, col + span - 1
        else:
            far_row, far_col = row + span - 1, col + 1
        if nnn_dir == LEFTDOWN_TO_RIGHTUP:
            site_left, site_right = (far_row, col), (row, far_col)
        else:
            site_left, site_right = (row, col), (far_row, far_col)
        self._check_site((far_row, far_col))
        line, start = self._to_frame(orientation, (row, col))
        replacements = {
            self._to_frame(orientation, site_left): self._frame_tensor(
                orientation, self._replacement(site_left, tensor_left)
            ),
            self._to_frame(orientation, site_right): self._frame_tensor(
                orientation, self._replacement(site_right, tensor_right)
            ),
        }
        return self._window(2, orientation, line, start, span, replacements)

    def replace_nnn_site_trace(
        self,
        left_up_site: SiteIdx,
        nnn_dir: str,
        orientation: str,
        tensor_left: jax.Array,
        tensor_right: jax.Array,
    ) -> jax.Array:
        """Amplitude with one diagonal of the 2x2 plaquette at ``left_up_site`` substituted.

        ``LEFTDOWN_TO_RIGHTUP`` replaces ``(r+1, c)`` and ``(r, c+1)``;
        ``LEFTUP_TO_RIGHTDOWN`` replaces ``(r, c)`` and ``(r+1, c+1)``.
        ``tensor_left`` always goes to the site in column ``c``.
        """
        return self._two_line_replace(
            left_up_site, nnn_dir, orientation, 2, tensor_left, tensor_right
        )

    def replace_sqrt5_dist_two_site_trace(
        self,
        left_up_site: SiteIdx,
        nnn_dir: str,
        orientation: str,
        tensor_left: jax.Array,
        tensor_right: jax.Array,
    ) -> jax.Array:
        """Amplitude with two sites at distance sqrt(5) substituted.

        The window is 2x3 for ``HORIZONTAL`` and 3x2 for ``VERTICAL``, with
        ``left_up_site`` at its upper-left corner; the substituted pair are
        opposite corners chosen by ``nnn_dir`` as in
        :meth:`replace_nnn_site_trace`.
        """
        return self._two_line_replace(
            left_up_site, nnn_dir, orientation, 3, tensor_left, tensor_right
        )

    def punch_hole(self, site: SiteIdx, orientation: str) -> jax.Array:
        """Environment of ``site`` with its tensor removed, legs (up, down, left, right).

        ``jnp.sum(hole * tn[site])`` equals :meth:`trace`.
        """
        check_orientation(orientation)
        line, pos = self._to_frame(orientation, site)
        cache = self._cache(1, orientation, line)
        head = cache.get(HEAD, pos)
        tail = cache.get(TAIL, cache.length - 1 - pos)
        top, bottom = self._boundaries(orientation, line, 1)
        hole = hole_env(head, top[pos], bottom[pos], tail)
        return hole if orientation == HORIZONTAL else jnp.transpose(hole, _TRANSPOSE)
