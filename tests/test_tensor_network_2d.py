"""Boundary-MPS engine checks on small lattices."""
from __future__ import annotations

import unittest

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import jax
import jax.numpy as jnp
import numpy as np
from flax import nnx

from _dense import dense_amplitude
from vmcpeps.tn2d import (
    DOWN,
    HORIZONTAL,
    LEFT,
    LEFTDOWN_TO_RIGHTUP,
    LEFTUP_TO_RIGHTDOWN,
    RIGHT,
    UP,
    VERTICAL,
    BMPSTruncatePara,
    TensorNetwork2D,
    Variation1Site,
    Variation2Site,
)
from vmcpeps.tn2d.compress import max_bond_dim
from vmcpeps.tps import SplitIndexTPS

LY, LX = 4, 4


def _checkerboard(rows, cols):
    return np.fromfunction(lambda r, c: (r + c) % 2, (rows, cols), dtype=int)


def _network(seed=0, shape=(LY, LX), bond_dim=4, dtype=jnp.float64):
    sitps = SplitIndexTPS(rngs=nnx.Rngs(seed), shape=shape, bond_dim=bond_dim, dtype=dtype)
    return TensorNetwork2D(sitps, _checkerboard(*shape))


def _assert_close(case, a, b, rtol=1e-12):
    a, b = complex(a), complex(b)
    case.assertLessEqual(abs(a - b), rtol * max(abs(a), abs(b)), f"{a} != {b}")


class TraceOrderIndependenceTest(unittest.TestCase):
    def _check_scheme(self, scheme) -> None:
        tn = _network()
        trunc_para = BMPSTruncatePara(4, 8, 1e-12, compress_scheme=scheme)

        tn.grow_bmps_for_row(2, trunc_para)
        tn.init_bten(LEFT, 2)
        tn.grow_full_bten(RIGHT, 2, 2, True)
        psi_a = tn.trace((2, 0), HORIZONTAL)
        tn.bten_move_step(RIGHT)
        psi_b = tn.trace((2, 1), HORIZONTAL)
        _assert_close(self, psi_a, psi_b)

        tn.grow_bmps_for_col(1, trunc_para)
        tn.init_bten(DOWN, 1)
        tn.grow_full_bten(UP, 1, 2, True)
        psi_c = tn.trace((LY - 2, 1), VERTICAL)
        tn.bten_move_step(UP)
        psi_d = tn.trace((LY - 3, 1), VERTICAL)
        _assert_close(self, psi_c, psi_d)

    def test_two_site_variation(self) -> None:
        self._check_scheme(Variation2Site())

    def test_one_site_variation(self) -> None:
        self._check_scheme(Variation1Site())

    def test_every_window_matches_dense_contraction(self) -> None:
        tn = _network(seed=3, shape=(3, 4), bond_dim=2, dtype=jnp.complex128)
        exact = dense_amplitude([[tn[(r, c)] for c in range(tn.cols)] for r in range(tn.rows)])
        trunc_para = BMPSTruncatePara(1, 64, 0.0)

        tn.generate_bmps_approach(UP, trunc_para)
        for row in range(tn.rows):
            tn.init_bten(LEFT, row)
            tn.grow_full_bten(RIGHT, row, 1, True)
            for col in range(tn.cols):
                _assert_close(self, tn.trace((row, col), HORIZONTAL), exact, 1e-10)
                if col < tn.cols - 1:
                    tn.bten_move_step(RIGHT)
            if row < tn.rows - 1:
                tn.bmps_move_step(DOWN, trunc_para)

        tn.generate_bmps_approach(RIGHT, trunc_para)
        for col in reversed(range(tn.cols)):
            tn.init_bten(DOWN, col)
            tn.grow_full_bten(UP, col, 1, True)
            for row in reversed(range(tn.rows)):
                _assert_close(self, tn.trace((row, col), VERTICAL), exact, 1e-10)
                if row > 0:
                    tn.bten_move_step(UP)
            if col > 0:
                tn.bmps_move_step(LEFT, trunc_para)

    def test_bond_dimension_never_exceeds_d_max(self) -> None:
        tn = _network(seed=1, bond_dim=3)
        for d_max in (2, 5):
            trunc_para = BMPSTruncatePara(1, d_max, 0.0)
            stacks = []
            tn.generate_bmps_approach(UP, trunc_para)
            stacks.append(tn.bmps(DOWN))
            tn.generate_bmps_approach(LEFT, trunc_para)
            stacks.append(tn.bmps(RIGHT))
            tn.grow_bmps_for_col(2, trunc_para)
            stacks.append(tn.bmps(LEFT))
            tn.generate_bmps_approach(DOWN, trunc_para)
            stacks.append(tn.bmps(UP))
            for stack in stacks:
                self.assertGreater(len(stack), 1)
                for mps in stack:
                    self.assertLessEqual(max_bond_dim(mps), d_max)

    def test_truncation_error_recorded_per_absorption(self) -> None:
        tn = _network(seed=2, bond_dim=3)
        exact = BMPSTruncatePara(1, 81, 0.0)
        tn.generate_bmps_approach(DOWN, exact)
        errs = tn.bmps_trunc_err(UP)
        self.assertEqual(len(errs), LY)
        self.assertEqual(len(errs), len(tn.bmps(UP)))
        self.assertTrue(all(e == 0.0 for e in errs))

        tn.generate_bmps_approach(DOWN, BMPSTruncatePara(1, 1, 0.0))
        errs = tn.bmps_trunc_err(UP)
        self.assertEqual(errs[0], 0.0)
        self.assertGreater(max(errs), 0.0)
        for mps in tn.bmps(UP):
            self.assertEqual(max_bond_dim(mps), 1)

    def test_changing_policy_rebuilds_stacks(self) -> None:
        exact = BMPSTruncatePara(1, 81, 0.0)
        narrow = BMPSTruncatePara(1, 2, 0.0)

        tn = _network(seed=3, bond_dim=3)
        tn.generate_bmps_approach(UP, exact)
        self.assertGreater(max(max_bond_dim(mps) for mps in tn.bmps(DOWN)), 2)
        tn.generate_bmps_approach(UP, narrow)
        for mps in tn.bmps(DOWN):
            self.assertLessEqual(max_bond_dim(mps), 2)

        tn.grow_bmps_for_row(1, exact)
        tn.grow_bmps_for_row(1, narrow)
        for position in (UP, DOWN):
            for mps in tn.bmps(position):
                self.assertLessEqual(max_bond_dim(mps), 2)
        tn.init_bten(LEFT, 1)
        tn.grow_full_bten(RIGHT, 1, 1, True)

        fresh = _network(seed=3, bond_dim=3)
        fresh.grow_bmps_for_row(1, narrow)
        fresh.init_bten(LEFT, 1)
        fresh.grow_full_bten(RIGHT, 1, 1, True)
        _assert_close(self, tn.trace((1, 0), HORIZONTAL), fresh.trace((1, 0), HORIZONTAL))

        tn.bmps_move_step(DOWN, exact)
        self.assertEqual(tn.bmps_trunc_err(UP), (0.0, 0.0, 0.0))


class SubstitutionTraceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tn = _network()
        self.trunc_para = BMPSTruncatePara(4, 8, 1e-12, compress_scheme=Variation2Site())

    def test_eight_horizontal_derivations_agree(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_row(1, self.trunc_para)
        tn.init_bten2(LEFT, 1)
        tn.grow_full_bten2(RIGHT, 1, 2, True)
        psi = [
            tn.replace_nnn_site_trace((1, 0), LEFTDOWN_TO_RIGHTUP, HORIZONTAL, tn[(2, 0)], tn[(1, 1)]),
            tn.replace_nnn_site_trace((1, 0), LEFTUP_TO_RIGHTDOWN, HORIZONTAL, tn[(1, 0)], tn[(2, 1)]),
        ]
        tn.bten2_move_step(RIGHT, 1)
        psi += [
            tn.replace_nnn_site_trace((1, 1), LEFTDOWN_TO_RIGHTUP, HORIZONTAL, tn[(2, 1)], tn[(1, 2)]),
            tn.replace_nnn_site_trace((1, 1), LEFTUP_TO_RIGHTDOWN, HORIZONTAL, tn[(1, 1)], tn[(2, 2)]),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 0), LEFTDOWN_TO_RIGHTUP, HORIZONTAL, tn[(2, 0)], tn[(1, 2)]
            ),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 1), LEFTDOWN_TO_RIGHTUP, HORIZONTAL, tn[(2, 1)], tn[(1, 3)]
            ),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 0), LEFTUP_TO_RIGHTDOWN, HORIZONTAL, tn[(1, 0)], tn[(2, 2)]
            ),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 1), LEFTUP_TO_RIGHTDOWN, HORIZONTAL, tn[(1, 1)], tn[(2, 3)]
            ),
        ]
        for value in psi[1:]:
            _assert_close(self, psi[0], value)

    def test_vertical_derivations_agree(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_col(1, self.trunc_para)
        tn.init_bten2(DOWN, 1)
        tn.grow_full_bten2(UP, 1, 2, True)
        psi = [
            tn.replace_nnn_site_trace((2, 1), LEFTDOWN_TO_RIGHTUP, VERTICAL, tn[(3, 1)], tn[(2, 2)]),
            tn.replace_nnn_site_trace((2, 1), LEFTUP_TO_RIGHTDOWN, VERTICAL, tn[(2, 1)], tn[(3, 2)]),
        ]
        tn.bten2_move_step(UP, 1)
        psi += [
            tn.replace_nnn_site_trace((1, 1), LEFTDOWN_TO_RIGHTUP, VERTICAL, tn[(2, 1)], tn[(1, 2)]),
            tn.replace_nnn_site_trace((1, 1), LEFTUP_TO_RIGHTDOWN, VERTICAL, tn[(1, 1)], tn[(2, 2)]),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 1), LEFTDOWN_TO_RIGHTUP, VERTICAL, tn[(3, 1)], tn[(1, 2)]
            ),
            tn.replace_sqrt5_dist_two_site_trace(
                (1, 1), LEFTUP_TO_RIGHTDOWN, VERTICAL, tn[(1, 1)], tn[(3, 2)]
            ),
        ]
        for value in psi[1:]:
            _assert_close(self, psi[0], value)
        tn.bten2_move_step(DOWN, 1)

    def test_substitution_matches_dense_and_leaves_network_untouched(self) -> None:
        tn = _network(seed=4, shape=(3, 3), bond_dim=2, dtype=jnp.complex128)
        grid = [[tn[(r, c)] for c in range(3)] for r in range(3)]
        trunc_para = BMPSTruncatePara(1, 64, 0.0)
        key_a, key_b = jax.random.split(jax.random.key(7))
        new_a = jax.random.normal(key_a, tn[(1, 0)].shape).astype(tn.dtype)
        new_b = jax.random.normal(key_b, tn[(0, 2)].shape).astype(tn.dtype)

        def dense_with(replacements):
            g = [list(row) for row in grid]
            for (r, c), t in replacements.items():
                g[r][c] = t
            return dense_amplitude(g)

        tn.grow_bmps_for_row(0, trunc_para)
        tn.init_bten(LEFT, 0)
        tn.grow_full_bten(RIGHT, 0, 2, True)
        new_c = jax.random.normal(key_b, tn[(0, 1)].shape).astype(tn.dtype)
        _assert_close(
            self,
            tn.replace_nn_site_trace((0, 1), (0, 0), HORIZONTAL, new_c, grid[0][0] * 2.0),
            dense_with({(0, 1): new_c, (0, 0): grid[0][0] * 2.0}),
            1e-10,
        )
        _assert_close(
            self,
            tn.replace_one_site_trace((0, 0), grid[0][0] * 3.0, HORIZONTAL),
            3.0 * dense_amplitude(grid),
            1e-10,
        )

        tn.init_bten2(LEFT, 0)
        tn.grow_full_bten2(RIGHT, 0, 2, True)
        _assert_close(
            self,
            tn.replace_sqrt5_dist_two_site_trace(
                (0, 0), LEFTDOWN_TO_RIGHTUP, HORIZONTAL, new_a, new_b
            ),
            dense_with({(1, 0): new_a, (0, 2): new_b}),
            1e-10,
        )
        _assert_close(self, tn.trace((0, 0), HORIZONTAL), dense_amplitude(grid), 1e-10)


class PunchHoleTest(unittest.TestCase):
    def test_hole_contracts_back_to_trace(self) -> None:
        tn = _network(seed=5, shape=(3, 4), bond_dim=2, dtype=jnp.complex128)
        trunc_para = BMPSTruncatePara(1, 64, 0.0)
        tn.grow_bmps_for_row(1, trunc_para)
        tn.init_bten(LEFT, 1)
        tn.grow_full_bten(RIGHT, 1, 1, True)
        tn.bten_move_step(RIGHT)
        site = (1, 1)
        hole_h = tn.punch_hole(site, HORIZONTAL)
        self.assertEqual(hole_h.shape, tn[site].shape)
        _assert_close(self, jnp.sum(hole_h * tn[site]), tn.trace(site, HORIZONTAL), 1e-10)

        tn.grow_bmps_for_col(1, trunc_para)
        tn.init_bten(UP, 1)
        tn.grow_full_bten(DOWN, 1, 1, True)
        tn.bten_move_step(DOWN)
        hole_v = tn.punch_hole(site, VERTICAL)
        self.assertEqual(hole_v.shape, tn[site].shape)
        scale = float(jnp.max(jnp.abs(hole_h)))
        self.assertLess(float(jnp.max(jnp.abs(hole_h - hole_v))), 1e-10 * scale)

    def test_finite_difference_identity(self) -> None:
        tn = _network(seed=6, bond_dim=2)
        trunc_para = BMPSTruncatePara(2, 6, 1e-14)
        tn.grow_bmps_for_row(2, trunc_para)
        tn.init_bten(LEFT, 2)
        tn.grow_full_bten(RIGHT, 2, 1, True)
        tn.bten_move_step(RIGHT)
        tn.bten_move_step(RIGHT)
        site = (2, 2)
        hole = tn.punch_hole(site, HORIZONTAL)
        delta = jax.random.normal(jax.random.key(11), tn[site].shape)
        eps = 1e-3
        psi = tn.trace(site, HORIZONTAL)
        psi_eps = tn.replace_one_site_trace(site, tn[site] + eps * delta, HORIZONTAL)
        _assert_close(self, (psi_eps - psi) / eps, jnp.sum(hole * delta), 1e-6)

    def test_hole_matches_dense_gradient(self) -> None:
        tn = _network(seed=8, shape=(3, 3), bond_dim=2)
        grid = [[tn[(r, c)] for c in range(3)] for r in range(3)]
        trunc_para = BMPSTruncatePara(1, 64, 0.0)
        site = (2, 1)

        def amplitude(tensor):
            g = [list(row) for row in grid]
            g[site[0]][site[1]] = tensor
            return dense_amplitude(g)

        expected = jax.grad(amplitude)(grid[site[0]][site[1]])
        tn.grow_bmps_for_col(1, trunc_para)
        tn.init_bten(UP, 1)
        tn.grow_full_bten(DOWN, 1, 1, True)
        tn.bten_move_step(DOWN)
        tn.bten_move_step(DOWN)
        hole = tn.punch_hole(site, VERTICAL)
        scale = float(jnp.max(jnp.abs(expected)))
        self.assertLess(float(jnp.max(jnp.abs(hole - expected))), 1e-10 * scale)


class ProtocolErrorTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tn = _network(shape=(3, 3), bond_dim=2)
        self.trunc_para = BMPSTruncatePara(1, 8, 0.0)

    def test_move_before_grow_fails(self) -> None:
        with self.assertRaises(RuntimeError):
            self.tn.bmps_move_step(DOWN, self.trunc_para)
        with self.assertRaises(RuntimeError):
            self.tn.bten_move_step(RIGHT)

    def test_query_without_environment_fails(self) -> None:
        tn = self.tn
        with self.assertRaises(RuntimeError):
            tn.trace((0, 0), HORIZONTAL)
        with self.assertRaises(RuntimeError):
            tn.init_bten(LEFT, 1)
        tn.grow_bmps_for_row(1, self.trunc_para)
        tn.init_bten(LEFT, 1)
        with self.assertRaises(RuntimeError):
            tn.trace((1, 0), HORIZONTAL)
        with self.assertRaises(RuntimeError):
            tn.punch_hole((1, 2), HORIZONTAL)

    def test_stale_environment_fails(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_row(1, self.trunc_para)
        tn.init_bten(LEFT, 1)
        tn.grow_full_bten(RIGHT, 1, 1, True)
        tn.trace((1, 0), HORIZONTAL)
        tn.bmps_move_step(DOWN, self.trunc_para)
        with self.assertRaises(RuntimeError):
            tn.trace((1, 0), HORIZONTAL)
        with self.assertRaises(RuntimeError):
            tn.bten_move_step(RIGHT)

    def test_new_approach_drops_orthogonal_environments(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_col(1, self.trunc_para)
        tn.init_bten(UP, 1)
        tn.grow_full_bten(DOWN, 1, 1, True)
        tn.trace((0, 1), VERTICAL)
        tn.grow_bmps_for_row(0, self.trunc_para)
        tn.init_bten(LEFT, 0)
        tn.grow_full_bten(RIGHT, 0, 1, True)
        tn.trace((0, 0), HORIZONTAL)

        tn.generate_bmps_approach(UP, self.trunc_para)
        self.assertEqual(len(tn.bmps(LEFT)), 1)
        self.assertEqual(len(tn.bmps(RIGHT)), 1)
        self.assertEqual(len(tn.bmps(UP)), 1)
        self.assertEqual(len(tn.bmps(DOWN)), 3)
        with self.assertRaises(RuntimeError):
            tn.trace((0, 1), VERTICAL)
        with self.assertRaises(RuntimeError):
            tn.punch_hole((0, 1), VERTICAL)
        with self.assertRaises(RuntimeError):
            tn.trace((0, 0), HORIZONTAL)
        with self.assertRaises(RuntimeError):
            tn.punch_hole((0, 0), HORIZONTAL)

    def test_moving_past_edge_fails(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_row(0, self.trunc_para)
        tn.init_bten(LEFT, 0)
        tn.grow_full_bten(RIGHT, 0, 1, True)
        tn.bten_move_step(RIGHT)
        tn.bten_move_step(RIGHT)
        with self.assertRaises(RuntimeError):
            tn.bten_move_step(RIGHT)

    def test_bad_arguments_fail(self) -> None:
        tn = self.tn
        tn.grow_bmps_for_row(0, self.trunc_para)
        tn.init_bten(LEFT, 0)
        tn.grow_full_bten(RIGHT, 0, 1, True)
        with self.assertRaises(ValueError):
            tn.replace_nn_site_trace((0, 0), (0, 2), HORIZONTAL, tn[(0, 0)], tn[(0, 2)])
        with self.assertRaises(ValueError):
            tn.replace_nn_site_trace((0, 0), (1, 0), HORIZONTAL, tn[(0, 0)], tn[(1, 0)])
        with self.assertRaises(ValueError):
            tn.replace_one_site_trace((0, 0), tn[(1, 1)], HORIZONTAL)
        with self.assertRaises(ValueError):
            tn.trace((0, 3), HORIZONTAL)
        with self.assertRaises(ValueError):
            tn.trace((0, 0), "diagonal")
        with self.assertRaises(ValueError):
            tn.init_bten("north", 0)
        with self.assertRaises(ValueError):
            tn.replace_nnn_site_trace((0, 0), "sideways", HORIZONTAL, tn[(0, 0)], tn[(1, 1)])
        with self.assertRaises(ValueError):
            TensorNetwork2D.from_tensors([])
        with self.assertRaises(ValueError):
            TensorNetwork2D.from_tensors([[tn[(0, 0)]], []])


if __name__ == "__main__":
    unittest.main()
