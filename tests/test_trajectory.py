"""Unit tests for helix propagation and two-track closest approach."""

from __future__ import annotations

import math
import unittest

from v0fitter import ClosestApproachInRPhi, MagneticField, TransientTrack
from v0fitter.physics import norm3
from v0fitter.trajectory import C_LIGHT_GEV_PER_T_CM, Helix, TrajectoryState

from v0_samples import KS_VERTEX, kshort_pair, make_track


class TestHelix(unittest.TestCase):
    """Validate curvature sign, propagation and arc-length inversion."""

    def test_positive_track_turns_clockwise_in_positive_field(self) -> None:
        helix = Helix(position=(0.0, 0.0, 0.0), momentum=(1.0, 0.0, 0.0), charge=1, bz=3.8)
        self.assertAlmostEqual(helix.kappa, -C_LIGHT_GEV_PER_T_CM * 3.8, places=12)
        xc, yc = helix.center
        self.assertAlmostEqual(xc, 0.0, places=9)
        self.assertAlmostEqual(yc, -helix.radius, places=9)
        _, y, _ = helix.point_at(10.0)
        self.assertLess(y, 0.0)

    def test_propagation_conserves_momentum_and_inverts(self) -> None:
        helix = Helix(position=(1.0, -2.0, 3.0), momentum=(0.7, 0.4, 1.1), charge=-1, bz=3.8)
        s = 25.0
        point = helix.point_at(s)
        momentum = helix.momentum_at(s)
        self.assertAlmostEqual(norm3(momentum), norm3(helix.momentum), places=12)
        self.assertAlmostEqual(helix.arc_length_to(point[0], point[1]), s, places=9)
        self.assertAlmostEqual(point[2], 3.0 + s * 1.1 / helix.pt, places=12)

    def test_straight_line_without_field(self) -> None:
        helix = Helix(position=(0.0, 0.0, 0.0), momentum=(0.0, 2.0, 1.0), charge=1, bz=0.0)
        self.assertTrue(helix.is_straight)
        for got, want in zip(helix.point_at(4.0), (0.0, 4.0, 2.0)):
            self.assertAlmostEqual(got, want, places=12)


class TestTransientTrack(unittest.TestCase):
    """Validate trajectory-state queries."""

    def test_state_closest_to_point_on_straight_track(self) -> None:
        track = make_track("t", 1, (0.0, 1.0, 0.0), (1.0, 0.0, 0.0))
        tt = TransientTrack(track, MagneticField(bz=0.0))
        state = tt.trajectory_state_closest_to_point((0.0, 5.0, 0.0))
        self.assertTrue(state.is_valid)
        self.assertAlmostEqual(state.position[0], 1.0, places=12)
        self.assertAlmostEqual(state.position[1], 5.0, places=12)
        self.assertEqual(state.momentum, (0.0, 1.0, 0.0))

    def test_state_at_reference_point_returns_track_momentum(self) -> None:
        pos, _ = kshort_pair()
        tt = TransientTrack(pos, MagneticField())
        state = tt.trajectory_state_closest_to_point(KS_VERTEX)
        for got, want in zip(state.position, KS_VERTEX):
            self.assertAlmostEqual(got, want, places=9)
        for got, want in zip(state.momentum, pos.momentum):
            self.assertAlmostEqual(got, want, places=9)

    def test_impact_point_state_is_closer_to_origin(self) -> None:
        pos, _ = kshort_pair()
        state = TransientTrack(pos, MagneticField()).impact_point_state()
        self.assertTrue(state.is_valid)
        self.assertLess(math.hypot(state.position[0], state.position[1]), math.hypot(*KS_VERTEX[:2]))

    def test_state_is_invalid_on_helix_axis(self) -> None:
        helix = Helix(position=(0.0, 0.0, 0.0), momentum=(1.0, 0.0, 0.0), charge=1, bz=3.8)
        track = make_track("t", 1, (1.0, 0.0, 0.0), (0.0, 0.0, 0.0))
        state = TransientTrack(track, MagneticField(3.8)).trajectory_state_closest_to_point(
            (helix.center[0], helix.center[1], 0.0)
        )
        self.assertFalse(state.is_valid)

    def test_zero_pt_track_has_no_valid_state(self) -> None:
        track = make_track("t", 1, (0.0, 0.0, 1.0), (0.0, 0.0, 0.0))
        state = TransientTrack(track, MagneticField()).impact_point_state()
        self.assertFalse(state.is_valid)


class TestClosestApproachInRPhi(unittest.TestCase):
    """Validate DCA and crossing point for lines and helices."""

    def test_skew_lines(self) -> None:
        s1 = TrajectoryState((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), 1, 0.0)
        s2 = TrajectoryState((5.0, -5.0, 1.0), (0.0, 1.0, 0.0), -1, 0.0)
        capp = ClosestApproachInRPhi()
        self.assertTrue(capp.calculate(s1, s2))
        self.assertAlmostEqual(capp.distance(), 1.0, places=12)
        crossing = capp.crossing_point()
        self.assertAlmostEqual(crossing[0], 5.0, places=12)
        self.assertAlmostEqual(crossing[1], 0.0, places=12)
        self.assertAlmostEqual(crossing[2], 0.5, places=12)

    def test_parallel_lines_fail(self) -> None:
        s1 = TrajectoryState((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), 1, 0.0)
        s2 = TrajectoryState((0.0, 1.0, 0.0), (1.0, 0.0, 0.0), -1, 0.0)
        capp = ClosestApproachInRPhi()
        self.assertFalse(capp.calculate(s1, s2))
        self.assertFalse(capp.status)
        with self.assertRaises(RuntimeError):
            capp.distance()

    def test_invalid_state_fails(self) -> None:
        s1 = TrajectoryState((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), 1, 3.8)
        capp = ClosestApproachInRPhi()
        self.assertFalse(capp.calculate(s1, TrajectoryState.invalid()))

    def test_helices_from_common_vertex_meet_there(self) -> None:
        pos, neg = kshort_pair()
        field = MagneticField()
        capp = ClosestApproachInRPhi()
        ok = capp.calculate(
            TransientTrack(pos, field).impact_point_state(),
            TransientTrack(neg, field).impact_point_state(),
        )
        self.assertTrue(ok)
        self.assertLess(capp.distance(), 1e-6)
        for got, want in zip(capp.crossing_point(), KS_VERTEX):
            self.assertAlmostEqual(got, want, places=6)

    def test_disjoint_circles_give_facing_points(self) -> None:
        # Same-sized circles centred at (R, 0) and (5R, 0): a 2R gap.
        field_bz = 3.8
        radius = Helix((0.0, 0.0, 0.0), (0.0, 1.0, 0.0), 1, field_bz).radius
        s1 = TrajectoryState((0.0, 0.0, 0.0), (0.0, 1.0, 0.0), 1, field_bz)
        s2 = TrajectoryState((6.0 * radius, 0.0, 0.0), (0.0, 1.0, 0.0), -1, field_bz)
        capp = ClosestApproachInRPhi()
        self.assertTrue(capp.calculate(s1, s2))
        self.assertAlmostEqual(capp.distance(), 2.0 * radius, places=6)


if __name__ == "__main__":
    unittest.main()
