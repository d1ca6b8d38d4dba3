"""Trajectory-state service: helix propagation and two-track closest approach.

Tracks are propagated as helices in a uniform field along z. A track of
charge `q` and transverse momentum `pt` in a field `Bz` has signed curvature

    kappa = -q * 0.00299792458 * Bz / pt      [1/cm]

and, as a function of the transverse arc length `s` from its reference
point, azimuth `phi(s) = phi0 + kappa * s`. A vanishing field gives straight
lines.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math
from dataclasses import dataclass

from .models import MagneticField, Track, Vector3
from .physics import add3, line_closest_points, norm3, scale3, sub3

# GeV/c per (Tesla * cm) for a unit charge.
C_LIGHT_GEV_PER_T_CM = 0.00299792458


@dataclass(frozen=True)
class Helix:
    """Charged-particle trajectory through `position` with `momentum`."""

    position: Vector3
    momentum: Vector3
    charge: int
    bz: float

    @property
    def pt(self) -> float:
        return math.hypot(self.momentum[0], self.momentum[1])

    @property
    def phi0(self) -> float:
        return math.atan2(self.momentum[1], self.momentum[0])

    @property
    def kappa(self) -> float:
        """Signed transverse curvature; positive turns counter-clockwise."""
        return -self.charge * C_LIGHT_GEV_PER_T_CM * self.bz / self.pt

    @property
    def is_straight(self) -> bool:
        return self.charge == 0 or self.bz == 0.0

    @property
    def radius(self) -> float:
        return 1.0 / abs(self.kappa)

    @property
    def center(self) -> tuple[float, float]:
        k = self.kappa
        phi0 = self.phi0
        return self.position[0] - math.sin(phi0) / k, self.position[1] + math.cos(phi0) / k

    @property
    def direction(self) -> Vector3:
        return scale3(self.momentum, 1.0 / norm3(self.momentum))

    def point_at(self, s: float) -> Vector3:
        """Position after a transverse arc length `s` (cm)."""
        x0, y0, z0 = self.position
        z = z0 + s * self.momentum[2] / self.pt
        if self.is_straight:
            phi0 = self.phi0
            return x0 + s * math.cos(phi0), y0 + s * math.sin(phi0), z
        xc, yc = self.center
        phi = self.phi0 + self.kappa * s
        return xc + math.sin(phi) / self.kappa, yc - math.cos(phi) / self.kappa, z

    def momentum_at(self, s: float) -> Vector3:
        """Momentum after a transverse arc length `s` (cm)."""
        if self.is_straight:
            return self.momentum
        phi = self.phi0 + self.kappa * s
        pt = self.pt
        return pt * math.cos(phi), pt * math.sin(phi), self.momentum[2]

    def arc_length_to(self, x: float, y: float) -> float:
        """Transverse arc length to the trajectory point at azimuthal position `(x, y)`.

        For a helix `(x, y)` must lie on the transverse circle; the shortest
        turn in either direction is taken.
        """
        phi0 = self.phi0
        if self.is_straight:
            return (x - self.position[0]) * math.cos(phi0) + (y - self.position[1]) * math.sin(phi0)
        k = self.kappa
        xc, yc = self.center
        phi = math.atan2(k * (x - xc), -k * (y - yc))
        dphi = math.remainder(phi - phi0, 2.0 * math.pi)
        return dphi / k

    def closest_transverse_point(self, point: Vector3) -> tuple[float, float] | None:
        """Trajectory point in the transverse plane nearest to `point`."""
        if self.is_straight:
            s = self.arc_length_to(point[0], point[1])
            phi0 = self.phi0
            return self.position[0] + s * math.cos(phi0), self.position[1] + s * math.sin(phi0)
        xc, yc = self.center
        dx = point[0] - xc
        dy = point[1] - yc
        dist = math.hypot(dx, dy)
        if dist < 1e-12:
            return None
        r = self.radius
        return xc + r * dx / dist, yc + r * dy / dist


@dataclass(frozen=True)
class TrajectoryState:
    """Free trajectory state: position, momentum, charge, and validity."""

    position: Vector3
    momentum: Vector3
    charge: int
    bz: float
    is_valid: bool = True

    @classmethod
    def invalid(cls, charge: int = 0, bz: float = 0.0) -> "TrajectoryState":
        return cls((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), charge, bz, is_valid=False)

    def helix(self) -> Helix:
        return Helix(self.position, self.momentum, self.charge, self.bz)


class TransientTrack:
    """A track bound to a magnetic field, answering trajectory-state queries."""

    def __init__(self, track: Track, field: MagneticField) -> None:
        self.track = track
        self.field = field
        self._bz = field.in_tesla(track.reference_point)[2]
        self._helix = Helix(track.reference_point, track.momentum, track.charge, self._bz)

    def __repr__(self) -> str:
        return f"TransientTrack({self.track.track_id!r}, bz={self._bz})"

    @property
    def charge(self) -> int:
        return self.track.charge

    def trajectory_state_closest_to_point(self, point: Vector3) -> TrajectoryState:
        """State at the trajectory point of closest transverse approach to `point`."""
        if self.track.pt <= 0.0:
            return TrajectoryState.invalid(self.charge, self._bz)
        xy = self._helix.closest_transverse_point(point)
        if xy is None:
            return TrajectoryState.invalid(self.charge, self._bz)
        s = self._helix.arc_length_to(*xy)
        position = self._helix.point_at(s)
        momentum = self._helix.momentum_at(s)
        if not all(math.isfinite(v) for v in position + momentum):
            return TrajectoryState.invalid(self.charge, self._bz)
        return TrajectoryState(position, momentum, self.charge, self._bz)

    def impact_point_state(self) -> TrajectoryState:
        """State closest to the nominal interaction point (0, 0, 0)."""
        return self.trajectory_state_closest_to_point((0.0, 0.0, 0.0))


class ClosestApproachInRPhi:
    """Closest approach of two trajectories, solved in the transverse plane.

    For helices the transverse circles are intersected; when they cross,
    the intersection where the two trajectories are closest in z is used,
    otherwise the points facing each other on the line joining the centres.
    Straight tracks use the 3D closest approach of two lines.
    """

    def __init__(self) -> None:
        self.status = False
        self._points: tuple[Vector3, Vector3] | None = None

    def calculate(self, state1: TrajectoryState, state2: TrajectoryState) -> bool:
        self.status = False
        self._points = None
        if not (state1.is_valid and state2.is_valid):
            return False
        h1 = state1.helix()
        h2 = state2.helix()
        if h1.pt <= 0.0 or h2.pt <= 0.0:
            return False
        if h1.is_straight or h2.is_straight:
            points = line_closest_points(h1.position, h1.direction, h2.position, h2.direction)
        else:
            points = _helix_closest_points(h1, h2)
        if points is None:
            return False
        self._points = points
        self.status = True
        return True

    def points(self) -> tuple[Vector3, Vector3]:
        if self._points is None:
            raise RuntimeError("ClosestApproachInRPhi: no valid closest approach computed.")
        return self._points

    def distance(self) -> float:
        """3D distance between the two trajectory points."""
        p1, p2 = self.points()
        return norm3(sub3(p1, p2))

    def crossing_point(self) -> Vector3:
        """Midpoint between the two trajectory points."""
        p1, p2 = self.points()
        return scale3(add3(p1, p2), 0.5)


def _helix_closest_points(h1: Helix, h2: Helix) -> tuple[Vector3, Vector3] | None:
    (c1x, c1y), r1 = h1.center, h1.radius
    (c2x, c2y), r2 = h2.center, h2.radius
    dx = c2x - c1x
    dy = c2y - c1y
    d = math.hypot(dx, dy)
    if d < 1e-9:
        return None
    ux, uy = dx / d, dy / d

    if d > r1 + r2:
        candidates = [((c1x + r1 * ux, c1y + r1 * uy), (c2x - r2 * ux, c2y - r2 * uy))]
    elif d < abs(r1 - r2):
        sign = 1.0 if r1 > r2 else -1.0
        candidates = [
            ((c1x + sign * r1 * ux, c1y + sign * r1 * uy), (c2x + sign * r2 * ux, c2y + sign * r2 * uy))
        ]
    else:
        a = (d * d + r1 * r1 - r2 * r2) / (2.0 * d)
        h = math.sqrt(max(r1 * r1 - a * a, 0.0))
        bx = c1x + a * ux
        by = c1y + a * uy
        i1 = (bx - h * uy, by + h * ux)
        i2 = (bx + h * uy, by - h * ux)
        candidates = [(i1, i1), (i2, i2)]

    best: tuple[Vector3, Vector3] | None = None
    best_dz = math.inf
    for t1, t2 in candidates:
        p1 = h1.point_at(h1.arc_length_to(*t1))
        p2 = h2.point_at(h2.arc_length_to(*t2))
        dz = abs(p1[2] - p2[2])
        if dz < best_dz:
            best_dz = dz
            best = (p1, p2)
    return best
