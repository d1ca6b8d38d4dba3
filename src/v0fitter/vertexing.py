"""Vertex-fit service for two-track (V0) vertices.

Both fitters linearize every track as its tangent line at the trajectory
point closest to the current vertex estimate. Each line contributes two
residuals perpendicular to its direction: one in the transverse plane,
weighted by the track's `dxy_error`, and one in the plane containing the
beam axis, weighted by `dz_error * sin(theta)`. The vertex minimizes the
(weighted) sum of squared residuals, then the tracks are re-linearized at the
new estimate until the position is stable.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import logging
import math
from dataclasses import dataclass, replace
from typing import Protocol, Sequence

from .models import Matrix3x3, Vector3, ZERO_COV3
from .physics import cross3, dot3, invert_3x3, norm3, solve_3x3, sub3, unit3
from .trajectory import ClosestApproachInRPhi, TransientTrack

logger = logging.getLogger(__name__)

_Z_AXIS: Vector3 = (0.0, 0.0, 1.0)


@dataclass(frozen=True)
class TransientVertex:
    """Fitted vertex with covariance, fit quality and optional refitted tracks."""

    position: Vector3
    covariance: Matrix3x3
    chi2: float
    ndof: float
    is_valid: bool = True
    refitted_tracks: tuple[TransientTrack, ...] = ()
    track_weights: tuple[float, ...] = ()

    @classmethod
    def invalid(cls) -> "TransientVertex":
        return cls((0.0, 0.0, 0.0), ZERO_COV3, 0.0, 0.0, is_valid=False)

    @property
    def normalized_chi2(self) -> float:
        return self.chi2 / self.ndof if self.ndof != 0 else self.chi2 * 1e6

    @property
    def has_refitted_tracks(self) -> bool:
        return bool(self.refitted_tracks)


class VertexFitter(Protocol):
    """Anything that turns a set of transient tracks into a vertex."""

    def vertex(self, tracks: Sequence[TransientTrack]) -> TransientVertex:
        ...


@dataclass(frozen=True)
class _TrackLine:
    """One linearized track: a point, and two weighted residual directions."""

    point: Vector3
    axes: tuple[Vector3, Vector3]
    sigmas: tuple[float, float]

    def chi2(self, vertex: Vector3) -> float:
        delta = sub3(vertex, self.point)
        return sum((dot3(axis, delta) / sigma) ** 2 for axis, sigma in zip(self.axes, self.sigmas))


def linearize(track: TransientTrack, point: Vector3) -> _TrackLine | None:
    """Tangent line of a track at its state closest to `point`."""
    state = track.trajectory_state_closest_to_point(point)
    if not state.is_valid:
        return None
    direction = unit3(state.momentum)
    if direction is None:
        return None
    e1 = unit3(cross3(_Z_AXIS, direction)) or (1.0, 0.0, 0.0)
    e2 = cross3(direction, e1)
    sin_theta = math.hypot(direction[0], direction[1])
    sigma_xy = track.track.dxy_error
    sigma_z = track.track.dz_error * sin_theta
    if not (sigma_xy > 0.0 and sigma_z > 0.0):
        return None
    return _TrackLine(point=state.position, axes=(e1, e2), sigmas=(sigma_xy, sigma_z))


def _solve(lines: Sequence[_TrackLine], weights: Sequence[float]) -> tuple[Vector3, Matrix3x3] | None:
    """Weighted least-squares vertex from linearized tracks."""
    ata = [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]
    atb = [0.0, 0.0, 0.0]
    for line, w in zip(lines, weights, strict=True):
        for axis, sigma in zip(line.axes, line.sigmas):
            wk = w / (sigma * sigma)
            proj = dot3(axis, line.point)
            for i in range(3):
                atb[i] += wk * axis[i] * proj
                for j in range(3):
                    ata[i][j] += wk * axis[i] * axis[j]
    xyz = solve_3x3(ata, atb)
    cov = invert_3x3(ata)
    if xyz is None or cov is None:
        return None
    return xyz, cov


def _seed(tracks: Sequence[TransientTrack]) -> Vector3 | None:
    """Seed position from the closest approach of the first two tracks."""
    capp = ClosestApproachInRPhi()
    if not capp.calculate(tracks[0].impact_point_state(), tracks[1].impact_point_state()):
        return None
    return capp.crossing_point()


def _linearize_all(tracks: Sequence[TransientTrack], point: Vector3) -> list[_TrackLine] | None:
    lines = []
    for track in tracks:
        line = linearize(track, point)
        if line is None:
            return None
        lines.append(line)
    return lines


def refit_track(track: TransientTrack, vertex: Vector3) -> TransientTrack | None:
    """Track constrained to the vertex: reference point moved there, momentum taken there."""
    state = track.trajectory_state_closest_to_point(vertex)
    if not state.is_valid:
        return None
    px, py, pz = state.momentum
    vx, vy, vz = vertex
    refitted = replace(track.track, px=px, py=py, pz=pz, vx=vx, vy=vy, vz=vz)
    return TransientTrack(refitted, track.field)


@dataclass
class KalmanVertexFitter:
    """Iterated linearized least-squares fit with equal track weights."""

    refit: bool = False
    max_iterations: int = 10
    tolerance: float = 1e-4

    def vertex(self, tracks: Sequence[TransientTrack]) -> TransientVertex:
        if len(tracks) < 2:
            return TransientVertex.invalid()
        position = _seed(tracks)
        if position is None:
            logger.debug("Kalman fit: no seed from closest approach")
            return TransientVertex.invalid()
        weights = [1.0] * len(tracks)
        fitted = None
        for _ in range(self.max_iterations):
            lines = _linearize_all(tracks, position)
            if lines is None:
                return TransientVertex.invalid()
            fitted = _solve(lines, weights)
            if fitted is None:
                return TransientVertex.invalid()
            shift = norm3(sub3(fitted[0], position))
            position = fitted[0]
            if shift < self.tolerance:
                break
        else:
            logger.debug("Kalman fit: no convergence after %d iterations", self.max_iterations)
            return TransientVertex.invalid()
        assert fitted is not None
        _, cov = fitted
        chi2 = sum(line.chi2(position) for line in lines)
        refitted: tuple[TransientTrack, ...] = ()
        if self.refit:
            refits = [refit_track(t, position) for t in tracks]
            refitted = tuple(t for t in refits if t is not None)
        return TransientVertex(
            position=position,
            covariance=cov,
            chi2=chi2,
            ndof=2.0 * len(tracks) - 3.0,
            refitted_tracks=refitted,
            track_weights=tuple(weights),
        )


@dataclass
class AdaptiveVertexFitter:
    """Linearized fit with annealed, outlier-suppressing track weights.

    A track with compatibility `chi2` gets weight
    `exp(-chi2/2T) / (exp(-chi2/2T) + exp(-cutoff^2/2T))`, with `T`
    stepping down through `temperatures`. Each temperature stage must
    converge, and at least two tracks must keep a weight above `min_weight`.
    """

    cutoff: float = 3.0
    temperatures: tuple[float, ...] = (256.0, 64.0, 16.0, 4.0, 1.0)
    max_iterations: int = 10
    tolerance: float = 1e-4
    min_weight: float = 1e-3  # a track counts towards the vertex above this weight

    def vertex(self, tracks: Sequence[TransientTrack]) -> TransientVertex:
        if len(tracks) < 2:
            return TransientVertex.invalid()
        position = _seed(tracks)
        if position is None:
            logger.debug("Adaptive fit: no seed from closest approach")
            return TransientVertex.invalid()
        weights = [1.0] * len(tracks)
        lines = None
        for temperature in self.temperatures:
            for _ in range(self.max_iterations):
                lines = _linearize_all(tracks, position)
                if lines is None:
                    return TransientVertex.invalid()
                weights = [self._weight(line.chi2(position), temperature) for line in lines]
                fitted = _solve(lines, weights)
                if fitted is None:
                    return TransientVertex.invalid()
                shift = norm3(sub3(fitted[0], position))
                position, cov = fitted
                if shift < self.tolerance:
                    break
            else:
                logger.debug("Adaptive fit: no convergence at T=%g", temperature)
                return TransientVertex.invalid()
        assert lines is not None
        if sum(1 for w in weights if w > self.min_weight) < 2:
            logger.debug("Adaptive fit: fewer than two significant tracks, weights %s", weights)
            return TransientVertex.invalid()
        chi2 = sum(w * line.chi2(position) for w, line in zip(weights, lines))
        return TransientVertex(
            position=position,
            covariance=cov,
            chi2=chi2,
            ndof=2.0 * sum(weights) - 3.0,
            track_weights=tuple(weights),
        )

    def _weight(self, chi2: float, temperature: float) -> float:
        arg = (chi2 - self.cutoff * self.cutoff) / (2.0 * temperature)
        if arg > 700.0:
            return 0.0
        return 1.0 / (1.0 + math.exp(arg))


@dataclass(frozen=True)
class ChargePartition:
    """Outcome of splitting two tracks into one positive and one negative."""

    positive: TransientTrack | None = None
    negative: TransientTrack | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def partition_by_charge(tracks: Sequence[TransientTrack]) -> ChargePartition:
    """Require exactly one positive and one negative track."""
    positives = [t for t in tracks if t.charge > 0]
    negatives = [t for t in tracks if t.charge < 0]
    if len(positives) != 1 or len(negatives) != 1:
        return ChargePartition(
            reason=f"expected one positive and one negative track, got {len(positives)}+/{len(negatives)}-"
        )
    return ChargePartition(positive=positives[0], negative=negatives[0])
