"""V0 reconstruction engine: track preselection, pair vertexing and selection."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from .candidates import build_candidates
from .models import (
    BeamSpot,
    EventInput,
    MagneticField,
    PrimaryVertex,
    ReferencePoint,
    Track,
    V0Collections,
    V0Config,
    Vector3,
)
from .physics import (
    decay_significance,
    dot3,
    impact_parameter_significances,
    inside_tracking_volume,
    pointing_cosine,
    sub3,
    sum_cov3,
    transverse,
    two_body_mass,
)
from .pid import PION
from .trajectory import ClosestApproachInRPhi, TrajectoryState, TransientTrack
from .vertexing import (
    AdaptiveVertexFitter,
    KalmanVertexFitter,
    TransientVertex,
    VertexFitter,
    partition_by_charge,
)

logger = logging.getLogger(__name__)

SelectedTrack = tuple[Track, TransientTrack]


class PairRejection(str, Enum):
    """Why a track pair produced no vertex."""

    IMPACT_POINT_STATE = "invalid_impact_point_state"
    CLOSEST_APPROACH = "closest_approach_failed"
    DCA = "dca"
    FIDUCIAL = "crossing_point_outside_tracker"
    CROSSING_POINT_STATE = "invalid_crossing_point_state"
    MPIPI = "mpipi"
    INVALID_VERTEX = "invalid_vertex"
    VERTEX_CHI2 = "vertex_chi2"
    DECAY_SIG_XY = "decay_significance_xy"
    DECAY_SIG_XYZ = "decay_significance_xyz"
    CHARGE_PARTITION = "refitted_charge_partition"
    VERTEX_STATE = "invalid_vertex_state"
    COS_THETA_XY = "cos_theta_xy"
    COS_THETA_XYZ = "cos_theta_xyz"


@dataclass(frozen=True)
class _EventContext:
    """Read-only inputs shared by every pair of one event."""

    reference: ReferencePoint
    vertex_fitter: VertexFitter
    event_id: str | None


@dataclass(frozen=True)
class _FittedPair:
    vertex: TransientVertex
    positive_momentum: Vector3
    negative_momentum: Vector3


@dataclass
class V0Fitter:
    """Find K-short, Lambda and D0 candidates among oppositely charged track pairs.

    The trajectory and vertex-fit services can be swapped through the
    factory attributes; by default helix propagation and the linearized
    Kalman/adaptive fitters are used. With `workers > 1` the pair loop runs
    on a thread pool; output order is the serial `(i, j)` order either way.
    """

    config: V0Config = field(default_factory=V0Config)
    transient_track_factory: Callable[[Track, MagneticField], TransientTrack] = TransientTrack
    closest_approach_factory: Callable[[], ClosestApproachInRPhi] = ClosestApproachInRPhi
    vertex_fitter_factory: Callable[[V0Config], VertexFitter] | None = None
    workers: int | None = None

    def make_vertex_fitter(self) -> VertexFitter:
        """Kalman fitter when `vertex_fitter` is set, adaptive otherwise."""
        if self.vertex_fitter_factory is not None:
            return self.vertex_fitter_factory(self.config)
        if self.config.vertex_fitter:
            return KalmanVertexFitter(refit=self.config.effective_use_ref_tracks)
        return AdaptiveVertexFitter()

    def reference_point(
        self, beamspot: BeamSpot, primary_vertices: Sequence[PrimaryVertex] = ()
    ) -> ReferencePoint:
        """Beamspot, or the first primary vertex when `use_vertex` is set."""
        if not self.config.use_vertex:
            return ReferencePoint.from_beamspot(beamspot)
        if not primary_vertices:
            raise ValueError("use_vertex is set but the event has no primary vertex.")
        return ReferencePoint.from_vertex(primary_vertices[0])

    def preselect_tracks(
        self,
        tracks: Sequence[Track],
        reference: ReferencePoint,
        magnetic_field: MagneticField,
    ) -> list[SelectedTrack]:
        """Keep good-quality tracks displaced from the reference point."""
        cfg = self.config
        out: list[SelectedTrack] = []
        for track in tracks:
            ip_sig_xy, ip_sig_z = impact_parameter_significances(track, reference)
            if (
                track.normalized_chi2 < cfg.tk_chi2_cut
                and track.n_valid_hits >= cfg.tk_nhits_cut
                and track.pt > cfg.tk_pt_cut
                and ip_sig_xy > cfg.tk_ip_sig_xy_cut
                and ip_sig_z > cfg.tk_ip_sig_z_cut
            ):
                out.append((track, self.transient_track_factory(track, magnetic_field)))
        return out

    def fit_all(
        self,
        tracks: Sequence[Track],
        beamspot: BeamSpot,
        primary_vertices: Sequence[PrimaryVertex] = (),
        magnetic_field: MagneticField | None = None,
        event_id: str | None = None,
    ) -> V0Collections:
        """Reconstruct V0 candidates for one event.

        Workflow:
        1. Choose the reference point.
        2. Preselect tracks.
        3. Loop over oppositely charged pairs: geometric gate, vertex fit,
           displacement and pointing gates.
        4. Build mass hypotheses and fill the three output collections.
        """
        out = V0Collections()
        if not tracks:
            return out
        magnetic_field = magnetic_field or MagneticField()
        reference = self.reference_point(beamspot, primary_vertices)
        selected = self.preselect_tracks(tracks, reference, magnetic_field)
        context = _EventContext(
            reference=reference,
            vertex_fitter=self.make_vertex_fitter(),
            event_id=event_id,
        )

        pairs = [
            (selected[i], selected[j])
            for i in range(len(selected))
            for j in range(i + 1, len(selected))
        ]
        if self.workers is not None and self.workers > 1 and len(pairs) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as exe:
                results = list(exe.map(lambda pair: self.process_pair(pair[0], pair[1], context), pairs))
        else:
            results = [self.process_pair(first, second, context) for first, second in pairs]
        for result in results:
            out.extend(result)

        logger.info(
            "event %s: %d tracks, %d preselected, %d pairs -> %d KS0, %d Lambda, %d D0",
            event_id,
            len(tracks),
            len(selected),
            len(pairs),
            len(out.kshorts),
            len(out.lambdas),
            len(out.d0s),
        )
        return out

    def fit_event(self, event: EventInput) -> V0Collections:
        """Run `fit_all` on one event payload."""
        return self.fit_all(
            tracks=event.tracks,
            beamspot=event.beamspot,
            primary_vertices=event.primary_vertices,
            magnetic_field=event.magnetic_field,
            event_id=event.event_id,
        )

    def fit_events(self, events: Sequence[EventInput]) -> V0Collections:
        """Run `fit_event` on a list of events and aggregate tagged candidates."""
        out = V0Collections()
        for event in events:
            out.extend(self.fit_event(event))
        return out

    def process_pair(
        self, first: SelectedTrack, second: SelectedTrack, context: _EventContext
    ) -> V0Collections:
        """Vertex one track pair and return the candidates it yields."""
        out = V0Collections()
        ordered = _order_by_charge(first, second)
        if ordered is None:
            logger.debug("skip pair %s/%s: not oppositely charged", first[0].track_id, second[0].track_id)
            return out
        positive, negative = ordered

        if not self._geometric_gate(positive[1], negative[1], out):
            return out
        fitted = self._vertex_gate(positive[1], negative[1], context, out)
        if fitted is None:
            return out

        vertex = fitted.vertex
        out.extend(
            build_candidates(
                self.config,
                fitted.positive_momentum,
                fitted.negative_momentum,
                positive[0].track_id,
                negative[0].track_id,
                vertex.position,
                vertex.covariance,
                vertex.chi2,
                vertex.ndof,
                event_id=context.event_id,
            )
        )
        return out

    def _geometric_gate(
        self, positive: TransientTrack, negative: TransientTrack, out: V0Collections
    ) -> bool:
        """Cheap checks on the closest approach before the vertex fit."""
        cfg = self.config
        pos_impact = positive.impact_point_state()
        neg_impact = negative.impact_point_state()
        if not pos_impact.is_valid or not neg_impact.is_valid:
            return _reject(out, PairRejection.IMPACT_POINT_STATE)

        capp = self.closest_approach_factory()
        capp.calculate(pos_impact, neg_impact)
        if not capp.status:
            return _reject(out, PairRejection.CLOSEST_APPROACH)
        dca = abs(capp.distance())
        if dca > cfg.tk_dca_cut:
            return _reject(out, PairRejection.DCA, dca)

        crossing = capp.crossing_point()
        if not inside_tracking_volume(crossing):
            return _reject(out, PairRejection.FIDUCIAL, crossing)

        pos_state = positive.trajectory_state_closest_to_point(crossing)
        neg_state = negative.trajectory_state_closest_to_point(crossing)
        if not pos_state.is_valid or not neg_state.is_valid:
            return _reject(out, PairRejection.CROSSING_POINT_STATE)
        if dot3(pos_state.momentum, neg_state.momentum) < 0.0:
            # Diagnostic only: back-to-back daughters are not rejected.
            logger.debug(
                "pair %s/%s: momenta in opposite hemispheres at crossing point",
                positive.track.track_id,
                negative.track.track_id,
            )

        mpipi = two_body_mass(pos_state.momentum, PION.mass, neg_state.momentum, PION.mass)
        if mpipi > cfg.mpipi_cut:
            return _reject(out, PairRejection.MPIPI, mpipi)
        return True

    def _vertex_gate(
        self,
        positive: TransientTrack,
        negative: TransientTrack,
        context: _EventContext,
        out: V0Collections,
    ) -> _FittedPair | None:
        """Fit the vertex, then apply fit-quality, displacement and pointing cuts."""
        cfg = self.config
        vertex = context.vertex_fitter.vertex([positive, negative])
        if not vertex.is_valid:
            _reject(out, PairRejection.INVALID_VERTEX)
            return None
        # an adaptive fit can leave ndof <= 0, which has no meaningful chi2/ndof
        if vertex.ndof <= 0.0 or vertex.normalized_chi2 > cfg.vtx_chi2_cut:
            _reject(out, PairRejection.VERTEX_CHI2, vertex.normalized_chi2)
            return None

        reference = context.reference
        total_cov = sum_cov3(reference.cov3, vertex.covariance)
        displacement = sub3(vertex.position, reference.position)

        sig_xy = decay_significance(transverse(displacement), total_cov)
        if not sig_xy > cfg.vtx_decay_sig_xy_cut:
            _reject(out, PairRejection.DECAY_SIG_XY, sig_xy)
            return None
        sig_xyz = decay_significance(displacement, total_cov)
        if not sig_xyz > cfg.vtx_decay_sig_xyz_cut:
            _reject(out, PairRejection.DECAY_SIG_XYZ, sig_xyz)
            return None

        if cfg.effective_use_ref_tracks and len(vertex.refitted_tracks) > 1:
            partition = partition_by_charge(vertex.refitted_tracks)
            if not partition.ok:
                _reject(out, PairRejection.CHARGE_PARTITION, partition.reason)
                return None
            assert partition.positive is not None and partition.negative is not None
            pos_state = partition.positive.trajectory_state_closest_to_point(vertex.position)
            neg_state = partition.negative.trajectory_state_closest_to_point(vertex.position)
        else:
            pos_state = positive.trajectory_state_closest_to_point(vertex.position)
            neg_state = negative.trajectory_state_closest_to_point(vertex.position)
        if not _both_valid(pos_state, neg_state):
            _reject(out, PairRejection.VERTEX_STATE)
            return None

        total_p = (
            pos_state.momentum[0] + neg_state.momentum[0],
            pos_state.momentum[1] + neg_state.momentum[1],
            pos_state.momentum[2] + neg_state.momentum[2],
        )
        cos_xy = pointing_cosine(transverse(displacement), transverse(total_p))
        if not cos_xy >= cfg.cos_theta_xy_cut:
            _reject(out, PairRejection.COS_THETA_XY, cos_xy)
            return None
        cos_xyz = pointing_cosine(displacement, total_p)
        if not cos_xyz >= cfg.cos_theta_xyz_cut:
            _reject(out, PairRejection.COS_THETA_XYZ, cos_xyz)
            return None

        return _FittedPair(vertex, pos_state.momentum, neg_state.momentum)


def _order_by_charge(
    first: SelectedTrack, second: SelectedTrack
) -> tuple[SelectedTrack, SelectedTrack] | None:
    """Return `(positive, negative)`, or `None` for same-sign or neutral pairs."""
    if first[0].charge < 0 and second[0].charge > 0:
        return second, first
    if first[0].charge > 0 and second[0].charge < 0:
        return first, second
    return None


def _both_valid(a: TrajectoryState, b: TrajectoryState) -> bool:
    return a.is_valid and b.is_valid


def _reject(out: V0Collections, reason: PairRejection, value: object = None) -> bool:
    """Record one pair rejection; always returns False."""
    out.rejections[reason.value] += 1
    if value is None:
        logger.debug("pair rejected: %s", reason.value)
    else:
        logger.debug("pair rejected: %s (%s)", reason.value, value)
    return False
