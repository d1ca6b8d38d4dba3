"""Core data models used by the V0 fitter.

This module defines:
- immutable event inputs (`Track`, `BeamSpot`, `PrimaryVertex`, `MagneticField`)
- the per-event reference point (`ReferencePoint`)
- kinematics (`LorentzVector`)
- fitter outputs (`ChargedDaughter`, `CompositeCandidate`, `V0Collections`)
- event containers (`EventInput`)
- run configuration (`V0Config`).

Lengths are in cm, momenta and energies in GeV, fields in Tesla.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math
from collections import Counter
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

from .pid import species_from_pdg_id

Vector3 = tuple[float, float, float]
Matrix3x3 = tuple[tuple[float, float, float], tuple[float, float, float], tuple[float, float, float]]

ZERO_COV3: Matrix3x3 = ((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), (0.0, 0.0, 0.0))


@dataclass(frozen=True)
class Track:
    """Reconstructed charged track with perigee-like parameters.

    Momentum `(px, py, pz)` is given at the reference point `(vx, vy, vz)`,
    the point of closest approach to the beamline.
    """

    track_id: str
    charge: int
    px: float
    py: float
    pz: float
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    dxy_error: float = 0.01
    dz_error: float = 0.01
    chi2: float = 0.0
    ndof: float = 1.0
    n_valid_hits: int = 0

    @property
    def momentum(self) -> Vector3:
        return self.px, self.py, self.pz

    @property
    def reference_point(self) -> Vector3:
        return self.vx, self.vy, self.vz

    @property
    def pt(self) -> float:
        """Transverse momentum."""
        return math.hypot(self.px, self.py)

    @property
    def p(self) -> float:
        """Momentum magnitude."""
        return math.sqrt(self.px * self.px + self.py * self.py + self.pz * self.pz)

    @property
    def normalized_chi2(self) -> float:
        """Track fit chi2/ndof, heavily penalized when ndof is zero."""
        return self.chi2 / self.ndof if self.ndof != 0 else self.chi2 * 1e6

    def dxy(self, point: Vector3) -> float:
        """Signed transverse impact parameter with respect to `point`."""
        pt = self.pt
        if pt <= 0.0:
            return math.nan
        return (-(self.vx - point[0]) * self.py + (self.vy - point[1]) * self.px) / pt

    def dz(self, point: Vector3) -> float:
        """Longitudinal impact parameter with respect to `point`."""
        pt = self.pt
        if pt <= 0.0:
            return math.nan
        return (self.vz - point[2]) - (
            (self.vx - point[0]) * self.px + (self.vy - point[1]) * self.py
        ) / pt * (self.pz / pt)


@dataclass(frozen=True)
class BeamSpot:
    """Luminous-region model: a tilted line with a position covariance."""

    x0: float
    y0: float
    z0: float
    cov3: Matrix3x3 = ZERO_COV3
    dxdz: float = 0.0
    dydz: float = 0.0

    @property
    def position(self) -> Vector3:
        return self.x0, self.y0, self.z0

    def position_at(self, z: float) -> Vector3:
        """Beamline point at a given z, following the beam slopes."""
        dz = z - self.z0
        return self.x0 + self.dxdz * dz, self.y0 + self.dydz * dz, z


@dataclass(frozen=True)
class PrimaryVertex:
    """Primary-vertex hypothesis for one event."""

    pv_id: str
    x: float
    y: float
    z: float
    cov3: Matrix3x3 = ZERO_COV3
    chi2: float = 0.0
    ndof: float = 0.0

    @property
    def position(self) -> Vector3:
        return self.x, self.y, self.z


@dataclass(frozen=True)
class ReferencePoint:
    """Displacement origin for one event: beamspot or primary vertex."""

    position: Vector3
    cov3: Matrix3x3
    beamspot: BeamSpot | None = None

    @classmethod
    def from_beamspot(cls, beamspot: BeamSpot) -> "ReferencePoint":
        return cls(position=beamspot.position, cov3=beamspot.cov3, beamspot=beamspot)

    @classmethod
    def from_vertex(cls, vertex: PrimaryVertex) -> "ReferencePoint":
        return cls(position=vertex.position, cov3=vertex.cov3)

    def transverse_origin(self, track: Track) -> Vector3:
        """Point used for a track's transverse impact parameter.

        For a beamspot reference the beamline is sampled at the track's z.
        """
        if self.beamspot is not None:
            return self.beamspot.position_at(track.vz)
        return self.position


@dataclass(frozen=True)
class MagneticField:
    """Uniform solenoidal field along z."""

    bz: float = 3.8

    def in_tesla(self, point: Vector3) -> Vector3:
        return 0.0, 0.0, self.bz


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and addition."""

    px: float
    py: float
    pz: float
    e: float

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    @classmethod
    def from_momentum(cls, momentum: Vector3, mass: float) -> "LorentzVector":
        """Build an on-shell 4-vector from a 3-momentum and a mass hypothesis."""
        px, py, pz = momentum
        return cls(px, py, pz, math.sqrt(px * px + py * py + pz * pz + mass * mass))

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)


@dataclass(frozen=True)
class ChargedDaughter:
    """One V0 decay product: a track with a mass assignment at the vertex."""

    charge: int
    p4: LorentzVector
    vertex: Vector3
    track_id: str
    mass_hypothesis: str


@dataclass(frozen=True)
class CompositeCandidate:
    """One accepted two-body V0 candidate.

    Use `from_daughters`; the 4-momentum is always the sum of the daughters'.
    """

    pdg_id: int
    p4: LorentzVector
    vertex: Vector3
    vertex_cov: Matrix3x3
    vertex_chi2: float
    vertex_ndof: float
    daughters: tuple[ChargedDaughter, ChargedDaughter]
    event_id: str | None = None

    @classmethod
    def from_daughters(
        cls,
        pdg_id: int,
        daughters: tuple[ChargedDaughter, ChargedDaughter],
        vertex: Vector3,
        vertex_cov: Matrix3x3,
        vertex_chi2: float,
        vertex_ndof: float,
        event_id: str | None = None,
    ) -> "CompositeCandidate":
        if len(daughters) != 2:
            raise ValueError("A V0 candidate needs exactly two daughters.")
        return cls(
            pdg_id=pdg_id,
            p4=daughters[0].p4 + daughters[1].p4,
            vertex=vertex,
            vertex_cov=vertex_cov,
            vertex_chi2=vertex_chi2,
            vertex_ndof=vertex_ndof,
            daughters=daughters,
            event_id=event_id,
        )

    @property
    def mass(self) -> float:
        return self.p4.mass

    @property
    def name(self) -> str:
        """Species name from the signed PDG id."""
        return species_from_pdg_id(self.pdg_id).name

    @property
    def vertex_normalized_chi2(self) -> float:
        return self.vertex_chi2 / self.vertex_ndof if self.vertex_ndof != 0 else self.vertex_chi2 * 1e6

    @property
    def track_ids(self) -> tuple[str, str]:
        return self.daughters[0].track_id, self.daughters[1].track_id


@dataclass
class V0Collections:
    """The three output collections of one fitter call."""

    kshorts: list[CompositeCandidate] = field(default_factory=list)
    lambdas: list[CompositeCandidate] = field(default_factory=list)
    d0s: list[CompositeCandidate] = field(default_factory=list)
    rejections: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return len(self.kshorts) + len(self.lambdas) + len(self.d0s)

    def extend(self, other: "V0Collections") -> None:
        """Append another result set, keeping its order."""
        self.kshorts.extend(other.kshorts)
        self.lambdas.extend(other.lambdas)
        self.d0s.extend(other.d0s)
        self.rejections.update(other.rejections)


@dataclass(frozen=True)
class EventInput:
    """One event payload: tracks, beamspot, primary vertices and field."""

    event_id: str
    tracks: tuple[Track, ...]
    beamspot: BeamSpot
    primary_vertices: tuple[PrimaryVertex, ...] = ()
    magnetic_field: MagneticField = MagneticField()


@dataclass(frozen=True)
class V0Config:
    """Run configuration: switches and cuts, fixed for a whole run."""

    use_vertex: bool = False
    vertex_fitter: bool = True  # Kalman if true, adaptive otherwise
    use_ref_tracks: bool = True
    do_kshorts: bool = True
    do_lambdas: bool = True
    do_d0s: bool = True
    # track preselection
    tk_chi2_cut: float = 10.0
    tk_nhits_cut: int = 3
    tk_pt_cut: float = 0.35
    tk_ip_sig_xy_cut: float = 2.0
    tk_ip_sig_z_cut: float = -1.0
    # vertex
    vtx_chi2_cut: float = 6.63
    vtx_decay_sig_xyz_cut: float = -1.0
    vtx_decay_sig_xy_cut: float = 15.0
    # miscellaneous
    tk_dca_cut: float = 1.0
    mpipi_cut: float = 0.6
    inner_hit_pos_cut: float = 4.0  # accepted for compatibility, not enforced
    cos_theta_xy_cut: float = 0.998
    cos_theta_xyz_cut: float = -2.0
    # candidate mass windows (half widths)
    kshort_mass_cut: float = 0.07
    lambda_mass_cut: float = 0.05
    d0_mass_cut: float = 0.2

    @property
    def effective_use_ref_tracks(self) -> bool:
        """Refitted tracks are only available from the Kalman fitter."""
        return self.use_ref_tracks and self.vertex_fitter

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "V0Config":
        """Build a config from snake_case or historical camelCase keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown configuration key '{key}'.")
            kind = known[name].type
            if kind == "bool":
                if not isinstance(value, bool):
                    raise ValueError(f"Configuration key '{key}' must be a boolean.")
                kwargs[name] = value
            else:
                try:
                    kwargs[name] = as_integer(value) if kind == "int" else float(value)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Configuration key '{key}' has invalid value {value!r}: {exc}") from exc
        return cls(**kwargs)


def as_integer(value: Any) -> int:
    """Integer from an int, or a float or string holding an integral value."""
    if isinstance(value, bool):
        raise ValueError("booleans are not counts")
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"{value!r} is not an integer")
    return int(number)


_CAMEL_CASE_KEYS: dict[str, str] = {
    "useVertex": "use_vertex",
    "vertexFitter": "vertex_fitter",
    "useRefTracks": "use_ref_tracks",
    "doKShorts": "do_kshorts",
    "doLambdas": "do_lambdas",
    "doD0s": "do_d0s",
    "tkChi2Cut": "tk_chi2_cut",
    "tkNHitsCut": "tk_nhits_cut",
    "tkPtCut": "tk_pt_cut",
    "tkIPSigXYCut": "tk_ip_sig_xy_cut",
    "tkIPSigZCut": "tk_ip_sig_z_cut",
    "vtxChi2Cut": "vtx_chi2_cut",
    "vtxDecaySigXYZCut": "vtx_decay_sig_xyz_cut",
    "vtxDecaySigXYCut": "vtx_decay_sig_xy_cut",
    "tkDCACut": "tk_dca_cut",
    "mPiPiCut": "mpipi_cut",
    "innerHitPosCut": "inner_hit_pos_cut",
    "cosThetaXYCut": "cos_theta_xy_cut",
    "cosThetaXYZCut": "cos_theta_xyz_cut",
    "kShortMassCut": "kshort_mass_cut",
    "lambdaMassCut": "lambda_mass_cut",
    "D0MassCut": "d0_mass_cut",
}
