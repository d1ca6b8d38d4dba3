"""Public package exports for the V0 (K-short, Lambda, D0) fitter."""
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


from .candidates import build_candidates, species_to_attempt
from .fitter import PairRejection, V0Fitter
from .models import (
    BeamSpot,
    ChargedDaughter,
    CompositeCandidate,
    EventInput,
    LorentzVector,
    MagneticField,
    PrimaryVertex,
    ReferencePoint,
    Track,
    V0Collections,
    V0Config,
)
from .pid import (
    ANTI_D0,
    ANTI_LAMBDA,
    D0,
    KSHORT,
    LAMBDA,
    ParticleHypothesis,
    V0Species,
    species_from_name,
    species_from_pdg_id,
)
from .trajectory import ClosestApproachInRPhi, TrajectoryState, TransientTrack
from .vertexing import AdaptiveVertexFitter, KalmanVertexFitter, TransientVertex

__all__ = [
    "V0Fitter",
    "PairRejection",
    "V0Config",
    "V0Collections",
    "Track",
    "BeamSpot",
    "PrimaryVertex",
    "ReferencePoint",
    "MagneticField",
    "EventInput",
    "LorentzVector",
    "ChargedDaughter",
    "CompositeCandidate",
    "ParticleHypothesis",
    "V0Species",
    "KSHORT",
    "LAMBDA",
    "ANTI_LAMBDA",
    "D0",
    "ANTI_D0",
    "species_from_name",
    "species_from_pdg_id",
    "build_candidates",
    "species_to_attempt",
    "TransientTrack",
    "TrajectoryState",
    "ClosestApproachInRPhi",
    "TransientVertex",
    "KalmanVertexFitter",
    "AdaptiveVertexFitter",
]
