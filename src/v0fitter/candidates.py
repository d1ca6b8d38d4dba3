"""Mass-hypothesis building for fitted two-track vertices.

Given the daughter momenta at the fitted vertex, each enabled channel yields
a candidate whose 4-momentum is the sum of its two daughters, and the
candidate is kept when its mass falls inside the species window.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import logging
from typing import Sequence

from .models import (
    ChargedDaughter,
    CompositeCandidate,
    LorentzVector,
    Matrix3x3,
    V0Collections,
    V0Config,
    Vector3,
)
from .physics import dot3
from .pid import ANTI_D0, ANTI_LAMBDA, D0, KSHORT, LAMBDA, V0Species

logger = logging.getLogger(__name__)


def species_to_attempt(
    config: V0Config, positive_momentum: Vector3, negative_momentum: Vector3
) -> list[V0Species]:
    """Species to build for one pair, in output order.

    Only one of Lambda/anti-Lambda is tried: the harder daughter is taken to
    be the (anti)proton. D0 and anti-D0 are both tried.
    """
    out: list[V0Species] = []
    if config.do_kshorts:
        out.append(KSHORT)
    if config.do_lambdas:
        if dot3(positive_momentum, positive_momentum) > dot3(negative_momentum, negative_momentum):
            out.append(LAMBDA)
        else:
            out.append(ANTI_LAMBDA)
    if config.do_d0s:
        out.append(D0)
        out.append(ANTI_D0)
    return out


def mass_window(config: V0Config, species: V0Species) -> tuple[float, float]:
    """Accepted `(low, high)` mass range for a species."""
    half_width = {
        "kshort": config.kshort_mass_cut,
        "lambda": config.lambda_mass_cut,
        "d0": config.d0_mass_cut,
    }[species.family]
    return species.nominal_mass - half_width, species.nominal_mass + half_width


def build_candidate(
    species: V0Species,
    positive_momentum: Vector3,
    negative_momentum: Vector3,
    positive_track_id: str,
    negative_track_id: str,
    vertex: Vector3,
    vertex_cov: Matrix3x3,
    vertex_chi2: float,
    vertex_ndof: float,
    event_id: str | None = None,
) -> CompositeCandidate:
    """Attach mass-assigned daughters and sum them into a candidate."""
    positive = ChargedDaughter(
        charge=1,
        p4=LorentzVector.from_momentum(positive_momentum, species.positive.mass),
        vertex=vertex,
        track_id=positive_track_id,
        mass_hypothesis=species.positive.name,
    )
    negative = ChargedDaughter(
        charge=-1,
        p4=LorentzVector.from_momentum(negative_momentum, species.negative.mass),
        vertex=vertex,
        track_id=negative_track_id,
        mass_hypothesis=species.negative.name,
    )
    return CompositeCandidate.from_daughters(
        pdg_id=species.pdg_id,
        daughters=(positive, negative),
        vertex=vertex,
        vertex_cov=vertex_cov,
        vertex_chi2=vertex_chi2,
        vertex_ndof=vertex_ndof,
        event_id=event_id,
    )


def build_candidates(
    config: V0Config,
    positive_momentum: Vector3,
    negative_momentum: Vector3,
    positive_track_id: str,
    negative_track_id: str,
    vertex: Vector3,
    vertex_cov: Matrix3x3,
    vertex_chi2: float,
    vertex_ndof: float,
    event_id: str | None = None,
) -> V0Collections:
    """Build every attempted hypothesis for one pair and keep those in window."""
    out = V0Collections()
    for species in species_to_attempt(config, positive_momentum, negative_momentum):
        candidate = build_candidate(
            species,
            positive_momentum,
            negative_momentum,
            positive_track_id,
            negative_track_id,
            vertex,
            vertex_cov,
            vertex_chi2,
            vertex_ndof,
            event_id=event_id,
        )
        low, high = mass_window(config, species)
        mass = candidate.mass
        if not low <= mass <= high:
            logger.debug("%s mass %.5f outside [%.5f, %.5f]", species.name, mass, low, high)
            out.rejections[f"mass_window_{species.family}"] += 1
            continue
        _collection_for(out, species).append(candidate)
    return out


def _collection_for(collections: V0Collections, species: V0Species) -> list[CompositeCandidate]:
    if species.family == "kshort":
        return collections.kshorts
    if species.family == "lambda":
        return collections.lambdas
    return collections.d0s


def candidates_by_pdg_id(candidates: Sequence[CompositeCandidate], pdg_id: int) -> list[CompositeCandidate]:
    """Select candidates of one signed species from a collection."""
    return [c for c in candidates if c.pdg_id == pdg_id]
