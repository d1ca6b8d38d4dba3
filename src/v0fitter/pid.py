"""Mass hypotheses for V0 daughters and the V0 species themselves.

Daughter masses and V0 nominal masses are fixed constants in GeV; the mass
windows applied around the nominal values come from `V0Config`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ParticleHypothesis:
    """Named particle hypothesis used to derive mass-dependent observables."""

    name: str
    mass: float
    pdg_id: int | None = None


@dataclass(frozen=True)
class V0Species:
    """One reconstructable V0 species and the daughter masses it implies.

    `positive` and `negative` are the mass hypotheses for the positive and
    negative daughter track respectively.
    """

    name: str
    pdg_id: int
    nominal_mass: float
    positive: ParticleHypothesis
    negative: ParticleHypothesis
    family: str


PION = ParticleHypothesis(name="pi", mass=0.13957018, pdg_id=211)
KAON = ParticleHypothesis(name="K", mass=0.493667, pdg_id=321)
PROTON = ParticleHypothesis(name="p", mass=0.938272046, pdg_id=2212)

KSHORT_MASS = 0.497614
LAMBDA_MASS = 1.115683
D0_MASS = 1.86484

KSHORT = V0Species("KS0", 310, KSHORT_MASS, positive=PION, negative=PION, family="kshort")
LAMBDA = V0Species("Lambda0", 3122, LAMBDA_MASS, positive=PROTON, negative=PION, family="lambda")
ANTI_LAMBDA = V0Species("Lambda0~", -3122, LAMBDA_MASS, positive=PION, negative=PROTON, family="lambda")
D0 = V0Species("D0", 421, D0_MASS, positive=PION, negative=KAON, family="d0")
ANTI_D0 = V0Species("D0~", -421, D0_MASS, positive=KAON, negative=PION, family="d0")

ALL_SPECIES: tuple[V0Species, ...] = (KSHORT, LAMBDA, ANTI_LAMBDA, D0, ANTI_D0)

_PDG_TO_SPECIES: dict[int, V0Species] = {s.pdg_id: s for s in ALL_SPECIES}

_NAME_TO_SPECIES: dict[str, V0Species] = {
    "ks": KSHORT,
    "ks0": KSHORT,
    "kshort": KSHORT,
    "lambda": LAMBDA,
    "lambda0": LAMBDA,
    "antilambda": ANTI_LAMBDA,
    "lambda0~": ANTI_LAMBDA,
    "lambdabar": ANTI_LAMBDA,
    "d0": D0,
    "antid0": ANTI_D0,
    "d0~": ANTI_D0,
    "d0bar": ANTI_D0,
}


def species_from_pdg_id(pdg_id: int) -> V0Species:
    """Resolve a PDG code (310, +-3122, +-421) into a species."""
    try:
        return _PDG_TO_SPECIES[pdg_id]
    except KeyError as exc:
        raise ValueError(f"PDG id {pdg_id} is not a reconstructed V0 species.") from exc


def species_from_name(name: str) -> V0Species:
    """Resolve a short species name (e.g. `ks`, `lambdabar`) into a species."""
    key = name.strip().lower().replace("-", "").replace("_", "")
    try:
        return _NAME_TO_SPECIES[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_SPECIES))
        raise ValueError(
            f"Unknown V0 species name '{name}'. Supported names: {supported}"
        ) from exc
