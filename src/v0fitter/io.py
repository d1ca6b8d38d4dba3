"""JSON event/config readers and pandas export of V0 candidates."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import json
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from .models import (
    BeamSpot,
    CompositeCandidate,
    EventInput,
    MagneticField,
    Matrix3x3,
    PrimaryVertex,
    Track,
    V0Config,
    as_integer,
)

_TABLE_WRITERS = {
    ".parquet": lambda df, out: df.to_parquet(out, index=False),
    ".csv": lambda df, out: df.to_csv(out, index=False),
    ".pkl": lambda df, out: df.to_pickle(out),
    ".pickle": lambda df, out: df.to_pickle(out),
}

_REQUIRED_TRACK_KEYS = ("charge", "px", "py", "pz", "dxy_error", "dz_error")

_COV_COLUMNS = {(0, 0): "xx", (0, 1): "xy", (0, 2): "xz", (1, 1): "yy", (1, 2): "yz", (2, 2): "zz"}


def load_events_json(path: str | Path) -> list[EventInput]:
    """Read a batch of events.

    Expected shape:
    {
      "events": [
        {
          "event_id": "...",
          "tracks": [{"track_id", "charge", "px", "py", "pz", "vx", "vy", "vz",
                      "dxy_error", "dz_error", "chi2", "ndof", "n_valid_hits"}],
          "beamspot": {"x0", "y0", "z0", "cov3", "dxdz", "dydz"},
          "primary_vertices": [{"pv_id", "x", "y", "z", "cov3", "chi2", "ndof"}],
          "bz": 3.8
        }
      ]
    }
    `pvs` is accepted as an alias of `primary_vertices`.
    """
    document = _load_json(path)
    entries = document.get("events")
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a list under key 'events'.")
    return [_parse_event(entry, idx) for idx, entry in enumerate(entries)]


def load_config_json(path: str | Path) -> V0Config:
    """Read a `V0Config`, optionally wrapped as `{"v0": {...}}`.

    Keys may be snake_case (`tk_chi2_cut`) or camelCase (`tkChi2Cut`).
    """
    document = _load_json(path)
    payload = document.get("v0", document)
    if not isinstance(payload, dict):
        raise ValueError(f"{path}: configuration must be an object.")
    return V0Config.from_mapping(payload)


def write_candidates_table(path: str | Path, candidates: Sequence[CompositeCandidate]) -> None:
    """Write one row per candidate; the format follows the file suffix."""
    out = Path(path)
    writer = _TABLE_WRITERS.get(out.suffix.lower())
    if writer is None:
        raise ValueError(
            f"Cannot write '{out.name}': use a .parquet, .csv or .pkl suffix."
        )
    writer(pd.DataFrame(candidate_rows(candidates)), out)


def candidate_rows(candidates: Sequence[CompositeCandidate]) -> list[dict[str, Any]]:
    """Flatten candidates into column dictionaries (vertex, covariance, p4, daughters)."""
    rows = []
    for cand in candidates:
        cov = cand.vertex_cov
        row: dict[str, Any] = {
            "event_id": cand.event_id,
            "pdg_id": cand.pdg_id,
            "species": cand.name,
            "mass": cand.mass,
            "px": cand.p4.px,
            "py": cand.p4.py,
            "pz": cand.p4.pz,
            "energy": cand.p4.e,
            "pt": cand.p4.pt,
            "vertex_x": cand.vertex[0],
            "vertex_y": cand.vertex[1],
            "vertex_z": cand.vertex[2],
            "vertex_chi2": cand.vertex_chi2,
            "vertex_ndof": cand.vertex_ndof,
        }
        for (i, j), label in _COV_COLUMNS.items():
            row[f"vertex_cov_{label}"] = cov[i][j]
        for n, daughter in enumerate(cand.daughters, start=1):
            prefix = f"dau{n}_"
            row[prefix + "track_id"] = daughter.track_id
            row[prefix + "charge"] = daughter.charge
            row[prefix + "hypothesis"] = daughter.mass_hypothesis
            row[prefix + "px"] = daughter.p4.px
            row[prefix + "py"] = daughter.p4.py
            row[prefix + "pz"] = daughter.p4.pz
            row[prefix + "energy"] = daughter.p4.e
        rows.append(row)
    return rows


def _parse_event(entry: Any, idx: int) -> EventInput:
    if not isinstance(entry, dict):
        raise ValueError(f"Event #{idx} must be an object.")
    event_id = str(entry.get("event_id", f"evt{idx}"))
    where = f"event '{event_id}'"

    tracks = entry.get("tracks")
    if not isinstance(tracks, list):
        raise ValueError(f"{where}: 'tracks' must be a list.")
    beamspot = entry.get("beamspot")
    if not isinstance(beamspot, dict):
        raise ValueError(f"{where}: 'beamspot' must be an object.")
    vertices = entry.get("primary_vertices", entry.get("pvs", []))
    if not isinstance(vertices, list):
        raise ValueError(f"{where}: 'primary_vertices' must be a list.")

    return EventInput(
        event_id=event_id,
        tracks=tuple(_parse_track(item, n, where) for n, item in enumerate(tracks)),
        beamspot=_parse_beamspot(beamspot, where),
        primary_vertices=tuple(_parse_primary_vertex(item, n, where) for n, item in enumerate(vertices)),
        magnetic_field=MagneticField(bz=_parse_bz(entry.get("bz", 3.8), where)),
    )


def _parse_bz(value: Any, where: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{where}: 'bz' must be a number, got {value!r}.") from exc


def _parse_track(item: Any, idx: int, where: str) -> Track:
    if not isinstance(item, dict):
        raise ValueError(f"{where}: track #{idx} must be an object.")
    missing = [key for key in _REQUIRED_TRACK_KEYS if key not in item]
    if missing:
        raise ValueError(f"{where}: track #{idx} is missing {', '.join(missing)}.")
    try:
        return Track(
            track_id=str(item.get("track_id", f"trk{idx}")),
            charge=as_integer(item["charge"]),
            px=float(item["px"]),
            py=float(item["py"]),
            pz=float(item["pz"]),
            vx=float(item.get("vx", 0.0)),
            vy=float(item.get("vy", 0.0)),
            vz=float(item.get("vz", 0.0)),
            dxy_error=float(item["dxy_error"]),
            dz_error=float(item["dz_error"]),
            chi2=float(item.get("chi2", 0.0)),
            ndof=float(item.get("ndof", 1.0)),
            n_valid_hits=as_integer(item.get("n_valid_hits", 0)),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{where}: track #{idx} has a malformed field: {exc}") from exc


def _parse_primary_vertex(item: Any, idx: int, where: str) -> PrimaryVertex:
    if not isinstance(item, dict):
        raise ValueError(f"{where}: primary vertex #{idx} must be an object.")
    try:
        return PrimaryVertex(
            pv_id=str(item.get("pv_id", f"pv{idx}")),
            x=float(item["x"]),
            y=float(item["y"]),
            z=float(item["z"]),
            cov3=_parse_cov3(item["cov3"], where),
            chi2=float(item.get("chi2", 0.0)),
            ndof=float(item.get("ndof", 0.0)),
        )
    except KeyError as exc:
        raise ValueError(f"{where}: primary vertex #{idx} is missing {exc}.") from exc
    except TypeError as exc:
        raise ValueError(f"{where}: primary vertex #{idx} has a malformed field: {exc}") from exc


def _parse_beamspot(item: dict[str, Any], where: str) -> BeamSpot:
    try:
        return BeamSpot(
            x0=float(item["x0"]),
            y0=float(item["y0"]),
            z0=float(item["z0"]),
            cov3=_parse_cov3(item["cov3"], where),
            dxdz=float(item.get("dxdz", 0.0)),
            dydz=float(item.get("dydz", 0.0)),
        )
    except KeyError as exc:
        raise ValueError(f"{where}: beamspot is missing {exc}.") from exc
    except TypeError as exc:
        raise ValueError(f"{where}: beamspot has a malformed field: {exc}") from exc


def _parse_cov3(value: Any, where: str) -> Matrix3x3:
    """Nested 3x3 list to a tuple matrix."""
    if not (isinstance(value, list) and len(value) == 3 and all(isinstance(r, list) and len(r) == 3 for r in value)):
        raise ValueError(f"{where}: cov3 must be a 3x3 nested list.")
    r0, r1, r2 = (tuple(float(v) for v in row) for row in value)
    return r0, r1, r2  # type: ignore[return-value]


def _load_json(path: str | Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        document = json.load(handle)
    if not isinstance(document, dict):
        raise ValueError(f"{path}: top-level JSON value must be an object.")
    return document
