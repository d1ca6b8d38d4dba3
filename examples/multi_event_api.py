"""Multi-event API example: synthetic K-short events through the V0 fitter.

Run from repository root without installation:
    PYTHONPATH=src python examples/multi_event_api.py
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math
from pathlib import Path

from v0fitter import BeamSpot, EventInput, Track, V0Config, V0Fitter
from v0fitter.io import write_candidates_table
from v0fitter.pid import KSHORT_MASS, PION


def kshort_tracks(event_idx: int, vertex: tuple[float, float, float], parent_p: float) -> tuple[Track, Track]:
    """Two pions from a K-short decaying at `vertex`, flying away from the origin."""
    r = math.sqrt(sum(c * c for c in vertex))
    direction = tuple(c / r for c in vertex)
    # kick perpendicular to the flight direction, tilted out of the transverse plane
    kick = (-direction[2], 0.0, direction[0])
    kick_norm = math.hypot(kick[0], kick[2])
    q = math.sqrt(KSHORT_MASS * KSHORT_MASS / 4.0 - PION.mass * PION.mass)
    tracks = []
    for charge in (1, -1):
        p = tuple(0.5 * parent_p * d + charge * q * k / kick_norm for d, k in zip(direction, kick))
        tracks.append(
            Track(
                track_id=f"e{event_idx}_t{len(tracks)}",
                charge=charge,
                px=p[0],
                py=p[1],
                pz=p[2],
                vx=vertex[0],
                vy=vertex[1],
                vz=vertex[2],
                dxy_error=0.002,
                dz_error=0.003,
                chi2=9.0,
                ndof=10.0,
                n_valid_hits=14,
            )
        )
    return tracks[0], tracks[1]


def main() -> int:
    """Build a few events, reconstruct V0s and write a parquet table."""
    beamspot = BeamSpot(0.0, 0.0, 0.0, cov3=((1e-4, 0.0, 0.0), (0.0, 1e-4, 0.0), (0.0, 0.0, 25.0)))
    vertices = [(3.0, 2.0, 1.5), (-6.0, 1.0, -4.0), (0.5, -9.0, 12.0)]
    events = [
        EventInput(event_id=f"evt{idx}", tracks=kshort_tracks(idx, v, 2.0 + idx), beamspot=beamspot)
        for idx, v in enumerate(vertices)
    ]
    collections = V0Fitter(config=V0Config(do_d0s=False)).fit_events(events)
    out_path = Path("examples/multi_event_kshorts.parquet")
    write_candidates_table(out_path, collections.kshorts)
    print(f"Wrote {len(collections.kshorts)} K-short candidates to {out_path}")
    print(f"Pair rejections: {dict(collections.rejections)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
