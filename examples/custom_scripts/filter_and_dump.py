"""Example custom callback: tighten the K-short selection and dump survivors."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import json
from pathlib import Path


def process(collections, context):
    """Keep K-shorts with a good vertex close to the nominal mass and write a JSON report."""
    selected = [
        c
        for c in collections.kshorts
        if c.vertex_normalized_chi2 < 2.0 and abs(c.mass - 0.497614) < 0.02
    ]
    payload = {
        "n_events": context["n_events"],
        "n_selected": len(selected),
        "selected": [
            {
                "event_id": c.event_id,
                "track_ids": list(c.track_ids),
                "mass": c.mass,
                "vertex": list(c.vertex),
                "vertex_chi2": c.vertex_chi2,
            }
            for c in selected
        ],
    }
    out = Path(context["output_paths"]["kshorts"]).with_name("selected_kshorts.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
