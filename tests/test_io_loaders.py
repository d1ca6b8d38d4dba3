"""Unit tests for JSON input loaders, table export and the command line."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import dataclasses
import json
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from v0fitter import V0Fitter
from v0fitter.cli import build_parser, config_from_args, main
from v0fitter.io import candidate_rows, load_config_json, load_events_json, write_candidates_table

from v0_samples import beamspot, kshort_pair


def _event_payload(event_id: str = "evt42") -> dict:
    bs = beamspot()
    return {
        "event_id": event_id,
        "tracks": [dataclasses.asdict(t) for t in kshort_pair()],
        "beamspot": {"x0": bs.x0, "y0": bs.y0, "z0": bs.z0, "cov3": [list(row) for row in bs.cov3]},
        "primary_vertices": [
            {"pv_id": "pv0", "x": 0.0, "y": 0.0, "z": 0.1, "cov3": [[1e-6, 0, 0], [0, 1e-6, 0], [0, 0, 1e-4]]}
        ],
        "bz": 3.8,
    }


def _write_json(tmpdir: str, name: str, payload: dict) -> Path:
    path = Path(tmpdir) / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestIOLoaders(unittest.TestCase):
    """Validate parsing for event-batch and configuration JSON inputs."""

    def test_load_events_json_parses_event_payload(self) -> None:
        """Event loader should parse tracks, beamspot, PVs and field."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, "events.json", {"events": [_event_payload()]})
            [event] = load_events_json(path)
        self.assertEqual(event.event_id, "evt42")
        self.assertEqual([t.track_id for t in event.tracks], ["pi+", "pi-"])
        self.assertEqual(event.tracks, kshort_pair())
        self.assertEqual(event.beamspot, beamspot())
        self.assertEqual(event.primary_vertices[0].pv_id, "pv0")
        self.assertAlmostEqual(event.primary_vertices[0].z, 0.1, places=12)
        self.assertEqual(event.magnetic_field.bz, 3.8)

    def test_missing_track_field_raises(self) -> None:
        payload = _event_payload()
        del payload["tracks"][0]["dxy_error"]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, "events.json", {"events": [payload]})
            with self.assertRaises(ValueError):
                load_events_json(path)

    def test_bad_covariance_raises(self) -> None:
        payload = _event_payload()
        payload["beamspot"]["cov3"] = [[1.0, 0.0], [0.0, 1.0]]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, "events.json", {"events": [payload]})
            with self.assertRaises(ValueError):
                load_events_json(path)

    def test_malformed_track_values_raise_value_error(self) -> None:
        for key, value in (("px", None), ("n_valid_hits", 3.5), ("charge", "plus"), ("dz_error", [0.1])):
            payload = _event_payload()
            payload["tracks"][1][key] = value
            with self.subTest(key=key), tempfile.TemporaryDirectory() as tmpdir:
                path = _write_json(tmpdir, "events.json", {"events": [payload]})
                with self.assertRaises(ValueError) as ctx:
                    load_events_json(path)
                self.assertIn("track #1", str(ctx.exception))

    def test_malformed_field_and_vertex_raise_value_error(self) -> None:
        bad_field = _event_payload()
        bad_field["bz"] = None
        bad_pv = _event_payload()
        bad_pv["primary_vertices"][0]["x"] = None
        bad_bs = _event_payload()
        bad_bs["beamspot"]["dxdz"] = {"slope": 0.0}
        for payload in (bad_field, bad_pv, bad_bs):
            with tempfile.TemporaryDirectory() as tmpdir:
                path = _write_json(tmpdir, "events.json", {"events": [payload]})
                with self.assertRaises(ValueError):
                    load_events_json(path)

    def test_events_key_is_required(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, "events.json", {"event": []})
            with self.assertRaises(ValueError):
                load_events_json(path)

    def test_load_config_json_with_v0_wrapper(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, "config.json", {"v0": {"vtxChi2Cut": 4.0, "useVertex": True}})
            config = load_config_json(path)
        self.assertEqual(config.vtx_chi2_cut, 4.0)
        self.assertTrue(config.use_vertex)


class TestCandidateExport(unittest.TestCase):
    """Validate flattened rows and table writing."""

    def setUp(self) -> None:
        self.collections = V0Fitter().fit_all(tracks=kshort_pair(), beamspot=beamspot(), event_id="evt1")

    def test_candidate_rows(self) -> None:
        [row] = candidate_rows(self.collections.kshorts)
        self.assertEqual(row["event_id"], "evt1")
        self.assertEqual(row["pdg_id"], 310)
        self.assertEqual(row["species"], "KS0")
        self.assertEqual(row["dau1_track_id"], "pi+")
        self.assertEqual(row["dau2_charge"], -1)
        self.assertAlmostEqual(row["px"], row["dau1_px"] + row["dau2_px"], places=12)

    def test_write_csv_table(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "kshorts.csv"
            write_candidates_table(path, self.collections.kshorts)
            df = pd.read_csv(path)
        self.assertEqual(len(df), 1)
        self.assertEqual(int(df["pdg_id"][0]), 310)

    def test_unsupported_suffix_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                write_candidates_table(Path(tmpdir) / "kshorts.txt", self.collections.kshorts)


class TestCommandLine(unittest.TestCase):
    """Validate argument merging and an end-to-end run."""

    def test_overrides_take_precedence_over_config_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = _write_json(tmpdir, "config.json", {"tkDCACut": 2.0, "mPiPiCut": 0.5})
            args = build_parser().parse_args(
                [
                    "--events", "unused.json",
                    "--out-dir", tmpdir,
                    "--config", str(config_path),
                    "--mpipi-cut", "0.7",
                    "--adaptive-fitter",
                ]
            )
            config = config_from_args(args)
        self.assertEqual(config.tk_dca_cut, 2.0)
        self.assertEqual(config.mpipi_cut, 0.7)
        self.assertFalse(config.vertex_fitter)

    def test_channel_and_refit_switches(self) -> None:
        args = build_parser().parse_args(
            ["--events", "unused.json", "--out-dir", "out", "--no-kshorts", "--no-d0s", "--no-ref-tracks"]
        )
        config = config_from_args(args)
        self.assertFalse(config.do_kshorts)
        self.assertFalse(config.do_d0s)
        self.assertFalse(config.use_ref_tracks)
        self.assertTrue(config.do_lambdas)

        args = build_parser().parse_args(["--events", "unused.json", "--out-dir", "out", "--no-lambdas"])
        config = config_from_args(args)
        self.assertFalse(config.do_lambdas)
        self.assertTrue(config.do_kshorts)
        self.assertTrue(config.use_ref_tracks)

    def test_main_writes_tables_and_runs_custom_script(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            events_path = _write_json(tmpdir, "events.json", {"events": [_event_payload()]})
            script = Path(tmpdir) / "count.py"
            script.write_text(
                "from pathlib import Path\n"
                "def process(collections, context):\n"
                "    out = Path(context['output_paths']['kshorts']).with_name('count.txt')\n"
                "    out.write_text(str(len(collections.kshorts)))\n",
                encoding="utf-8",
            )
            out_dir = Path(tmpdir) / "out"
            code = main(
                [
                    "--events", str(events_path),
                    "--out-dir", str(out_dir),
                    "--format", "csv",
                    "--custom-script", str(script),
                ]
            )
            self.assertEqual(code, 0)
            for name in ("kshorts", "lambdas", "d0s"):
                self.assertTrue((out_dir / f"{name}.csv").exists())
            self.assertEqual(len(pd.read_csv(out_dir / "kshorts.csv")), 1)
            self.assertEqual((out_dir / "count.txt").read_text(encoding="utf-8"), "1")


if __name__ == "__main__":
    unittest.main()
