"""Command-line interface for running the V0 fitter on event inputs."""

from __future__ import annotations

import argparse
import dataclasses
import importlib.util
import logging
from pathlib import Path
from typing import Any

from .fitter import V0Fitter
from .io import load_config_json, load_events_json, write_candidates_table
from .models import V0Collections, V0Config

_NUMERIC_CUTS = (
    "tk_chi2_cut",
    "tk_pt_cut",
    "tk_ip_sig_xy_cut",
    "tk_ip_sig_z_cut",
    "vtx_chi2_cut",
    "vtx_decay_sig_xyz_cut",
    "vtx_decay_sig_xy_cut",
    "tk_dca_cut",
    "mpipi_cut",
    "cos_theta_xy_cut",
    "cos_theta_xyz_cut",
    "kshort_mass_cut",
    "lambda_mass_cut",
    "d0_mass_cut",
)


# CLI switch -> argparse dest; the dest minus its "no_" prefix is the config field.
_DISABLE_SWITCHES = {
    "no-kshorts": "no_do_kshorts",
    "no-lambdas": "no_do_lambdas",
    "no-d0s": "no_do_d0s",
    "no-ref-tracks": "no_use_ref_tracks",
}


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="v0-fitter",
        description="Reconstruct K-short, Lambda and D0 candidates from oppositely charged track pairs.",
    )
    parser.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    parser.add_argument(
        "--config",
        default=None,
        help="Optional JSON configuration (snake_case or camelCase keys, optionally under 'v0').",
    )
    parser.add_argument("--out-dir", required=True, help="Directory for kshorts/lambdas/d0s tables.")
    parser.add_argument(
        "--format",
        default="parquet",
        choices=["parquet", "csv", "pkl"],
        help="Output table format.",
    )
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size for the pair loop.")
    parser.add_argument("--use-vertex", action="store_true", default=None, help="Use the first PV as reference.")
    parser.add_argument(
        "--adaptive-fitter",
        action="store_true",
        help="Use the adaptive vertex fitter instead of the Kalman fitter.",
    )
    for flag, dest in _DISABLE_SWITCHES.items():
        parser.add_argument(
            f"--{flag}",
            dest=dest,
            action="store_true",
            help=f"Set configuration value '{dest[3:]}' to false.",
        )
    parser.add_argument("--tk-nhits-cut", type=int, default=None, help="Track preselection: minimum valid hits.")
    for name in _NUMERIC_CUTS:
        parser.add_argument(
            f"--{name.replace('_', '-')}",
            dest=name,
            type=float,
            default=None,
            help=f"Override configuration value '{name}'.",
        )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(collections, context) function.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> V0Config:
    """Merge the optional config file with command-line overrides."""
    config = load_config_json(args.config) if args.config else V0Config()
    overrides: dict[str, Any] = {
        name: getattr(args, name) for name in _NUMERIC_CUTS if getattr(args, name) is not None
    }
    if args.tk_nhits_cut is not None:
        overrides["tk_nhits_cut"] = args.tk_nhits_cut
    if args.use_vertex:
        overrides["use_vertex"] = True
    if args.adaptive_fitter:
        overrides["vertex_fitter"] = False
    for dest in _DISABLE_SWITCHES.values():
        if getattr(args, dest):
            overrides[dest[3:]] = False
    return dataclasses.replace(config, **overrides)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load inputs, run the fitter, write tables, optional custom hook."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    config = config_from_args(args)
    events = load_events_json(args.events)

    fitter = V0Fitter(config=config, workers=args.workers)
    collections = fitter.fit_events(events)

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    output_paths = {}
    for name, candidates in (
        ("kshorts", collections.kshorts),
        ("lambdas", collections.lambdas),
        ("d0s", collections.d0s),
    ):
        path = out_dir / f"{name}.{args.format}"
        write_candidates_table(path, candidates)
        output_paths[name] = path
    logging.getLogger(__name__).info(
        "wrote %d candidates from %d events to %s", collections.total, len(events), out_dir
    )

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            collections=collections,
            context={
                "events_path": args.events,
                "config": config,
                "output_paths": output_paths,
                "n_events": len(events),
            },
        )
    return 0


def run_custom_script(
    script_path: str, collections: V0Collections, context: dict[str, Any]
) -> None:
    """Execute user-supplied post-processing callback `process(collections, context)`."""
    module = _load_module(script_path)
    process = getattr(module, "process", None)
    if process is None or not callable(process):
        raise ValueError(
            f"Custom script {script_path} must define callable process(collections, context)."
        )
    process(collections, context)


def _load_module(script_path: str):
    """Import a Python module from an arbitrary file path."""
    path = Path(script_path)
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot import custom script: {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


if __name__ == "__main__":
    raise SystemExit(main())
