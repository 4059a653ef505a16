#!/usr/bin/env python3
"""Compute chart overlays for one OHLCV CSV.

Loads bars, validates them, runs every indicator in the overlay profile
and prints a summary.  Optionally writes the chart payload as JSON and an
interactive Plotly chart.

Usage
-----
    python scripts/run_overlays.py --csv data/BTCUSD_1h.csv
    python scripts/run_overlays.py --csv bars.csv --profile configs/overlays_default.yaml
    python scripts/run_overlays.py --csv bars.csv --json --html out/chart.html

Exit codes: 0 = success, 1 = invalid profile or bar data.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure src/ is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from tacore.chart_inspector import build_overlay_payload, render_overlay_html  # noqa: E402
from tacore.config import load_overlay_profile  # noqa: E402
from tacore.data_loader import load_ohlcv_csv, validate_bars  # noqa: E402
from tacore.overlays import compute_overlays, default_specs, summarize  # noqa: E402
from tacore.validation import ConfigurationError  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_overlays")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Compute trailing-stop and level overlays for an OHLCV CSV.",
    )
    parser.add_argument("--csv", required=True, type=Path, help="OHLCV CSV file.")
    parser.add_argument(
        "--profile",
        type=Path,
        default=None,
        help="Overlay profile YAML (default: every indicator at defaults).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print the summary as JSON.",
    )
    parser.add_argument(
        "--payload",
        type=Path,
        default=None,
        help="Write the full chart payload JSON to this path.",
    )
    parser.add_argument("--html", type=Path, default=None, help="Write a Plotly chart here.")
    args = parser.parse_args(argv)

    try:
        specs = load_overlay_profile(args.profile).indicators if args.profile else default_specs()
    except ConfigurationError as exc:
        logger.error("Invalid overlay profile: %s", exc)
        return 1

    df = load_ohlcv_csv(args.csv)
    problems = validate_bars(df)
    if problems:
        for p in problems:
            logger.error("Bar data: %s", p)
        return 1

    results = compute_overlays(df, specs)
    summary = summarize(results)

    if args.json_output:
        print(json.dumps(summary, indent=2))
    else:
        for key, item in summary.items():
            direction = item.get("direction")
            dir_txt = "" if direction is None else (" LONG" if direction > 0 else " SHORT")
            print(f"{key:<28}{dir_txt:<7} events={item['events']:<5} warmup={item['warmup']}")

    if args.payload:
        args.payload.parent.mkdir(parents=True, exist_ok=True)
        args.payload.write_text(json.dumps(build_overlay_payload(df, results)))
        logger.info("Wrote payload to %s", args.payload)
    if args.html:
        render_overlay_html(df, results, args.html, title=args.csv.stem)
        logger.info("Wrote chart to %s", args.html)
    return 0


if __name__ == "__main__":
    sys.exit(main())
