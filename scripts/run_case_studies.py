"""Run the time-series case studies.

Each case study loads its series, decomposes it, fits exponential
smoothing, ARIMA and GLS models, runs residual diagnostics, and compares
the models by SSE. Figures and tables go to results/<case_study>/.

Usage:
    python scripts/run_case_studies.py
    python scripts/run_case_studies.py --case configs/case_studies/kings.yaml
    python scripts/run_case_studies.py --workers 3 --no-plots
"""

import argparse
import logging
import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tsdiag.errors import ConfigurationError
from tsdiag.evaluation.comparison import compare_case_studies
from tsdiag.pipeline import CaseStudyConfig, CaseStudyResult, run_case_studies
from tsdiag.utils.config import DEFAULTS_PATH, list_case_studies, load_case_study_config


def print_case_study(result: CaseStudyResult) -> None:
    """Print model summaries and the SSE table for one case study."""
    print(f"\n{'='*70}")
    print(f"  {result.name}")
    print(f"{'='*70}")

    if not result.ok:
        print(f"  FAILED - {result.error}")
        return

    print(f"  Observations: {len(result.series)}, frequency={result.series.frequency}, "
          f"start={result.series.start}")

    for kind, model in result.models.items():
        print(f"\n  {model.name}")
        for name, value in model.coefficients.items():
            print(f"    {name:>12s}: {value:.4f}")
        if kind == "arima" and model.extra.get("candidates"):
            print(f"    selected by {model.extra['ic'].upper()} from "
                  f"{len(model.extra['candidates'])} candidates")

        lb = result.diagnostics[kind].ljung_box
        if lb.degenerate:
            print("    Ljung-Box: degenerate (zero residual variance)")
        else:
            print(f"    Ljung-Box: Q={lb.statistic:.3f}, df={lb.df}, p={lb.p_value:.4f}")

        forecast = result.forecasts[kind]
        if forecast.horizon:
            print(f"    Forecast (h={forecast.horizon}): first={forecast.mean[0]:.4f}, "
                  f"last={forecast.mean[-1]:.4f}")

    print("\n  SSE comparison (raw, not adjusted for residual count):")
    print(result.comparison.to_string(float_format=lambda x: f"{x:.4f}"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run time-series case studies")
    parser.add_argument("--case", type=str, nargs="+", default=None,
                        help="Case-study YAML file(s) (default: all in configs/case_studies)")
    parser.add_argument("--defaults", type=str, default=str(DEFAULTS_PATH),
                        help="Shared defaults YAML")
    parser.add_argument("--results-dir", type=str, default=None,
                        help="Override output.results_dir")
    parser.add_argument("--workers", type=int, default=1,
                        help="Worker processes (default: 1, sequential)")
    parser.add_argument("--no-plots", action="store_true",
                        help="Skip figure rendering")
    parser.add_argument("--log-level", type=str, default="INFO",
                        help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    case_paths = [Path(p) for p in args.case] if args.case else list_case_studies()
    if not case_paths:
        print("No case-study configs found.")
        return

    configs: list[CaseStudyConfig] = []
    for path in case_paths:
        config = load_case_study_config(path, args.defaults)
        if args.results_dir:
            config.setdefault("output", {})["results_dir"] = args.results_dir
        if args.no_plots:
            config.setdefault("output", {})["plots"] = False
        try:
            configs.append(CaseStudyConfig.from_dict(config))
        except ConfigurationError as e:
            print(f"Skipping {path}: {e}")

    results = run_case_studies(configs, workers=args.workers)

    for result in results:
        print_case_study(result)

    results_dir = Path(args.results_dir) if args.results_dir else None
    if results_dir is None and configs and configs[0].results_dir is not None:
        results_dir = configs[0].results_dir.parent
    summary = compare_case_studies(
        {r.name: r.comparison for r in results if r.ok and r.comparison is not None},
        statuses={r.name: r.status for r in results},
        output_dir=results_dir,
    )

    n_failed = sum(not r.ok for r in results)
    print(f"\n{'='*70}")
    print(f"  {len(results) - n_failed}/{len(results)} case studies completed")
    print(f"{'='*70}")
    print(summary.to_string(index=False, float_format=lambda x: f"{x:.4f}"))


if __name__ == "__main__":
    main()
