"""
Command-line interface for tissue-dge.

Usage:
    tissue-dge run --config config/default.yaml
    tissue-dge run --config config/default.yaml -o ../outputs --no-figures
    tissue-dge plot --config config/default.yaml --results ../outputs/02-dge.parquet
    tissue-dge summary --results ../outputs/02-dge.parquet --fdr 0.05 --lfc 1
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger("tissue_dge")


def _setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


def _load_config(args: argparse.Namespace):
    from tissue_dge.core.config import Config

    config = Config.from_yaml(args.config)
    if getattr(args, "output", None):
        config.outputs_dir = Path(args.output)
    return config


def cmd_run(args: argparse.Namespace) -> int:
    """Fit models, test contrasts and write the result table."""
    from tissue_dge.pipeline import DGEPipeline

    try:
        config = _load_config(args)
        pipeline = DGEPipeline(config)
        result = pipeline.run(figures=False if args.no_figures else None)
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "Results saved to %s (%d rows, %d figure files)",
        result.output_path, len(result.results), len(result.figure_paths),
    )
    return 0


def cmd_plot(args: argparse.Namespace) -> int:
    """Redraw figures from an existing result table."""
    from tissue_dge.export import read_results
    from tissue_dge.pipeline import DGEPipeline

    try:
        config = _load_config(args)
        results = read_results(args.results)
        pipeline = DGEPipeline(config)
        reshaped, strata = pipeline.prepare(pipeline.load())
        paths = pipeline.render_figures(results, reshaped, strata)
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error("%s", e)
        return 1

    logger.info("Wrote %d figure files", len(paths))
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    """Print up/down counts per test of a result table."""
    from tissue_dge.differential import summarize_results
    from tissue_dge.export import read_results

    try:
        results = read_results(args.results)
        summary = summarize_results(
            results,
            fdr_threshold=args.fdr,
            lfc_threshold=args.lfc,
            tumor_label=args.tumor_col,
        )
    except (FileNotFoundError, KeyError) as e:
        logger.error("%s", e)
        return 1

    print(summary.to_string())
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tissue-dge",
        description="Stratified quasi-likelihood differential expression between tissue subtypes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run the analysis from a YAML config")
    p_run.add_argument("--config", required=True, help="Analysis YAML config file")
    p_run.add_argument("--output", "-o", help="Outputs directory (input and result artifacts)")
    p_run.add_argument("--no-figures", action="store_true", help="Skip figure rendering")
    p_run.set_defaults(func=cmd_run)

    # --- plot ---
    p_plot = subparsers.add_parser("plot", help="Render figures from saved results")
    p_plot.add_argument("--config", required=True, help="Analysis YAML config file")
    p_plot.add_argument("--results", required=True, help="Result Parquet file")
    p_plot.add_argument("--output", "-o", help="Outputs directory")
    p_plot.set_defaults(func=cmd_plot)

    # --- summary ---
    p_sum = subparsers.add_parser("summary", help="Count significant genes per test")
    p_sum.add_argument("--results", required=True, help="Result Parquet file")
    p_sum.add_argument("--fdr", type=float, default=0.05, help="FDR threshold")
    p_sum.add_argument("--lfc", type=float, default=0.0, help="Absolute logFC threshold")
    p_sum.add_argument("--tumor-col", default="TumorType", help="Tumor type column")
    p_sum.set_defaults(func=cmd_summary)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    _setup_logging(verbose=args.verbose, log_file=args.log_file)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
