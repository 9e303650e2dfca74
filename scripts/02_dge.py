#!/usr/bin/env python3
"""
Stage 02: Differential Gene Expression
======================================
Compare tissue subtypes within each tumor type using negative binomial
quasi-likelihood models, and draw volcano / heatmap / boxplot figures.

Inputs:
- ../outputs/01-sce.h5ad (counts layer, logcounts in X, TumorType / TissueSub)

Outputs:
- ../outputs/02-dge.parquet
- ../outputs/figures/02-dge/*.{png,pdf}

Requirements:
- the tissue-dge package (pip install -e .)
"""

import argparse
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

from tissue_dge.cli import main as cli_main

DEFAULT_CONFIG = Path(__file__).parents[1] / "config" / "default.yaml"


def main() -> int:
    parser = argparse.ArgumentParser(description="Stage 02: differential gene expression")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG,
                        help="Analysis YAML config (default: config/default.yaml)")
    parser.add_argument("--output-dir", type=Path,
                        help="Outputs directory (default: from config)")
    parser.add_argument("--no-figures", action="store_true",
                        help="Skip figure rendering")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    argv = ["-v"] if args.verbose else []
    argv += ["run", "--config", str(args.config)]
    if args.output_dir:
        argv += ["--output", str(args.output_dir)]
    if args.no_figures:
        argv.append("--no-figures")
    return cli_main(argv)


if __name__ == '__main__':
    sys.exit(main())
