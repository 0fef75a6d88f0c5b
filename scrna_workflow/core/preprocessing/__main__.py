"""Preprocessing module CLI runner.

Enables running preprocessing stages as:
    python -m scrna_workflow.core.preprocessing --stage load --sample ctrl=<dir> --sample stim=<dir> --output <dir>
    python -m scrna_workflow.core.preprocessing --stage qc --output <dir>

Each stage reads the previous stage's checkpoint from the output
directory unless ``--input`` is given, and writes ``<stage>.h5ad`` plus
its tables there.

Usage Examples:
    # Load and merge the two conditions
    python -m scrna_workflow.core.preprocessing --stage load \
        --sample ctrl=data/ctrl_raw_feature_bc_matrix \
        --sample stim=data/stim_raw_feature_bc_matrix \
        --output results

    # Cell QC on the merged object
    python -m scrna_workflow.core.preprocessing --stage qc --output results

    # Normalization with a cell-cycle list and gene annotations
    python -m scrna_workflow.core.preprocessing --stage normalize \
        --cell-cycle data/cycle.csv --annotations data/annotation.csv \
        --output results --log-dir logs --verbose
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from ...workflow.stage_cli import add_common_arguments, build_config, run_stage

STAGE_CHOICES = ["load", "qc", "normalize", "integrate"]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="scrna-workflow preprocessing stages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scrna_workflow.core.preprocessing --stage load \\
      --sample ctrl=data/ctrl_raw_feature_bc_matrix \\
      --sample stim=data/stim_raw_feature_bc_matrix --output results
  python -m scrna_workflow.core.preprocessing --stage integrate --output results \\
      --fallback data/integrated_seurat.h5ad
        """,
    )
    parser.add_argument(
        "--stage", "-s",
        type=str,
        choices=STAGE_CHOICES,
        required=True,
        help="Stage to run",
    )
    parser.add_argument(
        "--sample",
        action="append",
        metavar="ID=DIR",
        help="Sample id and 10x matrix directory (repeat per condition)",
    )
    parser.add_argument(
        "--cell-cycle",
        type=Path,
        default=None,
        help="Cell-cycle gene list CSV (phase, gene)",
    )
    parser.add_argument(
        "--fallback",
        type=Path,
        default=None,
        help="Precomputed clustered .h5ad used if integration cannot run",
    )
    parser.add_argument(
        "--prefer-fallback",
        action="store_true",
        help="Load --fallback without attempting integration",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None):
    """CLI entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
        run_stage(
            args.stage,
            config,
            input_path=args.input,
            verbose=args.verbose,
            log_dir=args.log_dir,
        )
    except Exception as e:
        logging.error(f"Stage {args.stage} failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
