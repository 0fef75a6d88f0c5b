"""Clustering module CLI runner.

Enables running the clustering, marker and annotation stages as:
    python -m scrna_workflow.core.clustering --stage cluster --output <dir>
    python -m scrna_workflow.core.clustering --stage markers --output <dir> --annotations <csv>
    python -m scrna_workflow.core.clustering --stage annotate --output <dir> --labels <yaml>

Usage Examples:
    # Leiden sweep, choosing resolution 0.8 as the active clustering
    python -m scrna_workflow.core.clustering --stage cluster \
        --output results --resolutions 0.4 0.6 0.8 1.0 1.4 --active-resolution 0.8

    # Conserved markers for selected clusters with gene descriptions
    python -m scrna_workflow.core.clustering --stage markers \
        --output results --annotations data/annotation.csv --clusters 0 3 10

    # Cell-type labels from a YAML mapping (cluster id: label)
    python -m scrna_workflow.core.clustering --stage annotate \
        --output results --labels configs/labels.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from ...workflow.stage_cli import add_common_arguments, build_config, load_labels, run_stage

STAGE_CHOICES = ["cluster", "markers", "annotate"]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="scrna-workflow clustering, marker and annotation stages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--stage", "-s",
        type=str,
        choices=STAGE_CHOICES,
        required=True,
        help="Stage to run",
    )

    # Clustering parameters
    parser.add_argument(
        "--n-pcs",
        type=int,
        default=None,
        help="Components of the integrated embedding used for the graph",
    )
    parser.add_argument(
        "--neighbors-k",
        type=int,
        default=None,
        help="Number of neighbors for the kNN graph",
    )
    parser.add_argument(
        "--resolutions",
        type=float,
        nargs="+",
        default=None,
        help="Leiden resolutions to compute",
    )
    parser.add_argument(
        "--active-resolution",
        type=float,
        default=None,
        help="Resolution copied into the active cluster column",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed",
    )

    # Marker and annotation parameters
    parser.add_argument(
        "--clusters",
        nargs="+",
        default=None,
        help="Clusters for conserved markers (default: all)",
    )
    parser.add_argument(
        "--marker-genes",
        nargs="+",
        default=None,
        help="Genes drawn in feature and violin plots",
    )
    parser.add_argument(
        "--labels",
        type=Path,
        default=None,
        help="YAML mapping cluster id -> cell-type label",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None):
    """CLI entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
        stage_cfg = config.clustering_stage
        clustering = stage_cfg.clustering
        if args.n_pcs is not None:
            clustering.n_pcs = args.n_pcs
        if args.neighbors_k is not None:
            clustering.neighbors_k = args.neighbors_k
        if args.resolutions is not None:
            clustering.resolutions = list(args.resolutions)
        if args.active_resolution is not None:
            clustering.active_resolution = args.active_resolution
        if args.seed is not None:
            clustering.random_seed = args.seed
        if args.clusters is not None:
            config.conserved_clusters = [str(c) for c in args.clusters]
        if args.marker_genes is not None:
            stage_cfg.marker_genes = list(args.marker_genes)
        if args.labels is not None:
            stage_cfg.annotation.labels = load_labels(args.labels)

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
