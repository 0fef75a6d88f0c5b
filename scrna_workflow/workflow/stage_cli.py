"""Argument handling shared by the ``python -m`` stage runners."""

import argparse
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .config import WorkflowConfig
from .logger import setup_logging
from .runner import WorkflowRunner


def parse_samples(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse ``ID=DIR`` pairs, preserving order.

    Raises
    ------
    ValueError
        If a value has no ``=`` or an id repeats
    """
    samples: Dict[str, str] = {}
    for value in values or []:
        sample_id, sep, path = value.partition("=")
        if not sep or not sample_id or not path:
            raise ValueError(f"Expected ID=DIR, got '{value}'")
        if sample_id in samples:
            raise ValueError(f"Sample '{sample_id}' given twice")
        samples[sample_id] = path
    return samples


def build_config(args: argparse.Namespace) -> WorkflowConfig:
    """Workflow configuration from ``--config`` with command-line overrides."""
    config = WorkflowConfig.from_yaml(args.config) if args.config else WorkflowConfig()
    config.results_dir = str(args.output)
    config.make_figures = not args.skip_figures
    config.dpi = args.dpi

    samples = parse_samples(getattr(args, "sample", None))
    if samples:
        config.samples = samples
    if getattr(args, "cell_cycle", None):
        config.cell_cycle_path = str(args.cell_cycle)
        config.preprocessing.cell_cycle.gene_list_path = str(args.cell_cycle)
    if getattr(args, "fallback", None):
        config.fallback_path = str(args.fallback)
        config.preprocessing.integration.fallback_path = str(args.fallback)
    if getattr(args, "prefer_fallback", False):
        config.preprocessing.integration.prefer_fallback = True
    if args.annotations:
        config.annotation_path = str(args.annotations)
    return config


def run_stage(
    stage: str,
    config: WorkflowConfig,
    input_path: Optional[Path] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
):
    """Run one workflow stage with a console (and optional file) logger.

    Returns
    -------
    AnnData
        Object written as the stage checkpoint
    """
    logger = setup_logging(verbose, log_dir=log_dir, log_filename=f"{stage}.log")
    logger.log_info(f"Output: {config.results_dir}")
    if input_path is not None:
        logger.log_info(f"Input: {input_path}")
    try:
        return WorkflowRunner(config, logger).run_stage(stage, input_path=input_path)
    finally:
        logger.close()


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--input", "-i",
        type=Path,
        default=None,
        help="Input .h5ad (default: previous stage checkpoint in --output)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Results directory",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to workflow config YAML (optional)",
    )
    parser.add_argument(
        "--annotations", "-a",
        type=Path,
        default=None,
        help="Gene annotation CSV (gene_name, description, gene_id)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--skip-figures",
        action="store_true",
        help="Skip figure generation",
    )
    parser.add_argument(
        "--dpi",
        type=int,
        default=200,
        help="Figure resolution (default: 200)",
    )
    parser.add_argument(
        "--log-dir", "-l",
        type=Path,
        default=None,
        help="Directory for log file (default: console only)",
    )


def load_labels(path: Path) -> Dict[str, str]:
    """Read a cluster id to cell-type label mapping from YAML.

    Accepts a flat mapping or one nested under ``labels``.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Label mapping not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if "labels" in data:
        data = data["labels"] or {}
    if not isinstance(data, dict):
        raise ValueError(f"Label mapping in {path} is not a mapping")
    return {str(k): str(v) for k, v in data.items()}
