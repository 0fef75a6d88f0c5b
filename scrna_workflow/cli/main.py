"""Command-line interface for scrna-workflow.

Provides commands for running single workflow stages or the whole
workflow from a YAML configuration.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .. import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("scrna_workflow.cli")


def _load_config(config: Optional[str], output_path: Optional[str]):
    from scrna_workflow.workflow import WorkflowConfig

    cfg = WorkflowConfig.from_yaml(Path(config)) if config else WorkflowConfig()
    if output_path:
        cfg.results_dir = output_path
    return cfg


def _run_single(ctx: click.Context, stage: str, cfg, input_path: Optional[str]) -> None:
    from scrna_workflow.workflow import WorkflowRunner
    from scrna_workflow.workflow.logger import setup_logging as setup_stage_logging

    logger = setup_stage_logging(
        verbose=ctx.obj["debug"],
        log_dir=Path(cfg.log_dir),
        log_filename=f"{stage}.log",
    )
    try:
        runner = WorkflowRunner(cfg, logger)
        adata = runner.run_stage(stage, input_path=Path(input_path) if input_path else None)
    except Exception as e:
        ctx.obj["logger"].debug("Stage %s failed", stage, exc_info=True)
        click.echo(f"Stage {stage} failed: {e}", err=True)
        sys.exit(1)
    finally:
        logger.close()

    click.echo(f"Stage {stage} complete: {adata.n_obs:,} cells x {adata.n_vars:,} genes")
    click.echo(f"Checkpoint saved to: {runner.checkpoint_path(stage)}")


def stage_options(func):
    """Options shared by single-stage commands."""
    options = [
        click.option("--input", "-i", "input_path", type=click.Path(exists=True),
                     help="Input .h5ad (default: previous stage checkpoint)"),
        click.option("--out", "-o", "output_path", type=click.Path(),
                     help="Results directory (overrides config)"),
        click.option("--config", "-c", type=click.Path(exists=True),
                     help="Workflow configuration file (YAML)"),
        click.option("--skip-figures", is_flag=True, help="Skip figure generation"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="scrna-workflow")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """scrna-workflow: two-condition single-cell RNA-seq analysis.

    Loads 10x matrices for a control and a stimulated sample, filters
    cells, normalizes, integrates the conditions, clusters, finds
    markers and annotates clusters.

    Examples:

        # Load both conditions
        scrna-workflow load -s ctrl=data/ctrl -s stim=data/stim -o results

        # Cell QC with custom thresholds
        scrna-workflow qc -o results --min-umi 500 --max-mito 0.2

        # Conserved markers of cluster 10 with gene descriptions
        scrna-workflow markers -o results -a annotation.csv --clusters 10

        # Whole workflow from a config file
        scrna-workflow run --config workflow.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--sample", "-s", "samples", multiple=True, metavar="ID=DIR",
              help="Sample id and 10x matrix directory (repeat per condition)")
@stage_options
@click.pass_context
def load(
    ctx: click.Context,
    samples: Tuple[str, ...],
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """Load 10x matrices per sample and merge them."""
    from scrna_workflow.workflow.stage_cli import parse_samples

    cfg = _load_config(config, output_path)
    if samples:
        cfg.samples = parse_samples(list(samples))
    if input_path:
        raise click.UsageError("load reads 10x directories; use --sample instead of --input")
    _run_single(ctx, "load", cfg, None)


@cli.command()
@click.option("--min-umi", type=int, help="Minimum UMIs per cell")
@click.option("--min-genes", type=int, help="Minimum detected genes per cell")
@click.option("--min-novelty", type=float, help="Minimum log10 genes per UMI")
@click.option("--max-mito", type=float, help="Maximum mitochondrial ratio")
@stage_options
@click.pass_context
def qc(
    ctx: click.Context,
    min_umi: Optional[int],
    min_genes: Optional[int],
    min_novelty: Optional[float],
    max_mito: Optional[float],
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """Compute QC metrics and filter cells and genes."""
    cfg = _load_config(config, output_path)
    qc_cfg = cfg.preprocessing.qc
    qc_cfg.min_umi = min_umi if min_umi is not None else qc_cfg.min_umi
    qc_cfg.min_genes = min_genes if min_genes is not None else qc_cfg.min_genes
    qc_cfg.min_novelty = min_novelty if min_novelty is not None else qc_cfg.min_novelty
    qc_cfg.max_mito_ratio = max_mito if max_mito is not None else qc_cfg.max_mito_ratio
    cfg.make_figures = not skip_figures
    _run_single(ctx, "qc", cfg, input_path)


@cli.command()
@click.option("--method", type=click.Choice(["pearson_residuals", "log"]),
              help="Variance stabilization method")
@click.option("--n-top-genes", type=int, help="Number of highly variable genes")
@click.option("--cell-cycle", type=click.Path(exists=True),
              help="Cell-cycle gene list CSV (phase, gene)")
@click.option("--annotations", "-a", type=click.Path(exists=True),
              help="Gene annotation CSV for Ensembl id to symbol mapping")
@stage_options
@click.pass_context
def normalize(
    ctx: click.Context,
    method: Optional[str],
    n_top_genes: Optional[int],
    cell_cycle: Optional[str],
    annotations: Optional[str],
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """Normalize, score the cell cycle and stabilize variance."""
    cfg = _load_config(config, output_path)
    norm_cfg = cfg.preprocessing.normalization
    norm_cfg.method = method or norm_cfg.method
    norm_cfg.n_top_genes = n_top_genes if n_top_genes is not None else norm_cfg.n_top_genes
    if cell_cycle:
        cfg.preprocessing.cell_cycle.gene_list_path = cell_cycle
    if annotations:
        cfg.annotation_path = annotations
    cfg.make_figures = not skip_figures
    _run_single(ctx, "normalize", cfg, input_path)


@cli.command()
@click.option("--method", type=click.Choice(["harmony", "none"]), help="Integration method")
@click.option("--n-pcs", type=int, help="Principal components before integration")
@click.option("--fallback", type=click.Path(exists=True),
              help="Precomputed clustered .h5ad used if integration cannot run")
@click.option("--prefer-fallback", is_flag=True, help="Load --fallback without integrating")
@stage_options
@click.pass_context
def integrate(
    ctx: click.Context,
    method: Optional[str],
    n_pcs: Optional[int],
    fallback: Optional[str],
    prefer_fallback: bool,
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """PCA and Harmony integration of the conditions."""
    cfg = _load_config(config, output_path)
    int_cfg = cfg.preprocessing.integration
    int_cfg.method = method or int_cfg.method
    int_cfg.n_pcs = n_pcs if n_pcs is not None else int_cfg.n_pcs
    if fallback:
        int_cfg.fallback_path = fallback
    if prefer_fallback:
        if not int_cfg.fallback_path:
            raise click.UsageError("--prefer-fallback needs --fallback or a configured path")
        int_cfg.prefer_fallback = True
    cfg.make_figures = not skip_figures
    _run_single(ctx, "integrate", cfg, input_path)


@cli.command()
@click.option("--resolutions", "-r", type=float, multiple=True,
              help="Leiden resolution (repeatable)")
@click.option("--active-resolution", type=float, help="Resolution used as the active clustering")
@click.option("--n-pcs", type=int, help="Components of the integrated embedding")
@click.option("--neighbors-k", type=int, help="Number of neighbors")
@click.option("--no-umap", is_flag=True, help="Skip UMAP")
@stage_options
@click.pass_context
def cluster(
    ctx: click.Context,
    resolutions: Tuple[float, ...],
    active_resolution: Optional[float],
    n_pcs: Optional[int],
    neighbors_k: Optional[int],
    no_umap: bool,
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """Build the neighbor graph, UMAP and Leiden clusterings."""
    cfg = _load_config(config, output_path)
    clus = cfg.clustering_stage.clustering
    if resolutions:
        clus.resolutions = list(resolutions)
    if active_resolution is not None:
        clus.active_resolution = active_resolution
    clus.n_pcs = n_pcs if n_pcs is not None else clus.n_pcs
    clus.neighbors_k = neighbors_k if neighbors_k is not None else clus.neighbors_k
    if no_umap:
        clus.compute_umap = False
    cfg.make_figures = not skip_figures
    _run_single(ctx, "cluster", cfg, input_path)


@cli.command()
@click.option("--annotations", "-a", type=click.Path(exists=True),
              help="Gene annotation CSV joined onto conserved markers")
@click.option("--clusters", multiple=True, help="Cluster for conserved markers (repeatable)")
@click.option("--min-pct", type=float, help="Minimum detection fraction in either group")
@click.option("--logfc-threshold", type=float, help="Minimum absolute log2 fold change")
@stage_options
@click.pass_context
def markers(
    ctx: click.Context,
    annotations: Optional[str],
    clusters: Tuple[str, ...],
    min_pct: Optional[float],
    logfc_threshold: Optional[float],
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """All-vs-rest and conserved marker tables."""
    cfg = _load_config(config, output_path)
    de = cfg.clustering_stage.de
    de.min_pct = min_pct if min_pct is not None else de.min_pct
    de.logfc_threshold = logfc_threshold if logfc_threshold is not None else de.logfc_threshold
    if annotations:
        cfg.annotation_path = annotations
    if clusters:
        cfg.conserved_clusters = [str(c) for c in clusters]
    cfg.make_figures = not skip_figures
    _run_single(ctx, "markers", cfg, input_path)


@cli.command()
@click.option("--labels", "-l", type=click.Path(exists=True),
              help="YAML mapping cluster id -> cell-type label")
@click.option("--marker-genes", "-g", multiple=True, help="Gene to plot (repeatable)")
@stage_options
@click.pass_context
def annotate(
    ctx: click.Context,
    labels: Optional[str],
    marker_genes: Tuple[str, ...],
    input_path: Optional[str],
    output_path: Optional[str],
    config: Optional[str],
    skip_figures: bool,
) -> None:
    """Rename clusters to cell types."""
    from scrna_workflow.workflow.stage_cli import load_labels

    cfg = _load_config(config, output_path)
    stage_cfg = cfg.clustering_stage
    if labels:
        stage_cfg.annotation.labels = load_labels(Path(labels))
    if marker_genes:
        stage_cfg.marker_genes = list(marker_genes)
    cfg.make_figures = not skip_figures
    _run_single(ctx, "annotate", cfg, input_path)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Workflow configuration file (YAML)")
@click.option("--start-stage", help="Stage to start from")
@click.option("--end-stage", help="Stage to end at")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.option("--force", is_flag=True, help="Ignore checkpoint and re-run all stages")
@click.option("--resume", is_flag=True, help="Resume from last completed stage")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    start_stage: Optional[str],
    end_stage: Optional[str],
    dry_run: bool,
    force: bool,
    resume: bool,
) -> None:
    """Run the workflow from a YAML configuration.

    Stages: load, qc, normalize, integrate, cluster, markers, annotate.
    """
    from scrna_workflow.workflow import WorkflowConfig, WorkflowLogger, WorkflowRunner

    verbose = ctx.obj["verbose"]
    click.echo(f"Loading workflow config: {config}")
    try:
        cfg = WorkflowConfig.from_yaml(Path(config))
    except (OSError, TypeError, ValueError) as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    valid, errors = cfg.validate()
    if not valid:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    logger = WorkflowLogger(cfg.log_dir, log_level="DEBUG" if verbose else "INFO")
    logger.setup(console=not dry_run)
    runner = WorkflowRunner(cfg, logger)

    try:
        order = runner.plan(start_stage, end_stage)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Workflow stages: {' -> '.join(order)}")

    if dry_run:
        click.echo("Dry run - no stages will be executed")
        runner.load_state()
        for stage in order:
            done = "done" if stage in runner.completed_stages else "pending"
            click.echo(f"  {stage}: {runner.checkpoint_path(stage)} ({done})")
        logger.close()
        return

    if resume:
        resume_stage = runner.get_resume_stage()
        if resume_stage:
            click.echo(f"Resuming from stage: {resume_stage}")
            start_stage = resume_stage

    exit_code = runner.run(start_stage=start_stage, end_stage=end_stage, force=force)
    logger.close()

    if exit_code == 0:
        click.echo("Workflow completed successfully")
    else:
        click.echo(f"Workflow failed with exit code {exit_code}", err=True)
        sys.exit(exit_code)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
