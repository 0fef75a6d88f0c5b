"""Sequential workflow runner with checkpoint and resume support.

Stages run in a fixed order. After each stage the working AnnData is
written to ``<results_dir>/<stage>.h5ad`` together with the stage's
tables, a summary record is appended to ``<results_dir>/workflow_summary.jsonl``
and the stage is recorded in the state file. A rerun skips recorded
stages and resumes from the last checkpoint.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from .. import __version__
from ..io.logging import log_json, stage_record
from ..io.tables import (
    ensure_output_dir,
    id_to_symbol_map,
    load_gene_annotations,
    read_h5ad,
    write_dataframe,
    write_h5ad,
)
from .config import WorkflowConfig
from .logger import WorkflowLogger

STAGES: List[str] = [
    "load",
    "qc",
    "normalize",
    "integrate",
    "cluster",
    "markers",
    "annotate",
]

STAGE_NAMES: Dict[str, str] = {
    "load": "Load and merge 10x matrices",
    "qc": "Cell quality control",
    "normalize": "Normalization and cell-cycle scoring",
    "integrate": "Condition integration",
    "cluster": "Graph clustering",
    "markers": "Marker identification",
    "annotate": "Cluster annotation",
}

StageOutput = Tuple[Any, Dict[str, Any]]


class WorkflowRunner:
    """Runs workflow stages in order with checkpointing.

    Parameters
    ----------
    config : WorkflowConfig
        Workflow configuration
    logger : WorkflowLogger, optional
        Initialized logger. A console + file logger in ``config.log_dir``
        is set up if None.
    state_file : str, optional
        Checkpoint state file (``<results_dir>/.workflow_state.json``
        if None)

    Attributes
    ----------
    completed_stages : List[str]
        Stages recorded as complete
    results : Dict[str, Dict[str, Any]]
        Summary of every stage run in this session

    Example
    -------
    >>> config = WorkflowConfig.from_yaml("workflow.yaml")
    >>> runner = WorkflowRunner(config)
    >>> exit_code = runner.run(end_stage="cluster")
    """

    def __init__(
        self,
        config: WorkflowConfig,
        logger: Optional[WorkflowLogger] = None,
        state_file: Optional[str] = None,
    ):
        self.config = config
        if logger is None:
            logger = WorkflowLogger(config.log_dir)
            logger.setup()
        self.logger = logger
        self.results_dir = config.results_path
        self.state_file = (
            Path(state_file) if state_file else self.results_dir / ".workflow_state.json"
        )
        self.summary_file = self.results_dir / "workflow_summary.jsonl"
        self.completed_stages: List[str] = []
        self.results: Dict[str, Dict[str, Any]] = {}
        self._annotations = None

        self._stage_funcs: Dict[str, Callable[[Any], StageOutput]] = {
            "load": self._run_load,
            "qc": self._run_qc,
            "normalize": self._run_normalize,
            "integrate": self._run_integrate,
            "cluster": self._run_cluster,
            "markers": self._run_markers,
            "annotate": self._run_annotate,
        }

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def checkpoint_path(self, stage: str) -> Path:
        return self.results_dir / f"{stage}.h5ad"

    def load_state(self) -> None:
        """Load completed stages from the state file.

        A missing or unreadable state file starts an empty state.
        """
        if not self.state_file.exists():
            self.logger.log_debug("No checkpoint file found, starting fresh")
            return

        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.log_warning(f"Failed to load checkpoint: {e}")
            self.completed_stages = []
            return

        self.completed_stages = [s for s in state.get("completed_stages", []) if s in STAGES]
        self.logger.log_info(
            f"Loaded checkpoint: {len(self.completed_stages)} stages completed"
        )

    def save_state(self) -> None:
        state = {
            "completed_stages": self.completed_stages,
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w") as f:
            json.dump(state, f, indent=2)

    def clear_state(self) -> None:
        """Clear checkpoint state (for fresh run)."""
        if self.state_file.exists():
            self.state_file.unlink()
            self.logger.log_info("Cleared checkpoint state")
        self.completed_stages = []

    def get_resume_stage(self) -> Optional[str]:
        """Next stage after the last completed one, or None."""
        self.load_state()
        if not self.completed_stages:
            return None
        last_idx = max(STAGES.index(s) for s in self.completed_stages)
        if last_idx + 1 < len(STAGES):
            return STAGES[last_idx + 1]
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def plan(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
    ) -> List[str]:
        """Stages between ``start_stage`` and ``end_stage`` inclusive.

        Raises
        ------
        ValueError
            If a stage name is unknown or the range is empty
        """
        for name in (start_stage, end_stage):
            if name is not None and name not in STAGES:
                raise ValueError(f"Unknown stage '{name}'. Valid stages: {STAGES}")
        start_idx = STAGES.index(start_stage) if start_stage else 0
        end_idx = STAGES.index(end_stage) + 1 if end_stage else len(STAGES)
        order = STAGES[start_idx:end_idx]
        if not order:
            raise ValueError(f"Stage '{start_stage}' comes after '{end_stage}'")
        return order

    def _input_for(self, stage: str):
        """Checkpoint of the stage preceding ``stage``."""
        idx = STAGES.index(stage)
        if idx == 0:
            return None
        previous = STAGES[idx - 1]
        path = self.checkpoint_path(previous)
        if not path.is_file():
            raise FileNotFoundError(
                f"Checkpoint for stage '{previous}' not found: {path}. "
                f"Run stage '{previous}' first."
            )
        self.logger.log_info(f"Resuming from checkpoint {path}")
        return read_h5ad(path)

    def execute_stage(self, stage: str, adata: Any = None) -> Any:
        """Run one stage, write its checkpoint and summary.

        Parameters
        ----------
        stage : str
            Stage name
        adata : AnnData, optional
            Working object. Read from the previous checkpoint if None.

        Returns
        -------
        AnnData
            Working object after the stage
        """
        if adata is None and stage != STAGES[0]:
            adata = self._input_for(stage)

        self.logger.log_stage_start(stage, STAGE_NAMES[stage])
        start_time = time.time()

        adata, summary = self._stage_funcs[stage](adata)

        write_h5ad(adata, self.checkpoint_path(stage))
        duration = time.time() - start_time
        summary["n_cells"] = int(adata.n_obs)
        summary["n_genes"] = int(adata.n_vars)
        summary["duration_seconds"] = round(duration, 2)
        log_json(self.summary_file, stage_record(stage, **summary))
        self.results[stage] = summary

        self.logger.log_stage_complete(stage, duration)
        if stage not in self.completed_stages:
            self.completed_stages.append(stage)
        self.save_state()
        return adata

    def run_stage(self, stage: str, input_path: Optional[Path] = None) -> Any:
        """Run a single stage outside the state-tracked sequence.

        Parameters
        ----------
        stage : str
            Stage name
        input_path : Path, optional
            Input .h5ad. The previous stage's checkpoint is used if None.

        Returns
        -------
        AnnData
            Working object after the stage
        """
        if stage not in STAGES:
            raise ValueError(f"Unknown stage '{stage}'. Valid stages: {STAGES}")
        adata = None
        if input_path is not None:
            if stage == STAGES[0]:
                raise ValueError(f"Stage '{stage}' reads 10x directories, not an input file")
            adata = read_h5ad(input_path)
        ensure_output_dir(self.results_dir)
        self.load_state()
        return self.execute_stage(stage, adata)

    def run(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
        force: bool = False,
    ) -> int:
        """Execute stages from ``start_stage`` to ``end_stage``.

        Parameters
        ----------
        start_stage : str, optional
            First stage (default: first stage)
        end_stage : str, optional
            Last stage (default: last stage)
        force : bool
            Ignore the state file and rerun every stage in range

        Returns
        -------
        int
            Exit code (0 = success, non-zero = failure)
        """
        try:
            order = self.plan(start_stage, end_stage)
        except ValueError as e:
            self.logger.log_error(str(e))
            return 1

        if force:
            self.clear_state()
        else:
            self.load_state()

        ensure_output_dir(self.results_dir)
        self.logger.log_info(f"Workflow execution plan: {' -> '.join(order)}")

        adata = None
        for stage in order:
            if (
                stage in self.completed_stages
                and not force
                and self.checkpoint_path(stage).is_file()
            ):
                self.logger.log_info(f"[SKIP] Stage {stage} already completed")
                adata = None
                continue
            try:
                adata = self.execute_stage(stage, adata)
            except Exception as e:
                self.logger.log_stage_error(stage, f"{type(e).__name__}: {e}")
                self.logger.log_debug("Stage traceback", exc_info=True)
                self.logger.log_error(f"Workflow failed at stage {stage}")
                return 1

        self.logger.log_info("Workflow completed successfully")
        return 0

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _child(self, name: str):
        return self.logger.get_child(name)

    def _gene_annotations(self):
        if self._annotations is None and self.config.annotation_path:
            self._annotations = load_gene_annotations(self.config.annotation_path)
        return self._annotations

    def _table(self, df, name: str, index: bool = False) -> str:
        return str(write_dataframe(df, self.results_dir / "tables" / name, index=index))

    def _run_load(self, adata: Any) -> StageOutput:
        from ..core.preprocessing import DataLoader, DataMerger

        cfg = self.config.preprocessing.loader
        loader = DataLoader(cfg, logger=self._child("loader"))
        loaded = loader.load_samples(self.config.samples)
        merged = DataMerger(cfg, logger=self._child("merge")).merge_samples(loaded)
        summary = {
            "samples": merged.sample_sizes,
            "issues": {r.sample_id: r.issues for r in loaded if r.issues},
        }
        return merged.adata, summary

    def _run_qc(self, adata: Any) -> StageOutput:
        from ..core.preprocessing import CellQC

        cfg = self.config.preprocessing.qc
        sample_key = self.config.preprocessing.loader.sample_key
        qc = CellQC(cfg, logger=self._child("qc"))

        result = qc.run(adata, sample_key=sample_key)
        self._table(qc.suggest_thresholds(adata), "qc_suggested_thresholds.csv")
        self._table(qc.qc_summary_by_sample(adata, sample_key), "qc_by_sample_pre_filter.csv")
        self._table(
            qc.qc_summary_by_sample(result.adata, sample_key), "qc_by_sample_post_filter.csv"
        )

        if self.config.make_figures:
            from ..viz import generate_qc_figures

            thresholds = {
                "nUMI": cfg.min_umi,
                "nGene": cfg.min_genes,
                "log10GenesPerUMI": cfg.min_novelty,
                "mitoRatio": cfg.max_mito_ratio,
            }
            for obs, suffix in ((adata.obs, ""), (result.adata.obs, "_post_filter")):
                generate_qc_figures(
                    obs,
                    self.config.figures_path,
                    thresholds=thresholds,
                    sample_key=sample_key,
                    suffix=suffix,
                    dpi=self.config.dpi,
                    logger=self._child("viz"),
                )

        return result.adata, result.to_dict()

    def _run_normalize(self, adata: Any) -> StageOutput:
        from ..core.preprocessing import CellCycleScorer, Normalizer

        pre = self.config.preprocessing
        normalizer = Normalizer(pre.normalization, logger=self._child("normalization"))
        scorer = CellCycleScorer(pre.cell_cycle, logger=self._child("cell_cycle"))

        normalizer.log_normalize(adata)
        if pre.cell_cycle.gene_list_path:
            annotations = self._gene_annotations()
            mapping = None
            if annotations is not None and "gene_id" in annotations.columns:
                mapping = id_to_symbol_map(annotations)
            s_genes, g2m_genes = scorer.load_gene_lists(pre.cell_cycle.gene_list_path, mapping)
        else:
            s_genes, g2m_genes = scorer.default_gene_lists()
        cc_result = scorer.score(adata, s_genes, g2m_genes)
        scorer.phase_pca(adata)

        result = normalizer.variance_stabilize(adata, batch_key=pre.loader.sample_key)
        self._table(pd.DataFrame({"gene": result.hvg}), "highly_variable_genes.csv")
        summary = result.to_dict()
        summary["cell_cycle"] = cc_result.to_dict()
        return result.adata, summary

    def _run_integrate(self, adata: Any) -> StageOutput:
        from ..core.preprocessing import IntegrationEngine

        engine = IntegrationEngine(
            self.config.preprocessing.integration, logger=self._child("integration")
        )
        result = engine.run(adata)
        integrated = result.adata
        integrated.uns["integration"] = {
            "rep_key": result.rep_key,
            "method": result.method,
            "used_fallback": result.used_fallback,
        }
        return integrated, result.to_dict()

    def _run_cluster(self, adata: Any) -> StageOutput:
        from ..core.clustering import ClusteringEngine

        stage_cfg = self.config.clustering_stage
        engine = ClusteringEngine(stage_cfg, logger=self._child("clustering"))
        use_rep = adata.uns.get("integration", {}).get("rep_key", "X_pca_harmony")
        if use_rep not in adata.obsm:
            raise KeyError(f"Embedding '{use_rep}' not found in adata.obsm")

        result = engine.run(adata, use_rep=use_rep)
        sample_key = self.config.preprocessing.loader.sample_key
        self._table(
            engine.summarize_resolutions(adata, use_rep=use_rep), "resolution_summary.csv"
        )
        self._table(
            engine.cells_per_cluster_by_sample(adata, sample_key=sample_key),
            "cells_per_cluster_by_sample.csv",
            index=True,
        )
        self._table(engine.cluster_qc_summary(adata), "cluster_qc_summary.csv")

        if self.config.make_figures:
            from ..viz import generate_embedding_figures

            generate_embedding_figures(
                adata,
                self.config.figures_path,
                cluster_key=stage_cfg.clustering.cluster_key,
                sample_key=sample_key,
                marker_genes=stage_cfg.marker_genes or None,
                dpi=self.config.dpi,
                logger=self._child("viz"),
            )
        summary = result.to_dict()
        summary["use_rep"] = use_rep
        return adata, summary

    def _run_markers(self, adata: Any) -> StageOutput:
        from ..core.clustering import MarkerFinder, top_markers

        stage_cfg = self.config.clustering_stage
        finder = MarkerFinder(stage_cfg, logger=self._child("markers"))
        cluster_key = stage_cfg.clustering.cluster_key
        annotations = self._gene_annotations()

        all_markers = finder.find_all_markers(adata, cluster_key=cluster_key)
        self._table(all_markers.table, "markers_all.csv")
        self._table(
            top_markers(all_markers.table, n=stage_cfg.n_top_markers), "markers_top.csv"
        )

        conserved = finder.conserved_markers_for_clusters(
            adata,
            clusters=self.config.conserved_clusters,
            annotations=annotations,
            cluster_key=cluster_key,
        )
        summary = {
            "all_markers": all_markers.to_dict(),
            "conserved_markers": conserved.to_dict(),
        }
        if not conserved.table.empty:
            self._table(conserved.table, "markers_conserved.csv")
            self._table(
                top_markers(conserved.table, n=stage_cfg.n_top_markers, by="avg_fc"),
                "markers_conserved_top.csv",
            )
        return adata, summary

    def _run_annotate(self, adata: Any) -> StageOutput:
        from ..core.clustering import ClusterAnnotator

        stage_cfg = self.config.clustering_stage
        cluster_key = stage_cfg.clustering.cluster_key
        annotator = ClusterAnnotator(stage_cfg.annotation, logger=self._child("annotation"))
        result = annotator.rename_clusters(adata, cluster_key=cluster_key)
        sample_key = self.config.preprocessing.loader.sample_key
        self._table(
            annotator.label_counts(adata, sample_key=sample_key), "cell_type_counts.csv"
        )

        if self.config.make_figures:
            from ..viz import generate_embedding_figures

            generate_embedding_figures(
                adata,
                self.config.figures_path,
                cluster_key=cluster_key,
                sample_key=sample_key,
                label_key=result.label_key,
                marker_genes=stage_cfg.marker_genes or None,
                suffix="_annotated",
                dpi=self.config.dpi,
                logger=self._child("viz"),
            )
        return adata, result.to_dict()
