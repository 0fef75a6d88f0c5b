"""Workflow configuration: inputs, outputs and stage settings."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..core.clustering.config import ClusteringStageConfig
from ..core.preprocessing.config import PreprocessingConfig


def _default_samples() -> Dict[str, str]:
    return {
        "ctrl": "data/ctrl_raw_feature_bc_matrix",
        "stim": "data/stim_raw_feature_bc_matrix",
    }


@dataclass
class WorkflowConfig:
    """Configuration for a full workflow run.

    Attributes
    ----------
    samples : Dict[str, str]
        Sample (condition) id to 10x matrix directory, in merge order
    cell_cycle_path : str, optional
        Cell-cycle gene list CSV. Bundled lists are used if None.
    annotation_path : str, optional
        Gene annotation CSV joined onto conserved marker tables
    fallback_path : str, optional
        Precomputed clustered .h5ad used when integration cannot run
    results_dir : str
        Directory for checkpoints, tables and the run summary
    figures_dir : str, optional
        Figure directory (``<results_dir>/figures`` if None)
    log_dir : str
        Directory for workflow log files
    conserved_clusters : List[str], optional
        Clusters for conserved marker tables (all clusters if None)
    make_figures : bool
        Write QC and embedding figures
    dpi : int
        Figure resolution
    preprocessing : PreprocessingConfig
        Stages A-D configuration
    clustering_stage : ClusteringStageConfig
        Stages E-G configuration

    Example
    -------
    >>> config = WorkflowConfig.from_yaml("workflow.yaml")
    >>> valid, errors = config.validate()
    """

    samples: Dict[str, str] = field(default_factory=_default_samples)
    cell_cycle_path: Optional[str] = None
    annotation_path: Optional[str] = None
    fallback_path: Optional[str] = None
    results_dir: str = "results"
    figures_dir: Optional[str] = None
    log_dir: str = "logs"
    conserved_clusters: Optional[List[str]] = None
    make_figures: bool = True
    dpi: int = 200
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    clustering_stage: ClusteringStageConfig = field(default_factory=ClusteringStageConfig)

    def __post_init__(self):
        # Top-level paths fill the matching stage settings when those are unset
        if self.cell_cycle_path and not self.preprocessing.cell_cycle.gene_list_path:
            self.preprocessing.cell_cycle.gene_list_path = self.cell_cycle_path
        if self.fallback_path and not self.preprocessing.integration.fallback_path:
            self.preprocessing.integration.fallback_path = self.fallback_path

    @property
    def results_path(self) -> Path:
        return Path(self.results_dir)

    @property
    def figures_path(self) -> Path:
        if self.figures_dir:
            return Path(self.figures_dir)
        return self.results_path / "figures"

    def validate(self) -> Tuple[bool, List[str]]:
        """Check that configured input paths exist.

        Returns
        -------
        Tuple[bool, List[str]]
            (valid, errors)
        """
        errors = []
        if not self.samples:
            errors.append("No samples configured")
        for sample_id, path in self.samples.items():
            if not Path(path).is_dir():
                errors.append(f"Sample '{sample_id}' directory not found: {path}")
        for name in ("cell_cycle_path", "annotation_path", "fallback_path"):
            value = getattr(self, name)
            if value and not Path(value).is_file():
                errors.append(f"{name} not found: {value}")
        return (len(errors) == 0, errors)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowConfig":
        """Build configuration from a (possibly partial) dictionary."""
        data = dict(data)
        preprocessing = PreprocessingConfig.from_dict(data.pop("preprocessing", None) or {})
        clustering_stage = ClusteringStageConfig.from_dict(
            data.pop("clustering_stage", None) or {}
        )
        if "samples" in data:
            data["samples"] = {str(k): str(v) for k, v in (data["samples"] or {}).items()}
        if data.get("conserved_clusters") is not None:
            data["conserved_clusters"] = [str(c) for c in data["conserved_clusters"]]
        return cls(preprocessing=preprocessing, clustering_stage=clustering_stage, **data)

    @classmethod
    def from_yaml(cls, path: Path) -> "WorkflowConfig":
        """Load configuration from YAML file.

        Raises
        ------
        FileNotFoundError
            If config file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested workflow section
        if "workflow" in data:
            data = data["workflow"] or {}

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "WorkflowConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "samples": dict(self.samples),
            "cell_cycle_path": self.cell_cycle_path,
            "annotation_path": self.annotation_path,
            "fallback_path": self.fallback_path,
            "results_dir": self.results_dir,
            "figures_dir": self.figures_dir,
            "log_dir": self.log_dir,
            "conserved_clusters": (
                list(self.conserved_clusters) if self.conserved_clusters is not None else None
            ),
            "make_figures": self.make_figures,
            "dpi": self.dpi,
            "preprocessing": self.preprocessing.to_dict(),
            "clustering_stage": self.clustering_stage.to_dict(),
        }

    def to_yaml(self, path: Path) -> Path:
        """Write the configuration as YAML under a ``workflow`` section."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump({"workflow": self.to_dict()}, f, sort_keys=False)
        return path
