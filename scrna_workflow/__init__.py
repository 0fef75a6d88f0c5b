"""scrna-workflow: two-condition single-cell RNA-seq analysis workflow.

This package provides tools for:
- Loading 10x count matrices per condition and merging them
- Cell QC with novelty and mitochondrial ratio filters
- Log normalization, cell-cycle scoring and Pearson residual variance
  stabilization
- Harmony integration of conditions
- Leiden clustering over several resolutions
- All-vs-rest, pairwise and conserved marker detection
- Cluster annotation and figures

Example usage:
    >>> from scrna_workflow.workflow import WorkflowConfig, WorkflowRunner
    >>>
    >>> config = WorkflowConfig.from_yaml("workflow.yaml")
    >>> runner = WorkflowRunner(config)
    >>> exit_code = runner.run()
"""

__version__ = "0.1.0"
