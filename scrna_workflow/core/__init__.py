"""Core computational modules for scrna-workflow.

This package contains the analysis engines:
- preprocessing: 10x loading, merging, QC, normalization, cell cycle,
  integration
- clustering: Leiden clustering, marker detection, annotation
"""
