"""Workflow orchestration: configuration, logging and the stage runner.

Example Usage
-------------
>>> from scrna_workflow.workflow import WorkflowConfig, WorkflowLogger, WorkflowRunner
>>> config = WorkflowConfig.from_yaml("workflow.yaml")
>>> logger = WorkflowLogger(config.log_dir)
>>> logger.setup()
>>> exit_code = WorkflowRunner(config, logger).run()
"""

from .config import WorkflowConfig
from .logger import ColoredFormatter, WorkflowLogger, setup_logging
from .runner import STAGE_NAMES, STAGES, WorkflowRunner

__all__ = [
    "WorkflowConfig",
    "ColoredFormatter",
    "WorkflowLogger",
    "setup_logging",
    "STAGE_NAMES",
    "STAGES",
    "WorkflowRunner",
]
