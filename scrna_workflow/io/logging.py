"""Log files and structured stage records.

Stage summaries are appended to a JSON-lines file (one record per stage
run) and optionally to a YAML log for reading by eye.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import numpy as np
import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Insert a timestamp before the suffix of a log path.

    ``results/workflow.log`` becomes ``results/workflow_20261018_093012.log``.
    """
    log_path = Path(log_path)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_path.with_name(f"{log_path.stem}_{stamp}{log_path.suffix or '.log'}")


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing only to a file.

    Parameters
    ----------
    name : str
        Logger name.
    log_path : PathLike
        Base path of the log file.
    level : int
        Logging level.
    timestamped : bool
        Write to a new timestamped file instead of replacing ``log_path``.

    Returns
    -------
    Tuple[logging.Logger, Path]
        The logger and the file it writes to.
    """
    path = get_timestamped_log_path(log_path) if timestamped else Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not timestamped:
        path.unlink(missing_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)
    return logger, path


def _to_builtin(value: Any) -> Any:
    """Convert numpy scalars and arrays into JSON/YAML friendly values."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.ndarray):
        return _to_builtin(value.tolist())
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Path):
        return str(value)
    return value


def stage_record(stage: str, **fields: Any) -> Dict[str, Any]:
    """Build a timestamped summary record for a stage."""
    record = {"stage": stage, "timestamp": datetime.now().isoformat(timespec="seconds")}
    record.update(_to_builtin(fields))
    return record


def log_json(log_path: PathLike, record: Dict[str, Any]) -> None:
    """Append ``record`` as one JSON line to ``log_path``."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(_to_builtin(record), default=str) + "\n")


def read_json_log(log_path: PathLike) -> list:
    """Read all records of a JSON-lines log (empty list if missing)."""
    path = Path(log_path)
    if not path.is_file():
        return []
    with path.open(encoding="utf-8") as handle:
        return [json.loads(line) for line in handle if line.strip()]


def log_yaml(
    log_path: PathLike,
    record: Dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append ``record`` as a YAML document, or send it to ``logger``."""
    text = yaml.safe_dump(_to_builtin(record), sort_keys=False).rstrip("\n") + "\n---"
    if logger is not None:
        logger.info("%s", text)
        return

    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text + "\n")
