"""I/O utilities: log files, stage records, tables and checkpoints."""

from .logging import (
    get_logger,
    get_timestamped_log_path,
    log_json,
    log_yaml,
    read_json_log,
    stage_record,
)
from .tables import (
    ensure_output_dir,
    id_to_symbol_map,
    load_gene_annotations,
    read_h5ad,
    write_dataframe,
    write_h5ad,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    "read_json_log",
    "stage_record",
    # Tables
    "ensure_output_dir",
    "id_to_symbol_map",
    "load_gene_annotations",
    "read_h5ad",
    "write_dataframe",
    "write_h5ad",
]
