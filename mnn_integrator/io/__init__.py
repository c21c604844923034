"""I/O utilities for MNN-Integrator.

Provides logging and tabular I/O helpers.
"""

from .logging import (
    setup_logging,
    get_timestamped_log_path,
    log_json,
    log_yaml,
)
from .tables import (
    ensure_output_dir,
    infer_separator,
    read_table,
    write_dataframe,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Tables
    "ensure_output_dir",
    "infer_separator",
    "read_table",
    "write_dataframe",
]
