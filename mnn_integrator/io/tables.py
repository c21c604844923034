"""Tabular I/O utilities for MNN-Integrator.

Reads count matrices and cell metadata tables from local delimited files
and writes result tables. The delimiter is inferred from the file suffix;
gzip-compressed files are handled by pandas.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_TAB_SUFFIXES = {".tsv", ".txt", ".tab"}


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def infer_separator(path: PathLike) -> str:
    """Infer a column separator from the file name.

    ``counts.tsv.gz`` and ``counts.txt`` are tab separated; anything else
    is read as comma separated.
    """
    suffixes = [s.lower() for s in Path(path).suffixes]
    if suffixes and suffixes[-1] in {".gz", ".bz2", ".zip", ".xz"}:
        suffixes = suffixes[:-1]
    if suffixes and suffixes[-1] in _TAB_SUFFIXES:
        return "\t"
    return ","


def read_table(
    path: PathLike,
    sep: Optional[str] = None,
    index_col: Optional[Union[int, str]] = 0,
) -> pd.DataFrame:
    """Read a delimited table.

    Parameters
    ----------
    path : PathLike
        Path to the table.
    sep : str, optional
        Column separator. Inferred from the suffix when None.
    index_col : int or str, optional
        Column to use as the row index (default: first column).

    Returns
    -------
    pd.DataFrame
        Loaded table with a string index.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty.
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Table not found: {table_path}")

    sep = sep or infer_separator(table_path)
    logger.debug("Reading %s (sep=%r)", table_path, sep)
    df = pd.read_csv(table_path, sep=sep, index_col=index_col)
    if df.empty:
        raise ValueError(f"Table {table_path} is empty")

    if index_col is not None:
        df.index = df.index.astype(str)
    return df


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path; the column separator is inferred from its suffix.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, sep=infer_separator(output_path), index=index)
    return output_path
