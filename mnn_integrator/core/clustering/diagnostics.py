"""Batch-mixing diagnostics for clustered data.

Tables that show how well batches mix within clusters after correction:
- Cluster x batch cell counts
- Normalized Shannon entropy of batch proportions per cluster
- Published cell-type composition per cluster
- Per-step MNN lost variance
- Per-batch summary
"""

from typing import Any, Optional

import numpy as np
import pandas as pd

from ...utils.stats import normalized_entropy
from .engine import sort_cluster_labels


def cluster_batch_table(
    obs: pd.DataFrame,
    cluster_key: str = "cluster",
    batch_key: str = "batch",
) -> pd.DataFrame:
    """Count cells per cluster and batch.

    Parameters
    ----------
    obs : pd.DataFrame
        Cell metadata with cluster and batch columns
    cluster_key : str
        Cluster column
    batch_key : str
        Batch column

    Returns
    -------
    pd.DataFrame
        Clusters x batches counts; batch columns follow the category
        order, skipping categories without cells.
    """
    for col in (cluster_key, batch_key):
        if col not in obs.columns:
            raise ValueError(f"Column '{col}' not found in obs")

    batches = obs[batch_key].astype(str)
    if isinstance(obs[batch_key].dtype, pd.CategoricalDtype):
        present = set(batches)
        batch_order = [str(b) for b in obs[batch_key].cat.categories if str(b) in present]
    else:
        batch_order = list(pd.unique(batches))

    table = pd.crosstab(obs[cluster_key].astype(str), batches)
    table = table.reindex(
        index=sort_cluster_labels(table.index),
        columns=batch_order,
        fill_value=0,
    )
    table.index.name = cluster_key
    table.columns.name = batch_key
    return table.fillna(0).astype(int)


def batch_mixing_entropy(
    obs: pd.DataFrame,
    cluster_key: str = "cluster",
    batch_key: str = "batch",
) -> pd.DataFrame:
    """Compute per-cluster batch mixing.

    The entropy of batch proportions in each cluster is divided by
    ``log(n_batches)`` over all batches in the data, so 1 means a cluster
    draws evenly from every batch and 0 means it holds one batch only.

    Returns
    -------
    pd.DataFrame
        Columns: cluster_key, n_cells, n_batches, entropy, dominant_batch,
        dominant_fraction
    """
    table = cluster_batch_table(obs, cluster_key, batch_key)
    n_batches_total = table.shape[1]

    rows = []
    for cluster, counts in table.iterrows():
        values = counts.to_numpy()
        n_cells = int(values.sum())
        if n_cells == 0:
            continue
        rows.append({
            cluster_key: cluster,
            "n_cells": n_cells,
            "n_batches": int((values > 0).sum()),
            "entropy": normalized_entropy(values, n_batches_total),
            "dominant_batch": counts.idxmax(),
            "dominant_fraction": float(values.max() / n_cells),
        })

    return pd.DataFrame(
        rows,
        columns=[
            cluster_key,
            "n_cells",
            "n_batches",
            "entropy",
            "dominant_batch",
            "dominant_fraction",
        ],
    )


def cluster_composition(
    obs: pd.DataFrame,
    cluster_key: str = "cluster",
    cell_type_key: str = "cell_type",
    normalize: bool = True,
) -> pd.DataFrame:
    """Published cell-type composition of each cluster.

    Returns
    -------
    pd.DataFrame
        Long table with columns cluster_key, cell_type_key, count and
        (if ``normalize``) proportion within the cluster
    """
    for col in (cluster_key, cell_type_key):
        if col not in obs.columns:
            raise ValueError(f"Column '{col}' not found in obs")

    counts = (
        obs.groupby([cluster_key, cell_type_key], observed=True)
        .size()
        .reset_index(name="count")
    )
    counts = counts[counts["count"] > 0].reset_index(drop=True)

    if normalize:
        totals = counts.groupby(cluster_key, observed=True)["count"].transform("sum")
        counts["proportion"] = counts["count"] / totals

    return counts


def lost_variance_table(adata: Any) -> pd.DataFrame:
    """Per-step MNN lost variance recorded by integration.

    Returns
    -------
    pd.DataFrame
        Steps x batches, indexed by ``step`` starting at 1. Empty if the
        data were not MNN-corrected.
    """
    mnn = adata.uns.get("mnn")
    if not mnn or "lost_variance" not in mnn:
        return pd.DataFrame()

    lost = {str(k): np.asarray(v, dtype=float) for k, v in mnn["lost_variance"].items()}
    table = pd.DataFrame(lost)
    order = [str(b) for b in mnn.get("merge_order", []) if str(b) in table.columns]
    if order:
        table = table[order + [c for c in table.columns if c not in order]]
    table.index = pd.RangeIndex(1, len(table) + 1, name="step")
    return table


def summarize_batches(
    obs: pd.DataFrame,
    batch_key: str = "batch",
    cluster_key: Optional[str] = "cluster",
    donor_key: str = "donor",
    cell_type_key: str = "cell_type",
) -> pd.DataFrame:
    """One row per batch: cells, donors, cell types and clusters reached."""
    if batch_key not in obs.columns:
        raise ValueError(f"Column '{batch_key}' not found in obs")

    rows = []
    for batch, group in obs.groupby(batch_key, observed=True, sort=False):
        row = {batch_key: batch, "n_cells": len(group)}
        if donor_key in group.columns:
            row["n_donors"] = int(group[donor_key].nunique())
        if cell_type_key in group.columns:
            row["n_cell_types"] = int(group[cell_type_key].nunique())
        if cluster_key and cluster_key in group.columns:
            row["n_clusters"] = int(group[cluster_key].nunique())
        if "size_factor" in group.columns:
            row["median_size_factor"] = float(group["size_factor"].median())
        rows.append(row)

    return pd.DataFrame(rows)
