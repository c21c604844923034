"""Mock single-cell data generators for testing.

Provides functions to create count matrices, per-batch datasets,
merged log-normalized AnnData objects and shifted embeddings with a
known batch effect.
"""

from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd


def create_mock_counts(
    n_cells: int = 120,
    n_genes: int = 200,
    n_cell_types: int = 3,
    n_spikes: int = 8,
    n_donors: int = 2,
    batch_name: str = "batch1",
    depth: float = 1.0,
    batch_effect: float = 0.0,
    random_seed: int = 42,
):
    """Create a raw count AnnData with cell types, donors and spike-ins.

    Gene means and cell-type markers come from a fixed seed, so every
    batch created with this function shares the same biology. Only the
    sequencing depth and the per-gene ``batch_effect`` differ.

    Parameters
    ----------
    n_cells : int
        Number of cells
    n_genes : int
        Number of endogenous genes (GENE0000, ...)
    n_cell_types : int
        Number of cell types (type_0, ...); each has 10 marker genes
    n_spikes : int
        Number of ERCC spike-in genes appended after the endogenous genes
    n_donors : int
        Number of donors; cell IDs start with the donor (D1_..., D2_...)
    batch_name : str
        Batch label, also part of the cell IDs
    depth : float
        Library size multiplier
    batch_effect : float
        Log-scale standard deviation of the per-gene batch multiplier
    random_seed : int
        Seed for the cell-level noise

    Returns
    -------
    AnnData
        Dense float32 counts with obs columns batch, donor and cell_type
    """
    import anndata as ad

    biology = np.random.RandomState(0)
    base_mean = biology.lognormal(mean=0.5, sigma=1.0, size=n_genes)
    programs = np.ones((n_cell_types, n_genes))
    for t in range(n_cell_types):
        programs[t, t * 10 : (t + 1) * 10] = 8.0

    rng = np.random.RandomState(random_seed)
    gene_scale = rng.lognormal(mean=0.0, sigma=batch_effect, size=n_genes)
    cell_types = np.arange(n_cells) % n_cell_types
    library = rng.lognormal(mean=0.0, sigma=0.3, size=n_cells) * depth

    mu = programs[cell_types] * base_mean * gene_scale * library[:, None]
    dispersion = 5.0
    counts = rng.negative_binomial(dispersion, dispersion / (dispersion + mu))

    if n_spikes:
        spike_mu = np.full((n_cells, n_spikes), 5.0)
        spikes = rng.poisson(spike_mu)
        counts = np.hstack([counts, spikes])

    donors = [f"D{(i % n_donors) + 1}" for i in range(n_cells)]
    cell_ids = [f"{donors[i]}_{batch_name}_{i}" for i in range(n_cells)]
    gene_names = [f"GENE{i:04d}" for i in range(n_genes)]
    gene_names += [f"ERCC-{i + 1:05d}" for i in range(n_spikes)]

    obs = pd.DataFrame(
        {
            "batch": batch_name,
            "donor": donors,
            "cell_type": [f"type_{t}" for t in cell_types],
        },
        index=cell_ids,
    )
    var = pd.DataFrame(index=gene_names)
    return ad.AnnData(X=counts.astype(np.float32), obs=obs, var=var)


def create_mock_batches(
    n_batches: int = 2,
    n_cells: int = 100,
    n_genes: int = 150,
    batch_effect: float = 0.3,
) -> Dict:
    """Create several count datasets sharing genes and cell types.

    Batches get different depths and seeds; the first batch has no
    batch effect.

    Returns
    -------
    Dict[str, AnnData]
        batch1, batch2, ... in creation order
    """
    batches = {}
    for b in range(n_batches):
        name = f"batch{b + 1}"
        batches[name] = create_mock_counts(
            n_cells=n_cells,
            n_genes=n_genes,
            batch_name=name,
            depth=1.0 + 0.5 * b,
            batch_effect=batch_effect if b > 0 else 0.0,
            random_seed=100 + b,
        )
    return batches


def create_merged_adata(
    n_batches: int = 2,
    n_cells: int = 100,
    n_genes: int = 150,
    batch_effect: float = 0.3,
):
    """Create a merged, log-normalized AnnData as produced by preprocessing.

    Spike-ins are dropped, expression is ``log2(counts / sf + 1)`` and
    every gene is flagged as highly variable.

    Returns
    -------
    AnnData
        Merged data with categorical batch, donor and cell_type columns
    """
    import anndata as ad

    batches = create_mock_batches(
        n_batches=n_batches,
        n_cells=n_cells,
        n_genes=n_genes,
        batch_effect=batch_effect,
    )
    pieces = []
    for name, adata in batches.items():
        adata = adata[:, ~adata.var_names.str.startswith("ERCC-")].copy()
        counts = adata.X.astype(np.float64)
        lib = counts.sum(axis=1)
        size_factors = lib / lib.mean()
        adata.layers["counts"] = adata.X.copy()
        adata.X = np.log2(counts / size_factors[:, None] + 1).astype(np.float32)
        adata.obs["size_factor"] = size_factors
        pieces.append(adata)

    merged = ad.concat(pieces, join="inner")
    merged.obs_names_make_unique()
    names = list(batches)
    merged.obs["batch"] = pd.Categorical(merged.obs["batch"].astype(str), categories=names)
    merged.obs["donor"] = pd.Categorical(merged.obs["donor"].astype(str))
    merged.obs["cell_type"] = pd.Categorical(merged.obs["cell_type"].astype(str))
    merged.var["highly_variable"] = True
    return merged


def create_shifted_embedding(
    n_per_batch: int = 90,
    n_batches: int = 2,
    n_dims: int = 10,
    n_clusters: int = 3,
    shift: float = 5.0,
    spread: float = 20.0,
    random_seed: int = 0,
) -> Tuple[np.ndarray, pd.Series, np.ndarray]:
    """Create a low-dimensional embedding with a constant shift per batch.

    Every batch holds the same clusters; batch ``b`` is translated by
    ``b * shift`` along a fixed random unit direction.

    Returns
    -------
    Tuple[np.ndarray, pd.Series, np.ndarray]
        Coordinates, batch labels (categorical) and true cluster labels
    """
    rng = np.random.RandomState(random_seed)
    centers = rng.normal(scale=spread, size=(n_clusters, n_dims))
    direction = rng.normal(size=n_dims)
    direction /= np.linalg.norm(direction)

    coords, labels, clusters = [], [], []
    for b in range(n_batches):
        cluster = np.arange(n_per_batch) % n_clusters
        points = centers[cluster] + rng.normal(size=(n_per_batch, n_dims))
        coords.append(points + b * shift * direction)
        labels.extend([f"batch{b + 1}"] * n_per_batch)
        clusters.append(cluster)

    batches = pd.Series(
        pd.Categorical(labels, categories=[f"batch{b + 1}" for b in range(n_batches)])
    )
    return np.vstack(coords), batches, np.concatenate(clusters)


def create_embedding_adata(
    n_per_batch: int = 60,
    n_batches: int = 2,
    shift: float = 5.0,
    use_rep: str = "X_mnn",
):
    """Create an AnnData carrying an integrated embedding for clustering tests.

    ``obsm["X_pca"]`` holds the shifted coordinates and ``obsm[use_rep]``
    the same coordinates without the batch shift.
    """
    import anndata as ad

    coords, batches, clusters = create_shifted_embedding(
        n_per_batch=n_per_batch, n_batches=n_batches, shift=shift
    )
    aligned, _, _ = create_shifted_embedding(
        n_per_batch=n_per_batch, n_batches=n_batches, shift=0.0
    )
    n_cells = coords.shape[0]
    obs = pd.DataFrame(
        {
            "batch": batches.to_numpy(),
            "cell_type": pd.Categorical([f"type_{c}" for c in clusters]),
            "donor": pd.Categorical([f"D{i % 2 + 1}" for i in range(n_cells)]),
            "size_factor": np.linspace(0.5, 1.5, n_cells),
        },
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    adata = ad.AnnData(
        X=np.zeros((n_cells, 5), dtype=np.float32),
        obs=obs,
        var=pd.DataFrame(index=[f"GENE{i:04d}" for i in range(5)]),
    )
    adata.obsm["X_pca"] = coords.astype(np.float32)
    adata.obsm[use_rep] = aligned.astype(np.float32)
    adata.uns["integration"] = {"method": "mnn", "use_rep": use_rep}
    return adata


def write_dataset_files(
    adata,
    directory: Path,
    name: str,
    with_metadata: bool = True,
    metadata_columns: Optional[Dict[str, str]] = None,
) -> Tuple[Path, Optional[Path]]:
    """Write a count AnnData as a genes x cells CSV plus a metadata CSV.

    Parameters
    ----------
    adata : AnnData
        Counts from :func:`create_mock_counts`
    directory : Path
        Output directory
    name : str
        File name prefix
    with_metadata : bool
        Whether to write ``<name>_metadata.csv``
    metadata_columns : Dict[str, str], optional
        Rename map for the obs columns written to the metadata

    Returns
    -------
    Tuple[Path, Optional[Path]]
        Counts path and metadata path (None without metadata)
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    counts = pd.DataFrame(
        np.asarray(adata.X).T.astype(int),
        index=adata.var_names,
        columns=adata.obs_names,
    )
    counts_path = directory / f"{name}_counts.csv"
    counts.to_csv(counts_path)

    if not with_metadata:
        return counts_path, None

    metadata = adata.obs[["donor", "cell_type"]].copy()
    if metadata_columns:
        metadata = metadata.rename(columns=metadata_columns)
    metadata.insert(0, "cell_id", adata.obs_names)
    metadata_path = directory / f"{name}_metadata.csv"
    metadata.to_csv(metadata_path, index=False)
    return counts_path, metadata_path
