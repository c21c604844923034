"""Mutual nearest neighbor (MNN) batch correction in PC space.

Batches are merged progressively into a growing reference. At each step,
pairs of cells that are mutual nearest neighbors between the reference
and the target batch define correction vectors. These are averaged per
target MNN cell and smoothed onto every target cell with a Gaussian
kernel, then added to the target coordinates.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from .config import MNNConfig


@dataclass
class MergeStep:
    """One progressive merge step.

    Attributes
    ----------
    step : int
        1-based step number
    reference : List[str]
        Batches already merged into the reference
    target : str
        Batch corrected in this step
    n_pairs : int
        Number of MNN pairs found
    n_reference_cells : int
        Number of cells in the reference
    n_target_cells : int
        Number of cells in the target batch
    n_target_mnn_cells : int
        Number of distinct target cells with at least one MNN pair
    """

    step: int
    reference: List[str]
    target: str
    n_pairs: int = 0
    n_reference_cells: int = 0
    n_target_cells: int = 0
    n_target_mnn_cells: int = 0

    @property
    def corrected(self) -> bool:
        return self.n_pairs > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "step": self.step,
            "reference": "+".join(self.reference),
            "target": self.target,
            "n_pairs": self.n_pairs,
            "n_reference_cells": self.n_reference_cells,
            "n_target_cells": self.n_target_cells,
            "n_target_mnn_cells": self.n_target_mnn_cells,
            "corrected": self.corrected,
        }


@dataclass
class MNNResult:
    """Result from MNN correction.

    Attributes
    ----------
    corrected : np.ndarray
        Corrected coordinates, same shape and cell order as the input
    merge_order : List[str]
        Order in which batches were merged
    steps : List[MergeStep]
        Per-step diagnostics
    lost_variance : pd.DataFrame
        Fraction of within-batch variance removed, steps x batches
        (NaN for batches not yet merged)
    """

    corrected: np.ndarray
    merge_order: List[str] = field(default_factory=list)
    steps: List[MergeStep] = field(default_factory=list)
    lost_variance: Optional[pd.DataFrame] = None

    def merge_info(self) -> pd.DataFrame:
        """Merge steps as a table."""
        columns = [
            "step", "reference", "target", "n_pairs", "n_reference_cells",
            "n_target_cells", "n_target_mnn_cells", "corrected",
        ]
        return pd.DataFrame([s.to_dict() for s in self.steps], columns=columns)


def find_mutual_nn(
    reference: np.ndarray,
    target: np.ndarray,
    k: int = 20,
) -> Tuple[np.ndarray, np.ndarray]:
    """Find mutual nearest neighbor pairs between two sets of cells.

    A pair (i, j) is mutual when target cell j is among the ``k`` nearest
    target cells of reference cell i and reference cell i is among the
    ``k`` nearest reference cells of target cell j.

    For non-empty inputs at least one pair is always returned: the
    closest reference/target pair is each other's nearest neighbor.

    Parameters
    ----------
    reference : np.ndarray
        Reference coordinates (n_ref x d)
    target : np.ndarray
        Target coordinates (n_tgt x d)
    k : int
        Number of neighbors searched in each direction

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        Reference and target indices of each pair, sorted by target index
    """
    from sklearn.neighbors import NearestNeighbors

    if k < 1:
        raise ValueError(f"k must be positive, got {k}")
    n_ref, n_tgt = reference.shape[0], target.shape[0]
    if n_ref == 0 or n_tgt == 0:
        return np.empty(0, dtype=int), np.empty(0, dtype=int)

    k_ref = min(k, n_ref)
    k_tgt = min(k, n_tgt)

    # Reference neighbors of every target cell
    nn_ref = NearestNeighbors(n_neighbors=k_ref).fit(reference)
    ref_of_tgt = nn_ref.kneighbors(target, return_distance=False)
    codes_a = ref_of_tgt.astype(np.int64) * n_tgt + np.arange(n_tgt)[:, None]

    # Target neighbors of every reference cell
    nn_tgt = NearestNeighbors(n_neighbors=k_tgt).fit(target)
    tgt_of_ref = nn_tgt.kneighbors(reference, return_distance=False)
    codes_b = np.arange(n_ref, dtype=np.int64)[:, None] * n_tgt + tgt_of_ref

    mutual = np.intersect1d(codes_a.ravel(), codes_b.ravel())
    ref_idx = mutual // n_tgt
    tgt_idx = mutual % n_tgt
    order = np.lexsort((ref_idx, tgt_idx))
    return ref_idx[order].astype(int), tgt_idx[order].astype(int)


def center_along_batch_vector(coords: np.ndarray, batch_vector: np.ndarray) -> np.ndarray:
    """Remove variation along a unit batch vector, keeping the mean position."""
    projection = coords @ batch_vector
    return coords - np.outer(projection - projection.mean(), batch_vector)


def total_variance(coords: np.ndarray) -> float:
    """Sum of per-dimension variances."""
    if coords.shape[0] < 2:
        return 0.0
    return float(np.var(coords, axis=0, ddof=1).sum())


class MNNCorrector:
    """Progressive MNN correction of a low-dimensional embedding.

    Parameters
    ----------
    config : MNNConfig
        MNN configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.integration import MNNCorrector, MNNConfig
    >>> corrector = MNNCorrector(MNNConfig(k=20, auto_merge=True))
    >>> result = corrector.correct(adata.obsm["X_pca"], adata.obs["batch"])
    >>> result.merge_info()
    """

    def __init__(
        self,
        config: Optional[MNNConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MNNConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.sigma <= 0:
            raise ValueError("sigma must be positive")
        if self.config.smooth_k < 1:
            raise ValueError("smooth_k must be positive")
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import sklearn.neighbors
        except ImportError:
            raise RuntimeError(
                "MNN correction requires scikit-learn. "
                "Install with: pip install scikit-learn"
            )

    def resolve_merge_order(self, batches: Sequence[str]) -> List[str]:
        """Validate an explicit merge order or fall back to batch order."""
        labels = list(batches)
        order = self.config.merge_order
        if not order:
            return labels

        order = [str(b) for b in order]
        missing = sorted(set(labels) - set(order))
        unknown = sorted(set(order) - set(labels))
        if missing or unknown or len(order) != len(set(order)):
            raise ValueError(
                f"merge_order must list every batch exactly once "
                f"(missing: {missing}, unknown: {unknown})"
            )
        return order

    def correction_vectors(
        self,
        reference: np.ndarray,
        target: np.ndarray,
        ref_idx: np.ndarray,
        tgt_idx: np.ndarray,
    ) -> np.ndarray:
        """Smoothed correction vector for every target cell.

        Parameters
        ----------
        reference : np.ndarray
            Reference coordinates
        target : np.ndarray
            Target coordinates
        ref_idx, tgt_idx : np.ndarray
            MNN pair indices from :func:`find_mutual_nn`

        Returns
        -------
        np.ndarray
            Vectors to add to the target coordinates (n_tgt x d)
        """
        from sklearn.neighbors import NearestNeighbors

        pair_vectors = reference[ref_idx] - target[tgt_idx]

        # Average over the pairs of each target MNN cell
        mnn_cells, inverse = np.unique(tgt_idx, return_inverse=True)
        sums = np.zeros((mnn_cells.size, target.shape[1]))
        np.add.at(sums, inverse, pair_vectors)
        counts = np.bincount(inverse, minlength=mnn_cells.size).astype(float)
        averaged = sums / counts[:, None]

        n_smooth = min(self.config.smooth_k, mnn_cells.size)
        nn = NearestNeighbors(n_neighbors=n_smooth).fit(target[mnn_cells])
        distances, neighbors = nn.kneighbors(target)

        positive = distances[distances > 0]
        bandwidth = self.config.sigma * (float(np.median(positive)) if positive.size else 1.0)

        # Subtract the nearest squared distance for numerical stability
        sq = distances ** 2
        weights = np.exp(-(sq - sq[:, :1]) / (2.0 * bandwidth ** 2))
        weights /= weights.sum(axis=1, keepdims=True)
        return np.einsum("ij,ijk->ik", weights, averaged[neighbors])

    def _merge_one(
        self,
        reference: np.ndarray,
        target: np.ndarray,
        pairs: Tuple[np.ndarray, np.ndarray],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Correct one target batch against the reference.

        Returns the (possibly re-centred) reference and corrected target.
        """
        ref_idx, tgt_idx = pairs

        if self.config.remove_batch_axis:
            mean_vector = (reference[ref_idx] - target[tgt_idx]).mean(axis=0)
            norm = np.linalg.norm(mean_vector)
            if norm > 0:
                axis = mean_vector / norm
                reference = center_along_batch_vector(reference, axis)
                target = center_along_batch_vector(target, axis)

        correction = self.correction_vectors(reference, target, ref_idx, tgt_idx)
        return reference, target + correction

    def correct(self, embedding: np.ndarray, batches: Any) -> MNNResult:
        """Correct an embedding for batch effects.

        Parameters
        ----------
        embedding : np.ndarray
            Cells x dimensions coordinates (typically multi-batch PCs)
        batches : array-like
            Batch label per cell; category order is the default merge order

        Returns
        -------
        MNNResult
            Corrected coordinates in the input cell order and diagnostics
        """
        coords = np.asarray(embedding, dtype=np.float64).copy()
        labels = pd.Series(batches).reset_index(drop=True)
        if len(labels) != coords.shape[0]:
            raise ValueError(
                f"Got {len(labels)} batch labels for {coords.shape[0]} cells"
            )

        if isinstance(labels.dtype, pd.CategoricalDtype):
            present = set(labels.astype(str))
            batch_names = [str(c) for c in labels.cat.categories if str(c) in present]
        else:
            batch_names = [str(b) for b in pd.unique(labels.astype(str))]
        labels = labels.astype(str).to_numpy()
        index_of = {name: np.flatnonzero(labels == name) for name in batch_names}

        if len(batch_names) < 2:
            self.logger.info("Single batch; skipping MNN correction")
            return MNNResult(
                corrected=coords,
                merge_order=batch_names,
                lost_variance=pd.DataFrame(columns=batch_names, dtype=float),
            )

        k = self.config.k
        auto = self.config.auto_merge and not self.config.merge_order
        # MNN pairs already found for the first auto-merge target
        cached_pairs: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}
        next_target: Optional[str] = None
        if auto:
            first, second, pairs = self._auto_start(coords, index_of, batch_names)
            merged = [first]
            remaining = [b for b in batch_names if b != first]
            cached_pairs[second] = pairs
            next_target = second
        else:
            order = self.resolve_merge_order(batch_names)
            merged = order[:1]
            remaining = order[1:]

        steps: List[MergeStep] = []
        lost_rows: List[Dict[str, float]] = []

        while remaining:
            ref_cells = np.concatenate([index_of[b] for b in merged])
            reference = coords[ref_cells]

            if next_target is not None:
                target_name = next_target
                pairs = cached_pairs.pop(target_name)
                next_target = None
            elif auto:
                target_name, pairs = self._pick_next(coords, reference, index_of, remaining)
            else:
                target_name = remaining[0]
                pairs = find_mutual_nn(reference, coords[index_of[target_name]], k)
            remaining.remove(target_name)

            tgt_cells = index_of[target_name]
            target = coords[tgt_cells]
            step = MergeStep(
                step=len(steps) + 1,
                reference=list(merged),
                target=target_name,
                n_pairs=int(pairs[0].size),
                n_reference_cells=int(ref_cells.size),
                n_target_cells=int(tgt_cells.size),
                n_target_mnn_cells=int(np.unique(pairs[1]).size),
            )

            before = {b: total_variance(coords[index_of[b]]) for b in merged + [target_name]}

            # Only reachable when one side is empty
            if step.n_pairs == 0:
                self.logger.warning(
                    "No MNN pairs between %s and %s; leaving %s uncorrected",
                    "+".join(merged),
                    target_name,
                    target_name,
                )
            else:
                new_reference, new_target = self._merge_one(reference, target, pairs)
                coords[ref_cells] = new_reference
                coords[tgt_cells] = new_target

            row = {b: np.nan for b in batch_names}
            for b, var_before in before.items():
                var_after = total_variance(coords[index_of[b]])
                row[b] = (var_before - var_after) / var_before if var_before > 0 else 0.0
            lost_rows.append(row)

            self.logger.info(
                "MNN step %d: %s -> %s, %d pairs (%d target cells)",
                step.step,
                "+".join(merged),
                target_name,
                step.n_pairs,
                step.n_target_mnn_cells,
            )
            steps.append(step)
            merged.append(target_name)

        lost = pd.DataFrame(lost_rows, columns=batch_names)
        lost.index = pd.RangeIndex(1, len(lost_rows) + 1, name="step")
        return MNNResult(
            corrected=coords,
            merge_order=merged,
            steps=steps,
            lost_variance=lost,
        )

    def _auto_start(
        self,
        coords: np.ndarray,
        index_of: Dict[str, np.ndarray],
        batch_names: List[str],
    ) -> Tuple[str, str, Tuple[np.ndarray, np.ndarray]]:
        """Pick the batch pair with the most MNN pairs as the starting point."""
        best: Optional[Tuple[int, str, str]] = None
        best_pairs = None
        for i, first in enumerate(batch_names):
            for second in batch_names[i + 1:]:
                pairs = find_mutual_nn(
                    coords[index_of[first]], coords[index_of[second]], self.config.k
                )
                if best is None or pairs[0].size > best[0]:
                    best = (int(pairs[0].size), first, second)
                    best_pairs = pairs
        self.logger.info(
            "Auto merge: starting with %s and %s (%d pairs)", best[1], best[2], best[0]
        )
        return best[1], best[2], best_pairs

    def _pick_next(
        self,
        coords: np.ndarray,
        reference: np.ndarray,
        index_of: Dict[str, np.ndarray],
        remaining: List[str],
    ) -> Tuple[str, Tuple[np.ndarray, np.ndarray]]:
        """Pick the remaining batch with the most MNN pairs to the reference."""
        best_name = remaining[0]
        best_pairs = None
        for name in remaining:
            pairs = find_mutual_nn(reference, coords[index_of[name]], self.config.k)
            if best_pairs is None or pairs[0].size > best_pairs[0].size:
                best_name, best_pairs = name, pairs
        return best_name, best_pairs
