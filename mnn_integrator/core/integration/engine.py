"""Integration engine.

Runs multi-batch PCA on the merged data and dispatches the configured
batch correction method, storing the corrected representation in
``obsm``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import numpy as np
import pandas as pd

from .config import IntegrationConfig
from .mnn import MNNCorrector
from .pca import MultiBatchPCA, PCAResult, to_dense, cosine_normalize


METHODS = ("mnn", "harmony", "combat", "none")

# obsm key of the corrected representation per method
REPRESENTATION_KEYS = {
    "mnn": "X_mnn",
    "harmony": "X_harmony",
    "combat": "X_combat",
    "none": "X_pca",
}


@dataclass
class IntegrationResult:
    """Result from integration.

    Attributes
    ----------
    method : str
        Correction method used
    use_rep : str
        obsm key of the corrected representation
    n_batches : int
        Number of batches
    n_components : int
        Number of principal components
    merge_info : pd.DataFrame
        MNN merge steps (empty for other methods)
    lost_variance : pd.DataFrame
        MNN lost variance, steps x batches (empty for other methods)
    """

    method: str
    use_rep: str
    n_batches: int = 0
    n_components: int = 0
    merge_info: Optional[pd.DataFrame] = None
    lost_variance: Optional[pd.DataFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "method": self.method,
            "use_rep": self.use_rep,
            "n_batches": self.n_batches,
            "n_components": self.n_components,
            "n_merge_steps": 0 if self.merge_info is None else len(self.merge_info),
        }


class IntegrationEngine:
    """Batch integration engine.

    Parameters
    ----------
    config : IntegrationConfig
        Integration configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.integration import IntegrationEngine, IntegrationConfig
    >>> engine = IntegrationEngine(IntegrationConfig(method="mnn"))
    >>> result = engine.run(adata)
    >>> adata.obsm[result.use_rep].shape
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or IntegrationConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in METHODS:
            raise ValueError(
                f"Unknown integration method: {self.config.method} (choose from {METHODS})"
            )
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Integration requires scanpy. Install with: pip install scanpy"
            )

        if self.config.method == "harmony":
            try:
                import harmonypy
            except ImportError:
                raise RuntimeError(
                    "Harmony integration requires harmonypy. "
                    "Install with: pip install harmonypy"
                )

    def run(self, adata: Any) -> IntegrationResult:
        """Run PCA and batch correction in place.

        Parameters
        ----------
        adata : AnnData
            Merged log-normalized data with a batch column

        Returns
        -------
        IntegrationResult
            Method, representation key and MNN diagnostics
        """
        cfg = self.config
        if cfg.batch_key not in adata.obs.columns:
            raise ValueError(f"Batch column '{cfg.batch_key}' not found in obs")

        n_batches = int(adata.obs[cfg.batch_key].nunique())
        self.logger.info(
            "Integrating %d cells from %d batches (method=%s)",
            adata.n_obs,
            n_batches,
            cfg.method,
        )

        pca = MultiBatchPCA(cfg.pca, logger=self.logger)
        pca_result = pca.run(adata, batch_key=cfg.batch_key, use_hvg=cfg.use_hvg)

        use_rep = REPRESENTATION_KEYS[cfg.method]
        result = IntegrationResult(
            method=cfg.method,
            use_rep=use_rep,
            n_batches=n_batches,
            n_components=pca_result.n_components,
            merge_info=pd.DataFrame(),
            lost_variance=pd.DataFrame(),
        )

        if cfg.method == "none":
            pass
        elif n_batches < 2:
            self.logger.info("Single batch; using PCA coordinates as %s", use_rep)
            adata.obsm[use_rep] = adata.obsm["X_pca"].copy()
        elif cfg.method == "mnn":
            self._run_mnn(adata, result)
        elif cfg.method == "harmony":
            self._run_harmony(adata, use_rep)
        elif cfg.method == "combat":
            self._run_combat(adata, pca_result, use_rep)

        adata.uns["integration"] = {
            "method": cfg.method,
            "use_rep": use_rep,
            "n_batches": n_batches,
            "params": cfg.to_dict(),
        }
        self.logger.info(
            "Integration complete: %s (%d dims)", use_rep, adata.obsm[use_rep].shape[1]
        )
        return result

    def _run_mnn(self, adata: Any, result: IntegrationResult) -> None:
        corrector = MNNCorrector(self.config.mnn, logger=self.logger)
        mnn_result = corrector.correct(adata.obsm["X_pca"], adata.obs[self.config.batch_key])

        adata.obsm["X_mnn"] = mnn_result.corrected.astype(np.float32)
        result.merge_info = mnn_result.merge_info()
        result.lost_variance = mnn_result.lost_variance
        adata.uns["mnn"] = {
            "merge_order": list(mnn_result.merge_order),
            "n_pairs": [int(s.n_pairs) for s in mnn_result.steps],
            "lost_variance": {
                str(batch): mnn_result.lost_variance[batch].to_numpy(dtype=float)
                for batch in mnn_result.lost_variance.columns
            },
        }

    def _run_harmony(self, adata: Any, use_rep: str) -> None:
        import scanpy as sc

        sc.external.pp.harmony_integrate(
            adata,
            key=self.config.batch_key,
            basis="X_pca",
            adjusted_basis=use_rep,
            random_state=self.config.pca.random_seed,
        )

    def _run_combat(self, adata: Any, pca_result: PCAResult, use_rep: str) -> None:
        import scanpy as sc

        genes = pca_result.genes or adata.var_names.astype(str).tolist()
        tmp = adata[:, genes].copy()
        tmp.X = to_dense(tmp.X)
        sc.pp.combat(tmp, key=self.config.batch_key)

        data = to_dense(tmp.X)
        if self.config.pca.cos_norm:
            data = cosine_normalize(data)
        projected = (data - pca_result.center) @ pca_result.components
        adata.obsm[use_rep] = projected.astype(np.float32)
