"""
Neighbor graph, UMAP and graph clustering on LSI embeddings.

Main Functions:
- embed_and_cluster(): scanpy neighbors + UMAP + Leiden/Louvain into ``obs['cluster']``
- depth_correlation(): Correlation of each LSI component with sequencing depth
"""

import numpy as np
import pandas as pd
import scanpy as sc
from anndata import AnnData

from .._core.utils.atacseq import depth_correlation as _depth_correlation


def _order_by_size(labels: pd.Series) -> pd.Categorical:
    """Renumber cluster labels ``"0".."k"`` by decreasing size (ties by first label)."""
    counts = labels.astype(str).value_counts(sort=False)
    order = sorted(counts.index, key=lambda c: (-counts[c], c))
    mapping = {old: str(i) for i, old in enumerate(order)}
    return pd.Categorical(labels.astype(str).map(mapping), categories=[str(i) for i in range(len(order))])


def embed_and_cluster(
    adata: AnnData,
    *,
    use_rep: str = "X_lsi",
    n_components: int | None = None,
    n_neighbors: int = 15,
    resolution: float = 0.8,
    algorithm: str = "leiden",
    key_added: str = "cluster",
    random_state: int = 0,
    verbose: bool = True,
) -> AnnData:
    """Build the kNN graph, embed with UMAP and cluster.

    Parameters
    ----------
    adata : AnnData
        Object with ``obsm[use_rep]``.
    use_rep : str, default: "X_lsi"
        Representation for the neighbor graph.
    n_components : int | None, default: None
        Number of leading components of ``use_rep`` to use. All when None.
    n_neighbors : int, default: 15
        Neighbors per cell.
    resolution : float, default: 0.8
        Clustering resolution.
    algorithm : {"leiden", "louvain"}, default: "leiden"
        Community detection algorithm (igraph implementation).
    key_added : str, default: "cluster"
        ``obs`` column for cluster labels.
    random_state : int, default: 0
        Seed for neighbors, UMAP and clustering.
    verbose : bool, default: True
        Whether to print the cluster sizes

    Returns
    -------
    AnnData
        The same object with ``obsp`` graphs, ``obsm['X_umap']`` and
        ``obs[key_added]`` holding string labels ordered by decreasing size.
    """
    if use_rep not in adata.obsm:
        raise ValueError(f"adata.obsm['{use_rep}'] not found. Run af.pp.prepare_atacseq() first.")
    if algorithm not in ("leiden", "louvain"):
        raise ValueError(f"Unknown clustering algorithm: {algorithm}. Use 'leiden' or 'louvain'")

    n_available = adata.obsm[use_rep].shape[1]
    n_pcs = n_available if n_components is None else min(n_components, n_available)

    sc.pp.neighbors(adata, n_neighbors=n_neighbors, n_pcs=n_pcs, use_rep=use_rep, random_state=random_state)
    sc.tl.umap(adata, random_state=random_state)
    if algorithm == "leiden":
        sc.tl.leiden(
            adata,
            resolution=resolution,
            key_added=key_added,
            flavor="igraph",
            n_iterations=2,
            directed=False,
            random_state=random_state,
        )
    else:
        sc.tl.louvain(adata, resolution=resolution, key_added=key_added, flavor="igraph", random_state=random_state)

    adata.obs[key_added] = _order_by_size(adata.obs[key_added])

    if verbose:
        sizes = adata.obs[key_added].value_counts(sort=False)
        print(f"[OK] {algorithm}: {len(sizes)} clusters at resolution {resolution}")
        print(f"   Sizes: {dict(sizes)}")
    return adata


def depth_correlation(adata: AnnData, n_components: int | None = None, depth_key: str = "n_counts") -> pd.DataFrame:
    """Correlation of LSI components with log10 sequencing depth.

    Uses the correlations stored by ``af.pp.lsi`` (which include the dropped
    first component) when they were computed against ``depth_key``; otherwise
    correlates the kept components in ``obsm['X_lsi']``.

    Returns
    -------
    pd.DataFrame
        Columns ``component`` (1-based, in undropped numbering) and ``correlation``.
    """
    if "lsi" not in adata.uns or "X_lsi" not in adata.obsm:
        raise ValueError("LSI results not found. Run af.pp.lsi() first.")

    info = adata.uns["lsi"]
    if "depth_correlation" in info and info.get("depth_key") == depth_key:
        correlation = np.asarray(info["depth_correlation"])
        first = 1
    else:
        if depth_key not in adata.obs.columns:
            raise ValueError(f"adata.obs['{depth_key}'] not found. Run af.pp.calculate_qc_metrics() first.")
        correlation = _depth_correlation(adata.obsm["X_lsi"], adata.obs[depth_key].to_numpy())
        first = 2 if bool(info.get("dropped_first", False)) else 1

    table = pd.DataFrame({"component": np.arange(first, first + len(correlation)), "correlation": correlation})
    if n_components is not None:
        table = table.head(n_components)
    return table
