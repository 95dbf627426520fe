"""
TF-IDF normalization and LSI for scATAC-seq peak matrices.

Main Functions:
- tfidf(): TF-IDF into ``adata.layers['tfidf']``
- find_top_features(): Percentile-based peak selection into ``var['highly_variable']``
- lsi(): Truncated SVD on the selected TF-IDF peaks into ``obsm['X_lsi']``
- prepare_atacseq(): All three in order
"""

import numpy as np
import scipy.sparse as sp
from anndata import AnnData

from .._core.utils.atacseq import compute_lsi, depth_correlation, select_top_features, tfidf_normalize


def tfidf(
    adata: AnnData,
    *,
    scale_factor: float = 1e4,
    log_tf: bool = False,
    log_idf: bool = False,
    log_tfidf: bool = True,
    layer_key: str = "tfidf",
) -> None:
    """TF-IDF normalize raw counts in ``adata.X`` into ``adata.layers[layer_key]``.

    The default is ``log1p(TF * IDF * scale_factor)``.
    """
    adata.layers[layer_key] = tfidf_normalize(
        adata.X, scale_factor=scale_factor, log_tf=log_tf, log_idf=log_idf, log_tfidf=log_tfidf
    )


def find_top_features(adata: AnnData, min_cutoff: str | int | None = "q0", *, verbose: bool = False) -> None:
    """Mark peaks passing a total-count cutoff as ``var['highly_variable']``.

    Parameters
    ----------
    adata : AnnData
        Raw peak counts in ``adata.X``.
    min_cutoff : str | int | None, default: "q0"
        ``"qN"``: keep peaks at or above the N-th percentile of total counts.
        int: keep peaks with at least that many counts. None: keep all peaks.
    """
    mask, percentile = select_top_features(adata.X, min_cutoff=min_cutoff)
    adata.var["highly_variable"] = mask
    adata.var["percentile"] = percentile
    if verbose:
        print(f"   Top features ({min_cutoff}): {int(mask.sum())}/{adata.n_vars} peaks")


def lsi(
    adata: AnnData,
    n_components: int = 29,
    *,
    drop_first: bool = True,
    scale_embeddings: bool = True,
    layer: str = "tfidf",
    depth_key: str = "n_counts",
    random_state: int = 42,
    verbose: bool = True,
) -> None:
    """Latent semantic indexing on TF-IDF values of the selected peaks.

    Parameters
    ----------
    adata : AnnData
        Object with ``layers[layer]`` and optionally ``var['highly_variable']``.
    n_components : int, default: 29
        Components kept in ``obsm['X_lsi']`` (after dropping the first when
        ``drop_first``).
    drop_first : bool, default: True
        Drop the first component, which usually tracks sequencing depth.
    scale_embeddings : bool, default: True
        Standardize each component.
    layer : str, default: "tfidf"
        Layer holding the TF-IDF matrix.
    depth_key : str, default: "n_counts"
        ``obs`` column correlated with every component (including the dropped one);
        stored in ``uns['lsi']['depth_correlation']``.
    random_state : int, default: 42
        Seed for the randomized SVD.

    Raises
    ------
    ValueError
        If ``layers[layer]`` is missing.
    """
    if layer not in adata.layers:
        raise ValueError(f"adata.layers['{layer}'] not found. Run af.pp.tfidf() first.")

    if "highly_variable" in adata.var.columns:
        features = adata.var["highly_variable"].to_numpy(dtype=bool)
    else:
        features = np.ones(adata.n_vars, dtype=bool)
    X = adata.layers[layer]
    X = X[:, features] if sp.issparse(X) else np.asarray(X)[:, features]

    n_compute = n_components + 1 if drop_first else n_components
    embeddings, variance_ratio, components, singular_values = compute_lsi(
        X,
        n_components=n_compute,
        drop_first=False,
        scale_embeddings=scale_embeddings,
        random_state=random_state,
    )

    info = {"dropped_first": bool(drop_first), "n_features": int(features.sum())}
    if depth_key in adata.obs.columns:
        info["depth_correlation"] = depth_correlation(embeddings, adata.obs[depth_key].to_numpy())
        info["depth_key"] = depth_key

    start = 1 if drop_first and embeddings.shape[1] > 1 else 0
    embeddings = embeddings[:, start:]
    components = components[start:]
    loadings = np.zeros((adata.n_vars, components.shape[0]), dtype=np.float32)
    loadings[features] = components.T

    adata.obsm["X_lsi"] = embeddings.astype(np.float32)
    adata.varm["LSI"] = loadings
    info["variance_ratio"] = variance_ratio[start:]
    info["stdev"] = singular_values[start:] / np.sqrt(max(adata.n_obs - 1, 1))
    adata.uns["lsi"] = info

    if verbose:
        print(f"[OK] LSI: {embeddings.shape[1]} components on {info['n_features']} peaks")
        if "depth_correlation" in info:
            print(f"   Component 1 vs depth: r = {info['depth_correlation'][0]:.3f}")


def prepare_atacseq(
    adata: AnnData,
    *,
    n_components: int = 29,
    drop_first: bool = True,
    min_cutoff: str | int | None = "q0",
    scale_factor: float = 1e4,
    random_state: int = 42,
    verbose: bool = True,
) -> AnnData:
    """TF-IDF, top features and LSI in one call.

    Parameters
    ----------
    adata : AnnData
        Raw peak counts in ``adata.X`` (kept untouched).
    n_components : int, default: 29
        LSI components kept.
    drop_first : bool, default: True
        Drop the depth-correlated first component.
    min_cutoff : str | int | None, default: "q0"
        Peak selection cutoff for ``find_top_features``.
    scale_factor : float, default: 1e4
        TF-IDF scale factor.
    random_state : int, default: 42
        SVD seed.
    verbose : bool, default: True
        Whether to print progress

    Returns
    -------
    AnnData
        The same object with ``layers['tfidf']``, ``var['highly_variable']``,
        ``obsm['X_lsi']``, ``varm['LSI']`` and ``uns['lsi']``.

    Examples
    --------
    >>> adata = af.datasets.synthetic_atac()
    >>> af.pp.prepare_atacseq(adata, n_components=10)
    >>> adata.obsm["X_lsi"].shape
    (500, 10)
    """
    if verbose:
        print(f"[NORM] TF-IDF + LSI on {adata.n_obs} cells x {adata.n_vars} peaks")
    tfidf(adata, scale_factor=scale_factor)
    find_top_features(adata, min_cutoff=min_cutoff, verbose=verbose)
    lsi(adata, n_components, drop_first=drop_first, random_state=random_state, verbose=verbose)
    return adata
