"""
scATAC-seq Normalization: TF-IDF, Top Features and LSI
======================================================

Core functions for turning a sparse peak count matrix into LSI embeddings.

Pipeline: raw peaks -> TF-IDF -> top features -> Truncated SVD (LSI) -> embeddings

Main Functions
--------------
tfidf_normalize : TF-IDF normalize a sparse peak count matrix
feature_percentiles : Percentile rank of each peak's total counts
compute_lsi : Truncated SVD on TF-IDF matrix, producing LSI embeddings
depth_correlation : Correlation of each LSI component with sequencing depth

Notes
-----
- The default TF-IDF variant is ``log1p(TF * IDF * 1e4)`` with raw TF and IDF.
- The first LSI component usually tracks sequencing depth, not biology;
  ``depth_correlation`` makes that visible and ``compute_lsi`` drops it by default.
- scATAC-seq matrices are ~98% sparse; all operations preserve sparsity where possible.
"""

import numpy as np
import scipy.sparse as sp
from scipy.stats import rankdata
from sklearn.decomposition import TruncatedSVD


def tfidf_normalize(X, scale_factor=1e4, log_tf=False, log_idf=False, log_tfidf=True):
    """TF-IDF normalize a sparse peak count matrix.

    Parameters
    ----------
    X : scipy.sparse matrix or numpy.ndarray
        Peak count matrix [n_cells, n_peaks].
    scale_factor : float, default: 1e4
        Multiplier applied to TF before combining with IDF.
    log_tf : bool, default: False
        Use log1p(TF * scale_factor) instead of the scaled TF.
    log_idf : bool, default: False
        Use log1p(IDF).
    log_tfidf : bool, default: True
        Apply log1p to the final product. With the other two flags False this
        is the ``log1p(TF * IDF * scale_factor)`` variant.

    Returns
    -------
    scipy.sparse.csr_matrix
        TF-IDF normalized matrix [n_cells, n_peaks], float32 CSR.
    """
    if not sp.issparse(X):
        X = sp.csr_matrix(X)
    else:
        X = X.tocsr()
    X = X.astype(np.float64)

    row_sums = np.asarray(X.sum(axis=1)).flatten()
    row_sums[row_sums == 0] = 1
    tf = sp.diags(1.0 / row_sums) @ X

    n_cells = X.shape[0]
    col_sums = np.asarray(X.sum(axis=0)).flatten()
    col_sums[col_sums == 0] = 1
    idf = n_cells / col_sums
    if log_idf:
        idf = np.log1p(idf)

    tf = tf * scale_factor
    if log_tf:
        tf = tf.log1p()

    tfidf = sp.csr_matrix(tf @ sp.diags(idf))
    if log_tfidf:
        tfidf = tfidf.log1p()

    return sp.csr_matrix(tfidf, dtype=np.float32)


def feature_percentiles(X):
    """Percentile (0-100) of each peak's total count across all peaks."""
    totals = np.asarray(X.sum(axis=0)).flatten()
    return 100.0 * (rankdata(totals, method="max") / len(totals)), totals


def select_top_features(X, min_cutoff="q0"):
    """Boolean mask of peaks passing ``min_cutoff``.

    ``"qN"`` keeps peaks in the N-th total-count percentile or above, an integer
    keeps peaks with at least that many counts, None keeps everything.
    """
    percentile, totals = feature_percentiles(X)
    if min_cutoff is None:
        return np.ones(X.shape[1], dtype=bool), percentile
    if isinstance(min_cutoff, str):
        if not min_cutoff.startswith("q"):
            raise ValueError(f"min_cutoff string must look like 'q5', got '{min_cutoff}'")
        try:
            q = float(min_cutoff[1:])
        except ValueError:
            raise ValueError(f"min_cutoff string must look like 'q5', got '{min_cutoff}'") from None
        if not 0 <= q <= 100:
            raise ValueError(f"Percentile cutoff must be within 0-100, got {q}")
        # q0 keeps every peak, including empty ones
        return (percentile >= q) if q > 0 else np.ones(X.shape[1], dtype=bool), percentile
    return totals >= min_cutoff, percentile


def compute_lsi(X_tfidf, n_components=50, drop_first=True, scale_embeddings=True, random_state=42):
    """Compute LSI (Latent Semantic Indexing) via Truncated SVD.

    Parameters
    ----------
    X_tfidf : scipy.sparse matrix or numpy.ndarray
        TF-IDF normalized matrix [n_cells, n_peaks].
    n_components : int, default: 50
        Number of LSI components to return. If drop_first=True, computes
        n_components+1 and drops the first.
    drop_first : bool, default: True
        Drop first SVD component (sequencing depth).
    scale_embeddings : bool, default: True
        Standardize each component to zero mean and unit variance.
    random_state : int, default: 42
        Random seed for reproducibility.

    Returns
    -------
    embeddings : numpy.ndarray
        LSI embeddings [n_cells, n_components].
    variance_ratio : numpy.ndarray
        Explained variance ratio for each returned component.
    components : numpy.ndarray
        Feature loadings [n_components, n_peaks].
    singular_values : numpy.ndarray
        Singular value of each returned component.
    """
    n_compute = n_components + 1 if drop_first else n_components

    max_components = min(X_tfidf.shape) - 1
    if n_compute > max_components:
        n_compute = max_components
        print(f"  Capped LSI components at {n_compute} (matrix rank limit)")

    svd = TruncatedSVD(n_components=n_compute, random_state=random_state)
    embeddings = svd.fit_transform(X_tfidf)
    variance_ratio = svd.explained_variance_ratio_
    components = svd.components_
    singular_values = svd.singular_values_

    if drop_first:
        embeddings = embeddings[:, 1:]
        variance_ratio = variance_ratio[1:]
        components = components[1:]
        singular_values = singular_values[1:]

    if scale_embeddings:
        std = embeddings.std(axis=0)
        std[std == 0] = 1
        embeddings = (embeddings - embeddings.mean(axis=0)) / std

    return embeddings, variance_ratio, components, singular_values


def depth_correlation(embeddings, depth):
    """Pearson correlation between each embedding column and log10 depth."""
    log_depth = np.log10(np.asarray(depth, dtype=float) + 1)
    centered_depth = log_depth - log_depth.mean()
    centered = embeddings - embeddings.mean(axis=0)
    denom = np.sqrt((centered**2).sum(axis=0) * (centered_depth**2).sum())
    denom[denom == 0] = np.nan
    return (centered * centered_depth[:, None]).sum(axis=0) / denom
