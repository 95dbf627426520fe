"""
Differential accessibility between groups of cells.

Main Functions:
- differential_accessibility(): Per-peak logistic regression likelihood ratio test
- closest_features(): Nearest gene for each peak
"""

import warnings

import numpy as np
import pandas as pd
import scipy.sparse as sp
from anndata import AnnData

from .._core.types import validate_results
from .._core.utils.genomics import closest_genes, parse_peak_names
from .._core.utils.statistical_tests import apply_fdr_correction, logistic_lr_test

DA_COLUMNS = [
    "peak",
    "pvalue",
    "log_fold_change",
    "pct_group",
    "pct_reference",
    "statistic",
    "fdr_pvalue",
    "significant",
    "direction",
]


def _column_means(X, mask):
    sub = X[mask]
    return np.asarray(sub.mean(axis=0)).ravel()


def _fraction_nonzero(X, mask):
    sub = X[mask]
    if sp.issparse(sub):
        return np.asarray((sub > 0).sum(axis=0)).ravel() / sub.shape[0]
    return (np.asarray(sub) > 0).mean(axis=0)


def differential_accessibility(
    adata: AnnData,
    group: str,
    reference: str = "rest",
    *,
    groupby: str = "cell_type",
    latent_vars: tuple[str, ...] | list[str] | None = ("n_counts",),
    min_pct: float = 0.05,
    logfc_threshold: float = 0.1,
    layer: str | None = "tfidf",
    fdr_method: str = "bonferroni",
    verbose: bool = True,
) -> pd.DataFrame:
    """Test every peak for differential accessibility between two groups of cells.

    Each peak is tested with a logistic regression likelihood ratio test:
    group membership is modeled as ``group ~ peak + latent`` versus
    ``group ~ latent``. Peaks open in fewer than ``min_pct`` of the cells of
    both groups, or with ``|log_fold_change| < logfc_threshold``, are not tested.

    Parameters
    ----------
    adata : AnnData
        Object with ``obs[groupby]`` and normalized accessibility in ``layers[layer]``.
    group : str
        Group tested.
    reference : str, default: "rest"
        Comparison group, or ``"rest"`` for all other cells.
    groupby : str, default: "cell_type"
        ``obs`` column holding the groups.
    latent_vars : sequence of str | None, default: ("n_counts",)
        ``obs`` columns included as covariates in both models.
    min_pct : float, default: 0.05
        Minimum fraction of cells with nonzero accessibility in either group.
    logfc_threshold : float, default: 0.1
        Minimum absolute log2 fold change.
    layer : str | None, default: "tfidf"
        Layer with log-normalized values. None uses ``adata.X``.
    fdr_method : str, default: "bonferroni"
        Correction method. Bonferroni counts every peak in ``adata``, tested or not.
    verbose : bool, default: True
        Whether to print progress and statistics

    Returns
    -------
    pd.DataFrame
        Columns:

        - `peak` : str - Peak name
        - `pvalue` : float - Likelihood ratio test p-value
        - `log_fold_change` : float - log2 fold change of mean accessibility
        - `pct_group` : float - Fraction of group cells with nonzero accessibility
        - `pct_reference` : float - Fraction of reference cells with nonzero accessibility
        - `statistic` : float - Likelihood ratio statistic
        - `fdr_pvalue` : float - Adjusted p-value
        - `significant` : bool - ``fdr_pvalue < 0.05``
        - `direction` : str - ``'up'`` or ``'down'``

        Sorted by p-value; ``attrs`` hold ``group``, ``reference`` and ``groupby``.

    Examples
    --------
    >>> da = af.tl.differential_accessibility(adata, "CD4 Naive", "CD14 Mono")
    >>> da[da.significant].head()
    """
    if groupby not in adata.obs.columns:
        raise ValueError(f"adata.obs['{groupby}'] not found. Run af.tl.annotate_clusters() first.")
    labels = adata.obs[groupby].astype(str)
    if group not in set(labels):
        raise ValueError(f"Group '{group}' not found in adata.obs['{groupby}']")
    if reference != "rest" and reference not in set(labels):
        raise ValueError(f"Reference '{reference}' not found in adata.obs['{groupby}']")
    if reference == group:
        raise ValueError("group and reference must differ")
    if layer is not None and layer not in adata.layers:
        raise ValueError(f"adata.layers['{layer}'] not found. Run af.pp.prepare_atacseq() first.")
    latent_vars = list(latent_vars or [])
    missing = [v for v in latent_vars if v not in adata.obs.columns]
    if missing:
        raise ValueError(f"Latent variables not in adata.obs: {missing}. Run af.pp.calculate_qc_metrics() first.")

    in_group = (labels == group).to_numpy()
    in_reference = ~in_group if reference == "rest" else (labels == reference).to_numpy()
    if not in_reference.any():
        raise ValueError(f"No cells in reference '{reference}'")

    X = adata.layers[layer] if layer is not None else adata.X
    X = X.tocsr() if sp.issparse(X) else np.asarray(X)

    pct_group = _fraction_nonzero(X, in_group)
    pct_reference = _fraction_nonzero(X, in_reference)
    expm1 = X.expm1() if sp.issparse(X) else np.expm1(X)
    log_fc = np.log2(_column_means(expm1, in_group) + 1) - np.log2(_column_means(expm1, in_reference) + 1)

    testable = (np.maximum(pct_group, pct_reference) >= min_pct) & (np.abs(log_fc) >= logfc_threshold)
    if verbose:
        print(
            f"[DA] {group} ({int(in_group.sum())} cells) vs {reference} ({int(in_reference.sum())} cells): "
            f"testing {int(testable.sum())}/{adata.n_vars} peaks"
        )

    if not testable.any():
        warnings.warn(
            f"No peaks pass min_pct={min_pct} and logfc_threshold={logfc_threshold} for {group} vs {reference}",
            UserWarning,
        )
        results = pd.DataFrame(columns=DA_COLUMNS)
    else:
        cells = in_group | in_reference
        peak_idx = np.flatnonzero(testable)
        latent = adata.obs.loc[cells, latent_vars].to_numpy(dtype=float) if latent_vars else None
        statistic, pvalue, n_failed = logistic_lr_test(X[cells][:, peak_idx], in_group[cells], latent)
        if n_failed:
            warnings.warn(f"{n_failed} peaks failed to fit and were given p = 1", UserWarning)

        results = pd.DataFrame(
            {
                "peak": adata.var_names[peak_idx].to_numpy(),
                "pvalue": pvalue,
                "log_fold_change": log_fc[peak_idx],
                "pct_group": pct_group[peak_idx],
                "pct_reference": pct_reference[peak_idx],
                "statistic": statistic,
            }
        )
        results = apply_fdr_correction(results, method=fdr_method, n_tests=adata.n_vars, verbose=verbose)
        results["direction"] = np.where(results["log_fold_change"] > 0, "up", "down")
        results = results.sort_values(["pvalue", "peak"]).reset_index(drop=True)[DA_COLUMNS]
        validate_results(results, "differential")

    results.attrs.update({"group": group, "reference": reference, "groupby": groupby})
    if verbose and len(results):
        sig = results["significant"]
        print(
            f"[STATS] {int(sig.sum())} significant peaks "
            f"({int((sig & (results['direction'] == 'up')).sum())} up, "
            f"{int((sig & (results['direction'] == 'down')).sum())} down)"
        )
    return results


def closest_features(peaks, annotation: pd.DataFrame) -> pd.DataFrame:
    """Nearest gene for each peak.

    Parameters
    ----------
    peaks : sequence of str | pd.DataFrame
        Peak names, or a results table with a ``peak`` column.
    annotation : pd.DataFrame
        Gene bedframe from ``af.pp.load_gene_annotation``.

    Returns
    -------
    pd.DataFrame
        Columns ``query_region, gene_name, gene_id, gene_biotype, closest_region, distance``;
        distance is 0 for peaks overlapping a gene.
    """
    if isinstance(peaks, pd.DataFrame):
        if "peak" not in peaks.columns:
            raise ValueError("peaks DataFrame needs a 'peak' column")
        peaks = peaks["peak"]
    names = pd.Index(peaks).astype(str)
    if len(names) == 0:
        return pd.DataFrame(
            columns=["query_region", "gene_name", "gene_id", "gene_biotype", "closest_region", "distance"]
        )
    return closest_genes(parse_peak_names(names), annotation)
