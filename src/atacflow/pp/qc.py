"""
Cell-level quality control for scATAC-seq.

Main Functions:
- calculate_qc_metrics(): Counts, FRiP, blacklist ratio, nucleosome signal, TSS enrichment
- filter_cells(): Apply ``QCThresholds`` and record what each criterion removed

Fragment-based metrics (nucleosome signal, TSS enrichment) need a fragments
file registered by ``af.pp.read_10x_atac``; cellranger metrics need the
``singlecell.csv`` columns. Missing inputs skip the metric with a warning.
"""

import operator
import warnings

import numpy as np
import pandas as pd
import scanpy as sc
from anndata import AnnData
from muon import atac as ac

from .._core.config import QCThresholds
from .._core.types import QCFilterSummary
from .._core.utils.genomics import count_fragments, get_fragments_path, to_muon_features, tss_positions

NUCLEOSOME_CUTOFF = 4
TSS_CUTOFF = 2

_OPERATORS = {">": operator.gt, "<": operator.lt}


def _safe_ratio(numerator, denominator):
    numerator = np.asarray(numerator, dtype=float)
    denominator = np.asarray(denominator, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = numerator / denominator
    ratio[~np.isfinite(ratio)] = np.nan
    return ratio


def _tss_profile(tss_pileup: AnnData, groups: pd.Series) -> pd.DataFrame:
    """Mean normalized TSS pileup per group as a ``position`` + group columns table."""
    X = tss_pileup.X
    X = X.toarray() if hasattr(X, "toarray") else np.asarray(X)
    n_positions = X.shape[1]
    profile = pd.DataFrame({"position": np.arange(n_positions) - n_positions // 2})
    groups = groups.reindex(tss_pileup.obs_names)
    for group in ("High", "Low"):
        mask = (groups == group).to_numpy()
        if mask.any():
            profile[group] = np.nanmean(X[mask], axis=0)
    return profile


def calculate_qc_metrics(
    adata: AnnData,
    *,
    annotation: pd.DataFrame | None = None,
    n_fragments: int | None = None,
    n_tss: int = 2000,
    random_state: int = 0,
    verbose: bool = True,
) -> AnnData:
    """Compute per-cell QC metrics in place.

    Parameters
    ----------
    adata : AnnData
        Raw peak counts from ``af.pp.read_10x_atac``.
    annotation : pd.DataFrame | None, default: None
        Gene bedframe from ``af.pp.load_gene_annotation``; needed for TSS enrichment.
    n_fragments : int | None, default: None
        Fragments read for the nucleosome signal; ``n_obs * 1e4`` when None.
        Capped at the number of fragments in the file.
    n_tss : int, default: 2000
        Number of TSS sampled for the enrichment score.
    random_state : int, default: 0
        Seed for TSS sampling.
    verbose : bool, default: True
        Whether to print metric summaries

    Returns
    -------
    AnnData
        The same object, with ``obs`` columns ``n_counts``, ``n_peaks`` and,
        where inputs allow, ``pct_reads_in_peaks``, ``blacklist_ratio``,
        ``nucleosome_signal``, ``nucleosome_group``, ``tss_score``, ``high_tss``.
        The mean TSS profile per ``high_tss`` group goes to ``uns['tss_pileup']``.
    """
    if verbose:
        print(f"[QC] Computing QC metrics for {adata.n_obs} cells")

    sc.pp.calculate_qc_metrics(adata, percent_top=None, log1p=False, inplace=True)
    adata.obs["n_counts"] = adata.obs.pop("total_counts").astype(float)
    adata.obs["n_peaks"] = adata.obs.pop("n_genes_by_counts").astype(int)
    adata.var.drop(
        columns=["total_counts", "n_cells_by_counts", "mean_counts", "pct_dropout_by_counts"],
        errors="ignore",
        inplace=True,
    )

    obs = adata.obs
    if {"peak_region_fragments", "passed_filters"} <= set(obs.columns):
        obs["pct_reads_in_peaks"] = 100 * _safe_ratio(obs["peak_region_fragments"], obs["passed_filters"])
    else:
        warnings.warn("peak_region_fragments/passed_filters not in adata.obs; skipping pct_reads_in_peaks", UserWarning)
    if {"blacklist_region_fragments", "peak_region_fragments"} <= set(obs.columns):
        obs["blacklist_ratio"] = _safe_ratio(obs["blacklist_region_fragments"], obs["peak_region_fragments"])
    else:
        warnings.warn(
            "blacklist_region_fragments/peak_region_fragments not in adata.obs; skipping blacklist_ratio",
            UserWarning,
        )

    if get_fragments_path(adata) is None:
        warnings.warn("No fragments file registered; skipping nucleosome signal and TSS enrichment", UserWarning)
    else:
        # muon reads exactly n fragments and fails on shorter files
        requested = int(adata.n_obs * 1e4) if n_fragments is None else int(n_fragments)
        n_available = count_fragments(get_fragments_path(adata), limit=requested)
        if n_available == 0:
            raise ValueError(f"Fragments file {get_fragments_path(adata)} is empty")
        ac.tl.nucleosome_signal(adata, n=n_available)
        adata.obs["nucleosome_group"] = pd.Categorical(
            np.where(
                adata.obs["nucleosome_signal"] > NUCLEOSOME_CUTOFF,
                f"NS > {NUCLEOSOME_CUTOFF}",
                f"NS < {NUCLEOSOME_CUTOFF}",
            ),
            categories=[f"NS < {NUCLEOSOME_CUTOFF}", f"NS > {NUCLEOSOME_CUTOFF}"],
        )

        if annotation is None:
            warnings.warn("No gene annotation given; skipping TSS enrichment", UserWarning)
        else:
            features = to_muon_features(tss_positions(annotation))
            n_tss = min(n_tss, len(features))
            tss = ac.tl.tss_enrichment(
                adata, features=features, n_tss=n_tss, return_tss=True, random_state=random_state
            )
            adata.obs["high_tss"] = pd.Categorical(
                np.where(adata.obs["tss_score"] > TSS_CUTOFF, "High", "Low"), categories=["High", "Low"]
            )
            adata.uns["tss_pileup"] = _tss_profile(tss, adata.obs["high_tss"])

    if verbose:
        print("[STATS] QC metric medians:")
        for col in ("n_counts", "n_peaks", "pct_reads_in_peaks", "blacklist_ratio", "nucleosome_signal", "tss_score"):
            if col in adata.obs.columns:
                print(f"   {col}: {np.nanmedian(adata.obs[col].to_numpy(dtype=float)):.3f}")

    return adata


def filter_cells(
    adata: AnnData,
    thresholds: QCThresholds | None = None,
    *,
    inplace: bool = True,
    verbose: bool = True,
) -> AnnData | None:
    """Remove cells failing QC thresholds.

    Criteria whose metric column is missing are skipped with a warning.
    NaN metrics fail their criterion.

    Parameters
    ----------
    adata : AnnData
        Object with QC metrics from ``af.pp.calculate_qc_metrics``.
    thresholds : QCThresholds | None, default: None
        Cutoffs. Defaults to ``QCThresholds()``.
    inplace : bool, default: True
        Subset ``adata`` in place and return None, otherwise return a filtered copy.
    verbose : bool, default: True
        Whether to print filtering statistics

    Returns
    -------
    AnnData | None
        Filtered copy when ``inplace=False``. Either way the summary is stored
        in ``uns['qc_filter']``.

    Raises
    ------
    ValueError
        If no cells pass.
    """
    thresholds = thresholds or QCThresholds()

    keep = np.ones(adata.n_obs, dtype=bool)
    failed, skipped = {}, []
    for column, op, cutoff in thresholds.criteria():
        label = f"{column} {op} {cutoff:g}"
        if column not in adata.obs.columns:
            skipped.append(label)
            warnings.warn(f"adata.obs['{column}'] not found; skipping QC criterion '{label}'", UserWarning)
            continue
        values = adata.obs[column].to_numpy(dtype=float)
        passes = _OPERATORS[op](values, cutoff)
        failed[label] = int((~passes).sum())
        keep &= passes

    n_after = int(keep.sum())
    summary = QCFilterSummary(n_cells_before=adata.n_obs, n_cells_after=n_after, failed=failed, skipped=skipped)

    if verbose:
        print(f"[STATS] QC filtering: {n_after}/{adata.n_obs} cells pass")
        for label, n_failed in failed.items():
            print(f"   {label}: {n_failed} cells fail")

    if n_after == 0:
        raise ValueError(f"No cells pass QC thresholds: {failed}")

    if inplace:
        adata._inplace_subset_obs(keep)
        adata.uns["qc_filter"] = summary.model_dump()
        return None

    filtered = adata[keep].copy()
    filtered.uns["qc_filter"] = summary.model_dump()
    return filtered
