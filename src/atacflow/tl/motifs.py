"""
Motif annotation and enrichment for peak sets.

Main Functions:
- add_motifs(): Scan every peak for every motif into ``varm['motifs']``
- match_background(): GC-matched background peaks for a query set
- accessible_peaks(): Peaks open in enough cells of some groups
- find_motifs(): Hypergeometric motif enrichment of a query set against a background
- select_dars(): Peaks passing the DAR cutoffs for one direction
- dar_motif_prediction(): Differentially accessible peaks -> background -> enrichment
- make_volcano_2_sets(): Compare motif frequency between two enrichment results

Typical use::

    af.tl.add_motifs(adata, "JASPAR2020.jaspar", "hg38.fa")
    up = af.tl.dar_motif_prediction(adata, da, direction="up")
    down = af.tl.dar_motif_prediction(adata, da, direction="down")
    comparison = af.tl.make_volcano_2_sets(up, down, label_a="up", label_b="down")
"""

import warnings
from pathlib import Path

import numpy as np
import pandas as pd
import scipy.sparse as sp
from anndata import AnnData

from .._core.types import Direction
from .._core.utils.genomics import fetch_sequences, nucleotide_frequencies, parse_peak_names
from .._core.utils.genomics import region_stats as _region_stats
from .._core.utils.motif_scan import motif_identifiers, scan_sequences
from .._core.utils.motif_scan import read_motifs as _read_motifs
from .._core.utils.statistical_tests import apply_fdr_correction, fisher_compare_counts, hypergeometric_enrichment

ENRICHMENT_COLUMNS = [
    "motif",
    "motif_name",
    "observed",
    "background",
    "percent_observed",
    "percent_background",
    "fold_enrichment",
    "pvalue",
    "fdr_pvalue",
    "significant",
]


def read_motifs(path: str | Path, fmt: str = "jaspar") -> list:
    """Read a motif database with ``Bio.motifs`` (``jaspar``, ``pfm``, ``meme``, ``transfac``, ...)."""
    return _read_motifs(path, fmt=fmt)


def region_stats(sequences) -> pd.DataFrame:
    """GC percent and length of each sequence."""
    return _region_stats(sequences)


def _peak_frame(adata: AnnData) -> pd.DataFrame:
    if {"chrom", "start", "end"} <= set(adata.var.columns):
        return adata.var[["chrom", "start", "end"]]
    return parse_peak_names(adata.var_names)


def _peak_index(adata: AnnData, peaks, name: str) -> np.ndarray:
    """Integer positions of ``peaks`` (names or boolean mask) in ``adata.var_names``."""
    peaks_array = np.asarray(peaks)
    if peaks_array.dtype == bool:
        if len(peaks_array) != adata.n_vars:
            raise ValueError(f"Boolean {name} mask must have length n_vars ({adata.n_vars})")
        return np.flatnonzero(peaks_array)
    names = pd.Index(peaks).astype(str).unique()
    positions = adata.var_names.get_indexer(names)
    if (positions < 0).any():
        missing = list(names[positions < 0][:3])
        raise ValueError(f"{int((positions < 0).sum())} {name} peaks not in adata.var_names, e.g. {missing}")
    return positions


def add_motifs(
    adata: AnnData,
    motifs,
    genome_fasta: str | Path,
    *,
    fmt: str = "jaspar",
    pvalue_cutoff: float = 5e-5,
    pseudocounts: float = 0.8,
    verbose: bool = True,
) -> AnnData:
    """Annotate every peak with motif matches.

    Parameters
    ----------
    adata : AnnData
        Object whose peaks are scanned.
    motifs : str | Path | list
        Motif file (read with ``fmt``) or a list of ``Bio.motifs`` motifs.
    genome_fasta : str | Path
        Indexed genome FASTA.
    fmt : str, default: "jaspar"
        Motif file format when ``motifs`` is a path.
    pvalue_cutoff : float, default: 5e-5
        Per-window false positive rate used to set each motif's score threshold.
    pseudocounts : float, default: 0.8
        Pseudocounts added to the count matrices.
    verbose : bool, default: True
        Whether to print progress

    Returns
    -------
    AnnData
        The same object with ``var['gc_percent']``, ``var['sequence_length']``,
        a binary peak x motif matrix in ``varm['motifs']`` and
        ``uns['motifs']`` (``motif_ids``, ``motif_names``, ``thresholds``).
    """
    motif_list = read_motifs(motifs, fmt=fmt) if isinstance(motifs, (str, Path)) else list(motifs)
    if not motif_list:
        raise ValueError("No motifs given")

    if verbose:
        print(f"[MOTIF] Fetching {adata.n_vars} peak sequences from {Path(genome_fasta).name}")
    sequences = fetch_sequences(genome_fasta, _peak_frame(adata))
    stats = _region_stats(sequences)
    adata.var["gc_percent"] = stats["gc_percent"].to_numpy()
    adata.var["sequence_length"] = stats["sequence_length"].to_numpy()

    background = nucleotide_frequencies(sequences)
    if verbose:
        print(f"   Scanning {len(motif_list)} motifs (p < {pvalue_cutoff:g})")
    matches, thresholds = scan_sequences(
        sequences,
        motif_list,
        background,
        pvalue_cutoff=pvalue_cutoff,
        pseudocounts=pseudocounts,
        verbose=verbose,
    )

    ids, names = motif_identifiers(motif_list)
    adata.varm["motifs"] = sp.csr_matrix(matches, dtype=np.uint8)
    adata.uns["motifs"] = {
        "motif_ids": np.asarray(ids),
        "motif_names": np.asarray(names),
        "thresholds": thresholds,
        "pvalue_cutoff": pvalue_cutoff,
    }

    if verbose:
        per_peak = np.asarray(matches.sum(axis=1)).ravel()
        print(f"[OK] Motif matrix: {matches.nnz} matches, median {np.median(per_peak):.0f} motifs per peak")
    return adata


def match_background(
    adata: AnnData,
    query,
    *,
    candidates=None,
    n: int = 40000,
    stat: str = "gc_percent",
    n_bins: int = 10,
    random_state: int = 42,
) -> pd.Index:
    """Sample background peaks whose ``stat`` distribution matches the query.

    The query range of ``stat`` is split into ``n_bins`` equal-width bins.
    Each candidate inside the range is drawn with probability proportional
    to the query fraction of its bin divided by the candidate fraction of
    its bin; candidates outside the range are never drawn.

    Parameters
    ----------
    adata : AnnData
        Object with ``var[stat]``.
    query : sequence of str | boolean mask
        Query peaks.
    candidates : sequence of str | boolean mask | None, default: None
        Pool to sample from; all peaks not in the query when None.
    n : int, default: 40000
        Number of background peaks.
    stat : str, default: "gc_percent"
        ``var`` column to match on.
    n_bins : int, default: 10
        Number of bins.
    random_state : int, default: 42
        Sampling seed.

    Returns
    -------
    pd.Index
        Background peak names.
    """
    if stat not in adata.var.columns:
        raise ValueError(f"adata.var['{stat}'] not found. Run af.tl.add_motifs() first.")

    query_idx = _peak_index(adata, query, "query")
    if len(query_idx) == 0:
        raise ValueError("Query peak set is empty")
    if candidates is None:
        candidate_idx = np.setdiff1d(np.arange(adata.n_vars), query_idx)
    else:
        candidate_idx = _peak_index(adata, candidates, "candidate")
    if len(candidate_idx) == 0:
        raise ValueError("No candidate background peaks")

    values = adata.var[stat].to_numpy(dtype=float)
    query_values = values[query_idx]
    candidate_values = values[candidate_idx]

    low, high = query_values.min(), query_values.max()
    if high == low:
        # a single query value still gets one unit of width
        low, high = low - 0.5, high + 0.5
    edges = np.linspace(low, high, n_bins + 1)
    query_bins = np.clip(np.digitize(query_values, edges[1:-1]), 0, n_bins - 1)
    candidate_bins = np.clip(np.digitize(candidate_values, edges[1:-1]), 0, n_bins - 1)
    in_range = (candidate_values >= low) & (candidate_values <= high)
    if not in_range.any():
        raise ValueError(f"No candidate peak has {stat} within the query range [{low:.2f}, {high:.2f}]")

    query_fraction = np.bincount(query_bins, minlength=n_bins) / len(query_bins)
    candidate_fraction = np.bincount(candidate_bins[in_range], minlength=n_bins) / int(in_range.sum())
    with np.errstate(divide="ignore", invalid="ignore"):
        bin_weight = np.where(candidate_fraction > 0, query_fraction / candidate_fraction, 0.0)
    weights = np.where(in_range, bin_weight[candidate_bins], 0.0)

    n_eligible = int((weights > 0).sum())
    if n > n_eligible:
        warnings.warn(
            f"Requested {n} background peaks but only {n_eligible} eligible candidates; using all of them",
            UserWarning,
        )
        chosen = candidate_idx[weights > 0]
    else:
        rng = np.random.default_rng(random_state)
        chosen = rng.choice(candidate_idx, size=n, replace=False, p=weights / weights.sum())
    return adata.var_names[np.sort(chosen)]


def accessible_peaks(adata: AnnData, groups=None, *, groupby: str = "cell_type", min_cells: int = 10) -> pd.Index:
    """Peaks with nonzero counts in at least ``min_cells`` cells of ``groups``.

    ``groups=None`` uses every cell.
    """
    if groups is None:
        cells = np.ones(adata.n_obs, dtype=bool)
    else:
        if groupby not in adata.obs.columns:
            raise ValueError(f"adata.obs['{groupby}'] not found. Run af.tl.annotate_clusters() first.")
        groups = [groups] if isinstance(groups, str) else list(groups)
        cells = adata.obs[groupby].astype(str).isin(groups).to_numpy()
        if not cells.any():
            raise ValueError(f"No cells in groups {groups}")

    X = adata.X[cells]
    n_open = np.asarray((X > 0).sum(axis=0)).ravel()
    return adata.var_names[n_open >= min_cells]


def find_motifs(
    adata: AnnData,
    query,
    background=None,
    *,
    fdr_method: str = "benjamini_hochberg",
    verbose: bool = False,
) -> pd.DataFrame:
    """Hypergeometric test for motif over-representation in a peak set.

    For each motif, ``pvalue = P(X >= observed)`` with
    ``X ~ Hypergeom(n_background, background_count, n_query)``.

    Parameters
    ----------
    adata : AnnData
        Object annotated by ``af.tl.add_motifs``.
    query : sequence of str | boolean mask
        Query peaks.
    background : sequence of str | boolean mask | None, default: None
        Background peaks; all peaks when None.
    fdr_method : str, default: "benjamini_hochberg"
        Multiple testing correction across motifs.

    Returns
    -------
    pd.DataFrame
        Columns ``motif, motif_name, observed, background, percent_observed,
        percent_background, fold_enrichment, pvalue, fdr_pvalue, significant``
        sorted by p-value, with ``attrs['n_query']`` and ``attrs['n_background']``.
    """
    if "motifs" not in adata.varm or "motifs" not in adata.uns:
        raise ValueError("Motif annotation not found. Run af.tl.add_motifs() first.")

    matrix = adata.varm["motifs"]
    matrix = matrix.tocsr() if sp.issparse(matrix) else sp.csr_matrix(np.asarray(matrix))
    query_idx = _peak_index(adata, query, "query")
    background_idx = np.arange(adata.n_vars) if background is None else _peak_index(adata, background, "background")
    n_query, n_background = len(query_idx), len(background_idx)
    if n_query == 0 or n_background == 0:
        raise ValueError("Query and background peak sets must be non-empty")

    observed = np.asarray((matrix[query_idx] > 0).sum(axis=0)).ravel()
    bg_counts = np.asarray((matrix[background_idx] > 0).sum(axis=0)).ravel()
    percent_observed = 100.0 * observed / n_query
    percent_background = 100.0 * bg_counts / n_background
    with np.errstate(divide="ignore", invalid="ignore"):
        fold = np.where(
            percent_background > 0, percent_observed / percent_background, np.where(observed > 0, np.inf, 0.0)
        )

    results = pd.DataFrame(
        {
            "motif": np.asarray(adata.uns["motifs"]["motif_ids"]).astype(str),
            "motif_name": np.asarray(adata.uns["motifs"]["motif_names"]).astype(str),
            "observed": observed.astype(int),
            "background": bg_counts.astype(int),
            "percent_observed": percent_observed,
            "percent_background": percent_background,
            "fold_enrichment": fold,
            "pvalue": hypergeometric_enrichment(observed, n_query, bg_counts, n_background),
        }
    )
    results = apply_fdr_correction(results, method=fdr_method, verbose=verbose)
    results = results.sort_values(["pvalue", "motif"]).reset_index(drop=True)[ENRICHMENT_COLUMNS]
    results.attrs.update({"n_query": n_query, "n_background": n_background})
    return results


def select_dars(
    da_results: pd.DataFrame, *, direction: str = "up", pvalue_cutoff: float = 0.005, min_pct: float = 0.2
) -> pd.DataFrame:
    """Rows of ``da_results`` that count as DARs for one side of the comparison.

    A DAR has ``pvalue < pvalue_cutoff``, a log fold change of the requested
    sign and is open in more than ``min_pct`` of the cells where it gains
    accessibility (``pct_group`` for up, ``pct_reference`` for down).
    """
    if direction not in [d.value for d in Direction]:
        raise ValueError(f"direction must be 'up' or 'down', got '{direction}'")
    required = {"peak", "pvalue", "log_fold_change", "pct_group", "pct_reference"}
    missing = required - set(da_results.columns)
    if missing:
        raise ValueError(f"da_results missing columns {sorted(missing)}. Run af.tl.differential_accessibility() first.")

    pct_col = "pct_group" if direction == "up" else "pct_reference"
    sign = da_results["log_fold_change"] > 0 if direction == "up" else da_results["log_fold_change"] < 0
    return da_results[(da_results["pvalue"] < pvalue_cutoff) & (da_results[pct_col] > min_pct) & sign]


def dar_motif_prediction(
    adata: AnnData,
    da_results: pd.DataFrame,
    *,
    direction: str = "up",
    pvalue_cutoff: float = 0.005,
    min_pct: float = 0.2,
    groups=None,
    groupby: str | None = None,
    n_background: int = 40000,
    min_cells: int = 10,
    random_state: int = 42,
    verbose: bool = True,
) -> pd.DataFrame:
    """Motif enrichment in differentially accessible peaks.

    DARs are peaks with ``pvalue < pvalue_cutoff`` and positive (``"up"``) or
    negative (``"down"``) log fold change that are open in more than
    ``min_pct`` of the cells where they gain accessibility (``pct_group`` for
    up, ``pct_reference`` for down). The background is sampled among peaks
    accessible in the compared groups, matched on GC content, and motif
    enrichment is tested with ``find_motifs``.

    Parameters
    ----------
    adata : AnnData
        Object annotated by ``af.tl.add_motifs``.
    da_results : pd.DataFrame
        Output of ``af.tl.differential_accessibility``.
    direction : {"up", "down"}, default: "up"
        Which side of the comparison to test.
    pvalue_cutoff : float, default: 0.005
        Raw p-value cutoff for DARs.
    min_pct : float, default: 0.2
        Minimum fraction of open cells.
    groups : sequence of str | None, default: None
        Groups whose accessible peaks form the background pool. Taken from
        ``da_results.attrs`` (group and reference) when None; a ``"rest"``
        reference, or missing attrs, use every cell.
    groupby : str | None, default: None
        ``obs`` column for ``groups``; ``da_results.attrs['groupby']`` or
        ``"cell_type"`` when None.
    n_background : int, default: 40000
        Background size.
    min_cells : int, default: 10
        Minimum open cells for a background candidate.
    random_state : int, default: 42
        Background sampling seed.

    Returns
    -------
    pd.DataFrame
        ``find_motifs`` table; ``attrs`` also carry ``direction`` and ``n_dar``.

    Raises
    ------
    ValueError
        If no peak passes the DAR selection.
    """
    selected = select_dars(da_results, direction=direction, pvalue_cutoff=pvalue_cutoff, min_pct=min_pct)
    if selected.empty:
        pct_col = "pct_group" if direction == "up" else "pct_reference"
        raise ValueError(
            f"No differentially accessible peaks with direction='{direction}', "
            f"pvalue < {pvalue_cutoff} and {pct_col} > {min_pct}"
        )
    query = pd.Index(selected["peak"].astype(str))

    groupby = groupby or da_results.attrs.get("groupby", "cell_type")
    if groups is None and "group" in da_results.attrs and da_results.attrs.get("reference") not in (None, "rest"):
        groups = [da_results.attrs["group"], da_results.attrs["reference"]]
    open_peaks = accessible_peaks(adata, groups, groupby=groupby, min_cells=min_cells)
    candidates = open_peaks.difference(query)
    if candidates.empty:
        raise ValueError("No accessible peaks left for the background")

    if verbose:
        print(f"[MOTIF] {len(query)} '{direction}' DARs; background pool of {len(candidates)} accessible peaks")
    background = match_background(
        adata, query, candidates=candidates, n=min(n_background, len(candidates)), random_state=random_state
    )
    results = find_motifs(adata, query, background)
    results.attrs.update({"direction": direction, "n_dar": len(query)})

    if verbose:
        print(f"[OK] {int(results['significant'].sum())} enriched motifs (n_background = {len(background)})")
    return results


def make_volcano_2_sets(
    enrich_a: pd.DataFrame,
    enrich_b: pd.DataFrame,
    *,
    label_a: str = "a",
    label_b: str = "b",
    pseudocount: float = 0.0,
    fdr_method: str = "benjamini_hochberg",
) -> pd.DataFrame:
    """Compare motif frequency between two peak sets.

    For every motif present in both tables, the 2x2 table
    ``[[observed_a, n_a - observed_a], [observed_b, n_b - observed_b]]`` is
    tested with a two-sided Fisher's exact test, where ``n_a`` and ``n_b``
    are the query sizes stored in each table's ``attrs['n_query']``. Motifs
    observed in neither set are dropped.

    Parameters
    ----------
    enrich_a, enrich_b : pd.DataFrame
        ``find_motifs`` / ``dar_motif_prediction`` outputs.
    label_a, label_b : str
        Names used in the ``enriched_in`` column.
    pseudocount : float, default: 0.0
        Added to both percentages before the log2 ratio. With 0, motifs absent
        from one set get an infinite ratio.
    fdr_method : str, default: "benjamini_hochberg"
        Multiple testing correction across motifs.

    Returns
    -------
    pd.DataFrame
        Columns ``motif, motif_name, observed_a, observed_b, n_a, n_b,
        percent_observed_a, percent_observed_b, log2_ratio, odds_ratio, pvalue,
        neg_log10_pvalue, fdr_pvalue, significant, enriched_in`` sorted by p-value.
        ``enriched_in`` is ``label_a`` or ``label_b`` for significant motifs
        and ``"ns"`` otherwise.
    """
    for name, table in (("enrich_a", enrich_a), ("enrich_b", enrich_b)):
        if "n_query" not in table.attrs:
            raise ValueError(f"{name}.attrs['n_query'] not found. Use the output of af.tl.find_motifs().")
        if not {"motif", "motif_name", "observed"} <= set(table.columns):
            raise ValueError(f"{name} is not a motif enrichment table")
    n_a, n_b = int(enrich_a.attrs["n_query"]), int(enrich_b.attrs["n_query"])

    merged = enrich_a[["motif", "motif_name", "observed"]].merge(
        enrich_b[["motif", "observed"]], on="motif", suffixes=("_a", "_b")
    )
    if merged.empty:
        raise ValueError("The two enrichment tables share no motifs")
    merged = merged[(merged["observed_a"] > 0) | (merged["observed_b"] > 0)].reset_index(drop=True)
    if merged.empty:
        raise ValueError("No shared motif is observed in either peak set")

    odds, pvalue = fisher_compare_counts(merged["observed_a"], n_a, merged["observed_b"], n_b)
    # motif in every peak of both sets
    odds = np.where(np.isnan(odds), 1.0, odds)
    merged["n_a"] = n_a
    merged["n_b"] = n_b
    merged["percent_observed_a"] = 100.0 * merged["observed_a"] / n_a
    merged["percent_observed_b"] = 100.0 * merged["observed_b"] / n_b
    with np.errstate(divide="ignore"):
        merged["log2_ratio"] = np.log2(merged["percent_observed_a"] + pseudocount) - np.log2(
            merged["percent_observed_b"] + pseudocount
        )
    merged["odds_ratio"] = odds
    merged["pvalue"] = pvalue
    merged["neg_log10_pvalue"] = -np.log10(np.clip(pvalue, np.finfo(float).tiny, 1.0))

    merged = apply_fdr_correction(merged, method=fdr_method)
    merged["enriched_in"] = np.where(
        ~merged["significant"], "ns", np.where(merged["percent_observed_a"] > merged["percent_observed_b"], label_a, label_b)
    )
    merged = merged.sort_values(["pvalue", "motif"]).reset_index(drop=True)
    merged.attrs.update({"label_a": label_a, "label_b": label_b, "n_a": n_a, "n_b": n_b})
    return merged[
        [
            "motif",
            "motif_name",
            "observed_a",
            "observed_b",
            "n_a",
            "n_b",
            "percent_observed_a",
            "percent_observed_b",
            "log2_ratio",
            "odds_ratio",
            "pvalue",
            "neg_log10_pvalue",
            "fdr_pvalue",
            "significant",
            "enriched_in",
        ]
    ]
