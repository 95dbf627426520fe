# src/atacflow/_core/types.py
"""
Canonical type definitions for atacflow result tables and AnnData keys.

Result tables are plain ``pd.DataFrame`` objects; the Pydantic models below
document one row of each table and are used by ``validate_dataframe_schema``
to check column presence and row contents (tests use ``strict=True``).

Usage:
    from atacflow._core.types import DifferentialResult, validate_results

    da = af.tl.differential_accessibility(adata, "B", reference="T")
    validate_results(da, "differential")
"""

from __future__ import annotations

from enum import Enum

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field

# =============================================================================
# ENUMS
# =============================================================================


class FDRMethod(str, Enum):
    """Multiple testing correction methods."""

    BENJAMINI_HOCHBERG = "benjamini_hochberg"
    BONFERRONI = "bonferroni"
    NONE = "none"


class Direction(str, Enum):
    """Direction of a differential accessibility selection."""

    UP = "up"
    DOWN = "down"


# =============================================================================
# RESULT ROWS
# =============================================================================


class DifferentialResult(BaseModel):
    """Single peak row from ``af.tl.differential_accessibility``.

    Attributes
    ----------
    peak : str
        Peak name ``chrom:start-end``.
    pvalue : float
        Likelihood ratio test p-value.
    log_fold_change : float
        log2 fold change of mean normalized accessibility (group vs reference).
    pct_group, pct_reference : float
        Fraction of cells with a nonzero count in each group.
    statistic : float
        Likelihood ratio statistic ``2 (ll_full - ll_null)``.
    fdr_pvalue : float
        Adjusted p-value (Bonferroni over all peaks by default).
    significant : bool
        ``fdr_pvalue < 0.05``.
    direction : str
        ``'up'`` when more accessible in the group, otherwise ``'down'``.
    """

    peak: str
    pvalue: float = Field(..., ge=0, le=1)
    log_fold_change: float
    pct_group: float = Field(..., ge=0, le=1)
    pct_reference: float = Field(..., ge=0, le=1)
    statistic: float = Field(..., ge=0)
    fdr_pvalue: float = Field(..., ge=0, le=1)
    significant: bool
    direction: Direction

    model_config = {"extra": "allow"}


class MotifEnrichmentResult(BaseModel):
    """Single motif row from ``af.tl.find_motifs``."""

    motif: str
    motif_name: str
    observed: int = Field(..., ge=0)
    background: int = Field(..., ge=0)
    percent_observed: float = Field(..., ge=0, le=100)
    percent_background: float = Field(..., ge=0, le=100)
    fold_enrichment: float = Field(..., ge=0)
    pvalue: float = Field(..., ge=0, le=1)
    fdr_pvalue: float = Field(..., ge=0, le=1)
    significant: bool

    model_config = {"extra": "allow"}


class MotifComparisonResult(BaseModel):
    """Single motif row from ``af.tl.make_volcano_2_sets``.

    ``log2_ratio`` may be infinite when a motif is absent from one set.
    """

    motif: str
    motif_name: str
    observed_a: int = Field(..., ge=0)
    observed_b: int = Field(..., ge=0)
    n_a: int = Field(..., gt=0)
    n_b: int = Field(..., gt=0)
    percent_observed_a: float = Field(..., ge=0, le=100)
    percent_observed_b: float = Field(..., ge=0, le=100)
    log2_ratio: float
    odds_ratio: float = Field(..., ge=0)
    pvalue: float = Field(..., ge=0, le=1)
    neg_log10_pvalue: float = Field(..., ge=0)
    fdr_pvalue: float = Field(..., ge=0, le=1)
    significant: bool
    enriched_in: str

    model_config = {"extra": "allow"}


class ClosestFeatureResult(BaseModel):
    """Single row from ``af.tl.closest_features``."""

    query_region: str
    gene_name: str
    closest_region: str
    distance: int = Field(..., ge=0)

    model_config = {"extra": "allow"}


class QCFilterSummary(BaseModel):
    """Summary stored in ``adata.uns['qc_filter']`` by ``af.pp.filter_cells``."""

    n_cells_before: int = Field(..., ge=0)
    n_cells_after: int = Field(..., ge=0)
    failed: dict[str, int] = Field(default_factory=dict, description="Cells failing each criterion")
    skipped: list[str] = Field(default_factory=list, description="Criteria without a metric column")


# =============================================================================
# ANNDATA KEYS
# =============================================================================


class AnnDataKeys:
    """Reference for keys stored in AnnData by atacflow functions.

    This is a documentation class, not a runtime type.
    """

    # read_10x_atac()
    PEAK_CHROM = "chrom"  # adata.var
    PEAK_START = "start"  # adata.var
    PEAK_END = "end"  # adata.var
    FILES = "files"  # adata.uns, muon convention: {'fragments': path}

    # calculate_qc_metrics()
    N_COUNTS = "n_counts"  # adata.obs
    N_PEAKS = "n_peaks"  # adata.obs
    PCT_READS_IN_PEAKS = "pct_reads_in_peaks"  # adata.obs
    BLACKLIST_RATIO = "blacklist_ratio"  # adata.obs
    NUCLEOSOME_SIGNAL = "nucleosome_signal"  # adata.obs
    NUCLEOSOME_GROUP = "nucleosome_group"  # adata.obs
    TSS_SCORE = "tss_score"  # adata.obs
    HIGH_TSS = "high_tss"  # adata.obs
    TSS_PILEUP = "tss_pileup"  # adata.uns, DataFrame position x high_tss group

    # filter_cells()
    QC_FILTER = "qc_filter"  # adata.uns

    # prepare_atacseq()
    TFIDF = "tfidf"  # adata.layers
    X_LSI = "X_lsi"  # adata.obsm
    LSI = "lsi"  # adata.uns (variance_ratio, stdev, dropped_first)
    LSI_LOADINGS = "LSI"  # adata.varm

    # embed_and_cluster()
    X_UMAP = "X_umap"  # adata.obsm
    CLUSTER = "cluster"  # adata.obs

    # annotate_clusters()
    CELL_TYPE = "cell_type"  # adata.obs

    # add_motifs()
    MOTIFS = "motifs"  # adata.varm (binary peak x motif) and adata.uns (ids, names)
    GC_PERCENT = "gc_percent"  # adata.var
    SEQUENCE_LENGTH = "sequence_length"  # adata.var


# =============================================================================
# DATAFRAME VALIDATION
# =============================================================================


def _to_python(value):
    if isinstance(value, np.generic):
        return value.item()
    return value


def validate_dataframe_schema(
    df: pd.DataFrame,
    model: type[BaseModel],
    *,
    required_only: bool = True,
    sample_n: int = 10,
    strict: bool = False,
) -> bool:
    """Validate DataFrame rows against a Pydantic model schema.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate.
    model : type[BaseModel]
        Pydantic model defining expected schema.
    required_only : bool, default True
        If True, only check required columns are present.
    sample_n : int, default 10
        Number of rows to validate. Ignored if strict=True.
    strict : bool, default False
        If True, validate all rows.

    Returns
    -------
    bool
        True if validation passes.

    Raises
    ------
    ValueError
        If required columns are missing or row validation fails.
    """
    if df.empty:
        return True

    required_fields: set[str] = set()
    optional_fields: set[str] = set()

    for name, field_info in model.model_fields.items():
        if field_info.is_required():
            required_fields.add(name)
        else:
            optional_fields.add(name)

    check_fields = required_fields if required_only else (required_fields | optional_fields)
    missing = check_fields - set(df.columns)

    if missing:
        raise ValueError(
            f"Missing required columns for {model.__name__}: {sorted(missing)}\nDataFrame has: {sorted(df.columns)}"
        )

    rows_to_check = df if strict else df.head(sample_n)
    all_model_fields = required_fields | optional_fields

    for idx, row in rows_to_check.iterrows():
        row_dict = {k: _to_python(v) for k, v in row.to_dict().items() if k in all_model_fields}
        try:
            model.model_validate(row_dict)
        except Exception as e:
            raise ValueError(
                f"Row {idx} failed validation for {model.__name__}: {e}\nRow data (model fields only): {row_dict}"
            ) from e

    return True


RESULT_TYPE_MODELS: dict[str, type[BaseModel]] = {
    "differential": DifferentialResult,
    "motif_enrichment": MotifEnrichmentResult,
    "motif_comparison": MotifComparisonResult,
    "closest_feature": ClosestFeatureResult,
}


def validate_results(df: pd.DataFrame, result_type: str, **kwargs) -> bool:
    """Validate a results DataFrame by type name.

    Parameters
    ----------
    df : pd.DataFrame
        Results DataFrame.
    result_type : str
        One of: 'differential', 'motif_enrichment', 'motif_comparison',
        'closest_feature'.
    **kwargs
        Passed to validate_dataframe_schema (required_only, sample_n, strict).
    """
    if result_type not in RESULT_TYPE_MODELS:
        raise ValueError(f"Unknown result_type: '{result_type}'. Valid options: {list(RESULT_TYPE_MODELS.keys())}")

    return validate_dataframe_schema(df, RESULT_TYPE_MODELS[result_type], **kwargs)


def get_required_columns(result_type: str) -> set[str]:
    """Get required columns for a result type."""
    if result_type not in RESULT_TYPE_MODELS:
        raise ValueError(f"Unknown result_type: '{result_type}'")

    model = RESULT_TYPE_MODELS[result_type]
    return {name for name, field_info in model.model_fields.items() if field_info.is_required()}
