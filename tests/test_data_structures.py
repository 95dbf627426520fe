"""Tests for result schemas and AnnData key conventions."""

import numpy as np
import pandas as pd
import pytest

import atacflow as af
from atacflow._core.types import (
    AnnDataKeys,
    DifferentialResult,
    MotifComparisonResult,
    QCFilterSummary,
    get_required_columns,
    validate_dataframe_schema,
    validate_results,
)


class TestPydanticModels:
    def test_differential_row(self):
        row = DifferentialResult(
            peak="chr1:100-200",
            pvalue=0.01,
            log_fold_change=1.2,
            pct_group=0.4,
            pct_reference=0.1,
            statistic=6.6,
            fdr_pvalue=0.5,
            significant=False,
            direction="up",
        )
        assert row.direction == "up"

    def test_differential_row_rejects_bad_direction(self):
        with pytest.raises(ValueError):
            DifferentialResult(
                peak="chr1:100-200",
                pvalue=0.01,
                log_fold_change=1.2,
                pct_group=0.4,
                pct_reference=0.1,
                statistic=6.6,
                fdr_pvalue=0.5,
                significant=False,
                direction="sideways",
            )

    def test_motif_comparison_allows_infinite_ratio(self):
        row = MotifComparisonResult(
            motif="M1",
            motif_name="AP1",
            observed_a=10,
            observed_b=0,
            n_a=50,
            n_b=60,
            percent_observed_a=20.0,
            percent_observed_b=0.0,
            log2_ratio=np.inf,
            odds_ratio=np.inf,
            pvalue=0.001,
            neg_log10_pvalue=3.0,
            fdr_pvalue=0.003,
            significant=True,
            enriched_in="a",
        )
        assert np.isinf(row.log2_ratio)

    def test_qc_filter_summary_defaults(self):
        summary = QCFilterSummary(n_cells_before=10, n_cells_after=8)
        assert summary.model_dump() == {"n_cells_before": 10, "n_cells_after": 8, "failed": {}, "skipped": []}


class TestValidation:
    def test_missing_columns(self):
        df = pd.DataFrame({"peak": ["chr1:1-2"], "pvalue": [0.5]})
        with pytest.raises(ValueError, match="Missing required columns"):
            validate_results(df, "differential")

    def test_bad_row(self):
        df = pd.DataFrame(
            {
                "query_region": ["chr1:1-2"],
                "gene_name": ["A"],
                "closest_region": ["chr1:5-9"],
                "distance": [-3],
            }
        )
        with pytest.raises(ValueError, match="failed validation"):
            validate_results(df, "closest_feature", strict=True)

    def test_empty_table_passes(self):
        assert validate_dataframe_schema(pd.DataFrame(), DifferentialResult)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown result_type"):
            validate_results(pd.DataFrame(), "pathway")
        with pytest.raises(ValueError, match="Unknown result_type"):
            get_required_columns("pathway")

    def test_required_columns(self):
        assert get_required_columns("closest_feature") == {"query_region", "gene_name", "closest_region", "distance"}
        assert "enriched_in" in get_required_columns("motif_comparison")


def test_anndata_keys_after_processing(processed_adata):
    """Keys documented in AnnDataKeys are where the functions put them."""
    adata = processed_adata
    for key in (AnnDataKeys.N_COUNTS, AnnDataKeys.N_PEAKS, AnnDataKeys.PCT_READS_IN_PEAKS, AnnDataKeys.CLUSTER):
        assert key in adata.obs.columns
    for key in (AnnDataKeys.PEAK_CHROM, AnnDataKeys.PEAK_START, AnnDataKeys.PEAK_END):
        assert key in adata.var.columns
    assert AnnDataKeys.TFIDF in adata.layers
    assert AnnDataKeys.X_LSI in adata.obsm
    assert AnnDataKeys.X_UMAP in adata.obsm
    assert AnnDataKeys.LSI in adata.uns
    assert AnnDataKeys.LSI_LOADINGS in adata.varm


def test_anndata_keys_after_motifs(motif_adata):
    assert AnnDataKeys.MOTIFS in motif_adata.varm
    assert AnnDataKeys.MOTIFS in motif_adata.uns
    assert AnnDataKeys.GC_PERCENT in motif_adata.var.columns
    assert AnnDataKeys.SEQUENCE_LENGTH in motif_adata.var.columns


def test_package_exports():
    assert af.__version__
    for name in ("pp", "tl", "pl", "datasets", "run_pipeline", "PipelineConfig", "QCThresholds"):
        assert hasattr(af, name)
    for name in ("read_10x_atac", "calculate_qc_metrics", "filter_cells", "prepare_atacseq"):
        assert callable(getattr(af.pp, name))
    for name in ("embed_and_cluster", "annotate_clusters", "differential_accessibility", "dar_motif_prediction"):
        assert callable(getattr(af.tl, name))
