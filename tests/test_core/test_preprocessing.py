"""Tests for loading and normalization."""

import shutil

import numpy as np
import pytest
import scipy.sparse as sp

import atacflow as af
from atacflow._core.utils.atacseq import compute_lsi, select_top_features, tfidf_normalize


def test_synthetic_atac_structure(atac_adata):
    """Synthetic data has peak coordinates, groups and cellranger columns."""
    assert atac_adata.shape == (300, 600)
    assert sp.issparse(atac_adata.X)
    assert {"chrom", "start", "end", "specific_group"} <= set(atac_adata.var.columns)
    assert {"group", "passed_filters", "peak_region_fragments", "blacklist_region_fragments"} <= set(
        atac_adata.obs.columns
    )
    assert atac_adata.var_names[0] == "chr1:10000-10500"
    assert (atac_adata.var["specific_group"] == "0").sum() == 50
    assert atac_adata.obs_names.is_unique


def test_tfidf_matches_manual(small_counts):
    """TF-IDF equals log1p(TF * IDF * 1e4)."""
    result = tfidf_normalize(small_counts).toarray()

    tf = small_counts / small_counts.sum(axis=1, keepdims=True)
    col_sums = small_counts.sum(axis=0)
    col_sums[col_sums == 0] = 1
    idf = small_counts.shape[0] / col_sums
    expected = np.log1p(tf * idf * 1e4)

    np.testing.assert_allclose(result, expected, rtol=1e-5)
    # empty peak stays zero
    assert np.all(result[:, 3] == 0)


def test_tfidf_keeps_sparsity(atac_adata):
    """Sparse in, sparse out with identical pattern."""
    result = tfidf_normalize(atac_adata.X)
    assert sp.issparse(result)
    assert result.dtype == np.float32
    assert result.nnz == atac_adata.X.nnz


def test_select_top_features_cutoffs(small_counts):
    """Percentile, integer and None cutoffs."""
    keep_all, percentile = select_top_features(small_counts, "q0")
    assert keep_all.all()
    assert percentile.max() == 100

    mask, _ = select_top_features(small_counts, "q60")
    # totals [5, 2, 4, 0] rank at percentiles [100, 50, 75, 25]
    assert mask.tolist() == [True, False, True, False]

    mask, _ = select_top_features(small_counts, 3)
    assert mask.tolist() == [True, False, True, False]

    mask, _ = select_top_features(small_counts, None)
    assert mask.all()

    with pytest.raises(ValueError, match="q5"):
        select_top_features(small_counts, "top10")


def test_compute_lsi_shapes(atac_adata):
    """drop_first computes one extra component and drops it."""
    X = tfidf_normalize(atac_adata.X)
    emb, var_ratio, components, sv = compute_lsi(X, n_components=8, drop_first=True)
    assert emb.shape == (300, 8)
    assert components.shape == (8, 600)
    assert len(var_ratio) == len(sv) == 8
    np.testing.assert_allclose(emb.mean(axis=0), 0, atol=1e-6)
    np.testing.assert_allclose(emb.std(axis=0), 1, atol=1e-5)


def test_prepare_atacseq(qc_adata):
    """TF-IDF layer, LSI embedding, loadings and metadata are stored."""
    qc_adata.X[:, 5] = 0
    qc_adata.X.eliminate_zeros()
    af.pp.prepare_atacseq(qc_adata, n_components=10, min_cutoff="q10", verbose=False)

    assert "tfidf" in qc_adata.layers
    assert qc_adata.obsm["X_lsi"].shape == (300, 10)
    assert qc_adata.varm["LSI"].shape == (600, 10)
    assert not qc_adata.var["highly_variable"].iloc[5]
    assert np.all(qc_adata.varm["LSI"][~qc_adata.var["highly_variable"].to_numpy()] == 0)

    lsi = qc_adata.uns["lsi"]
    assert lsi["dropped_first"]
    assert len(lsi["variance_ratio"]) == 10
    # correlations cover the dropped component too
    assert len(lsi["depth_correlation"]) == 11
    assert lsi["depth_key"] == "n_counts"


def test_lsi_requires_tfidf(atac_adata):
    """LSI without a TF-IDF layer points at af.pp.tfidf."""
    with pytest.raises(ValueError, match="af.pp.tfidf"):
        af.pp.lsi(atac_adata, 5, verbose=False)


def test_parse_peak_names():
    """Both cellranger separators parse; garbage raises."""
    df = af.pp.parse_peak_names(["chr1:100-200", "chrX-5000-5600"])
    assert df["chrom"].tolist() == ["chr1", "chrX"]
    assert df["start"].tolist() == [100, 5000]
    assert df["end"].tolist() == [200, 5600]

    with pytest.raises(ValueError, match="not genomic intervals"):
        af.pp.parse_peak_names(["chr1:100-200", "GAPDH"])
    with pytest.raises(ValueError, match="end > start"):
        af.pp.parse_peak_names(["chr1:300-200"])


def test_read_10x_atac(synthetic_outs):
    """Matrix, metadata and fragments are picked up from an outs directory."""
    adata = af.pp.read_10x_atac(synthetic_outs["matrix"].parent, verbose=False)

    assert adata.shape == (200, 600)
    assert adata.var_names[0] == "chr1:10000-10500"
    assert adata.var["start"].iloc[0] == 10000
    assert "peak_region_fragments" in adata.obs.columns
    assert "NO_BARCODE" not in adata.obs_names
    assert adata.obs["peak_region_fragments"].notna().all()
    assert adata.uns["files"]["fragments"] == str(synthetic_outs["fragments"])


def test_read_10x_atac_missing(tmp_path):
    """A directory without a peak matrix raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        af.pp.read_10x_atac(tmp_path, verbose=False)
    with pytest.raises(FileNotFoundError):
        af.pp.read_10x_atac(tmp_path / "missing.h5", verbose=False)


def test_read_10x_atac_without_fragments(synthetic_outs, tmp_path):
    """A lone matrix file loads with a warning and no registered fragments."""
    matrix = tmp_path / "filtered_peak_bc_matrix.h5"
    shutil.copy(synthetic_outs["matrix"], matrix)

    with pytest.warns(UserWarning, match="No fragments file"):
        adata = af.pp.read_10x_atac(matrix, verbose=False)

    assert adata.n_obs == 200
    assert "files" not in adata.uns
    assert "peak_region_fragments" not in adata.obs.columns


def test_load_gene_annotation(synthetic_outs):
    """GTF genes become a 0-based, chr-prefixed, biotype-filtered bedframe."""
    genes = af.pp.load_gene_annotation(synthetic_outs["gtf"])

    assert list(genes.columns[:4]) == ["chrom", "start", "end", "strand"]
    assert genes["chrom"].str.startswith("chr").all()
    assert "LINC00001" not in set(genes["gene_name"])
    assert genes["gene_name"].is_unique  # transcript rows dropped
    assert genes["gene_name"].iloc[0] == "MS4A1"
    # first gene: + strand at the centre of chr1:10000-10500, GTF start 10251
    assert genes["start"].iloc[0] == 10250

    all_biotypes = af.pp.load_gene_annotation(synthetic_outs["gtf"], biotypes=None)
    assert "LINC00001" in set(all_biotypes["gene_name"])

    ensembl = af.pp.load_gene_annotation(synthetic_outs["gtf"], ucsc_style=False)
    assert not ensembl["chrom"].str.startswith("chr").any()


def test_load_gene_annotation_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        af.pp.load_gene_annotation(tmp_path / "genes.gtf")
