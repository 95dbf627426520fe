"""End-to-end tests of the one-shot pipeline on a synthetic cellranger-atac output."""

import warnings

import anndata as ad
import pandas as pd
import pytest

import atacflow as af
from atacflow import pipeline
from atacflow._core.config import ClusteringConfig, MotifConfig, PipelineConfig, QCThresholds

RELAXED_QC = dict(
    min_peak_region_fragments=1,
    max_peak_region_fragments=1e6,
    min_pct_reads_in_peaks=0,
    max_blacklist_ratio=1,
    max_nucleosome_signal=100,
    min_tss_score=0,
)


def _config(outs, output_dir, **kwargs):
    defaults = dict(
        data_dir=outs["matrix"].parent,
        output_dir=output_dir,
        gtf=outs["gtf"],
        genome_fasta=outs["genome"],
        motifs=outs["motifs"],
        qc=QCThresholds(**RELAXED_QC),
        clustering=ClusteringConfig(n_lsi_components=10, n_neighbors=10, resolution=0.5),
        cluster_labels={"0": "A", "1": "B", "2": "C"},
        palette={"A": "#e6550d", "B": "#3182bd", "C": "#31a354"},
        comparisons=[("A", "B")],
        coverage_regions=["chr1:9000-12000"],
        verbose=False,
    )
    defaults.update(kwargs)
    return PipelineConfig(**defaults)


@pytest.mark.slow
def test_full_pipeline(synthetic_outs, tmp_path):
    """Every stage runs and writes its figures, tables and objects."""
    config = _config(synthetic_outs, tmp_path / "results")

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        results = af.run_pipeline(config)

    adata = results.adata
    assert 0 < adata.n_obs <= 200
    assert {"cluster", "cell_type", "tss_score", "nucleosome_signal"} <= set(adata.obs.columns)
    assert "qc_filter" in adata.uns
    assert "motifs" in adata.varm

    for name in (
        "qc_violin",
        "tss_profile",
        "fragment_histogram",
        "depth_correlation",
        "umap_clusters",
        "umap_cell_types",
        "marker_dotplot_cell_types",
        "gene_activity_umap",
        "volcano_A_vs_B",
        "violin_A_vs_B",
        "coverage_chr1_9000_12000",
    ):
        assert name in results.figures, name
        assert results.figures[name].exists()
        assert results.figures[name].parent == tmp_path / "results" / "figures"

    assert "da_A_vs_B" in results.tables
    assert (tmp_path / "results" / "tables" / "da_A_vs_B.csv").exists()
    for name in ("motifs_up_A_vs_B", "motifs_down_A_vs_B", "motif_comparison_A_vs_B"):
        assert name in results.tables, name
    assert "motif_volcano_A_vs_B" in results.figures
    assert results.figures["motif_volcano_A_vs_B"].exists()
    assert not any("Motifs for" in s for s in results.skipped)

    saved = ad.read_h5ad(results.files["atac"])
    assert saved.n_obs == adata.n_obs
    assert "X_umap" in saved.obsm
    assert isinstance(saved.obs["cell_type"].dtype, pd.CategoricalDtype)

    assert results.gene_adata is not None
    assert results.files["gene_activity"].exists()
    assert (results.gene_adata.obs["cell_type"] == adata.obs["cell_type"]).all()


@pytest.mark.slow
def test_pipeline_without_optional_inputs(synthetic_outs, tmp_path):
    """Without GTF, FASTA and motifs the optional stages are skipped, not failed."""
    config = _config(
        synthetic_outs,
        tmp_path / "minimal",
        gtf=None,
        genome_fasta=None,
        motifs=None,
        comparisons=[("A", "B"), ("A", "NK")],
        figure_format="pdf",
    )

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        results = af.run_pipeline(config)

    skipped = " | ".join(results.skipped)
    assert "No GTF given" in skipped
    assert "Gene activity needs" in skipped
    assert "Motif enrichment needs" in skipped
    assert "A vs NK" in skipped
    assert results.gene_adata is None
    assert "tss_score" not in results.adata.obs.columns
    assert "tss_profile" not in results.figures
    assert results.figures["umap_clusters"].suffix == ".pdf"
    assert "gene_activity" not in results.files
    assert results.files["atac"].exists()


@pytest.mark.slow
def test_pipeline_skips_directions_without_dars(synthetic_outs, tmp_path):
    """A comparison with no peak under the DAR cutoff skips motif enrichment for both sides."""
    config = _config(synthetic_outs, tmp_path / "no_dars", motif=MotifConfig(dar_pvalue_cutoff=0.0))

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        results = af.run_pipeline(config)

    skipped = " | ".join(results.skipped)
    assert "Motifs for up DARs of A vs B" in skipped
    assert "Motifs for down DARs of A vs B" in skipped
    assert "motif_comparison_A_vs_B" not in results.tables
    assert results.files["atac"].exists()


@pytest.mark.slow
def test_pipeline_motif_errors_propagate(synthetic_outs, tmp_path, monkeypatch):
    """Failures inside motif enrichment other than an empty DAR set are not swallowed."""

    def failing_prediction(*args, **kwargs):
        raise ValueError("No accessible peaks left for the background")

    monkeypatch.setattr(af.tl, "dar_motif_prediction", failing_prediction)
    config = _config(synthetic_outs, tmp_path / "failing")

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        with pytest.raises(ValueError, match="background"):
            af.run_pipeline(config)

def test_slug():
    assert pipeline._slug("CD4 Naive") == "CD4_Naive"
    assert pipeline._slug("chr2:86,783,000-86,810,000") == "chr2_86_783_000_86_810_000"


def test_cli_builds_config(monkeypatch, tmp_path):
    """Command line arguments end up in the PipelineConfig."""
    captured = {}

    def fake_run(config):
        captured["config"] = config
        return "done"

    monkeypatch.setattr(pipeline, "run_pipeline", fake_run)
    result = pipeline.main(
        [
            str(tmp_path / "outs"),
            str(tmp_path / "results"),
            "--gtf",
            "genes.gtf",
            "--genome",
            "hg38.fa",
            "--motifs",
            "JASPAR2020.jaspar",
            "--resolution",
            "0.5",
            "--figure-format",
            "svg",
            "--quiet",
        ]
    )

    assert result == "done"
    config = captured["config"]
    assert config.data_dir == tmp_path / "outs"
    assert config.genome_fasta.name == "hg38.fa"
    assert config.motifs.name == "JASPAR2020.jaspar"
    assert config.clustering.resolution == 0.5
    assert config.figure_format == "svg"
    assert not config.verbose
    assert config.fragments is None


def test_cli_requires_paths():
    with pytest.raises(SystemExit):
        pipeline.build_parser().parse_args([])
