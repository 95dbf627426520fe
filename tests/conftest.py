"""Shared fixtures for atacflow tests."""

import warnings

import matplotlib

matplotlib.use("Agg")  # Use non-interactive backend

import numpy as np
import pandas as pd
import pysam
import pytest
import scipy.sparse as sp
from anndata import AnnData

import atacflow as af

N_CELLS, N_PEAKS = 300, 600
GROUP_LABELS = {"0": "B", "1": "T", "2": "Mono"}


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture
def atac_adata():
    """Synthetic scATAC counts: 3 groups, 50 group-specific peaks each."""
    return af.datasets.synthetic_atac(n_cells=N_CELLS, n_peaks=N_PEAKS, n_groups=3, random_state=0)


@pytest.fixture
def small_counts():
    """Tiny dense count matrix for checking normalization by hand."""
    return np.array(
        [
            [1, 0, 3, 0],
            [0, 2, 1, 0],
            [4, 0, 0, 0],
        ],
        dtype=float,
    )


@pytest.fixture
def qc_adata(atac_adata):
    """Synthetic data with count-based QC metrics (no fragments file)."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        af.pp.calculate_qc_metrics(atac_adata, verbose=False)
    return atac_adata


@pytest.fixture
def processed_adata(qc_adata):
    """Normalized, embedded and clustered data with ground-truth cell types."""
    af.pp.prepare_atacseq(qc_adata, n_components=10, verbose=False)
    af.tl.embed_and_cluster(qc_adata, n_neighbors=10, resolution=0.5, verbose=False)
    qc_adata.obs["cell_type"] = pd.Categorical(
        qc_adata.obs["group"].astype(str).map(GROUP_LABELS), categories=list(GROUP_LABELS.values())
    )
    return qc_adata


@pytest.fixture
def da_results(processed_adata):
    """B vs T differential accessibility."""
    return af.tl.differential_accessibility(processed_adata, "B", "T", verbose=False)


@pytest.fixture(scope="session")
def synthetic_outs(tmp_path_factory):
    """cellranger-like outs/ directory with fragments, genome, GTF and motifs.

    Peak coordinates match every ``synthetic_atac(n_peaks=N_PEAKS)`` object,
    so the genome and motif files also serve ``processed_adata``.
    """
    directory = tmp_path_factory.mktemp("outs")
    adata = af.datasets.synthetic_atac(n_cells=200, n_peaks=N_PEAKS, n_groups=3, random_state=1)
    return af.datasets.write_synthetic_outs(directory, adata, random_state=1)


@pytest.fixture
def motif_adata(processed_adata, synthetic_outs):
    """Processed data annotated with motif matches."""
    af.tl.add_motifs(processed_adata, synthetic_outs["motifs"], synthetic_outs["genome"], verbose=False)
    return processed_adata


@pytest.fixture
def gene_adata(processed_adata):
    """Small gene activity-like object sharing the UMAP of ``processed_adata``."""
    rng = np.random.default_rng(0)
    genes = list(af._core.constants.PBMC_MARKER_GENES[:6])
    X = rng.poisson(0.5, size=(processed_adata.n_obs, len(genes))).astype(np.float32)
    gene = AnnData(sp.csr_matrix(X), obs=processed_adata.obs.copy())
    gene.var_names = genes
    gene.obsm["X_umap"] = processed_adata.obsm["X_umap"].copy()
    return gene


@pytest.fixture
def tiny_fragments(tmp_path):
    """Two cells with a 16-line fragments file and a minus- and a plus-strand gene.

    Cell A has 5 short fragments 500 bp past the end of MINUS (chr1:10000-11000, -)
    and 4 mono-nucleosome fragments. Cell B has 3 short fragments 1.4 kb before
    PLUS (chr1:20000-21000, +), 2 more short ones and 2 mono-nucleosome ones.
    """
    a, b = "AAACGAAC-1", "AAACGAAG-1"
    fragments = (
        [("chr1", 11500, 11600, a)] * 5
        + [("chr1", 18500, 18600, b)] * 3
        + [("chr1", 30000 + 500 * i, 30200 + 500 * i, a) for i in range(4)]
        + [("chr1", 40000 + 500 * i, 40200 + 500 * i, b) for i in range(2)]
        + [("chr1", 45000 + 500 * i, 45080 + 500 * i, b) for i in range(2)]
    )
    plain = tmp_path / "fragments.tsv"
    with open(plain, "w") as f:
        for chrom, start, end, barcode in sorted(fragments, key=lambda fr: fr[1]):
            f.write(f"{chrom}\t{start}\t{end}\t{barcode}\t1\n")
    fragments_path = pysam.tabix_index(str(plain), preset="bed", force=True)

    adata = AnnData(
        sp.csr_matrix(np.array([[3, 1], [0, 2]], dtype=np.float32)),
        obs=pd.DataFrame(index=[a, b]),
        var=pd.DataFrame(index=["chr1:11000-12000", "chr1:18000-19000"]),
    )
    adata.uns["files"] = {"fragments": str(fragments_path)}
    genes = pd.DataFrame(
        {
            "chrom": ["chr1", "chr1"],
            "start": [10000, 20000],
            "end": [11000, 21000],
            "strand": ["-", "+"],
            "gene_name": ["MINUS", "PLUS"],
        }
    )
    return adata, genes
