"""
Dataset-specific constants for the 10x PBMC scATAC-seq analysis.

These values were chosen by inspecting the 10k PBMC dataset (cellranger-atac
1.0.1, hg38): cluster identities come from marker-gene activity on the
Leiden clustering at resolution 0.8, QC cutoffs from the metric
distributions. They are defaults for ``PipelineConfig`` and are expected to
be overridden for any other dataset.
"""

# Leiden cluster id -> cell type
PBMC_CLUSTER_LABELS = {
    "0": "CD14 Mono",
    "1": "CD4 Memory",
    "2": "CD8 Effector",
    "3": "CD4 Naive",
    "4": "CD14 Mono",
    "5": "DN T",
    "6": "CD8 Naive",
    "7": "NK CD56Dim",
    "8": "pre-B",
    "9": "CD16 Mono",
    "10": "pro-B",
    "11": "DC",
    "12": "NK CD56bright",
    "13": "pDC",
}

PBMC_MARKER_GENES = [
    "MS4A1",  # B
    "CD79A",
    "CD3D",  # T
    "LEF1",
    "CD8A",
    "IL7R",
    "NKG7",  # NK
    "GNLY",
    "LYZ",  # monocytes
    "CD14",
    "FCGR3A",
    "TREM1",
    "FCER1A",  # DC
    "IL3RA",  # pDC
]

PBMC_PALETTE = {
    "CD14 Mono": "#e6550d",
    "CD16 Mono": "#fdae6b",
    "CD4 Memory": "#3182bd",
    "CD4 Naive": "#9ecae1",
    "CD8 Effector": "#31a354",
    "CD8 Naive": "#a1d99b",
    "DN T": "#756bb1",
    "NK CD56Dim": "#de2d26",
    "NK CD56bright": "#fc9272",
    "pre-B": "#636363",
    "pro-B": "#bdbdbd",
    "DC": "#e7ba52",
    "pDC": "#8c6d31",
    "Unknown": "#d9d9d9",
}

# (group, reference) pairs tested for differential accessibility
PBMC_COMPARISONS = [
    ("CD4 Naive", "CD14 Mono"),
    ("CD14 Mono", "CD16 Mono"),
]

# Regions shown as coverage tracks (hg38)
PBMC_COVERAGE_REGIONS = [
    "chr2:86783000-86810000",  # CD8A
    "chr12:69339000-69356000",  # LYZ
]

# 10x download locations for the tutorial dataset
PBMC_10K_BASE_URL = "https://cf.10xgenomics.com/samples/cell-atac/1.0.1/atac_v1_pbmc_10k"
PBMC_10K_FILES = {
    "matrix": "atac_v1_pbmc_10k_filtered_peak_bc_matrix.h5",
    "metadata": "atac_v1_pbmc_10k_singlecell.csv",
    "fragments": "atac_v1_pbmc_10k_fragments.tsv.gz",
    "fragments_index": "atac_v1_pbmc_10k_fragments.tsv.gz.tbi",
}
