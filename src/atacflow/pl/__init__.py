"""Plotting functions for scATAC-seq analysis."""

from .coverage import coverage
from .embedding import depth_correlation, gene_activity, marker_dotplot, umap
from .qc import fragment_histogram, qc_density, qc_violin, tss_profile
from .results import da_volcano, motif_enrichment, motif_volcano, violin_peak

__all__ = [
    "qc_violin",
    "tss_profile",
    "fragment_histogram",
    "qc_density",
    "umap",
    "depth_correlation",
    "marker_dotplot",
    "gene_activity",
    "da_volcano",
    "violin_peak",
    "motif_volcano",
    "motif_enrichment",
    "coverage",
]
