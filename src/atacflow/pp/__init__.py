"""Preprocessing functions for scATAC-seq: loading, QC and normalization."""

from .atacseq import find_top_features, lsi, prepare_atacseq, tfidf
from .basic import load_gene_annotation, parse_peak_names, read_10x_atac
from .qc import calculate_qc_metrics, filter_cells

__all__ = [
    "read_10x_atac",
    "load_gene_annotation",
    "parse_peak_names",
    "calculate_qc_metrics",
    "filter_cells",
    "tfidf",
    "find_top_features",
    "lsi",
    "prepare_atacseq",
]
