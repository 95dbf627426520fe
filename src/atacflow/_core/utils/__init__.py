# Normalization and LSI
from .atacseq import compute_lsi, depth_correlation, feature_percentiles, select_top_features, tfidf_normalize

# Genomic intervals, sequences and fragments
from .genomics import (
    closest_genes,
    count_fragments,
    fetch_fragments,
    fetch_sequences,
    format_region,
    get_fragments_path,
    nucleotide_frequencies,
    parse_peak_names,
    parse_region,
    read_gene_annotation,
    region_stats,
    to_muon_features,
    tss_positions,
)

# Motif scanning
from .motif_scan import motif_identifiers, read_motifs, scan_sequences

# Statistics
from .statistical_tests import (
    apply_fdr_correction,
    fisher_compare_counts,
    hypergeometric_enrichment,
    logistic_lr_test,
)

__all__ = [
    "tfidf_normalize",
    "compute_lsi",
    "depth_correlation",
    "feature_percentiles",
    "select_top_features",
    "parse_peak_names",
    "format_region",
    "parse_region",
    "read_gene_annotation",
    "tss_positions",
    "to_muon_features",
    "closest_genes",
    "fetch_sequences",
    "region_stats",
    "nucleotide_frequencies",
    "get_fragments_path",
    "count_fragments",
    "fetch_fragments",
    "read_motifs",
    "motif_identifiers",
    "scan_sequences",
    "apply_fdr_correction",
    "logistic_lr_test",
    "hypergeometric_enrichment",
    "fisher_compare_counts",
]
