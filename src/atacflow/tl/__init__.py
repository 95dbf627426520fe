"""Tools for scATAC-seq: clustering, annotation, differential accessibility and motifs."""

from .annotation import annotate_clusters, gene_activity, marker_table
from .clustering import depth_correlation, embed_and_cluster
from .coverage import region_coverage
from .differential import closest_features, differential_accessibility
from .motifs import (
    accessible_peaks,
    add_motifs,
    dar_motif_prediction,
    find_motifs,
    make_volcano_2_sets,
    match_background,
    read_motifs,
    region_stats,
    select_dars,
)

__all__ = [
    "embed_and_cluster",
    "depth_correlation",
    "gene_activity",
    "annotate_clusters",
    "marker_table",
    "differential_accessibility",
    "closest_features",
    "read_motifs",
    "add_motifs",
    "region_stats",
    "match_background",
    "accessible_peaks",
    "find_motifs",
    "select_dars",
    "dar_motif_prediction",
    "make_volcano_2_sets",
    "region_coverage",
]
