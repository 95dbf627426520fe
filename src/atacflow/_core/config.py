"""
Pipeline Configuration
======================

Dataclass configuration for the one-shot scATAC-seq pipeline. Defaults
reproduce the 10k PBMC analysis; every dataset-specific constant (QC cutoffs,
cluster labels, palettes, marker genes, comparisons) can be overridden.

Main Classes
------------
QCThresholds : Cell-level QC cutoffs applied by ``af.pp.filter_cells``
ClusteringConfig : LSI, neighbor graph, UMAP and clustering parameters
MotifConfig : Motif scanning and DAR enrichment parameters
PipelineConfig : Paths plus the three configs above

Examples
--------
>>> from atacflow._core.config import PipelineConfig, QCThresholds
>>> config = PipelineConfig(
...     data_dir="outs/",
...     output_dir="results/",
...     qc=QCThresholds(min_tss_score=3.0),
... )
"""

from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    PBMC_CLUSTER_LABELS,
    PBMC_COMPARISONS,
    PBMC_COVERAGE_REGIONS,
    PBMC_MARKER_GENES,
    PBMC_PALETTE,
)


@dataclass
class QCThresholds:
    """Cell-level QC cutoffs.

    Parameters
    ----------
    min_peak_region_fragments : float, default: 3000
        Lower bound (exclusive) on fragments overlapping peaks.
    max_peak_region_fragments : float, default: 20000
        Upper bound (exclusive) on fragments overlapping peaks.
    min_pct_reads_in_peaks : float, default: 15
        Minimum percentage of fragments falling in peaks.
    max_blacklist_ratio : float, default: 0.05
        Maximum ratio of blacklist-region to peak-region fragments.
    max_nucleosome_signal : float, default: 4
        Maximum mono-/nucleosome-free fragment ratio.
    min_tss_score : float, default: 2
        Minimum TSS enrichment score.

    Raises
    ------
    ValueError
        If the fragment bounds are inverted or any cutoff is negative.
    """

    min_peak_region_fragments: float = 3000
    max_peak_region_fragments: float = 20000
    min_pct_reads_in_peaks: float = 15
    max_blacklist_ratio: float = 0.05
    max_nucleosome_signal: float = 4
    min_tss_score: float = 2

    def __post_init__(self):
        for name in (
            "min_peak_region_fragments",
            "max_peak_region_fragments",
            "min_pct_reads_in_peaks",
            "max_blacklist_ratio",
            "max_nucleosome_signal",
            "min_tss_score",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.min_peak_region_fragments >= self.max_peak_region_fragments:
            raise ValueError(
                "min_peak_region_fragments must be smaller than max_peak_region_fragments "
                f"({self.min_peak_region_fragments} >= {self.max_peak_region_fragments})"
            )

    def criteria(self):
        """Return ``(obs column, operator, cutoff)`` triples in filtering order."""
        return [
            ("peak_region_fragments", ">", self.min_peak_region_fragments),
            ("peak_region_fragments", "<", self.max_peak_region_fragments),
            ("pct_reads_in_peaks", ">", self.min_pct_reads_in_peaks),
            ("blacklist_ratio", "<", self.max_blacklist_ratio),
            ("nucleosome_signal", "<", self.max_nucleosome_signal),
            ("tss_score", ">", self.min_tss_score),
        ]


@dataclass
class ClusteringConfig:
    """Dimensionality reduction and clustering parameters.

    ``n_lsi_components`` counts the components kept after dropping the first
    (depth-correlated) one, so the default 29 matches LSI dims 2:30.
    """

    n_lsi_components: int = 29
    drop_first: bool = True
    min_cutoff: str | int | None = "q0"
    n_neighbors: int = 15
    resolution: float = 0.8
    algorithm: str = "leiden"
    random_state: int = 0

    def __post_init__(self):
        if self.n_lsi_components <= 0:
            raise ValueError("n_lsi_components must be positive")
        if self.n_neighbors < 2:
            raise ValueError("n_neighbors must be at least 2")
        if self.resolution <= 0:
            raise ValueError("resolution must be positive")
        if self.algorithm not in ("leiden", "louvain"):
            raise ValueError(f"Unknown clustering algorithm: {self.algorithm}. Use 'leiden' or 'louvain'")


@dataclass
class MotifConfig:
    """Motif scanning and DAR enrichment parameters.

    Parameters
    ----------
    pvalue_cutoff : float, default: 5e-5
        Motif match p-value threshold used to derive PSSM score cutoffs.
    dar_pvalue_cutoff : float, default: 0.005
        Raw p-value below which a peak counts as differentially accessible.
    dar_min_pct : float, default: 0.2
        Minimum fraction of cells in which a DAR must be open.
    n_background : int, default: 40000
        Number of GC-matched background peaks.
    min_cells_accessible : int, default: 10
        Minimum open cells for a peak to be a background candidate.
    """

    motif_format: str = "jaspar"
    pvalue_cutoff: float = 5e-5
    pseudocounts: float = 0.8
    dar_pvalue_cutoff: float = 0.005
    dar_min_pct: float = 0.2
    n_background: int = 40000
    min_cells_accessible: int = 10
    random_state: int = 42

    def __post_init__(self):
        if not 0 < self.pvalue_cutoff < 1:
            raise ValueError("pvalue_cutoff must be in (0, 1)")
        if not 0 < self.dar_pvalue_cutoff <= 1:
            raise ValueError("dar_pvalue_cutoff must be in (0, 1]")
        if not 0 <= self.dar_min_pct < 1:
            raise ValueError("dar_min_pct must be in [0, 1)")
        if self.n_background <= 0:
            raise ValueError("n_background must be positive")


@dataclass
class PipelineConfig:
    """Full configuration for ``atacflow.pipeline.run_pipeline``.

    Parameters
    ----------
    data_dir : str | Path
        cellranger-atac ``outs/`` directory or filtered peak matrix ``.h5``.
    output_dir : str | Path
        Directory for figures, tables and the saved AnnData.
    gtf : str | Path | None
        Gene annotation used for TSS enrichment, gene activity and closest
        genes. Stages needing it are skipped when None.
    genome_fasta : str | Path | None
        Indexed genome FASTA for motif scanning.
    motifs : str | Path | None
        Motif database file (JASPAR format by default).
    cluster_labels : dict[str, str] | None
        Cluster id -> cell type lookup table. Defaults to the PBMC table.
    palette : dict[str, str] | None
        Cell type -> color.
    marker_genes : list[str] | None
        Genes shown in the marker plots.
    comparisons : list[tuple[str, str]] | None
        ``(group, reference)`` pairs for differential accessibility.
    coverage_regions : list[str] | None
        Regions drawn as coverage tracks.
    """

    data_dir: str | Path = None
    output_dir: str | Path = "atacflow_results"
    gtf: str | Path | None = None
    genome_fasta: str | Path | None = None
    motifs: str | Path | None = None
    fragments: str | Path | None = None
    qc: QCThresholds = field(default_factory=QCThresholds)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    motif: MotifConfig = field(default_factory=MotifConfig)
    cluster_labels: dict[str, str] = None
    palette: dict[str, str] = None
    marker_genes: list[str] = None
    comparisons: list[tuple[str, str]] = None
    coverage_regions: list[str] = None
    latent_vars: tuple[str, ...] = ("n_counts",)
    figure_format: str = "png"
    verbose: bool = True

    def __post_init__(self):
        if self.data_dir is None:
            raise ValueError("data_dir is required")
        self.data_dir = Path(self.data_dir)
        self.output_dir = Path(self.output_dir)
        for name in ("gtf", "genome_fasta", "motifs", "fragments"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, Path(value))

        if self.cluster_labels is None:
            self.cluster_labels = dict(PBMC_CLUSTER_LABELS)
        if self.palette is None:
            self.palette = dict(PBMC_PALETTE)
        if self.marker_genes is None:
            self.marker_genes = list(PBMC_MARKER_GENES)
        if self.comparisons is None:
            self.comparisons = list(PBMC_COMPARISONS)
        if self.coverage_regions is None:
            self.coverage_regions = list(PBMC_COVERAGE_REGIONS)

        self.cluster_labels = {str(k): v for k, v in self.cluster_labels.items()}
        for comparison in self.comparisons:
            if len(comparison) != 2 or comparison[0] == comparison[1]:
                raise ValueError(f"Comparisons must be (group, reference) pairs of distinct groups, got {comparison}")
        if self.figure_format not in ("png", "pdf", "svg"):
            raise ValueError(f"figure_format must be 'png', 'pdf' or 'svg', got {self.figure_format}")

    def figure_path(self, name: str) -> Path:
        """Path of a named figure inside ``output_dir/figures``."""
        return self.output_dir / "figures" / f"{name}.{self.figure_format}"

    def table_path(self, name: str) -> Path:
        """Path of a named CSV table inside ``output_dir/tables``."""
        return self.output_dir / "tables" / f"{name}.csv"
