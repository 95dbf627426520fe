"""atacflow: one-shot single-cell ATAC-seq analysis.

This package runs a complete scATAC-seq analysis on cellranger-atac output,
following scverse ecosystem conventions.

The package can be imported as `import atacflow as af` and provides:
- High-level API: af.pp, af.tl, af.pl (preprocessing, tools, plotting)
- Example data: af.datasets
- Core implementations: af._core (config, types, utils, viz)
- The end-to-end runner: af.run_pipeline / `python -m atacflow`
"""

# High-level API modules
# Core implementation modules
from . import _core, datasets, pl, pp, tl

# Expose commonly used core items for convenience
from ._core.config import ClusteringConfig, MotifConfig, PipelineConfig, QCThresholds
from ._core.types import AnnDataKeys, validate_results
from .pipeline import PipelineResults, run_pipeline

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "pp",
    "tl",
    "pl",
    "datasets",
    # Core modules
    "_core",
    # Configuration
    "QCThresholds",
    "ClusteringConfig",
    "MotifConfig",
    "PipelineConfig",
    # Pipeline
    "run_pipeline",
    "PipelineResults",
    # Validation
    "AnnDataKeys",
    "validate_results",
]
