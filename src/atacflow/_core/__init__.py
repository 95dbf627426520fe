# Core implementation modules
# These are the actual implementations that power the high-level API

from atacflow._core import config, constants, types, utils, viz

# Configuration
from atacflow._core.config import ClusteringConfig, MotifConfig, PipelineConfig, QCThresholds

# Validation utilities
from atacflow._core.types import (
    AnnDataKeys,
    ClosestFeatureResult,
    DifferentialResult,
    MotifComparisonResult,
    MotifEnrichmentResult,
    QCFilterSummary,
    validate_dataframe_schema,
    validate_results,
)
from atacflow._core.utils import apply_fdr_correction, compute_lsi, tfidf_normalize

__all__ = [
    "config",
    "constants",
    "utils",
    "viz",
    "types",
    # Configuration
    "QCThresholds",
    "ClusteringConfig",
    "MotifConfig",
    "PipelineConfig",
    # Commonly used functions
    "tfidf_normalize",
    "compute_lsi",
    "apply_fdr_correction",
    # Validation utilities
    "validate_results",
    "validate_dataframe_schema",
    # Key types
    "DifferentialResult",
    "MotifEnrichmentResult",
    "MotifComparisonResult",
    "ClosestFeatureResult",
    "QCFilterSummary",
    "AnnDataKeys",
]
