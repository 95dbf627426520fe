# Static result figures (matplotlib/seaborn)
from .results_viz import (
    apply_log_transform_p,
    create_dotplot,
    create_enrichment_barplot,
    create_volcano,
    save_figure,
)

__all__ = [
    "create_volcano",
    "create_enrichment_barplot",
    "create_dotplot",
    "apply_log_transform_p",
    "save_figure",
]
