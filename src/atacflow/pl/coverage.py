"""
Coverage track visualization.
"""

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
from matplotlib.patches import Rectangle

from .._core.viz.results_viz import save_figure


def coverage(
    coverage_df: pd.DataFrame,
    annotation: pd.DataFrame | None = None,
    *,
    palette: dict | None = None,
    track_height: float = 0.6,
    width: float = 8.0,
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Stacked coverage tracks, one per group, with an optional gene track.

    Parameters
    ----------
    coverage_df : pd.DataFrame
        Output of ``af.tl.region_coverage``.
    annotation : pd.DataFrame | None, default: None
        Gene bedframe; genes overlapping the region are drawn below the tracks.
    palette : dict | None, default: None
        Group -> color.
    """
    if not {"group", "position", "coverage"} <= set(coverage_df.columns):
        raise ValueError("coverage_df must come from af.tl.region_coverage()")
    if coverage_df.empty:
        raise ValueError("coverage_df is empty")

    groups = (
        list(coverage_df["group"].cat.categories)
        if hasattr(coverage_df["group"], "cat")
        else list(pd.unique(coverage_df["group"]))
    )
    region = coverage_df.attrs.get("region")
    chrom = region.split(":")[0] if region else None
    start, end = coverage_df["position"].min(), coverage_df["position"].max() + 1

    genes = None
    if annotation is not None and chrom is not None:
        genes = annotation[(annotation["chrom"] == chrom) & (annotation["end"] > start) & (annotation["start"] < end)]

    n_tracks = len(groups) + (1 if genes is not None else 0)
    fig, axes = plt.subplots(
        n_tracks, 1, figsize=(width, track_height * n_tracks + 0.8), sharex=True, squeeze=False
    )
    ymax = coverage_df["coverage"].max()
    ymax = ymax if ymax > 0 else 1.0
    colors = palette or {}

    for ax, group in zip(axes[:, 0], groups):
        sub = coverage_df[coverage_df["group"] == group]
        ax.fill_between(sub["position"], sub["coverage"], color=colors.get(group, "#636363"), linewidth=0)
        ax.set_ylim(0, ymax)
        ax.set_yticks([])
        ax.set_ylabel(group, rotation=0, ha="right", va="center", fontsize=8)
        for spine in ("top", "right", "left"):
            ax.spines[spine].set_visible(False)

    if genes is not None:
        ax = axes[-1, 0]
        for i, gene in enumerate(genes.itertuples(index=False)):
            y = i % 2
            g_start, g_end = max(gene.start, start), min(gene.end, end)
            ax.add_patch(Rectangle((g_start, y - 0.15), g_end - g_start, 0.3, color="#08519c"))
            ax.text(g_start, y + 0.25, gene.gene_name, fontsize=7)
        ax.set_ylim(-0.5, 1.8)
        ax.set_yticks([])
        ax.set_ylabel("Genes", rotation=0, ha="right", va="center", fontsize=8)
        for spine in ("top", "right", "left"):
            ax.spines[spine].set_visible(False)

    axes[-1, 0].set_xlim(start, end)
    axes[-1, 0].set_xlabel(f"{chrom} position" if chrom else "position")
    fig.suptitle(region or "Coverage", fontsize=11, fontweight="bold")
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig
