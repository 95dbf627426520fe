"""
QC visualization functions.

Main Functions:
- qc_violin(): One violin per QC metric
- tss_profile(): Mean TSS enrichment profile by ``high_tss`` group
- fragment_histogram(): Fragment length distribution by ``nucleosome_group``
- qc_density(): Density-colored scatter of two metrics
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from anndata import AnnData
from scipy.stats import gaussian_kde

from .._core.utils.genomics import fetch_fragments, get_fragments_path, parse_region
from .._core.viz.results_viz import save_figure

DEFAULT_QC_METRICS = ("pct_reads_in_peaks", "peak_region_fragments", "tss_score", "blacklist_ratio", "nucleosome_signal")


def qc_violin(
    adata: AnnData,
    metrics: tuple[str, ...] | list[str] = DEFAULT_QC_METRICS,
    *,
    log_scale: tuple[str, ...] | list[str] = ("peak_region_fragments",),
    figsize: tuple[float, float] | None = None,
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Violin of each QC metric across cells.

    Metrics missing from ``adata.obs`` are left out; at least one must be present.
    """
    present = [m for m in metrics if m in adata.obs.columns]
    if not present:
        raise ValueError(f"None of {list(metrics)} in adata.obs. Run af.pp.calculate_qc_metrics() first.")

    figsize = figsize or (3 * len(present), 4)
    fig, axes = plt.subplots(1, len(present), figsize=figsize, squeeze=False)
    for ax, metric in zip(axes[0], present):
        values = adata.obs[metric].to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        sns.violinplot(y=values, ax=ax, color="#9ecae1", cut=0, inner="quartile", log_scale=metric in log_scale)
        ax.set_title(metric, fontsize=10)
        ax.set_ylabel("")
        sns.despine(ax=ax)
    fig.suptitle(f"QC metrics ({adata.n_obs} cells)", fontsize=12, fontweight="bold")
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def tss_profile(
    adata: AnnData,
    *,
    figsize: tuple[float, float] = (6, 4),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Mean normalized TSS pileup for high and low TSS score cells."""
    if "tss_pileup" not in adata.uns:
        raise ValueError("adata.uns['tss_pileup'] not found. Run af.pp.calculate_qc_metrics() with an annotation first.")
    profile = pd.DataFrame(adata.uns["tss_pileup"])

    fig, ax = plt.subplots(figsize=figsize)
    for group, color in (("High", "#de2d26"), ("Low", "#3182bd")):
        if group in profile.columns:
            ax.plot(profile["position"], profile[group], label=f"{group} TSS", color=color, linewidth=1.2)
    ax.axvline(0, color="grey", linestyle="--", linewidth=0.6)
    ax.set_xlabel("Distance to TSS (bp)")
    ax.set_ylabel("Mean normalized insertions")
    ax.set_title("TSS enrichment", fontsize=12, fontweight="bold")
    ax.legend(frameon=False)
    sns.despine(ax=ax)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def fragment_histogram(
    adata: AnnData,
    region: str = "chr1:1-2000000",
    *,
    groupby: str = "nucleosome_group",
    max_length: int = 1000,
    figsize: tuple[float, float] = (8, 4),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Fragment length histogram per group for fragments in ``region``."""
    fragments_path = get_fragments_path(adata)
    if fragments_path is None:
        raise ValueError("No fragments file registered. Run af.pp.read_10x_atac() with a fragments file first.")
    if groupby not in adata.obs.columns:
        raise ValueError(f"adata.obs['{groupby}'] not found. Run af.pp.calculate_qc_metrics() first.")

    chrom, start, end = parse_region(region)
    frags = fetch_fragments(fragments_path, chrom, start, end, barcodes=adata.obs_names)
    frags["length"] = frags["end"] - frags["start"]
    frags = frags[frags["length"] <= max_length]
    frags["group"] = adata.obs[groupby].astype(str).reindex(frags["barcode"]).to_numpy()

    groups = sorted(frags["group"].dropna().unique())
    fig, axes = plt.subplots(1, max(len(groups), 1), figsize=figsize, squeeze=False, sharey=True)
    if not groups:
        axes[0, 0].text(0.5, 0.5, "No fragments in region", ha="center", va="center", transform=axes[0, 0].transAxes)
    for ax, group in zip(axes[0], groups):
        lengths = frags.loc[frags["group"] == group, "length"]
        ax.hist(lengths, bins=np.arange(0, max_length + 10, 10), color="#636363")
        ax.set_title(group, fontsize=10)
        ax.set_xlabel("Fragment length (bp)")
        sns.despine(ax=ax)
    axes[0, 0].set_ylabel("Fragments")
    fig.suptitle(f"Fragment lengths in {region}", fontsize=12, fontweight="bold")
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def qc_density(
    adata: AnnData,
    x: str = "n_counts",
    y: str = "tss_score",
    *,
    log_x: bool = True,
    max_points: int = 20000,
    random_state: int = 0,
    figsize: tuple[float, float] = (5, 5),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Scatter of two QC metrics colored by point density."""
    for key in (x, y):
        if key not in adata.obs.columns:
            raise ValueError(f"adata.obs['{key}'] not found. Run af.pp.calculate_qc_metrics() first.")

    data = adata.obs[[x, y]].astype(float).replace([np.inf, -np.inf], np.nan).dropna()
    if log_x:
        data = data[data[x] > 0]
    if len(data) > max_points:
        data = data.sample(max_points, random_state=random_state)
    xs = np.log10(data[x].to_numpy()) if log_x else data[x].to_numpy()
    ys = data[y].to_numpy()

    fig, ax = plt.subplots(figsize=figsize)
    if len(data) > 2 and np.ptp(xs) > 0 and np.ptp(ys) > 0:
        density = gaussian_kde(np.vstack([xs, ys]))(np.vstack([xs, ys]))
        order = np.argsort(density)
        ax.scatter(xs[order], ys[order], c=density[order], s=4, cmap="viridis", linewidths=0)
    else:
        ax.scatter(xs, ys, s=4, color="#636363")
    ax.set_xlabel(f"log10({x})" if log_x else x)
    ax.set_ylabel(y)
    ax.set_title(f"{y} vs {x}", fontsize=12, fontweight="bold")
    sns.despine(ax=ax)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig
