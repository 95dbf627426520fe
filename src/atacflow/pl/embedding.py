"""
Embedding and marker visualization functions.

Main Functions:
- umap(): UMAP colored by an ``obs`` column or feature (scanpy on a matplotlib axis)
- depth_correlation(): LSI component vs sequencing depth correlation
- marker_dotplot(): Marker gene activity per group
- gene_activity(): Grid of UMAPs colored by gene activity
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import scanpy as sc
import seaborn as sns
from anndata import AnnData

from .._core.viz.results_viz import create_dotplot as _create_dotplot
from .._core.viz.results_viz import save_figure
from ..tl.annotation import marker_table
from ..tl.clustering import depth_correlation as _depth_correlation


def umap(
    adata: AnnData,
    color: str = "cluster",
    *,
    palette: dict | None = None,
    legend_loc: str = "right margin",
    title: str | None = None,
    point_size: float | None = None,
    figsize: tuple[float, float] = (6, 5),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """UMAP scatter colored by ``color``.

    Parameters
    ----------
    adata : AnnData
        Object with ``obsm['X_umap']``.
    color : str, default: "cluster"
        ``obs`` column or ``var_names`` entry.
    palette : dict | None, default: None
        Category -> color for categorical ``color``.
    legend_loc : str, default: "right margin"
        Passed to ``scanpy.pl.umap`` (e.g. ``"on data"``).
    """
    if "X_umap" not in adata.obsm:
        raise ValueError("adata.obsm['X_umap'] not found. Run af.tl.embed_and_cluster() first.")
    if color not in adata.obs.columns and color not in adata.var_names:
        raise ValueError(f"'{color}' is neither an adata.obs column nor a feature")

    fig, ax = plt.subplots(figsize=figsize)
    sc.pl.umap(
        adata,
        color=color,
        palette=palette,
        legend_loc=legend_loc,
        title=title or color,
        size=point_size,
        ax=ax,
        show=False,
        frameon=False,
    )
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def depth_correlation(
    adata: AnnData,
    n_components: int | None = None,
    *,
    depth_key: str = "n_counts",
    figsize: tuple[float, float] = (7, 3.5),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Correlation of each LSI component with log10 sequencing depth."""
    table = _depth_correlation(adata, n_components=n_components, depth_key=depth_key)

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(table["component"], table["correlation"], color="#3182bd", s=25)
    ax.axhline(0, color="grey", linewidth=0.6)
    ax.set_ylim(-1.05, 1.05)
    ax.set_xlabel("LSI component")
    ax.set_ylabel(f"Correlation with log10({depth_key})")
    ax.set_title("Depth correlation", fontsize=12, fontweight="bold")
    sns.despine(ax=ax)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def marker_dotplot(
    gene_adata: AnnData,
    markers: list[str],
    *,
    groupby: str = "cell_type",
    layer: str | None = None,
    title: str = "Marker gene activity",
    figsize: tuple[float, float] | None = None,
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Dotplot of marker gene activity (size = fraction active, color = mean)."""
    table = marker_table(gene_adata, groupby, markers, layer=layer)
    return _create_dotplot(
        table,
        x_col="gene",
        y_col="group",
        size_col="fraction",
        color_col="mean",
        x_order=[g for g in markers if g in set(table["gene"])],
        title=title,
        figsize=figsize,
        save_path=save_path,
    )


def gene_activity(
    gene_adata: AnnData,
    genes: list[str],
    *,
    ncols: int = 4,
    cmap: str = "Reds",
    panel_size: float = 3.0,
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Grid of UMAPs colored by gene activity, one panel per gene."""
    if "X_umap" not in gene_adata.obsm:
        raise ValueError("gene_adata.obsm['X_umap'] not found. Run af.tl.embed_and_cluster() before af.tl.gene_activity().")
    present = [g for g in genes if g in gene_adata.var_names]
    if not present:
        raise ValueError(f"None of {genes} in gene_adata.var_names")

    ncols = min(ncols, len(present))
    nrows = int(np.ceil(len(present) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(panel_size * ncols, panel_size * nrows), squeeze=False)
    for ax, gene in zip(axes.flat, present):
        sc.pl.umap(gene_adata, color=gene, color_map=cmap, ax=ax, show=False, frameon=False, title=gene)
    for ax in axes.flat[len(present) :]:
        ax.set_visible(False)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig
