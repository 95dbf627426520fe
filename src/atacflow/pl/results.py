"""
Results visualization functions.

Static figures for the tables produced by ``af.tl``.

Main Functions:
- da_volcano(): Volcano of differential accessibility results
- violin_peak(): Accessibility of a single peak per group
- motif_volcano(): Two-set motif comparison from ``make_volcano_2_sets``
- motif_enrichment(): Top enriched motifs from ``find_motifs``
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scipy.sparse as sp
import seaborn as sns
from anndata import AnnData

from .._core.viz.results_viz import create_enrichment_barplot as _create_enrichment_barplot
from .._core.viz.results_viz import create_volcano as _create_volcano
from .._core.viz.results_viz import save_figure


def da_volcano(
    results_df: pd.DataFrame,
    *,
    p_col: str = "pvalue",
    top_n_labels: int = 10,
    title: str | None = None,
    figsize: tuple[float, float] = (7, 6),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Volcano plot of ``af.tl.differential_accessibility`` results.

    Parameters
    ----------
    results_df : pd.DataFrame
        Differential accessibility table.
    p_col : str, default: "pvalue"
        P-value column on the y-axis.
    top_n_labels : int, default: 10
        Number of most significant peaks labeled.
    title : str | None, default: None
        Defaults to ``"{group} vs {reference}"`` from the table attrs.
    figsize : tuple[float, float], default: (7, 6)
        Figure size.
    save_path : str | Path | None, default: None
        Path to save the figure.

    Returns
    -------
    matplotlib.figure.Figure
    """
    if title is None:
        attrs = results_df.attrs
        title = f"{attrs['group']} vs {attrs['reference']}" if "group" in attrs else "Differential accessibility"
    return _create_volcano(
        results_df,
        x_col="log_fold_change",
        p_col=p_col,
        label_col="peak",
        significance_col="significant",
        top_n_labels=top_n_labels,
        title=title,
        xlabel="log2 fold change",
        figsize=figsize,
        save_path=save_path,
    )


def violin_peak(
    adata: AnnData,
    peak: str,
    *,
    groupby: str = "cell_type",
    layer: str | None = "tfidf",
    palette: dict | None = None,
    figsize: tuple[float, float] = (8, 4),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Violin plot of one peak's accessibility per group."""
    if peak not in adata.var_names:
        raise ValueError(f"Peak '{peak}' not in adata.var_names")
    if groupby not in adata.obs.columns:
        raise ValueError(f"adata.obs['{groupby}'] not found. Run af.tl.annotate_clusters() first.")
    if layer is not None and layer not in adata.layers:
        raise ValueError(f"adata.layers['{layer}'] not found. Run af.pp.prepare_atacseq() first.")

    column = adata[:, peak].layers[layer] if layer is not None else adata[:, peak].X
    values = column.toarray().ravel() if sp.issparse(column) else np.asarray(column).ravel()
    data = pd.DataFrame({groupby: adata.obs[groupby].to_numpy(), "accessibility": values})
    order = list(adata.obs[groupby].cat.categories) if hasattr(adata.obs[groupby], "cat") else None

    fig, ax = plt.subplots(figsize=figsize)
    sns.violinplot(
        data=data,
        x=groupby,
        y="accessibility",
        hue=groupby,
        order=order,
        hue_order=order,
        palette=palette,
        cut=0,
        inner=None,
        legend=False,
        ax=ax,
    )
    sns.stripplot(data=data, x=groupby, y="accessibility", order=order, color="black", size=1, alpha=0.3, ax=ax)
    ax.set_title(peak, fontsize=12, fontweight="bold")
    ax.set_xlabel("")
    ax.set_ylabel("normalized accessibility" if layer else "counts")
    ax.tick_params(axis="x", rotation=45)
    sns.despine(ax=ax)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def motif_volcano(
    comparison_df: pd.DataFrame,
    *,
    top_n: int = 10,
    clip_ratio: float | None = None,
    title: str | None = None,
    figsize: tuple[float, float] = (7, 6),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Volcano of a two-set motif comparison from ``af.tl.make_volcano_2_sets``.

    Infinite log2 ratios (motif absent from one set) are drawn at the edge
    of the finite range, or at ``clip_ratio`` when given.
    """
    label_a = comparison_df.attrs.get("label_a", "a")
    label_b = comparison_df.attrs.get("label_b", "b")
    return _create_volcano(
        comparison_df,
        x_col="log2_ratio",
        p_col="pvalue",
        label_col="motif_name",
        significance_col="significant",
        top_n_labels=top_n,
        clip_x=clip_ratio,
        title=title or f"Motifs: {label_a} vs {label_b}",
        xlabel=f"log2({label_a} % / {label_b} %)",
        figsize=figsize,
        save_path=save_path,
    )


def motif_enrichment(
    results_df: pd.DataFrame,
    *,
    top_n: int = 20,
    title: str = "Motif enrichment",
    figsize: tuple[float, float] = (6, 7),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Bar chart of the top enriched motifs from ``af.tl.find_motifs``."""
    return _create_enrichment_barplot(
        results_df,
        label_col="motif_name",
        value_col="fold_enrichment",
        p_col="fdr_pvalue",
        top_n=top_n,
        title=title,
        figsize=figsize,
        save_path=save_path,
    )
