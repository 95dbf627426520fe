"""
Results Visualization Module
============================

PURPOSE: Static figures for statistical results tables: differential
accessibility volcanoes, two-set motif comparison volcanoes, motif
enrichment bar charts and marker dotplots.

=== MODULE API INVENTORY ===

MAIN FUNCTIONS:
 create_volcano(results_df, x_col, p_col, label_col, significance_col='significant', ...) -> matplotlib.figure.Figure
    Purpose: Generic volcano with -log10(p) capping, two-colour significance and top-N labels

 create_enrichment_barplot(results_df, label_col='motif_name', value_col='fold_enrichment', p_col='fdr_pvalue', top_n=20, ...) -> matplotlib.figure.Figure
    Purpose: Horizontal bars of the top enriched motifs coloured by -log10(p)

 create_dotplot(table, x_col, y_col, size_col, color_col, ...) -> matplotlib.figure.Figure
    Purpose: Group x feature dotplot (dot size = fraction, colour = mean)

UTILITY FUNCTIONS:
 apply_log_transform_p(results_df, p_col, max_log_p) -> pd.DataFrame
 save_figure(fig, save_path) -> None
"""

import warnings
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

plt.style.use("default")


def save_figure(fig, save_path: str | Path | None) -> None:
    """Save at 300 dpi with a white background, creating parent directories."""
    if not save_path:
        return
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fig.savefig(save_path, dpi=300, bbox_inches="tight", facecolor="white")
        print(f"[OK] Figure saved to: {save_path}")
    except OSError as e:
        warnings.warn(f"Failed to save figure to {save_path}: {e}")


def apply_log_transform_p(results_df: pd.DataFrame, p_col: str, max_log_p: float = 300.0) -> pd.DataFrame:
    """Add ``log_{p_col}`` = -log10(p), capped at ``max_log_p``."""
    results_df = results_df.copy()
    pvals = results_df[p_col].astype(float).clip(lower=10 ** (-max_log_p))
    results_df[f"log_{p_col}"] = np.minimum(-np.log10(pvals), max_log_p)
    return results_df


def create_volcano(
    results_df: pd.DataFrame,
    x_col: str = "log_fold_change",
    p_col: str = "pvalue",
    label_col: str = "peak",
    significance_col: str = "significant",
    top_n_labels: int = 10,
    max_log_p: float = 300.0,
    clip_x: float | None = None,
    colors: tuple[str, str, str] = ("#b2182b", "#2166ac", "#bdbdbd"),
    title: str = "Volcano plot",
    xlabel: str | None = None,
    figsize: tuple[float, float] = (7, 6),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Volcano plot of a results table.

    Args:
        results_df: Table with effect sizes and p-values
        x_col: Effect size column (x-axis)
        p_col: P-value column, plotted as -log10
        label_col: Column used to annotate the top points
        significance_col: Boolean column marking significant rows
        top_n_labels: Number of most significant points to annotate
        max_log_p: Cap for -log10(p)
        clip_x: Clip |x| to this value; infinite ratios are always clipped
            to the largest finite magnitude when this is None
        colors: (up, down, not significant)
        title: Plot title
        xlabel: X-axis label, defaults to x_col
        figsize: Figure size
        save_path: Optional path to save the figure

    Returns
    -------
        matplotlib Figure object
    """
    for col in (x_col, p_col, label_col, significance_col):
        if col not in results_df.columns:
            raise ValueError(f"Column '{col}' not found in results. Available: {list(results_df.columns)}")
    if results_df.empty:
        raise ValueError("Cannot draw a volcano plot from an empty results table")

    plot_data = apply_log_transform_p(results_df, p_col, max_log_p)
    x = plot_data[x_col].astype(float).to_numpy()
    finite = np.isfinite(x)
    limit = clip_x if clip_x is not None else (np.abs(x[finite]).max() if finite.any() else 1.0)
    limit = limit if limit > 0 else 1.0
    plot_data["x_plot"] = np.clip(np.nan_to_num(x, nan=0.0, posinf=limit, neginf=-limit), -limit, limit)

    sig = plot_data[significance_col].astype(bool).to_numpy()
    up = sig & (plot_data["x_plot"].to_numpy() > 0)
    down = sig & (plot_data["x_plot"].to_numpy() < 0)
    rest = ~(up | down)

    fig, ax = plt.subplots(figsize=figsize)
    y_col = f"log_{p_col}"
    ax.scatter(plot_data.loc[rest, "x_plot"], plot_data.loc[rest, y_col], s=8, c=colors[2], alpha=0.6, linewidths=0)
    ax.scatter(plot_data.loc[up, "x_plot"], plot_data.loc[up, y_col], s=12, c=colors[0], alpha=0.8, linewidths=0)
    ax.scatter(plot_data.loc[down, "x_plot"], plot_data.loc[down, y_col], s=12, c=colors[1], alpha=0.8, linewidths=0)

    top = plot_data.sort_values(y_col, ascending=False).head(top_n_labels)
    for _, row in top.iterrows():
        ax.annotate(
            str(row[label_col]),
            (row["x_plot"], row[y_col]),
            xytext=(3, 3),
            textcoords="offset points",
            fontsize=8,
        )

    ax.axvline(0, color="black", linewidth=0.6, linestyle="--")
    ax.set_xlabel(xlabel or x_col.replace("_", " "), fontsize=11)
    ax.set_ylabel(f"-log10({p_col})", fontsize=11)
    ax.set_title(title, fontsize=13, fontweight="bold")
    sns.despine(ax=ax)
    ax.text(
        0.02,
        0.98,
        f"up: {int(up.sum())}  down: {int(down.sum())}",
        transform=ax.transAxes,
        fontsize=9,
        va="top",
    )
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def create_enrichment_barplot(
    results_df: pd.DataFrame,
    label_col: str = "motif_name",
    value_col: str = "fold_enrichment",
    p_col: str = "fdr_pvalue",
    top_n: int = 20,
    cmap: str = "viridis",
    title: str = "Motif enrichment",
    figsize: tuple[float, float] = (6, 7),
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Horizontal bar chart of the most significant rows."""
    for col in (label_col, value_col, p_col):
        if col not in results_df.columns:
            raise ValueError(f"Column '{col}' not found in results. Available: {list(results_df.columns)}")
    if results_df.empty:
        raise ValueError("Cannot draw an enrichment plot from an empty results table")

    plot_data = apply_log_transform_p(results_df.sort_values(p_col).head(top_n), p_col)
    plot_data = plot_data.iloc[::-1]

    fig, ax = plt.subplots(figsize=figsize)
    color_values = plot_data[f"log_{p_col}"].to_numpy()
    norm = plt.Normalize(vmin=color_values.min(), vmax=max(color_values.max(), color_values.min() + 1e-9))
    colors = plt.get_cmap(cmap)(norm(color_values))
    values = plot_data[value_col].astype(float).to_numpy()
    finite = np.isfinite(values)
    # motifs absent from the background are drawn at the largest finite value
    cap = values[finite].max() if finite.any() else 1.0
    values = np.nan_to_num(values, nan=0.0, posinf=cap, neginf=0.0)
    ax.barh(np.arange(len(plot_data)), values, color=colors)
    ax.set_yticks(np.arange(len(plot_data)))
    ax.set_yticklabels(plot_data[label_col], fontsize=8)
    ax.set_xlabel(value_col.replace("_", " "))
    ax.set_title(title, fontsize=13, fontweight="bold")
    sm = plt.cm.ScalarMappable(cmap=cmap, norm=norm)
    fig.colorbar(sm, ax=ax, label=f"-log10({p_col})")
    sns.despine(ax=ax)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig


def create_dotplot(
    table: pd.DataFrame,
    x_col: str = "gene",
    y_col: str = "group",
    size_col: str = "fraction",
    color_col: str = "mean",
    x_order: list | None = None,
    y_order: list | None = None,
    cmap: str = "Reds",
    max_dot_size: float = 200.0,
    title: str = "Marker activity",
    figsize: tuple[float, float] | None = None,
    save_path: str | Path | None = None,
) -> plt.Figure:
    """Dotplot of a long table: one dot per (x, y) pair."""
    for col in (x_col, y_col, size_col, color_col):
        if col not in table.columns:
            raise ValueError(f"Column '{col}' not found in table. Available: {list(table.columns)}")
    if table.empty:
        raise ValueError("Cannot draw a dotplot from an empty table")

    x_order = x_order or list(pd.unique(table[x_col]))
    y_order = y_order or list(pd.unique(table[y_col]))
    x_pos = {v: i for i, v in enumerate(x_order)}
    y_pos = {v: i for i, v in enumerate(y_order)}
    plot_data = table[table[x_col].isin(x_pos) & table[y_col].isin(y_pos)]

    if figsize is None:
        figsize = (max(4, 0.45 * len(x_order) + 3), max(3, 0.35 * len(y_order) + 1.5))
    fig, ax = plt.subplots(figsize=figsize)
    scatter = ax.scatter(
        plot_data[x_col].map(x_pos),
        plot_data[y_col].map(y_pos),
        s=plot_data[size_col].clip(0, 1) * max_dot_size,
        c=plot_data[color_col],
        cmap=cmap,
        edgecolors="grey",
        linewidths=0.3,
    )
    ax.set_xticks(range(len(x_order)))
    ax.set_xticklabels(x_order, rotation=90, fontsize=9)
    ax.set_yticks(range(len(y_order)))
    ax.set_yticklabels(y_order, fontsize=9)
    ax.set_xlim(-0.5, len(x_order) - 0.5)
    ax.set_ylim(-0.5, len(y_order) - 0.5)
    ax.set_title(title, fontsize=12, fontweight="bold")
    fig.colorbar(scatter, ax=ax, label=color_col, shrink=0.6)

    for frac in (0.25, 0.5, 1.0):
        ax.scatter([], [], s=frac * max_dot_size, c="grey", label=f"{int(frac * 100)}%")
    ax.legend(title=size_col, loc="upper left", bbox_to_anchor=(1.25, 1), frameon=False, labelspacing=1.2)
    plt.tight_layout()
    save_figure(fig, save_path)
    return fig
