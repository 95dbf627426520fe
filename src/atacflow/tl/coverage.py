"""
Fragment coverage of a genomic region per group of cells.
"""

import numpy as np
import pandas as pd
from anndata import AnnData

from .._core.utils.genomics import fetch_fragments, get_fragments_path, parse_region


def region_coverage(
    adata: AnnData,
    region: str,
    *,
    groupby: str = "cell_type",
    window: int = 100,
    extend: int = 0,
    depth_key: str = "n_counts",
) -> pd.DataFrame:
    """Normalized fragment coverage per base and group.

    Coverage of each group is divided by ``n_cells * mean(depth)`` of the
    group, scaled by 1e6 and smoothed with a centered rolling mean of
    ``window`` bases.

    Parameters
    ----------
    adata : AnnData
        Object with a fragments file registered and ``obs[groupby]``.
    region : str
        ``chrom:start-end`` (commas allowed).
    groupby : str, default: "cell_type"
        Grouping column.
    window : int, default: 100
        Smoothing window in bases.
    extend : int, default: 0
        Bases added on both sides of the region.
    depth_key : str, default: "n_counts"
        Per-cell depth column used for normalization.

    Returns
    -------
    pd.DataFrame
        Long table ``group, position, coverage`` with ``attrs['region']``.
    """
    fragments_path = get_fragments_path(adata)
    if fragments_path is None:
        raise ValueError("No fragments file registered. Run af.pp.read_10x_atac() with a fragments file first.")
    for key in (groupby, depth_key):
        if key not in adata.obs.columns:
            raise ValueError(f"adata.obs['{key}'] not found")
    if window < 1:
        raise ValueError("window must be at least 1")

    chrom, start, end = parse_region(region)
    start, end = max(0, start - extend), end + extend
    length = end - start

    groups = adata.obs[groupby].astype(str)
    order = list(adata.obs[groupby].cat.categories) if hasattr(adata.obs[groupby], "cat") else list(pd.unique(groups))
    order = [str(g) for g in order if (groups == str(g)).any()]

    frags = fetch_fragments(fragments_path, chrom, start, end, barcodes=adata.obs_names)
    frags["group"] = groups.reindex(frags["barcode"]).to_numpy()

    tables = []
    positions = np.arange(start, end)
    for group in order:
        sub = frags[frags["group"] == group]
        delta = np.zeros(length + 1)
        lo = np.clip(sub["start"].to_numpy() - start, 0, length)
        hi = np.clip(sub["end"].to_numpy() - start, 0, length)
        np.add.at(delta, lo, 1)
        np.add.at(delta, hi, -1)
        depth = np.cumsum(delta)[:length]

        in_group = (groups == group).to_numpy()
        scale = in_group.sum() * adata.obs.loc[in_group, depth_key].mean()
        normalized = depth / scale * 1e6 if scale > 0 else depth
        smoothed = pd.Series(normalized).rolling(window, center=True, min_periods=1).mean().to_numpy()
        tables.append(pd.DataFrame({"group": group, "position": positions, "coverage": smoothed}))

    coverage = pd.concat(tables, ignore_index=True)
    coverage["group"] = pd.Categorical(coverage["group"], categories=order)
    coverage.attrs["region"] = f"{chrom}:{start}-{end}"
    return coverage
