"""
Gene activity and cluster annotation.

Main Functions:
- gene_activity(): Fragment counts over gene body + promoter (muon), log-normalized
- annotate_clusters(): Relabel cluster ids through a lookup table
- marker_table(): Mean activity and fraction of active cells per group for marker genes
"""

import warnings

import numpy as np
import pandas as pd
import pysam
import scanpy as sc
import scipy.sparse as sp
from anndata import AnnData
from muon import atac as ac

from .._core.utils.genomics import get_fragments_path, to_muon_features


def gene_activity(
    adata: AnnData,
    annotation: pd.DataFrame,
    *,
    extend_upstream: int = 2000,
    extend_downstream: int = 0,
    normalize: bool = True,
    verbose: bool = True,
) -> AnnData:
    """Cells x genes activity matrix from fragments.

    Parameters
    ----------
    adata : AnnData
        Object with a fragments file registered in ``uns['files']``.
    annotation : pd.DataFrame
        Gene bedframe from ``af.pp.load_gene_annotation``.
    extend_upstream : int, default: 2000
        Promoter length added upstream of each gene (below ``start`` on the
        plus strand, above ``end`` on the minus strand).
    extend_downstream : int, default: 0
        Extension downstream of each gene.
    normalize : bool, default: True
        ``normalize_total`` to the median count per cell, then ``log1p``.
        Raw counts are kept in ``layers['counts']``.
    verbose : bool, default: True
        Whether to print progress

    Returns
    -------
    AnnData
        Gene activity with ``obs`` copied from ``adata``.

    Raises
    ------
    ValueError
        If no fragments file is registered.
    """
    fragments_path = get_fragments_path(adata)
    if fragments_path is None:
        raise ValueError("No fragments file registered. Run af.pp.read_10x_atac() with a fragments file first.")

    features = to_muon_features(annotation)
    with pysam.TabixFile(str(fragments_path)) as tbx:
        contigs = set(tbx.contigs)
    features = features[features["Chromosome"].isin(contigs)]
    if features.empty:
        raise ValueError(f"No annotated gene lies on a chromosome present in {fragments_path}")

    if verbose:
        print(f"[GENE] Counting fragments over {len(features)} genes (+{extend_upstream} bp upstream)")
    gene_adata = ac.tl.count_fragments_features(
        adata,
        features,
        extend_upstream=extend_upstream,
        extend_downstream=extend_downstream,
        stranded="Strand" in features.columns,
    )
    gene_adata.obs = adata.obs.copy()
    if "X_umap" in adata.obsm:
        gene_adata.obsm["X_umap"] = adata.obsm["X_umap"].copy()
    gene_adata.X = sp.csr_matrix(gene_adata.X, dtype=np.float32)
    gene_adata.layers["counts"] = gene_adata.X.copy()

    if normalize:
        totals = np.asarray(gene_adata.X.sum(axis=1)).ravel()
        target_sum = float(np.median(totals[totals > 0])) if (totals > 0).any() else None
        sc.pp.normalize_total(gene_adata, target_sum=target_sum)
        sc.pp.log1p(gene_adata)

    if verbose:
        print(f"[OK] Gene activity: {gene_adata.n_obs} cells x {gene_adata.n_vars} genes")
    return gene_adata


def annotate_clusters(
    adata: AnnData,
    label_map: dict,
    *,
    cluster_key: str = "cluster",
    key_added: str = "cell_type",
    unknown_label: str = "Unknown",
    strict: bool = False,
    palette: dict | None = None,
) -> AnnData:
    """Relabel cluster ids into cell types through a lookup table.

    Several clusters may share one label. The result is categorical with
    categories in label-map order (``unknown_label`` last when used).

    Parameters
    ----------
    adata : AnnData
        Object with ``obs[cluster_key]``.
    label_map : dict
        Cluster id -> cell type. Keys are compared as strings.
    cluster_key : str, default: "cluster"
        Column with cluster ids.
    key_added : str, default: "cell_type"
        Column receiving the labels.
    unknown_label : str, default: "Unknown"
        Label for clusters absent from ``label_map``.
    strict : bool, default: False
        Raise instead of labeling unmapped clusters as unknown.
    palette : dict | None, default: None
        Cell type -> color, written to ``uns[f'{key_added}_colors']``.

    Raises
    ------
    ValueError
        If ``cluster_key`` is missing, or clusters are unmapped and ``strict``.
    """
    if cluster_key not in adata.obs.columns:
        raise ValueError(f"adata.obs['{cluster_key}'] not found. Run af.tl.embed_and_cluster() first.")

    label_map = {str(k): v for k, v in label_map.items()}
    clusters = adata.obs[cluster_key].astype(str)
    unmapped = sorted(set(clusters) - set(label_map), key=lambda c: (len(c), c))
    if unmapped:
        if strict:
            raise ValueError(f"Clusters without a label: {unmapped}")
        warnings.warn(
            f"{len(unmapped)} clusters have no label and are set to '{unknown_label}': {unmapped}", UserWarning
        )

    labels = clusters.map(label_map).fillna(unknown_label)
    categories = list(dict.fromkeys(v for v in label_map.values() if v in set(labels)))
    if unmapped and unknown_label not in categories:
        categories.append(unknown_label)
    adata.obs[key_added] = pd.Categorical(labels, categories=categories)

    if palette is not None:
        missing = [c for c in categories if c not in palette]
        if missing:
            warnings.warn(f"No palette color for {missing}; using grey", UserWarning)
        adata.uns[f"{key_added}_colors"] = np.array([palette.get(c, "#bdbdbd") for c in categories])
    return adata


def marker_table(gene_adata: AnnData, groupby: str, markers: list[str], *, layer: str | None = None) -> pd.DataFrame:
    """Long table of marker activity per group.

    Returns
    -------
    pd.DataFrame
        Columns ``group``, ``gene``, ``mean`` (mean activity) and ``fraction``
        (fraction of cells with nonzero activity), in marker order.
    """
    if groupby not in gene_adata.obs.columns:
        raise ValueError(f"gene_adata.obs['{groupby}'] not found. Run af.tl.annotate_clusters() first.")

    present = [g for g in markers if g in gene_adata.var_names]
    dropped = [g for g in markers if g not in gene_adata.var_names]
    if dropped:
        warnings.warn(f"Marker genes not in gene activity matrix: {dropped}", UserWarning)
    if not present:
        raise ValueError("None of the marker genes are present")

    X = gene_adata[:, present].layers[layer] if layer else gene_adata[:, present].X
    X = X.toarray() if sp.issparse(X) else np.asarray(X)
    groups = gene_adata.obs[groupby]
    order = list(groups.cat.categories) if hasattr(groups, "cat") else list(pd.unique(groups))

    rows = []
    for group in order:
        mask = (groups == group).to_numpy()
        if not mask.any():
            continue
        means = X[mask].mean(axis=0)
        fractions = (X[mask] > 0).mean(axis=0)
        for gene, mean, fraction in zip(present, means, fractions):
            rows.append({"group": str(group), "gene": gene, "mean": float(mean), "fraction": float(fraction)})
    return pd.DataFrame(rows, columns=["group", "gene", "mean", "fraction"])
