"""Tests for embedding, clustering and cluster annotation."""

import numpy as np
import pandas as pd
import pytest
from sklearn.metrics import adjusted_rand_score

import atacflow as af
from atacflow.tl.clustering import _order_by_size


def test_order_by_size():
    labels = pd.Series(["5", "5", "2", "7", "7", "7"])
    ordered = _order_by_size(labels)
    assert list(ordered) == ["1", "1", "2", "0", "0", "0"]
    assert list(ordered.categories) == ["0", "1", "2"]


def test_embed_and_cluster(processed_adata):
    """UMAP coordinates and size-ordered clusters recovering the groups."""
    adata = processed_adata
    assert adata.obsm["X_umap"].shape == (adata.n_obs, 2)
    assert "connectivities" in adata.obsp

    sizes = adata.obs["cluster"].value_counts(sort=False).to_numpy()
    assert list(adata.obs["cluster"].cat.categories) == [str(i) for i in range(len(sizes))]
    assert np.all(np.diff(sizes) <= 0)
    assert adjusted_rand_score(adata.obs["group"], adata.obs["cluster"]) > 0.5


def test_embed_and_cluster_louvain(qc_adata):
    af.pp.prepare_atacseq(qc_adata, n_components=10, verbose=False)
    af.tl.embed_and_cluster(qc_adata, n_neighbors=10, algorithm="louvain", key_added="louvain", verbose=False)
    assert "louvain" in qc_adata.obs.columns


def test_embed_and_cluster_errors(atac_adata):
    with pytest.raises(ValueError, match="prepare_atacseq"):
        af.tl.embed_and_cluster(atac_adata, verbose=False)
    atac_adata.obsm["X_lsi"] = np.zeros((atac_adata.n_obs, 5))
    with pytest.raises(ValueError, match="Unknown clustering algorithm"):
        af.tl.embed_and_cluster(atac_adata, algorithm="kmeans", verbose=False)


def test_depth_correlation_table(processed_adata):
    """Stored correlations include the dropped first component."""
    table = af.tl.depth_correlation(processed_adata)
    assert list(table.columns) == ["component", "correlation"]
    assert table["component"].tolist() == list(range(1, 12))
    assert table["correlation"].abs().max() <= 1 + 1e-9

    head = af.tl.depth_correlation(processed_adata, n_components=3)
    assert len(head) == 3


def test_depth_correlation_other_key(processed_adata):
    """A different depth column correlates the kept components, numbered from 2."""
    processed_adata.obs["depth"] = processed_adata.obs["passed_filters"]
    table = af.tl.depth_correlation(processed_adata, depth_key="depth")
    assert table["component"].iloc[0] == 2
    assert len(table) == 10


def test_depth_correlation_requires_lsi(atac_adata):
    with pytest.raises(ValueError, match="af.pp.lsi"):
        af.tl.depth_correlation(atac_adata)


class TestAnnotateClusters:
    def test_shared_labels(self, processed_adata):
        """Several clusters can map to one label; order follows the table."""
        n_clusters = len(processed_adata.obs["cluster"].cat.categories)
        label_map = {str(i): ("Lymphoid" if i % 2 else "Myeloid") for i in range(n_clusters)}

        af.tl.annotate_clusters(processed_adata, label_map, key_added="lineage")

        lineage = processed_adata.obs["lineage"]
        assert set(lineage.cat.categories) <= {"Myeloid", "Lymphoid"}
        assert lineage.cat.categories[0] == "Myeloid"
        expected = processed_adata.obs["cluster"].astype(str).map(label_map)
        assert (lineage.astype(str) == expected).all()

    def test_unknown(self, processed_adata):
        with pytest.warns(UserWarning, match="no label"):
            af.tl.annotate_clusters(processed_adata, {"0": "Largest"}, key_added="label")
        labels = processed_adata.obs["label"]
        assert labels.cat.categories[-1] == "Unknown"
        assert (labels[processed_adata.obs["cluster"] == "0"] == "Largest").all()

    def test_unknown_label_in_table(self, processed_adata):
        """A table value equal to the unknown label gives a single category."""
        with pytest.warns(UserWarning, match="no label"):
            af.tl.annotate_clusters(processed_adata, {"0": "Unknown"}, key_added="label")
        labels = processed_adata.obs["label"]
        assert list(labels.cat.categories) == ["Unknown"]
        assert (labels == "Unknown").all()

    def test_strict(self, processed_adata):
        with pytest.raises(ValueError, match="without a label"):
            af.tl.annotate_clusters(processed_adata, {"0": "Largest"}, strict=True)

    def test_palette(self, processed_adata):
        n_clusters = len(processed_adata.obs["cluster"].cat.categories)
        label_map = {str(i): f"type{i}" for i in range(n_clusters)}
        with pytest.warns(UserWarning, match="No palette color"):
            af.tl.annotate_clusters(processed_adata, label_map, key_added="label", palette={"type0": "#ff0000"})
        colors = processed_adata.uns["label_colors"]
        assert colors[0] == "#ff0000"
        assert len(colors) == n_clusters

    def test_missing_cluster_key(self, atac_adata):
        with pytest.raises(ValueError, match="embed_and_cluster"):
            af.tl.annotate_clusters(atac_adata, {"0": "B"})


def test_marker_table(gene_adata):
    markers = list(gene_adata.var_names[:3]) + ["NOT_A_GENE"]
    with pytest.warns(UserWarning, match="NOT_A_GENE"):
        table = af.tl.marker_table(gene_adata, "cell_type", markers)

    assert list(table.columns) == ["group", "gene", "mean", "fraction"]
    assert len(table) == 3 * 3
    assert table["group"].iloc[0] == "B"
    assert table["fraction"].between(0, 1).all()

    with pytest.raises(ValueError, match="None of the marker genes"):
        af.tl.marker_table(gene_adata, "cell_type", ["NOT_A_GENE"])


@pytest.mark.slow
def test_gene_activity(synthetic_outs):
    """Fragments over gene bodies plus promoters, log-normalized."""
    adata = af.pp.read_10x_atac(synthetic_outs["matrix"].parent, verbose=False)
    genes = af.pp.load_gene_annotation(synthetic_outs["gtf"])

    gene_adata = af.tl.gene_activity(adata, genes, verbose=False)

    assert gene_adata.n_obs == adata.n_obs
    assert "MS4A1" in gene_adata.var_names
    assert "counts" in gene_adata.layers
    assert gene_adata.layers["counts"].sum() > 0
    assert "peak_region_fragments" in gene_adata.obs.columns


def test_gene_activity_requires_fragments(atac_adata):
    genes = pd.DataFrame(
        {"chrom": ["chr1"], "start": [100], "end": [200], "strand": ["+"], "gene_name": ["A"]}
    )
    with pytest.raises(ValueError, match="No fragments file"):
        af.tl.gene_activity(atac_adata, genes, verbose=False)


def test_gene_activity_strand_aware_promoters(tiny_fragments):
    """Promoters extend above the gene end on the minus strand and below the start on the plus strand."""
    adata, genes = tiny_fragments
    gene_adata = af.tl.gene_activity(adata, genes, normalize=False, verbose=False)

    counts = pd.DataFrame(
        gene_adata.layers["counts"].toarray(), index=gene_adata.obs_names, columns=gene_adata.var_names
    )
    assert counts.loc["AAACGAAC-1", "MINUS"] == 5
    assert counts.loc["AAACGAAG-1", "MINUS"] == 0
    assert counts.loc["AAACGAAG-1", "PLUS"] == 3
    assert counts.loc["AAACGAAC-1", "PLUS"] == 0
