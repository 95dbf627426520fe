#!/usr/bin/env python
"""
WORKFLOW 01: 10k PBMC scATAC-seq, step by step
==============================================

This workflow runs the same analysis as ``af.run_pipeline`` one stage at a time,
so each intermediate result can be inspected:
1. Load the cellranger-atac peak matrix, per-barcode metadata and fragments
2. QC metrics (fragments in peaks, FRiP, blacklist ratio, nucleosome signal, TSS score)
3. Cell filtering
4. TF-IDF + LSI, UMAP and Leiden clustering
5. Cluster annotation and gene activity
6. Differential accessibility (logistic regression LR test)
7. Motif enrichment of gained/lost peaks and the two-set motif volcano
8. Coverage tracks and saving the object

AnnData keys created:
    - adata.obs['tss_score'], adata.obs['nucleosome_signal']: fragment-based QC
    - adata.layers['tfidf']:           TF-IDF normalized counts
    - adata.obsm['X_lsi']:             LSI embeddings [n_cells, n_components]
    - adata.obsm['X_umap']:            UMAP embedding
    - adata.obs['cluster']:            Leiden clusters, ordered by size
    - adata.obs['cell_type']:          Annotated cell types
    - adata.varm['motifs']:            Peak x motif match matrix

Example usage:
    python WORKFLOW_01_PBMC.py

Requirements:
    - atacflow
    - cellranger-atac 1.0.1 PBMC 10k outputs (see af.datasets.pbmc_10k)
    - A GTF for hg38 genes, the hg38 FASTA and a JASPAR motif file
"""

from pathlib import Path

import atacflow as af
from atacflow._core.constants import (
    PBMC_CLUSTER_LABELS,
    PBMC_COVERAGE_REGIONS,
    PBMC_MARKER_GENES,
    PBMC_PALETTE,
)

# =============================================================================
# Configuration
# =============================================================================

data_dir = Path("data/pbmc_10k")
gtf_path = Path("data/gencode.v32.annotation.gtf.gz")
genome_fasta = Path("data/hg38.fa")
motif_path = Path("data/JASPAR2020_CORE_vertebrates.jaspar")
output_dir = Path("results/pbmc_10k")

# Dimensionality reduction and clustering
n_lsi_components = 29
resolution = 0.8

# Differential accessibility
group, reference = "CD4 Naive", "CD14 Mono"

# =============================================================================
# Step 1: Load Data
# =============================================================================

print("Loading 10k PBMC scATAC-seq data...")
adata = af.datasets.pbmc_10k(data_dir)
print(f"  Shape: {adata.n_obs:,} cells x {adata.n_vars:,} peaks")

genes = af.pp.load_gene_annotation(gtf_path)
print(f"  Gene annotation: {len(genes):,} protein-coding genes")

# =============================================================================
# Step 2: QC Metrics
# =============================================================================

print("\nComputing QC metrics...")
af.pp.calculate_qc_metrics(adata, annotation=genes)

af.pl.qc_violin(adata, save_path=output_dir / "figures" / "qc_violin.png")
af.pl.tss_profile(adata, save_path=output_dir / "figures" / "tss_profile.png")
af.pl.fragment_histogram(adata, save_path=output_dir / "figures" / "fragment_histogram.png")

# =============================================================================
# Step 3: Cell Filtering
# =============================================================================

# Thresholds follow the distributions above; loosen them for other datasets
thresholds = af.QCThresholds()
af.pp.filter_cells(adata, thresholds)
print(adata.uns["qc_filter"])

# =============================================================================
# Step 4: TF-IDF, LSI, UMAP and Clustering
# =============================================================================

print(f"\nRunning TF-IDF + LSI (n_components={n_lsi_components})...")
af.pp.prepare_atacseq(adata, n_components=n_lsi_components)

# The first LSI component tracks sequencing depth and is dropped
print(af.tl.depth_correlation(adata).head())
af.pl.depth_correlation(adata, save_path=output_dir / "figures" / "depth_correlation.png")

af.tl.embed_and_cluster(adata, resolution=resolution)
print("\nCluster sizes:")
print(adata.obs["cluster"].value_counts())

af.pl.umap(adata, "cluster", legend_loc="on data", save_path=output_dir / "figures" / "umap_clusters.png")

# =============================================================================
# Step 5: Annotation and Gene Activity
# =============================================================================

gene_adata = af.tl.gene_activity(adata, genes)
gene_adata.obsm["X_umap"] = adata.obsm["X_umap"]

# Inspect marker activity per cluster before trusting the label table
af.pl.marker_dotplot(gene_adata, PBMC_MARKER_GENES, groupby="cluster")

af.tl.annotate_clusters(adata, PBMC_CLUSTER_LABELS)
gene_adata.obs["cell_type"] = adata.obs["cell_type"]

af.pl.umap(adata, "cell_type", palette=PBMC_PALETTE, save_path=output_dir / "figures" / "umap_cell_types.png")
af.pl.gene_activity(gene_adata, PBMC_MARKER_GENES[:8], save_path=output_dir / "figures" / "gene_activity.png")

# =============================================================================
# Step 6: Differential Accessibility
# =============================================================================

print(f"\nTesting differential accessibility: {group} vs {reference}...")
da = af.tl.differential_accessibility(adata, group, reference)

sig = da[da["significant"]]
print(f"  {len(sig):,} significant peaks ({(sig['direction'] == 'up').sum():,} gained in {group})")

closest = af.tl.closest_features(sig.head(20), genes)
print("\nTop peaks and their closest genes:")
for _, row in closest.iterrows():
    print(f"  {row['query_region']:30s} {row['gene_name']:12s} distance={row['distance']:,}")

af.pl.da_volcano(da, save_path=output_dir / "figures" / "volcano.png")
af.pl.violin_peak(adata, da["peak"].iloc[0], palette=PBMC_PALETTE)

# =============================================================================
# Step 7: Motif Enrichment
# =============================================================================

print("\nScanning peaks for motifs...")
af.tl.add_motifs(adata, motif_path, genome_fasta)

up = af.tl.dar_motif_prediction(adata, da, direction="up")
down = af.tl.dar_motif_prediction(adata, da, direction="down")

print("\nTop motifs in gained peaks:")
for _, row in up.head(10).iterrows():
    print(f"  {row['motif_name']:15s} fold={row['fold_enrichment']:.2f}  FDR={row['fdr_pvalue']:.2e}")

comparison = af.tl.make_volcano_2_sets(up, down, label_a=group, label_b=reference)
af.pl.motif_enrichment(up, save_path=output_dir / "figures" / "motifs_up.png")
af.pl.motif_volcano(comparison, save_path=output_dir / "figures" / "motif_volcano.png")

# =============================================================================
# Step 8: Coverage and Saving
# =============================================================================

for region in PBMC_COVERAGE_REGIONS:
    coverage = af.tl.region_coverage(adata, region)
    af.pl.coverage(coverage, genes, palette=PBMC_PALETTE)

output_dir.mkdir(parents=True, exist_ok=True)
adata.write_h5ad(output_dir / "pbmc_10k_atac.h5ad")
gene_adata.write_h5ad(output_dir / "pbmc_10k_gene_activity.h5ad")
print(f"\n[OK] Results written to {output_dir}")
