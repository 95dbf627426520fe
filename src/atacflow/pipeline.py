"""
One-shot scATAC-seq pipeline.

Runs the full analysis in a fixed order on a cellranger-atac output directory:

1. Read counts, metadata and fragments; load the gene annotation
2. QC metrics, QC figures, cell filtering
3. TF-IDF, top features, LSI; depth correlation figure
4. Neighbors, UMAP, clustering; UMAP by cluster
5. Gene activity and marker figures (needs fragments and a GTF)
6. Cluster relabeling through the lookup table; UMAP by cell type
7. Differential accessibility per comparison; volcano, top-peak violin,
   closest genes and coverage tracks
8. Motif enrichment of up/down DARs and their comparison (needs motifs and a FASTA)
9. Save ``atac.h5ad``, ``gene_activity.h5ad`` and CSV tables

Optional stages are skipped with a printed note when their inputs are absent.

Usage::

    python -m atacflow outs/ results/ --gtf genes.gtf.gz --genome hg38.fa --motifs JASPAR2020.jaspar
"""

import argparse
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
from anndata import AnnData

from . import pl, pp, tl
from ._core.config import ClusteringConfig, PipelineConfig
from ._core.utils.genomics import get_fragments_path

N_STEPS = 9


@dataclass
class PipelineResults:
    """Everything ``run_pipeline`` produced."""

    adata: AnnData
    gene_adata: AnnData | None = None
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    figures: dict[str, Path] = field(default_factory=dict)
    files: dict[str, Path] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


def _slug(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", str(name)).strip("_")


class _Runner:
    """Holds the config and collects outputs while the steps run."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.verbose = config.verbose
        self.annotation = None
        self.results = None

    def step(self, i: int, message: str) -> None:
        if self.verbose:
            print(f"\n[STEP {i}/{N_STEPS}] {message}")

    def skip(self, message: str) -> None:
        self.results.skipped.append(message)
        if self.verbose:
            print(f"   [SKIP] {message}")

    def figure(self, name: str, plot, *args, **kwargs) -> None:
        path = self.config.figure_path(name)
        fig = plot(*args, save_path=path, **kwargs)
        plt.close(fig)
        self.results.figures[name] = path

    def table(self, name: str, df: pd.DataFrame) -> None:
        self.results.tables[name] = df

    def palette_for(self, adata: AnnData, key: str = "cell_type") -> dict | None:
        """Configured palette restricted to the categories of ``obs[key]``, or None if any is missing."""
        categories = [str(c) for c in adata.obs[key].cat.categories]
        if all(c in self.config.palette for c in categories):
            return {c: self.config.palette[c] for c in categories}
        return None


def run_pipeline(config: PipelineConfig) -> PipelineResults:
    """Run every stage in order and write outputs to ``config.output_dir``.

    Parameters
    ----------
    config : PipelineConfig
        Paths and parameters.

    Returns
    -------
    PipelineResults
        Final objects, result tables, and paths of figures and saved files.
    """
    cfg = config
    run = _Runner(cfg)
    cfg.output_dir.mkdir(parents=True, exist_ok=True)

    # 1. loading
    run.step(1, "Loading data")
    adata = pp.read_10x_atac(cfg.data_dir, fragments=cfg.fragments, verbose=cfg.verbose)
    run.results = PipelineResults(adata=adata)
    has_fragments = get_fragments_path(adata) is not None
    if cfg.gtf is not None:
        run.annotation = pp.load_gene_annotation(cfg.gtf)
        if cfg.verbose:
            print(f"   Gene annotation: {len(run.annotation)} genes")
    else:
        run.skip("No GTF given: TSS enrichment, gene activity and closest genes are skipped")

    # 2. QC
    run.step(2, "Quality control")
    pp.calculate_qc_metrics(adata, annotation=run.annotation, verbose=cfg.verbose)
    run.figure("qc_violin", pl.qc_violin, adata)
    if "tss_pileup" in adata.uns:
        run.figure("tss_profile", pl.tss_profile, adata)
    if has_fragments and "nucleosome_group" in adata.obs.columns:
        chrom = adata.var["chrom"].iloc[0]
        chrom_end = int(adata.var.loc[adata.var["chrom"] == chrom, "end"].max())
        run.figure("fragment_histogram", pl.fragment_histogram, adata, region=f"{chrom}:0-{chrom_end}")
    if "tss_score" in adata.obs.columns:
        run.figure("qc_density", pl.qc_density, adata, "n_counts", "tss_score")
    pp.filter_cells(adata, cfg.qc, verbose=cfg.verbose)

    # 3. normalization + LSI
    run.step(3, "TF-IDF and LSI")
    clustering: ClusteringConfig = cfg.clustering
    pp.prepare_atacseq(
        adata,
        n_components=clustering.n_lsi_components,
        drop_first=clustering.drop_first,
        min_cutoff=clustering.min_cutoff,
        verbose=cfg.verbose,
    )
    run.figure("depth_correlation", pl.depth_correlation, adata)

    # 4. clustering
    run.step(4, "Neighbors, UMAP and clustering")
    tl.embed_and_cluster(
        adata,
        n_neighbors=clustering.n_neighbors,
        resolution=clustering.resolution,
        algorithm=clustering.algorithm,
        random_state=clustering.random_state,
        verbose=cfg.verbose,
    )
    run.figure("umap_clusters", pl.umap, adata, "cluster", legend_loc="on data")

    # 5. gene activity
    run.step(5, "Gene activity")
    gene_adata = None
    if has_fragments and run.annotation is not None:
        gene_adata = tl.gene_activity(adata, run.annotation, verbose=cfg.verbose)
        run.results.gene_adata = gene_adata
        markers = [g for g in cfg.marker_genes if g in gene_adata.var_names]
        if markers:
            run.figure("marker_dotplot_clusters", pl.marker_dotplot, gene_adata, markers, groupby="cluster")
            run.figure("gene_activity_umap", pl.gene_activity, gene_adata, markers)
        else:
            run.skip("No marker gene found in the gene activity matrix")
    else:
        run.skip("Gene activity needs a fragments file and a GTF")

    # 6. annotation
    run.step(6, "Cell type annotation")
    tl.annotate_clusters(adata, cfg.cluster_labels, palette=cfg.palette)
    run.figure("umap_cell_types", pl.umap, adata, "cell_type")
    if gene_adata is not None:
        gene_adata.obs["cell_type"] = adata.obs["cell_type"]
        if "cell_type_colors" in adata.uns:
            gene_adata.uns["cell_type_colors"] = adata.uns["cell_type_colors"]
        markers = [g for g in cfg.marker_genes if g in gene_adata.var_names]
        if markers:
            run.figure("marker_dotplot_cell_types", pl.marker_dotplot, gene_adata, markers, groupby="cell_type")

    # 7. differential accessibility
    run.step(7, "Differential accessibility")
    cell_types = set(adata.obs["cell_type"].astype(str))
    da_results = {}
    for group, reference in cfg.comparisons:
        missing = [g for g in (group, reference) if g != "rest" and g not in cell_types]
        if missing:
            warnings.warn(f"Skipping comparison {group} vs {reference}: no cells labeled {missing}", UserWarning)
            run.skip(f"Comparison {group} vs {reference} (missing {missing})")
            continue
        name = f"{_slug(group)}_vs_{_slug(reference)}"
        da = tl.differential_accessibility(
            adata, group, reference, latent_vars=cfg.latent_vars, verbose=cfg.verbose
        )
        da_results[(group, reference)] = da
        run.table(f"da_{name}", da)
        if da.empty:
            continue
        run.figure(f"volcano_{name}", pl.da_volcano, da)
        run.figure(f"violin_{name}", pl.violin_peak, adata, da["peak"].iloc[0], palette=run.palette_for(adata))
        significant = da[da["significant"]]
        if run.annotation is not None and not significant.empty:
            run.table(f"closest_genes_{name}", tl.closest_features(significant, run.annotation))

    if has_fragments:
        for region in cfg.coverage_regions:
            coverage = tl.region_coverage(adata, region)
            run.figure(f"coverage_{_slug(region)}", pl.coverage, coverage, run.annotation, palette=cfg.palette)
    else:
        run.skip("Coverage tracks need a fragments file")

    # 8. motifs
    run.step(8, "Motif enrichment")
    if cfg.motifs is None or cfg.genome_fasta is None:
        run.skip("Motif enrichment needs a motif file and a genome FASTA")
    elif not any(not da.empty for da in da_results.values()):
        run.skip("Motif enrichment needs differential accessibility results")
    else:
        motif_cfg = cfg.motif
        tl.add_motifs(
            adata,
            cfg.motifs,
            cfg.genome_fasta,
            fmt=motif_cfg.motif_format,
            pvalue_cutoff=motif_cfg.pvalue_cutoff,
            pseudocounts=motif_cfg.pseudocounts,
            verbose=cfg.verbose,
        )
        for (group, reference), da in da_results.items():
            name = f"{_slug(group)}_vs_{_slug(reference)}"
            enrichment = {}
            for direction in ("up", "down"):
                dars = tl.select_dars(
                    da, direction=direction, pvalue_cutoff=motif_cfg.dar_pvalue_cutoff, min_pct=motif_cfg.dar_min_pct
                )
                if dars.empty:
                    run.skip(f"Motifs for {direction} DARs of {group} vs {reference}: no peak passes the DAR cutoffs")
                    continue
                enrichment[direction] = tl.dar_motif_prediction(
                    adata,
                    da,
                    direction=direction,
                    pvalue_cutoff=motif_cfg.dar_pvalue_cutoff,
                    min_pct=motif_cfg.dar_min_pct,
                    n_background=motif_cfg.n_background,
                    min_cells=motif_cfg.min_cells_accessible,
                    random_state=motif_cfg.random_state,
                    verbose=cfg.verbose,
                )
                run.table(f"motifs_{direction}_{name}", enrichment[direction])
                run.figure(f"motif_enrichment_{direction}_{name}", pl.motif_enrichment, enrichment[direction])
            if len(enrichment) == 2:
                comparison = tl.make_volcano_2_sets(
                    enrichment["up"], enrichment["down"], label_a=group, label_b=reference, pseudocount=0.0
                )
                run.table(f"motif_comparison_{name}", comparison)
                run.figure(f"motif_volcano_{name}", pl.motif_volcano, comparison)

    # 9. save
    run.step(9, "Saving results")
    files = run.results.files
    files["atac"] = cfg.output_dir / "atac.h5ad"
    adata.write_h5ad(files["atac"])
    if gene_adata is not None:
        files["gene_activity"] = cfg.output_dir / "gene_activity.h5ad"
        gene_adata.write_h5ad(files["gene_activity"])
    for name, df in run.results.tables.items():
        path = cfg.table_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(path, index=False)
        files[f"table_{name}"] = path

    if cfg.verbose:
        print(f"\n[OK] Pipeline finished: {len(run.results.figures)} figures, {len(run.results.tables)} tables")
        print(f"   Output: {cfg.output_dir}")
        for message in run.results.skipped:
            print(f"   [SKIPPED] {message}")
    return run.results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atacflow",
        description="One-shot scATAC-seq analysis of a cellranger-atac output directory.",
    )
    parser.add_argument("data_dir", help="cellranger-atac outs/ directory or filtered peak matrix .h5")
    parser.add_argument("output_dir", help="directory for figures, tables and saved objects")
    parser.add_argument("--fragments", help="fragments file (default: found next to the matrix)")
    parser.add_argument("--gtf", help="gene annotation GTF")
    parser.add_argument("--genome", help="indexed genome FASTA for motif scanning")
    parser.add_argument("--motifs", help="motif database (JASPAR format)")
    parser.add_argument("--resolution", type=float, default=0.8, help="clustering resolution (default: 0.8)")
    parser.add_argument("--figure-format", choices=("png", "pdf", "svg"), default="png")
    parser.add_argument("--quiet", action="store_true", help="only print warnings")
    return parser


def main(argv: list[str] | None = None) -> PipelineResults:
    """Command line entry point."""
    args = build_parser().parse_args(argv)
    config = PipelineConfig(
        data_dir=args.data_dir,
        output_dir=args.output_dir,
        fragments=args.fragments,
        gtf=args.gtf,
        genome_fasta=args.genome,
        motifs=args.motifs,
        clustering=ClusteringConfig(resolution=args.resolution),
        figure_format=args.figure_format,
        verbose=not args.quiet,
    )
    return run_pipeline(config)


def cli() -> None:
    """Console script entry point; exits 0 on success."""
    main()
