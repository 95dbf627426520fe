"""
Loading cellranger-atac output and gene annotation.

Main Functions:
- read_10x_atac(): Peak x barcode counts, per-barcode metadata and fragments
- load_gene_annotation(): Genes from a GTF as a sorted bedframe
- parse_peak_names(): Split ``chrom:start-end`` peak names into columns

All functions follow scVerse conventions with AnnData-centric workflows.
"""

import warnings
from pathlib import Path

import pandas as pd
import scanpy as sc
from anndata import AnnData
from muon import atac as ac

from .._core.utils.genomics import format_region
from .._core.utils.genomics import parse_peak_names as _parse_peak_names
from .._core.utils.genomics import read_gene_annotation as _read_gene_annotation

MATRIX_FILENAMES = ("filtered_peak_bc_matrix.h5", "filtered_feature_bc_matrix.h5")
METADATA_FILENAMES = ("singlecell.csv", "per_barcode_metrics.csv")
FRAGMENTS_FILENAMES = ("fragments.tsv.gz", "atac_fragments.tsv.gz")


def _find_file(directory: Path, candidates) -> Path | None:
    """First existing file, also accepting 10x sample-prefixed names (``sample_fragments.tsv.gz``)."""
    for name in candidates:
        if (directory / name).exists():
            return directory / name
    for name in candidates:
        hits = sorted(directory.glob(f"*_{name}"))
        if hits:
            return hits[0]
    return None


def parse_peak_names(names) -> pd.DataFrame:
    """Split peak names into ``chrom``, ``start``, ``end``.

    Accepts ``chr1:100-200`` and ``chr1-100-200``.

    Raises
    ------
    ValueError
        If a name is not a genomic interval.
    """
    return _parse_peak_names(names)


def read_10x_atac(
    path: str | Path,
    *,
    fragments: str | Path | None = None,
    metadata: str | Path | None = None,
    verbose: bool = True,
) -> AnnData:
    """Read a cellranger-atac peak matrix with metadata and fragments.

    Parameters
    ----------
    path : str | Path
        cellranger-atac ``outs/`` directory or a ``filtered_peak_bc_matrix.h5`` file.
    fragments : str | Path | None, default: None
        Tabix-indexed fragments file. Looked up next to the matrix when None.
    metadata : str | Path | None, default: None
        Per-barcode ``singlecell.csv``. Looked up next to the matrix when None.
    verbose : bool, default: True
        Whether to print loading progress

    Returns
    -------
    AnnData
        Cells x peaks raw counts with ``var['chrom'|'start'|'end']``, metadata
        columns in ``obs`` and the fragments path in ``uns['files']``.

    Raises
    ------
    FileNotFoundError
        If no count matrix can be found.
    """
    path = Path(path)
    if path.is_dir():
        matrix_path = _find_file(path, MATRIX_FILENAMES)
        if matrix_path is None:
            raise FileNotFoundError(f"No peak matrix ({', '.join(MATRIX_FILENAMES)}) found in {path}")
        directory = path
    elif path.exists():
        matrix_path = path
        directory = path.parent
    else:
        raise FileNotFoundError(f"Count matrix not found: {path}")

    if verbose:
        print(f"[LOAD] Reading peak matrix: {matrix_path}")
    adata = sc.read_10x_h5(str(matrix_path), gex_only=False)

    if "feature_types" in adata.var.columns and (adata.var["feature_types"] == "Peaks").any():
        n_before = adata.n_vars
        adata = adata[:, (adata.var["feature_types"] == "Peaks").to_numpy()].copy()
        if verbose and adata.n_vars < n_before:
            print(f"   Kept {adata.n_vars}/{n_before} Peaks features")

    coords = parse_peak_names(adata.var_names)
    adata.var_names = [format_region(*r) for r in coords.itertuples(index=False)]
    adata.var["chrom"] = coords["chrom"].to_numpy()
    adata.var["start"] = coords["start"].to_numpy()
    adata.var["end"] = coords["end"].to_numpy()
    adata.var_names_make_unique()

    metadata_path = Path(metadata) if metadata is not None else _find_file(directory, METADATA_FILENAMES)
    if metadata_path is not None:
        if not metadata_path.exists():
            raise FileNotFoundError(f"Metadata file not found: {metadata_path}")
        meta = pd.read_csv(metadata_path, index_col=0)
        adata.obs = adata.obs.join(meta, how="left")
        n_matched = int(adata.obs_names.isin(meta.index).sum())
        if verbose:
            print(f"   Metadata: {n_matched}/{adata.n_obs} barcodes matched in {metadata_path.name}")
    elif verbose:
        print("   [WARNING] No per-barcode metadata found; cellranger QC metrics unavailable")

    fragments_path = Path(fragments) if fragments is not None else _find_file(directory, FRAGMENTS_FILENAMES)
    if fragments_path is not None and fragments_path.exists():
        ac.tl.locate_fragments(adata, str(fragments_path))
        if verbose:
            print(f"   Fragments: {fragments_path}")
    else:
        warnings.warn(
            f"No fragments file found for {path}; fragment-based QC, gene activity and coverage will be skipped",
            UserWarning,
        )

    if verbose:
        print(f"[OK] Loaded {adata.n_obs} cells x {adata.n_vars} peaks")
    return adata


def load_gene_annotation(
    gtf_path: str | Path,
    *,
    biotypes: tuple[str, ...] | None = ("protein_coding",),
    feature: str = "gene",
    ucsc_style: bool = True,
) -> pd.DataFrame:
    """Load genes from a GTF file.

    Parameters
    ----------
    gtf_path : str | Path
        GTF file (may be gzipped).
    biotypes : tuple[str, ...] | None, default: ("protein_coding",)
        Gene biotypes to keep. None keeps all.
    feature : str, default: "gene"
        GTF feature type to keep.
    ucsc_style : bool, default: True
        Prefix chromosome names with ``chr`` (``MT`` becomes ``chrM``).

    Returns
    -------
    pd.DataFrame
        Sorted bedframe ``chrom, start, end, strand, gene_id, gene_name, gene_biotype``
        with 0-based half-open coordinates.
    """
    return _read_gene_annotation(gtf_path, biotypes=biotypes, feature=feature, ucsc_style=ucsc_style)
