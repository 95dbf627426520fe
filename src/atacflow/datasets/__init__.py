"""Example datasets for atacflow tutorials and testing.

Functions
---------
pbmc_10k
    10x Genomics 10k PBMC scATAC-seq (cellranger-atac 1.0.1 ``outs/``)
synthetic_atac
    Synthetic peak x cell counts with group-specific peaks
write_synthetic_outs
    Write a complete cellranger-like ``outs/`` directory (matrix, metadata,
    fragments) plus genome FASTA, GTF and JASPAR motifs for a synthetic dataset
"""

from pathlib import Path

import h5py
import numpy as np
import pandas as pd
import pysam
import scipy.sparse as sp
from anndata import AnnData

from .._core.constants import PBMC_10K_BASE_URL, PBMC_10K_FILES, PBMC_MARKER_GENES
from .._core.utils.genomics import format_region

# Default cache directory
_CACHE_DIR = Path.home() / ".cache" / "atacflow" / "datasets"

# Consensus sequences planted in the synthetic genome: (matrix id, name, consensus)
SYNTHETIC_MOTIFS = (
    ("MA0099.3", "FOS::JUN", "ATGACTCAT"),
    ("MA0035.4", "GATA1", "TTCTTATCTGT"),
    ("MA0139.1", "CTCF", "CCGCGNGGNGGCAG"),
)


def _get_cache_dir() -> Path:
    """Get or create cache directory."""
    _CACHE_DIR.mkdir(parents=True, exist_ok=True)
    return _CACHE_DIR


def pbmc_10k(path: str | Path | None = None, *, verbose: bool = True) -> AnnData:
    """Load the 10x Genomics 10k PBMC scATAC-seq dataset.

    Parameters
    ----------
    path : str | Path, optional
        Directory holding the cellranger-atac files. If None, looks in
        ``~/.cache/atacflow/datasets/pbmc_10k/``.
    verbose : bool, default: True
        Passed to ``af.pp.read_10x_atac``.

    Returns
    -------
    AnnData
        Raw peak counts with cellranger metadata and registered fragments.

    Notes
    -----
    Download the files listed in ``PBMC_10K_FILES`` from the 10x Genomics
    server into the cache directory, e.g.::

        wget https://cf.10xgenomics.com/samples/cell-atac/1.0.1/atac_v1_pbmc_10k/atac_v1_pbmc_10k_filtered_peak_bc_matrix.h5
    """
    from ..pp.basic import read_10x_atac

    directory = Path(path) if path is not None else _get_cache_dir() / "pbmc_10k"
    matrix = directory / PBMC_10K_FILES["matrix"]
    if not matrix.exists():
        urls = "\n".join(f"  wget {PBMC_10K_BASE_URL}/{name} -P {directory}" for name in PBMC_10K_FILES.values())
        raise FileNotFoundError(f"PBMC 10k dataset not found at {directory}\n\nDownload it from 10x Genomics:\n{urls}")

    fragments = directory / PBMC_10K_FILES["fragments"]
    return read_10x_atac(
        matrix,
        fragments=fragments if fragments.exists() else None,
        metadata=directory / PBMC_10K_FILES["metadata"],
        verbose=verbose,
    )


def _barcodes(n: int) -> list[str]:
    """Unique 16-mer barcodes: index written in base 4 over ACGT."""
    letters = np.array(list("ACGT"))
    digits = (np.arange(n)[:, None] // (4 ** np.arange(15, -1, -1))[None, :]) % 4
    return ["".join(row) + "-1" for row in letters[digits]]


def synthetic_atac(
    n_cells: int = 500,
    n_peaks: int = 2000,
    n_groups: int = 3,
    *,
    n_specific: int | None = None,
    specific_prob: float = 0.6,
    peak_width: int = 500,
    spacing: int = 5000,
    chroms: tuple[str, ...] = ("chr1", "chr2"),
    random_state: int = 0,
) -> AnnData:
    """Generate synthetic scATAC-seq counts with known cell groups.

    Each group has a block of ``n_specific`` peaks open in ``specific_prob``
    of its cells; all other peaks are open at a low, peak-specific rate
    scaled by a per-cell depth factor.

    Parameters
    ----------
    n_cells : int, default: 500
        Number of cells.
    n_peaks : int, default: 2000
        Number of peaks, split evenly across ``chroms``.
    n_groups : int, default: 3
        Number of ground-truth groups (``obs['group']``, ``"0"``..).
    n_specific : int | None, default: None
        Group-specific peaks per group; ``n_peaks // (4 * n_groups)`` when None.
    specific_prob : float, default: 0.6
        Open probability of a group-specific peak in its group.
    peak_width : int, default: 500
        Peak length in bp.
    spacing : int, default: 5000
        Distance between consecutive peak starts.
    chroms : tuple[str, ...], default: ("chr1", "chr2")
        Chromosomes the peaks are laid out on.
    random_state : int, default: 0
        Random seed for reproducibility.

    Returns
    -------
    AnnData
        - `.X` : Raw counts (CSR)
        - `.obs` : ``group`` plus cellranger-style ``passed_filters``,
          ``peak_region_fragments``, ``blacklist_region_fragments``
        - `.var` : ``chrom``, ``start``, ``end``, ``specific_group``
        - `.uns['synthetic_params']`

    Examples
    --------
    >>> import atacflow as af
    >>> adata = af.datasets.synthetic_atac(n_cells=300, n_peaks=600)
    >>> af.pp.prepare_atacseq(adata, n_components=10)
    """
    rng = np.random.default_rng(random_state)
    n_specific = n_peaks // (4 * n_groups) if n_specific is None else n_specific
    if n_specific * n_groups > n_peaks:
        raise ValueError("n_specific * n_groups cannot exceed n_peaks")

    groups = rng.integers(0, n_groups, size=n_cells)
    base_prob = rng.beta(1.0, 12.0, size=n_peaks)
    prob = np.tile(base_prob, (n_groups, 1))
    specific_group = np.full(n_peaks, "", dtype=object)
    for g in range(n_groups):
        block = slice(g * n_specific, (g + 1) * n_specific)
        prob[g, block] = specific_prob
        specific_group[block] = str(g)

    depth = rng.lognormal(0.0, 0.3, size=n_cells)
    cell_prob = np.clip(prob[groups] * depth[:, None], 0, 0.95)
    is_open = rng.random((n_cells, n_peaks)) < cell_prob
    counts = is_open * (1 + rng.poisson(0.3, size=(n_cells, n_peaks)))

    per_chrom = int(np.ceil(n_peaks / len(chroms)))
    chrom = np.array([chroms[i // per_chrom] for i in range(n_peaks)])
    start = 10_000 + (np.arange(n_peaks) % per_chrom) * spacing
    end = start + peak_width

    n_fragments = counts.sum(axis=1).astype(int)
    frip = rng.uniform(0.3, 0.7, size=n_cells)
    obs = pd.DataFrame(
        {
            "group": pd.Categorical([str(g) for g in groups], categories=[str(g) for g in range(n_groups)]),
            "passed_filters": np.round(n_fragments / frip).astype(int),
            "peak_region_fragments": n_fragments,
            "blacklist_region_fragments": rng.binomial(n_fragments, 0.005),
        },
        index=_barcodes(n_cells),
    )
    var = pd.DataFrame(
        {"chrom": chrom, "start": start, "end": end, "specific_group": specific_group.astype(str)},
        index=[format_region(c, s, e) for c, s, e in zip(chrom, start, end)],
    )

    adata = AnnData(sp.csr_matrix(counts, dtype=np.float32), obs=obs, var=var)
    adata.uns["synthetic_params"] = {
        "n_groups": n_groups,
        "n_specific": n_specific,
        "specific_prob": specific_prob,
        "random_state": random_state,
    }
    return adata


def _write_10x_h5(adata: AnnData, path: Path) -> None:
    """cellranger (v3 layout) HDF5 peak matrix."""
    X = sp.csc_matrix(adata.X.T, dtype=np.int32)
    names = np.array(adata.var_names, dtype="S")
    with h5py.File(path, "w") as f:
        matrix = f.create_group("matrix")
        matrix.create_dataset("barcodes", data=np.array(adata.obs_names, dtype="S"))
        matrix.create_dataset("data", data=X.data)
        matrix.create_dataset("indices", data=X.indices.astype(np.int64))
        matrix.create_dataset("indptr", data=X.indptr.astype(np.int64))
        matrix.create_dataset("shape", data=np.array(X.shape, dtype=np.int32))
        features = matrix.create_group("features")
        features.create_dataset("_all_tag_keys", data=np.array(["genome"], dtype="S"))
        features.create_dataset("feature_type", data=np.array(["Peaks"] * adata.n_vars, dtype="S"))
        features.create_dataset("genome", data=np.array(["GRCh38"] * adata.n_vars, dtype="S"))
        features.create_dataset("id", data=names)
        features.create_dataset("name", data=names)


def _write_fasta(chrom_seqs: dict[str, str], path: Path, width: int = 60) -> None:
    with open(path, "w") as handle:
        for name, seq in chrom_seqs.items():
            handle.write(f">{name}\n")
            for i in range(0, len(seq), width):
                handle.write(seq[i : i + width] + "\n")
    pysam.faidx(str(path))


def _write_jaspar(path: Path) -> None:
    lines = []
    for matrix_id, name, consensus in SYNTHETIC_MOTIFS:
        lines.append(f">{matrix_id}\t{name}")
        for base in "ACGT":
            row = [17 if c == base else (5 if c == "N" else 1) for c in consensus]
            lines.append(f"{base}  [ " + " ".join(f"{v:3d}" for v in row) + " ]")
    path.write_text("\n".join(lines) + "\n")


def write_synthetic_outs(
    directory: str | Path,
    adata: AnnData | None = None,
    *,
    background_fraction: float = 0.2,
    promoter_fraction: float = 0.3,
    random_state: int = 0,
) -> dict[str, Path]:
    """Write a synthetic cellranger-atac output directory.

    Fragments are drawn inside each open peak (one per count, lengths from a
    nucleosome-free/mono-nucleosome mixture) plus ``background_fraction``
    extra fragments per cell scattered along the chromosomes, and
    ``promoter_fraction`` more within 1 kb of a TSS. Genes start at every
    fifth peak's center so TSS enrichment has signal above its flanks, and
    the first genes carry the PBMC marker names. The FOS::JUN consensus is
    planted in the peaks specific to group ``"0"``.

    Parameters
    ----------
    directory : str | Path
        Output directory (created).
    adata : AnnData | None, default: None
        Output of ``synthetic_atac``; a default dataset is generated when None.
    background_fraction : float, default: 0.2
        Off-peak fragments per cell relative to its peak fragments.
    promoter_fraction : float, default: 0.3
        Fragments near a random TSS per cell relative to its peak fragments.
    random_state : int, default: 0
        Random seed.

    Returns
    -------
    dict[str, Path]
        Paths for ``matrix``, ``metadata``, ``fragments``, ``genome``, ``gtf``, ``motifs``.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(random_state)
    adata = synthetic_atac(random_state=random_state) if adata is None else adata

    paths = {
        "matrix": directory / "filtered_peak_bc_matrix.h5",
        "metadata": directory / "singlecell.csv",
        "fragments": directory / "fragments.tsv.gz",
        "genome": directory / "genome.fa",
        "gtf": directory / "genes.gtf",
        "motifs": directory / "motifs.jaspar",
    }
    _write_10x_h5(adata, paths["matrix"])

    meta = adata.obs[["passed_filters", "peak_region_fragments", "blacklist_region_fragments"]].copy()
    meta["is__cell_barcode"] = 1
    no_barcode = pd.DataFrame({c: [0] for c in meta.columns}, index=["NO_BARCODE"])
    pd.concat([no_barcode, meta]).rename_axis("barcode").to_csv(paths["metadata"])

    var = adata.var
    chrom_sizes = (var.groupby("chrom", observed=True)["end"].max() + 10_000).to_dict()

    # genome: GC content varies per peak so background matching has something to match
    chrom_seqs = {}
    for chrom, size in chrom_sizes.items():
        seq = rng.choice(np.array(list("ACGT")), size=size, p=[0.3, 0.2, 0.2, 0.3])
        for start, end in var.loc[var["chrom"] == chrom, ["start", "end"]].itertuples(index=False):
            gc = rng.uniform(0.3, 0.65)
            at = (1 - gc) / 2
            seq[start:end] = rng.choice(np.array(list("ACGT")), size=end - start, p=[at, gc / 2, gc / 2, at])
        chrom_seqs[chrom] = seq
    ap1 = np.array(list(SYNTHETIC_MOTIFS[0][2]))
    for chrom, start, end in var.loc[var["specific_group"] == "0", ["chrom", "start", "end"]].itertuples(index=False):
        for offset in (50, 250):
            chrom_seqs[chrom][start + offset : start + offset + len(ap1)] = ap1
    _write_fasta({c: "".join(s) for c, s in chrom_seqs.items()}, paths["genome"])

    # genes: TSS at the center of every fifth peak, chromosome names in Ensembl style
    gtf_rows = []
    gene_peaks = var.iloc[::5]
    for i, (chrom, start, end) in enumerate(gene_peaks[["chrom", "start", "end"]].itertuples(index=False)):
        name = PBMC_MARKER_GENES[i] if i < len(PBMC_MARKER_GENES) else f"GENE{i}"
        center = (start + end) // 2
        strand = "+" if i % 2 == 0 else "-"
        g_start, g_end = (center + 1, center + 3000) if strand == "+" else (center - 2999, center)
        attrs = f'gene_id "ENSG{i:011d}"; gene_name "{name}"; gene_biotype "protein_coding";'
        for feature in ("gene", "transcript"):
            gtf_rows.append(
                f"{chrom.removeprefix('chr')}\tsynthetic\t{feature}\t{g_start}\t{g_end}\t.\t{strand}\t.\t{attrs}"
            )
    first_chrom = var["chrom"].iloc[0].removeprefix("chr")
    gtf_rows.append(
        f'{first_chrom}\tsynthetic\tgene\t2001\t4000\t.\t+\t.\tgene_id "ENSG99999999999"; '
        'gene_name "LINC00001"; gene_biotype "lncRNA";'
    )
    paths["gtf"].write_text("#!genome-build synthetic\n" + "\n".join(gtf_rows) + "\n")

    # fragments
    X = sp.csr_matrix(adata.X)
    starts, ends, barcodes, chroms = [], [], [], []
    peak_chrom = var["chrom"].to_numpy()
    peak_start = var["start"].to_numpy()
    peak_end = var["end"].to_numpy()
    tss_chrom = gene_peaks["chrom"].to_numpy()
    tss_center = ((gene_peaks["start"] + gene_peaks["end"]) // 2).to_numpy()
    for i, barcode in enumerate(adata.obs_names):
        cols = X.indices[X.indptr[i] : X.indptr[i + 1]]
        reps = X.data[X.indptr[i] : X.indptr[i + 1]].astype(int)
        idx = np.repeat(cols, reps)
        n_bg = int(round(background_fraction * len(idx)))
        n_promoter = int(round(promoter_fraction * len(idx)))
        n_total = len(idx) + n_bg + n_promoter
        nucleosome_free = rng.random(n_total) < 0.7
        lengths = np.where(nucleosome_free, rng.integers(50, 140, n_total), rng.integers(180, 290, n_total))
        frag_start = rng.integers(peak_start[idx], np.maximum(peak_end[idx] - 50, peak_start[idx] + 1))
        bg_chrom = rng.choice(list(chrom_sizes), size=n_bg)
        bg_start = np.array([rng.integers(1000, chrom_sizes[c] - 1000) for c in bg_chrom], dtype=int)
        gene = rng.integers(0, len(tss_center), size=n_promoter)
        promoter_start = tss_center[gene] + rng.integers(-1100, 1000, size=n_promoter)
        all_start = np.concatenate([frag_start, bg_start, promoter_start]).astype(int)
        chroms.append(np.concatenate([peak_chrom[idx], bg_chrom, tss_chrom[gene]]))
        starts.append(all_start)
        ends.append(all_start + lengths)
        barcodes.append(np.full(len(all_start), barcode))

    fragments = pd.DataFrame(
        {
            "chrom": np.concatenate(chroms),
            "start": np.concatenate(starts),
            "end": np.concatenate(ends),
            "barcode": np.concatenate(barcodes),
            "count": 1,
        }
    ).sort_values(["chrom", "start", "end"])
    plain = directory / "fragments.tsv"
    fragments.to_csv(plain, sep="\t", header=False, index=False)
    paths["fragments"] = Path(pysam.tabix_index(str(plain), preset="bed", force=True))

    _write_jaspar(paths["motifs"])
    return paths


__all__ = [
    "pbmc_10k",
    "synthetic_atac",
    "write_synthetic_outs",
]
