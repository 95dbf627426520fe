"""
Genomic interval helpers: peak names, gene annotation, sequences, fragments.

Intervals are handled as bioframe-style DataFrames (``chrom``, ``start``,
``end``; 0-based half-open). Sequences come from an indexed FASTA and
fragments from a tabix-indexed cellranger fragments file, both via pysam.
"""

import itertools
import re
import warnings
from pathlib import Path

import bioframe as bf
import numpy as np
import pandas as pd
import pysam

_PEAK_PATTERN = re.compile(r"^(?P<chrom>[^:\s]+?)[:\-](?P<start>\d+)-(?P<end>\d+)$")

GTF_COLUMNS = ["chrom", "source", "feature", "start", "end", "score", "strand", "frame", "attribute"]


def parse_peak_names(names) -> pd.DataFrame:
    """Split peak names ``chr1:100-200`` or ``chr1-100-200`` into a bedframe.

    Raises
    ------
    ValueError
        If any name does not look like a genomic interval.
    """
    names = pd.Index(names).astype(str)
    parsed = names.str.extract(_PEAK_PATTERN)
    bad = parsed["chrom"].isna()
    if bad.any():
        examples = list(names[bad.to_numpy()][:3])
        raise ValueError(f"{int(bad.sum())} peak names are not genomic intervals, e.g. {examples}")
    df = pd.DataFrame(
        {
            "chrom": parsed["chrom"].to_numpy(),
            "start": parsed["start"].astype(np.int64).to_numpy(),
            "end": parsed["end"].astype(np.int64).to_numpy(),
        },
        index=names,
    )
    if (df["end"] <= df["start"]).any():
        raise ValueError("Peak intervals must have end > start")
    return df


def format_region(chrom, start, end) -> str:
    return f"{chrom}:{int(start)}-{int(end)}"


def parse_region(region: str) -> tuple[str, int, int]:
    """Parse a single region string into ``(chrom, start, end)``."""
    df = parse_peak_names([region.replace(",", "")])
    row = df.iloc[0]
    return row["chrom"], int(row["start"]), int(row["end"])


def parse_gtf_attributes(attributes: pd.Series, keys) -> pd.DataFrame:
    """Extract ``key "value";`` pairs from a GTF attribute column."""
    out = {}
    for key in keys:
        out[key] = attributes.str.extract(rf'{key} "([^"]*)"', expand=False)
    return pd.DataFrame(out, index=attributes.index)


def read_gene_annotation(gtf_path, biotypes=("protein_coding",), feature="gene", ucsc_style=True) -> pd.DataFrame:
    """Read genes from a GTF file into a sorted bedframe.

    Returns columns ``chrom, start, end, strand, gene_name, gene_id, gene_biotype``.
    GTF coordinates (1-based, closed) are converted to 0-based half-open.
    """
    gtf_path = Path(gtf_path)
    if not gtf_path.exists():
        raise FileNotFoundError(f"Gene annotation not found: {gtf_path}")

    df = bf.read_table(str(gtf_path), names=GTF_COLUMNS, sep="\t", comment="#", dtype={"chrom": str})
    genes = df[df["feature"] == feature].copy()
    if genes.empty:
        raise ValueError(f"No '{feature}' records in {gtf_path}")

    attrs = parse_gtf_attributes(genes["attribute"], ["gene_id", "gene_name", "gene_biotype", "gene_type"])
    genes = genes[["chrom", "start", "end", "strand"]].join(attrs)
    genes["gene_biotype"] = genes["gene_biotype"].fillna(genes["gene_type"])
    genes["gene_name"] = genes["gene_name"].fillna(genes["gene_id"])
    genes = genes.drop(columns=["gene_type"])

    if biotypes is not None:
        genes = genes[genes["gene_biotype"].isin(biotypes)]
    genes["start"] = genes["start"].astype(np.int64) - 1
    genes["end"] = genes["end"].astype(np.int64)
    if ucsc_style:
        no_prefix = ~genes["chrom"].str.startswith("chr")
        genes.loc[no_prefix, "chrom"] = "chr" + genes.loc[no_prefix, "chrom"].replace({"MT": "M"})

    genes = genes.dropna(subset=["gene_name"]).reset_index(drop=True)
    return bf.sort_bedframe(genes)


def tss_positions(annotation: pd.DataFrame) -> pd.DataFrame:
    """One-base TSS interval per gene, strand aware."""
    tss = np.where(annotation["strand"] == "-", annotation["end"] - 1, annotation["start"])
    return pd.DataFrame(
        {
            "chrom": annotation["chrom"].to_numpy(),
            "start": tss.astype(np.int64),
            "end": tss.astype(np.int64) + 1,
            "strand": annotation["strand"].to_numpy(),
            "gene_name": annotation["gene_name"].to_numpy(),
        }
    )


def to_muon_features(annotation: pd.DataFrame) -> pd.DataFrame:
    """Rename a bedframe to the ``Chromosome/Start/End/Strand`` columns muon expects."""
    features = annotation.rename(columns={"chrom": "Chromosome", "start": "Start", "end": "End"}).copy()
    if "strand" in features.columns:
        features["Strand"] = features["strand"]
    features.index = pd.Index(features["gene_name"].astype(str)).rename(None)
    if features.index.has_duplicates:
        features = features[~features.index.duplicated(keep="first")]
    return features


def closest_genes(peaks: pd.DataFrame, annotation: pd.DataFrame) -> pd.DataFrame:
    """Nearest gene for each peak (overlapping genes have distance 0)."""
    peaks = peaks[["chrom", "start", "end"]].reset_index(drop=True)
    genes = annotation[["chrom", "start", "end", "gene_name", "gene_id", "gene_biotype"]]
    hits = bf.closest(peaks, genes, k=1, suffixes=("", "_gene"))
    hits = hits.dropna(subset=["distance"])
    return pd.DataFrame(
        {
            "query_region": [format_region(*r) for r in hits[["chrom", "start", "end"]].itertuples(index=False)],
            "gene_name": hits["gene_name_gene"].astype(str).to_numpy(),
            "gene_id": hits["gene_id_gene"].astype(str).to_numpy(),
            "gene_biotype": hits["gene_biotype_gene"].astype(str).to_numpy(),
            "closest_region": [
                format_region(*r) for r in hits[["chrom_gene", "start_gene", "end_gene"]].itertuples(index=False)
            ],
            "distance": hits["distance"].astype(np.int64).to_numpy(),
        }
    )


def fetch_sequences(genome_fasta, peaks: pd.DataFrame) -> list[str]:
    """Upper-case sequences of each interval from an indexed FASTA."""
    genome_fasta = Path(genome_fasta)
    if not genome_fasta.exists():
        raise FileNotFoundError(f"Genome FASTA not found: {genome_fasta}")

    sequences = []
    with pysam.FastaFile(str(genome_fasta)) as fasta:
        contigs = set(fasta.references)
        missing = set(peaks["chrom"]) - contigs
        if missing:
            raise ValueError(f"Chromosomes missing from {genome_fasta.name}: {sorted(missing)[:5]}")
        for chrom, start, end in peaks[["chrom", "start", "end"]].itertuples(index=False):
            sequences.append(fasta.fetch(chrom, int(start), int(end)).upper())
    return sequences


def region_stats(sequences) -> pd.DataFrame:
    """GC percentage and length of each sequence."""
    lengths = np.array([len(s) for s in sequences], dtype=np.int64)
    gc = np.array([s.count("G") + s.count("C") for s in sequences], dtype=float)
    gc_percent = np.divide(100.0 * gc, lengths, out=np.zeros_like(gc), where=lengths > 0)
    return pd.DataFrame({"gc_percent": gc_percent, "sequence_length": lengths})


def nucleotide_frequencies(sequences) -> dict[str, float]:
    """A/C/G/T frequencies over a set of sequences (non-ACGT ignored)."""
    counts = {base: sum(s.count(base) for s in sequences) for base in "ACGT"}
    total = sum(counts.values())
    if total == 0:
        return {base: 0.25 for base in "ACGT"}
    return {base: counts[base] / total for base in "ACGT"}


def get_fragments_path(adata) -> Path | None:
    """Fragments file registered on the AnnData (muon convention)."""
    files = adata.uns.get("files", {})
    path = files.get("fragments") if hasattr(files, "get") else None
    return Path(path) if path else None


def count_fragments(fragments_path, limit: int | None = None) -> int:
    """Number of fragments in a tabix-indexed file, stopping once ``limit`` is reached."""
    with pysam.TabixFile(str(fragments_path)) as tbx:
        return sum(1 for _ in itertools.islice(tbx.fetch(), limit))


def fetch_fragments(fragments_path, chrom, start, end, barcodes=None) -> pd.DataFrame:
    """Fragments overlapping a region as ``chrom, start, end, barcode, count``.

    Parameters
    ----------
    barcodes : collection of str, optional
        Keep only fragments from these cell barcodes.
    """
    rows = []
    with pysam.TabixFile(str(fragments_path)) as tbx:
        if chrom not in tbx.contigs:
            warnings.warn(f"{chrom} not present in fragments file {fragments_path}", UserWarning)
        else:
            for fields in tbx.fetch(chrom, int(start), int(end), parser=pysam.asTuple()):
                rows.append((fields[0], int(fields[1]), int(fields[2]), fields[3], int(fields[4])))

    frags = pd.DataFrame(rows, columns=["chrom", "start", "end", "barcode", "count"])
    if barcodes is not None:
        frags = frags[frags["barcode"].isin(set(barcodes))]
    return frags.reset_index(drop=True)
