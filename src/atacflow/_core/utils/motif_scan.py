"""
Motif Scanning with Biopython PSSMs
===================================

=== MODULE API INVENTORY ===

 read_motifs(path, fmt='jaspar') -> list[Bio.motifs.Motif]
    Purpose: Parse a motif database (JASPAR, MEME, TRANSFAC, ...) with Bio.motifs

 motif_identifiers(motif_list) -> (ids, names)
    Purpose: Stable id/name per motif regardless of source format

 scan_sequences(sequences, motif_list, background, pvalue_cutoff=5e-5, pseudocounts=0.8) -> (csr_matrix, thresholds)
    Purpose: Binary sequence x motif match matrix; a sequence matches a motif if
             any window on either strand scores at or above the PSSM threshold
             that corresponds to ``pvalue_cutoff`` under the background model

IMPLEMENTATION NOTES:
 Sequences are scanned in batches joined by 'N' separators so each motif is
 scored with one ``pssm.calculate`` call per strand and batch. Windows touching
 a separator score NaN and are ignored by ``np.fmax.reduceat``.
"""

from pathlib import Path

import numpy as np
import scipy.sparse as sp
from Bio import motifs

_BATCH_SIZE = 5000


def read_motifs(path, fmt="jaspar"):
    """Parse every motif in ``path``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Motif file not found: {path}")
    with open(path) as handle:
        motif_list = list(motifs.parse(handle, fmt))
    if not motif_list:
        raise ValueError(f"No motifs parsed from {path} (format '{fmt}')")
    return motif_list


def motif_identifiers(motif_list):
    """Return parallel lists of motif ids and names."""
    ids, names = [], []
    for i, motif in enumerate(motif_list):
        matrix_id = getattr(motif, "matrix_id", None)
        name = getattr(motif, "name", None)
        if matrix_id is None and hasattr(motif, "get"):
            # TRANSFAC records behave like dicts
            matrix_id = motif.get("AC") or motif.get("ID")
            name = name or motif.get("ID")
        matrix_id = str(matrix_id or name or f"motif_{i}")
        ids.append(matrix_id)
        names.append(str(name or matrix_id))
    return ids, names


def _pssms(motif, background, pseudocounts):
    pwm = motif.counts.normalize(pseudocounts=pseudocounts)
    pssm = pwm.log_odds(background)
    return pssm, pssm.reverse_complement()


def _segment_max(pssm, joined, starts):
    scores = np.atleast_1d(np.asarray(pssm.calculate(joined), dtype=float))
    return np.fmax.reduceat(scores, starts)


def scan_sequences(sequences, motif_list, background, pvalue_cutoff=5e-5, pseudocounts=0.8, verbose=False):
    """Binary match matrix of sequences x motifs.

    Parameters
    ----------
    sequences : list[str]
        Upper-case DNA sequences.
    motif_list : list
        Motifs from ``read_motifs``.
    background : dict[str, float]
        Nucleotide frequencies used for log-odds and the score distribution.
    pvalue_cutoff : float, default: 5e-5
        False positive rate per window used to set each motif's threshold.
    pseudocounts : float, default: 0.8
        Pseudocounts added to each count matrix cell.

    Returns
    -------
    matches : scipy.sparse.csr_matrix of bool [n_sequences, n_motifs]
    thresholds : numpy.ndarray
        Score threshold used for each motif.
    """
    n_seq = len(sequences)
    max_len = max(len(m) for m in motif_list)
    pad = "N" * max_len

    batches = []
    for lo in range(0, n_seq, _BATCH_SIZE):
        chunk = sequences[lo : lo + _BATCH_SIZE]
        starts = np.zeros(len(chunk), dtype=np.int64)
        pos = 0
        for k, seq in enumerate(chunk):
            starts[k] = pos
            pos += len(seq) + 1
        # trailing padding keeps every start inside the score array
        batches.append((lo, "N".join(chunk) + pad, starts))

    thresholds = np.empty(len(motif_list))
    rows, cols = [], []
    for j, motif in enumerate(motif_list):
        fwd, rev = _pssms(motif, background, pseudocounts)
        thresholds[j] = fwd.distribution(background=background, precision=10**3).threshold_fpr(pvalue_cutoff)
        for lo, joined, starts in batches:
            best = np.fmax(_segment_max(fwd, joined, starts), _segment_max(rev, joined, starts))
            hit = np.flatnonzero(best >= thresholds[j])
            rows.append(hit + lo)
            cols.append(np.full(len(hit), j))
        if verbose and (j + 1) % 100 == 0:
            print(f"   Scanned {j + 1}/{len(motif_list)} motifs")

    rows = np.concatenate(rows) if rows else np.array([], dtype=np.int64)
    cols = np.concatenate(cols) if cols else np.array([], dtype=np.int64)
    matches = sp.csr_matrix(
        (np.ones(len(rows), dtype=bool), (rows, cols)),
        shape=(n_seq, len(motif_list)),
    )
    return matches, thresholds
