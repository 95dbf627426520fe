"""Tests for motif scanning, background matching and motif enrichment."""

import numpy as np
import pandas as pd
import pytest
from scipy.stats import fisher_exact, hypergeom

import atacflow as af
from atacflow._core.types import validate_results
from atacflow._core.utils.motif_scan import motif_identifiers, scan_sequences
from atacflow._core.utils.statistical_tests import fisher_compare_counts, hypergeometric_enrichment
from atacflow.tl.motifs import ENRICHMENT_COLUMNS


def _enrichment_table(observed, n_query, motifs=("M1", "M2", "M3")):
    """Minimal find_motifs-like table."""
    table = pd.DataFrame(
        {"motif": list(motifs), "motif_name": [m.lower() for m in motifs], "observed": list(observed)}
    )
    table.attrs["n_query"] = n_query
    return table


class TestMotifScanning:
    def test_read_motifs(self, synthetic_outs):
        motif_list = af.tl.read_motifs(synthetic_outs["motifs"])
        ids, names = motif_identifiers(motif_list)
        assert ids == ["MA0099.3", "MA0035.4", "MA0139.1"]
        assert names == ["FOS::JUN", "GATA1", "CTCF"]

    def test_read_motifs_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            af.tl.read_motifs(tmp_path / "motifs.jaspar")

    def test_scan_sequences_finds_consensus(self, synthetic_outs):
        """The consensus matches on either strand; unrelated sequence does not."""
        motif_list = af.tl.read_motifs(synthetic_outs["motifs"])[:1]
        background = {"A": 0.25, "C": 0.25, "G": 0.25, "T": 0.25}
        sequences = [
            "CCCCCCCCCCATGACTCATCCCCCCCCCC",
            "CCCCCCCCCCATGAGTCATCCCCCCCCCC",  # reverse complement
            "CCCCCCCCCCCCCCCCCCCCCCCCCCCCC",
            "ATG",  # shorter than the motif
        ]
        matches, thresholds = scan_sequences(sequences, motif_list, background)
        assert matches.shape == (4, 1)
        assert matches.toarray().ravel().tolist() == [True, True, False, False]
        assert np.isfinite(thresholds).all()

    def test_add_motifs(self, motif_adata):
        """Peak x motif matrix, GC content and motif metadata."""
        adata = motif_adata
        assert adata.varm["motifs"].shape == (adata.n_vars, 3)
        assert adata.var["sequence_length"].eq(500).all()
        assert adata.var["gc_percent"].between(20, 80).all()
        assert list(adata.uns["motifs"]["motif_names"]) == ["FOS::JUN", "GATA1", "CTCF"]

        ap1 = adata.varm["motifs"][:, 0].toarray().ravel() > 0
        planted = (adata.var["specific_group"] == "0").to_numpy()
        assert ap1[planted].all()
        assert ap1[~planted].mean() < 0.3

    def test_add_motifs_missing_genome(self, processed_adata, synthetic_outs, tmp_path):
        with pytest.raises(FileNotFoundError):
            af.tl.add_motifs(processed_adata, synthetic_outs["motifs"], tmp_path / "genome.fa", verbose=False)


class TestBackground:
    def test_match_background_gc(self, motif_adata):
        """Background is disjoint from the query and GC-matched."""
        query = motif_adata.var_names[:50]
        background = af.tl.match_background(motif_adata, query, n=100)

        assert len(background) == 100
        assert background.is_unique
        assert not set(background) & set(query)
        gc = motif_adata.var["gc_percent"]
        assert abs(gc[background].mean() - gc[query].mean()) < 5

    def test_match_background_boolean_query(self, motif_adata):
        mask = np.zeros(motif_adata.n_vars, dtype=bool)
        mask[:50] = True
        by_mask = af.tl.match_background(motif_adata, mask, n=100)
        by_name = af.tl.match_background(motif_adata, motif_adata.var_names[:50], n=100)
        assert by_mask.equals(by_name)

    def test_match_background_too_few(self, motif_adata):
        query = motif_adata.var_names[:50]
        candidates = motif_adata.var_names[50:80]
        with pytest.warns(UserWarning, match="eligible candidates"):
            background = af.tl.match_background(motif_adata, query, candidates=candidates, n=1000)
        assert set(background) <= set(candidates)

    def test_match_background_errors(self, motif_adata):
        unscanned = af.datasets.synthetic_atac(n_cells=20, n_peaks=40)
        with pytest.raises(ValueError, match="add_motifs"):
            af.tl.match_background(unscanned, unscanned.var_names[:5])
        with pytest.raises(ValueError, match="not in adata.var_names"):
            af.tl.match_background(motif_adata, ["chr9:1-2"])
        with pytest.raises(ValueError, match="Boolean query mask"):
            af.tl.match_background(motif_adata, np.ones(3, dtype=bool))

    @pytest.fixture
    def gc_adata(self):
        """Peaks 0-49 (query) and 50-174 with GC in 45-55, peaks 175-299 at GC 20."""
        adata = af.datasets.synthetic_atac(n_cells=20, n_peaks=300, random_state=0)
        rng = np.random.default_rng(0)
        adata.var["gc_percent"] = np.concatenate([rng.uniform(45, 55, 175), np.full(125, 20.0)])
        return adata

    def test_match_background_off_range_candidates(self, gc_adata):
        """Candidates outside the query GC range are never drawn."""
        gc = gc_adata.var["gc_percent"]
        query = gc_adata.var_names[:50]
        background = af.tl.match_background(gc_adata, query, n=80)

        assert len(background) == 80
        assert (gc[background] > 40).all()
        assert abs(gc[background].mean() - gc[query].mean()) < 1.5

    def test_match_background_single_query_peak(self, gc_adata):
        """One query peak is matched within half a GC unit."""
        gc_adata.var.loc[gc_adata.var_names[0], "gc_percent"] = 50.0
        background = af.tl.match_background(gc_adata, gc_adata.var_names[:1], n=5)

        assert len(background) == 5
        assert (np.abs(gc_adata.var.loc[background, "gc_percent"] - 50.0) <= 0.5).all()

    def test_match_background_no_candidate_in_range(self, gc_adata):
        with pytest.raises(ValueError, match="within the query range"):
            af.tl.match_background(gc_adata, gc_adata.var_names[:50], candidates=gc_adata.var_names[175:])

    def test_accessible_peaks(self, processed_adata):
        all_cells = af.tl.accessible_peaks(processed_adata, min_cells=10)
        b_only = af.tl.accessible_peaks(processed_adata, "B", min_cells=10)
        assert set(b_only) <= set(all_cells)
        n_open = np.asarray((processed_adata.X > 0).sum(axis=0)).ravel()
        assert len(all_cells) == int((n_open >= 10).sum())

        with pytest.raises(ValueError, match="No cells"):
            af.tl.accessible_peaks(processed_adata, "NK")


class TestFindMotifs:
    def test_hypergeometric_pvalues(self, motif_adata):
        """p-values are the upper hypergeometric tail for each motif."""
        query = motif_adata.var_names[:50]
        background = motif_adata.var_names[50:]
        results = af.tl.find_motifs(motif_adata, query, background)

        assert list(results.columns) == ENRICHMENT_COLUMNS
        assert validate_results(results, "motif_enrichment", strict=True)
        assert results.attrs == {"n_query": 50, "n_background": 550}
        for row in results.itertuples():
            expected = hypergeom.sf(row.observed - 1, 550, row.background, 50)
            assert row.pvalue == pytest.approx(expected)
        assert results["motif_name"].iloc[0] == "FOS::JUN"
        assert results["significant"].iloc[0]
        assert results["percent_observed"].iloc[0] == 100

    def test_default_background_is_all_peaks(self, motif_adata):
        results = af.tl.find_motifs(motif_adata, motif_adata.var_names[:50])
        assert results.attrs["n_background"] == motif_adata.n_vars

    def test_requires_motifs(self, processed_adata):
        with pytest.raises(ValueError, match="add_motifs"):
            af.tl.find_motifs(processed_adata, processed_adata.var_names[:5])

    def test_hypergeometric_enrichment_helper(self):
        pvalues = hypergeometric_enrichment([5, 0], 10, [20, 20], 100)
        assert pvalues[0] == pytest.approx(hypergeom.sf(4, 100, 20, 10))
        assert pvalues[1] == pytest.approx(1.0)


class TestDarMotifPrediction:
    def test_up_and_down(self, motif_adata, da_results):
        """AP-1, planted in B-specific peaks, is the top motif of B-gained DARs only."""
        up = af.tl.dar_motif_prediction(motif_adata, da_results, direction="up", verbose=False)
        down = af.tl.dar_motif_prediction(motif_adata, da_results, direction="down", verbose=False)

        assert up["motif_name"].iloc[0] == "FOS::JUN"
        assert up["significant"].iloc[0]
        assert up.attrs["direction"] == "up"
        assert up.attrs["n_dar"] == up.attrs["n_query"] >= 30

        ap1_down = down.set_index("motif_name").loc["FOS::JUN"]
        assert not ap1_down["significant"]

    def test_background_excludes_query(self, motif_adata, da_results):
        up = af.tl.dar_motif_prediction(motif_adata, da_results, direction="up", verbose=False)
        n_accessible = len(af.tl.accessible_peaks(motif_adata, ["B", "T"], min_cells=10))
        assert up.attrs["n_background"] <= n_accessible

    def test_select_dars(self, da_results):
        """Up DARs gain accessibility in the group, down DARs in the reference."""
        up = af.tl.select_dars(da_results, direction="up", pvalue_cutoff=0.005, min_pct=0.2)
        down = af.tl.select_dars(da_results, direction="down", pvalue_cutoff=0.005, min_pct=0.2)

        assert len(up) >= 30
        assert (up["log_fold_change"] > 0).all()
        assert (up["pct_group"] > 0.2).all()
        assert (down["log_fold_change"] < 0).all()
        assert (down["pct_reference"] > 0.2).all()
        assert (pd.concat([up, down])["pvalue"] < 0.005).all()
        assert af.tl.select_dars(da_results, pvalue_cutoff=0).empty

    def test_no_dars(self, motif_adata, da_results):
        with pytest.raises(ValueError, match="No differentially accessible peaks"):
            af.tl.dar_motif_prediction(motif_adata, da_results, pvalue_cutoff=0, verbose=False)

    def test_bad_input(self, motif_adata, da_results):
        with pytest.raises(ValueError, match="direction"):
            af.tl.dar_motif_prediction(motif_adata, da_results, direction="both", verbose=False)
        with pytest.raises(ValueError, match="differential_accessibility"):
            af.tl.dar_motif_prediction(motif_adata, da_results[["peak", "pvalue"]], verbose=False)


class TestMakeVolcano2Sets:
    def test_fisher_per_motif(self):
        a = _enrichment_table([40, 5, 10], n_query=50)
        b = _enrichment_table([2, 6, 0], n_query=60)

        result = af.tl.make_volcano_2_sets(a, b, label_a="up", label_b="down")

        validate_results(result, "motif_comparison", strict=True)
        row = result.set_index("motif").loc["M1"]
        odds, pvalue = fisher_exact([[40, 10], [2, 58]])
        assert row["odds_ratio"] == pytest.approx(odds)
        assert row["pvalue"] == pytest.approx(pvalue)
        assert row["log2_ratio"] == pytest.approx(np.log2(80.0 / (200.0 / 60)))
        assert row["enriched_in"] == "up"
        assert result["motif"].iloc[0] == "M1"
        assert result.attrs["label_a"] == "up"

    def test_motif_absent_from_one_set(self):
        """A zero count gives an infinite log2 ratio."""
        a = _enrichment_table([40, 5, 10], n_query=50)
        b = _enrichment_table([2, 6, 0], n_query=60)
        result = af.tl.make_volcano_2_sets(a, b).set_index("motif")
        assert np.isposinf(result.loc["M3", "log2_ratio"])

        smoothed = af.tl.make_volcano_2_sets(a, b, pseudocount=1.0).set_index("motif")
        assert np.isfinite(smoothed.loc["M3", "log2_ratio"])

    def test_not_significant_is_ns(self):
        a = _enrichment_table([5, 5, 5], n_query=50)
        b = _enrichment_table([6, 5, 4], n_query=50)
        result = af.tl.make_volcano_2_sets(a, b)
        assert (result["enriched_in"] == "ns").all()

    def test_drops_unobserved_and_handles_saturation(self):
        """Motifs seen in neither set are dropped; motifs in every peak get odds 1."""
        a = _enrichment_table([0, 50, 3], n_query=50)
        b = _enrichment_table([0, 50, 3], n_query=50)
        result = af.tl.make_volcano_2_sets(a, b).set_index("motif")
        assert "M1" not in result.index
        assert result.loc["M2", "odds_ratio"] == 1.0
        assert result.loc["M2", "pvalue"] == pytest.approx(1.0)

    def test_errors(self):
        a = _enrichment_table([1, 2, 3], n_query=50)
        no_attrs = a.copy()
        no_attrs.attrs = {}
        with pytest.raises(ValueError, match="n_query"):
            af.tl.make_volcano_2_sets(no_attrs, a)
        other = _enrichment_table([1, 2, 3], n_query=50, motifs=("X1", "X2", "X3"))
        with pytest.raises(ValueError, match="share no motifs"):
            af.tl.make_volcano_2_sets(a, other)

    def test_fisher_compare_counts_helper(self):
        odds, pvalue = fisher_compare_counts([10, 0], 20, [2, 0], 20)
        expected = fisher_exact([[10, 10], [2, 18]])
        assert odds[0] == pytest.approx(expected[0])
        assert pvalue[0] == pytest.approx(expected[1])
        assert pvalue[1] == pytest.approx(1.0)
