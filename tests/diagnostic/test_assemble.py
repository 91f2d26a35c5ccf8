"""Tests for panel assembly and aggregate counts."""

import numpy as np
import pytest

from pyclusterdx.diagnostic import (
    AggregateCounts,
    ClusteredData,
    DataShapeError,
    Observation,
    aggregate_counts,
    assemble,
    assemble_long,
)


@pytest.fixture
def small_panel():
    """3 subjects (2 diseased) read by 2 raters."""
    gold = [1, 1, 0]
    results = [[1, 1], [1, 0], [0, 1]]
    return gold, results


# ---------------------------------------------------------------------------
# Wide form
# ---------------------------------------------------------------------------

class TestAssemble:
    """Wide subject x rater input."""

    def test_returns_data(self, small_panel):
        data = assemble(*small_panel)
        assert isinstance(data, ClusteredData)

    def test_shape(self, small_panel):
        data = assemble(*small_panel)
        assert data.n_subjects == 3
        assert data.n_raters == 2
        assert data.n_obs == 6

    def test_default_ids(self, small_panel):
        data = assemble(*small_panel)
        assert data.subject_ids == (0, 1, 2)
        assert data.rater_ids == (0, 1)

    def test_custom_ids(self, small_panel):
        data = assemble(*small_panel, subject_ids=["a", "b", "c"], rater_ids=["r1", "r2"])
        assert data.subject_ids == ("a", "b", "c")
        assert data.rater_ids == ("r1", "r2")

    def test_tp_tn(self, small_panel):
        data = assemble(*small_panel)
        np.testing.assert_array_equal(data.tp, [[1, 1], [1, 0], [0, 0]])
        np.testing.assert_array_equal(data.tn, [[0, 0], [0, 0], [1, 0]])

    def test_gold_replicated_per_rater(self, small_panel):
        data = assemble(*small_panel)
        np.testing.assert_array_equal(data.diseased, [[1, 1], [1, 1], [0, 0]])

    def test_float_zero_one_accepted(self):
        data = assemble([1.0, 0.0], [[1.0, 0.0], [0.0, 0.0]])
        assert data.results.dtype.kind == "i"

    def test_arrays_read_only(self, small_panel):
        data = assemble(*small_panel)
        with pytest.raises(ValueError):
            data.results[0, 0] = 0
        with pytest.raises(ValueError):
            data.gold[0] = 0

    def test_input_not_aliased(self):
        results = np.array([[1, 0], [0, 1]])
        data = assemble([1, 0], results)
        results[0, 0] = 0
        assert data.results[0, 0] == 1


class TestGroups:
    """Observation views of the panel."""

    def test_observations_flat(self, small_panel):
        data = assemble(*small_panel)
        obs = data.observations()
        assert len(obs) == data.n_obs
        assert all(isinstance(o, Observation) for o in obs)

    def test_groups_by_subject(self, small_panel):
        data = assemble(*small_panel, subject_ids=["a", "b", "c"])
        groups = data.groups()
        assert list(groups) == ["a", "b", "c"]
        assert all(len(g) == 2 for g in groups.values())

    def test_observation_indicators(self, small_panel):
        data = assemble(*small_panel)
        obs = data.groups()[2]
        assert [o.result for o in obs] == [0, 1]
        assert [o.tn for o in obs] == [1, 0]
        assert [o.tp for o in obs] == [0, 0]
        assert all(o.gold == 0 for o in obs)

    def test_indicators_sum_to_counts(self, small_panel):
        data = assemble(*small_panel)
        counts = aggregate_counts(data)
        obs = data.observations()
        assert sum(o.tp for o in obs) == counts.total_tp
        assert sum(o.tn for o in obs) == counts.total_tn


# ---------------------------------------------------------------------------
# Long form
# ---------------------------------------------------------------------------

class TestAssembleLong:
    """Long (one row per observation) input."""

    def test_matches_wide(self, small_panel):
        gold, results = small_panel
        sids, rids, vals = [], [], []
        for i, row in enumerate(results):
            for j, v in enumerate(row):
                sids.append(f"s{i}")
                rids.append(f"r{j}")
                vals.append(v)
        gold_map = {f"s{i}": g for i, g in enumerate(gold)}

        long_data = assemble_long(sids, rids, vals, gold_map)
        wide_data = assemble(gold, results)
        np.testing.assert_array_equal(long_data.results, wide_data.results)
        np.testing.assert_array_equal(long_data.gold, wide_data.gold)
        assert long_data.subject_ids == ("s0", "s1", "s2")
        assert long_data.rater_ids == ("r0", "r1")

    def test_order_of_rows_irrelevant(self):
        data = assemble_long(
            ["b", "a", "b", "a"],
            ["r2", "r1", "r1", "r2"],
            [1, 0, 0, 1],
            {"a": 0, "b": 1},
        )
        assert data.subject_ids == ("b", "a")
        assert data.rater_ids == ("r2", "r1")
        np.testing.assert_array_equal(data.results, [[1, 0], [1, 0]])

    def test_missing_pair(self):
        with pytest.raises(DataShapeError, match="unbalanced"):
            assemble_long(["a", "a", "b"], ["r1", "r2", "r1"], [1, 0, 1], {"a": 1, "b": 0})

    def test_duplicate_pair(self):
        with pytest.raises(DataShapeError, match="duplicate"):
            assemble_long(["a", "a"], ["r1", "r1"], [1, 0], {"a": 1})

    def test_equal_ids_are_one_subject(self):
        """1 and True compare equal, so they key the same subject."""
        with pytest.raises(DataShapeError, match="duplicate"):
            assemble_long([1, True], ["r1", "r1"], [1, 0], {1: 1})

    def test_missing_gold(self):
        with pytest.raises(DataShapeError, match="gold-standard"):
            assemble_long(["a", "b"], ["r1", "r1"], [1, 0], {"a": 1})

    def test_extra_gold(self):
        with pytest.raises(DataShapeError, match="without observations"):
            assemble_long(["a"], ["r1"], [1], {"a": 1, "z": 0})

    def test_length_mismatch(self):
        with pytest.raises(DataShapeError, match="equal length"):
            assemble_long(["a", "b"], ["r1"], [1, 0], {"a": 1, "b": 0})

    def test_missing_result(self):
        with pytest.raises(DataShapeError, match="missing result"):
            assemble_long(["a"], ["r1"], [np.nan], {"a": 1})


# ---------------------------------------------------------------------------
# Aggregate counts
# ---------------------------------------------------------------------------

class TestAggregateCounts:
    """Totals over all observations."""

    def test_returns_counts(self, small_panel):
        assert isinstance(aggregate_counts(assemble(*small_panel)), AggregateCounts)

    def test_values(self, small_panel):
        c = aggregate_counts(assemble(*small_panel))
        assert c.total_tp == 3
        assert c.total_tn == 1
        assert c.total_diseased == 4
        assert c.total_non_diseased == 2
        assert c.total_test_positive == 4
        assert c.total_test_negative == 2
        assert (c.n_subjects, c.n_raters, c.n_obs) == (3, 2, 6)

    def test_marginals_partition_observations(self, small_panel):
        c = aggregate_counts(assemble(*small_panel))
        assert c.total_diseased + c.total_non_diseased == c.n_obs
        assert c.total_test_positive + c.total_test_negative == c.n_obs
        assert c.n_subjects * c.n_raters == c.n_obs

    def test_diseased_replicated_across_raters(self):
        """One diseased subject with 2 raters contributes 2 diseased observations."""
        c = aggregate_counts(assemble([1, 0], [[1, 1], [0, 0]]))
        assert c.total_diseased == 2
        assert c.total_tp == 2
        assert c.total_tn == 2


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestAssembleValidation:
    """Input contract enforcement."""

    def test_ragged_rows(self):
        with pytest.raises(DataShapeError, match="rectangular"):
            assemble([1, 0], [[1, 0], [1]])

    def test_missing_value(self):
        with pytest.raises(DataShapeError, match="missing"):
            assemble([1, 0], [[1, np.nan], [0, 1]])

    def test_none_value(self):
        with pytest.raises(DataShapeError, match="missing"):
            assemble([1, 0], [[1, None], [0, 1]])

    def test_missing_gold(self):
        with pytest.raises(DataShapeError, match="gold has 1 missing"):
            assemble([1, np.nan], [[1, 0], [0, 1]])

    def test_non_binary_result(self):
        with pytest.raises(DataShapeError, match="0/1"):
            assemble([1, 0], [[1, 2], [0, 1]])

    def test_non_binary_gold(self):
        with pytest.raises(DataShapeError, match="0/1"):
            assemble([1, 460], [[1, 0], [0, 1]])

    def test_gold_not_1d(self):
        with pytest.raises(DataShapeError, match="1-D"):
            assemble([[1], [0]], [[1, 0], [0, 1]])

    def test_results_not_2d(self):
        with pytest.raises(DataShapeError, match="2-D"):
            assemble([1, 0], [1, 0])

    def test_length_mismatch(self):
        with pytest.raises(DataShapeError, match="gold length"):
            assemble([1, 0, 1], [[1, 0], [0, 1]])

    def test_no_subjects(self):
        with pytest.raises(DataShapeError, match="subject"):
            assemble(np.array([]), np.empty((0, 3)))

    def test_no_raters(self):
        with pytest.raises(DataShapeError, match="rater"):
            assemble([1, 0], np.empty((2, 0)))

    def test_duplicate_subject_ids(self):
        with pytest.raises(DataShapeError, match="unique"):
            assemble([1, 0], [[1, 0], [0, 1]], subject_ids=["a", "a"])

    def test_unhashable_ids(self):
        with pytest.raises(DataShapeError, match="hashable"):
            assemble([1, 0], [[1, 0], [0, 1]], subject_ids=[[1], [2]])

    def test_wrong_number_of_rater_ids(self):
        with pytest.raises(DataShapeError, match="rater_ids"):
            assemble([1, 0], [[1, 0], [0, 1]], rater_ids=["r1"])

    def test_is_value_error(self):
        """DataShapeError is a ValueError like the rest of the library's input errors."""
        with pytest.raises(ValueError):
            assemble([1, 0], [[1, 2], [0, 1]])
