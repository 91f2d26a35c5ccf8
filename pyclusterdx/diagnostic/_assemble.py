"""Assemble subject × rater binary results into a balanced clustered panel.

Accepts either a wide table (one row per subject, one column per rater)
or long records (one row per observation), enforces the balanced-panel
contract (every subject read by the same ``J`` raters, no missing values,
binary values only) and computes the aggregate counts used by the
estimators.  Thresholding of continuous readings happens upstream.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping, Sequence

import numpy as np
from numpy.typing import ArrayLike

from pyclusterdx.diagnostic._common import (
    AggregateCounts,
    ClusteredData,
    DataShapeError,
)

logger = logging.getLogger("pyclusterdx.diagnostic.assemble")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _as_float_array(values: ArrayLike, name: str) -> np.ndarray:
    """Convert to float64, mapping ragged input to DataShapeError."""
    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise DataShapeError(f"{name} is not a rectangular numeric table: {exc}") from exc
    return arr


def _check_binary(arr: np.ndarray, name: str) -> np.ndarray:
    """Reject missing and non-0/1 entries; return an int8 copy."""
    if np.isnan(arr).any():
        n_missing = int(np.isnan(arr).sum())
        raise DataShapeError(f"{name} has {n_missing} missing value(s)")
    bad = ~np.isin(arr, (0.0, 1.0))
    if bad.any():
        offending = np.unique(arr[bad])[:5]
        raise DataShapeError(
            f"{name} must be dichotomized to 0/1, got values {offending.tolist()}"
        )
    return arr.astype(np.int8)


def _check_ids(ids: Sequence[Hashable] | None, size: int, name: str) -> tuple:
    if ids is None:
        return tuple(range(size))
    ids = tuple(ids)
    if len(ids) != size:
        raise DataShapeError(f"expected {size} {name}, got {len(ids)}")
    try:
        n_unique = len(set(ids))
    except TypeError as exc:
        raise DataShapeError(f"{name} must be hashable: {exc}") from exc
    if n_unique != size:
        raise DataShapeError(f"{name} must be unique")
    return ids


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def assemble(
    gold: ArrayLike,
    results: ArrayLike,
    *,
    subject_ids: Sequence[Hashable] | None = None,
    rater_ids: Sequence[Hashable] | None = None,
) -> ClusteredData:
    """Build a clustered panel from a wide subject × rater table.

    Parameters
    ----------
    gold : array of int, shape ``(n,)``
        Gold-standard label per subject (1 = condition present).
    results : array of int, shape ``(n, J)``
        Dichotomized test result per subject (rows) and rater (columns).
    subject_ids : sequence or None
        Identifiers for the rows.  Defaults to ``0..n-1``.
    rater_ids : sequence or None
        Identifiers for the columns.  Defaults to ``0..J-1``.

    Returns
    -------
    ClusteredData

    Raises
    ------
    DataShapeError
        If the table is ragged or empty, has missing entries, contains
        values other than 0/1, or does not match ``gold`` in length.
    """
    gold_arr = _as_float_array(gold, "gold")
    res_arr = _as_float_array(results, "results")

    if gold_arr.ndim != 1:
        raise DataShapeError(f"gold must be 1-D, got shape {gold_arr.shape}")
    if res_arr.ndim != 2:
        raise DataShapeError(
            f"results must be 2-D (n_subjects, n_raters), got shape {res_arr.shape}"
        )
    n, J = res_arr.shape
    if gold_arr.shape[0] != n:
        raise DataShapeError(
            f"gold length {gold_arr.shape[0]} != results rows {n}"
        )
    if n == 0:
        raise DataShapeError("need at least one subject")
    if J == 0:
        raise DataShapeError("need at least one rater per subject")

    gold_i = _check_binary(gold_arr, "gold")
    res_i = _check_binary(res_arr, "results")

    data = ClusteredData(
        subject_ids=_check_ids(subject_ids, n, "subject_ids"),
        rater_ids=_check_ids(rater_ids, J, "rater_ids"),
        gold=_freeze(gold_i),
        results=_freeze(res_i),
    )
    logger.debug("assembled panel: %d subjects x %d raters", n, J)
    return data


def assemble_long(
    subject_ids: Sequence[Hashable],
    rater_ids: Sequence[Hashable],
    results: ArrayLike,
    gold: Mapping[Hashable, int],
) -> ClusteredData:
    """Build a clustered panel from long records (one row per observation).

    Parameters
    ----------
    subject_ids, rater_ids : sequence
        Subject and rater identifier of each observation.
    results : array of int
        Dichotomized result of each observation.
    gold : mapping
        Gold-standard label per subject id.

    Returns
    -------
    ClusteredData
        Subjects and raters are ordered by first appearance.  Ids are
        matched by dict key equality, so ``1``, ``1.0`` and ``True`` name
        the same subject (or rater); mixing them shows up as a duplicate
        observation.

    Raises
    ------
    DataShapeError
        If lengths differ, a (subject, rater) pair repeats, a subject
        lacks one of the raters, or ``gold`` does not cover exactly the
        observed subjects.
    """
    subject_ids = list(subject_ids)
    rater_ids = list(rater_ids)
    res_arr = _as_float_array(results, "results")
    if res_arr.ndim != 1:
        raise DataShapeError(f"results must be 1-D in long form, got shape {res_arr.shape}")
    if not (len(subject_ids) == len(rater_ids) == res_arr.shape[0]):
        raise DataShapeError(
            "subject_ids, rater_ids and results must have equal length "
            f"(got {len(subject_ids)}, {len(rater_ids)}, {res_arr.shape[0]})"
        )
    if res_arr.shape[0] == 0:
        raise DataShapeError("need at least one observation")

    subjects = list(dict.fromkeys(subject_ids))
    raters = list(dict.fromkeys(rater_ids))
    row = {s: i for i, s in enumerate(subjects)}
    col = {r: j for j, r in enumerate(raters)}

    wide = np.full((len(subjects), len(raters)), np.nan)
    for sid, rid, value in zip(subject_ids, rater_ids, res_arr):
        i, j = row[sid], col[rid]
        if not np.isnan(wide[i, j]):
            raise DataShapeError(f"duplicate observation for subject {sid!r}, rater {rid!r}")
        if np.isnan(value):
            raise DataShapeError(f"missing result for subject {sid!r}, rater {rid!r}")
        wide[i, j] = value

    holes = np.argwhere(np.isnan(wide))
    if holes.size:
        i, j = holes[0]
        raise DataShapeError(
            f"unbalanced panel: {len(holes)} missing (subject, rater) pair(s), "
            f"e.g. subject {subjects[i]!r} has no result from rater {raters[j]!r}"
        )

    missing_gold = [s for s in subjects if s not in gold]
    if missing_gold:
        raise DataShapeError(f"no gold-standard label for subject(s) {missing_gold[:5]!r}")
    extra_gold = [s for s in gold if s not in row]
    if extra_gold:
        raise DataShapeError(f"gold label given for subject(s) without observations {extra_gold[:5]!r}")

    gold_vec = [gold[s] for s in subjects]
    return assemble(gold_vec, wide, subject_ids=subjects, rater_ids=raters)


def aggregate_counts(data: ClusteredData) -> AggregateCounts:
    """Totals over all observations of an assembled panel."""
    n, J = data.n_subjects, data.n_raters
    n_obs = n * J
    n_diseased_subjects = int(data.gold.sum())
    test_pos = int(data.results.sum())

    counts = AggregateCounts(
        total_tp=int(data.tp.sum()),
        total_tn=int(data.tn.sum()),
        total_diseased=J * n_diseased_subjects,
        total_non_diseased=J * (n - n_diseased_subjects),
        total_test_positive=test_pos,
        total_test_negative=n_obs - test_pos,
        n_subjects=n,
        n_raters=J,
        n_obs=n_obs,
    )
    logger.debug("aggregate counts: %s", counts)
    return counts
