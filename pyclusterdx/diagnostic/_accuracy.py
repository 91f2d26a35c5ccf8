"""Sensitivity, specificity and predictive values for multi-rater panels.

Point estimates pool all ``N = n·J`` observations; confidence intervals
come from the subject-level cluster variance in ``_variance`` (or the
naive independent-observation variance, for comparison).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Sequence

from numpy.typing import ArrayLike

from pyclusterdx.diagnostic._assemble import aggregate_counts, assemble
from pyclusterdx.diagnostic._common import (
    AggregateCounts,
    ClusteredAccuracyResult,
    ClusteredData,
    MetricEstimate,
    PointEstimates,
    UndefinedMetricError,
)
from pyclusterdx.diagnostic._variance import (
    _critical_value,
    cluster_variance,
    naive_variance,
)

logger = logging.getLogger("pyclusterdx.diagnostic.accuracy")


# ---------------------------------------------------------------------------
# Point estimates
# ---------------------------------------------------------------------------

def _ratio(num: int, den: int, metric: str, den_name: str) -> float:
    if den == 0:
        raise UndefinedMetricError(metric, f"{metric} undefined: {den_name} is zero")
    return num / den


def point_estimates(counts: AggregateCounts) -> PointEstimates:
    """Se, Sp, PPV and NPV from aggregate counts.

    Raises
    ------
    UndefinedMetricError
        If the diseased, non-diseased, test-positive or test-negative
        total is zero.
    """
    return PointEstimates(
        sensitivity=_ratio(counts.total_tp, counts.total_diseased,
                           "sensitivity", "diseased count"),
        specificity=_ratio(counts.total_tn, counts.total_non_diseased,
                           "specificity", "non-diseased count"),
        ppv=_ratio(counts.total_tp, counts.total_test_positive,
                   "ppv", "test-positive count"),
        npv=_ratio(counts.total_tn, counts.total_test_negative,
                   "npv", "test-negative count"),
    )


# ---------------------------------------------------------------------------
# Estimation pipeline
# ---------------------------------------------------------------------------

def _estimate(
    data: ClusteredData,
    conf_level: float,
    variance: Callable[..., dict[str, MetricEstimate]],
    method: str,
) -> ClusteredAccuracyResult:
    _critical_value(conf_level)  # validate before any work
    counts = aggregate_counts(data)
    estimates = point_estimates(counts)
    metrics = variance(data, estimates, conf_level=conf_level)
    logger.debug("%s estimates: %s", method, estimates)
    return ClusteredAccuracyResult(
        sensitivity=metrics["sensitivity"],
        specificity=metrics["specificity"],
        ppv=metrics["ppv"],
        npv=metrics["npv"],
        counts=counts,
        conf_level=conf_level,
        method=method,
    )


def clustered_accuracy_from_data(
    data: ClusteredData, *, conf_level: float = 0.95,
) -> ClusteredAccuracyResult:
    """Cluster-adjusted accuracy for an already assembled panel."""
    return _estimate(data, conf_level, cluster_variance, "cluster")


def naive_accuracy_from_data(
    data: ClusteredData, *, conf_level: float = 0.95,
) -> ClusteredAccuracyResult:
    """Independent-observation accuracy for an already assembled panel."""
    return _estimate(data, conf_level, naive_variance, "naive")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def clustered_accuracy(
    gold: ArrayLike,
    results: ArrayLike,
    *,
    subject_ids: Sequence[Hashable] | None = None,
    rater_ids: Sequence[Hashable] | None = None,
    conf_level: float = 0.95,
) -> ClusteredAccuracyResult:
    """Se, Sp, PPV and NPV with subject-clustered confidence intervals.

    Parameters
    ----------
    gold : array of int, shape ``(n,)``
        Gold-standard label per subject (1 = condition present).
    results : array of int, shape ``(n, J)``
        Dichotomized result of each of ``J`` raters on each subject.
    subject_ids, rater_ids : sequence or None
        Optional identifiers for rows and columns.
    conf_level : float
        Confidence level.  The default 0.95 uses the critical value 1.96.

    Returns
    -------
    ClusteredAccuracyResult

    Raises
    ------
    DataShapeError
        If the panel is ragged, incomplete or not binary.
    UndefinedMetricError
        If a metric's denominator is zero.
    UndefinedVarianceError
        If a variance is degenerate.

    Notes
    -----
    CIs are Wald intervals on the normal approximation and are not
    clipped to [0, 1].  No small-sample (Student-t) correction is made,
    so intervals may be too narrow when there are few subjects; with a
    single subject every variance is zero.

    Examples
    --------
    >>> r = clustered_accuracy([1, 0], [[1, 1], [0, 0]])
    >>> r.sensitivity.as_tuple()
    (1.0, 1.0, 1.0)
    """
    data = assemble(gold, results, subject_ids=subject_ids, rater_ids=rater_ids)
    return clustered_accuracy_from_data(data, conf_level=conf_level)


def naive_accuracy(
    gold: ArrayLike,
    results: ArrayLike,
    *,
    subject_ids: Sequence[Hashable] | None = None,
    rater_ids: Sequence[Hashable] | None = None,
    conf_level: float = 0.95,
) -> ClusteredAccuracyResult:
    """Same as :func:`clustered_accuracy` but ignoring clustering.

    Every observation is treated as independent, so the variance of each
    metric is ``p̂(1 − p̂) / denominator``.  Useful to gauge how much
    within-subject correlation widens the intervals.
    """
    data = assemble(gold, results, subject_ids=subject_ids, rater_ids=rater_ids)
    return naive_accuracy_from_data(data, conf_level=conf_level)
