"""Shared error types, data containers and result types for clustered diagnostic accuracy."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


METRICS = ("sensitivity", "specificity", "ppv", "npv")

_LABELS = {
    "sensitivity": "Sensitivity",
    "specificity": "Specificity",
    "ppv": "PPV",
    "npv": "NPV",
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ClusterDiagnosticError(ValueError):
    """Base class for errors raised by the clustered accuracy estimators."""


class DataShapeError(ClusterDiagnosticError):
    """Input table is ragged, incomplete, unbalanced or not binary."""


class UndefinedMetricError(ClusterDiagnosticError):
    """A point estimate has a zero denominator."""

    def __init__(self, metric: str, message: str) -> None:
        super().__init__(message)
        self.metric = metric


class UndefinedVarianceError(ClusterDiagnosticError):
    """A variance estimate is degenerate (zero denominator or non-finite)."""

    def __init__(self, metric: str, message: str) -> None:
        super().__init__(message)
        self.metric = metric


# ---------------------------------------------------------------------------
# Assembled data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Observation:
    """One rater's binary result on one subject."""

    subject_id: Hashable
    rater_id: Hashable
    result: int  # 1 = test positive
    gold: int  # subject's gold-standard label

    @property
    def tp(self) -> int:
        return self.result * self.gold

    @property
    def tn(self) -> int:
        return (1 - self.result) * (1 - self.gold)


@dataclass(frozen=True)
class ClusteredData:
    """Balanced subject × rater panel of binary results.

    Attributes
    ----------
    subject_ids : tuple
        Subject identifiers, one per row of ``results``.
    rater_ids : tuple
        Rater identifiers, one per column of ``results``.
    gold : array of int, shape ``(n,)``
        Gold-standard label per subject (1 = condition present).
    results : array of int, shape ``(n, J)``
        Test result per subject and rater (1 = test positive).

    Arrays are read-only.
    """

    subject_ids: tuple
    rater_ids: tuple
    gold: NDArray[np.integer]
    results: NDArray[np.integer]

    @property
    def n_subjects(self) -> int:
        return int(self.results.shape[0])

    @property
    def n_raters(self) -> int:
        return int(self.results.shape[1])

    @property
    def n_obs(self) -> int:
        return self.n_subjects * self.n_raters

    @property
    def diseased(self) -> NDArray[np.integer]:
        """Gold label replicated across each subject's raters, shape ``(n, J)``."""
        return np.broadcast_to(self.gold[:, None], self.results.shape)

    @property
    def tp(self) -> NDArray[np.integer]:
        return self.results * self.diseased

    @property
    def tn(self) -> NDArray[np.integer]:
        return (1 - self.results) * (1 - self.diseased)

    def observations(self) -> list[Observation]:
        """Flat list of all ``n * J`` observations, subject-major."""
        return [
            obs
            for group in self.groups().values()
            for obs in group
        ]

    def groups(self) -> dict[Hashable, tuple[Observation, ...]]:
        """Observations grouped by subject id."""
        out: dict[Hashable, tuple[Observation, ...]] = {}
        for i, sid in enumerate(self.subject_ids):
            label = int(self.gold[i])
            out[sid] = tuple(
                Observation(
                    subject_id=sid,
                    rater_id=rid,
                    result=int(self.results[i, j]),
                    gold=label,
                )
                for j, rid in enumerate(self.rater_ids)
            )
        return out


@dataclass(frozen=True)
class AggregateCounts:
    """Scalar totals over all ``n_obs = n_subjects * n_raters`` observations."""

    total_tp: int
    total_tn: int
    total_diseased: int  # Σ d over observations (d replicated per rater)
    total_non_diseased: int
    total_test_positive: int
    total_test_negative: int
    n_subjects: int
    n_raters: int
    n_obs: int


@dataclass(frozen=True)
class PointEstimates:
    """Se, Sp, PPV and NPV point estimates."""

    sensitivity: float
    specificity: float
    ppv: float
    npv: float

    def as_dict(self) -> dict[str, float]:
        return {m: getattr(self, m) for m in METRICS}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricEstimate:
    """Point estimate, variance and Wald CI for one metric.

    ``variance`` is on the cluster-count scale: ``variance = n_clusters * se ** 2``,
    where clusters are subjects for the cluster method and single
    observations for the naive method.  Compare ``se`` across methods,
    not ``variance``.

    The CI is not clipped to [0, 1]; bounds outside that range are a
    property of the normal approximation, not an error.
    """

    name: str
    estimate: float
    variance: float
    se: float
    ci_lower: float
    ci_upper: float

    @property
    def ci(self) -> tuple[float, float]:
        return self.ci_lower, self.ci_upper

    def as_tuple(self) -> tuple[float, float, float]:
        """``(estimate, lower, upper)``."""
        return self.estimate, self.ci_lower, self.ci_upper


@dataclass(frozen=True)
class ClusteredAccuracyResult:
    """Se, Sp, PPV and NPV with confidence intervals.

    ``method`` is ``'cluster'`` when variances account for within-subject
    correlation, ``'naive'`` when every observation is treated as
    independent.
    """

    sensitivity: MetricEstimate
    specificity: MetricEstimate
    ppv: MetricEstimate
    npv: MetricEstimate
    counts: AggregateCounts
    conf_level: float
    method: str

    def metrics(self) -> tuple[MetricEstimate, ...]:
        return tuple(getattr(self, m) for m in METRICS)

    def as_tuples(self) -> dict[str, tuple[float, float, float]]:
        """Map metric name to ``(estimate, lower, upper)``."""
        return {m.name: m.as_tuple() for m in self.metrics()}

    def summary(self) -> str:
        """Human-readable summary."""
        c = self.counts
        lines = [
            "Clustered Diagnostic Accuracy",
            "=" * 40,
            f"Subjects      : {c.n_subjects}",
            f"Raters        : {c.n_raters}",
            f"Observations  : {c.n_obs}",
            f"Variance      : {self.method}",
        ]
        for m in self.metrics():
            lines.append(
                f"{_LABELS[m.name]:<14}: {m.estimate:.4f}  "
                f"({self.conf_level:.0%} CI: {m.ci_lower:.4f}–{m.ci_upper:.4f})"
            )
        return "\n".join(lines)


@dataclass(frozen=True)
class BatchClusteredResult:
    """Cluster-adjusted accuracy for a panel of M binary tests.

    Every array has shape ``(n_tests, 4)`` with columns ordered as
    ``metrics``.
    """

    estimate: NDArray[np.floating]
    variance: NDArray[np.floating]
    se: NDArray[np.floating]
    ci_lower: NDArray[np.floating]
    ci_upper: NDArray[np.floating]
    n_tests: int
    conf_level: float
    metrics: tuple[str, ...] = METRICS

    def column(self, metric: str) -> NDArray[np.floating]:
        """Point estimates of one metric across all tests."""
        return self.estimate[:, self.metrics.index(metric)]
