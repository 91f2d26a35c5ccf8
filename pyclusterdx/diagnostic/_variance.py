"""Cluster-adjusted (linearized) variance for Se, Sp, PPV and NPV.

Each subject is one cluster.  For every metric the subject's ``J``
observations are reduced to a single linearized residual; the sum of
squared residuals across subjects gives a sandwich-type variance that
stays valid when ratings within a subject are correlated.

Se and Sp are ratios whose denominators are fixed by the gold standard,
so the residual is the subject's summed deviation from the estimate
within the relevant marginal group.  PPV and NPV have random numerator
and denominator; their residuals come from a first-order Taylor
expansion of ``A/B`` around ``(â, b̂)``::

    ε_ij = a_ij − â − p̂·(b_ij − b̂),   r_i = Σ_j ε_ij / b̂

Treating every observation as its own cluster gives the naive
(independent-observation) variance ``p̂(1 − p̂)/denominator``.

References:
    - Rao & Scott (1992), Biometrics 48:577–585 (ratio estimators for
      clustered binary data).
    - Genders et al. (2012), Radiology 265:910–916 (clustered diagnostic
      accuracy).
"""

from __future__ import annotations

import logging
import math

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pyclusterdx.diagnostic._common import (
    METRICS,
    ClusteredAccuracyResult,
    ClusteredData,
    MetricEstimate,
    PointEstimates,
    UndefinedVarianceError,
)

logger = logging.getLogger("pyclusterdx.diagnostic.variance")

# Conventional two-decimal normal quantile at 95%.
_Z_95 = 1.96


# ---------------------------------------------------------------------------
# Critical value and Wald interval
# ---------------------------------------------------------------------------

def _critical_value(conf_level: float) -> float:
    """Two-sided normal critical value; exactly 1.96 at 95%."""
    if not 0 < conf_level < 1:
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")
    if conf_level == 0.95:
        return _Z_95
    return float(stats.norm.ppf((1 + conf_level) / 2))


def wald_ci(
    estimate: float, se: float, *, conf_level: float = 0.95,
) -> tuple[float, float]:
    """Wald interval ``estimate ± z·se``.

    Not clipped to [0, 1].
    """
    z = _critical_value(conf_level)
    return estimate - z * se, estimate + z * se


# ---------------------------------------------------------------------------
# Per-metric linearized variance
# ---------------------------------------------------------------------------

def _ratio_variance(
    x: NDArray[np.floating],
    g: NDArray[np.floating],
    p_hat: float,
    metric: str,
) -> float:
    """Variance of ``Σ x·g / Σ g`` where ``g`` is fixed by the gold standard.

    ``x`` and ``g`` have shape ``(n_clusters, cluster_size)``.
    """
    n = x.shape[0]
    marginal_total = float(g.sum())
    if n == 0 or marginal_total == 0:
        raise UndefinedVarianceError(
            metric, f"{metric} variance undefined: marginal total is zero"
        )
    residuals = ((x - p_hat) * g).sum(axis=1)
    ss = float(np.sum(residuals ** 2))
    var = n / marginal_total ** 2 * ss
    logger.debug("%s: n=%d marginal=%g SS=%g var=%g", metric, n, marginal_total, ss, var)
    return var


def _taylor_variance(
    a: NDArray[np.floating],
    b: NDArray[np.floating],
    p_hat: float,
    metric: str,
) -> float:
    """Delta-method variance of ``Σ a / Σ b`` with both sums random."""
    n, J = a.shape
    n_obs = n * J
    if n_obs == 0:
        raise UndefinedVarianceError(metric, f"{metric} variance undefined: no observations")
    a_hat = float(a.sum()) / n_obs
    b_hat = float(b.sum()) / n_obs
    if b_hat == 0:
        raise UndefinedVarianceError(
            metric, f"{metric} variance undefined: denominator mean is zero"
        )
    eps = a - a_hat - p_hat * (b - b_hat)
    residuals = eps.sum(axis=1) / b_hat
    ss = float(np.sum(residuals ** 2))
    var = n / n_obs ** 2 * ss
    logger.debug("%s: n=%d b_hat=%g SS=%g var=%g", metric, n, b_hat, ss, var)
    return var


def _linearized_estimates(
    results: NDArray[np.integer],
    diseased: NDArray[np.integer],
    estimates: PointEstimates,
    conf_level: float,
) -> dict[str, MetricEstimate]:
    """Variance, SE and Wald CI for all four metrics.

    Rows of ``results`` / ``diseased`` are the clusters.
    """
    z = _critical_value(conf_level)
    x = np.asarray(results, dtype=np.float64)
    d = np.asarray(diseased, dtype=np.float64)
    n = x.shape[0]

    variances = {
        "sensitivity": _ratio_variance(x, d, estimates.sensitivity, "sensitivity"),
        "specificity": _ratio_variance(1 - x, 1 - d, estimates.specificity, "specificity"),
        "ppv": _taylor_variance(x * d, x, estimates.ppv, "ppv"),
        "npv": _taylor_variance((1 - x) * (1 - d), 1 - x, estimates.npv, "npv"),
    }

    out: dict[str, MetricEstimate] = {}
    for metric in METRICS:
        var = variances[metric]
        if not math.isfinite(var):
            raise UndefinedVarianceError(metric, f"{metric} variance is not finite ({var})")
        p_hat = getattr(estimates, metric)
        se = math.sqrt(var / n)
        out[metric] = MetricEstimate(
            name=metric,
            estimate=float(p_hat),
            variance=float(var),
            se=float(se),
            ci_lower=float(p_hat - z * se),
            ci_upper=float(p_hat + z * se),
        )
    return out


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def cluster_variance(
    data: ClusteredData,
    estimates: PointEstimates,
    *,
    conf_level: float = 0.95,
) -> dict[str, MetricEstimate]:
    """Subject-level cluster variance and Wald CI for Se, Sp, PPV, NPV.

    Parameters
    ----------
    data : ClusteredData
        Assembled panel; each subject is one cluster.
    estimates : PointEstimates
        Point estimates used as plug-in constants in the residuals.
    conf_level : float
        Confidence level (critical value 1.96 at the default 0.95).

    Returns
    -------
    dict
        Metric name → :class:`MetricEstimate`, ordered Se, Sp, PPV, NPV.

    Raises
    ------
    UndefinedVarianceError
        If a marginal total or denominator mean is zero.

    Notes
    -----
    ``Var = n / T² · Σ_i r_i²`` for Se/Sp (``T`` the diseased or
    non-diseased observation total) and ``Var = n / N² · Σ_i r_i²`` for
    PPV/NPV; ``SE = sqrt(Var / n)``.  With a single subject the residual
    sum is always zero, so ``n = 1`` gives zero variance regardless of
    the estimate.
    """
    return _linearized_estimates(data.results, data.diseased, estimates, conf_level)


def naive_variance(
    data: ClusteredData,
    estimates: PointEstimates,
    *,
    conf_level: float = 0.95,
) -> dict[str, MetricEstimate]:
    """Variance treating every observation as independent.

    Equivalent to :func:`cluster_variance` with clusters of size one,
    which reduces to ``p̂(1 − p̂) / denominator`` for each metric.  Ignores
    within-subject correlation; provided for comparison.
    """
    return _linearized_estimates(
        data.results.reshape(-1, 1),
        data.diseased.reshape(-1, 1),
        estimates,
        conf_level,
    )


def design_effect(
    clustered: ClusteredAccuracyResult,
    naive: ClusteredAccuracyResult,
) -> dict[str, float]:
    """Ratio of cluster-adjusted to naive sampling variance for each metric.

    Compares ``se ** 2`` of the two results.  The stored ``variance``
    fields are scaled by the number of clusters, which differs between
    the two methods (subjects vs. observations), so they are not
    compared directly.  Values above 1 mean within-subject correlation
    inflates uncertainty relative to the independent-observation formula.
    """
    if clustered.method != "cluster" or naive.method != "naive":
        raise ValueError(
            "design_effect expects a 'cluster' and a 'naive' result, "
            f"got {clustered.method!r} and {naive.method!r}"
        )
    out: dict[str, float] = {}
    for c, v in zip(clustered.metrics(), naive.metrics()):
        if v.se == 0:
            raise UndefinedVarianceError(
                c.name, f"design effect for {c.name} undefined: naive variance is zero"
            )
        out[c.name] = c.se ** 2 / v.se ** 2
    return out
