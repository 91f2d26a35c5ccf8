"""Batch cluster-adjusted accuracy for panels of binary tests.

Computes Se, Sp, PPV and NPV with subject-clustered variances for many
candidate tests read on the same subjects by the same raters.  The CPU
path broadcasts over the test axis with numpy.  The GPU path runs the
same arithmetic in PyTorch.

GPU is beneficial when ``n_tests`` is large (hundreds or more).
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pyclusterdx.diagnostic._assemble import _as_float_array, _check_binary
from pyclusterdx.diagnostic._common import (
    METRICS,
    BatchClusteredResult,
    DataShapeError,
    UndefinedMetricError,
    UndefinedVarianceError,
)
from pyclusterdx.diagnostic._variance import _critical_value

logger = logging.getLogger("pyclusterdx.diagnostic.batch")

_VALID_BACKENDS = ("cpu", "gpu", "auto")


def _check_denominators(
    test_pos: NDArray, test_neg: NDArray, total_diseased: float, total_non_diseased: float,
) -> None:
    """Raise for the first zero denominator, naming the test index."""
    if total_diseased == 0:
        raise UndefinedMetricError("sensitivity", "sensitivity undefined: diseased count is zero")
    if total_non_diseased == 0:
        raise UndefinedMetricError("specificity", "specificity undefined: non-diseased count is zero")
    for metric, totals, name in (
        ("ppv", test_pos, "test-positive"),
        ("npv", test_neg, "test-negative"),
    ):
        zero = np.flatnonzero(totals == 0)
        if zero.size:
            raise UndefinedMetricError(
                metric, f"{metric} undefined for test {int(zero[0])}: {name} count is zero"
            )


# ---------------------------------------------------------------------------
# CPU path
# ---------------------------------------------------------------------------

def _batch_cpu(
    gold: NDArray, results: NDArray,
) -> tuple[NDArray, NDArray]:
    """Vectorized estimates and variances, each shape ``(M, 4)``."""
    M, n, J = results.shape
    N = n * J
    x = results.astype(np.float64)
    d = np.broadcast_to(gold.astype(np.float64)[None, :, None], x.shape)

    total_diseased = J * float(gold.sum())
    total_non_diseased = N - total_diseased
    tp = x * d
    tn = (1 - x) * (1 - d)
    TP = tp.sum(axis=(1, 2))
    TN = tn.sum(axis=(1, 2))
    POS = x.sum(axis=(1, 2))
    NEG = N - POS

    _check_denominators(POS, NEG, total_diseased, total_non_diseased)

    se = TP / total_diseased
    sp = TN / total_non_diseased
    ppv = TP / POS
    npv = TN / NEG

    # Se / Sp: residuals within the fixed marginal group.
    # Keep in sync with _variance._ratio_variance and _taylor_variance.
    r_se = ((x - se[:, None, None]) * d).sum(axis=2)
    r_sp = (((1 - x) - sp[:, None, None]) * (1 - d)).sum(axis=2)
    var_se = n / total_diseased ** 2 * (r_se ** 2).sum(axis=1)
    var_sp = n / total_non_diseased ** 2 * (r_sp ** 2).sum(axis=1)

    # PPV / NPV: delta-method residuals scaled by 1 / b̂
    a_hat, b_hat = TP / N, POS / N
    eps = tp - a_hat[:, None, None] - ppv[:, None, None] * (x - b_hat[:, None, None])
    r_ppv = eps.sum(axis=2) / b_hat[:, None]
    var_ppv = n / N ** 2 * (r_ppv ** 2).sum(axis=1)

    a_hat, b_hat = TN / N, NEG / N
    eps = tn - a_hat[:, None, None] - npv[:, None, None] * ((1 - x) - b_hat[:, None, None])
    r_npv = eps.sum(axis=2) / b_hat[:, None]
    var_npv = n / N ** 2 * (r_npv ** 2).sum(axis=1)

    est = np.column_stack([se, sp, ppv, npv])
    var = np.column_stack([var_se, var_sp, var_ppv, var_npv])
    return est, var


# ---------------------------------------------------------------------------
# GPU path
# ---------------------------------------------------------------------------

def _batch_gpu(
    gold: NDArray, results: NDArray,
) -> tuple[NDArray, NDArray]:
    """Same computation as :func:`_batch_cpu` on a PyTorch device."""
    import torch

    # Select device
    if torch.cuda.is_available():
        device = torch.device("cuda")
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        device = torch.device("mps")
    else:
        device = torch.device("cpu")

    # MPS uses float32, others float64
    if device.type == "mps":
        dtype = torch.float32
    else:
        dtype = torch.float64
    logger.debug("batch GPU path on %s (%s)", device, dtype)

    M, n, J = results.shape
    N = n * J
    x = torch.from_numpy(results.astype(np.float64)).to(device=device, dtype=dtype)
    d = torch.from_numpy(gold.astype(np.float64)).to(device=device, dtype=dtype)
    d = d.view(1, n, 1).expand(M, n, J)

    total_diseased = J * float(gold.sum())
    total_non_diseased = N - total_diseased
    tp = x * d
    tn = (1 - x) * (1 - d)
    TP = tp.sum(dim=(1, 2))
    TN = tn.sum(dim=(1, 2))
    POS = x.sum(dim=(1, 2))
    NEG = N - POS

    _check_denominators(
        POS.cpu().numpy(), NEG.cpu().numpy(), total_diseased, total_non_diseased,
    )

    se = TP / total_diseased
    sp = TN / total_non_diseased
    ppv = TP / POS
    npv = TN / NEG

    # Same formulas as _batch_cpu (see _variance._ratio_variance and
    # _taylor_variance).
    r_se = ((x - se.view(M, 1, 1)) * d).sum(dim=2)
    r_sp = (((1 - x) - sp.view(M, 1, 1)) * (1 - d)).sum(dim=2)
    var_se = n / total_diseased ** 2 * (r_se ** 2).sum(dim=1)
    var_sp = n / total_non_diseased ** 2 * (r_sp ** 2).sum(dim=1)

    a_hat, b_hat = TP / N, POS / N
    eps = tp - a_hat.view(M, 1, 1) - ppv.view(M, 1, 1) * (x - b_hat.view(M, 1, 1))
    r_ppv = eps.sum(dim=2) / b_hat.view(M, 1)
    var_ppv = n / N ** 2 * (r_ppv ** 2).sum(dim=1)

    a_hat, b_hat = TN / N, NEG / N
    eps = tn - a_hat.view(M, 1, 1) - npv.view(M, 1, 1) * ((1 - x) - b_hat.view(M, 1, 1))
    r_npv = eps.sum(dim=2) / b_hat.view(M, 1)
    var_npv = n / N ** 2 * (r_npv ** 2).sum(dim=1)

    est = torch.stack([se, sp, ppv, npv], dim=1)
    var = torch.stack([var_se, var_sp, var_ppv, var_npv], dim=1)
    return (
        est.cpu().numpy().astype(np.float64),
        var.cpu().numpy().astype(np.float64),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def batch_clustered_accuracy(
    gold: ArrayLike,
    results: ArrayLike,
    *,
    conf_level: float = 0.95,
    backend: str = "auto",
) -> BatchClusteredResult:
    """Cluster-adjusted Se, Sp, PPV, NPV for many binary tests at once.

    Parameters
    ----------
    gold : array of int, shape ``(n_subjects,)``
        Shared gold-standard label per subject.
    results : array of int, shape ``(n_tests, n_subjects, n_raters)``
        Dichotomized results, one ``(n, J)`` panel per candidate test.
    conf_level : float
        Confidence level (critical value 1.96 at 0.95).
    backend : str
        ``'cpu'``, ``'gpu'``, or ``'auto'``.

    Returns
    -------
    BatchClusteredResult

    Notes
    -----
    Row ``m`` equals ``clustered_accuracy(gold, results[m])``.  Any test
    with a zero denominator fails the whole batch.
    """
    if backend not in _VALID_BACKENDS:
        raise ValueError(f"backend must be one of {_VALID_BACKENDS}, got {backend!r}")
    z = _critical_value(conf_level)

    gold_arr = _as_float_array(gold, "gold")
    res_arr = _as_float_array(results, "results")
    if gold_arr.ndim != 1:
        raise DataShapeError(f"gold must be 1-D, got shape {gold_arr.shape}")
    if res_arr.ndim != 3:
        raise DataShapeError(
            "results must be 3-D (n_tests, n_subjects, n_raters), "
            f"got shape {res_arr.shape}"
        )
    M, n, J = res_arr.shape
    if gold_arr.shape[0] != n:
        raise DataShapeError(f"gold length {gold_arr.shape[0]} != results subjects {n}")
    if M == 0 or n == 0 or J == 0:
        raise DataShapeError(f"results must be non-empty, got shape {res_arr.shape}")
    gold_i = _check_binary(gold_arr, "gold")
    res_i = _check_binary(res_arr, "results")

    est, var = None, None
    if backend == "cpu":
        est, var = _batch_cpu(gold_i, res_i)
    elif backend == "gpu":
        est, var = _batch_gpu(gold_i, res_i)
    else:
        # auto — try GPU, fall back to CPU
        try:
            import torch

            has_gpu = torch.cuda.is_available() or (
                hasattr(torch.backends, "mps") and torch.backends.mps.is_available()
            )
            if has_gpu:
                est, var = _batch_gpu(gold_i, res_i)
        except ImportError:
            pass
        if est is None:
            est, var = _batch_cpu(gold_i, res_i)

    bad = ~np.isfinite(var)
    if bad.any():
        m, k = np.argwhere(bad)[0]
        metric = METRICS[k]
        raise UndefinedVarianceError(metric, f"{metric} variance for test {int(m)} is not finite")

    se = np.sqrt(var / n)
    logger.debug("batch of %d tests on %d subjects x %d raters", M, n, J)
    return BatchClusteredResult(
        estimate=est,
        variance=var,
        se=se,
        ci_lower=est - z * se,
        ci_upper=est + z * se,
        n_tests=M,
        conf_level=conf_level,
    )
