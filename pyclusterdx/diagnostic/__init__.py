"""
Cluster-adjusted diagnostic accuracy for multi-rater studies.

Sensitivity, specificity and predictive values of a binary test read by
several raters per subject, with confidence intervals that treat each
subject as one cluster of correlated ratings.  Naive
(independent-observation) intervals and a batch path for panels of
tests are provided alongside.
"""

from pyclusterdx.diagnostic._common import (
    AggregateCounts,
    BatchClusteredResult,
    ClusterDiagnosticError,
    ClusteredAccuracyResult,
    ClusteredData,
    DataShapeError,
    MetricEstimate,
    Observation,
    PointEstimates,
    UndefinedMetricError,
    UndefinedVarianceError,
)
from pyclusterdx.diagnostic._assemble import aggregate_counts, assemble, assemble_long
from pyclusterdx.diagnostic._accuracy import (
    clustered_accuracy,
    clustered_accuracy_from_data,
    naive_accuracy,
    naive_accuracy_from_data,
    point_estimates,
)
from pyclusterdx.diagnostic._variance import (
    cluster_variance,
    design_effect,
    naive_variance,
    wald_ci,
)
from pyclusterdx.diagnostic._batch import batch_clustered_accuracy

__all__ = [
    "AggregateCounts",
    "BatchClusteredResult",
    "ClusterDiagnosticError",
    "ClusteredAccuracyResult",
    "ClusteredData",
    "DataShapeError",
    "MetricEstimate",
    "Observation",
    "PointEstimates",
    "UndefinedMetricError",
    "UndefinedVarianceError",
    "assemble",
    "assemble_long",
    "aggregate_counts",
    "point_estimates",
    "cluster_variance",
    "naive_variance",
    "design_effect",
    "wald_ci",
    "clustered_accuracy",
    "clustered_accuracy_from_data",
    "naive_accuracy",
    "naive_accuracy_from_data",
    "batch_clustered_accuracy",
]
