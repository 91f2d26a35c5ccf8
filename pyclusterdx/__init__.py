"""
PyClusterDx: cluster-adjusted diagnostic accuracy for Python.

Estimates sensitivity, specificity and predictive values when each
subject is read by several raters, using subject-level linearized
variances so that confidence intervals respect within-subject
correlation.

Usage:
    from pyclusterdx import diagnostic
"""

__version__ = "0.1.0"

from pyclusterdx import diagnostic

__all__ = [
    "__version__",
    "diagnostic",
]
