"""Token estimation."""

from continuum.tokens.estimator import TokenEstimator

__all__ = ["TokenEstimator"]
