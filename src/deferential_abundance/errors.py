"""
Exception and warning types for deferential_abundance.

Design-level problems are fatal because every feature shares one design
matrix. Feature-level problems are local and degrade a single feature to
"untestable". Moderation problems are recovered by disabling variance
shrinkage and surfaced as a ``ModerationWarning``.
"""

from __future__ import annotations


class DeferentialAbundanceError(Exception):
    """Base class for all errors raised by this package."""


class DesignError(DeferentialAbundanceError, ValueError):
    """A sample cannot be assigned to exactly one group, or a contrast
    references a group that is not part of the design."""


class InsufficientDataError(DeferentialAbundanceError, ValueError):
    """Too few usable observations to fit the linear model."""


class ModerationFitError(DeferentialAbundanceError, RuntimeError):
    """The prior variance distribution could not be estimated."""


class CorrectionError(DeferentialAbundanceError, ValueError):
    """Multiple testing correction received no testable p-values."""


class ModerationWarning(UserWarning):
    """Variance shrinkage was disabled for this run (prior df set to 0)."""
