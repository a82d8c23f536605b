"""
Exception types for the Kd pipeline.

Only DataShapeError and DegenerateSampleError stop a run. The per-group
errors are raised by low-level helpers and caught by the stage functions,
which record the affected groups instead of propagating.
"""


class KdmsError(ValueError):
    """Base class for pipeline errors."""


class DataShapeError(KdmsError):
    """Input table is missing required columns or has unparseable identifiers."""


class DegenerateSampleError(KdmsError):
    """A sample has no usable reference scale for normalization."""

    def __init__(self, samples, message=None):
        self.samples = list(samples)
        if message is None:
            message = (
                f"Cannot compute a median for {len(self.samples)} sample(s): "
                f"{', '.join(map(str, self.samples))}. "
                "Drop them with drop_samples() or set normalization.drop_degenerate."
            )
        super().__init__(message)


class InsufficientDataError(KdmsError):
    """A (protein, bait) group has too few valid points to be fitted."""


class NonConvergenceError(KdmsError):
    """The least-squares solver did not converge within its budget."""


class MissingReferenceDataError(KdmsError):
    """A protein has no molecular weight in the reference table."""

    def __init__(self, proteins):
        self.proteins = list(proteins)
        super().__init__(
            f"No molecular weight for {len(self.proteins)} protein(s): "
            f"{', '.join(map(str, self.proteins[:10]))}"
            + (" ..." if len(self.proteins) > 10 else "")
        )
