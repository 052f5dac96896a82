"""
Exceptions raised by the MDFourier comparison pipeline.

Detection stages return None when they cannot find what they look for; the
engine turns an exhausted retry ladder or an unusable recording into one of
these.
"""

from typing import Optional


class MDFourierError(Exception):
    """Base class for all analysis failures."""


class SyncNotFoundError(MDFourierError):
    """A sync pulse train could not be located after all retries."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.hint = hint
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)


class FrameRateMismatchError(MDFourierError):
    """Measured frame rate is too far from the profile's nominal value."""

    def __init__(self, expected_ms: float, measured_ms: float, percent: float):
        self.expected_ms = expected_ms
        self.measured_ms = measured_ms
        self.percent = percent
        super().__init__(
            f"Frame rate mismatch: expected {expected_ms:.4f}ms, measured "
            f"{measured_ms:.4f}ms ({percent:.2f}% off). Enable "
            f"ignore_frame_rate_diff to analyze anyway"
        )


class InsufficientDataError(MDFourierError):
    """The recording ended before the profile did."""


class ProfileError(MDFourierError):
    """The profile is inconsistent with the requested operation."""


class NormalizationError(MDFourierError):
    """No usable common peak to scale the two signals against each other."""
