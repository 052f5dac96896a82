"""
mdfourier: Audio Signature Comparison Core

Compares two recordings of the same test signal (a profile-defined sequence
of sync pulse trains, silences and tones) captured from different hardware,
and reports how their frequency content differs.

Architecture:
    PCM → sync detection → block layout → windowed FFT → matching → differences

The package is a library. Decoding audio files, plotting and any command
line front end are left to the caller, which hands in decoded PCM and a
profile and receives a ComparisonResult.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.comparison_result import (
    ComparisonResult,
    AudioDifference,
    BlockDifference,
    SyncResult,
    ToleranceWarning,
)
from .interfaces.data_models import Signal, Block, Frequency, Role
from .analysis.profile import Profile
from .config import AnalysisConfig
from .engine.comparison_engine import ComparisonEngine

__all__ = [
    "ComparisonEngine",
    "ComparisonResult",
    "AudioDifference",
    "BlockDifference",
    "SyncResult",
    "ToleranceWarning",
    "Signal",
    "Block",
    "Frequency",
    "Role",
    "Profile",
    "AnalysisConfig",
    "__version__",
]
