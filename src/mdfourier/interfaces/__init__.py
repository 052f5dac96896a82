"""
Data contracts for the MDFourier analysis core.
"""

from .data_models import (
    Role,
    BlockKind,
    ChannelMode,
    Channel,
    WindowShape,
    Normalization,
    Frequency,
    MaxMagnitude,
    PulseSample,
    Block,
    Signal,
)
from .comparison_result import (
    WarningKind,
    ToleranceWarning,
    AmplitudeDifference,
    MissingFrequency,
    PhaseDifference,
    BlockDifference,
    AudioDifference,
    SyncResult,
    ComparisonResult,
)

__all__ = [
    'Role', 'BlockKind', 'ChannelMode', 'Channel', 'WindowShape', 'Normalization',
    'Frequency', 'MaxMagnitude', 'PulseSample', 'Block', 'Signal',
    'WarningKind', 'ToleranceWarning', 'AmplitudeDifference',
    'MissingFrequency', 'PhaseDifference', 'BlockDifference',
    'AudioDifference', 'SyncResult', 'ComparisonResult',
]
