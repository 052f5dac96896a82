"""
Configuration for MDFourier analysis runs.

One immutable AnalysisConfig is built per run (directly, from a dict, or from
a TOML file) and handed to every component at construction.

Example TOML::

    [analysis]
    start_hz = 20
    end_hz = 20000
    max_freq = 2000
    window = "t"
    zero_pad = false
    normalization = "f"

    [sync]
    tolerance = 0
    ignore_frame_rate_diff = false
    sample_rate_adjust = false
    video_mode_reference = 0
    video_mode_comparison = 0

    [compare]
    significant_amplitude = -66
    frequency_tolerance_hz = 0
    channel_balance = true
    ignore_floor = false
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple, Dict, Any

import toml

from .analysis.constants import (
    START_HZ,
    END_HZ,
    FREQ_COUNT,
    MAX_FREQ_COUNT,
    SIGNIFICANT_VOLUME,
    PCM_16BIT_MIN_AMPLITUDE,
)
from .interfaces.data_models import Normalization, WindowShape

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Immutable analysis settings.

    Attributes:
        start_hz: Lowest analyzed frequency
        end_hz: Highest analyzed frequency (capped at Nyquist)
        max_freq: Peaks kept per block/channel (silence keeps all)
        window: Default analysis window
        zero_pad: Pad transforms to whole seconds (1 Hz bins)
        normalization: How the two signals are put on one dB scale
        significant_amplitude: Compare peaks louder than this (dB)
        frequency_tolerance_hz: Tolerant matching window, 0 for exact only
        sync_tolerance: Relax pulse-train matching (0 = strict)
        ignore_frame_rate_diff: Downgrade frame rate mismatch to a warning
        sample_rate_adjust: Apply the measured sample rate correction
        channel_balance: Measure and correct stereo imbalance
        ignore_floor: Do not raise significance to the noise floor
        video_mode_reference: Sync format index for the reference
        video_mode_comparison: Sync format index for the comparison
        manual_sync_reference: (start, end) sample offsets, skips detection
        manual_sync_comparison: (start, end) sample offsets, skips detection
    """
    start_hz: float = START_HZ
    end_hz: float = END_HZ
    max_freq: int = FREQ_COUNT
    window: WindowShape = WindowShape.TUKEY
    zero_pad: bool = False
    normalization: Normalization = Normalization.MAX_FREQUENCY
    significant_amplitude: float = SIGNIFICANT_VOLUME
    frequency_tolerance_hz: float = 0.0
    sync_tolerance: int = 0
    ignore_frame_rate_diff: bool = False
    sample_rate_adjust: bool = False
    channel_balance: bool = True
    ignore_floor: bool = False
    video_mode_reference: int = 0
    video_mode_comparison: int = 0
    manual_sync_reference: Optional[Tuple[int, int]] = None
    manual_sync_comparison: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        if self.start_hz < 0 or self.end_hz <= self.start_hz:
            raise ValueError(f"Invalid frequency range {self.start_hz}-{self.end_hz}Hz")
        if not 1 <= self.max_freq <= MAX_FREQ_COUNT:
            raise ValueError(f"max_freq must be 1-{MAX_FREQ_COUNT}, got {self.max_freq}")
        if self.significant_amplitude >= 0 or self.significant_amplitude < PCM_16BIT_MIN_AMPLITUDE * 2:
            raise ValueError(f"significant_amplitude out of range: {self.significant_amplitude}")
        if self.frequency_tolerance_hz < 0:
            raise ValueError("frequency_tolerance_hz must be >= 0")
        if not 0 <= self.sync_tolerance <= 3:
            raise ValueError(f"sync_tolerance must be 0-3, got {self.sync_tolerance}")
        for name in ('manual_sync_reference', 'manual_sync_comparison'):
            offsets = getattr(self, name)
            if offsets is not None:
                start, end = offsets
                if start < 0 or end <= start:
                    raise ValueError(f"{name} must satisfy 0 <= start < end, got {offsets}")
                object.__setattr__(self, name, (int(start), int(end)))
        if not isinstance(self.window, WindowShape):
            object.__setattr__(self, 'window', WindowShape(self.window))
        if not isinstance(self.normalization, Normalization):
            object.__setattr__(self, 'normalization', Normalization(self.normalization))

    @property
    def tolerant_matching(self) -> bool:
        return self.frequency_tolerance_hz > 0

    def with_overrides(self, **changes) -> 'AnalysisConfig':
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisConfig':
        """Build from TOML-shaped data ([analysis], [sync] and [compare] tables)."""
        analysis = data.get('analysis', {})
        sync = data.get('sync', {})
        compare = data.get('compare', {})

        def manual(key):
            value = sync.get(key)
            return tuple(value) if value else None

        defaults = cls()
        return cls(
            start_hz=float(analysis.get('start_hz', defaults.start_hz)),
            end_hz=float(analysis.get('end_hz', defaults.end_hz)),
            max_freq=int(analysis.get('max_freq', defaults.max_freq)),
            window=WindowShape(analysis.get('window', defaults.window.value)),
            zero_pad=bool(analysis.get('zero_pad', defaults.zero_pad)),
            normalization=Normalization(analysis.get('normalization', defaults.normalization.value)),
            significant_amplitude=float(compare.get('significant_amplitude',
                                                    defaults.significant_amplitude)),
            frequency_tolerance_hz=float(compare.get('frequency_tolerance_hz',
                                                     defaults.frequency_tolerance_hz)),
            sync_tolerance=int(sync.get('tolerance', defaults.sync_tolerance)),
            ignore_frame_rate_diff=bool(sync.get('ignore_frame_rate_diff',
                                                 defaults.ignore_frame_rate_diff)),
            sample_rate_adjust=bool(sync.get('sample_rate_adjust', defaults.sample_rate_adjust)),
            channel_balance=bool(compare.get('channel_balance', defaults.channel_balance)),
            ignore_floor=bool(compare.get('ignore_floor', defaults.ignore_floor)),
            video_mode_reference=int(sync.get('video_mode_reference', 0)),
            video_mode_comparison=int(sync.get('video_mode_comparison', 0)),
            manual_sync_reference=manual('manual_reference'),
            manual_sync_comparison=manual('manual_comparison'),
        )


def load_config(config_path: Optional[str] = None) -> AnalysisConfig:
    """Load configuration from a TOML file, defaults when absent."""
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            data = toml.load(f)
        logger.info(f"Loaded configuration from {config_path}")
        return AnalysisConfig.from_dict(data)

    if config_path:
        logger.warning(f"Config file {config_path} not found, using defaults")
    return AnalysisConfig()


def load_profile_data(profile_path: str) -> Dict[str, Any]:
    """Read a TOML profile description (see Profile.from_dict)."""
    with open(profile_path, 'r') as f:
        return toml.load(f)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
