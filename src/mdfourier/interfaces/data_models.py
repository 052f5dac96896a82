"""
Data Models for the MDFourier Analysis Core

These structures hold one loaded recording and everything derived from it:
the Signal, its ordered Blocks, and the per-channel Frequency peaks of each
block. Sync detection works on PulseSample probes.

Design principles:
- Signal/Block/Frequency are built once per recording and populated in
  place by the pipeline stages (mutable dataclasses)
- Block samples are numpy views into the Signal's sample array, so a
  correction applied to the signal is seen by every block
- Enums carry the single-character codes used by MDFourier profiles
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

import numpy as np

from ..analysis.constants import (
    NO_AMPLITUDE,
    TYPE_SILENCE,
    TYPE_SYNC,
    TYPE_INTERNAL_KNOWN,
    TYPE_SKIP,
    TYPE_TIMEDOMAIN,
    TYPE_WATERMARK,
)


# ============================================================================
# ENUMERATIONS
# ============================================================================

class Role(str, Enum):
    """Which side of the comparison a signal is on."""
    REFERENCE = "reference"
    COMPARISON = "comparison"


class BlockKind(str, Enum):
    """
    What a block contains.

    Only SILENCE, TONE and WATERMARK blocks are transformed to the frequency
    domain. TIMEDOMAIN blocks keep their samples, SYNC and INTERNAL_SYNC
    blocks are markers, SKIP blocks are ignored.
    """
    SILENCE = "silence"
    SYNC = "sync"
    TONE = "tone"
    TIMEDOMAIN = "timedomain"
    WATERMARK = "watermark"
    SKIP = "skip"
    INTERNAL_SYNC = "internal_sync"

    @property
    def default_type_id(self) -> int:
        return _DEFAULT_TYPE_IDS[self]


_DEFAULT_TYPE_IDS = {
    BlockKind.SILENCE: TYPE_SILENCE,
    BlockKind.SYNC: TYPE_SYNC,
    BlockKind.TONE: 1,
    BlockKind.TIMEDOMAIN: TYPE_TIMEDOMAIN,
    BlockKind.WATERMARK: TYPE_WATERMARK,
    BlockKind.SKIP: TYPE_SKIP,
    BlockKind.INTERNAL_SYNC: TYPE_INTERNAL_KNOWN,
}


class ChannelMode(str, Enum):
    """Channel layout of a block, using the profile's codes."""
    MONO = "m"
    STEREO = "S"
    PSTEREO = "s"
    NOISE = "n"


class Channel(str, Enum):
    """A single output channel."""
    LEFT = "l"
    RIGHT = "r"


class WindowShape(str, Enum):
    """Analysis window shapes, keyed by the profile's window codes."""
    RECTANGULAR = "n"
    TUKEY = "t"
    HANN = "h"
    HAMMING = "m"
    FLATTOP = "f"


class Normalization(str, Enum):
    """How reference and comparison magnitudes are brought to one scale."""
    MAX_FREQUENCY = "f"
    AVERAGE = "a"
    NONE = "n"


# ============================================================================
# FREQUENCY DOMAIN
# ============================================================================

@dataclass
class Frequency:
    """
    One spectral peak of a block channel.

    Attributes:
        hertz: Bin center frequency (rounded to 1/10000 Hz)
        magnitude: Window-corrected linear magnitude
        amplitude: dB relative to the signal's maximum magnitude,
            NO_AMPLITUDE until calculated or when undefined
        phase: Bin phase in degrees (-180, 180]
        matched: 0 when unmatched, else 1-based index into the other
            signal's list for the same block/channel
    """
    hertz: float
    magnitude: float
    amplitude: float = NO_AMPLITUDE
    phase: float = 0.0
    matched: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hertz': self.hertz,
            'magnitude': self.magnitude,
            'amplitude': self.amplitude,
            'phase': self.phase,
            'matched': self.matched,
        }


@dataclass(frozen=True)
class MaxMagnitude:
    """Loudest peak of a signal, the 0 dB reference for amplitudes."""
    magnitude: float = 0.0
    hertz: float = 0.0
    block: int = -1
    channel: Channel = Channel.LEFT


# ============================================================================
# SYNC PROBES
# ============================================================================

@dataclass
class PulseSample:
    """
    One sync-detection probe (a 1 ms FFT window).

    Attributes:
        offset: Sample-frame position where the probe window starts
        bin_index: Dominant FFT bin (DC excluded)
        hertz: Frequency of the dominant bin
        magnitude: Dominant bin magnitude
        phase: Dominant bin phase in degrees
        amplitude: dB relative to the loudest probe of the pass
    """
    offset: int
    bin_index: int
    hertz: float
    magnitude: float
    phase: float
    amplitude: float = NO_AMPLITUDE


# ============================================================================
# BLOCKS AND SIGNALS
# ============================================================================

@dataclass
class Block:
    """
    One profile-defined segment of a recording.

    The block index is the only key used to pair reference and comparison
    blocks.
    """
    index: int
    name: str
    sub_index: int
    kind: BlockKind
    type_id: int
    channel: ChannelMode
    frames: int
    cut_frames: int = 0
    seconds: float = 0.0
    sample_offset: int = 0
    samples: Optional[np.ndarray] = None
    window_shape: Optional[WindowShape] = None
    bin_hz: float = 0.0
    freq_left: List[Frequency] = field(default_factory=list)
    freq_right: List[Frequency] = field(default_factory=list)

    @property
    def is_analyzed(self) -> bool:
        """True for blocks that get a frequency-domain representation."""
        return self.kind in (BlockKind.SILENCE, BlockKind.TONE, BlockKind.WATERMARK)

    @property
    def is_compared(self) -> bool:
        return self.kind in (BlockKind.SILENCE, BlockKind.TONE)

    @property
    def keeps_full_range(self) -> bool:
        """Silence and noise blocks keep every bin for floor analysis."""
        return self.kind is BlockKind.SILENCE or self.channel is ChannelMode.NOISE

    @property
    def is_stereo(self) -> bool:
        return self.channel is ChannelMode.STEREO

    def frequencies(self, channel: Channel) -> List[Frequency]:
        if channel is Channel.RIGHT:
            return self.freq_right
        return self.freq_left


@dataclass
class Signal:
    """
    One loaded recording and every value derived from it.

    samples is a float64 array shaped (frames, channels). Offsets are
    sample-frame positions, framerate is milliseconds per video frame.
    """
    role: Role
    sample_rate: int
    channels: int
    bytes_per_sample: int
    samples: np.ndarray
    source_name: str = ""
    video_mode: int = 0

    blocks: List[Block] = field(default_factory=list)

    # Sync
    start_offset: int = 0
    end_offset: int = 0
    framerate: float = 0.0
    estimated_sample_rate: float = 0.0
    effective_sample_rate: float = 0.0
    cents_difference: float = 0.0

    # Floor / normalization
    max_magnitude: MaxMagnitude = field(default_factory=MaxMagnitude)
    has_floor: bool = False
    floor_amplitude: float = NO_AMPLITUDE
    floor_frequency: float = 0.0

    # Stereo balance (dB, 0 when balanced or not measured)
    balance_db: float = 0.0

    def __post_init__(self):
        if not self.effective_sample_rate:
            self.effective_sample_rate = float(self.sample_rate)

    @classmethod
    def from_pcm(
        cls,
        pcm: np.ndarray,
        sample_rate: int,
        channels: int,
        bytes_per_sample: int = 2,
        role: Role = Role.REFERENCE,
        source_name: str = "",
        video_mode: int = 0,
    ) -> 'Signal':
        """
        Build a Signal from interleaved PCM.

        Args:
            pcm: Interleaved samples (any numeric dtype)
            sample_rate: Samples per second per channel
            channels: 1 or 2
            bytes_per_sample: Byte depth of the original capture
            role: Reference or comparison
            source_name: Label used in logs and results
            video_mode: Index into the profile's sync formats

        Raises:
            ValueError: On invalid rate/channel count or a buffer that does
                not hold whole frames
        """
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        if channels not in (1, 2):
            raise ValueError(f"Only mono or stereo recordings are supported, got {channels} channels")

        data = np.array(pcm, dtype=np.float64).ravel()
        if data.size % channels:
            raise ValueError(
                f"{data.size} samples do not divide into {channels} channels"
            )

        return cls(
            role=role,
            sample_rate=int(sample_rate),
            channels=channels,
            bytes_per_sample=bytes_per_sample,
            samples=data.reshape(-1, channels),
            source_name=source_name,
            video_mode=video_mode,
        )

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.num_frames / self.sample_rate

    def mono(self) -> np.ndarray:
        """Channel average, used by sync detection."""
        if self.channels == 1:
            return self.samples[:, 0]
        return self.samples.mean(axis=1)

    def analyzed_blocks(self) -> List[Block]:
        return [b for b in self.blocks if b.is_analyzed]
