"""
Profile model and block/type arithmetic.

A profile is the declarative description of what a recording should contain:
an ordered list of block descriptors (each repeated element_count times) and
one sync format per video mode. Everything that needs to know where a block
starts, how long it lasts or what it is asks the Profile.

Timing units:
    frames      video frames, the unit profiles are written in
    framerate   milliseconds per video frame (e.g. 16.6883 for NTSC)
    seconds     frames * framerate / 1000
    samples     seconds * sample_rate (sample frames, per channel)
"""

import logging
import math
from dataclasses import dataclass
from functools import cached_property
from typing import Optional, List, Tuple, Dict, Any

from .constants import NO_INDEX
from ..errors import ProfileError
from ..interfaces.data_models import BlockKind, ChannelMode, WindowShape

logger = logging.getLogger(__name__)


# =============================================================================
# TIME CONVERSIONS
# =============================================================================

def round_float(value: float, decimals: int) -> float:
    """Round half away from zero, the way profiles and reports expect."""
    scale = 10.0 ** decimals
    return math.copysign(math.floor(abs(value) * scale + 0.5) / scale, value)


def frames_to_seconds(frames: float, framerate: float) -> float:
    return frames * framerate / 1000.0


def seconds_to_frames(seconds: float, framerate: float) -> float:
    if framerate <= 0:
        raise ValueError(f"Framerate must be positive, got {framerate}")
    return seconds * 1000.0 / framerate


def seconds_to_samples(sample_rate: float, seconds: float) -> int:
    return int(round(sample_rate * seconds))


def samples_to_seconds(sample_rate: float, samples: int) -> float:
    return samples / sample_rate


def frames_to_samples(frames: float, framerate: float, sample_rate: float) -> int:
    return seconds_to_samples(sample_rate, frames_to_seconds(frames, framerate))


# =============================================================================
# PROFILE STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class SyncFormat:
    """
    Pulse train parameters for one video mode.

    Attributes:
        name: Video mode label ("NTSC", "PAL", ...)
        ms_per_frame: Nominal frame duration in milliseconds
        line_count: Scan lines per frame, used for scan-rate noise detection
        pulse_frequency: Pulse tone frequency in Hz
        pulse_frame_len: Frames of tone per pulse
        pulse_count: Pulses in one train
        pulse_silence_len: Frames of silence after each pulse
            (defaults to pulse_frame_len)
    """
    name: str
    ms_per_frame: float
    line_count: int
    pulse_frequency: float
    pulse_frame_len: int
    pulse_count: int
    pulse_silence_len: Optional[int] = None

    def __post_init__(self):
        if self.ms_per_frame <= 0:
            raise ValueError(f"{self.name}: ms_per_frame must be positive")
        if self.pulse_count < 2:
            raise ValueError(f"{self.name}: a pulse train needs at least 2 pulses")
        if self.pulse_frame_len <= 0:
            raise ValueError(f"{self.name}: pulse_frame_len must be positive")

    @property
    def silence_frames(self) -> int:
        if self.pulse_silence_len is None:
            return self.pulse_frame_len
        return self.pulse_silence_len

    @property
    def train_frames(self) -> int:
        return self.pulse_count * (self.pulse_frame_len + self.silence_frames)

    @property
    def scan_rate_hz(self) -> float:
        """Horizontal scan frequency, a common whine in console captures."""
        return self.line_count * 1000.0 / self.ms_per_frame


@dataclass(frozen=True)
class BlockDescriptor:
    """One profile line: a block kind repeated element_count times."""
    name: str
    kind: BlockKind
    frames: int
    element_count: int = 1
    cut_frames: int = 0
    channel: ChannelMode = ChannelMode.MONO
    type_id: Optional[int] = None
    mask_type: Optional[WindowShape] = None

    def __post_init__(self):
        if self.element_count <= 0:
            raise ValueError(f"{self.name}: element_count must be positive")
        if self.frames <= 0:
            raise ValueError(f"{self.name}: frames must be positive")
        if not 0 <= self.cut_frames < self.frames:
            raise ValueError(f"{self.name}: cut_frames must be within [0, frames)")
        if self.type_id is None:
            object.__setattr__(self, 'type_id', self.kind.default_type_id)

    @property
    def total_frames(self) -> int:
        return self.frames * self.element_count


@dataclass(frozen=True)
class ElementLayout:
    """Position of one expanded block element within the profile."""
    index: int
    descriptor_index: int
    sub_index: int
    frame_offset: int
    descriptor: BlockDescriptor


@dataclass(frozen=True)
class Profile:
    """
    Ordered block descriptors plus per-video-mode sync formats.

    Descriptor indices address profile lines; block (element) indices
    address the expanded sequence that a Signal's blocks follow.
    """
    name: str
    blocks: Tuple[BlockDescriptor, ...]
    sync_formats: Tuple[SyncFormat, ...]
    watermark_valid_hz: float = 0.0
    watermark_invalid_hz: float = 0.0
    version: str = "1.0"

    def __post_init__(self):
        if not self.blocks:
            raise ProfileError(f"Profile '{self.name}' has no blocks")
        if not self.sync_formats:
            raise ProfileError(f"Profile '{self.name}' has no sync formats")
        object.__setattr__(self, 'blocks', tuple(self.blocks))
        object.__setattr__(self, 'sync_formats', tuple(self.sync_formats))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        """
        Build a profile from a TOML-shaped dict.

        Expected layout::

            name = "Genesis"
            [[sync]]
            name = "NTSC"
            ms_per_frame = 16.6883
            line_count = 262
            pulse_frequency = 8820
            pulse_frame_len = 8
            pulse_count = 10

            [[blocks]]
            name = "Sync"
            kind = "sync"
            frames = 160
        """
        try:
            sync_formats = tuple(
                SyncFormat(
                    name=s.get('name', f"mode{i}"),
                    ms_per_frame=float(s['ms_per_frame']),
                    line_count=int(s.get('line_count', 0)),
                    pulse_frequency=float(s['pulse_frequency']),
                    pulse_frame_len=int(s['pulse_frame_len']),
                    pulse_count=int(s['pulse_count']),
                    pulse_silence_len=s.get('pulse_silence_len'),
                )
                for i, s in enumerate(data.get('sync', []))
            )
            blocks = tuple(
                BlockDescriptor(
                    name=b['name'],
                    kind=BlockKind(b.get('kind', BlockKind.TONE.value)),
                    frames=int(b['frames']),
                    element_count=int(b.get('element_count', 1)),
                    cut_frames=int(b.get('cut_frames', 0)),
                    channel=ChannelMode(b.get('channel', ChannelMode.MONO.value)),
                    type_id=b.get('type_id'),
                    mask_type=WindowShape(b['mask_type']) if b.get('mask_type') else None,
                )
                for b in data.get('blocks', [])
            )
        except KeyError as e:
            raise ProfileError(f"Profile entry missing required key {e}") from e

        watermark = data.get('watermark', {})
        profile = cls(
            name=data.get('name', 'unnamed'),
            blocks=blocks,
            sync_formats=sync_formats,
            watermark_valid_hz=float(watermark.get('valid_hz', 0.0)),
            watermark_invalid_hz=float(watermark.get('invalid_hz', 0.0)),
            version=str(data.get('version', '1.0')),
        )
        logger.debug(f"Profile '{profile.name}': {len(profile.blocks)} descriptors, "
                     f"{profile.total_blocks} blocks, {len(profile.sync_formats)} video modes")
        return profile

    # ------------------------------------------------------------------
    # Element expansion
    # ------------------------------------------------------------------

    @cached_property
    def elements(self) -> Tuple[ElementLayout, ...]:
        layout: List[ElementLayout] = []
        frame_offset = 0
        for descriptor_index, descriptor in enumerate(self.blocks):
            for sub_index in range(descriptor.element_count):
                layout.append(ElementLayout(
                    index=len(layout),
                    descriptor_index=descriptor_index,
                    sub_index=sub_index,
                    frame_offset=frame_offset,
                    descriptor=descriptor,
                ))
                frame_offset += descriptor.frames
        return tuple(layout)

    @property
    def total_blocks(self) -> int:
        return len(self.elements)

    def element(self, index: int) -> ElementLayout:
        if not 0 <= index < self.total_blocks:
            raise ProfileError(f"Block index {index} outside profile '{self.name}' "
                               f"(0-{self.total_blocks - 1})")
        return self.elements[index]

    def block_frames(self, index: int) -> int:
        return self.element(index).descriptor.frames

    def block_cut_frames(self, index: int) -> int:
        return self.element(index).descriptor.cut_frames

    def block_kind(self, index: int) -> BlockKind:
        return self.element(index).descriptor.kind

    def block_type(self, index: int) -> int:
        return self.element(index).descriptor.type_id

    def block_name(self, index: int) -> str:
        return self.element(index).descriptor.name

    def block_sub_index(self, index: int) -> int:
        return self.element(index).sub_index

    def block_channel(self, index: int) -> ChannelMode:
        return self.element(index).descriptor.channel

    def block_mask(self, index: int) -> Optional[WindowShape]:
        return self.element(index).descriptor.mask_type

    # ------------------------------------------------------------------
    # Frame arithmetic
    # ------------------------------------------------------------------

    def block_frame_offset(self, descriptor_index: int) -> int:
        """Frames from the start of the profile to a descriptor's first element."""
        if not 0 <= descriptor_index <= len(self.blocks):
            raise ProfileError(f"Descriptor index {descriptor_index} outside profile")
        return sum(d.total_frames for d in self.blocks[:descriptor_index])

    def element_frame_offset(self, index: int) -> int:
        return self.element(index).frame_offset

    def _sync_indices(self) -> List[int]:
        return [i for i, d in enumerate(self.blocks) if d.kind is BlockKind.SYNC]

    def first_sync_index(self) -> int:
        """Descriptor index of the leading sync block, NO_INDEX if none."""
        indices = self._sync_indices()
        return indices[0] if indices else NO_INDEX

    def last_sync_index(self) -> int:
        """Descriptor index of the trailing sync block, NO_INDEX if none."""
        indices = self._sync_indices()
        return indices[-1] if len(indices) > 1 else NO_INDEX

    def first_sync_frame_offset(self) -> int:
        index = self.first_sync_index()
        if index == NO_INDEX:
            raise ProfileError(f"Profile '{self.name}' has no sync block")
        return self.block_frame_offset(index)

    def last_sync_frame_offset(self) -> int:
        index = self.last_sync_index()
        if index == NO_INDEX:
            raise ProfileError(f"Profile '{self.name}' needs a leading and a trailing sync block")
        return self.block_frame_offset(index)

    def frames_between_syncs(self) -> int:
        """Frames from the leading pulse train's start to the trailing one's."""
        return self.last_sync_frame_offset() - self.first_sync_frame_offset()

    def sync_block_frames(self) -> int:
        index = self.first_sync_index()
        if index == NO_INDEX:
            raise ProfileError(f"Profile '{self.name}' has no sync block")
        return self.blocks[index].frames

    def first_silence_index(self) -> int:
        """Element index of the first silence block, NO_INDEX if none."""
        for element in self.elements:
            if element.descriptor.kind is BlockKind.SILENCE:
                return element.index
        return NO_INDEX

    def first_mono_index(self) -> int:
        """Element index of the first mono tone block (used for stereo balance)."""
        for element in self.elements:
            d = element.descriptor
            if d.kind is BlockKind.TONE and d.channel is ChannelMode.MONO:
                return element.index
        return NO_INDEX

    def total_frames(self) -> int:
        return sum(d.total_frames for d in self.blocks)

    def longest_element_frames(self) -> int:
        return max(d.frames for d in self.blocks)

    def total_duration(self, framerate: float) -> float:
        """Seconds covered by the whole profile at the given framerate."""
        return frames_to_seconds(self.total_frames(), framerate)

    def has_stereo_blocks(self) -> bool:
        return any(d.channel is ChannelMode.STEREO for d in self.blocks)

    def has_watermark(self) -> bool:
        return self.watermark_valid_hz > 0 and any(
            d.kind is BlockKind.WATERMARK for d in self.blocks)

    # ------------------------------------------------------------------
    # Video modes
    # ------------------------------------------------------------------

    def sync_format(self, video_mode: int = 0) -> SyncFormat:
        if not 0 <= video_mode < len(self.sync_formats):
            raise ProfileError(f"Video mode {video_mode} not defined in profile "
                               f"'{self.name}' ({len(self.sync_formats)} modes)")
        return self.sync_formats[video_mode]
