"""
Comparison Result Data Models

These dataclasses are what a comparison run hands back: per-block difference
records, the global counters, sync/rate measurements for each signal and any
tolerance warnings raised along the way.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, List, Any

from .data_models import Channel, BlockKind


class WarningKind(str, Enum):
    """Non-fatal anomalies surfaced in results."""
    FRAMERATE = "framerate"
    PITCH = "pitch"
    STEREO_IMBALANCE = "stereo_imbalance"
    BALANCE_UNAVAILABLE = "balance_unavailable"
    NOISE_FLOOR = "noise_floor"
    WATERMARK = "watermark"
    SYNC_TOLERANCE = "sync_tolerance"
    STEREO_REVERSED = "stereo_reversed"
    NORMALIZATION = "normalization"


@dataclass(frozen=True)
class ToleranceWarning:
    """A tolerance anomaly: logged, reported, never fatal."""
    kind: WarningKind
    message: str
    role: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'role': self.role,
        }


# ============================================================================
# PER-FREQUENCY RECORDS
# ============================================================================

@dataclass(frozen=True)
class AmplitudeDifference:
    """A matched peak whose amplitude differs (comparison - reference, dB)."""
    hertz: float
    ref_amplitude: float
    diff_amplitude: float
    channel: Channel


@dataclass(frozen=True)
class MissingFrequency:
    """A significant reference peak with no counterpart in the comparison."""
    hertz: float
    amplitude: float
    channel: Channel


@dataclass(frozen=True)
class PhaseDifference:
    """A matched peak whose phase differs, wrapped to (-180, 180]."""
    hertz: float
    diff_phase: float
    channel: Channel


# ============================================================================
# PER-BLOCK AND GLOBAL COUNTERS
# ============================================================================

@dataclass
class BlockDifference:
    """Differences found in one block, plus its running counters."""
    block: int
    name: str
    kind: BlockKind
    type_id: int
    amplitude: List[AmplitudeDifference] = field(default_factory=list)
    missing: List[MissingFrequency] = field(default_factory=list)
    phase: List[PhaseDifference] = field(default_factory=list)
    compared: int = 0
    perfect_matches: int = 0

    @property
    def amplitude_count(self) -> int:
        return len(self.amplitude)

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def phase_count(self) -> int:
        return len(self.phase)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'block': self.block,
            'name': self.name,
            'kind': self.kind.value,
            'type_id': self.type_id,
            'compared': self.compared,
            'perfect_matches': self.perfect_matches,
            'amplitude_differences': self.amplitude_count,
            'missing': self.missing_count,
            'phase_differences': self.phase_count,
        }


@dataclass
class AudioDifference:
    """Every block's differences and the global totals of one comparison run."""
    blocks: List[BlockDifference] = field(default_factory=list)
    compared: int = 0
    amplitude_count: int = 0
    missing_count: int = 0
    phase_count: int = 0
    perfect_matches: int = 0

    @property
    def frequency_count(self) -> int:
        """Frequency differences are the reference peaks left unmatched."""
        return self.missing_count

    @property
    def has_differences(self) -> bool:
        return bool(self.amplitude_count or self.missing_count or self.phase_count)

    def block(self, index: int) -> BlockDifference:
        return self.blocks[index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'compared': self.compared,
            'amplitude_differences': self.amplitude_count,
            'missing': self.missing_count,
            'phase_differences': self.phase_count,
            'perfect_matches': self.perfect_matches,
            'blocks': [b.to_dict() for b in self.blocks],
        }


# ============================================================================
# SIGNAL-LEVEL MEASUREMENTS
# ============================================================================

@dataclass
class SyncResult:
    """
    Sync/rate measurements for one signal.

    framerate and expected_framerate are milliseconds per video frame.
    """
    start_offset: int
    end_offset: int
    framerate: float
    expected_framerate: float
    estimated_sample_rate: float
    cents_difference: float
    manual: bool = False

    @property
    def framerate_difference_percent(self) -> float:
        if not self.expected_framerate:
            return 0.0
        return abs(100.0 - self.framerate * 100.0 / self.expected_framerate)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ComparisonResult:
    """Everything a comparison run produced."""
    reference_name: str
    comparison_name: str
    differences: AudioDifference
    reference_sync: SyncResult
    comparison_sync: SyncResult
    analysis_framerate: float
    significant_amplitude: float
    reference_balance_db: float = 0.0
    comparison_balance_db: float = 0.0
    warnings: List[ToleranceWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'reference': self.reference_name,
            'comparison': self.comparison_name,
            'differences': self.differences.to_dict(),
            'reference_sync': self.reference_sync.to_dict(),
            'comparison_sync': self.comparison_sync.to_dict(),
            'analysis_framerate': self.analysis_framerate,
            'significant_amplitude': self.significant_amplitude,
            'reference_balance_db': self.reference_balance_db,
            'comparison_balance_db': self.comparison_balance_db,
            'warnings': [w.to_dict() for w in self.warnings],
        }
