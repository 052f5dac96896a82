"""
Cross-signal frequency matching and difference bookkeeping.

For each compared block and channel, the significant reference peaks are
matched against the comparison peaks of the same block index:

    1. exact pass     dict lookup on hertz quantized to 1/10000 Hz
    2. tolerant pass  nearest still-unmatched comparison peak within
                      frequency_tolerance_hz (only when enabled)

Matched pairs record a signed amplitude difference (comparison - reference)
and a phase difference wrapped to (-180, 180]. Reference peaks left unmatched
are missing frequencies.
"""

import logging
import math
from typing import Optional, List, Dict

from .constants import (
    HERTZ_QUANTUM,
    SILENCE_LIMIT,
    COMPARISON_EXTRA_RANGE,
)
from .frequency import calculate_max_compare
from ..config import AnalysisConfig
from ..errors import ProfileError
from ..interfaces.comparison_result import (
    AmplitudeDifference,
    AudioDifference,
    BlockDifference,
    MissingFrequency,
    PhaseDifference,
)
from ..interfaces.data_models import Block, BlockKind, Channel, Frequency, Signal

logger = logging.getLogger(__name__)

TOLERANCE_EPSILON = 1e-9
AMPLITUDE_EPSILON = 1e-5
PHASE_EPSILON = 1e-5


def hertz_key(hertz: float) -> int:
    return int(round(hertz * HERTZ_QUANTUM))


def wrap_phase(degrees: float) -> float:
    """Wrap an angle difference to (-180, 180]."""
    wrapped = math.fmod(degrees, 360.0)
    if wrapped <= -180.0:
        wrapped += 360.0
    elif wrapped > 180.0:
        wrapped -= 360.0
    return wrapped


def clear_matches(frequencies: List[Frequency]) -> None:
    for f in frequencies:
        f.matched = 0


class FrequencyMatcher:
    """
    Pairs reference peaks with comparison peaks of one block channel.

    Args:
        tolerance_hz: Tolerant matching window, 0 disables the tolerant pass
    """

    def __init__(self, tolerance_hz: float = 0.0):
        self.tolerance_hz = tolerance_hz

    def match(
        self,
        reference: List[Frequency],
        comparison: List[Frequency],
        reference_count: Optional[int] = None,
        comparison_count: Optional[int] = None,
    ) -> List[Optional[int]]:
        """
        Match the first reference_count reference peaks.

        The matched field of both lists is reset first, then set to the
        1-based index of the partner.

        Returns:
            For each considered reference peak, the comparison index it
            matched or None
        """
        clear_matches(reference)
        clear_matches(comparison)
        if reference_count is None:
            reference_count = len(reference)
        if comparison_count is None:
            comparison_count = len(comparison)

        by_hertz: Dict[int, int] = {}
        for j in range(comparison_count):
            by_hertz.setdefault(hertz_key(comparison[j].hertz), j)

        matches: List[Optional[int]] = [None] * reference_count
        for i in range(reference_count):
            j = by_hertz.get(hertz_key(reference[i].hertz))
            if j is not None and not comparison[j].matched:
                self._link(reference, comparison, i, j)
                matches[i] = j

        if self.tolerance_hz > 0:
            for i in range(reference_count):
                if matches[i] is not None:
                    continue
                j = self._nearest_unmatched(reference[i].hertz, comparison, comparison_count)
                if j is not None:
                    self._link(reference, comparison, i, j)
                    matches[i] = j

        return matches

    def _nearest_unmatched(self, hertz: float, comparison: List[Frequency],
                           comparison_count: int) -> Optional[int]:
        best = None
        best_distance = 0.0
        for j in range(comparison_count):
            candidate = comparison[j]
            if candidate.matched:
                continue
            distance = abs(candidate.hertz - hertz)
            if distance <= self.tolerance_hz + TOLERANCE_EPSILON and (
                    best is None or distance < best_distance):
                best = j
                best_distance = distance
        return best

    @staticmethod
    def _link(reference: List[Frequency], comparison: List[Frequency], i: int, j: int) -> None:
        reference[i].matched = j + 1
        comparison[j].matched = i + 1


class DifferenceAccumulator:
    """Per-block and global difference counters for one comparison run."""

    def __init__(self, blocks: List[Block]):
        self.differences = AudioDifference(blocks=[
            BlockDifference(block=b.index, name=b.name, kind=b.kind, type_id=b.type_id)
            for b in blocks
        ])

    def _block(self, index: int) -> BlockDifference:
        return self.differences.blocks[index]

    def record_compared(self, block: int) -> None:
        self._block(block).compared += 1
        self.differences.compared += 1

    def record_perfect(self, block: int) -> None:
        self._block(block).perfect_matches += 1
        self.differences.perfect_matches += 1

    def record_missing(self, block: int, frequency: Frequency, channel: Channel) -> None:
        self._block(block).missing.append(
            MissingFrequency(hertz=frequency.hertz, amplitude=frequency.amplitude, channel=channel))
        self.differences.missing_count += 1

    def record_amplitude(self, block: int, reference: Frequency, difference: float,
                         channel: Channel) -> None:
        self._block(block).amplitude.append(AmplitudeDifference(
            hertz=reference.hertz, ref_amplitude=reference.amplitude,
            diff_amplitude=difference, channel=channel))
        self.differences.amplitude_count += 1

    def record_phase(self, block: int, reference: Frequency, difference: float,
                     channel: Channel) -> None:
        self._block(block).phase.append(
            PhaseDifference(hertz=reference.hertz, diff_phase=difference, channel=channel))
        self.differences.phase_count += 1

    def result(self) -> AudioDifference:
        return self.differences


def compare_block(
    accumulator: DifferenceAccumulator,
    matcher: FrequencyMatcher,
    reference: Block,
    comparison: Block,
    significant_amplitude: float,
) -> None:
    """Match and record every significant peak of one block pair."""
    limit = SILENCE_LIMIT if reference.kind is BlockKind.SILENCE else significant_amplitude

    for channel in (Channel.LEFT, Channel.RIGHT):
        ref_list = reference.frequencies(channel)
        if not ref_list:
            continue
        comp_list = comparison.frequencies(channel)

        ref_count = calculate_max_compare(ref_list, limit)
        comp_count = calculate_max_compare(comp_list, limit - COMPARISON_EXTRA_RANGE)
        matches = matcher.match(ref_list, comp_list, ref_count, comp_count)

        for i, j in enumerate(matches):
            ref = ref_list[i]
            accumulator.record_compared(reference.index)
            if j is None:
                accumulator.record_missing(reference.index, ref, channel)
                continue

            comp = comp_list[j]
            amplitude_diff = comp.amplitude - ref.amplitude
            phase_diff = wrap_phase(comp.phase - ref.phase)
            same_amplitude = abs(amplitude_diff) < AMPLITUDE_EPSILON

            if not same_amplitude:
                accumulator.record_amplitude(reference.index, ref, amplitude_diff, channel)
            if abs(phase_diff) >= PHASE_EPSILON:
                accumulator.record_phase(reference.index, ref, phase_diff, channel)
            if same_amplitude and hertz_key(ref.hertz) == hertz_key(comp.hertz):
                accumulator.record_perfect(reference.index)


def compare_signals(reference: Signal, comparison: Signal, config: AnalysisConfig,
                    significant_amplitude: Optional[float] = None) -> AudioDifference:
    """
    Compare every silence and tone block of two processed signals.

    Args:
        reference: Processed reference signal
        comparison: Processed comparison signal (same profile)
        config: Analysis configuration (tolerant matching window)
        significant_amplitude: Reference peaks at or below this are not
            compared; defaults to config.significant_amplitude

    Returns:
        AudioDifference with per-block records and global totals
    """
    if len(reference.blocks) != len(comparison.blocks):
        raise ProfileError(f"Block count mismatch: reference has {len(reference.blocks)}, "
                           f"comparison has {len(comparison.blocks)}")
    if significant_amplitude is None:
        significant_amplitude = config.significant_amplitude

    accumulator = DifferenceAccumulator(reference.blocks)
    matcher = FrequencyMatcher(config.frequency_tolerance_hz)

    for ref_block in reference.blocks:
        if not ref_block.is_compared:
            continue
        compare_block(accumulator, matcher, ref_block,
                      comparison.blocks[ref_block.index], significant_amplitude)

    result = accumulator.result()
    logger.info(f"Compared {result.compared} frequencies: {result.perfect_matches} perfect, "
                f"{result.amplitude_count} amplitude, {result.missing_count} missing, "
                f"{result.phase_count} phase differences")
    return result
