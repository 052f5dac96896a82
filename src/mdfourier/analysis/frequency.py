#!/usr/bin/env python3
"""
Frequency Extraction - Per-Block Spectral Peaks

================================================================================
PURPOSE
================================================================================
Turn the samples of one block channel into a list of Frequency peaks sorted
by magnitude. These lists are what the difference accumulator compares.

================================================================================
METHOD
================================================================================
For a block of n samples (window table w, optional trailing zero padding):

    X = rfft(x · w)                       scipy.fft
    magnitude[k] = 2 · |X[k]| / sum(w)    amplitude 1.0 sine reads 1.0
    phase[k]     = atan2(Im X[k], Re X[k]) in degrees
    hertz[k]     = k / box                box = transform seconds rounded
                                          to 1 ms (44.1/48 kHz bins agree)

Only bins inside [start_hz, min(end_hz, Nyquist)] are kept. The list is sorted
descending by magnitude with a stable sort and truncated to max_freq, except
for silence and noise-channel blocks, which keep every bin so the noise floor
can be analyzed later.

With zero_pad enabled the transform is padded to a whole number of seconds
(at least one), giving integer-hertz bins.

================================================================================
AMPLITUDE
================================================================================
    amplitude = 20 · log10(magnitude / reference)

where reference is the louder of the two signals' maxima after
normalization, so both signals share one 0 dB. The result is NO_AMPLITUDE
when magnitude or reference is zero, or when magnitude exceeds reference.

================================================================================
NORMALIZATION
================================================================================
Before amplitudes are derived the reference magnitudes are scaled onto the
comparison. The default anchors on the loudest reference tone peak: the
comparison's magnitude at the same block, channel and frequency gives the
ratio. Ratios beyond ±30 dB fall back to other loud reference peaks. The
average mode matches the mean tone fundamentals instead.

================================================================================
NOISE FLOOR
================================================================================
The loudest peak of the silence blocks is the floor, skipping mains hum
(50/60 Hz and harmonics, ±2 Hz) and the CRT horizontal scan rate. A profile
with noise-channel blocks uses their average amplitude minus 3 dB instead.
"""

import logging
import math
from enum import Enum
from dataclasses import dataclass, replace
from typing import Optional, List, Tuple

import numpy as np
from scipy import fft as sp_fft

from .constants import (
    NO_AMPLITUDE,
    TYPE_SILENCE_OVERRIDE,
    GRID_FREQUENCIES,
    GRID_HARMONICS,
    GRID_TOLERANCE_HZ,
    SCAN_RATE_TOLERANCE_HZ,
    NOISE_CHANNEL_FLOOR_OFFSET,
    HERTZ_DECIMALS,
    STEREO_TOLERANCE_REPORT,
    FREQ_DOMAIN_TRIES,
    FREQ_DOMAIN_RATIO_DB,
    NORMALIZATION_BIN_TOLERANCE,
)
from .profile import round_float
from .windows import WindowUnit
from ..config import AnalysisConfig
from ..errors import InsufficientDataError, NormalizationError
from ..interfaces.data_models import (
    Block,
    BlockKind,
    Channel,
    ChannelMode,
    Frequency,
    MaxMagnitude,
    Signal,
)

logger = logging.getLogger(__name__)


# =============================================================================
# AMPLITUDE MATH
# =============================================================================

def calculate_amplitude(magnitude: float, reference: float) -> float:
    """dB of magnitude relative to reference, NO_AMPLITUDE when undefined."""
    if magnitude == 0.0 or reference == 0.0 or magnitude > reference:
        return NO_AMPLITUDE
    return 20.0 * math.log10(magnitude / reference)


def calculate_magnitude(amplitude: float, reference: float) -> float:
    """Inverse of calculate_amplitude."""
    if amplitude == NO_AMPLITUDE:
        return 0.0
    return reference * 10.0 ** (amplitude / 20.0)


def zero_pad_size(samples: int, sample_rate: float) -> int:
    """Transform size padded up to a whole number of seconds (minimum one)."""
    per_second = int(round(sample_rate))
    seconds = max(1, math.ceil(samples / per_second))
    return seconds * per_second


# =============================================================================
# EXTRACTION
# =============================================================================

class FrequencyExtractor:
    """
    FFT-based peak extraction for block channels.

    Args:
        config: Analysis configuration (frequency range, max_freq, zero_pad)
    """

    def __init__(self, config: AnalysisConfig):
        self.config = config

    def extract(
        self,
        samples: np.ndarray,
        sample_rate: float,
        window: Optional[WindowUnit] = None,
        keep_all: bool = False,
    ) -> List[Frequency]:
        """
        Spectral peaks of one channel.

        Args:
            samples: 1-D samples, at least window.size long when a window
                is given
            sample_rate: Sample rate used to place bins
            window: Window to apply; None analyzes the raw samples
            keep_all: Keep every bin in range instead of the top max_freq

        Returns:
            Frequencies sorted by descending magnitude

        Raises:
            InsufficientDataError: If the window is longer than the samples
            ValueError: If there is nothing to transform
        """
        samples = np.asarray(samples, dtype=np.float64)
        if window is not None:
            if len(samples) < window.size:
                raise InsufficientDataError(
                    f"Unexpected end of data: window needs {window.size} samples, "
                    f"block has {len(samples)}"
                )
            data = samples[:window.size] * window.table
            correction = window.correction
            transform_size = window.transform_size
        else:
            data = samples
            correction = float(len(samples))
            transform_size = len(samples)

        if transform_size == 0 or correction == 0.0:
            raise ValueError("Cannot extract frequencies from a zero duration block")

        transform_size, box = self.transform_box(transform_size, sample_rate)

        spectrum = sp_fft.rfft(data, n=transform_size)

        start_bin = int(math.ceil(self.config.start_hz * box))
        end_bin = min(int(math.floor(self.config.end_hz * box)), transform_size // 2)
        if start_bin > end_bin:
            return []

        bins = spectrum[start_bin:end_bin + 1]
        magnitudes = 2.0 * np.abs(bins) / correction
        phases = np.degrees(np.arctan2(bins.imag, bins.real))
        hertz = np.round(np.arange(start_bin, end_bin + 1) / box, HERTZ_DECIMALS)

        order = np.argsort(-magnitudes, kind='stable')
        if not keep_all:
            order = order[:self.config.max_freq]

        return [
            Frequency(hertz=float(hertz[i]), magnitude=float(magnitudes[i]),
                      phase=float(phases[i]))
            for i in order
        ]

    def transform_box(self, transform_size: int, sample_rate: float) -> Tuple[int, float]:
        """Transform size after optional padding, and its length in seconds."""
        if self.config.zero_pad:
            transform_size = zero_pad_size(transform_size, sample_rate)
            return transform_size, transform_size / sample_rate
        return transform_size, round_float(transform_size / sample_rate, 3) or transform_size / sample_rate

    def process_block(
        self,
        block: Block,
        sample_rate: float,
        window: Optional[WindowUnit],
        channels: int,
    ) -> None:
        """
        Fill a block's per-channel frequency lists.

        Stereo blocks are analyzed per channel; mono, pseudo-stereo and noise
        blocks average both channels into the left list. One-channel
        recordings only ever fill the left list.
        """
        if block.samples is None:
            raise InsufficientDataError(f"Block {block.index} ({block.name}) has no samples loaded")

        keep_all = block.keeps_full_range
        data = block.samples

        if channels == 1:
            block.freq_left = self.extract(data[:, 0], sample_rate, window, keep_all)
            block.freq_right = []
        elif block.is_stereo:
            block.freq_left = self.extract(data[:, 0], sample_rate, window, keep_all)
            block.freq_right = self.extract(data[:, 1], sample_rate, window, keep_all)
        else:
            block.freq_left = self.extract(data.mean(axis=1), sample_rate, window, keep_all)
            block.freq_right = []

        _, box = self.transform_box(window.transform_size if window is not None else len(data), sample_rate)
        block.bin_hz = 1.0 / box

        logger.debug(f"Block {block.index} {block.name}#{block.sub_index}: "
                     f"{len(block.freq_left)}/{len(block.freq_right)} frequencies")


# =============================================================================
# SIGNAL-WIDE PASSES
# =============================================================================

def _block_channels(block: Block):
    yield Channel.LEFT, block.freq_left
    if block.freq_right:
        yield Channel.RIGHT, block.freq_right


def _tone_channels(signal: Signal):
    for block in signal.blocks:
        if block.kind is BlockKind.TONE:
            for channel, frequencies in _block_channels(block):
                yield block, channel, frequencies


def find_max_magnitude(signal: Signal) -> MaxMagnitude:
    """Loudest peak over tone blocks; silence and watermark blocks never count."""
    best = MaxMagnitude()
    for block, channel, frequencies in _tone_channels(signal):
        if frequencies and frequencies[0].magnitude > best.magnitude:
            best = MaxMagnitude(
                magnitude=frequencies[0].magnitude,
                hertz=frequencies[0].hertz,
                block=block.index,
                channel=channel,
            )

    if best.block < 0:
        logger.warning(f"{signal.source_name}: no tone block with energy, "
                       f"amplitudes cannot be calculated")
    else:
        logger.debug(f"{signal.source_name}: max magnitude {best.magnitude:.6g} at "
                     f"{best.hertz}Hz block {best.block} ({best.channel.name})")
    signal.max_magnitude = best
    return best


def calculate_amplitudes(signal: Signal, reference: float) -> None:
    """Set every analyzed frequency's dB amplitude relative to reference."""
    for block in signal.analyzed_blocks():
        for _, frequencies in _block_channels(block):
            for f in frequencies:
                f.amplitude = calculate_amplitude(f.magnitude, reference)


# =============================================================================
# NORMALIZATION
# =============================================================================

@dataclass(frozen=True)
class NormalizationResult:
    """
    Outcome of frequency-domain normalization.

    Attributes:
        ratio: Factor applied to the reference magnitudes
        ratio_db: The same factor in dB
        tries: 0 when the loudest reference peak was usable, else the
            1-based position of the alternative peak that was used
        stereo_reversed: Both maxima share a block but not a channel and
            disagree by more than the stereo tolerance
        average_ratio: Larger over smaller fundamental average after scaling
    """
    ratio: float
    ratio_db: float
    tries: int = 0
    stereo_reversed: bool = False
    average_ratio: float = 1.0


def _ratio_db(ratio: float) -> float:
    return 20.0 * math.log10(ratio) if ratio > 0 else -math.inf


def _find_block(signal: Signal, index: int) -> Optional[Block]:
    for block in signal.blocks:
        if block.index == index:
            return block
    return None


def fundamental_statistics(signal: Signal) -> Tuple[float, float]:
    """Mean and sample standard deviation of the loudest peak of each tone block channel."""
    fundamentals = [frequencies[0].magnitude
                    for _, _, frequencies in _tone_channels(signal) if frequencies]
    if not fundamentals:
        return 0.0, 0.0
    deviation = float(np.std(fundamentals, ddof=1)) if len(fundamentals) > 1 else 0.0
    return float(np.mean(fundamentals)), deviation


def find_max_magnitudes(signal: Signal, count: int = FREQ_DOMAIN_TRIES) -> List[MaxMagnitude]:
    """
    Loudest tone peaks above the fundamental average plus one deviation.

    These are the fallback anchors when the single loudest peak has no
    sensible counterpart in the other signal.

    Returns:
        At most `count` candidates, loudest first
    """
    average, deviation = fundamental_statistics(signal)
    threshold = average + deviation
    candidates = [
        MaxMagnitude(magnitude=f.magnitude, hertz=f.hertz, block=block.index, channel=channel)
        for block, channel, frequencies in _tone_channels(signal)
        for f in frequencies
        if f.magnitude > threshold
    ]
    candidates.sort(key=lambda m: m.magnitude, reverse=True)
    return candidates[:count]


def find_local_maximum(signal: Signal, peak: MaxMagnitude, tolerant: bool = False) -> float:
    """
    Magnitude of `peak`'s frequency in the same block and channel of signal.

    An exact hertz match is preferred. With `tolerant`, the loudest entry
    within NORMALIZATION_BIN_TOLERANCE bins is accepted instead.

    Returns:
        The matching magnitude, 0.0 when there is none
    """
    block = _find_block(signal, peak.block)
    if block is None:
        return 0.0

    frequencies = block.frequencies(peak.channel)
    for f in frequencies:
        if f.hertz == peak.hertz:
            return f.magnitude

    if tolerant:
        limit = NORMALIZATION_BIN_TOLERANCE * block.bin_hz
        for f in frequencies:
            if abs(f.hertz - peak.hertz) < limit:
                return f.magnitude
    return 0.0


def normalize_by_ratio(signal: Signal, ratio: float) -> None:
    """Scale every analyzed magnitude, and the signal maximum, by ratio."""
    for block in signal.analyzed_blocks():
        for _, frequencies in _block_channels(block):
            for f in frequencies:
                f.magnitude *= ratio
    signal.max_magnitude = replace(signal.max_magnitude,
                                   magnitude=signal.max_magnitude.magnitude * ratio)


def _alternative_ratio(reference: Signal, comparison: Signal) -> Tuple[float, int]:
    candidates = find_max_magnitudes(reference)
    best_ratio, best_try = 0.0, -1

    # Exact hertz over the runner-up peaks first, then tolerant over all
    for tolerant, first in ((False, 1), (True, 0)):
        for position in range(first, len(candidates)):
            peak = candidates[position]
            local = find_local_maximum(comparison, peak, tolerant)
            if not local:
                continue
            ratio = local / peak.magnitude
            if not best_ratio or abs(_ratio_db(ratio)) < abs(_ratio_db(best_ratio)):
                best_ratio, best_try = ratio, position + 1
            if abs(_ratio_db(ratio)) <= FREQ_DOMAIN_RATIO_DB:
                return ratio, position + 1
        if best_ratio:
            break
    return best_ratio, best_try


def frequency_domain_normalize(reference: Signal, comparison: Signal) -> NormalizationResult:
    """
    Scale the reference so its loudest tone peak matches the comparison.

    The comparison's magnitude at the reference maximum (same block,
    channel and frequency) gives the ratio. When that peak is missing or
    the ratio is more than FREQ_DOMAIN_RATIO_DB away, up to
    FREQ_DOMAIN_TRIES other loud reference peaks are tried, first exact
    and then within a few bins.

    Raises:
        NormalizationError: Neither signal has a tone peak, or no common
            peak was found
    """
    ref_max = find_max_magnitude(reference)
    comp_max = find_max_magnitude(comparison)
    for signal, found in ((reference, ref_max), (comparison, comp_max)):
        if found.block < 0:
            raise NormalizationError(
                f"{signal.source_name}: no tone peak found to normalize against")

    local = find_local_maximum(comparison, ref_max)
    ratio = local / ref_max.magnitude
    ratio_db = _ratio_db(ratio)
    stereo_reversed = (ref_max.block == comp_max.block
                       and ref_max.channel is not comp_max.channel
                       and abs(ratio_db) > STEREO_TOLERANCE_REPORT)

    tries = 0
    if abs(ratio_db) > FREQ_DOMAIN_RATIO_DB:
        logger.debug(f"Normalization ratio {ratio_db:.2f}dB at {ref_max.hertz}Hz, "
                     f"searching alternative peaks")
        alternative, tries = _alternative_ratio(reference, comparison)
        if alternative and (not ratio or abs(_ratio_db(alternative)) < abs(ratio_db)):
            ratio, ratio_db = alternative, _ratio_db(alternative)
        else:
            tries = 0
    if not ratio:
        raise NormalizationError(
            f"{comparison.source_name}: no peak matching the reference maximum "
            f"({ref_max.hertz}Hz in block {ref_max.block}); try average or no normalization")

    normalize_by_ratio(reference, ratio)

    ref_average, _ = fundamental_statistics(reference)
    comp_average, _ = fundamental_statistics(comparison)
    low, high = sorted((ref_average, comp_average))
    average_ratio = high / low if low > 0 else math.inf

    logger.info(f"Frequency normalization ratio {ratio:.6g} ({ratio_db:+.2f}dB), "
                f"fundamental average ratio {average_ratio:.3f}")
    return NormalizationResult(ratio=ratio, ratio_db=ratio_db, tries=tries,
                               stereo_reversed=stereo_reversed, average_ratio=average_ratio)


def average_normalize(reference: Signal, comparison: Signal) -> float:
    """
    Scale the quieter signal so both fundamental averages match.

    Returns:
        The factor applied

    Raises:
        NormalizationError: A signal has no tone peaks
    """
    ref_average, _ = fundamental_statistics(reference)
    comp_average, _ = fundamental_statistics(comparison)
    if not ref_average or not comp_average:
        raise NormalizationError("Average normalization needs tone peaks in both signals")

    if comp_average > ref_average:
        ratio = comp_average / ref_average
        normalize_by_ratio(reference, ratio)
    else:
        ratio = ref_average / comp_average
        normalize_by_ratio(comparison, ratio)
    logger.info(f"Average normalization ratio {ratio:.6g}")
    return ratio


def calculate_max_compare(frequencies: List[Frequency], limit: float) -> int:
    """
    Number of leading entries louder than `limit` dB.

    Lists are sorted by magnitude, so the first entry at or below the limit
    ends the significant range.
    """
    for count, f in enumerate(frequencies):
        if f.amplitude == NO_AMPLITUDE or f.amplitude <= limit or f.hertz <= 0:
            return count
    return len(frequencies)


def is_grid_frequency(hertz: float) -> bool:
    """True near mains hum (50/60 Hz) or one of its low harmonics."""
    for base in GRID_FREQUENCIES:
        for harmonic in range(1, GRID_HARMONICS + 1):
            if abs(hertz - base * harmonic) <= GRID_TOLERANCE_HZ:
                return True
    return False


def is_scan_rate(hertz: float, scan_rate_hz: Optional[float]) -> bool:
    return bool(scan_rate_hz) and abs(hertz - scan_rate_hz) <= SCAN_RATE_TOLERANCE_HZ


def find_floor(signal: Signal, scan_rate_hz: Optional[float] = None) -> Optional[Frequency]:
    """
    Determine the noise floor of a signal from its silence blocks.

    Must run after amplitudes are calculated. Sets has_floor,
    floor_amplitude and floor_frequency on the signal.

    Returns:
        The peak chosen as floor, or None when no usable silence exists
    """
    floor: Optional[Frequency] = None
    for block in signal.blocks:
        if block.kind is not BlockKind.SILENCE or block.type_id == TYPE_SILENCE_OVERRIDE:
            continue
        for _, frequencies in _block_channels(block):
            for f in frequencies:
                if f.amplitude == NO_AMPLITUDE:
                    break
                if is_grid_frequency(f.hertz) or is_scan_rate(f.hertz, scan_rate_hz):
                    continue
                if floor is None or f.amplitude > floor.amplitude:
                    floor = f
                break

    noise_amplitudes = [
        f.amplitude
        for block in signal.blocks
        if block.channel is ChannelMode.NOISE and block.is_analyzed
        for _, frequencies in _block_channels(block)
        for f in frequencies
        if f.amplitude != NO_AMPLITUDE
    ]
    if noise_amplitudes:
        average = float(np.mean(noise_amplitudes)) - NOISE_CHANNEL_FLOOR_OFFSET
        floor = Frequency(hertz=0.0, magnitude=0.0, amplitude=average)
        logger.debug(f"{signal.source_name}: noise channel floor {average:.2f}dB")

    if floor is None:
        signal.has_floor = False
        logger.debug(f"{signal.source_name}: no noise floor found")
        return None

    signal.has_floor = True
    signal.floor_amplitude = floor.amplitude
    signal.floor_frequency = floor.hertz
    logger.info(f"{signal.source_name}: noise floor {floor.amplitude:.2f}dB at {floor.hertz}Hz")
    return floor


# =============================================================================
# WATERMARK
# =============================================================================

class WatermarkStatus(str, Enum):
    """Result of checking a capture-chain watermark block."""
    VALID = "valid"
    INVALID = "invalid"
    ABSENT = "absent"


def check_watermark(block: Block, valid_hz: float, invalid_hz: float,
                    tolerance_hz: float = 2.0) -> WatermarkStatus:
    """Classify a watermark block by its loudest peak."""
    if not block.freq_left:
        return WatermarkStatus.ABSENT
    top = block.freq_left[0].hertz
    if abs(top - valid_hz) <= tolerance_hz:
        return WatermarkStatus.VALID
    if invalid_hz and abs(top - invalid_hz) <= tolerance_hz:
        return WatermarkStatus.INVALID
    return WatermarkStatus.ABSENT
