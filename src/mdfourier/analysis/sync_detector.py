#!/usr/bin/env python3
"""
Sync Pulse Train Detector - Locating Recording Boundaries

================================================================================
PURPOSE
================================================================================
Every MDFourier recording starts and ends with a pulse train: pulse_count
tone pulses of pulse_frequency Hz, each pulse_frame_len video frames long and
followed by the same amount of silence. Finding the exact sample where each
train starts gives:

    1. The sample where block 0 begins (leading edge)
    2. The real playback frame rate, from the distance between both trains
    3. The capture's effective sample rate and pitch deviation

================================================================================
PROBING
================================================================================
The signal (channel average) is cut into 1 ms windows advanced by 1/N ms and
each window is transformed with scipy.fft.rfft. A probe keeps the dominant
bin (DC excluded, limited to 24 kHz), its magnitude and its phase:

    window  = sample_rate / 1000          (48 samples at 48 kHz, 1 kHz bins)
    hop     = window / N                  N = 4 explore, 8 detect, 24 ramp

Probe amplitudes are dB relative to the loudest probe of the pass. A probe is
a "pulse frame" when its amplitude reaches the adaptive threshold and its bin
is the pulse frequency's bin or, below 6 kHz, the bin of its 2nd or 3rd
harmonic.

================================================================================
ADAPTIVE THRESHOLD
================================================================================
Statistics over the matching probes only (mean, population stddev and the
percentage of all probes that match) select the threshold:

    EXPLORE (wide region, few pulse probes expected)
        percent > 55                  mean             target bucket flooded
        |mean| <= 40, stddev > |mean| mean             pulses + noise hits
        |mean| <= 40                  mean - stddev    homogeneous pulses
        otherwise                     mean + stddev    mostly quiet hits

    DETECT (narrow region around a coarse offset)
        percent > 90                  mean             region is all tone
        percent > 55                  mean - stddev/2
        |mean| <= 40, stddev > |mean| mean - stddev/2
        |mean| <= 40                  mean - stddev
        otherwise                     mean

================================================================================
SEQUENCE MATCHING
================================================================================
    IDLE --pulse--> IN_PULSE --run closes--> IN_SILENCE --pulse--> IN_PULSE ...
                        |                        |
                        +-- bad run length --> RESET (IDLE)
                                                 +-- silence too long --> RESET

A pulse run closes when it lasts 0.75x-1.25x the expected probes (plus one
window of spill). The train is complete when pulse_count pulses closed with at
least pulse_count/2 valid silences between them. A single stray probe inside
a pulse or a silence does not break the run.

================================================================================
REFINEMENT
================================================================================
The approximate edge is re-probed one sample at a time over a few probe
widths. Each window is correlated against the pulse frequency; windows whose
dominant bin is the pulse bin and whose correlation is within 90% of the
strongest are kept, up to one pulse period past the first of them. The
earliest window with phase within 1 degree of the best marks the first full
cycle of the pulse. A train matched on a neighbouring bin through sync
tolerance has its frequency estimated from the phase advance per sample.

================================================================================
RATE
================================================================================
    framerate_ms   = (end - start) / sample_rate * 1000 / frames_between
    estimated_rate = (end - start) * 1000 / (nominal_ms * frames_between)
    cents          = 1200 * log2(estimated_rate / sample_rate)
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Tuple, FrozenSet, Callable

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy import fft as sp_fft

from .constants import (
    NO_AMPLITUDE,
    PROBE_WINDOW_MS,
    PROBE_LOWPASS_HZ,
    HARMONIC_LIMIT_HZ,
    FACTOR_EXPLORE,
    FACTOR_DETECT,
    FACTOR_SIGNAL_START,
    PERCENT_SATURATED,
    PERCENT_ALL_TONE,
    MEAN_LOUD_LIMIT,
    RUN_LOWER_RATIO,
    RUN_UPPER_RATIO,
    REFINE_PROBE_WIDTHS,
    REFINE_MAGNITUDE_RATIO,
    REFINE_PHASE_EPSILON,
    SIGNAL_START_THRESHOLD_DB,
    SIGNAL_START_SUSTAIN_MS,
    FRAMERATE_TOLERANCE_PERCENT,
)
from .frequency import calculate_amplitude
from .profile import Profile, SyncFormat, frames_to_samples, round_float, seconds_to_samples
from ..config import AnalysisConfig
from ..interfaces.data_models import PulseSample, Signal

logger = logging.getLogger(__name__)

# Probe rows transformed per FFT call
PROBE_CHUNK_ROWS = 65536


# =============================================================================
# THRESHOLD TABLE
# =============================================================================

class SearchPass(str, Enum):
    """Which kind of pass the probes come from."""
    EXPLORE = "explore"
    DETECT = "detect"


def choose_threshold(search_pass: SearchPass, percent_matched: float,
                     mean: float, stddev: float) -> float:
    """
    Pulse-frame amplitude threshold for one pass.

    Args:
        search_pass: EXPLORE (wide) or DETECT (narrow)
        percent_matched: Percentage of probes whose bin matches the target
        mean: Mean amplitude (dB) of the matching probes
        stddev: Population standard deviation of those amplitudes

    Returns:
        Threshold in dB; probes at or above it are pulse frames
    """
    spread = stddev > abs(mean)
    loud = abs(mean) <= MEAN_LOUD_LIMIT

    if search_pass is SearchPass.EXPLORE:
        if percent_matched > PERCENT_SATURATED:
            return mean
        if loud:
            return mean if spread else mean - stddev
        return mean + stddev

    if percent_matched > PERCENT_ALL_TONE:
        return mean
    if percent_matched > PERCENT_SATURATED:
        return mean - stddev / 2
    if loud:
        return mean - stddev / 2 if spread else mean - stddev
    return mean


# =============================================================================
# RETRY POLICIES
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    One rung of a retry ladder.

    Leading edge: search [offset * total, (offset + search_factor) * total]
    where total is the profile's expected length in samples.

    Trailing edge: search around the expected position shifted by
    offset * sync block length, with a margin of search_factor * train / 2
    on each side.
    """
    search_factor: float
    candidate_offsets: Tuple[float, ...] = (0.0,)


LEADING_RETRY_POLICIES: Tuple[RetryPolicy, ...] = (
    RetryPolicy(search_factor=0.25),
    RetryPolicy(search_factor=0.5),
    RetryPolicy(search_factor=0.5, candidate_offsets=(0.25,)),
    RetryPolicy(search_factor=1.0),
)

TRAILING_RETRY_POLICIES: Tuple[RetryPolicy, ...] = (
    RetryPolicy(search_factor=1.0),
    RetryPolicy(search_factor=2.0),
    RetryPolicy(search_factor=2.0, candidate_offsets=(-1.0, 1.0, -2.0, 2.0)),
)


# =============================================================================
# PROBING
# =============================================================================

def probe_window_size(sample_rate: float) -> int:
    return max(2, int(round(sample_rate * PROBE_WINDOW_MS / 1000.0)))


def probe_hop(window: int, factor: int) -> int:
    return max(1, int(round(window / factor)))


def find_frequency_bracket(frequency: float, window_size: int, sample_rate: float) -> float:
    """Center frequency of the probe bin that `frequency` falls into."""
    bin_hz = sample_rate / window_size
    return _bin_for(frequency, bin_hz) * bin_hz


def _bin_for(frequency: float, bin_hz: float) -> int:
    return max(1, int(round(frequency / bin_hz)))


def harmonic_bins(frequency: float, bin_hz: float, max_bin: int) -> FrozenSet[int]:
    """Bins accepted for a pulse: fundamental, plus 2nd/3rd harmonic below 6 kHz."""
    bins = {_bin_for(frequency, bin_hz)}
    if frequency < HARMONIC_LIMIT_HZ:
        for harmonic in (2, 3):
            index = _bin_for(frequency * harmonic, bin_hz)
            if index <= max_bin:
                bins.add(index)
    return frozenset(bins)


def probe_signal(mono: np.ndarray, sample_rate: float, start: int, end: int,
                 factor: int) -> List[PulseSample]:
    """
    Probe [start, end) with 1 ms windows advanced by 1/factor ms.

    Only windows that fit entirely inside the region are produced.
    Amplitudes are left unset (see assign_amplitudes).
    """
    window = probe_window_size(sample_rate)
    hop = probe_hop(window, factor)
    start = max(0, int(start))
    end = min(len(mono), int(end))
    if end - start < window:
        return []

    bin_hz = sample_rate / window
    max_bin = min(window // 2, int(PROBE_LOWPASS_HZ / bin_hz))
    frames = sliding_window_view(mono[start:end], window)[::hop]

    pulses: List[PulseSample] = []
    for chunk_start in range(0, len(frames), PROBE_CHUNK_ROWS):
        chunk = frames[chunk_start:chunk_start + PROBE_CHUNK_ROWS]
        spectrum = sp_fft.rfft(chunk, axis=1)[:, 1:max_bin + 1]
        magnitudes = np.abs(spectrum)
        dominant = np.argmax(magnitudes, axis=1)
        rows = np.arange(len(chunk))
        peaks = spectrum[rows, dominant]
        peak_magnitudes = 2.0 * magnitudes[rows, dominant] / window
        phases = np.degrees(np.angle(peaks))

        for row in range(len(chunk)):
            magnitude = float(peak_magnitudes[row])
            bin_index = int(dominant[row]) + 1 if magnitude > 0 else 0
            pulses.append(PulseSample(
                offset=start + (chunk_start + row) * hop,
                bin_index=bin_index,
                hertz=bin_index * bin_hz,
                magnitude=magnitude,
                phase=float(phases[row]) if magnitude > 0 else 0.0,
            ))
    return pulses


def correlate_windows(frames: np.ndarray, frequency: float, sample_rate: float) -> np.ndarray:
    """Complex correlation of each window row with a unit phasor at `frequency`."""
    k = np.arange(frames.shape[1])
    return frames @ np.exp(-2j * np.pi * frequency * k / sample_rate)


def estimate_pulse_frequency(frames: np.ndarray, sample_rate: float, approximate_hz: float) -> float:
    """
    Pulse frequency from the mean phase advance of consecutive windows.

    Windows advance one sample, so the advance is the angular frequency
    modulo the sample rate; the branch nearest `approximate_hz` is returned.
    """
    correlation = correlate_windows(frames, approximate_hz, sample_rate)
    magnitudes = np.abs(correlation)
    loud = magnitudes >= REFINE_MAGNITUDE_RATIO * magnitudes.max()
    pairs = loud[1:] & loud[:-1]
    if magnitudes.max() == 0.0 or not pairs.any():
        return approximate_hz
    advance = np.angle(np.sum(correlation[1:][pairs] * np.conj(correlation[:-1][pairs])))
    hertz = float(advance) / (2.0 * np.pi) * sample_rate
    return hertz + sample_rate * round((approximate_hz - hertz) / sample_rate)


def assign_amplitudes(pulses: List[PulseSample]) -> float:
    """Set probe amplitudes relative to the loudest probe; returns that magnitude."""
    reference = max((p.magnitude for p in pulses), default=0.0)
    for p in pulses:
        amplitude = calculate_amplitude(p.magnitude, reference)
        p.amplitude = amplitude if amplitude == NO_AMPLITUDE else round_float(amplitude, 2)
    return reference


def amplitude_statistics(pulses: List[PulseSample],
                         bins: FrozenSet[int]) -> Optional[Tuple[float, float, float]]:
    """(percent matched, mean, stddev) of probes in the target bins."""
    matched = [p.amplitude for p in pulses
               if p.bin_index in bins and p.amplitude != NO_AMPLITUDE]
    if not matched:
        return None
    values = np.array(matched)
    percent = len(matched) * 100.0 / len(pulses)
    return percent, float(values.mean()), float(values.std())


# =============================================================================
# SEQUENCE MATCHING
# =============================================================================

class TrainState(Enum):
    IDLE = "idle"
    IN_PULSE = "in_pulse"
    IN_SILENCE = "in_silence"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PulseTrainMatch:
    """A completed pulse train."""
    probe_index: int
    offset: int
    bin_index: int
    pulses: int
    silences: int


class PulseTrainMatcher:
    """
    Left-to-right pulse/silence state machine over one pass of probes.

    Args:
        frequency: Pulse frequency (Hz)
        bin_hz: Probe bin spacing
        max_bin: Highest probe bin
        expected_pulse_probes: Probes a pulse should span
        expected_silence_probes: Probes a gap should span
        pulse_count: Pulses in a complete train
        factor: Probes per window (spill of a window across an edge)
        tolerance: Sync tolerance level, 0 for strict matching
    """

    def __init__(
        self,
        frequency: float,
        bin_hz: float,
        max_bin: int,
        expected_pulse_probes: float,
        expected_silence_probes: float,
        pulse_count: int,
        factor: int,
        tolerance: int = 0,
    ):
        self.bin_hz = bin_hz
        self.max_bin = max_bin
        self.target_bin = _bin_for(frequency, bin_hz)
        self.target_bins = harmonic_bins(frequency, bin_hz, max_bin)
        self.pulse_count_required = pulse_count
        self.tolerance = tolerance

        self.min_pulse = max(1, int(expected_pulse_probes * RUN_LOWER_RATIO))
        self.max_pulse = int(math.ceil(expected_pulse_probes * RUN_UPPER_RATIO)) + factor
        self.min_silence = max(1, int(expected_silence_probes * RUN_LOWER_RATIO) - factor)
        self.max_silence = int(math.ceil(expected_silence_probes * RUN_UPPER_RATIO)) + factor
        self.required_silences = max(1, math.ceil(pulse_count / 2) - tolerance)

        self._reset()

    def _reset(self) -> None:
        self.state = TrainState.IDLE
        self.pulses_found = 0
        self.silences_found = 0
        self.run = 0
        self.run_start = 0
        self.first_index: Optional[int] = None
        self.locked_bin: Optional[int] = None
        self._locked_bins: FrozenSet[int] = frozenset()

    def is_pulse_frame(self, pulse: PulseSample, threshold: float) -> bool:
        if pulse.amplitude == NO_AMPLITUDE or pulse.amplitude < threshold:
            return False
        if self.locked_bin is not None:
            return pulse.bin_index in self._locked_bins
        if pulse.bin_index in self.target_bins:
            return True
        return self.tolerance > 0 and abs(pulse.bin_index - self.target_bin) <= self.tolerance

    def _open_pulse(self, index: int, pulse: PulseSample) -> None:
        self.state = TrainState.IN_PULSE
        self.run = 1
        self.run_start = index
        if (self.tolerance and self.pulses_found == 0 and self.locked_bin is None
                and abs(pulse.bin_index - self.target_bin) <= self.tolerance):
            self.locked_bin = pulse.bin_index
            self._locked_bins = harmonic_bins(pulse.bin_index * self.bin_hz,
                                              self.bin_hz, self.max_bin)

    def _close_pulse(self) -> bool:
        """Close the current run; True when the train is complete."""
        if not self.min_pulse <= self.run <= self.max_pulse:
            self._reset()
            return False

        self.pulses_found += 1
        if self.pulses_found == 1:
            self.first_index = self.run_start
        if (self.pulses_found >= self.pulse_count_required
                and self.silences_found >= self.required_silences):
            self.state = TrainState.COMPLETE
            return True

        self.state = TrainState.IN_SILENCE
        self.run = 1
        return False

    def match(self, pulses: List[PulseSample], threshold: float) -> Optional[PulseTrainMatch]:
        """Scan probes; the first complete train wins."""
        self._reset()
        count = len(pulses)

        for i, pulse in enumerate(pulses):
            is_pulse = self.is_pulse_frame(pulse, threshold)
            next_is_pulse = i + 1 < count and self.is_pulse_frame(pulses[i + 1], threshold)

            if self.state is TrainState.IDLE:
                if is_pulse:
                    self._open_pulse(i, pulse)

            elif self.state is TrainState.IN_PULSE:
                if is_pulse or next_is_pulse:
                    self.run += 1
                elif self._close_pulse():
                    return self._result(pulses)

            elif self.state is TrainState.IN_SILENCE:
                if not is_pulse or (not next_is_pulse and i + 1 < count):
                    self.run += 1
                    if self.run > self.max_silence:
                        self._reset()
                elif self.min_silence <= self.run <= self.max_silence:
                    self.silences_found += 1
                    self._open_pulse(i, pulse)
                else:
                    self._reset()
                    self._open_pulse(i, pulse)

        if self.state is TrainState.IN_PULSE and self._close_pulse():
            return self._result(pulses)
        return None

    def _result(self, pulses: List[PulseSample]) -> PulseTrainMatch:
        return PulseTrainMatch(
            probe_index=self.first_index,
            offset=pulses[self.first_index].offset,
            bin_index=self.locked_bin if self.locked_bin is not None else self.target_bin,
            pulses=self.pulses_found,
            silences=self.silences_found,
        )


# =============================================================================
# RATE
# =============================================================================

@dataclass(frozen=True)
class RateMeasurement:
    """Frame rate and sample rate derived from the two sync edges."""
    framerate: float
    expected_framerate: float
    estimated_sample_rate: float
    cents_difference: float
    frames_between: int

    @property
    def difference_percent(self) -> float:
        return abs(100.0 - self.framerate * 100.0 / self.expected_framerate)

    @property
    def within_tolerance(self) -> bool:
        return self.difference_percent <= FRAMERATE_TOLERANCE_PERCENT


def calculate_frame_rate(start_offset: int, end_offset: int, sample_rate: float,
                         frames_between: int) -> float:
    """Milliseconds per video frame measured between the sync edges."""
    if frames_between <= 0:
        raise ValueError(f"frames_between must be positive, got {frames_between}")
    return (end_offset - start_offset) / sample_rate * 1000.0 / frames_between


def measure_rate(start_offset: int, end_offset: int, sample_rate: float,
                 frames_between: int, expected_framerate: float) -> RateMeasurement:
    framerate = calculate_frame_rate(start_offset, end_offset, sample_rate, frames_between)
    estimated = (end_offset - start_offset) * 1000.0 / (expected_framerate * frames_between)
    cents = 1200.0 * math.log2(estimated / sample_rate)
    return RateMeasurement(
        framerate=framerate,
        expected_framerate=expected_framerate,
        estimated_sample_rate=estimated,
        cents_difference=cents,
        frames_between=frames_between,
    )


# =============================================================================
# DETECTOR
# =============================================================================

class SyncDetector:
    """
    Finds the leading and trailing pulse trains of a signal.

    Every detection stage returns None on failure; retry policies widen or
    relocate the search before giving up.

    Args:
        profile: Profile with sync blocks and formats
        config: Analysis configuration (sync_tolerance)
    """

    def __init__(
        self,
        profile: Profile,
        config: AnalysisConfig,
        leading_policies: Tuple[RetryPolicy, ...] = LEADING_RETRY_POLICIES,
        trailing_policies: Tuple[RetryPolicy, ...] = TRAILING_RETRY_POLICIES,
    ):
        self.profile = profile
        self.config = config
        self.leading_policies = leading_policies
        self.trailing_policies = trailing_policies

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def detect_pulse_train(
        self,
        mono: np.ndarray,
        sample_rate: float,
        sync_format: SyncFormat,
        start: int,
        end: int,
        factor: int,
        search_pass: SearchPass,
    ) -> Optional[PulseTrainMatch]:
        """One probing pass over [start, end) looking for a complete train."""
        pulses = probe_signal(mono, sample_rate, start, end, factor)
        if not pulses:
            return None
        assign_amplitudes(pulses)

        window = probe_window_size(sample_rate)
        hop = probe_hop(window, factor)
        bin_hz = sample_rate / window
        max_bin = min(window // 2, int(PROBE_LOWPASS_HZ / bin_hz))
        bins = harmonic_bins(sync_format.pulse_frequency, bin_hz, max_bin)
        tolerance = self.config.sync_tolerance
        if tolerance:
            target = _bin_for(sync_format.pulse_frequency, bin_hz)
            bins |= {b for b in range(target - tolerance, target + tolerance + 1) if 1 <= b <= max_bin}

        stats = amplitude_statistics(pulses, bins)
        if stats is None:
            logger.debug(f"{search_pass.value}: no probes at "
                         f"{sync_format.pulse_frequency}Hz in [{start}:{end}]")
            return None
        percent, mean, stddev = stats
        threshold = choose_threshold(search_pass, percent, mean, stddev)

        samples_per_frame = sync_format.ms_per_frame * sample_rate / 1000.0
        matcher = PulseTrainMatcher(
            frequency=sync_format.pulse_frequency,
            bin_hz=bin_hz,
            max_bin=max_bin,
            expected_pulse_probes=sync_format.pulse_frame_len * samples_per_frame / hop,
            expected_silence_probes=sync_format.silence_frames * samples_per_frame / hop,
            pulse_count=sync_format.pulse_count,
            factor=factor,
            tolerance=self.config.sync_tolerance,
        )
        match = matcher.match(pulses, threshold)

        logger.debug(f"{search_pass.value} [{start}:{end}] 1/{factor}ms: "
                     f"matched={percent:.1f}% mean={mean:.2f} std={stddev:.2f} "
                     f"threshold={threshold:.2f}dB -> "
                     f"{match.offset if match else 'not found'}")
        return match

    def _locate(self, mono: np.ndarray, sample_rate: float, sync_format: SyncFormat,
                start: int, end: int, train_len: int) -> Optional[Tuple[int, int]]:
        """Explore pass, then a detect pass anchored on the coarse offset."""
        coarse = self.detect_pulse_train(mono, sample_rate, sync_format, start, end,
                                         FACTOR_EXPLORE, SearchPass.EXPLORE)
        if coarse is None:
            return None
        return self._narrow(mono, sample_rate, sync_format, coarse.offset,
                            train_len, fallback=coarse)

    def _narrow(self, mono: np.ndarray, sample_rate: float, sync_format: SyncFormat,
                anchor: int, train_len: int,
                fallback: Optional[PulseTrainMatch] = None) -> Optional[Tuple[int, int]]:
        lo = anchor - train_len // 4
        hi = anchor + train_len + train_len // 4
        fine = self.detect_pulse_train(mono, sample_rate, sync_format, lo, hi,
                                       FACTOR_DETECT, SearchPass.DETECT)
        if fine is None:
            if fallback is None:
                return None
            logger.debug(f"Detect pass failed near {anchor}, keeping coarse offset")
            fine = fallback
        return fine.offset, fine.bin_index

    def _run_retry_ladder(
        self,
        policies: Tuple[RetryPolicy, ...],
        attempt: Callable[[RetryPolicy, float], Optional[Tuple[int, int]]],
        label: str,
    ) -> Optional[Tuple[int, int]]:
        for level, policy in enumerate(policies):
            for candidate in policy.candidate_offsets:
                result = attempt(policy, candidate)
                if result is not None:
                    if level or candidate:
                        logger.info(f"{label} sync found on retry {level} "
                                    f"(factor={policy.search_factor}, offset={candidate})")
                    return result
                logger.debug(f"{label} sync not found (factor={policy.search_factor}, "
                             f"offset={candidate})")
        return None

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def detect_start(self, signal: Signal) -> Optional[int]:
        """Sample offset where the leading pulse train starts, None if not found."""
        sync_format = self.profile.sync_format(signal.video_mode)
        mono = signal.mono()
        sample_rate = signal.sample_rate
        framerate = sync_format.ms_per_frame

        total = seconds_to_samples(sample_rate, self.profile.total_duration(framerate))
        train_len = frames_to_samples(sync_format.train_frames, framerate, sample_rate)

        def attempt(policy: RetryPolicy, candidate: float):
            start = int(candidate * total)
            length = max(int(policy.search_factor * total), 2 * train_len)
            return self._locate(mono, sample_rate, sync_format, start, start + length, train_len)

        found = self._run_retry_ladder(self.leading_policies, attempt, "Leading")

        if found is None:
            limit = int(max(p.search_factor for p in self.leading_policies) * total)
            ramp = self.detect_signal_start(mono, sample_rate, 0, limit)
            if ramp is not None:
                logger.info(f"{signal.source_name}: signal starts at {ramp}, "
                            f"searching pulse train from there")
                found = self._narrow(mono, sample_rate, sync_format, ramp, train_len)

        if found is None:
            logger.warning(f"{signal.source_name}: leading pulse train not found")
            return None

        offset, bin_index = found
        refined = self.refine_offset(mono, sample_rate, offset, bin_index,
                                     self._pulse_frequency(sync_format, sample_rate, bin_index))
        return offset if refined is None else refined

    def detect_end(self, signal: Signal, start_offset: int) -> Optional[int]:
        """Sample offset where the trailing pulse train starts, None if not found."""
        sync_format = self.profile.sync_format(signal.video_mode)
        mono = signal.mono()
        sample_rate = signal.sample_rate
        framerate = sync_format.ms_per_frame

        expected = start_offset + frames_to_samples(
            self.profile.frames_between_syncs(), framerate, sample_rate)
        sync_len = frames_to_samples(self.profile.sync_block_frames(), framerate, sample_rate)
        train_len = frames_to_samples(sync_format.train_frames, framerate, sample_rate)

        def attempt(policy: RetryPolicy, candidate: float):
            center = expected + int(candidate * sync_len)
            margin = int(policy.search_factor * train_len / 2)
            lo = max(center - margin, start_offset + train_len)
            hi = center + train_len + margin
            if lo >= len(mono):
                return None
            return self._locate(mono, sample_rate, sync_format, lo, hi, train_len)

        found = self._run_retry_ladder(self.trailing_policies, attempt, "Trailing")
        if found is None:
            logger.warning(f"{signal.source_name}: trailing pulse train not found "
                           f"near {expected}")
            return None

        offset, bin_index = found
        refined = self.refine_offset(mono, sample_rate, offset, bin_index,
                                     self._pulse_frequency(sync_format, sample_rate, bin_index))
        return offset if refined is None else refined

    def detect(self, signal: Signal) -> Optional[Tuple[int, int]]:
        """(start, end) offsets of both pulse trains, None if either is missing."""
        start = self.detect_start(signal)
        if start is None:
            return None
        end = self.detect_end(signal, start)
        if end is None:
            return None
        return start, end

    # ------------------------------------------------------------------
    # Fine positioning
    # ------------------------------------------------------------------

    @staticmethod
    def _pulse_frequency(sync_format: SyncFormat, sample_rate: float,
                         bin_index: int) -> Optional[float]:
        """Profile pulse frequency, None when the train was locked on another bin."""
        bin_hz = sample_rate / probe_window_size(sample_rate)
        if _bin_for(sync_format.pulse_frequency, bin_hz) == bin_index:
            return sync_format.pulse_frequency
        return None

    def refine_offset(self, mono: np.ndarray, sample_rate: float, approximate: int,
                      bin_index: int, frequency: Optional[float] = None) -> Optional[int]:
        """
        Sample-accurate edge near `approximate`.

        Every window start in range is correlated against the pulse
        frequency. Only windows whose dominant probe bin is `bin_index` and
        that carry at least REFINE_MAGNITUDE_RATIO of the strongest
        correlation count, and only within one pulse period of the first
        such window. The earliest of them whose phase is within
        REFINE_PHASE_EPSILON of the best marks the edge.

        Args:
            mono: Channel-averaged samples
            sample_rate: Sample rate of mono
            approximate: Offset from the detection passes
            bin_index: Probe bin the pulse train was matched on
            frequency: Pulse frequency; None estimates it from the phase
                advance between neighbouring windows

        Returns:
            Refined offset, None when no window in range has the pulse bin
            dominant
        """
        window = probe_window_size(sample_rate)
        reach = REFINE_PROBE_WIDTHS * window
        lo = max(0, int(approximate) - reach)
        hi = min(len(mono), int(approximate) + reach + 2 * window)
        probes = probe_signal(mono, sample_rate, lo, hi, factor=window)
        in_bin = np.array([p.bin_index == bin_index for p in probes], dtype=bool)
        if not in_bin.any():
            logger.debug(f"Refinement found no {bin_index} bin probes near {approximate}")
            return None

        frames = sliding_window_view(np.asarray(mono[lo:hi], dtype=np.float64), window)
        if frequency is None:
            frequency = estimate_pulse_frequency(frames, sample_rate, bin_index * sample_rate / window)
        correlation = correlate_windows(frames, frequency, sample_rate)
        magnitudes = np.abs(correlation)

        strongest = magnitudes[in_bin].max()
        if strongest == 0.0:
            return None
        accepted = in_bin & (magnitudes >= REFINE_MAGNITUDE_RATIO * strongest)
        first = int(np.argmax(accepted))
        span = (int(math.ceil((1.0 - REFINE_MAGNITUDE_RATIO) * window)) + 1
                + int(math.ceil(sample_rate / frequency)))
        accepted[first + span:] = False

        candidates = np.flatnonzero(accepted)
        distance = np.abs(np.degrees(np.angle(correlation[candidates])))
        best = int(candidates[np.argmax(distance <= distance.min() + REFINE_PHASE_EPSILON)])
        logger.debug(f"Refined {approximate} -> {lo + best} at {frequency:.2f}Hz "
                     f"(phase {distance.min():.4f})")
        return lo + best

    def detect_signal_start(self, mono: np.ndarray, sample_rate: float,
                            start: int, end: int) -> Optional[int]:
        """
        First sustained rise of energy in [start, end), no frequency target.

        A probe belongs to the ramp when it is within SIGNAL_START_THRESHOLD_DB
        of the loudest probe; the ramp must hold for SIGNAL_START_SUSTAIN_MS.
        """
        pulses = probe_signal(mono, sample_rate, start, end, FACTOR_SIGNAL_START)
        if not pulses:
            return None
        if assign_amplitudes(pulses) == 0.0:
            return None

        sustain = max(1, int(FACTOR_SIGNAL_START * SIGNAL_START_SUSTAIN_MS))
        run = 0
        for i, pulse in enumerate(pulses):
            if pulse.amplitude != NO_AMPLITUDE and pulse.amplitude >= SIGNAL_START_THRESHOLD_DB:
                run += 1
                if run >= sustain:
                    return pulses[i - run + 1].offset
            else:
                run = 0
        return None

    def measure(self, signal: Signal, start_offset: int, end_offset: int) -> RateMeasurement:
        sync_format = self.profile.sync_format(signal.video_mode)
        return measure_rate(start_offset, end_offset, signal.sample_rate,
                            self.profile.frames_between_syncs(), sync_format.ms_per_frame)
