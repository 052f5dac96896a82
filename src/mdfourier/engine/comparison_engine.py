#!/usr/bin/env python3
"""
Comparison Engine - Orchestrates the MDFourier Pipeline

Pipeline (single-threaded, batch):

    load ──► sync reference ──► sync comparison ──► layout blocks
                                                        │
         compare ◄── normalize ◄── extract ◄── balance

    1. load_signal       interleaved PCM → Signal
    2. detect_sync       leading/trailing pulse trains, frame rate, pitch
    3. layout_blocks     profile elements → Block sample views
    4. balance           stereo imbalance measured on the first mono block
    5. process_signal    window + FFT per analyzed block, watermark
    6. normalize         common magnitude scale, shared 0 dB, amplitudes,
                         noise floor
    7. compare           block-by-block difference accumulation

Both signals are windowed at the smaller of their measured frame rates, so
equal blocks produce equally spaced bins.

The engine owns the only mutable per-run state (warnings); configuration and
profile are immutable.
"""

import logging
from typing import List, Optional

import numpy as np

from ..analysis.balance import BalanceResult, apply_balance, check_balance
from ..analysis.constants import (
    NO_INDEX,
    MAX_CENTS_DIFF,
    MIN_CENTS_DIFF,
    LOWEST_NOISEFLOOR_ALLOWED,
    STEREO_TOLERANCE_REPORT,
    NORMALIZATION_RATIO_LIMIT,
)
from ..analysis.difference import compare_signals
from ..analysis.frequency import (
    FrequencyExtractor,
    WatermarkStatus,
    average_normalize,
    calculate_amplitudes,
    check_watermark,
    find_floor,
    find_max_magnitude,
    frequency_domain_normalize,
)
from ..analysis.profile import Profile, frames_to_seconds, seconds_to_samples
from ..analysis.sync_detector import SyncDetector
from ..analysis.windows import WindowManager
from ..config import AnalysisConfig
from ..errors import FrameRateMismatchError, InsufficientDataError, SyncNotFoundError
from ..interfaces.comparison_result import (
    AudioDifference,
    ComparisonResult,
    SyncResult,
    ToleranceWarning,
    WarningKind,
)
from ..interfaces.data_models import Block, BlockKind, Normalization, Role, Signal

logger = logging.getLogger(__name__)


class ComparisonEngine:
    """
    Runs a reference/comparison analysis for one profile.

    Args:
        profile: Expected block sequence and sync formats
        config: Analysis configuration, defaults when None
    """

    def __init__(self, profile: Profile, config: Optional[AnalysisConfig] = None):
        self.profile = profile
        self.config = config or AnalysisConfig()
        self.windows = WindowManager(self.config.window)
        self.extractor = FrequencyExtractor(self.config)
        self.detector = SyncDetector(profile, self.config)
        self.warnings: List[ToleranceWarning] = []

    def _warn(self, kind: WarningKind, message: str, signal: Signal) -> None:
        logger.warning(f"{signal.source_name}: {message}")
        self.warnings.append(ToleranceWarning(kind=kind, message=message, role=signal.role.value))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_signal(
        self,
        pcm: np.ndarray,
        sample_rate: int,
        channels: int,
        bytes_per_sample: int = 2,
        role: Role = Role.REFERENCE,
        source_name: str = "",
    ) -> Signal:
        """Wrap decoded interleaved PCM as a Signal for this profile."""
        if role is Role.REFERENCE:
            video_mode = self.config.video_mode_reference
        else:
            video_mode = self.config.video_mode_comparison
        sync_format = self.profile.sync_format(video_mode)

        signal = Signal.from_pcm(
            pcm, sample_rate, channels,
            bytes_per_sample=bytes_per_sample,
            role=role,
            source_name=source_name or role.value,
            video_mode=video_mode,
        )
        logger.info(f"{signal.source_name}: {signal.duration_seconds:.2f}s "
                    f"{sample_rate}Hz {channels}ch {bytes_per_sample * 8}bit, "
                    f"video mode {sync_format.name}")
        return signal

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _sync_hint(self) -> str:
        if self.config.sync_tolerance < 3:
            return ("retry with a higher sync tolerance or provide manual sync offsets; "
                    "also verify the video mode")
        return "provide manual sync offsets or verify the recording contains both pulse trains"

    def detect_sync(self, signal: Signal) -> SyncResult:
        """
        Locate both pulse trains and derive the frame rate.

        Raises:
            SyncNotFoundError: A pulse train could not be located
            FrameRateMismatchError: Frame rate off by more than 1% without
                ignore_frame_rate_diff
        """
        if signal.role is Role.REFERENCE:
            manual = self.config.manual_sync_reference
        else:
            manual = self.config.manual_sync_comparison

        if manual is not None:
            start, end = manual
            logger.info(f"{signal.source_name}: using manual sync {start}-{end}")
        else:
            start = self.detector.detect_start(signal)
            if start is None:
                raise SyncNotFoundError(
                    f"{signal.source_name}: starting pulse train not found", hint=self._sync_hint())
            end = self.detector.detect_end(signal, start)
            if end is None:
                raise SyncNotFoundError(
                    f"{signal.source_name}: trailing pulse train not found", hint=self._sync_hint())
            if self.config.sync_tolerance:
                self._warn(WarningKind.SYNC_TOLERANCE,
                           f"pulse trains matched with sync tolerance {self.config.sync_tolerance}", signal)

        if end <= start:
            raise SyncNotFoundError(
                f"{signal.source_name}: trailing sync {end} is not after leading sync {start}",
                hint=self._sync_hint())

        rate = self.detector.measure(signal, start, end)
        if not rate.within_tolerance:
            if not self.config.ignore_frame_rate_diff:
                raise FrameRateMismatchError(rate.expected_framerate, rate.framerate,
                                             rate.difference_percent)
            self._warn(WarningKind.FRAMERATE,
                       f"frame rate {rate.framerate:.4f}ms differs {rate.difference_percent:.2f}% "
                       f"from {rate.expected_framerate:.4f}ms", signal)
        if abs(rate.cents_difference) > MAX_CENTS_DIFF:
            self._warn(WarningKind.PITCH,
                       f"pitch deviates {rate.cents_difference:.3f} cents "
                       f"(estimated {rate.estimated_sample_rate:.2f}Hz)", signal)

        signal.start_offset = start
        signal.end_offset = end
        signal.estimated_sample_rate = rate.estimated_sample_rate
        signal.cents_difference = rate.cents_difference

        if self.config.sample_rate_adjust and abs(rate.cents_difference) > MIN_CENTS_DIFF:
            signal.effective_sample_rate = rate.estimated_sample_rate
            signal.framerate = rate.expected_framerate
            logger.info(f"{signal.source_name}: sample rate adjusted to "
                        f"{signal.effective_sample_rate:.4f}Hz")
        else:
            signal.framerate = rate.framerate

        logger.info(f"{signal.source_name}: sync {start}-{end}, framerate "
                    f"{rate.framerate:.6f}ms (expected {rate.expected_framerate}ms), "
                    f"{rate.cents_difference:+.3f} cents")

        return SyncResult(
            start_offset=start,
            end_offset=end,
            framerate=rate.framerate,
            expected_framerate=rate.expected_framerate,
            estimated_sample_rate=rate.estimated_sample_rate,
            cents_difference=rate.cents_difference,
            manual=manual is not None,
        )

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def layout_blocks(self, signal: Signal) -> List[Block]:
        """
        Slice the signal into profile blocks starting at the leading sync.

        Block starts follow a cumulative time cursor, so rounding never
        drifts; each block spans round(seconds * rate) samples.

        Raises:
            InsufficientDataError: The recording ends before an analyzed block
        """
        framerate = signal.framerate
        sample_rate = signal.effective_sample_rate
        lead_seconds = frames_to_seconds(self.profile.first_sync_frame_offset(), framerate)
        origin = signal.start_offset - seconds_to_samples(sample_rate, lead_seconds)
        if origin < 0:
            raise InsufficientDataError(
                f"{signal.source_name}: recording starts {-origin} samples after the profile")

        blocks: List[Block] = []
        elapsed = 0.0
        for element in self.profile.elements:
            descriptor = element.descriptor
            seconds = frames_to_seconds(descriptor.frames, framerate)
            begin = origin + seconds_to_samples(sample_rate, elapsed)
            end = begin + seconds_to_samples(sample_rate, seconds)
            elapsed += seconds

            if end > signal.num_frames:
                if descriptor.kind in (BlockKind.SILENCE, BlockKind.TONE, BlockKind.WATERMARK):
                    raise InsufficientDataError(
                        f"{signal.source_name}: unexpected end of data in block "
                        f"{element.index} ({descriptor.name}), needs {end} samples, "
                        f"recording has {signal.num_frames}")
                logger.debug(f"{signal.source_name}: block {element.index} "
                             f"({descriptor.name}) truncated at end of data")

            blocks.append(Block(
                index=element.index,
                name=descriptor.name,
                sub_index=element.sub_index,
                kind=descriptor.kind,
                type_id=descriptor.type_id,
                channel=descriptor.channel,
                frames=descriptor.frames,
                cut_frames=descriptor.cut_frames,
                seconds=seconds,
                sample_offset=begin,
                samples=signal.samples[begin:min(end, signal.num_frames)],
                window_shape=descriptor.mask_type,
            ))

        signal.blocks = blocks
        logger.debug(f"{signal.source_name}: {len(blocks)} blocks laid out from {origin}")
        return blocks

    def balance(self, signal: Signal, framerate: float) -> Optional[BalanceResult]:
        """Measure and correct stereo imbalance on the first mono block."""
        index = self.profile.first_mono_index()
        if index == NO_INDEX or signal.channels != 2:
            return None

        result = check_balance(signal, index, self.extractor, self.windows, framerate)
        if result is None:
            self._warn(WarningKind.BALANCE_UNAVAILABLE,
                       f"stereo balance could not be measured on block {index}", signal)
            return None
        if result.difference_percent > STEREO_TOLERANCE_REPORT:
            self._warn(WarningKind.STEREO_IMBALANCE,
                       f"{result.louder.name} channel louder by {-result.balance_db:.2f}dB "
                       f"({result.difference_percent:.2f}%)", signal)
        apply_balance(signal, result)
        return result

    def process_signal(self, signal: Signal, framerate: float) -> None:
        """Extract frequencies for every analyzed block and check watermarks."""
        sample_rate = signal.effective_sample_rate
        for block in signal.blocks:
            if not block.is_analyzed:
                continue
            window = self.windows.get_window(block.frames, block.cut_frames, framerate,
                                             sample_rate, shape=block.window_shape)
            self.extractor.process_block(block, sample_rate, window, signal.channels)

        if self.profile.has_watermark():
            self._check_watermarks(signal)

        logger.info(f"{signal.source_name}: {len(signal.analyzed_blocks())} blocks analyzed "
                    f"at {framerate:.6f}ms/frame, {self.windows.window_count} windows cached")

    def normalize(self, reference: Signal, comparison: Signal) -> float:
        """
        Bring both processed signals onto one dB scale.

        The configured normalization scales magnitudes of one signal onto
        the other. The louder of the two maxima then becomes 0 dB for both,
        and amplitudes and noise floors are derived from it.

        Returns:
            The shared 0 dB magnitude

        Raises:
            NormalizationError: No common peak for frequency normalization
        """
        for signal in (reference, comparison):
            find_max_magnitude(signal)

        mode = self.config.normalization
        if mode is Normalization.MAX_FREQUENCY:
            result = frequency_domain_normalize(reference, comparison)
            if result.stereo_reversed:
                self._warn(WarningKind.STEREO_REVERSED,
                           f"left and right channels might be reversed "
                           f"({result.ratio_db:+.2f}dB at the reference maximum)", comparison)
            if result.average_ratio > NORMALIZATION_RATIO_LIMIT:
                self._warn(WarningKind.NORMALIZATION,
                           f"fundamentals differ {result.average_ratio:.1f} to 1 after "
                           f"normalization, results may make no sense", comparison)
        elif mode is Normalization.AVERAGE:
            average_normalize(reference, comparison)

        zero_db = max(reference.max_magnitude.magnitude, comparison.max_magnitude.magnitude)
        for signal in (reference, comparison):
            calculate_amplitudes(signal, zero_db)
            sync_format = self.profile.sync_format(signal.video_mode)
            find_floor(signal, sync_format.scan_rate_hz)

        logger.info(f"Normalized with {mode.name.lower()}, 0dB at magnitude {zero_db:.6g}")
        return zero_db

    def _check_watermarks(self, signal: Signal) -> None:
        for block in signal.blocks:
            if block.kind is not BlockKind.WATERMARK:
                continue
            status = check_watermark(block, self.profile.watermark_valid_hz,
                                     self.profile.watermark_invalid_hz)
            if status is not WatermarkStatus.VALID:
                self._warn(WarningKind.WATERMARK,
                           f"watermark in block {block.index} is {status.value}", signal)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def significant_amplitude(self, reference: Signal) -> float:
        """Comparison cut-off: configured level, raised to a louder noise floor."""
        significant = self.config.significant_amplitude
        if self.config.ignore_floor or not reference.has_floor:
            return significant

        if reference.floor_amplitude > LOWEST_NOISEFLOOR_ALLOWED:
            self._warn(WarningKind.NOISE_FLOOR,
                       f"noise floor {reference.floor_amplitude:.2f}dB is too high, "
                       f"results will be unreliable", reference)
        if reference.floor_amplitude > significant:
            logger.info(f"Significant amplitude raised to noise floor "
                        f"{reference.floor_amplitude:.2f}dB")
            return reference.floor_amplitude
        return significant

    def compare(self, reference: Signal, comparison: Signal,
                significant_amplitude: Optional[float] = None) -> AudioDifference:
        if significant_amplitude is None:
            significant_amplitude = self.significant_amplitude(reference)
        return compare_signals(reference, comparison, self.config, significant_amplitude)

    def run(self, reference: Signal, comparison: Signal) -> ComparisonResult:
        """Full pipeline on two loaded signals."""
        self.warnings = []

        reference_sync = self.detect_sync(reference)
        comparison_sync = self.detect_sync(comparison)
        analysis_framerate = min(reference.framerate, comparison.framerate)

        balances = {}
        for signal in (reference, comparison):
            self.layout_blocks(signal)
            if self.config.channel_balance:
                balances[signal.role] = self.balance(signal, analysis_framerate)
            self.process_signal(signal, analysis_framerate)
        self.normalize(reference, comparison)

        significant = self.significant_amplitude(reference)
        differences = self.compare(reference, comparison, significant)

        return ComparisonResult(
            reference_name=reference.source_name,
            comparison_name=comparison.source_name,
            differences=differences,
            reference_sync=reference_sync,
            comparison_sync=comparison_sync,
            analysis_framerate=analysis_framerate,
            significant_amplitude=significant,
            reference_balance_db=reference.balance_db,
            comparison_balance_db=comparison.balance_db,
            warnings=list(self.warnings),
        )
