"""
Unit tests for the sync pulse train detector.

Tests the threshold table, the pulse/silence state machine, sample-accurate
refinement, the retry ladder and rate measurement.
"""

import math

import pytest
import numpy as np


def _probes(pattern, bin_index=1):
    """'P' is a loud probe on bin_index, '.' is an empty probe."""
    from mdfourier.analysis.constants import NO_AMPLITUDE
    from mdfourier.interfaces.data_models import PulseSample

    probes = []
    for i, c in enumerate(pattern):
        if c == 'P':
            probes.append(PulseSample(offset=i * 10, bin_index=bin_index,
                                      hertz=bin_index * 1000.0, magnitude=1.0,
                                      phase=0.0, amplitude=0.0))
        else:
            probes.append(PulseSample(offset=i * 10, bin_index=0, hertz=0.0,
                                      magnitude=0.0, phase=0.0, amplitude=NO_AMPLITUDE))
    return probes


def _matcher(frequency=1000.0, pulse_count=3, tolerance=0):
    from mdfourier.analysis.sync_detector import PulseTrainMatcher

    return PulseTrainMatcher(frequency=frequency, bin_hz=1000.0, max_bin=24,
                             expected_pulse_probes=10, expected_silence_probes=10,
                             pulse_count=pulse_count, factor=1, tolerance=tolerance)


TRAIN = ("P" * 10 + "." * 10) * 3


class TestChooseThreshold:
    """Test the adaptive threshold table."""

    @pytest.mark.parametrize("percent,mean,stddev,expected", [
        (60.0, -10.0, 4.0, -10.0),    # saturated: mean
        (30.0, -10.0, 12.0, -10.0),   # loud and spread: mean
        (30.0, -10.0, 4.0, -14.0),    # loud: mean - std
        (30.0, -50.0, 4.0, -46.0),    # quiet: mean + std
    ])
    def test_explore(self, percent, mean, stddev, expected):
        """Thresholds for wide exploration passes."""
        from mdfourier.analysis.sync_detector import SearchPass, choose_threshold

        assert choose_threshold(SearchPass.EXPLORE, percent, mean, stddev) == expected

    @pytest.mark.parametrize("percent,mean,stddev,expected", [
        (95.0, -10.0, 4.0, -10.0),    # all tone: mean
        (60.0, -10.0, 4.0, -12.0),    # saturated: mean - std/2
        (30.0, -10.0, 12.0, -16.0),   # loud and spread: mean - std/2
        (30.0, -10.0, 4.0, -14.0),    # loud: mean - std
        (30.0, -50.0, 4.0, -50.0),    # quiet: mean
    ])
    def test_detect(self, percent, mean, stddev, expected):
        """Thresholds for narrow detection passes."""
        from mdfourier.analysis.sync_detector import SearchPass, choose_threshold

        assert choose_threshold(SearchPass.DETECT, percent, mean, stddev) == expected


class TestPulseTrainMatcher:
    """Test the pulse/silence state machine."""

    def test_run_limits(self):
        """Run bounds scale with the expected probe counts."""
        matcher = _matcher()

        assert matcher.min_pulse == 7
        assert matcher.max_pulse == 14
        assert matcher.min_silence == 6
        assert matcher.max_silence == 14
        assert matcher.required_silences == 2

    def test_complete_train(self):
        """Three pulses and two gaps make a train."""
        probes = _probes("." * 5 + TRAIN)

        match = _matcher().match(probes, threshold=-20.0)

        assert match is not None
        assert match.probe_index == 5
        assert match.offset == 50
        assert match.bin_index == 1
        assert match.pulses == 3
        assert match.silences == 2

    def test_single_stray_probe_tolerated(self):
        """One missing probe in a pulse and one stray in a gap do not break runs."""
        pattern = "." * 5 + "PPPP.PPPPP" + "....P....." + "P" * 10 + "." * 10 + "P" * 10 + "." * 5

        match = _matcher().match(_probes(pattern), threshold=-20.0)

        assert match is not None
        assert match.probe_index == 5

    def test_short_pulse_resets(self):
        """A too short pulse restarts the search after it."""
        pattern = "..." + "PPP" + "." * 10 + TRAIN

        match = _matcher().match(_probes(pattern), threshold=-20.0)

        assert match is not None
        assert match.probe_index == 16

    def test_incomplete_train(self):
        """Fewer pulses than pulse_count never complete."""
        pattern = "." * 5 + "P" * 10 + "." * 10 + "P" * 10 + "." * 10

        assert _matcher().match(_probes(pattern), threshold=-20.0) is None

    def test_quiet_probes_below_threshold(self):
        """Probes under the threshold are not pulse frames."""
        probes = _probes("." * 5 + TRAIN)
        for p in probes:
            if p.bin_index:
                p.amplitude = -30.0

        assert _matcher().match(probes, threshold=-20.0) is None

    def test_tolerance_locks_neighbor_bin(self):
        """8 kHz pulses landing one bin high need tolerance."""
        probes = _probes("." * 5 + TRAIN, bin_index=9)

        assert _matcher(frequency=8000.0).match(probes, threshold=-20.0) is None

        tolerant = _matcher(frequency=8000.0, tolerance=1)
        match = tolerant.match(probes, threshold=-20.0)

        assert tolerant.required_silences == 1
        assert match is not None
        assert match.bin_index == 9


class TestProbing:
    """Test 1 ms probe construction."""

    def test_probe_geometry(self, sample_rate):
        """Window, hop and bin arithmetic at 48 kHz."""
        from mdfourier.analysis.sync_detector import (
            find_frequency_bracket, harmonic_bins, probe_hop, probe_window_size,
        )

        window = probe_window_size(sample_rate)

        assert window == 48
        assert probe_hop(window, 4) == 12
        assert probe_hop(window, 8) == 6
        assert probe_hop(window, 48) == 1
        assert find_frequency_bracket(8820.0, window, sample_rate) == 9000.0
        assert harmonic_bins(1000.0, 1000.0, 24) == frozenset({1, 2, 3})
        assert harmonic_bins(8000.0, 1000.0, 24) == frozenset({8})

    def test_probe_offsets_and_bins(self, sample_rate):
        """Probes report offset, bin, magnitude and phase."""
        from mdfourier.analysis.sync_detector import probe_signal

        n = np.arange(4800)
        mono = 0.5 * np.cos(2 * np.pi * 2000.0 * n / sample_rate)

        probes = probe_signal(mono, sample_rate, 0, len(mono), factor=4)

        assert probes[0].offset == 0
        assert probes[1].offset == 12
        assert all(p.bin_index == 2 for p in probes)
        assert probes[0].magnitude == pytest.approx(0.5)
        assert probes[0].phase == pytest.approx(0.0, abs=1e-6)

    def test_silence_has_no_dominant_bin(self, sample_rate):
        """Digital silence has no bin and no amplitude."""
        from mdfourier.analysis.constants import NO_AMPLITUDE
        from mdfourier.analysis.sync_detector import assign_amplitudes, probe_signal

        probes = probe_signal(np.zeros(480), sample_rate, 0, 480, factor=4)

        assert assign_amplitudes(probes) == 0.0
        assert all(p.bin_index == 0 for p in probes)
        assert all(p.amplitude == NO_AMPLITUDE for p in probes)


class TestSyncDetector:
    """Test edge detection on synthetic recordings."""

    def _signal(self, pcm, channels=2, sample_rate=48000):
        from mdfourier.interfaces.data_models import Signal

        return Signal.from_pcm(pcm, sample_rate, channels, source_name="test")

    def _detector(self, profile, **config):
        from mdfourier.analysis.sync_detector import SyncDetector
        from mdfourier.config import AnalysisConfig

        return SyncDetector(profile, AnalysisConfig(**config))

    def test_exact_edges(self, profile, recording):
        """Both trains are found on the sample they start."""
        signal = self._signal(recording(lead_in=24007))

        assert self._detector(profile).detect(signal) == (24007, 24007 + 355200)

    def test_detection_is_deterministic(self, profile, recording):
        """Two runs over the same signal agree."""
        signal = self._signal(recording(lead_in=24007))
        detector = self._detector(profile)

        assert detector.detect_start(signal) == detector.detect_start(signal) == 24007

    def test_mono_recording(self, profile, recording):
        """One-channel captures are probed directly."""
        signal = self._signal(recording(channels=1), channels=1)

        assert self._detector(profile).detect_start(signal) == 24000

    def test_high_pulse_frequency(self, profile_factory, recording):
        """8820 Hz pulses fall between probe bins and still land on the exact sample."""
        profile = profile_factory(8820.0)
        signal = self._signal(recording(source_profile=profile))

        assert self._detector(profile).detect(signal) == (24000, 24000 + 355200)

    def test_high_pulse_frequency_at_44100(self, profile_factory, recording):
        """At 44.1 kHz the probe window is 44 samples and 8820 Hz repeats every 5."""
        profile = profile_factory(8820.0)
        pcm = recording(source_profile=profile, sample_rate=44100)
        signal = self._signal(pcm, sample_rate=44100)

        assert self._detector(profile).detect(signal) == (24000, 24000 + 326340)

    def test_pulse_period_shorter_than_window(self, profile_factory, recording):
        """2 kHz pulses repeat their phase twice per window; the first cycle wins."""
        profile = profile_factory(2000.0)
        signal = self._signal(recording(source_profile=profile, lead_in=24003))

        assert self._detector(profile).detect(signal) == (24003, 24003 + 355200)

    def test_noisy_16bit_capture(self, profile, recording):
        """Low-level noise and 16 bit quantization do not move the edges."""
        pcm = recording(lead_in=24007)
        noisy = pcm + np.random.default_rng(1234).normal(0.0, 1e-4, pcm.shape)
        signal = self._signal(np.round(noisy * 32767).astype(np.int16))

        assert self._detector(profile).detect(signal) == (24007, 24007 + 355200)

    def test_sync_tolerance_accepts_neighbor_bin(self, profile_factory, recording):
        """9 kHz pulses on an 8 kHz profile need one bin of tolerance."""
        profile = profile_factory(8000.0)
        signal = self._signal(recording(source_profile=profile, pulse_hz=9000.0, lead_in=24007))

        assert self._detector(profile).detect_start(signal) is None
        assert self._detector(profile, sync_tolerance=1).detect(signal) == (24007, 24007 + 355200)

    def test_retry_ladder_relocates_search(self, profile, recording):
        """A late train is outside the first two search regions."""
        signal = self._signal(recording(lead_in=150000))

        start = self._detector(profile).detect_start(signal)

        assert start == 150000

    def test_signal_start_fallback(self, profile, recording):
        """With no usable policies the amplitude ramp anchors the search."""
        from mdfourier.analysis.sync_detector import RetryPolicy, SyncDetector
        from mdfourier.config import AnalysisConfig

        signal = self._signal(recording(lead_in=30000))
        detector = SyncDetector(profile, AnalysisConfig(),
                                leading_policies=(RetryPolicy(search_factor=0.1,
                                                              candidate_offsets=(0.9,)),))

        assert detector.detect_start(signal) == 30000

    def test_trailing_edge_with_drift(self, profile, recording):
        """0.5% slower playback still finds the trailing train."""
        signal = self._signal(recording(ms_per_frame=20.1))
        detector = self._detector(profile)

        start, end = detector.detect(signal)
        rate = detector.measure(signal, start, end)

        assert start == 24000
        assert end == 24000 + 356976
        assert rate.framerate == pytest.approx(20.1)
        assert rate.within_tolerance

    def test_no_sync_in_silence(self, profile):
        """Silence yields no edges."""
        signal = self._signal(np.zeros(2 * 480000))

        assert self._detector(profile).detect(signal) is None

    def test_refine_finds_zero_phase_probe(self, profile, sample_rate):
        """The first zero-phase window of the pulse is the edge, from either side."""
        mono = np.zeros(48000)
        n = np.arange(3840)
        mono[24007:24007 + 3840] = 0.8 * np.cos(2 * np.pi * 1000.0 * n / sample_rate)
        detector = self._detector(profile)

        assert detector.refine_offset(mono, sample_rate, 24007 + 30, 1) == 24007
        assert detector.refine_offset(mono, sample_rate, 24007 - 40, 1, 1000.0) == 24007
        assert detector.refine_offset(np.zeros(48000), sample_rate, 24007, 1) is None

    def test_refine_ignores_partial_windows(self, profile, sample_rate):
        """A window straddling the onset is weaker than the pulse and never chosen."""
        mono = np.zeros(48000)
        n = np.arange(3840)
        mono[24003:24003 + 3840] = 0.8 * np.cos(2 * np.pi * 2000.0 * n / sample_rate)
        detector = self._detector(profile)

        assert detector.refine_offset(mono, sample_rate, 23990, 2, 2000.0) == 24003

    def test_signal_start_ramp(self, profile, sample_rate):
        """The ramp starts within one window of the first energy."""
        detector = self._detector(profile)
        mono = np.zeros(48000)
        n = np.arange(24000)
        mono[10000:34000] = 0.8 * np.cos(2 * np.pi * 1000.0 * n / sample_rate)

        start = detector.detect_signal_start(mono, sample_rate, 0, len(mono))

        assert 10000 - 48 < start <= 10000
        assert detector.detect_signal_start(np.zeros(4800), sample_rate, 0, 4800) is None


class TestRate:
    """Test frame rate and sample rate estimation."""

    def test_nominal_rate(self):
        """Nominal spacing gives 20 ms and no pitch shift."""
        from mdfourier.analysis.sync_detector import measure_rate

        rate = measure_rate(0, 355200, 48000, 370, 20.0)

        assert rate.framerate == pytest.approx(20.0)
        assert rate.estimated_sample_rate == pytest.approx(48000.0)
        assert rate.cents_difference == pytest.approx(0.0, abs=1e-9)
        assert rate.difference_percent == pytest.approx(0.0, abs=1e-9)

    def test_slow_playback(self):
        """0.5% slower playback raises the estimated sample rate."""
        from mdfourier.analysis.sync_detector import measure_rate

        rate = measure_rate(0, 356976, 48000, 370, 20.0)

        assert rate.framerate == pytest.approx(20.1)
        assert rate.estimated_sample_rate == pytest.approx(48240.0)
        assert rate.cents_difference == pytest.approx(1200 * math.log2(1.005))
        assert rate.difference_percent == pytest.approx(0.5)
        assert rate.within_tolerance

    def test_outside_tolerance(self):
        """A 2% deviation is outside tolerance."""
        from mdfourier.analysis.sync_detector import measure_rate

        rate = measure_rate(0, int(355200 * 1.02), 48000, 370, 20.0)
        assert not rate.within_tolerance

    def test_frames_between_must_be_positive(self):
        """Zero frames between syncs is an error."""
        from mdfourier.analysis.sync_detector import calculate_frame_rate

        with pytest.raises(ValueError):
            calculate_frame_rate(0, 1000, 48000, 0)
