#!/usr/bin/env python3
"""
MDFourier Shared Constants - Central Reference for the Analysis Core

================================================================================
PURPOSE
================================================================================
Single source of truth for sentinels, frequency limits, amplitude limits,
block type identifiers and sync-detection tuning values used across the
windowing, extraction, sync and difference modules.

================================================================================
AMPLITUDE SCALE
================================================================================
All amplitudes are dBFS-like values relative to the loudest magnitude found
in the reference signal (0 dB). Anything that cannot be expressed on that
scale (zero magnitude, zero reference, magnitude above the reference) is
reported as NO_AMPLITUDE.

    amplitude = 20 * log10(magnitude / reference)

SIGNIFICANT_VOLUME is the default comparison cut-off. Silence blocks are
compared down to SILENCE_LIMIT so the whole noise floor is retained.

================================================================================
BLOCK TYPES
================================================================================
Positive type ids are user-defined tone groups from the profile. Negative
ids are control types:

    TYPE_SILENCE          -1   silence / noise floor reference
    TYPE_SYNC             -2   pulse train marker
    TYPE_INTERNAL_KNOWN   -4   internal sync with a known length
    TYPE_SKIP             -6   ignored region
    TYPE_TIMEDOMAIN       -7   kept for time-domain inspection only
    TYPE_SILENCE_OVERRIDE -8   silence that is never used as floor
    TYPE_WATERMARK        -9   capture-chain watermark tone

================================================================================
SYNC DETECTION
================================================================================
Probes are 1 ms FFT windows advanced by 1/N ms. The detection passes use:

    N = 4   wide exploration over a large region
    N = 8   narrow detection anchored near a coarse offset
    N = 24  blind amplitude-ramp signal start

Harmonics of the pulse frequency are only accepted below 6 kHz, above that
the 2nd harmonic already sits outside the useful capture bandwidth.
"""

# =============================================================================
# SENTINELS
# =============================================================================

NO_AMPLITUDE = -10000.0
NO_INDEX = -100

# =============================================================================
# FREQUENCY LIMITS
# =============================================================================

START_HZ = 20.0
END_HZ = 20000.0
FREQ_COUNT = 2000           # Default MaxFreq per block/channel
MAX_FREQ_COUNT = 96000

# Hertz are quantized to 1/10000 Hz for exact matching
HERTZ_DECIMALS = 4
HERTZ_QUANTUM = 10 ** HERTZ_DECIMALS

# =============================================================================
# AMPLITUDE LIMITS (dB)
# =============================================================================

SIGNIFICANT_VOLUME = -66.0
SILENCE_LIMIT = -220.0
PCM_16BIT_MIN_AMPLITUDE = -96.0
LOWEST_NOISEFLOOR_ALLOWED = -40.0
COMPARISON_EXTRA_RANGE = 20.0   # Comparison side is searched this much deeper
NOISE_CHANNEL_FLOOR_OFFSET = 3.0

# =============================================================================
# BLOCK TYPE IDS
# =============================================================================

TYPE_SILENCE = -1
TYPE_SYNC = -2
TYPE_INTERNAL_KNOWN = -4
TYPE_SKIP = -6
TYPE_TIMEDOMAIN = -7
TYPE_SILENCE_OVERRIDE = -8
TYPE_WATERMARK = -9

# =============================================================================
# PITCH / RATE
# =============================================================================

MAX_CENTS_DIFF = 0.25
MIN_CENTS_DIFF = 0.08
FRAMERATE_TOLERANCE_PERCENT = 1.0

# =============================================================================
# STEREO BALANCE
# =============================================================================

STEREO_TOLERANCE_REPORT = 8.5   # Percent

# =============================================================================
# NOISE FLOOR
# =============================================================================

GRID_FREQUENCIES = (50.0, 60.0)
GRID_HARMONICS = 8
GRID_TOLERANCE_HZ = 2.0
SCAN_RATE_TOLERANCE_HZ = 50.0

# =============================================================================
# SYNC DETECTION
# =============================================================================

PROBE_WINDOW_MS = 1.0
PROBE_LOWPASS_HZ = 24000.0
HARMONIC_LIMIT_HZ = 6000.0

FACTOR_EXPLORE = 4
FACTOR_DETECT = 8
FACTOR_SIGNAL_START = 24

# Threshold table breakpoints
PERCENT_SATURATED = 55.0
PERCENT_ALL_TONE = 90.0
MEAN_LOUD_LIMIT = 40.0

# Pulse/silence run acceptance, relative to the expected probe count
RUN_LOWER_RATIO = 0.75
RUN_UPPER_RATIO = 1.25

# Refinement searches this many probe widths around the approximate edge
REFINE_PROBE_WIDTHS = 2

# Blind signal start
SIGNAL_START_THRESHOLD_DB = -30.0
SIGNAL_START_SUSTAIN_MS = 5.0

# Edge refinement keeps probes within this ratio of the strongest one, and
# treats phases within this many degrees of the best as equally good
REFINE_MAGNITUDE_RATIO = 0.9
REFINE_PHASE_EPSILON = 1.0

# =============================================================================
# NORMALIZATION
# =============================================================================

# Alternative reference peaks tried when the loudest one gives no usable ratio
FREQ_DOMAIN_TRIES = 10
FREQ_DOMAIN_RATIO_DB = 30.0
# Tolerant peak lookup accepts this many bins of difference
NORMALIZATION_BIN_TOLERANCE = 5
# Linear ratio of fundamental averages above which results are suspicious
NORMALIZATION_RATIO_LIMIT = 30.0
