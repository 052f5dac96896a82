"""
Pytest configuration and fixtures for mdfourier tests.
"""

import copy
import pytest
import sys
from pathlib import Path

import numpy as np

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from mdfourier.analysis.profile import Profile
from mdfourier.interfaces.data_models import BlockKind


PROFILE_DATA = {
    'name': 'Test Pattern',
    'sync': [
        {
            'name': 'Test',
            'ms_per_frame': 20.0,
            'line_count': 0,
            'pulse_frequency': 1000.0,
            'pulse_frame_len': 4,
            'pulse_count': 10,
        },
    ],
    'blocks': [
        {'name': 'Sync', 'kind': 'sync', 'frames': 80},
        {'name': 'Silence', 'kind': 'silence', 'frames': 20},
        {'name': 'Tone', 'kind': 'tone', 'frames': 50, 'element_count': 5, 'type_id': 1},
        {'name': 'Silence', 'kind': 'silence', 'frames': 20},
        {'name': 'Sync', 'kind': 'sync', 'frames': 80},
    ],
}


def render_recording(profile, sample_rate=48000, lead_in=24000, tail=24000,
                     ms_per_frame=None, pulse_amplitude=0.8, tone_amplitude=0.4,
                     tone_hz=440.0, channels=2, right_gain=1.0, pulse_hz=None):
    """
    Synthesize a recording that follows `profile`.

    Pulses are cosines starting at phase zero, so every pulse train begins
    at an exact sample. pulse_hz renders them off the profile frequency.
    Tones are one continuous sine across tone blocks.

    Returns:
        Interleaved PCM (float64)
    """
    sync = profile.sync_format(0)
    ms = ms_per_frame or sync.ms_per_frame
    samples_per_frame = ms * sample_rate / 1000.0

    def position(frames):
        return lead_in + int(round(frames * samples_per_frame))

    mono = np.zeros(position(profile.total_frames()) + tail)
    period = sync.pulse_frame_len + sync.silence_frames
    pulse_hz = pulse_hz or sync.pulse_frequency

    for element in profile.elements:
        d = element.descriptor
        if d.kind is BlockKind.SYNC:
            for k in range(sync.pulse_count):
                p0 = position(element.frame_offset + k * period)
                p1 = position(element.frame_offset + k * period + sync.pulse_frame_len)
                n = np.arange(p1 - p0)
                mono[p0:p1] = pulse_amplitude * np.cos(
                    2 * np.pi * pulse_hz * n / sample_rate)
        elif d.kind is BlockKind.TONE:
            begin = position(element.frame_offset)
            end = position(element.frame_offset + d.frames)
            n = np.arange(begin, end)
            mono[begin:end] = tone_amplitude * np.sin(2 * np.pi * tone_hz * n / sample_rate)

    if channels == 1:
        return mono
    return np.column_stack([mono, mono * right_gain]).ravel()


@pytest.fixture
def sample_rate():
    """Standard sample rate for tests."""
    return 48000


@pytest.fixture
def profile_data():
    """Profile description as loaded from TOML."""
    return PROFILE_DATA


@pytest.fixture
def profile():
    """Sync, silence, five 1 s tones, silence, sync at 20 ms per frame."""
    return Profile.from_dict(PROFILE_DATA)


@pytest.fixture
def recording(profile):
    """Builder for synthetic recordings of the test profile."""
    def build(source_profile=None, **kwargs):
        return render_recording(source_profile or profile, **kwargs)
    return build


def make_profile(pulse_frequency=1000.0):
    """Test profile with another sync pulse frequency."""
    data = copy.deepcopy(PROFILE_DATA)
    data['sync'][0]['pulse_frequency'] = pulse_frequency
    return Profile.from_dict(data)


@pytest.fixture
def profile_factory():
    """Builder for test profiles with another pulse frequency."""
    return make_profile
