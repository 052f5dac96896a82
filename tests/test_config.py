"""
Unit tests for configuration loading and validation.
"""

import logging

import pytest
import toml


CONFIG_TOML = """
[analysis]
start_hz = 10
end_hz = 22000
max_freq = 500
window = "h"
zero_pad = true
normalization = "a"

[sync]
tolerance = 2
ignore_frame_rate_diff = true
manual_comparison = [1000, 356200]

[compare]
significant_amplitude = -80
frequency_tolerance_hz = 0.5
channel_balance = false
"""


class TestAnalysisConfig:
    """Test defaults and validation."""

    def test_defaults(self):
        """Defaults follow the analysis constants."""
        from mdfourier.config import AnalysisConfig
        from mdfourier.interfaces.data_models import WindowShape

        config = AnalysisConfig()

        assert config.start_hz == 20.0
        assert config.end_hz == 20000.0
        assert config.window is WindowShape.TUKEY
        assert config.significant_amplitude == -66.0
        assert not config.tolerant_matching
        assert config.manual_sync_reference is None

    @pytest.mark.parametrize("changes", [
        {'start_hz': 500.0, 'end_hz': 100.0},
        {'max_freq': 0},
        {'significant_amplitude': 3.0},
        {'frequency_tolerance_hz': -1.0},
        {'sync_tolerance': 4},
        {'manual_sync_reference': (5000, 100)},
    ])
    def test_invalid_values(self, changes):
        """Out of range settings are rejected at construction."""
        from mdfourier.config import AnalysisConfig

        with pytest.raises(ValueError):
            AnalysisConfig(**changes)

    def test_window_code_accepted(self):
        """Window shapes accept their profile code."""
        from mdfourier.config import AnalysisConfig
        from mdfourier.interfaces.data_models import WindowShape

        assert AnalysisConfig(window="f").window is WindowShape.FLATTOP

    def test_normalization_code_accepted(self):
        """Normalization defaults to the frequency maximum and accepts codes."""
        from mdfourier.config import AnalysisConfig
        from mdfourier.interfaces.data_models import Normalization

        assert AnalysisConfig().normalization is Normalization.MAX_FREQUENCY
        assert AnalysisConfig(normalization="n").normalization is Normalization.NONE
        with pytest.raises(ValueError):
            AnalysisConfig(normalization="x")

    def test_overrides_return_new_config(self):
        """with_overrides leaves the original untouched."""
        from mdfourier.config import AnalysisConfig

        base = AnalysisConfig()
        tolerant = base.with_overrides(frequency_tolerance_hz=1.0)

        assert tolerant.tolerant_matching
        assert not base.tolerant_matching


class TestLoadConfig:
    """Test TOML loading."""

    def test_load_from_file(self, tmp_path):
        """Every TOML table maps onto its fields."""
        from mdfourier.config import load_config
        from mdfourier.interfaces.data_models import WindowShape, Normalization

        path = tmp_path / "mdfourier.toml"
        path.write_text(CONFIG_TOML)

        config = load_config(str(path))

        assert config.start_hz == 10.0
        assert config.end_hz == 22000.0
        assert config.max_freq == 500
        assert config.window is WindowShape.HANN
        assert config.zero_pad
        assert config.normalization is Normalization.AVERAGE
        assert config.sync_tolerance == 2
        assert config.ignore_frame_rate_diff
        assert config.manual_sync_comparison == (1000, 356200)
        assert config.manual_sync_reference is None
        assert config.significant_amplitude == -80.0
        assert config.frequency_tolerance_hz == 0.5
        assert not config.channel_balance

    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        """A missing file logs and falls back to defaults."""
        from mdfourier.config import AnalysisConfig, load_config

        with caplog.at_level(logging.WARNING):
            config = load_config(str(tmp_path / "absent.toml"))

        assert config == AnalysisConfig()
        assert "not found" in caplog.text

    def test_load_profile_data(self, tmp_path, profile_data):
        """A TOML profile builds a Profile."""
        from mdfourier.analysis.profile import Profile
        from mdfourier.config import load_profile_data

        path = tmp_path / "profile.toml"
        path.write_text(toml.dumps(profile_data))

        profile = Profile.from_dict(load_profile_data(str(path)))

        assert profile.name == "Test Pattern"
        assert profile.total_blocks == 9
        assert profile.sync_format(0).pulse_frequency == 1000.0


class TestConfigureLogging:
    """Test the logging setup helper."""

    @pytest.mark.parametrize("verbose,level", [(False, logging.INFO), (True, logging.DEBUG)])
    def test_level_follows_verbosity(self, monkeypatch, verbose, level):
        """Verbose logging switches to DEBUG."""
        from mdfourier import config as config_module

        calls = []
        monkeypatch.setattr(config_module.logging, 'basicConfig',
                            lambda **kwargs: calls.append(kwargs))

        config_module.configure_logging(verbose=verbose)

        assert calls == [{'level': level, 'format': config_module.LOG_FORMAT}]
