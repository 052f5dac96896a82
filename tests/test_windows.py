"""
Unit tests for analysis windows.

Tests table construction, symmetry and the window cache.
"""

import pytest
import numpy as np


class TestBuildWindow:
    """Test window table construction."""

    @pytest.mark.parametrize("shape", ["t", "h", "m", "f"])
    @pytest.mark.parametrize("size", [64, 65, 1000])
    def test_tables_are_symmetric(self, shape, size):
        """Every shaped window mirrors around its center."""
        from mdfourier.analysis.windows import build_window
        from mdfourier.interfaces.data_models import WindowShape

        table = build_window(WindowShape(shape), size)

        assert len(table) == size
        assert np.array_equal(table, table[::-1])

    def test_rectangular_is_all_ones(self):
        """The rectangular window is flat."""
        from mdfourier.analysis.windows import build_window
        from mdfourier.interfaces.data_models import WindowShape

        table = build_window(WindowShape.RECTANGULAR, 128)
        assert np.all(table == 1.0)

    def test_hann_has_no_zero_endpoints(self):
        """Hann is built two samples wider and trimmed."""
        from mdfourier.analysis.windows import build_window
        from mdfourier.interfaces.data_models import WindowShape

        table = build_window(WindowShape.HANN, 100)
        assert table[0] > 0.0
        assert table[-1] > 0.0

    def test_zero_size_rejected(self):
        """A window needs at least one sample."""
        from mdfourier.analysis.windows import build_window
        from mdfourier.interfaces.data_models import WindowShape

        with pytest.raises(ValueError):
            build_window(WindowShape.TUKEY, 0)


class TestWindowManager:
    """Test get-or-create window caching."""

    def test_size_from_frames(self, sample_rate):
        """50 frames at 20 ms is one second of samples."""
        from mdfourier.analysis.windows import WindowManager

        manager = WindowManager()
        window = manager.get_window(50, 0, 20.0, sample_rate)

        assert window.size == sample_rate
        assert window.padding == 0
        assert window.transform_size == sample_rate
        assert window.seconds == pytest.approx(1.0)

    def test_cut_frames_become_padding(self, sample_rate):
        """Cut frames are zero padding after the window."""
        from mdfourier.analysis.windows import WindowManager

        window = WindowManager().get_window(50, 10, 20.0, sample_rate)

        assert window.size == 40 * 960
        assert window.padding == 10 * 960
        assert window.transform_size == 50 * 960

    def test_same_key_returns_same_object(self, sample_rate):
        """Windows are cached per key."""
        from mdfourier.analysis.windows import WindowManager

        manager = WindowManager()
        first = manager.get_window(50, 0, 20.0, sample_rate)
        second = manager.get_window(50, 0, 20.0, sample_rate)

        assert first is second
        assert manager.window_count == 1

    def test_shape_is_part_of_the_key(self, sample_rate):
        """Different shapes are cached separately."""
        from mdfourier.analysis.windows import WindowManager
        from mdfourier.interfaces.data_models import WindowShape

        manager = WindowManager()
        tukey = manager.get_window(20, 0, 20.0, sample_rate)
        flattop = manager.get_window(20, 0, 20.0, sample_rate, shape=WindowShape.FLATTOP)

        assert tukey is not flattop
        assert flattop.shape is WindowShape.FLATTOP
        assert manager.window_count == 2

        manager.clear()
        assert manager.window_count == 0

    def test_correction_is_coherent_sum(self, sample_rate):
        """Rectangular correction is the window size."""
        from mdfourier.analysis.windows import WindowManager
        from mdfourier.interfaces.data_models import WindowShape

        window = WindowManager(WindowShape.RECTANGULAR).get_window(10, 0, 20.0, sample_rate)

        assert window.correction == pytest.approx(window.size)
        assert window.enbw == pytest.approx(1.0)

    def test_zero_length_window_rejected(self, sample_rate):
        """Zero frames give no window."""
        from mdfourier.analysis.windows import WindowManager

        with pytest.raises(ValueError):
            WindowManager().get_window(1, 0, 0.0001, sample_rate)
