"""Tests for capture, synthetic patterns and hologram encoding."""

import cv2
import numpy as np
import pytest

from field_capture import (
    TEST_PATTERNS,
    capture_intensity_field,
    encode_phase_hologram,
    generate_test_pattern,
    is_power_of_two,
    load_image,
)


class TestPowerOfTwo:

    @pytest.mark.parametrize("n", [1, 2, 64, 256, 1024])
    def test_accepts(self, n):
        assert is_power_of_two(n)

    @pytest.mark.parametrize("n", [0, -4, 3, 100, 255])
    def test_rejects(self, n):
        assert not is_power_of_two(n)


class TestCapture:

    def test_identity_for_matching_grid(self):
        img = np.random.default_rng(0).random((64, 64))
        field = capture_intensity_field(img, size=64)
        np.testing.assert_array_equal(field.samples, img)
        assert field.size == 64
        assert not field.low_variation

    def test_center_crop_and_nearest_sampling(self):
        img = np.zeros((100, 140))
        img[:, 20:120] = np.arange(100)[None, :] / 100.0
        field = capture_intensity_field(img, size=4)
        # square is columns 20..119, samples at floor(i * 100 / 4)
        np.testing.assert_allclose(field.samples[0], [0.0, 0.25, 0.5, 0.75])
        assert field.source_shape == (100, 140)

    def test_uint8_rgb_is_averaged(self):
        img = np.zeros((32, 32, 3), dtype=np.uint8)
        img[..., 0] = 255
        field = capture_intensity_field(img, size=32)
        np.testing.assert_allclose(field.samples, 1.0 / 3.0)

    def test_area_interpolation(self):
        img = np.tile(np.array([[0.0, 1.0]]), (64, 32))
        field = capture_intensity_field(img, size=32, interpolation="area")
        np.testing.assert_allclose(field.samples, 0.5, atol=1e-6)

    def test_values_clipped(self):
        img = np.full((16, 16), 3.0)
        img[0, 0] = -1.0
        field = capture_intensity_field(img, size=16)
        assert field.samples.min() >= 0.0 and field.samples.max() <= 1.0

    def test_samples_read_only(self):
        field = capture_intensity_field(np.zeros((8, 8)), size=8)
        with pytest.raises(ValueError):
            field.samples[0, 0] = 1.0

    @pytest.mark.parametrize("pattern", ["uniform", "zeros"])
    def test_low_variation_flagged(self, pattern):
        field = capture_intensity_field(generate_test_pattern(32, pattern), size=32)
        assert field.low_variation
        assert field.value_range == 0.0

    def test_bad_size(self):
        with pytest.raises(ValueError):
            capture_intensity_field(np.zeros((64, 64)), size=48)

    def test_bad_interpolation(self):
        with pytest.raises(ValueError):
            capture_intensity_field(np.zeros((8, 8)), size=8, interpolation="cubic")

    def test_empty_image(self):
        with pytest.raises(ValueError):
            capture_intensity_field(np.zeros((0, 5)), size=8)


class TestLoadImage:

    def test_round_trip_png(self, tmp_path):
        img = np.zeros((16, 16, 3), dtype=np.uint8)
        img[..., 2] = 200      # red in BGR
        path = str(tmp_path / "fringe.png")
        assert cv2.imwrite(path, img)
        rgb = load_image(path)
        assert rgb.shape == (16, 16, 3)
        assert np.all(rgb[..., 0] == 200)

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuntimeError):
            load_image(str(tmp_path / "nope.png"))


class TestPatterns:

    @pytest.mark.parametrize("pattern", TEST_PATTERNS)
    def test_shape_and_range(self, pattern):
        p = generate_test_pattern(64, pattern)
        assert p.shape == (64, 64)
        assert p.min() >= 0.0 and p.max() <= 1.0

    def test_single_wave_formula(self):
        p = generate_test_pattern(128, "single-wave", frequency=10)
        x = np.arange(128)
        np.testing.assert_allclose(p[5], 0.5 + 0.5 * np.cos(2 * np.pi * 10 * x / 128))

    def test_unknown_pattern(self):
        with pytest.raises(ValueError):
            generate_test_pattern(32, "rings")

    def test_encode_zero_phase_is_single_wave(self):
        h = encode_phase_hologram(np.zeros((64, 64)), 8.0)
        np.testing.assert_allclose(h, generate_test_pattern(64, "single-wave", frequency=8))

    def test_encode_rejects_non_square(self):
        with pytest.raises(ValueError):
            encode_phase_hologram(np.zeros((32, 64)), 8.0)
