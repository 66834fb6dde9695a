"""Tests for HSV color, Sobel edge and LBP texture histograms."""

import numpy as np
import pytest

from visual_match.histograms import (
    rgb_to_hsv, extract_color_histogram, extract_edge_histogram,
    extract_texture_histogram, sobel_magnitude, lbp_codes,
    COLOR_HIST_DIM, EDGE_BINS, TEXTURE_BINS, EDGE_SIZE, TEXTURE_SIZE,
)


class TestRgbToHsv:
    """Tests for the RGB → HSV conversion."""

    @pytest.mark.parametrize("rgb, expected", [
        ((1.0, 0.0, 0.0), (0.0, 1.0, 1.0)),
        ((0.0, 1.0, 0.0), (1 / 3, 1.0, 1.0)),
        ((0.0, 0.0, 1.0), (2 / 3, 1.0, 1.0)),
        ((1.0, 1.0, 0.0), (1 / 6, 1.0, 1.0)),
        ((0.5, 0.5, 0.5), (0.0, 0.0, 0.5)),
        ((0.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
    ])
    def test_known_colors(self, rgb, expected):
        hsv = rgb_to_hsv(np.array(rgb))
        assert np.allclose(hsv, expected)

    def test_negative_hue_wraps_below_one(self):
        # Red max with blue above green gives a negative raw angle
        h, s, v = rgb_to_hsv(np.array([1.0, 0.0, 0.5]))
        assert 5 / 6 <= h < 1.0
        assert s == pytest.approx(1.0)
        assert v == pytest.approx(1.0)

    def test_vectorized_shape(self):
        pixels = np.random.RandomState(0).rand(10, 4, 3)
        assert rgb_to_hsv(pixels).shape == (10, 4, 3)


class TestColorHistogram:
    """Tests for the 16x8x8 HSV histogram."""

    def test_output_shape(self, red_square_image):
        hist = extract_color_histogram(red_square_image)
        assert hist.shape == (COLOR_HIST_DIM,)

    def test_sums_to_one(self, noise_image):
        hist = extract_color_histogram(noise_image)
        assert hist.sum() == pytest.approx(1.0, abs=1e-9)

    def test_solid_color_single_bin(self):
        img = np.zeros((224, 224, 3), dtype=np.uint8)
        img[:, :] = [255, 0, 0]
        hist = extract_color_histogram(img)
        # Pure red: h bin 0, s bin 7, v bin 7
        assert hist[0 * 64 + 7 * 8 + 7] == pytest.approx(1.0)
        assert np.count_nonzero(hist) == 1

    def test_black_lands_in_first_bin(self, black_image):
        hist = extract_color_histogram(black_image)
        assert hist[0] == pytest.approx(1.0)

    def test_different_images_different_histograms(self, red_square_image,
                                                   blue_circle_image):
        hist_red = extract_color_histogram(red_square_image)
        hist_blue = extract_color_histogram(blue_circle_image)
        distance = np.linalg.norm(hist_red - hist_blue)
        assert distance > 0.1, "Distinct colors should produce different histograms"

    def test_no_nan_or_inf(self, noise_image):
        hist = extract_color_histogram(noise_image)
        assert np.all(np.isfinite(hist))


class TestEdgeHistogram:
    """Tests for the Sobel edge-strength histogram."""

    def test_output_shape(self, textured_image):
        hist = extract_edge_histogram(textured_image)
        assert hist.shape == (EDGE_BINS,)

    def test_flat_image_all_zero(self, white_image):
        hist = extract_edge_histogram(white_image)
        assert np.all(hist == 0)

    def test_normalized_by_total_pixels(self, textured_image):
        hist = extract_edge_histogram(textured_image)
        assert hist.sum() == pytest.approx(1.0, abs=1e-9)
        # The zero-magnitude border alone fills this share of bin 0
        border = EDGE_SIZE * EDGE_SIZE - (EDGE_SIZE - 2) ** 2
        assert hist[0] >= border / (EDGE_SIZE * EDGE_SIZE)

    def test_border_left_at_zero(self, noise_image):
        gray = noise_image[:, :, 0]
        magnitude = sobel_magnitude(gray)
        assert np.all(magnitude[0, :] == 0)
        assert np.all(magnitude[-1, :] == 0)
        assert np.all(magnitude[:, 0] == 0)
        assert np.all(magnitude[:, -1] == 0)

    def test_sobel_matches_kernels(self):
        gray = np.zeros((3, 3), dtype=np.uint8)
        gray[:, 2] = 100  # right column bright
        magnitude = sobel_magnitude(gray)
        # Gx = 100 * (1 + 2 + 1), Gy = 0
        assert magnitude[1, 1] == pytest.approx(400.0)

    def test_strongest_edge_in_last_bin(self, textured_image):
        hist = extract_edge_histogram(textured_image)
        assert hist[-1] > 0


class TestTextureHistogram:
    """Tests for the LBP texture histogram."""

    def test_output_shape(self, noise_image):
        hist = extract_texture_histogram(noise_image)
        assert hist.shape == (TEXTURE_BINS,)

    def test_counts_sum_to_interior_pixels(self, noise_image):
        gray = noise_image[:TEXTURE_SIZE, :TEXTURE_SIZE, 0]
        codes = lbp_codes(gray)
        counts = np.bincount(codes.ravel(), minlength=TEXTURE_BINS)
        assert counts.sum() == (TEXTURE_SIZE - 2) ** 2

    def test_normalized_sums_to_one(self, noise_image):
        hist = extract_texture_histogram(noise_image)
        assert hist.sum() == pytest.approx(1.0, abs=1e-9)

    def test_flat_image_all_ones_code(self, white_image):
        hist = extract_texture_histogram(white_image)
        assert hist[255] == pytest.approx(1.0)

    def test_neighbour_bit_order(self):
        gray = np.array([
            [9, 0, 0],
            [0, 5, 9],
            [0, 0, 0],
        ], dtype=np.uint8)
        # Top-left is bit 0, right is bit 3
        assert lbp_codes(gray)[0, 0] == (1 << 0) | (1 << 3)
