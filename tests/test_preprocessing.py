"""Tests for decoding, pixel buffers and resampling."""

import cv2
import numpy as np
import pytest

from visual_match.preprocessing import (
    PixelBuffer, PixelBufferError, ImageDecodeError, normalize_image,
    decode_image, resample, canonicalize, to_rgb_array, CANONICAL_SIZE,
)


class TestPixelBuffer:
    """Tests for raw buffer validation."""

    def test_rgb_bytes(self):
        buf = PixelBuffer(bytes(range(24)), width=4, height=2)
        arr = buf.to_array()
        assert arr.shape == (2, 4, 3)
        assert arr[1, 0].tolist() == [12, 13, 14]

    def test_grayscale_bytes(self):
        buf = PixelBuffer(bytes(6), width=3, height=2, channels=1)
        assert buf.to_array().shape == (2, 3)

    def test_wrong_length_raises(self):
        buf = PixelBuffer(bytes(10), width=4, height=2)
        with pytest.raises(PixelBufferError, match="expected 24"):
            buf.to_array()

    def test_invalid_dimensions_raise(self):
        with pytest.raises(PixelBufferError):
            PixelBuffer(b"", width=0, height=2).to_array()

    def test_unsupported_channels_raise(self):
        with pytest.raises(PixelBufferError):
            PixelBuffer(bytes(8), width=2, height=2, channels=2).to_array()


class TestNormalizeImage:
    """Tests for input coercion to RGB uint8."""

    def test_grayscale_becomes_rgb(self):
        gray = np.full((10, 10), 80, dtype=np.uint8)
        rgb = normalize_image(gray)
        assert rgb.shape == (10, 10, 3)
        assert np.all(rgb == 80)

    def test_rgba_drops_alpha(self):
        rgba = np.zeros((5, 5, 4), dtype=np.uint8)
        assert normalize_image(rgba).shape == (5, 5, 3)

    def test_float_unit_range_scaled(self):
        img = np.ones((4, 4, 3), dtype=np.float32)
        assert np.all(normalize_image(img) == 255)

    def test_empty_raises(self):
        with pytest.raises(PixelBufferError):
            normalize_image(np.zeros((0, 0, 3), dtype=np.uint8))


class TestDecodeImage:
    """Tests for encoded-bytes decoding."""

    def test_png_roundtrip_is_rgb(self, red_square_image):
        ok, encoded = cv2.imencode(".png", cv2.cvtColor(red_square_image,
                                                        cv2.COLOR_RGB2BGR))
        assert ok
        decoded = decode_image(encoded.tobytes())
        assert np.array_equal(decoded, red_square_image)

    def test_garbage_raises(self):
        with pytest.raises(ImageDecodeError):
            decode_image(b"definitely not an image")

    def test_empty_raises(self):
        with pytest.raises(ImageDecodeError):
            decode_image(b"")


class TestResample:
    """Tests for deterministic resampling."""

    def test_rgb_size(self, noise_image):
        out = resample(noise_image, 32, 16)
        assert out.shape == (16, 32, 3)

    def test_grayscale_size(self, noise_image):
        out = resample(noise_image, 64, 64, "grayscale")
        assert out.shape == (64, 64)

    def test_deterministic(self, noise_image):
        a = resample(noise_image, 50, 50)
        b = resample(noise_image, 50, 50)
        assert np.array_equal(a, b)

    def test_unknown_mode_raises(self, noise_image):
        with pytest.raises(ValueError):
            resample(noise_image, 8, 8, "cmyk")

    def test_canonical_size(self):
        img = np.zeros((300, 500, 3), dtype=np.uint8)
        assert canonicalize(img).shape == (CANONICAL_SIZE, CANONICAL_SIZE, 3)

    def test_pixel_buffer_input(self):
        buf = PixelBuffer(bytes(48), width=4, height=4)
        assert to_rgb_array(buf).shape == (4, 4, 3)

    def test_unsupported_input_raises(self):
        with pytest.raises(PixelBufferError):
            to_rgb_array("image.png")
