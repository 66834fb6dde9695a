"""Shared test fixtures for visual match tests."""

import numpy as np
import cv2
import pytest


@pytest.fixture
def red_square_image():
    """Generate a 224x224 red square on white background."""
    img = np.ones((224, 224, 3), dtype=np.uint8) * 255
    img[48:176, 48:176] = [200, 30, 30]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 224x224 blue circle on white background."""
    img = np.ones((224, 224, 3), dtype=np.uint8) * 255
    cv2.circle(img, (112, 112), 64, (30, 30, 200), -1)
    return img


@pytest.fixture
def green_rectangle_image():
    """Generate a 224x224 green rectangle on white background."""
    img = np.ones((224, 224, 3), dtype=np.uint8) * 255
    img[32:192, 72:152] = [30, 180, 30]  # Tall green rectangle
    return img


@pytest.fixture
def textured_image():
    """Generate a 224x224 checkerboard with strong edges and texture."""
    img = np.ones((224, 224, 3), dtype=np.uint8) * 200
    for y in range(0, 224, 28):
        for x in range(0, 224, 28):
            if (x // 28 + y // 28) % 2 == 0:
                img[y:y+28, x:x+28] = [50, 50, 50]
    return img


@pytest.fixture
def noise_image():
    """Generate a 224x224 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (224, 224, 3), dtype=np.uint8)


@pytest.fixture
def black_image():
    return np.zeros((224, 224, 3), dtype=np.uint8)


@pytest.fixture
def white_image():
    return np.full((224, 224, 3), 255, dtype=np.uint8)


@pytest.fixture
def solid_orange_image():
    img = np.zeros((224, 224, 3), dtype=np.uint8)
    img[:, :] = [230, 120, 20]
    return img
