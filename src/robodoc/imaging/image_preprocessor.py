#!/usr/bin/env python3
"""
Image Preprocessor for Body Segment Screening

Turns an uploaded image into the tensor a segment model expects:
- Decode JPEG/PNG bytes (alpha channel dropped)
- Convert BGR to RGB
- Resize to the segment's input resolution
- Normalize pixel values
- Flatten to a row-major, channel-interleaved float32 array

Author: RoboDoc Team
License: MIT
"""

import logging
from pathlib import Path
from typing import Tuple, Optional, Union

import numpy as np
import cv2

from ..config import InferenceSettings, SegmentSpec
from ..errors import ImageDecodeError

logger = logging.getLogger(__name__)

INTERPOLATIONS = {
    'nearest': cv2.INTER_NEAREST,
    'linear': cv2.INTER_LINEAR,
}


class ImagePreprocessor:
    """
    Preprocessor for segment model input.

    Attributes:
        input_size: Target image dimensions (width, height)
        normalization: Normalization method
        interpolation: Resize interpolation name ("nearest" or "linear")
        imagenet_mean: Mean values for ImageNet normalization
        imagenet_std: Std values for ImageNet normalization
    """

    def __init__(
        self,
        input_size: Tuple[int, int] = (416, 416),
        normalization: str = "0-1",
        interpolation: str = "nearest",
        imagenet_mean: Optional[Tuple[float, float, float]] = None,
        imagenet_std: Optional[Tuple[float, float, float]] = None
    ) -> None:
        """
        Initialize the image preprocessor.

        Args:
            input_size: Target (width, height) for model input
            normalization: Method - "0-1", "-1-1", or "imagenet"
            interpolation: "nearest" or "linear"
            imagenet_mean: Mean values for ImageNet normalization
            imagenet_std: Std values for ImageNet normalization
        """
        self.input_size = tuple(input_size)
        self.normalization = normalization
        self.interpolation = interpolation
        self.imagenet_mean = imagenet_mean or (0.485, 0.456, 0.406)
        self.imagenet_std = imagenet_std or (0.229, 0.224, 0.225)

    @classmethod
    def for_segment(
        cls,
        segment: SegmentSpec,
        settings: Optional[InferenceSettings] = None
    ) -> 'ImagePreprocessor':
        """Create a preprocessor sized for one segment."""
        settings = settings or InferenceSettings()
        return cls(
            input_size=segment.input_size,
            normalization=settings.normalization,
            interpolation=settings.interpolation
        )

    def preprocess(self, image: Union[bytes, np.ndarray, str, Path]) -> np.ndarray:
        """
        Preprocess an image for model inference.

        Full preprocessing pipeline:
        1. Decode bytes or load file (BGR, alpha dropped)
        2. Convert BGR to RGB
        3. Resize to model input size
        4. Normalize pixel values
        5. Flatten to float32, row-major, channel-interleaved

        Args:
            image: Encoded image bytes, a BGR numpy array, or a file path

        Returns:
            Flat float32 array of width * height * 3 values

        Raises:
            ImageDecodeError: If the image cannot be decoded
        """
        if isinstance(image, (bytes, bytearray, memoryview)):
            img = self.decode(bytes(image))
        elif isinstance(image, (str, Path)):
            img = self._load_image(image)
        else:
            img = image.copy()

        if img is None or img.size == 0:
            raise ImageDecodeError("Failed to load image")

        # Drop alpha from in-memory arrays; decoded images have none
        if img.ndim == 3 and img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
        elif img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)

        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        img = self._resize(img)
        img = self._normalize(img)

        return np.ascontiguousarray(img, dtype=np.float32).reshape(-1)

    def decode(self, data: bytes) -> np.ndarray:
        """
        Decode JPEG/PNG bytes into a BGR image.

        Raises:
            ImageDecodeError: If the bytes are not a decodable image
        """
        if not data:
            raise ImageDecodeError("Failed to load image")

        buffer = np.frombuffer(data, dtype=np.uint8)
        try:
            img = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as e:
            raise ImageDecodeError(f"Failed to load image: {e}") from e

        if img is None:
            raise ImageDecodeError("Failed to load image")

        logger.debug(f"Decoded image {img.shape[1]}x{img.shape[0]}")
        return img

    def _load_image(self, path: Union[str, Path]) -> np.ndarray:
        """Load and decode an image file."""
        path = Path(path)

        if not path.exists():
            raise ImageDecodeError(f"Image file not found: {path}")

        return self.decode(path.read_bytes())

    def _resize(self, image: np.ndarray) -> np.ndarray:
        """Resize image to model input size."""
        current_size = (image.shape[1], image.shape[0])

        if current_size == self.input_size:
            return image

        return cv2.resize(
            image,
            self.input_size,
            interpolation=INTERPOLATIONS.get(self.interpolation, cv2.INTER_NEAREST)
        )

    def _normalize(self, image: np.ndarray) -> np.ndarray:
        """
        Normalize pixel values based on configured method.

        Methods:
        - "0-1": Scale to [0, 1]
        - "-1-1": Scale to [-1, 1]
        - "imagenet": ImageNet mean/std normalization
        """
        img = image.astype(np.float32)

        if self.normalization == "-1-1":
            return (img / 127.5) - 1.0

        if self.normalization == "imagenet":
            img = img / 255.0
            mean = np.array(self.imagenet_mean, dtype=np.float32)
            std = np.array(self.imagenet_std, dtype=np.float32)
            return (img - mean) / std

        return img / 255.0

    def get_input_details(self) -> dict:
        """Preprocessing details for the health endpoint and debugging."""
        return {
            'input_size': self.input_size,
            'input_shape': (1, self.input_size[1], self.input_size[0], 3),
            'normalization': self.normalization,
            'interpolation': self.interpolation,
            'dtype': 'float32',
            'color_space': 'RGB'
        }
