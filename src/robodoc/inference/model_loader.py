#!/usr/bin/env python3
"""
TensorFlow Lite Model Loader for Body Segment Screening

Resolves a segment to its graph model and label file, loads both and checks
that they agree with each other and with the segment's input resolution.

Author: RoboDoc Team
License: MIT
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
import yaml

import numpy as np

from ..config import InferenceSettings, SegmentSpec
from ..errors import InferenceError, InvalidSegment, LabelLoadError, ModelLoadError

try:
    from ai_edge_litert import interpreter as tflite
    TFLITE_RUNTIME = 'ai-edge-litert'
except ImportError:
    try:
        import tflite_runtime.interpreter as tflite
        TFLITE_RUNTIME = 'tflite-runtime'
    except ImportError:
        try:
            import tensorflow as tf
            tflite = tf.lite
            TFLITE_RUNTIME = 'tensorflow'
        except ImportError:
            tflite = None
            TFLITE_RUNTIME = None


logger = logging.getLogger(__name__)

ClassLabels = Tuple[str, ...]


def runtime_available() -> bool:
    """Whether any TFLite interpreter implementation is installed."""
    return tflite is not None


def _create_interpreter(model_path: Path, num_threads: int) -> Any:
    """Build a TFLite interpreter for a model file."""
    if tflite is None:
        raise ModelLoadError(
            "No TFLite runtime found. "
            "Install with: pip install ai-edge-litert"
        )
    return tflite.Interpreter(model_path=str(model_path), num_threads=num_threads)


class LoadedModel:
    """
    Handle to a loaded TFLite graph model.

    Owned by whoever loaded it and released with close(). A closed model
    refuses to predict. Forward passes are serialized per model, since a
    cached model is shared by concurrent requests and TFLite interpreters
    are not thread-safe.

    Attributes:
        model_path: Path to the .tflite file
        interpreter: TFLite interpreter, None once closed
        input_details: Model input tensor details
        output_details: Model output tensor details
    """

    def __init__(self, interpreter: Any, model_path: Optional[Path] = None) -> None:
        self.model_path = model_path
        self.interpreter = interpreter
        self.input_details: List[Dict] = interpreter.get_input_details()
        self.output_details: List[Dict] = interpreter.get_output_details()
        self._lock = threading.Lock()

    @classmethod
    def load(cls, model_path: Path, num_threads: int = 2) -> 'LoadedModel':
        """
        Load a TFLite model into memory.

        Raises:
            ModelLoadError: If the file is missing or cannot be loaded
        """
        model_path = Path(model_path)
        if not model_path.exists():
            raise ModelLoadError(f"Model file not found: {model_path}")

        logger.info(f"Loading TFLite model from {model_path}")
        try:
            interpreter = _create_interpreter(model_path, num_threads)
            interpreter.allocate_tensors()
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {model_path.name}: {e}") from e

        model = cls(interpreter, model_path)
        logger.debug(
            f"Model loaded: input {model.get_input_shape()}, "
            f"output {model.get_output_shape()}"
        )
        return model

    def predict(self, input_data: np.ndarray) -> np.ndarray:
        """
        Run a forward pass.

        Args:
            input_data: Batch of images, shape (1, height, width, 3)

        Returns:
            Model output as float32 numpy array

        Raises:
            InferenceError: If the model is closed, the shape does not match
                or the interpreter fails
        """
        expected_shape = self.get_input_shape()
        if tuple(input_data.shape) != expected_shape:
            raise InferenceError(
                f"Input shape mismatch. Expected {expected_shape}, got {input_data.shape}"
            )

        input_detail = self.input_details[0]
        input_dtype = input_detail['dtype']

        # Quantized models take integer input, saturated to the dtype's range
        if np.issubdtype(input_dtype, np.integer):
            scale, zero_point = input_detail.get('quantization', (0.0, 0))
            if scale:
                input_data = np.round(input_data / scale + zero_point)
            limits = np.iinfo(input_dtype)
            input_data = np.clip(input_data, limits.min, limits.max)
        input_data = input_data.astype(input_dtype)

        with self._lock:
            if self.interpreter is None:
                raise InferenceError("Model has been released")
            try:
                self.interpreter.set_tensor(input_detail['index'], input_data)
                self.interpreter.invoke()
                output = self.interpreter.get_tensor(self.output_details[0]['index'])
            except Exception as e:
                raise InferenceError(f"Inference failed: {e}") from e

        output_detail = self.output_details[0]
        if np.issubdtype(output_detail['dtype'], np.integer):
            scale, zero_point = output_detail.get('quantization', (0.0, 0))
            if scale:
                return (output.astype(np.float32) - zero_point) * scale

        return np.asarray(output, dtype=np.float32)

    def get_input_shape(self) -> tuple:
        """Expected input tensor shape."""
        return tuple(int(d) for d in self.input_details[0]['shape'])

    def get_output_shape(self) -> tuple:
        """Output tensor shape."""
        return tuple(int(d) for d in self.output_details[0]['shape'])

    def get_num_outputs(self) -> int:
        """Width of the output vector."""
        return self.get_output_shape()[-1]

    def is_loaded(self) -> bool:
        return self.interpreter is not None

    def close(self) -> None:
        """Release the interpreter. Closing twice is a no-op."""
        with self._lock:
            if self.interpreter is not None:
                logger.debug(f"Releasing model {self.model_path}")
                self.interpreter = None

    def __repr__(self) -> str:
        status = "loaded" if self.is_loaded() else "released"
        return f"LoadedModel({self.model_path}, {status})"


def parse_labels(data: Any) -> ClassLabels:
    """
    Turn parsed label metadata into an index-ordered tuple of names.

    Accepts the exporter's metadata (a ``names`` mapping of index to name),
    a bare index mapping, or a plain list.

    Raises:
        LabelLoadError: If the structure is not one of the above
    """
    if isinstance(data, dict) and 'names' in data:
        data = data['names']

    if isinstance(data, list):
        names = data
    elif isinstance(data, dict):
        try:
            indexed = sorted((int(k), v) for k, v in data.items())
        except (TypeError, ValueError):
            raise LabelLoadError("Label mapping keys must be class indices")
        if [i for i, _ in indexed] != list(range(len(indexed))):
            raise LabelLoadError("Label indices must run from 0 without gaps")
        names = [v for _, v in indexed]
    else:
        raise LabelLoadError("Label file must contain a 'names' mapping or list")

    if not names:
        raise LabelLoadError("Label file contains no class names")

    return tuple(str(name).strip() for name in names)


def load_labels(labels_path: Path) -> ClassLabels:
    """
    Load class names from a label YAML file.

    Raises:
        LabelLoadError: If the file is missing, unreadable or malformed
    """
    labels_path = Path(labels_path)
    if not labels_path.exists():
        raise LabelLoadError(f"Label file not found: {labels_path}")

    try:
        with open(labels_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise LabelLoadError(f"Failed to load labels from {labels_path.name}: {e}") from e

    return parse_labels(data)


class SegmentModelLoader:
    """
    Loads the (model, labels) pair for a segment.

    By default every call loads both assets from disk and the caller owns
    (and must close) the returned model. With ``cache_models`` enabled the
    loader keeps one model per segment and owns it until close().

    Attributes:
        segments: Immutable segment table
        settings: Inference policy (caching, threads)
    """

    def __init__(
        self,
        segments: Mapping[str, SegmentSpec],
        settings: Optional[InferenceSettings] = None
    ) -> None:
        self.segments = segments
        self.settings = settings or InferenceSettings()
        self._cache: Dict[str, Tuple[LoadedModel, ClassLabels]] = {}
        self._segment_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def resolve(self, segment: str) -> SegmentSpec:
        """
        Look up a segment.

        Raises:
            InvalidSegment: If the name is not in the segment table
        """
        spec = self.segments.get(segment) if isinstance(segment, str) else None
        if spec is None:
            raise InvalidSegment(segment)
        return spec

    def load(self, segment: str) -> Tuple[LoadedModel, ClassLabels]:
        """
        Load model and labels for a segment.

        Args:
            segment: Segment identifier

        Returns:
            Tuple of (model, class labels)

        Raises:
            InvalidSegment, ModelLoadError, LabelLoadError
        """
        spec = self.resolve(segment)

        if not self.settings.cache_models:
            return self._load_assets(spec)

        # One load per segment even when requests race for an empty cache
        with self._segment_lock(spec.name):
            with self._lock:
                cached = self._cache.get(spec.name)
            if cached is not None and cached[0].is_loaded():
                logger.debug(f"Using cached model for {spec.name}")
                return cached

            model, labels = self._load_assets(spec)
            with self._lock:
                self._cache[spec.name] = (model, labels)
            return model, labels

    def _segment_lock(self, name: str) -> threading.Lock:
        with self._lock:
            return self._segment_locks.setdefault(name, threading.Lock())

    def _load_assets(self, spec: SegmentSpec) -> Tuple[LoadedModel, ClassLabels]:
        """Load and validate both assets from disk."""
        labels = load_labels(spec.labels_path)
        model = LoadedModel.load(spec.model_path, num_threads=self.settings.num_threads)

        try:
            self._validate(spec, model, labels)
        except Exception:
            model.close()
            raise

        logger.info(f"Loaded {spec.name} model with {len(labels)} classes")
        return model, labels

    def _validate(self, spec: SegmentSpec, model: LoadedModel, labels: ClassLabels) -> None:
        """Fail fast when model, labels and segment disagree."""
        input_shape = model.get_input_shape()
        if input_shape != spec.input_shape:
            raise ModelLoadError(
                f"Model for {spec.name} expects input {input_shape}, "
                f"segment is configured for {spec.width}x{spec.height}"
            )

        num_outputs = model.get_num_outputs()
        if num_outputs != len(labels):
            raise LabelLoadError(
                f"Label count mismatch for {spec.name}: model has "
                f"{num_outputs} outputs, label file has {len(labels)} names"
            )

    def is_cached(self, model: LoadedModel) -> bool:
        """Whether the loader (not the caller) owns this model."""
        with self._lock:
            return any(cached is model for cached, _ in self._cache.values())

    def cached_segments(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)

    def close(self) -> None:
        """Release every cached model."""
        with self._lock:
            for model, _ in self._cache.values():
                model.close()
            self._cache.clear()

    def get_info(self) -> Dict[str, Any]:
        """Loader details for the health endpoint."""
        return {
            'runtime': TFLITE_RUNTIME,
            'cache_models': self.settings.cache_models,
            'cached': self.cached_segments(),
            'segments': {
                name: {
                    'model': str(spec.model_path),
                    'labels': str(spec.labels_path),
                    'model_exists': spec.model_path.exists(),
                    'input_size': [spec.width, spec.height],
                }
                for name, spec in self.segments.items()
            }
        }
