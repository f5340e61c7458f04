"""
Test doubles for the TFLite runtime.

FakeRuntime replaces the interpreter factory in robodoc.inference.model_loader
so the pipeline can run without model files or an installed runtime. Model
and label files are still written to a temporary directory, because the
loader checks they exist and parses the labels for real.
"""

import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import patch

import cv2
import numpy as np
import yaml

# Add project to path
PROJECT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_DIR / 'src'))

from robodoc.config import DEFAULT_SEGMENTS, build_segment_table

EYE_LABELS = ['cataract', 'normal', 'conjunctivitis']


class FakeInterpreter:
    """
    Mimics the tflite Interpreter API used by LoadedModel.

    Records the peak number of threads inside invoke() at the same time.
    """

    def __init__(
        self,
        input_shape: Tuple[int, ...],
        scores: Sequence[float],
        fail_invoke: bool = False,
        model_path: Optional[str] = None,
        input_dtype=np.float32,
        input_quantization: Tuple[float, int] = (0.0, 0),
        output_dtype=np.float32,
        output_quantization: Tuple[float, int] = (0.0, 0),
        invoke_delay: float = 0.0
    ) -> None:
        self.input_shape = tuple(input_shape)
        self.scores = np.array([scores], dtype=output_dtype)
        self.fail_invoke = fail_invoke
        self.model_path = model_path
        self.input_dtype = input_dtype
        self.input_quantization = input_quantization
        self.output_dtype = output_dtype
        self.output_quantization = output_quantization
        self.invoke_delay = invoke_delay
        self.allocated = False
        self.last_input: Optional[np.ndarray] = None
        self.invocations = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def allocate_tensors(self) -> None:
        self.allocated = True

    def get_input_details(self) -> List[Dict]:
        return [{
            'index': 0,
            'shape': np.array(self.input_shape),
            'dtype': self.input_dtype,
            'quantization': self.input_quantization
        }]

    def get_output_details(self) -> List[Dict]:
        return [{
            'index': 1,
            'shape': np.array(self.scores.shape),
            'dtype': self.output_dtype,
            'quantization': self.output_quantization
        }]

    def set_tensor(self, index: int, data: np.ndarray) -> None:
        self.last_input = data

    def invoke(self) -> None:
        with self._lock:
            self.invocations += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.invoke_delay:
                time.sleep(self.invoke_delay)
            if self.fail_invoke:
                raise RuntimeError("delegate failure")
        finally:
            with self._lock:
                self.active -= 1

    def get_tensor(self, index: int) -> np.ndarray:
        return self.scores.copy()


class FakeRuntime:
    """
    Interpreter factory keyed by segment asset directory.

    Attributes:
        scores: Output vector per asset directory (e.g. "eye_model")
        input_shapes: Input shape overrides per asset directory
        fail_invoke: Asset directories whose forward pass raises
        invoke_delay: Seconds each forward pass takes
        create_delay: Seconds each interpreter takes to build
        created: Every interpreter built so far
    """

    def __init__(self, scores: Optional[Dict[str, Sequence[float]]] = None) -> None:
        self.scores = scores or {}
        self.input_shapes: Dict[str, Tuple[int, ...]] = {}
        self.fail_invoke = set()
        self.invoke_delay = 0.0
        self.create_delay = 0.0
        self.created: List[FakeInterpreter] = []

    def create(self, model_path: Path, num_threads: int) -> FakeInterpreter:
        if self.create_delay:
            time.sleep(self.create_delay)

        asset_dir = Path(model_path).parent.name
        width, height = 416, 416
        for asset, seg_width, seg_height, _ in DEFAULT_SEGMENTS.values():
            if asset == asset_dir:
                width, height = seg_width, seg_height

        interpreter = FakeInterpreter(
            input_shape=self.input_shapes.get(asset_dir, (1, height, width, 3)),
            scores=self.scores.get(asset_dir, [0.1, 0.2, 0.7]),
            fail_invoke=asset_dir in self.fail_invoke,
            model_path=str(model_path),
            invoke_delay=self.invoke_delay
        )
        self.created.append(interpreter)
        return interpreter

    def patch(self):
        """Patch the model loader's interpreter factory with this runtime."""
        return patch(
            'robodoc.inference.model_loader._create_interpreter',
            side_effect=self.create
        )


def write_assets(
    model_dir: Path,
    labels: Optional[Dict[str, Sequence[str]]] = None
) -> None:
    """
    Write placeholder model files and metadata.yaml label files.

    Every segment gets three labels unless overridden; eye gets EYE_LABELS.
    """
    labels = labels or {}
    for asset_dir, _, _, _ in DEFAULT_SEGMENTS.values():
        directory = Path(model_dir) / asset_dir
        directory.mkdir(parents=True, exist_ok=True)
        (directory / 'model.tflite').write_bytes(b'TFL3')

        names = labels.get(asset_dir)
        if names is None:
            names = EYE_LABELS if asset_dir == 'eye_model' else ['healthy', 'mild', 'severe']
        metadata = {'task': 'classify', 'names': {i: name for i, name in enumerate(names)}}
        with open(directory / 'metadata.yaml', 'w') as f:
            yaml.safe_dump(metadata, f)


def segment_table(model_dir: Path):
    return build_segment_table({}, model_dir=Path(model_dir))


def encode_image(
    width: int = 640,
    height: int = 480,
    ext: str = '.jpg',
    color: Tuple[int, int, int] = (40, 120, 200)
) -> bytes:
    """Encode a solid BGR image."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    ok, buffer = cv2.imencode(ext, image)
    assert ok
    return buffer.tobytes()
