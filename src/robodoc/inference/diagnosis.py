#!/usr/bin/env python3
"""
Inference Runner for Body Segment Screening

Feeds a preprocessed tensor through a segment model and turns the output
vector into a diagnosis: the arg-max class, its score as confidence, and the
display string.

Confidence is the raw output score unless a score activation is configured.
The exported classifiers end in a softmax layer, so "none" reports a
probability for them; models without one need "softmax" or "auto".

Author: RoboDoc Team
License: MIT
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import SegmentSpec
from ..errors import InferenceError
from .model_loader import LoadedModel
from .resources import ResourceScope

logger = logging.getLogger(__name__)


def format_confidence(confidence: float) -> str:
    """Render a 0-1 score as a percentage with two decimals, e.g. 87.65%."""
    return f"{confidence * 100:.2f}%"


def format_diagnosis(segment: str, label: str, confidence: float) -> str:
    return f"Diagnosis for {segment}: {label} (Confidence: {format_confidence(confidence)})"


def select_class(scores: Sequence[float]) -> int:
    """Index of the highest score; ties go to the lowest index."""
    scores = np.asarray(scores)
    if scores.size == 0:
        raise InferenceError("Model returned an empty output vector")
    return int(np.argmax(scores))


def softmax(x: np.ndarray) -> np.ndarray:
    """Convert logits to probabilities."""
    exp_x = np.exp(x - np.max(x))
    return exp_x / exp_x.sum()


@dataclass
class DiagnosisResult:
    """
    Outcome of one successful classification.

    Attributes:
        segment: Segment the image was screened for
        label: Predicted class name
        class_index: Index of the predicted class
        confidence: Score of the predicted class (0.0 - 1.0)
        top_predictions: Top N (label, score) pairs
        timestamp: When the diagnosis was made
        image_url: Display URL of the screened image, when one was stored
    """
    segment: str
    label: str
    class_index: int
    confidence: float
    top_predictions: List[Tuple[str, float]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    image_url: Optional[str] = None

    @property
    def message(self) -> str:
        return format_diagnosis(self.segment, self.label, self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'segment': self.segment,
            'label': self.label,
            'class_index': self.class_index,
            'confidence': round(self.confidence, 4),
            'confidence_percent': round(self.confidence * 100, 2),
            'top_predictions': [
                {'class': name, 'confidence': round(score, 4)}
                for name, score in self.top_predictions
            ],
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'image_url': self.image_url
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class InferenceRunner:
    """
    Runs the forward pass and post-processes the output vector.

    Attributes:
        score_activation: "none", "softmax" or "auto"
        top_k: Number of top predictions to report
    """

    def __init__(self, score_activation: str = 'none', top_k: int = 3) -> None:
        self.score_activation = score_activation
        self.top_k = top_k

    def run(
        self,
        model: LoadedModel,
        tensor: np.ndarray,
        labels: Sequence[str],
        segment: SegmentSpec,
        scope: Optional[ResourceScope] = None
    ) -> DiagnosisResult:
        """
        Classify one preprocessed image.

        Args:
            model: Loaded segment model
            tensor: Flat preprocessed image, width * height * 3 values
            labels: Class names in model output order
            segment: Segment the tensor was prepared for
            scope: Scope that takes ownership of the output tensor

        Returns:
            DiagnosisResult for the arg-max class

        Raises:
            InferenceError: On shape mismatch or runtime failure
        """
        try:
            batch = np.asarray(tensor, dtype=np.float32).reshape(segment.input_shape)
        except ValueError as e:
            raise InferenceError(
                f"Tensor of {np.size(tensor)} values does not fit {segment.input_shape}"
            ) from e

        output = model.predict(batch)
        if scope is not None:
            scope.acquire(output, kind='output')

        return self.classify(output, labels, segment.name)

    def classify(
        self,
        output: np.ndarray,
        labels: Sequence[str],
        segment: str
    ) -> DiagnosisResult:
        """
        Turn a model output vector into a DiagnosisResult.

        Args:
            output: Model output, with or without the batch dimension
            labels: Class names in output order
            segment: Segment name for the message
        """
        scores = np.asarray(output, dtype=np.float32)
        if scores.ndim > 1:
            scores = scores[0]
        scores = scores.reshape(-1)

        if len(scores) != len(labels):
            raise InferenceError(
                f"Model returned {len(scores)} scores for {len(labels)} labels"
            )

        scores = self._activate(scores)

        class_index = select_class(scores)
        order = sorted(range(len(scores)), key=lambda i: (-scores[i], i))[:self.top_k]

        result = DiagnosisResult(
            segment=segment,
            label=labels[class_index],
            class_index=class_index,
            confidence=float(scores[class_index]),
            top_predictions=[(labels[i], float(scores[i])) for i in order]
        )
        logger.info(f"Diagnosis: {segment} -> {result.label} ({result.confidence:.1%})")
        return result

    def _activate(self, scores: np.ndarray) -> np.ndarray:
        if self.score_activation == 'softmax':
            return softmax(scores)
        if self.score_activation == 'auto' and (scores.min() < 0 or scores.max() > 1):
            return softmax(scores)
        return scores
