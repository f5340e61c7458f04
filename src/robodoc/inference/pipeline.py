#!/usr/bin/env python3
"""
Diagnosis Pipeline for Body Segment Screening

Runs one screening request end to end:

    Idle -> Loading -> Preprocessing -> Inferring -> Success | Failed
         -> Cleanup -> Idle

Every failure is caught here and returned as a DiagnosisOutcome whose message
is ready for display. Tensors and model handles created by the request are
released in the cleanup step whatever the outcome.

Author: RoboDoc Team
License: MIT
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..config import InferenceSettings, SegmentSpec
from ..errors import InferenceError, ScreeningError
from ..imaging.image_preprocessor import ImagePreprocessor
from .diagnosis import DiagnosisResult, InferenceRunner
from .model_loader import SegmentModelLoader
from .resources import ResourceScope

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    PREPROCESSING = 'preprocessing'
    INFERRING = 'inferring'
    SUCCESS = 'success'
    FAILED = 'failed'
    CLEANUP = 'cleanup'


@dataclass
class DiagnosisOutcome:
    """
    Tagged result of a screening request.

    Attributes:
        ok: True when a diagnosis was produced
        message: Diagnosis string or "Error: ..." for display
        segment: Requested segment
        result: The diagnosis, when ok
        error: The failure, when not ok
        states: State transitions the request went through
    """
    ok: bool
    message: str
    segment: Optional[str] = None
    result: Optional[DiagnosisResult] = None
    error: Optional[Exception] = None
    states: List[PipelineState] = field(default_factory=list)

    @classmethod
    def success(cls, result: DiagnosisResult) -> 'DiagnosisOutcome':
        return cls(ok=True, message=result.message, segment=result.segment, result=result)

    @classmethod
    def failure(cls, segment: Optional[str], error: Exception) -> 'DiagnosisOutcome':
        if isinstance(error, ScreeningError):
            message = error.display_message()
        else:
            message = f"Error: {error}"
        return cls(ok=False, message=message, segment=segment, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'message': self.message,
            'segment': self.segment,
            'result': self.result.to_dict() if self.result else None,
            'error': type(self.error).__name__ if self.error else None
        }


class DiagnosisPipeline:
    """
    Loader -> image pipeline -> inference runner, with guaranteed cleanup.

    Attributes:
        segments: Immutable segment table
        settings: Inference policy
        loader: Model/label loader
        runner: Inference runner
        state: State of the most recent request
    """

    def __init__(
        self,
        segments: Mapping[str, SegmentSpec],
        settings: Optional[InferenceSettings] = None,
        loader: Optional[SegmentModelLoader] = None,
        runner: Optional[InferenceRunner] = None
    ) -> None:
        self.segments = segments
        self.settings = settings or InferenceSettings()
        self.loader = loader or SegmentModelLoader(segments, self.settings)
        self.runner = runner or InferenceRunner(
            score_activation=self.settings.score_activation,
            top_k=self.settings.top_k
        )
        self.state = PipelineState.IDLE

        # Statistics
        self.inference_count = 0
        self.failure_count = 0
        self.total_inference_time = 0.0
        self.last_inference_time: Optional[datetime] = None

    def _enter(self, state: PipelineState, states: List[PipelineState], segment: str) -> None:
        self.state = state
        states.append(state)
        logger.debug(f"[{segment}] {state.value}")

    def run(self, image: bytes, segment: str) -> DiagnosisOutcome:
        """
        Screen one image for a segment.

        Args:
            image: Encoded JPEG/PNG bytes (already validated by the caller)
            segment: Segment identifier

        Returns:
            DiagnosisOutcome; never raises for pipeline failures
        """
        start_time = time.time()
        states: List[PipelineState] = []
        scope = ResourceScope(str(segment))

        try:
            self._enter(PipelineState.LOADING, states, segment)
            model, labels = self.loader.load(segment)
            if not self.loader.is_cached(model):
                scope.acquire(model, model.close, kind='model')
            spec = self.loader.resolve(segment)

            self._enter(PipelineState.PREPROCESSING, states, segment)
            preprocessor = ImagePreprocessor.for_segment(spec, self.settings)
            tensor = scope.acquire(preprocessor.preprocess(image), kind='tensor')

            self._enter(PipelineState.INFERRING, states, segment)
            result = self.runner.run(model, tensor, labels, spec, scope=scope)

            outcome = DiagnosisOutcome.success(result)
            self._enter(PipelineState.SUCCESS, states, segment)

            inference_time = time.time() - start_time
            self.inference_count += 1
            self.total_inference_time += inference_time
            self.last_inference_time = datetime.now()
            logger.info(f"{result.message} - {inference_time:.2f}s")

        except ScreeningError as e:
            logger.error(f"Screening failed for {segment}: {e}")
            self.failure_count += 1
            outcome = DiagnosisOutcome.failure(segment, e)
            self._enter(PipelineState.FAILED, states, segment)

        except Exception as e:
            logger.exception(f"Unexpected failure screening {segment}")
            self.failure_count += 1
            outcome = DiagnosisOutcome.failure(segment, InferenceError(str(e)))
            self._enter(PipelineState.FAILED, states, segment)

        finally:
            self._enter(PipelineState.CLEANUP, states, segment)
            scope.release_all()
            self._enter(PipelineState.IDLE, states, segment)

        outcome.states = states
        return outcome

    def get_stats(self) -> Dict[str, Any]:
        """Pipeline statistics."""
        avg_time = (
            self.total_inference_time / self.inference_count
            if self.inference_count > 0 else 0
        )

        return {
            'total_inferences': self.inference_count,
            'failures': self.failure_count,
            'average_time': round(avg_time, 3),
            'last_inference': (
                self.last_inference_time.isoformat()
                if self.last_inference_time else None
            ),
            'state': self.state.value
        }

    def close(self) -> None:
        """Release cached models."""
        self.loader.close()
