# Inference module for body segment screening
from .model_loader import LoadedModel, SegmentModelLoader
from .diagnosis import DiagnosisResult, InferenceRunner
from .pipeline import DiagnosisOutcome, DiagnosisPipeline, PipelineState
from .resources import ResourceScope, live_resources

__all__ = [
    "LoadedModel", "SegmentModelLoader", "DiagnosisResult", "InferenceRunner",
    "DiagnosisOutcome", "DiagnosisPipeline", "PipelineState",
    "ResourceScope", "live_resources",
]
