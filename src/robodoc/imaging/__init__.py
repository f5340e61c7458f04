# Imaging module for upload checks and model input preprocessing
from .image_preprocessor import ImagePreprocessor
from .upload_validator import Upload, UploadValidator

__all__ = ["ImagePreprocessor", "Upload", "UploadValidator"]
