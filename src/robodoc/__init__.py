"""RoboDoc: body segment health screening with TFLite classifiers and a chat assistant."""

__version__ = "0.1.0"
