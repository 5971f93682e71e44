"""Optical character recognition wrapper."""

from .recognizer import ProgressSink, TextRecognizer

__all__ = ["TextRecognizer", "ProgressSink"]
