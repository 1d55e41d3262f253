"""User interface components for LectureScribe."""

from .console import RecordingConsoleUI

__all__ = ["RecordingConsoleUI"]
