"""Audio capture package."""

from .base import CaptureConstraints, CaptureDevice, CaptureError, DeviceHandle

__all__ = ["CaptureConstraints", "CaptureDevice", "CaptureError", "DeviceHandle"]
