# =============================================================================
# Context Camera - Frame Sources
# =============================================================================
# Provides the frame sources the capture loop pulls from.  Each source returns
# exactly one PIL RGB Image per capture_frame() call, or raises CaptureError.
# Sources never schedule themselves; timing belongs to the orchestrator.
#
#   CameraCapture   - webcam via OpenCV
#   ScreenCapture   - monitor screenshot via mss
#   ImageFileSource - image files on disk, cycled in order
# =============================================================================

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

import cv2
import mss
from mss.exception import ScreenShotError
from PIL import Image

from context_camera.errors import CaptureError

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


class FrameSource(ABC):
    """A camera-like collaborator that produces one frame per call."""

    @abstractmethod
    def capture_frame(self) -> Image.Image:
        """
        Capture one frame.

        Returns:
            PIL.Image.Image: The frame in RGB mode.

        Raises:
            CaptureError: No frame could be produced.
        """

    def close(self) -> None:
        """Release any underlying device.  Safe to call more than once."""


class CameraCapture(FrameSource):
    """
    Webcam capture through OpenCV.

    The device is opened lazily on the first capture and reopened if it has
    been lost since.

    Args:
        camera_index: OpenCV device index (0 = default camera).
    """

    def __init__(self, camera_index: int = 0):
        self._camera_index = camera_index
        self._cap = None
        self._lock = threading.Lock()

    def _open(self) -> cv2.VideoCapture:
        if self._cap is None or not self._cap.isOpened():
            logger.info("Opening camera device %d", self._camera_index)
            self._cap = cv2.VideoCapture(self._camera_index)
            if not self._cap.isOpened():
                raise CaptureError(f"Failed to open camera device {self._camera_index}")
        return self._cap

    def capture_frame(self) -> Image.Image:
        try:
            with self._lock:
                cap = self._open()
                ok, frame = cap.read()
            if not ok or frame is None:
                raise CaptureError("Photo capture failed")

            # OpenCV delivers BGR; PIL expects RGB
            image = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        except cv2.error as exc:
            raise CaptureError(f"Camera {self._camera_index} failed: {exc}") from exc

        logger.debug(
            "Captured frame: %dx%d from camera %d",
            image.width, image.height, self._camera_index,
        )
        return image

    def close(self) -> None:
        with self._lock:
            if self._cap is not None and self._cap.isOpened():
                self._cap.release()
            self._cap = None


class ScreenCapture(FrameSource):
    """
    Screenshot capture of a single monitor using the mss library.

    Args:
        monitor_index: Index of the monitor to capture (1 = primary).
    """

    def __init__(self, monitor_index: int = 1):
        self._monitor_index = monitor_index

    def capture_frame(self) -> Image.Image:
        try:
            with mss.mss() as sct:
                # mss monitor list: index 0 = all monitors combined, 1+ = individual
                monitor = sct.monitors[self._monitor_index]
                raw = sct.grab(monitor)
                # mss returns BGRA; convert to PIL Image then to RGB
                image = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")
        except IndexError as exc:
            raise CaptureError(f"No monitor with index {self._monitor_index}") from exc
        except ScreenShotError as exc:
            raise CaptureError(f"Screen capture failed: {exc}") from exc

        logger.debug(
            "Captured frame: %dx%d from monitor %d",
            image.width, image.height, self._monitor_index,
        )
        return image


class ImageFileSource(FrameSource):
    """
    Serves frames from image files, cycling through them in order.

    Useful for running the loop without camera hardware.

    Args:
        paths: Image files, or directories whose images are used in name order.
    """

    def __init__(self, paths: Iterable):
        files = []
        for path in map(Path, paths):
            if path.is_dir():
                files.extend(sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES))
            else:
                files.append(path)
        if not files:
            raise ValueError("ImageFileSource needs at least one image file")
        self._files = files
        self._cycle = itertools.cycle(files)
        self._lock = threading.Lock()

    def capture_frame(self) -> Image.Image:
        with self._lock:
            path = next(self._cycle)
        try:
            with Image.open(path) as img:
                image = img.convert("RGB")
        except (OSError, Image.DecompressionBombError) as exc:
            raise CaptureError(f"Could not read frame from {path}: {exc}") from exc
        logger.debug("Serving frame %s (%dx%d)", path.name, image.width, image.height)
        return image
