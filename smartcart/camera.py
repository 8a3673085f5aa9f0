import logging
import os
import sys
from typing import Any, Callable, Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraError(Exception):
    """Base class for camera failures"""


class PermissionDenied(CameraError):
    pass


class DeviceUnavailable(CameraError):
    pass


class NotStreaming(CameraError):
    pass


class CameraSession:
    """
    One live capture session. The session exclusively owns the capture handle.

    Usable as a context manager so the device is released on every exit path.
    """
    def __init__(self, handle: Any, source: Union[int, str]):
        self.handle = handle
        self.source = source
        self.active = True

    def release(self):
        if not self.active:
            return
        self.active = False
        try:
            self.handle.release()
        finally:
            self.handle = None
        logger.info(f'Released camera {self.source}')

    def __enter__(self) -> 'CameraSession':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class MediaCapture:
    """Wraps OpenCV camera access for the scanner"""
    def __init__(
        self,
        source: Union[int, str] = 0,
        width: int = 1280,
        height: int = 720,
        opener: Callable[..., Any] = cv2.VideoCapture,
    ):
        self.source = source
        self.width = width
        self.height = height
        self.opener = opener

    def _check_permissions(self):
        # V4L2 devices show up as /dev/videoN, an unreadable node means the user lacks access
        if not isinstance(self.source, int) or not sys.platform.startswith('linux'):
            return
        device_path = f'/dev/video{self.source}'
        if os.path.exists(device_path) and not os.access(device_path, os.R_OK | os.W_OK):
            raise PermissionDenied(f'No permission to access {device_path}')

    def start(self) -> CameraSession:
        """
        Opens the camera and returns an active session

        returns:
            CameraSession: Session owning the capture handle
        raises:
            PermissionDenied: The device exists but cannot be opened by this user
            DeviceUnavailable: No camera could be opened
        """
        self._check_permissions()

        try:
            cap = self.opener(self.source)
        except cv2.error as e:
            raise DeviceUnavailable(f'Could not open camera {self.source}: {e}') from e

        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f'Could not open camera {self.source}')

        # Reduce latency
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*'MJPG'))

        # Ideal resolution, the driver picks the closest it supports
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        logger.info(f'Camera {self.source} started')
        return CameraSession(cap, self.source)

    def stop(self, session: Optional[CameraSession]):
        if session is None:
            return
        session.release()

    def current_frame(self, session: Optional[CameraSession]) -> np.ndarray:
        """Returns a snapshot of the live video at call time"""
        if session is None or not session.active:
            raise NotStreaming('Camera is not active')

        ret, frame = session.handle.read()
        if not ret or frame is None:
            raise DeviceUnavailable(f'Camera {self.source} returned no frame')
        return frame
