import asyncio
from typing import List, Optional

import numpy as np
import pytest

from smartcart.camera import MediaCapture
from smartcart.config import Settings
from smartcart.detection import Detection, ItemsResult
from smartcart.notify import Notifier
from smartcart.results import DetectionStore
from smartcart.store import RetailStore


class FakeVideoCapture:
    """Stands in for cv2.VideoCapture, serving black 1280x720 frames"""
    def __init__(self, source=None, opened=True, frames_ok=True):
        self.source = source
        self.opened = opened
        self.frames_ok = frames_ok
        self.released = False
        self.props = {}
        self.reads = 0

    def isOpened(self):
        return self.opened

    def read(self):
        self.reads += 1
        if not self.frames_ok:
            return False, None
        return True, np.zeros((720, 1280, 3), dtype=np.uint8)

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


class FakeAnalysisClient:
    """
    Async analysis client returning queued results or raising queued errors.

    When `gate` is set every call waits on it, which lets tests hold a scan in flight.
    """
    def __init__(self, results: Optional[list] = None, gate: Optional[asyncio.Event] = None):
        self.results = list(results or [])
        self.gate = gate
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def analyze(self, payload, mode, captured_at=None):
        self.calls.append((payload, mode))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            result = self.results.pop(0) if self.results else ItemsResult(items=[])
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1

    async def close(self):
        self.closed = True


def items_result(*names: str, confidence: float = 95) -> ItemsResult:
    return ItemsResult(items=[Detection(name=name, confidence=confidence) for name in names])


def make_capture(**kwargs) -> MediaCapture:
    handles: List[FakeVideoCapture] = []

    def opener(source):
        handle = FakeVideoCapture(source, **kwargs)
        handles.append(handle)
        return handle

    capture = MediaCapture(source='fake-camera', opener=opener)
    capture.handles = handles
    return capture


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / 'test.db'),
        scan_interval=3600,
        analysis_timeout=5,
        proxy_url='http://127.0.0.1:1/functions/v1/analyze-product',
    )


@pytest.fixture
def store(tmp_path):
    store = RetailStore(tmp_path / 'store.db')
    yield store
    store.close()


@pytest.fixture
def capture():
    return make_capture()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def detections():
    return DetectionStore()


