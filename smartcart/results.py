from typing import List, Sequence

from .detection import Detection


class DetectionStore:
    """
    Holds the detections of the latest successful scan.

    Last write wins, each replace supersedes the previous set wholesale.
    Only the scan loop writes, the API and dashboard read.
    """
    def __init__(self):
        self._current: List[Detection] = []
        self._previous: List[Detection] = []
        self.scans = 0
        self.version = 0

    def replace(self, detections: Sequence[Detection]):
        self._previous = self._current
        self._current = list(detections)
        self.version += 1

    def current(self) -> List[Detection]:
        return list(self._current)

    def previous(self) -> List[Detection]:
        return list(self._previous)

    @property
    def count(self) -> int:
        return len(self._current)

    def record_scan(self) -> int:
        self.scans += 1
        return self.scans

    def clear(self):
        self._current = []
        self._previous = []
        self.scans = 0
        self.version += 1
