import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional

from .camera import CameraError, CameraSession, MediaCapture, NotStreaming
from .config import Settings
from .detect import AnalysisError, AnalysisMode
from .detection import AnalysisResult
from .frame import EmptyFrame, encode_frame
from .notify import Notifier
from .results import DetectionStore

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = 'idle'
    STREAMING = 'streaming'
    ANALYZING = 'analyzing'


class ScanMode(str, Enum):
    REALTIME = 'realtime'
    SINGLE = 'single'


class FailureSampler:
    """
    Decides which scan failures are surfaced to the user.

    A failure is surfaced on every `every`-th failure overall and whenever a run
    of consecutive failures reaches a multiple of `max_run`.
    """
    def __init__(self, every: int = 10, max_run: int = 5):
        self.every = max(1, every)
        self.max_run = max(1, max_run)
        self.total = 0
        self.run = 0

    def record_failure(self) -> bool:
        self.total += 1
        self.run += 1
        return self.total % self.every == 0 or self.run % self.max_run == 0

    def record_success(self):
        self.run = 0

    def reset(self):
        self.total = 0
        self.run = 0


class ScanLoop:
    """
    Drives capture -> encode -> analyze cycles for one camera.

    At most one cycle is in flight per session. Timer ticks that arrive while a
    cycle is running are dropped, not queued.
    """
    def __init__(
        self,
        capture: MediaCapture,
        client: Any,
        detections: DetectionStore,
        notifier: Notifier,
        settings: Optional[Settings] = None,
        sampler: Optional[FailureSampler] = None,
    ):
        self.capture = capture
        self.client = client
        self.detections = detections
        self.notifier = notifier
        self.settings = settings or Settings()
        self.sampler = sampler or FailureSampler(self.settings.failure_notify_every, self.settings.failure_max_run)

        self.mode = ScanMode.REALTIME
        self._session: Optional[CameraSession] = None
        self._in_flight_session: Optional[CameraSession] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

        self.sequence = 0
        self.dropped_ticks = 0
        self.failures = 0
        self.last_error: Optional[str] = None

    @property
    def state(self) -> ScanState:
        if self._session is None or not self._session.active:
            return ScanState.IDLE
        if self._in_flight_session is self._session:
            return ScanState.ANALYZING
        return ScanState.STREAMING

    @property
    def session(self) -> Optional[CameraSession]:
        return self._session

    async def start(self, mode: ScanMode = ScanMode.REALTIME) -> CameraSession:
        """
        Opens the camera and, in realtime mode, arms the scan timer

        raises:
            CameraError: Camera is unavailable or access was denied
        """
        mode = ScanMode(mode)

        # Already streaming, only switch the mode
        if self.state is not ScanState.IDLE:
            if mode is not self.mode:
                self.mode = mode
                self._cancel_timer()
                if mode is ScanMode.REALTIME:
                    self._arm_timer()
            return self._session

        try:
            session = self.capture.start()
        except CameraError as e:
            self.last_error = str(e)
            logger.error(f'Camera error: {e}')
            self.notifier.error('Camera Error', 'Failed to access camera. Please check permissions.')
            raise

        self._session = session
        self.mode = mode
        self.sampler.reset()
        self.last_error = None

        if mode is ScanMode.REALTIME:
            self._arm_timer()
            self.notifier.notify('Real-time Scanner Active', 'Camera is now continuously scanning products')
        else:
            self.notifier.notify('Camera Started', 'Camera feed is now active')
        return session

    def _arm_timer(self):
        self._timer_task = asyncio.create_task(self._run_timer())

    def _cancel_timer(self) -> Optional[asyncio.Task]:
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()
        return task

    async def _run_timer(self):
        while True:
            await asyncio.sleep(self.settings.scan_interval)
            self.tick()

    def tick(self) -> bool:
        """
        Starts a scan cycle if none is in flight

        returns:
            bool: True if a cycle was started, False if the tick was dropped
        """
        state = self.state
        if state is ScanState.ANALYZING:
            self.dropped_ticks += 1
            logger.debug(f'Dropped tick, scan {self.sequence} still in flight')
            return False
        if state is ScanState.IDLE:
            return False

        self._cycle_task = self._begin_cycle(manual=False)
        return True

    def _begin_cycle(self, manual: bool) -> asyncio.Task:
        # Mark the session busy before yielding so no other tick can slip in
        session = self._session
        self._in_flight_session = session
        return asyncio.create_task(self._run_cycle(session, manual))

    async def scan_now(self) -> Optional[AnalysisResult]:
        """
        Runs one manual scan and waits for its result

        returns:
            AnalysisResult or None if the scan failed or another scan was already running
        raises:
            NotStreaming: Camera is not active
        """
        state = self.state
        if state is ScanState.IDLE:
            self.notifier.error('Error', 'Camera is not active')
            raise NotStreaming('Camera is not active')
        if state is ScanState.ANALYZING:
            self.notifier.notify('Scan In Progress', 'Wait for the current analysis to finish')
            return None

        self._cycle_task = self._begin_cycle(manual=True)
        # The cycle keeps running even if the caller goes away
        return await asyncio.shield(self._cycle_task)

    async def _run_cycle(self, session: CameraSession, manual: bool) -> Optional[AnalysisResult]:
        self.sequence += 1
        sequence = self.sequence
        scans = self.detections.record_scan()
        single_shot = self.mode is ScanMode.SINGLE or manual

        try:
            try:
                # Capture and encode
                frame = self.capture.current_frame(session)
                captured_at = time.monotonic()
                quality = self.settings.single_shot_quality if single_shot else self.settings.realtime_quality
                encoded = encode_frame(frame, quality, self.settings.max_frame_width, denoise=single_shot)

                # Analyze
                analysis_mode = AnalysisMode.SINGLE_SHOT if single_shot else AnalysisMode.REALTIME
                result = await asyncio.wait_for(
                    self.client.analyze(encoded, analysis_mode, captured_at=captured_at),
                    timeout=self.settings.analysis_timeout,
                )
            except NotStreaming:
                logger.info(f'Scan {sequence} abandoned, camera stopped')
                return None
            except CameraError as e:
                if session is self._session:
                    await self._on_camera_failure(e)
                return None
            except asyncio.TimeoutError:
                self._on_failure(sequence, session, AnalysisError(f'Analysis timed out after {self.settings.analysis_timeout}s'), manual)
                return None
            except (AnalysisError, EmptyFrame) as e:
                self._on_failure(sequence, session, e, manual)
                return None
            except Exception as e:
                logger.exception(f'Unexpected error in scan {sequence}')
                self._on_failure(sequence, session, e, manual)
                return None
        finally:
            if self._in_flight_session is session:
                self._in_flight_session = None

        # Check-before-apply, a stopped session never updates the results
        if session is not self._session or not session.active:
            logger.info(f'Discarding result of scan {sequence}, scanner was stopped')
            return None

        self.sampler.record_success()
        self.detections.replace(result.items)
        self._notify_success(result, manual, scans)
        return result

    def _notify_success(self, result: AnalysisResult, manual: bool, scans: int):
        count = len(result.items)
        if manual:
            if count:
                self.notifier.notify('Analysis Complete', f'Found {count} item{"s" if count > 1 else ""}')
            else:
                self.notifier.error(
                    'No Items Detected',
                    result.message or 'Try positioning products more clearly in the camera view',
                )
        elif count and scans % max(1, self.settings.success_notify_every) == 0:
            self.notifier.notify(f'{count} Products Detected', 'Real-time AI analysis complete')

    def _on_failure(self, sequence: int, session: CameraSession, error: Exception, manual: bool):
        if session is not self._session:
            logger.info(f'Ignoring failure of scan {sequence} from a stopped session: {error}')
            return

        self.failures += 1
        self.last_error = str(error)
        logger.warning(f'Scan {sequence} failed: {error}')

        surface = self.sampler.record_failure()
        if manual:
            self.notifier.error('Analysis Error', str(error))
        elif surface:
            self.notifier.error('Scan Error', f'Some scans failed, continuing... ({self.sampler.run} in a row)')

    async def _on_camera_failure(self, error: CameraError):
        self.last_error = str(error)
        logger.error(f'Camera failure, stopping scanner: {error}')
        self.notifier.error('Camera Error', str(error))
        await self.stop(notify=False)

    async def stop(self, notify: bool = True) -> bool:
        """
        Stops scanning and releases the camera

        In-flight analysis is not cancelled, its result is discarded when it resolves.

        returns:
            bool: True if a session was stopped, False if the scanner was already idle
        """
        # Timer first so no new cycle can start mid-teardown
        timer = self._cancel_timer()
        if timer is not None and timer is not asyncio.current_task():
            try:
                await timer
            except asyncio.CancelledError:
                pass

        session, self._session = self._session, None
        self._in_flight_session = None
        if session is None:
            return False

        self.capture.stop(session)
        self.detections.clear()
        if notify:
            self.notifier.notify('Scanner Stopped', 'Real-time scanning has been disabled')
        return True

    def status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'mode': self.mode.value,
            'scans': self.detections.scans,
            'detected': self.detections.count,
            'sequence': self.sequence,
            'dropped_ticks': self.dropped_ticks,
            'failures': self.failures,
            'last_error': self.last_error,
        }
