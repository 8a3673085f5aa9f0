import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional, Union

import aiohttp

from .detection import AnalysisResult, MessageResult, normalize_analysis
from .frame import EncodedImage

logger = logging.getLogger(__name__)


class AnalysisMode(str, Enum):
    SINGLE_SHOT = 'analyze'
    REALTIME = 'realtime-scan'
    INGREDIENTS = 'ingredients'


class AnalysisError(Exception):
    """Base class for failed analysis round trips"""


class NetworkError(AnalysisError):
    pass


class RemoteError(AnalysisError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MalformedResponse(AnalysisError):
    pass


def build_request(payload: Union[EncodedImage, str], mode: AnalysisMode) -> Dict[str, Any]:
    """
    Builds the proxy request body

    args:
        payload: Encoded frame, or a bare text query for ingredient lookups
        mode (AnalysisMode): Prompt variant to use on the proxy
    returns:
        dict: JSON body for the inference proxy
    """
    mode = AnalysisMode(mode)
    if isinstance(payload, EncodedImage):
        return {'imageData': payload.data_uri, 'type': mode.value}

    if mode is not AnalysisMode.INGREDIENTS:
        raise ValueError(f'Text queries are only supported in {AnalysisMode.INGREDIENTS.value} mode')
    query = payload.strip()
    if not query:
        raise ValueError('Query must not be empty')
    return {'imageData': None, 'type': mode.value, 'query': query}


def parse_response(
    status: int,
    body: str,
    captured_at: Optional[float] = None,
    fallback_name: str = '',
) -> AnalysisResult:
    """
    Turns a proxy reply into an AnalysisResult

    Non-JSON bodies on a successful status fall back to a MessageResult instead of raising.
    """
    try:
        data = json.loads(body)
    except ValueError:
        if status >= 400:
            raise RemoteError(f'Analysis failed with status {status}: {body[:200]}', status)
        if body.strip():
            return MessageResult(message=body.strip())
        raise MalformedResponse('Empty response from analysis service')

    if isinstance(data, dict) and (status >= 400 or data.get('error') is True):
        raise RemoteError(str(data.get('message') or f'Analysis failed with status {status}'), status)
    if status >= 400:
        raise RemoteError(f'Analysis failed with status {status}', status)

    if isinstance(data, dict):
        if 'analysis' not in data:
            raise MalformedResponse('Response is missing the analysis field')
        return normalize_analysis(data['analysis'], captured_at, fallback_name)

    # Bare lists or strings are treated as the analysis itself
    if isinstance(data, (list, str)):
        return normalize_analysis(data, captured_at, fallback_name)
    raise MalformedResponse(f'Unexpected response type {type(data).__name__}')


class AnalysisClient:
    """Sends frames and text queries to the inference proxy, one round trip per call"""
    def __init__(self, endpoint: str, timeout: float = 15.0):
        self.endpoint = endpoint
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def analyze(
        self,
        payload: Union[EncodedImage, str],
        mode: AnalysisMode,
        captured_at: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Analyzes an encoded frame or a text query

        args:
            payload: EncodedImage, or a text query in ingredients mode
            mode (AnalysisMode): Prompt variant
            captured_at (float): Monotonic time the frame was captured
        returns:
            AnalysisResult: Normalized analysis
        raises:
            NetworkError, RemoteError, MalformedResponse
        """
        body = build_request(payload, mode)
        captured_at = time.monotonic() if captured_at is None else captured_at
        fallback_name = payload if isinstance(payload, str) else ''

        session = self._get_session()
        try:
            async with session.post(self.endpoint, json=body) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f'Analysis request timed out after {self.timeout.total}s') from e
        except aiohttp.ClientError as e:
            raise NetworkError(f'Analysis request failed: {e}') from e

        return parse_response(status, text, captured_at, fallback_name.strip())

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
