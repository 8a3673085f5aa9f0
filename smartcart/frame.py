import base64
from typing import Optional

import cv2
import numpy as np
from pydantic import BaseModel

DATA_URI_PREFIX = 'data:image/jpeg;base64,'


class EmptyFrame(ValueError):
    pass


class EncodedImage(BaseModel):
    data_uri: str
    width: int
    height: int
    quality: float

    @property
    def size(self) -> int:
        return len(self.data_uri)


def encode_frame(
    frame: Optional[np.ndarray],
    quality: float,
    max_width: Optional[int] = 1280,
    denoise: bool = False,
) -> EncodedImage:
    """
    Rasterizes a BGR frame into a JPEG data URI

    args:
        frame (np.ndarray): Frame in BGR format
        quality (float): JPEG quality between 0 and 1
        max_width (int): Frames wider than this are downscaled
        denoise (bool): Apply a gaussian blur before encoding
    returns:
        EncodedImage: Encoded frame ready for network transfer
    """
    if frame is None or frame.size == 0:
        raise EmptyFrame('Frame is empty')
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f'Quality must be between 0 and 1, got {quality}')

    height, width = frame.shape[:2]
    if max_width and width > max_width:
        scaling_factor = max_width / width
        width = max_width
        height = int(height * scaling_factor)
        frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)

    # Reduce sensor noise before compression
    if denoise:
        frame = cv2.GaussianBlur(frame, (5, 5), 0)

    ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(round(quality * 100))])
    if not ok:
        raise EmptyFrame('Frame could not be encoded')

    encoded = base64.b64encode(buffer.tobytes()).decode('ascii')
    return EncodedImage(data_uri=DATA_URI_PREFIX + encoded, width=width, height=height, quality=quality)


def decode_data_uri(data_uri: str) -> np.ndarray:
    """Decodes a base64 data URI back into a BGR frame"""
    encoded_data = data_uri.split(',', 1)[1] if ',' in data_uri else data_uri
    nparr = np.frombuffer(base64.b64decode(encoded_data), np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        raise EmptyFrame('Data URI does not contain an image')
    return frame
