"""PNG encoding for canvas downloads and base64 preview transport."""

import base64
import io

import numpy as np
from PIL import Image


def encode_png(frame: np.ndarray) -> bytes:
    """Encode an RGBA frame to PNG bytes. Alpha is kept."""
    img = Image.fromarray(np.ascontiguousarray(frame))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> np.ndarray:
    """Decode PNG bytes back to an RGBA numpy array."""
    with Image.open(io.BytesIO(data)) as img:
        return np.array(img.convert("RGBA"))


def encode_preview(frame: np.ndarray) -> str:
    """PNG-encode a frame as base64 text for JSON responses."""
    return base64.b64encode(encode_png(frame)).decode("ascii")
