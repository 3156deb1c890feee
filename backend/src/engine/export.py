"""GIF generation and the background export job manager.

generate_gif() runs the whole batch path synchronously: build a sequence,
capture one frame per descriptor, then encode under a deadline. The
ExportManager wraps it in a worker thread that owns the canvas for the
duration, with progress and cancel.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import numpy as np
import sentry_sdk

from engine.buffer import PixelBuffer
from engine.determinism import derive_seed, make_rng
from engine.pipeline import PREPARE_PROGRESS_SPAN, ExportCancelled, render_sequence
from engine.sequencer import DEFAULT_TOTAL_FRAMES, generate_sequence
from imaging.gif_writer import EncodeFailed, GifEncoder

logger = logging.getLogger(__name__)

ENCODE_TIMEOUT_S = 30
DEFAULT_QUALITY = 10
TRANSPARENT_KEY = "#000000"
EXPORT_OWNER = "export"
# Slice used while waiting on the encoder so cancel stays responsive
_JOIN_SLICE_S = 0.1


class EncodeTimeout(TimeoutError):
    """The codec did not finish within the deadline."""


class ExportInProgressError(RuntimeError):
    """A second export was started while one is running."""


def encode_with_deadline(
    encoder,
    timeout_s: float = ENCODE_TIMEOUT_S,
    on_progress=None,
    cancel_event: threading.Event | None = None,
) -> bytes:
    """Run encoder.render() on its own thread and wait at most timeout_s.

    Raises:
        EncodeTimeout: Deadline passed; the encoder is aborted.
        ExportCancelled: cancel_event was set while encoding.
        EncodeFailed: The codec raised.
    """
    outcome: dict = {}

    def _progress(fraction: float):
        if on_progress is not None:
            on_progress(
                PREPARE_PROGRESS_SPAN + (1 - PREPARE_PROGRESS_SPAN) * fraction
            )

    def _encode():
        try:
            outcome["data"] = encoder.render(_progress)
        except Exception as e:  # re-raised on the calling thread
            outcome["error"] = e

    thread = threading.Thread(target=_encode, name="gif-encode", daemon=True)
    thread.start()

    deadline = time.monotonic() + timeout_s
    while thread.is_alive():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            encoder.abort()
            logger.error("GIF encode exceeded %.0fs deadline", timeout_s)
            raise EncodeTimeout(f"GIF encode exceeded {timeout_s}s")
        if cancel_event is not None and cancel_event.is_set():
            encoder.abort()
            raise ExportCancelled("Cancelled during encoding")
        thread.join(min(_JOIN_SLICE_S, remaining))

    if "error" in outcome:
        err = outcome["error"]
        if isinstance(err, EncodeFailed):
            raise err
        raise EncodeFailed(f"GIF encode failed: {type(err).__name__}") from err
    return outcome["data"]


def generate_gif(
    buffer: PixelBuffer,
    total_frames: int = DEFAULT_TOTAL_FRAMES,
    *,
    rng: np.random.Generator | None = None,
    encoder_factory=GifEncoder,
    quality: int = DEFAULT_QUALITY,
    transparent: str = TRANSPARENT_KEY,
    sleep=time.sleep,
    on_progress=None,
    cancel_event: threading.Event | None = None,
    timeout_s: float = ENCODE_TIMEOUT_S,
) -> bytes:
    """Generate a paced glitch animation of the buffer's image as GIF bytes.

    The buffer is driven through the sequence and ends on the origin image,
    since every sequence closes on ORIGINAL.
    """
    if rng is None:
        rng = make_rng()

    sequence = generate_sequence(total_frames, rng)
    encoder = encoder_factory(
        buffer.width, buffer.height, quality=quality, transparent=transparent
    )
    render_sequence(
        buffer,
        sequence,
        encoder,
        rng,
        sleep=sleep,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )
    return encode_with_deadline(encoder, timeout_s, on_progress, cancel_event)


class ExportStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class ExportJob:
    """Tracks state of a background export."""

    status: ExportStatus = ExportStatus.IDLE
    progress: float = 0.0
    total_frames: int = 0
    error: str | None = None
    output_path: str | None = None
    result: bytes | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _cancel_event: threading.Event = field(default_factory=threading.Event)
    _thread: threading.Thread | None = field(default=None, repr=False)

    def set_progress(self, value: float):
        with self._lock:
            self.progress = value

    def cancel(self):
        self._cancel_event.set()


class ExportManager:
    """Manages background GIF exports. One job at a time."""

    def __init__(self, encoder_factory=GifEncoder, sleep=time.sleep):
        self._job: ExportJob | None = None
        self._encoder_factory = encoder_factory
        self._sleep = sleep
        self._counter = 0

    @property
    def job(self) -> ExportJob | None:
        return self._job

    def start(
        self,
        canvas,
        output_path: str | None = None,
        total_frames: int = DEFAULT_TOTAL_FRAMES,
        seed: int | None = None,
        quality: int = DEFAULT_QUALITY,
    ) -> ExportJob:
        """Start a background export of canvas. Returns the job for status tracking.

        The canvas is acquired before the thread starts, so a busy canvas
        fails here rather than inside the job.

        Raises:
            ExportInProgressError: If an export is already running.
            CanvasBusyError: If a drag is active on the canvas.
            NotReadyError: If the canvas has no image.
        """
        if self._job is not None and self._job.status == ExportStatus.RUNNING:
            raise ExportInProgressError("Export already in progress")
        if total_frames < 1:
            raise ValueError(f"total_frames must be >= 1, got {total_frames}")

        buffer = canvas.buffer
        buffer.snapshot()  # NotReadyError before anything is acquired
        canvas.acquire(EXPORT_OWNER)

        self._counter += 1
        if seed is not None:
            rng = make_rng(derive_seed(seed, "export"))
        elif canvas.seed is not None:
            rng = make_rng(derive_seed(canvas.seed, "export", self._counter))
        else:
            rng = make_rng()

        job = ExportJob(output_path=output_path, total_frames=total_frames)
        self._job = job

        thread = threading.Thread(
            target=self._run_export,
            args=(job, canvas, rng, quality),
            name="gif-export",
            daemon=True,
        )
        job._thread = thread
        job.status = ExportStatus.RUNNING
        thread.start()

        return job

    def _run_export(self, job: ExportJob, canvas, rng, quality: int):
        try:
            data = generate_gif(
                canvas.buffer,
                job.total_frames,
                rng=rng,
                encoder_factory=self._encoder_factory,
                quality=quality,
                sleep=self._sleep,
                on_progress=job.set_progress,
                cancel_event=job._cancel_event,
            )
            if job.output_path:
                Path(job.output_path).write_bytes(data)
            with job._lock:
                job.result = data
                job.progress = 1.0
                job.status = ExportStatus.COMPLETE
            logger.info("Export complete: %d bytes", len(data))

        except ExportCancelled:
            with job._lock:
                job.progress = 0.0
                job.status = ExportStatus.CANCELLED
            canvas.buffer.reset()

        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Export failed")
            with job._lock:
                job.progress = 0.0
                job.status = ExportStatus.ERROR
                job.error = f"Export failed: {type(e).__name__}"
        finally:
            canvas.release(EXPORT_OWNER)

    def get_status(self) -> dict:
        """Return serializable status dict."""
        if self._job is None:
            return {
                "status": ExportStatus.IDLE.value,
                "progress": 0.0,
                "total_frames": 0,
            }
        with self._job._lock:
            return {
                "status": self._job.status.value,
                "progress": round(self._job.progress, 4),
                "total_frames": self._job.total_frames,
                "output_path": self._job.output_path,
                "size_bytes": len(self._job.result) if self._job.result else 0,
                "error": self._job.error,
            }

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current job's thread exits. True if it finished."""
        if self._job is None or self._job._thread is None:
            return True
        self._job._thread.join(timeout)
        return not self._job._thread.is_alive()

    def cancel(self) -> bool:
        """Cancel the running export. Returns True if a job was cancelled."""
        if self._job is None:
            return False
        with self._job._lock:
            if self._job.status == ExportStatus.RUNNING:
                self._job.cancel()
                return True
        return False
