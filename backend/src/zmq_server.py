import json
import logging
import time
import uuid
from pathlib import Path

import sentry_sdk
import zmq

from effects import registry
from engine.buffer import NotReadyError
from engine.determinism import make_rng
from engine.export import ExportInProgressError, ExportManager
from engine.operations import flush_timing, get_effect_stats
from engine.sequencer import generate_sequence, sequence_stats
from imaging.encode import encode_preview
from imaging.ingest import DecodeFailed, decode_image, probe
from interaction.canvas import CanvasBusyError, GlitchCanvas
from security import (
    validate_dimensions,
    validate_frame_count,
    validate_output_path,
    validate_upload,
)

logger = logging.getLogger(__name__)

# Failures a client can act on; their message is returned as-is.
_CLIENT_ERRORS = (ValueError, CanvasBusyError, DecodeFailed)


class ZMQServer:
    def __init__(self, seed: int | None = None):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket — answered even while a glitch is running
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token — prevents unauthorized ZMQ access from other local processes
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.seed = seed
        self.canvas = GlitchCanvas(seed=seed)
        self.export_manager = ExportManager()
        self.last_op_ms = 0.0
        self._handlers = {
            "load": self._handle_load,
            "reset": self._handle_reset,
            "snapshot": self._handle_snapshot,
            "settings": self._handle_settings,
            "pointer_down": self._handle_pointer_down,
            "pointer_move": self._handle_pointer_move,
            "pointer_up": self._handle_pointer_up,
            "pointer_cancel": self._handle_pointer_cancel,
            "random_glitch": self._handle_random_glitch,
            "intensity_glitch": self._handle_intensity_glitch,
            "sequence": self._handle_sequence,
            "save_png": self._handle_save_png,
            "export_start": self._handle_export_start,
            "export_status": self._handle_export_status,
            "export_cancel": self._handle_export_cancel,
        }

    def reset_state(self):
        """Drop the loaded image and any export without closing sockets.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        self.export_manager.cancel()
        self.export_manager.wait(timeout=5)
        self.export_manager = ExportManager()
        self.canvas = GlitchCanvas(seed=self.seed)
        self.last_op_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_op_ms": self.last_op_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "list_effects":
            return {"id": msg_id, "ok": True, "effects": registry.list_all()}
        elif cmd == "effect_stats":
            return {"id": msg_id, "ok": True, "stats": get_effect_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}

        handler = self._handlers.get(cmd)
        if handler is None:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

        t0 = time.monotonic()
        try:
            result = handler(message)
        except NotReadyError:
            return {"id": msg_id, "ok": False, "error": "no image loaded"}
        except _CLIENT_ERRORS as e:
            return {"id": msg_id, "ok": False, "error": str(e)}
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("%s error: %s", cmd, type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}
        self.last_op_ms = round((time.monotonic() - t0) * 1000, 2)

        if result.get("ok") is False:
            return {"id": msg_id, **result}
        return {"id": msg_id, "ok": True, **result}

    def _maybe_preview(self, message: dict, result: dict) -> dict:
        if message.get("preview"):
            result["preview_png_b64"] = encode_preview(self.canvas.snapshot())
        return result

    # --- image ---

    def _handle_load(self, message: dict) -> dict:
        path = message.get("path")
        if not path:
            return {"ok": False, "error": "missing path"}

        errors = validate_upload(path)
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        info = probe(path)
        if not info["ok"]:
            return info
        errors = validate_dimensions(info["width"], info["height"])
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        image = decode_image(path)
        self.canvas.load(image.rgba, image.width, image.height)
        logger.info("Loaded %dx%d %s image", image.width, image.height, info["format"])
        return self._maybe_preview(
            message,
            {
                "width": image.width,
                "height": image.height,
                "format": info["format"],
                **self.canvas.settings(),
            },
        )

    def _handle_reset(self, message: dict) -> dict:
        self.canvas.reset()
        return self._maybe_preview(message, {})

    def _handle_snapshot(self, message: dict) -> dict:
        frame = self.canvas.snapshot()
        return {
            "width": frame.shape[1],
            "height": frame.shape[0],
            "png_b64": encode_preview(frame),
        }

    def _handle_settings(self, message: dict) -> dict:
        self.canvas.configure(
            mode=message.get("mode"), split_height=message.get("split_height")
        )
        return self.canvas.settings()

    # --- drag ---

    def _handle_pointer_down(self, message: dict) -> dict:
        started = self.canvas.pointer_down(
            float(message.get("x", 0)),
            float(message.get("y", 0)),
            canvas_top=float(message.get("canvas_top", 0)),
            scale_y=float(message.get("scale_y", 1)),
        )
        return {"started": started}

    def _handle_pointer_move(self, message: dict) -> dict:
        changed = self.canvas.pointer_move(float(message.get("x", 0)))
        return self._maybe_preview(message, {"changed": changed})

    def _handle_pointer_up(self, message: dict) -> dict:
        return self._maybe_preview(message, {"ended": self.canvas.pointer_up()})

    def _handle_pointer_cancel(self, message: dict) -> dict:
        return self._maybe_preview(message, {"ended": self.canvas.cancel_drag()})

    # --- one-shot glitches ---

    def _handle_random_glitch(self, message: dict) -> dict:
        bands = self.canvas.random_glitch()
        return self._maybe_preview(message, {"bands": bands})

    def _handle_intensity_glitch(self, message: dict) -> dict:
        flashed = self.canvas.intensity_glitch(
            float(message.get("intensity", 0.5)),
            int(message.get("repeat_count", 1)),
        )
        return self._maybe_preview(message, {"flashed": flashed})

    # --- animation ---

    def _handle_sequence(self, message: dict) -> dict:
        total_frames = int(message.get("total_frames", 50))
        errors = validate_frame_count(total_frames)
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        rng = make_rng(message.get("seed"))
        sequence = generate_sequence(total_frames, rng)
        return {
            "frames": [f.to_dict() for f in sequence],
            "stats": sequence_stats(sequence, rng),
        }

    def _handle_save_png(self, message: dict) -> dict:
        output_path = message.get("output_path")
        if not output_path:
            return {"ok": False, "error": "missing output_path"}
        errors = validate_output_path(output_path, allowed={".png"})
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        data = self.canvas.to_png()
        Path(output_path).write_bytes(data)
        return {"output_path": output_path, "size_bytes": len(data)}

    def _handle_export_start(self, message: dict) -> dict:
        output_path = message.get("output_path")
        if output_path:
            errors = validate_output_path(output_path, allowed={".gif"})
            if errors:
                return {"ok": False, "error": "; ".join(errors)}

        total_frames = int(message.get("total_frames", 50))
        errors = validate_frame_count(total_frames)
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        try:
            self.export_manager.start(
                self.canvas,
                output_path=output_path,
                total_frames=total_frames,
                seed=message.get("seed"),
                quality=int(message.get("quality", 10)),
            )
        except ExportInProgressError as e:
            return {"ok": False, "error": str(e)}
        return {}

    def _handle_export_status(self, message: dict) -> dict:
        return self.export_manager.get_status()

    def _handle_export_cancel(self, message: dict) -> dict:
        return {"cancelled": self.export_manager.cancel()}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            # Handle main command socket
            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.export_manager.cancel()
        self.export_manager.wait(timeout=5)
        self.canvas.buffer.close()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
