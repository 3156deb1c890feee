import shutil
import threading
import time
import uuid
from pathlib import Path

import numpy as np
import pytest
import zmq
from PIL import Image

from zmq_server import ZMQServer


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            # REQ socket is stuck after a timeout; start over
            sock.close()
            sock = ctx.socket(zmq.REQ)
            sock.setsockopt(zmq.LINGER, 0)
            sock.setsockopt(zmq.RCVTIMEO, 500)
            sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


@pytest.fixture(scope="session")
def _zmq_server_session():
    """Start ONE ZMQ server per session."""
    srv = ZMQServer(seed=7)
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    yield _zmq_server_session


@pytest.fixture
def zmq_server_disposable():
    """Disposable server for shutdown tests that destroy sockets/context."""
    srv = ZMQServer()
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    time.sleep(0.6)


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close(linger=0)
    ctx.term()


@pytest.fixture
def zmq_ping_client(zmq_server):
    """REQ socket connected to the test server's ping port."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.ping_port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close(linger=0)
    ctx.term()


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_upload."""
    base = Path.home() / ".cache" / "shiftglitch" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def make_gradient(w: int = 64, h: int = 48) -> np.ndarray:
    """Opaque RGBA gradient with no pure-black pixels."""
    frame = np.zeros((h, w, 4), dtype=np.uint8)
    frame[:, :, 0] = np.linspace(10, 250, w, dtype=np.uint8)[None, :]
    frame[:, :, 1] = np.linspace(20, 240, h, dtype=np.uint8)[:, None]
    frame[:, :, 2] = 128
    frame[:, :, 3] = 255
    return frame


@pytest.fixture
def gradient_frame():
    return make_gradient()


@pytest.fixture
def sample_png_path(home_tmp_path):
    """64x48 gradient PNG under ~/ with a black stripe and a transparent corner."""
    frame = make_gradient()
    frame[10:12, :, :3] = 0
    frame[:4, :4] = 0
    path = home_tmp_path / "sample.png"
    Image.fromarray(frame).save(path)
    return path


class FakeEncoder:
    """Records frames instead of encoding; stands in for GifEncoder."""

    instances: list["FakeEncoder"] = []

    def __init__(self, width, height, quality=10, transparent="#000000"):
        self.width = width
        self.height = height
        self.quality = quality
        self.transparent = transparent
        self.frames: list[tuple[np.ndarray, int]] = []
        self.aborted = False
        FakeEncoder.instances.append(self)

    def add_frame(self, rgba, delay_ms):
        self.frames.append((rgba.copy(), delay_ms))

    def render(self, on_progress=None):
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        return b"GIF89a" + len(self.frames).to_bytes(2, "little")

    def abort(self):
        self.aborted = True


@pytest.fixture
def fake_encoder():
    FakeEncoder.instances.clear()
    yield FakeEncoder
    FakeEncoder.instances.clear()


def no_sleep(_seconds):
    pass
