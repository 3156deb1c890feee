import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import app_home, init_diagnostics
from security import strip_pii
from zmq_server import ZMQServer

# Consent-gated Sentry init: no DSN unless the user opted in
_consent_path = os.path.join(app_home(), "telemetry_consent")
_dsn = ""
if os.path.exists(_consent_path) and Path(_consent_path).read_text().strip() == "yes":
    _dsn = os.environ.get("SENTRY_DSN", "")

sentry_sdk.init(
    dsn=_dsn,
    release=f"shiftglitch@{__version__}",
    environment=os.environ.get("SENTRY_ENV", "development"),
    traces_sample_rate=0.1,
    before_send=strip_pii,
    max_breadcrumbs=50,
)

# Glitch buffers are a few copies of one image; 2 GB is generous
MAX_MEMORY_BYTES = 2 * 1024 * 1024 * 1024


def _apply_resource_limits():
    """Cap the address space. Skipped on Windows."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        resource.setrlimit(resource.RLIMIT_AS, (MAX_MEMORY_BYTES, hard))
    except (ImportError, ValueError, OSError):
        print("WARNING: Could not set memory limit", file=sys.stderr)


def _seed_from_env() -> int | None:
    raw = os.environ.get("GLITCH_SEED", "")
    return int(raw) if raw.strip() else None


def main():
    init_diagnostics()
    _apply_resource_limits()
    server = ZMQServer(seed=_seed_from_env())
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
