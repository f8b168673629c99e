"""Start the actuator under uvicorn after making sure its port can be used.

A listener already on the port is handled one of three ways:
a healthy actuator is left running and the launcher exits 0; a stale
actuator uvicorn is torn down (with its reload workers) and the launch goes
ahead; anything else is left alone and the launch is refused.
"""

from __future__ import annotations

import argparse
import socket
import sys
import time
from enum import Enum
from typing import List, Optional

import httpx
import psutil
import uvicorn

from actuator.config import DEV_HOST, DEV_PORT, is_test_mode, resolve_host_port
from actuator.executor.process import terminate_tree

APP_PATH = "actuator.app:app"
STALE_KILL_GRACE_S = 3.0
RELEASE_POLLS = 10
RELEASE_POLL_INTERVAL_S = 0.3


class PortStatus(str, Enum):
    FREE = "free"
    RUNNING = "running"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


def log(message: str) -> None:
    print(f"[actuator-launch] {message}", flush=True)


def port_bindable(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def listeners_on(port: int) -> List[psutil.Process]:
    found: List[psutil.Process] = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            conns = proc.net_connections(kind="inet")
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if any(c.status == psutil.CONN_LISTEN and c.laddr and c.laddr.port == port for c in conns):
            found.append(proc)
    return found


def is_actuator_process(proc: psutil.Process) -> bool:
    """A uvicorn serving this app, or a previous run of this launcher."""
    try:
        argv = proc.info.get("cmdline") or proc.cmdline() or []
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False
    cmdline = " ".join(argv)
    return ("uvicorn" in cmdline and APP_PATH in cmdline) or "actuator.launch_service" in cmdline


def actuator_healthy(host: str, port: int) -> bool:
    try:
        resp = httpx.get(f"http://{host}:{port}/health", timeout=1.0)
    except httpx.HTTPError:
        return False
    if resp.status_code != 200:
        return False
    try:
        body = resp.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("ok") is True and "skills" in body


def _wait_for_release(host: str, port: int) -> bool:
    for _ in range(RELEASE_POLLS):
        if port_bindable(host, port):
            return True
        time.sleep(RELEASE_POLL_INTERVAL_S)
    return port_bindable(host, port)


def ensure_port_free(host: str, port: int) -> PortStatus:
    if port_bindable(host, port):
        return PortStatus.FREE

    if actuator_healthy(host, port):
        log(f"Actuator already serving on http://{host}:{port}; nothing to do.")
        return PortStatus.RUNNING

    listeners = listeners_on(port)
    if not listeners:
        log(f"Port {port} on {host} is busy but its owner is not visible; free it manually.")
        return PortStatus.UNKNOWN

    strangers = [p for p in listeners if not is_actuator_process(p)]
    if strangers:
        owner = strangers[0]
        log(f"Port {port} belongs to pid={owner.pid} ({owner.info.get('name')}); refusing to touch it.")
        return PortStatus.BLOCKED

    for proc in listeners:
        log(f"Stopping stale actuator pid={proc.pid}")
        if not terminate_tree(proc.pid, STALE_KILL_GRACE_S):
            log(f"pid={proc.pid} survived kill; port {port} may stay busy")
            return PortStatus.BLOCKED

    if _wait_for_release(host, port):
        log(f"Port {port} released")
        return PortStatus.FREE
    log(f"Port {port} on {host} still busy after stopping the stale actuator")
    return PortStatus.BLOCKED


def main(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False) -> int:
    bind_host, bind_port = resolve_host_port(host=host, port=port)
    status = ensure_port_free(bind_host, bind_port)
    if status is PortStatus.RUNNING:
        return 0
    if status is not PortStatus.FREE:
        return 1

    log(f"uvicorn {APP_PATH} -> http://{bind_host}:{bind_port} ({'test' if is_test_mode() else 'dev'} profile)")
    uvicorn.run(APP_PATH, host=bind_host, port=bind_port, reload=reload, log_level="info")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the desktop actuator service.")
    parser.add_argument("--host", help=f"bind address (dev default {DEV_HOST})")
    parser.add_argument("--port", type=int, help=f"bind port (dev default {DEV_PORT}; ACTUATOR_TEST_PORT in test mode)")
    parser.add_argument("--reload", action="store_true", help="uvicorn auto-reload, for local development")
    cli = parser.parse_args()
    sys.exit(main(host=cli.host, port=cli.port, reload=cli.reload))
