#!/usr/bin/env python3
"""
Run script for the MaaS gateway dashboard.

Usage:
    python -m maas_dashboard.run api      # Start the FastAPI server
    python -m maas_dashboard.run ui       # Start the Streamlit dashboard
    python -m maas_dashboard.run both     # Start both, UI pointed at the API
    python -m maas_dashboard.run api --mock   # Serve generated sample data
"""

import argparse
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, Optional

import requests
import uvicorn

from .logging_config import configure_logging

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_API_PORT = 8000
DEFAULT_UI_PORT = 8501


def api_base_url(port: int) -> str:
    return f"http://localhost:{port}/api/v1"


def ui_env(api_port: int) -> Dict[str, str]:
    """Environment for a Streamlit process that talks to a local API on `api_port`."""
    env = dict(os.environ)
    env["REACT_APP_API_BASE_URL"] = api_base_url(api_port)
    return env


def wait_for_api(port: int, timeout: float = 30.0, interval: float = 0.5) -> bool:
    """Poll `/health` until the API answers 200 or `timeout` seconds pass."""
    url = f"http://localhost:{port}/health"
    deadline = time.monotonic() + timeout
    while True:
        try:
            if requests.get(url, timeout=2).status_code == 200:
                return True
        except requests.RequestException:
            pass
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def run_api(host: str = "0.0.0.0", port: int = DEFAULT_API_PORT, reload: bool = True):
    """Run the FastAPI server in this process."""
    configure_logging()
    print(f"Starting API server at http://{host}:{port}")
    print(f"API docs at http://{host}:{port}/docs")
    # Logging is configured by the app lifespan, not by uvicorn's dictConfig
    uvicorn.run("maas_dashboard.api:app", host=host, port=port, reload=reload, log_config=None)


def run_ui(port: int = DEFAULT_UI_PORT, api_port: Optional[int] = None) -> int:
    """Run the Streamlit dashboard."""
    cmd = [
        sys.executable, "-m", "streamlit", "run",
        str(Path(__file__).parent / "app.py"),
        "--server.port", str(port),
    ]
    env = ui_env(api_port) if api_port else None

    print(f"Starting Streamlit dashboard at http://localhost:{port}")
    return subprocess.run(cmd, cwd=PROJECT_ROOT, env=env).returncode


def run_both(api_port: int = DEFAULT_API_PORT, ui_port: int = DEFAULT_UI_PORT) -> int:
    """Start the API in a child process, wait until it is healthy, then run the UI."""
    print(f"Starting API server at http://localhost:{api_port}")
    api_process = subprocess.Popen(
        [sys.executable, "-m", "maas_dashboard.run", "api",
         "--api-port", str(api_port), "--no-reload"],
        cwd=PROJECT_ROOT,
    )

    try:
        if not wait_for_api(api_port):
            print(f"API did not become healthy on port {api_port}", file=sys.stderr)
            return 1
        return run_ui(ui_port, api_port=api_port)
    finally:
        api_process.terminate()
        api_process.wait(timeout=10)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the MaaS gateway dashboard")
    parser.add_argument(
        "component",
        choices=["api", "ui", "both"],
        help="Component to run: api, ui, or both",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=DEFAULT_API_PORT,
        help=f"Port for the API server (default: {DEFAULT_API_PORT})",
    )
    parser.add_argument(
        "--ui-port",
        type=int,
        default=DEFAULT_UI_PORT,
        help=f"Port for the Streamlit UI (default: {DEFAULT_UI_PORT})",
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload for API server",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Serve generated sample data instead of querying the cluster",
    )

    args = parser.parse_args(argv)

    # Inherited by the API child process in `both` mode
    if args.mock:
        os.environ["USE_MOCK_DATA"] = "true"

    if args.component == "api":
        run_api(port=args.api_port, reload=not args.no_reload)
        return 0
    if args.component == "ui":
        return run_ui(port=args.ui_port)
    return run_both(api_port=args.api_port, ui_port=args.ui_port)


if __name__ == "__main__":
    sys.exit(main())
