"""Launcher for the kiosklink HTTP API.

Usage:
    python launch_kiosklink.py                      # API on 127.0.0.1:8000
    python launch_kiosklink.py --host 0.0.0.0 --port 8080
    python launch_kiosklink.py --reload             # auto-reload during development

The device is taken from KIOSKLINK_DEVICE (see kiosklink/config.py).
"""
import argparse
import os
import subprocess
import sys


def _run_fastapi(host: str, port: int, *, reload: bool = False) -> int:
    """Run the uvicorn server process and return its exit code."""
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "kiosklink.api:app",
        "--host",
        host,
        "--port",
        str(port),
    ]
    if reload:
        cmd.append("--reload")
    return subprocess.run(cmd, check=False).returncode


def check_dependencies() -> bool:
    """Return True when fastapi and uvicorn can be imported."""
    try:
        import fastapi  # noqa: F401
        import uvicorn  # noqa: F401
    except ImportError:
        return False
    return True


def main() -> int:
    parser = argparse.ArgumentParser(description="Launch the kiosklink API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()

    if not check_dependencies():
        print("Error: FastAPI dependencies not installed")
        print("   Install with: pip install fastapi uvicorn")
        return 1
    if not os.getenv("KIOSKLINK_DEVICE"):
        print("Warning: KIOSKLINK_DEVICE is not set; device endpoints will fail")

    print(f"Starting kiosklink API on http://{args.host}:{args.port}")
    print(f"API docs available at http://{args.host}:{args.port}/docs")
    return _run_fastapi(args.host, args.port, reload=args.reload)


if __name__ == "__main__":
    sys.exit(main())
