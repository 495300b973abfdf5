"""Launch the PageChat proxy (FastAPI under uvicorn)."""
import os
import subprocess
import sys
from pathlib import Path

from pagechat.config import get_settings


def main():
    root = Path(__file__).parent
    settings = get_settings()

    # DOCKER=1 binds on all interfaces; --reload only for local development
    is_docker = os.environ.get("DOCKER", "0") == "1"
    host = "0.0.0.0" if is_docker else settings.host
    port = str(settings.port)

    cmd = [
        sys.executable, "-m", "uvicorn", "pagechat.main:app",
        "--host", host, "--port", port,
    ]
    if not is_docker:
        cmd.append("--reload")

    print(f"Starting PageChat proxy on http://{host}:{port} ...")
    print(f"Provider config: {settings.config_path}")
    server = subprocess.Popen(cmd, cwd=str(root))

    try:
        server.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.terminate()
        server.wait()


if __name__ == "__main__":
    main()
