import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

# .env next to the package wins over nothing, loses to the real environment
_env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=str(_env_path) if _env_path.exists() else None)


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


TITLE = os.getenv("SCB_TITLE", "sclang bridge")
HOST = os.getenv("SCB_HOST", "0.0.0.0")
PORT = _int("SCB_PORT", 4000)
LOG_LEVEL = os.getenv("SCB_LOG_LEVEL", "info")

_allow_origins_raw = os.getenv("SCB_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in _allow_origins_raw.split(",") if o.strip()]

# stdbuf -oL: sclang's piped stdout is otherwise block buffered and evals
# can sit unflushed for tens of seconds
ENGINE_CMD = os.getenv("SCB_ENGINE_CMD", "stdbuf -oL sclang")
_default_cwd = "/home/scuser"
ENGINE_CWD = os.getenv("SCB_ENGINE_CWD") or (_default_cwd if os.path.isdir(_default_cwd) else None)
STARTUP_SCRIPT = os.getenv("SCB_STARTUP_SCRIPT", "/home/scuser/sc/startup.scd")

STAGING_DIR = os.getenv("SCB_STAGING_DIR", tempfile.gettempdir())
STAGING_TTL = _float("SCB_STAGING_TTL", 15.0)
RESTART_DELAY = _float("SCB_RESTART_DELAY", 3.0)
CLIENT_QUEUE_SIZE = _int("SCB_CLIENT_QUEUE_SIZE", 256)
MAX_CODE_BYTES = _int("SCB_MAX_CODE_BYTES", 200_000)
