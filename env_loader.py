import os
from typing import Optional

from dotenv import load_dotenv

_LOADED = False


def load_env(path: Optional[str] = None) -> bool:
    """Load .env once; values already in the environment win."""
    global _LOADED
    if _LOADED and path is None:
        return False
    env_path = path or os.getenv("TRACKER_ENV_FILE") or ".env"
    loaded = load_dotenv(env_path, override=False)
    _LOADED = True
    return bool(loaded)
