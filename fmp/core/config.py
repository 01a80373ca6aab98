import os
import sys
from pathlib import Path


def _platform_dir(xdg_var: str, fallback: str) -> Path:
    if sys.platform == "win32":
        return Path(os.getenv("APPDATA", Path.home() / "AppData" / "Roaming"))
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.getenv(xdg_var, Path.home() / fallback))


DATA_DIR = Path(os.getenv("FMP_DATA_DIR", str(_platform_dir("XDG_DATA_HOME", ".local/share"))))
CONFIG_DIR = Path(os.getenv("FMP_CONFIG_DIR", str(_platform_dir("XDG_CONFIG_HOME", ".config"))))

LOG_PATH = os.getenv("FMP_LOG_PATH", str(DATA_DIR / "fmp" / "fmp.log"))
LOG_LEVEL = os.getenv("FMP_LOG_LEVEL", "INFO")
GPG_BINARY = os.getenv("FMP_GPG_BINARY", "gpg")

TOTP_ISSUER = os.getenv("FMP_TOTP_ISSUER", "FMP")
TOTP_UNLOCK_SECONDS = int(os.getenv("FMP_TOTP_UNLOCK_SECONDS", "120"))

WEB_HOST = os.getenv("FMP_WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("FMP_WEB_PORT", "8765"))
SESSION_SECURE_COOKIE = os.getenv("FMP_SESSION_SECURE_COOKIE", "0") == "1"
