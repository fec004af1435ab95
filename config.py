import os
import logging
from dataclasses import dataclass

from dotenv import load_dotenv

# --- CONFIGURATION ---
load_dotenv()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_PORT = 8000
DEFAULT_DATA_DIR = "/app/data"
DEFAULT_SESSION_FILE = "whatsapp_state.json"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name, "").strip().lower()
    if not value:
        return default
    return value not in ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(f"Некорректное значение {name}={value!r}, используется {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(f"Некорректное значение {name}={value!r}, используется {default}")
        return default


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"
    data_dir: str = DEFAULT_DATA_DIR
    session_file: str = DEFAULT_SESSION_FILE
    pairing_timeout: float = 300.0
    poll_interval: float = 2.0
    headless: bool = True
    debug_screenshots: bool = False
    telegram_token: str | None = None
    admin_id: int = 0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=_env_int("PORT", DEFAULT_PORT),
            data_dir=os.getenv("DATA_DIR") or DEFAULT_DATA_DIR,
            session_file=os.getenv("SESSION_FILE") or DEFAULT_SESSION_FILE,
            pairing_timeout=_env_float("PAIRING_TIMEOUT", 300.0),
            poll_interval=_env_float("POLL_INTERVAL", 2.0),
            headless=_env_bool("HEADLESS", True),
            debug_screenshots=_env_bool("DEBUG_SCREENSHOTS", False),
            telegram_token=os.getenv("TELEGRAM_TOKEN") or None,
            admin_id=_env_int("ADMIN_ID", 0),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def session_path(self) -> str:
        return os.path.join(self.data_dir, self.session_file)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_token) and self.admin_id != 0


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level, logging.INFO)
    )
    # httpx (python-telegram-bot) логирует каждый запрос к API
    logging.getLogger("httpx").setLevel(logging.WARNING)
