"""Application configuration via environment variables and .env file."""

import re
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")

STORE_MODES = ("firebase", "local")


_ASSIGNMENT = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_NEEDS_QUOTES = re.compile(r'[\s#"\\]')


def _field_to_env_key(name: str) -> str:
    return "HOMEDASH_" + name.upper()


def _env_assignment(line: str) -> tuple[str, str] | None:
    """Split ``NAME=value`` into its parts, unquoting double-quoted values.

    Blank lines, comments and anything that is not an assignment give None.
    """
    text = line.strip()
    if text.startswith("#"):
        return None
    match = _ASSIGNMENT.match(text)
    if match is None:
        return None
    name, value = match.group(1), match.group(2).strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1].replace('\\"', '"').replace("\\n", "\n")
    return name, value


def _env_quote(value: str) -> str:
    """Render ``value`` so that _env_assignment reads it back unchanged."""
    if not _NEEDS_QUOTES.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _env_str(v: str | int | Path | None) -> str:
    return "" if v is None else str(v)


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "HOMEDASH_",
        "env_file_encoding": "utf-8",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Logging
    log_level: str = "info"

    # Backend: "firebase" (production) or "local" (SQLite, for development)
    store_mode: str = "local"

    # Firebase project
    firebase_api_key: str | None = None
    firebase_database_url: str | None = None
    firebase_project_id: str | None = None
    # Service account: either a JSON file or the same JSON base64-encoded
    firebase_credentials_path: Path | None = None
    firebase_credentials_base64: str | None = None

    # Local backend
    db_path: Path = Path("./data/homedash.db")
    bootstrap_admin_email: str | None = None
    bootstrap_admin_password: str | None = None

    # Devices
    online_threshold_seconds: int = 120  # telemetry older than this is "offline"
    first_snapshot_timeout: float = 10.0  # seconds sign-in waits for device data
    resubscribe_delay: int = 5  # seconds between device subscription attempts

    # Sessions
    role_recheck_interval: int = 60  # seconds, 0 disables the background re-check
    session_cookie_name: str = "homedash_session"
    session_idle_timeout: int = 3600  # seconds without a request before a session is closed
    session_sweep_interval: int = 60  # seconds between idle-session sweeps, 0 disables

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("store_mode", mode="before")
    @classmethod
    def parse_store_mode(cls, v: object) -> str:
        """Normalize the backend name; unknown values fall back to local."""
        mode = str(v or "").strip().lower()
        return mode if mode in STORE_MODES else "local"

    def is_configured(self) -> bool:
        """Return True when the selected backend has everything it needs."""
        if self.store_mode == "local":
            return True
        has_credentials = bool(
            self.firebase_credentials_path or self.firebase_credentials_base64
        )
        return bool(
            self.firebase_api_key
            and self.firebase_database_url
            and self.firebase_project_id
            and has_credentials
        )


def save_config(values: dict[str, str | int | Path | None]) -> None:
    """Write setup values into the .env file.

    Unknown keys are dropped. HOMEDASH_ assignments already in the file are
    updated in place of the old ones; every other line is left alone.
    """
    known = Settings.model_fields.keys()
    kept: list[str] = []
    ours: dict[str, str] = {}
    if _ENV_FILE.exists():
        for line in _ENV_FILE.read_text(encoding="utf-8").splitlines():
            assignment = _env_assignment(line)
            if assignment and assignment[0].startswith("HOMEDASH_"):
                ours[assignment[0]] = assignment[1]
            else:
                kept.append(line)

    ours.update({_field_to_env_key(k): _env_str(v) for k, v in values.items() if k in known})

    lines = list(kept)
    if lines:
        lines.append("")
    lines.extend(f"{key}={_env_quote(ours[key])}" for key in sorted(ours))
    _ENV_FILE.write_text("\n".join(lines) + "\n", encoding="utf-8")


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
