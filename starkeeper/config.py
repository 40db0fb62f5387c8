import datetime
import logging
import os
import re
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SECRETS_DIR = "/run/secrets"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore", "webdav4", "multipart")

STORAGE_BACKENDS = {"s3", "webdav", "none"}
BACKEND_REQUIRED_SETTINGS = {
    "s3": ("s3_access_key", "s3_secret_key", "s3_bucket"),
    "webdav": ("webdav_url",),
}
LIST_POLICY_NAMES = {"parent", "grants", "owner"}
DELETE_POLICY_NAMES = {"editor", "owner"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, env_ignore_empty=False)

    logging_level: str = "INFO"
    timezone: str = "UTC"
    database_url: str = "sqlite:////data/starkeeper.db"

    # Bearer tokens
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_expiry_days: int = 7

    # Object store
    storage_backend: str = "s3"
    s3_endpoint_url: str | None = None
    s3_region: str = "eu-central-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_bucket: str | None = None
    webdav_url: str | None = None
    webdav_username: str | None = None
    webdav_password: str | None = None
    webdav_path: str | None = None
    public_base_url: str = "http://localhost:8000"
    storage_workers: int = 6
    storage_concurrency: int = 2

    sign_ttl_list: str = "1h"
    sign_ttl_detail: str = "10h"

    compress_photos: bool = True
    upload_tmp_dir: str | None = None

    # Access policy knobs
    conceal_forbidden: bool = False
    public_star_listing: bool = False
    list_policy_overrides: dict[str, str] = {}
    delete_policy_overrides: dict[str, str] = {}

    @field_validator("sign_ttl_list", "sign_ttl_detail")
    @classmethod
    def _check_ttl(cls, v, info):
        try:
            parse_interval(v)
        except ValueError as exc:
            raise ValueError(f"{info.field_name}: {exc}") from exc
        return str(v).strip()

    @field_validator("jwt_expiry_days")
    @classmethod
    def _check_jwt_expiry(cls, v):
        days = int(v)
        if not 1 <= days <= 365:
            raise ValueError("jwt_expiry_days must be between 1 and 365")
        return days

    @field_validator("storage_workers", "storage_concurrency")
    @classmethod
    def _check_positive(cls, v, info):
        count = int(v)
        if count < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return count

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, v):
        backend = str(v).strip().lower()
        if backend not in STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of {sorted(STORAGE_BACKENDS)}")
        return backend

    @field_validator("list_policy_overrides", "delete_policy_overrides")
    @classmethod
    def _check_policy_overrides(cls, v, info):
        allowed = LIST_POLICY_NAMES if info.field_name.startswith("list") else DELETE_POLICY_NAMES
        normalized = {kind: str(policy).strip().lower() for kind, policy in v.items()}
        unknown = {kind: policy for kind, policy in normalized.items() if policy not in allowed}
        if unknown:
            raise ValueError(f"unknown policies {unknown}; expected one of {sorted(allowed)}")
        return normalized

    @field_validator("jwt_secret", "s3_access_key", "s3_secret_key", "webdav_password", mode="before")
    @classmethod
    def _prefer_docker_secret(cls, v, info):
        secret = _read_docker_secret(info.field_name)
        if secret:
            logger.debug("Using docker secret for %s", info.field_name)
            return secret
        return v

    def model_post_init(self, __context):
        """Warn about backend settings that are missing for the selected store."""
        required = BACKEND_REQUIRED_SETTINGS.get(self.storage_backend, ())
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            logger.warning("Storage backend %s selected but missing settings: %s", self.storage_backend, missing)
        if not self.jwt_secret:
            logger.warning("JWT_SECRET is not set; every authenticated request will be rejected")


def _read_docker_secret(field_name: str) -> str | None:
    """Contents of /run/secrets/<FIELD_NAME> (or the lower-case file), if non-empty."""
    for name in (field_name.upper(), field_name):
        path = os.path.join(SECRETS_DIR, name)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                value = fh.read().strip()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read docker secret %s: %s", path, exc)
            return None
        if value:
            return value
    return None


def load_settings() -> Settings:
    """Build settings from the environment; exit with status 1 if they are invalid."""
    try:
        return Settings()
    except ValidationError as e:
        logger.error("Configuration error (%d problem(s)):", e.error_count())
        for err in e.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "<settings>"
            logger.error(" - %s: %s", field, err.get("msg"))
        sys.exit(1)


class LocalISOFormatter(logging.Formatter):
    """Render `asctime` as an ISO-8601 timestamp with millisecond precision.

    Uses `tz_name` when it names a known zone, otherwise the host's local zone.
    """

    def __init__(self, fmt=None, datefmt=None, tz_name: str | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tz = _zone_or_none(tz_name)

    def formatTime(self, record, datefmt=None):
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self._tz or datetime.timezone.utc)
        if self._tz is None:
            stamp = stamp.astimezone()
        return stamp.isoformat(timespec="milliseconds")


def _zone_or_none(tz_name: str | None):
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _level_from(settings: Settings | None) -> int:
    name = str(getattr(settings, "logging_level", "INFO") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Settings | None = None):
    """Install the single root handler and align third-party loggers with it.

    Safe to call repeatedly; only the levels change after the first call.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(LocalISOFormatter(LOG_FORMAT, tz_name=getattr(settings, "timezone", None)))
        root.addHandler(handler)
    root.setLevel(_level_from(settings))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # uvicorn installs its own handlers; route everything through ours instead.
    for name in ("uvicorn", "uvicorn.error"):
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True
    sql_level = logging.INFO if root.level <= logging.DEBUG else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sql_level)

    logger.info("Logging configured; root level=%s", logging.getLevelName(root.level))


_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}
_INTERVAL_RE = re.compile(
    r"(?P<num>[+-]?\d+)\s*(?P<unit>s|secs?|seconds?|m|mins?|minutes?|h|hrs?|hours?)?"
)


def parse_interval(interval) -> int:
    """Parse a duration such as ``"3600"``, ``"60min"`` or ``"10h"`` into seconds."""
    text = "" if interval is None else str(interval).strip().lower()
    if not text:
        raise ValueError("Empty interval")
    match = _INTERVAL_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"Invalid interval '{interval}'")
    raw = match.group("num")
    if raw.startswith("-"):
        raise ValueError("Interval must be non-negative")
    seconds = int(raw) * _UNIT_SECONDS[(match.group("unit") or "s")[0]]
    if seconds == 0:
        raise ValueError("Interval must be positive")
    return seconds
