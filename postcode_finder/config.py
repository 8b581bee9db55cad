"""Configuration with sensible defaults for LITE MODE (local postcode dataset, file snapshots)."""

import tempfile
from dataclasses import dataclass, field
from os import getenv
from pathlib import Path

_TMP = Path(tempfile.gettempdir())


def _parse_bool(value: str, default: bool = True) -> bool:
    """Parse boolean from environment variable."""
    if not value:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str, default: float) -> float:
    """Parse float from environment variable."""
    try:
        return float(value) if value else default
    except ValueError:
        return default


def _parse_int(value: str, default: int) -> int:
    """Parse int from environment variable."""
    try:
        return int(value) if value else default
    except ValueError:
        return default


@dataclass(slots=True, frozen=True)
class Config:
    # ==================== Geocoder provider ====================
    # local = CSV dataset (no network), juso = juso.go.kr address API
    postal_provider: str = field(default_factory=lambda: getenv("POSTAL_PROVIDER", "local").lower())
    juso_api_key: str = field(default_factory=lambda: getenv("JUSO_API_KEY", ""))
    juso_base_url: str = field(
        default_factory=lambda: getenv("JUSO_BASE_URL", "https://business.juso.go.kr/addrlink/addrLinkApi.do")
    )
    local_data_path: str = field(default_factory=lambda: getenv("LOCAL_DATA_PATH", "data/postcodes.csv"))
    geocoder_timeout: float = field(
        default_factory=lambda: _parse_float(getenv("GEOCODER_TIMEOUT", ""), 7.0)
    )
    geocoder_page_size: int = field(
        default_factory=lambda: _parse_int(getenv("GEOCODER_PAGE_SIZE", ""), 50)
    )
    fallback_query_limit: int = field(
        default_factory=lambda: _parse_int(getenv("FALLBACK_QUERY_LIMIT", ""), 2)
    )

    # ==================== Upstream circuit breaker ====================
    circuit_breaker_threshold: int = field(
        default_factory=lambda: _parse_int(getenv("CIRCUIT_BREAKER_THRESHOLD", ""), 5)
    )
    circuit_breaker_reset: int = field(
        default_factory=lambda: _parse_int(getenv("CIRCUIT_BREAKER_RESET", ""), 30)
    )

    # ==================== Upload ====================
    max_rows: int = field(default_factory=lambda: _parse_int(getenv("MAX_ROWS", ""), 1000))
    max_file_size: int = field(
        default_factory=lambda: _parse_int(getenv("MAX_FILE_SIZE", ""), 10 * 1024 * 1024)
    )
    allowed_extensions: tuple[str, ...] = (".xlsx", ".csv")

    # ==================== Lookup batching ====================
    # Kakao/Juso allow ~10 requests per second
    batch_size: int = field(default_factory=lambda: _parse_int(getenv("LOOKUP_BATCH_SIZE", ""), 10))
    inter_batch_delay: float = field(
        default_factory=lambda: _parse_float(getenv("INTER_BATCH_DELAY", ""), 1.0)
    )

    # ==================== Output ====================
    include_road_address: bool = field(
        default_factory=lambda: _parse_bool(getenv("INCLUDE_ROAD_ADDRESS", ""), True)
    )
    output_format: str = field(default_factory=lambda: getenv("OUTPUT_FORMAT", "xlsx").lower())

    # ==================== Jobs ====================
    process_on_upload: bool = field(
        default_factory=lambda: _parse_bool(getenv("PROCESS_ON_UPLOAD", ""), True)
    )
    job_snapshot_dir: str = field(
        default_factory=lambda: getenv("JOB_SNAPSHOT_DIR", str(_TMP / "postal-code-jobs"))
    )
    upload_dir: str = field(default_factory=lambda: getenv("UPLOAD_DIR", str(_TMP / "postal-code-uploads")))
    output_dir: str = field(default_factory=lambda: getenv("OUTPUT_DIR", str(_TMP / "postal-code-outputs")))
    job_retention_seconds: int = field(
        default_factory=lambda: _parse_int(getenv("JOB_RETENTION_TIME", ""), 24 * 60 * 60)
    )
    job_cleanup_interval: int = field(
        default_factory=lambda: _parse_int(getenv("JOB_CLEANUP_INTERVAL", ""), 60 * 60)
    )
    job_lease_seconds: int = field(
        default_factory=lambda: _parse_int(getenv("JOB_LEASE_SECONDS", ""), 60)
    )

    # ==================== Store (optional - empty = file snapshots) ====================
    redis_url: str = field(default_factory=lambda: getenv("REDIS_URL", ""))

    # ==================== Service ====================
    log_level: str = field(default_factory=lambda: getenv("LOG_LEVEL", "INFO").upper())
    debug_errors: bool = field(default_factory=lambda: _parse_bool(getenv("DEBUG_ERRORS", ""), False))

    def is_redis_store(self) -> bool:
        """Check if job snapshots go to Redis instead of the snapshot directory."""
        return bool(self.redis_url)

    def is_juso_available(self) -> bool:
        """Check if the Juso provider can be used."""
        return bool(self.juso_api_key)

    def get_geocoder_config(self) -> dict:
        """Get geocoder settings as a dict (for logging and the health endpoint)."""
        return {
            "provider": self.postal_provider,
            "timeout": self.geocoder_timeout,
            "page_size": self.geocoder_page_size,
            "fallback_query_limit": self.fallback_query_limit,
        }


cfg = Config()
