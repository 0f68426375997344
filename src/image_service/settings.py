import os
from dataclasses import dataclass

from image_service.conversion.adapters import CLOUDCONVERT_API_BASE


@dataclass(frozen=True)
class ServiceSettings:
    api_key: str | None
    api_base: str = CLOUDCONVERT_API_BASE
    poll_max_attempts: int = 20
    poll_interval_sec: float = 1.0
    poll_backoff: float = 1.0
    poll_max_interval_sec: float = 10.0
    http_timeout_sec: float = 60.0
    max_upload_mb: int = 25

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            api_key=os.getenv("CLOUDCONVERT_API_KEY") or None,
            api_base=os.getenv("CLOUDCONVERT_API_BASE", CLOUDCONVERT_API_BASE),
            poll_max_attempts=int(os.getenv("CONVERT_POLL_MAX_ATTEMPTS", "20")),
            poll_interval_sec=int(os.getenv("CONVERT_POLL_INTERVAL_MS", "1000")) / 1000,
            poll_backoff=float(os.getenv("CONVERT_POLL_BACKOFF", "1.0")),
            poll_max_interval_sec=int(os.getenv("CONVERT_POLL_MAX_INTERVAL_MS", "10000")) / 1000,
            http_timeout_sec=float(os.getenv("HTTP_TIMEOUT_SEC", "60")),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "25")),
        )
