from dataclasses import dataclass

DEFAULT_SOURCE_FORMAT = "png"

_CONTENT_TYPE_OVERRIDES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "svg": "image/svg+xml",
    "tif": "image/tiff",
    "ico": "image/x-icon",
}


class ErrorKind:
    INVALID_REQUEST = "invalid_request"
    MISCONFIGURED_PROVIDER = "misconfigured_provider"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_CONTRACT_VIOLATION = "provider_contract_violation"
    PROVIDER_TASK_FAILED = "provider_task_failed"
    TIMEOUT = "timeout"
    TRANSPORT_FAILURE = "transport_failure"
    CANCELLED = "cancelled"


class ConversionError(Exception):
    """A classified, terminal failure of one conversion attempt."""

    def __init__(self, kind: str, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"ConversionError(kind={self.kind!r}, message={self.message!r})"


def infer_source_format(filename: str) -> str:
    """Lower-cased extension of `filename`, or the default when it has none."""
    name = filename.rsplit("/", 1)[-1]
    if "." in name:
        ext = name.rsplit(".", 1)[-1].strip().lower()
        if ext:
            return ext
    return DEFAULT_SOURCE_FORMAT


def content_type_for(fmt: str) -> str:
    fmt = fmt.lower()
    return _CONTENT_TYPE_OVERRIDES.get(fmt, f"image/{fmt}")


@dataclass(frozen=True)
class ConversionRequest:
    source_bytes: bytes
    source_filename: str
    target_format: str
    source_format: str = ""

    def __post_init__(self) -> None:
        source_format = (self.source_format or "").strip().lower()
        object.__setattr__(self, "target_format", (self.target_format or "").strip().lower())
        object.__setattr__(
            self, "source_format", source_format or infer_source_format(self.source_filename or "")
        )

    @classmethod
    def create(cls, source_bytes: bytes, source_filename: str, target_format: str) -> "ConversionRequest":
        return cls(source_bytes=source_bytes, source_filename=source_filename, target_format=target_format)


@dataclass(frozen=True)
class ConvertedArtifact:
    content: bytes
    filename: str
    content_type: str
    job_id: str


@dataclass(frozen=True)
class ConversionResult:
    artifact: ConvertedArtifact | None = None
    error: ConversionError | None = None

    @property
    def ok(self) -> bool:
        return self.artifact is not None
