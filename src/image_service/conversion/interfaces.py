from dataclasses import dataclass, field
from typing import Mapping, Protocol


@dataclass(frozen=True)
class ProviderResponse:
    status: int
    payload: object = None
    content: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class UploadTarget:
    url: str
    # Provider-issued fields, forwarded verbatim and in order.
    form_fields: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class ExportArtifact:
    url: str
    filename: str
    size: int | None = None


class ProviderTransportError(Exception):
    """Raised by gateways when a network call could not complete."""


class ProviderGateway(Protocol):
    """Blocking access to a job-based conversion provider.

    Implementations raise ProviderTransportError on transport failures and
    otherwise return the provider's response as-is; classification happens
    in the service.
    """

    def is_configured(self) -> bool:
        ...

    def create_job(self, job_definition: dict[str, object]) -> ProviderResponse:
        ...

    def upload_file(
        self, target: UploadTarget, filename: str, content: bytes
    ) -> ProviderResponse:
        ...

    def get_job(self, job_id: str) -> ProviderResponse:
        ...

    def download(self, url: str) -> ProviderResponse:
        ...
