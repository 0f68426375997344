import requests

from .interfaces import ProviderGateway, ProviderResponse, ProviderTransportError, UploadTarget

CLOUDCONVERT_API_BASE = "https://api.cloudconvert.com/v2"


def _json_or_none(resp: requests.Response) -> object:
    try:
        return resp.json()
    except ValueError:
        return None


class CloudConvertGateway(ProviderGateway):
    """CloudConvert v2 jobs API over a `requests.Session`.

    The bearer token is only sent to the API itself. Upload and export URLs
    are pre-signed and may point at other hosts.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        api_base: str = CLOUDCONVERT_API_BASE,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key or ""
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _send(self, method: str, url: str, *, decode_json: bool = True, **kwargs) -> ProviderResponse:
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderTransportError(f"{method} {url.split('?', 1)[0]} failed: {e}") from e
        return ProviderResponse(
            status=resp.status_code,
            payload=_json_or_none(resp) if decode_json else None,
            content=b"" if decode_json else resp.content,
            headers=resp.headers,
        )

    def create_job(self, job_definition: dict[str, object]) -> ProviderResponse:
        # Job definitions must be JSON; multipart is reserved for file uploads.
        return self._send(
            "POST",
            f"{self._api_base}/jobs",
            json=job_definition,
            headers=self._auth_headers(),
        )

    def upload_file(self, target: UploadTarget, filename: str, content: bytes) -> ProviderResponse:
        # requests places `data` fields ahead of `files`, so the file part comes last.
        return self._send(
            "POST",
            target.url,
            decode_json=False,
            data=list(target.form_fields),
            files={"file": (filename, content)},
        )

    def get_job(self, job_id: str) -> ProviderResponse:
        return self._send(
            "GET",
            f"{self._api_base}/jobs/{job_id}",
            params={"include": "tasks"},
            headers=self._auth_headers(),
        )

    def download(self, url: str) -> ProviderResponse:
        return self._send("GET", url, decode_json=False)
