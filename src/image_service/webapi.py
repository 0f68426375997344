import logging
import os
from urllib.parse import quote

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from image_service.conversion import ConversionRequest, ConversionService, ErrorKind
from image_service.conversion.adapters import CloudConvertGateway
from image_service.settings import ServiceSettings

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Image Conversion Service",
    version=os.getenv("IMAGE_SERVICE_VERSION", "0.1.0"),
    description="Convert uploaded images to another format via CloudConvert.",
)

SETTINGS = ServiceSettings.from_env()
SERVICE: ConversionService | None = None

_STATUS_BY_KIND = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.MISCONFIGURED_PROVIDER: 500,
    ErrorKind.PROVIDER_CONTRACT_VIOLATION: 502,
    ErrorKind.PROVIDER_TASK_FAILED: 502,
    ErrorKind.TRANSPORT_FAILURE: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.CANCELLED: 499,
}


def build_service(settings: ServiceSettings) -> ConversionService:
    gateway = CloudConvertGateway(
        settings.api_key,
        api_base=settings.api_base,
        timeout=settings.http_timeout_sec,
    )
    return ConversionService(
        gateway,
        max_poll_attempts=settings.poll_max_attempts,
        poll_interval=settings.poll_interval_sec,
        backoff_factor=settings.poll_backoff,
        max_poll_interval=settings.poll_max_interval_sec,
    )


def _service() -> ConversionService:
    global SERVICE
    if SERVICE is None:
        SERVICE = build_service(SETTINGS)
    return SERVICE


def _error_status(kind: str, provider_status: int | None) -> int:
    if kind == ErrorKind.PROVIDER_REJECTED:
        if provider_status is not None and 400 <= provider_status < 600:
            return provider_status
        return 502
    return _STATUS_BY_KIND.get(kind, 500)


def _content_disposition(filename: str) -> str:
    # Header values are latin-1; non-ASCII or quoted names use the RFC 5987 form.
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


async def _read_limited(file: UploadFile, max_mb: int) -> bytes:
    chunks: list[bytes] = []
    size = 0
    CHUNK = 1024 * 1024
    max_bytes = max_mb * 1024 * 1024
    while True:
        chunk = await file.read(CHUNK)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(
                status_code=413,
                detail={"code": "payload_too_large", "message": f"upload exceeds {max_mb} MB"},
            )
        chunks.append(chunk)
    return b"".join(chunks)


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.post("/api/convert")
async def convert(
    file: UploadFile | None = File(None),
    target_format: str | None = Form(None, alias="targetFormat"),
) -> Response:
    """Convert an uploaded image to `targetFormat`.

    Accepts multipart/form-data with parts "file" and "targetFormat" and
    returns the converted bytes as an attachment.
    """
    if file is None or not target_format:
        raise HTTPException(
            status_code=400,
            detail={"code": ErrorKind.INVALID_REQUEST, "message": "Missing file or target format."},
        )
    content = await _read_limited(file, SETTINGS.max_upload_mb)
    request = ConversionRequest.create(content, file.filename or "", target_format)
    logger.info(
        "convert %s (%d bytes) -> %s", request.source_filename, len(content), request.target_format
    )

    result = await _service().convert(request)
    if result.error is not None:
        err = result.error
        raise HTTPException(
            status_code=_error_status(err.kind, err.status),
            detail={"code": err.kind, "message": err.message},
        )

    artifact = result.artifact
    assert artifact is not None
    headers = {"Content-Disposition": _content_disposition(artifact.filename)}
    return Response(content=artifact.content, media_type=artifact.content_type, headers=headers)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("image_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
