import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

from .interfaces import (
    ExportArtifact,
    ProviderGateway,
    ProviderResponse,
    ProviderTransportError,
    UploadTarget,
)
from .models import (
    ConversionError,
    ConversionRequest,
    ConversionResult,
    ConvertedArtifact,
    ErrorKind,
    content_type_for,
)

logger = logging.getLogger(__name__)

UPLOAD_TASK = "upload-in"
CONVERT_TASK = "convert-file"
EXPORT_TASK = "export-out"

DEFAULT_MAX_POLL_ATTEMPTS = 20
DEFAULT_POLL_INTERVAL_SEC = 1.0

def _is_transient_poll_status(status: int) -> bool:
    """Poll responses with 429 or any 5xx count as "still in progress"."""
    return status == 429 or 500 <= status < 600


class JobPhase:
    CREATED = "created"
    UPLOADED = "uploaded"
    POLLING = "polling"
    FINISHED = "finished"
    FAILED = "failed"


_PHASE_ORDER = {
    JobPhase.CREATED: 0,
    JobPhase.UPLOADED: 1,
    JobPhase.POLLING: 2,
    JobPhase.FINISHED: 3,
    JobPhase.FAILED: 3,
}
_TERMINAL_PHASES = {JobPhase.FINISHED, JobPhase.FAILED}


@dataclass
class JobRecord:
    """A provider job as tracked during one `convert` call."""

    id: str
    phase: str = JobPhase.CREATED
    poll_attempts: int = 0
    export: ExportArtifact | None = None
    error: ConversionError | None = None

    @property
    def terminal(self) -> bool:
        return self.phase in _TERMINAL_PHASES

    def advance(self, phase: str) -> None:
        if self.terminal or _PHASE_ORDER[phase] <= _PHASE_ORDER[self.phase]:
            raise RuntimeError(f"job {self.id}: illegal transition {self.phase} -> {phase}")
        logger.info("job %s: %s -> %s", self.id, self.phase, phase)
        self.phase = phase

    def fail(self, error: ConversionError) -> None:
        self.error = error
        self.advance(JobPhase.FAILED)


def build_job_definition(request: ConversionRequest) -> dict[str, object]:
    """JSON body for `POST /jobs`: upload, convert and export tasks chained by name."""
    return {
        "tasks": {
            UPLOAD_TASK: {"operation": "import/upload"},
            CONVERT_TASK: {
                "operation": "convert",
                "input": UPLOAD_TASK,
                "input_format": request.source_format,
                "output_format": request.target_format,
            },
            EXPORT_TASK: {"operation": "export/url", "input": CONVERT_TASK},
        }
    }


def _provider_message(payload: object) -> str | None:
    if isinstance(payload, dict):
        msg = payload.get("message")
        if isinstance(msg, str) and msg:
            return msg
    return None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for k, v in headers.items():
            if k.lower() == lowered:
                value = v
                break
    return value or None


def _job_data(payload: object) -> dict:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise ConversionError(
            ErrorKind.PROVIDER_CONTRACT_VIOLATION, "Provider response is missing job data."
        )
    return payload["data"]


def _find_task(data: dict, name: str) -> dict | None:
    tasks = data.get("tasks") or []
    for task in tasks:
        if isinstance(task, dict) and task.get("name") == name:
            return task
    return None


def _form_value(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _upload_target(data: dict) -> UploadTarget:
    task = _find_task(data, UPLOAD_TASK) or {}
    form = (task.get("result") or {}).get("form") or {}
    url = form.get("url")
    params = form.get("parameters")
    if not url or not isinstance(params, dict):
        raise ConversionError(
            ErrorKind.PROVIDER_CONTRACT_VIOLATION, "Failed to get upload URL."
        )
    return UploadTarget(
        url=str(url),
        form_fields=tuple((str(k), _form_value(v)) for k, v in params.items()),
    )


def _export_artifact(task: dict) -> ExportArtifact:
    files = (task.get("result") or {}).get("files") or []
    first = files[0] if files and isinstance(files[0], dict) else {}
    url = first.get("url")
    filename = first.get("filename")
    if not url or not filename:
        raise ConversionError(
            ErrorKind.PROVIDER_CONTRACT_VIOLATION, "Failed to get converted file URL."
        )
    size = first.get("size")
    return ExportArtifact(url=str(url), filename=str(filename), size=int(size) if size is not None else None)


class ConversionService:
    """Drives one remote conversion job per call: create, upload, poll, download.

    The service is framework-agnostic and holds no per-job state between
    calls; every `convert` creates a fresh provider job. Gateway calls are
    blocking and run in worker threads.

    Polling uses a fixed interval by default. A `backoff_factor` above 1.0
    grows the interval per attempt up to `max_poll_interval`.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        *,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
        backoff_factor: float = 1.0,
        max_poll_interval: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        if backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")
        self._gateway = gateway
        self._max_poll_attempts = max_poll_attempts
        self._poll_interval = poll_interval
        self._backoff_factor = backoff_factor
        self._max_poll_interval = max_poll_interval
        self._sleep = sleep

    async def convert(
        self, request: ConversionRequest, *, cancel: asyncio.Event | None = None
    ) -> ConversionResult:
        """Run the full conversion and return either the artifact or a classified error."""
        job: JobRecord | None = None
        try:
            self._validate(request)
            self._check_cancel(cancel)
            job, target = await self._create_job(request)
            self._check_cancel(cancel)
            await self._upload(job, target, request)
            export = await self._poll(job, cancel)
            artifact = await self._retrieve(job, export, request)
        except ConversionError as e:
            return self._failed(job, e)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            # Malformed provider payloads surface here.
            logger.exception("unexpected provider response")
            err = ConversionError(
                ErrorKind.PROVIDER_CONTRACT_VIOLATION, f"Unexpected provider response: {e}"
            )
            return self._failed(job, err)
        return ConversionResult(artifact=artifact)

    def _failed(self, job: JobRecord | None, error: ConversionError) -> ConversionResult:
        if job is not None and not job.terminal:
            job.fail(error)
        logger.warning(
            "conversion failed (job=%s, kind=%s): %s",
            job.id if job else "-",
            error.kind,
            error.message,
        )
        return ConversionResult(error=error)

    def _validate(self, request: ConversionRequest) -> None:
        if not request.source_bytes or not request.source_filename or not request.target_format:
            raise ConversionError(ErrorKind.INVALID_REQUEST, "Missing file or target format.")
        if not self._gateway.is_configured():
            raise ConversionError(
                ErrorKind.MISCONFIGURED_PROVIDER, "CloudConvert API key is not configured."
            )

    @staticmethod
    def _check_cancel(cancel: asyncio.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise ConversionError(ErrorKind.CANCELLED, "Conversion was cancelled.")

    async def _call(self, fn: Callable[..., ProviderResponse], *args: object) -> ProviderResponse:
        try:
            return await asyncio.to_thread(fn, *args)
        except ProviderTransportError as e:
            raise ConversionError(ErrorKind.TRANSPORT_FAILURE, str(e)) from e

    async def _create_job(self, request: ConversionRequest) -> tuple[JobRecord, UploadTarget]:
        resp = await self._call(self._gateway.create_job, build_job_definition(request))
        if not resp.ok:
            raise ConversionError(
                ErrorKind.PROVIDER_REJECTED,
                _provider_message(resp.payload) or "Failed to create job.",
                status=resp.status,
            )
        data = _job_data(resp.payload)
        if not data.get("id"):
            raise ConversionError(
                ErrorKind.PROVIDER_CONTRACT_VIOLATION, "Provider response is missing the job id."
            )
        job = JobRecord(id=str(data["id"]))
        logger.info(
            "job %s: created for %s (%s -> %s)",
            job.id,
            request.source_filename,
            request.source_format,
            request.target_format,
        )
        try:
            target = _upload_target(data)
        except ConversionError as e:
            job.fail(e)
            raise
        return job, target

    async def _upload(self, job: JobRecord, target: UploadTarget, request: ConversionRequest) -> None:
        resp = await self._call(
            self._gateway.upload_file, target, request.source_filename, request.source_bytes
        )
        if not resp.ok:
            raise ConversionError(
                ErrorKind.TRANSPORT_FAILURE,
                f"Upload failed with HTTP {resp.status}.",
                status=resp.status,
            )
        job.advance(JobPhase.UPLOADED)

    async def _poll(self, job: JobRecord, cancel: asyncio.Event | None) -> ExportArtifact:
        job.advance(JobPhase.POLLING)
        delay = self._poll_interval
        for attempt in range(1, self._max_poll_attempts + 1):
            self._check_cancel(cancel)
            job.poll_attempts = attempt
            resp = await self._call(self._gateway.get_job, job.id)
            if resp.ok:
                task = _find_task(_job_data(resp.payload), EXPORT_TASK) or {}
                status = task.get("status")
                if status == "finished":
                    job.export = _export_artifact(task)
                    return job.export
                if status == "error":
                    raise ConversionError(
                        ErrorKind.PROVIDER_TASK_FAILED,
                        _provider_message(task) or "CloudConvert conversion error.",
                    )
                logger.debug("job %s: attempt %d, export status %s", job.id, attempt, status)
            elif not _is_transient_poll_status(resp.status):
                raise ConversionError(
                    ErrorKind.PROVIDER_REJECTED,
                    _provider_message(resp.payload) or f"Job status check failed with HTTP {resp.status}.",
                    status=resp.status,
                )
            if attempt < self._max_poll_attempts:
                await self._pause(delay, cancel)
                delay *= self._backoff_factor
                if self._max_poll_interval is not None:
                    delay = min(delay, max(self._max_poll_interval, self._poll_interval))
        raise ConversionError(
            ErrorKind.TIMEOUT,
            f"Timed out waiting for CloudConvert after {self._max_poll_attempts} attempts.",
        )

    async def _pause(self, delay: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (sleeper, waiter):
                t.cancel()
        self._check_cancel(cancel)

    async def _retrieve(
        self, job: JobRecord, export: ExportArtifact, request: ConversionRequest
    ) -> ConvertedArtifact:
        resp = await self._call(self._gateway.download, export.url)
        if not resp.ok:
            raise ConversionError(
                ErrorKind.PROVIDER_REJECTED,
                f"Failed to download converted file (HTTP {resp.status}).",
                status=resp.status,
            )
        content = resp.content
        if export.size is not None and len(content) != export.size:
            raise ConversionError(
                ErrorKind.PROVIDER_CONTRACT_VIOLATION,
                f"Downloaded {len(content)} bytes, provider declared {export.size}.",
            )
        job.advance(JobPhase.FINISHED)
        return ConvertedArtifact(
            content=content,
            filename=export.filename,
            content_type=_header(resp.headers, "Content-Type") or content_type_for(request.target_format),
            job_id=job.id,
        )
