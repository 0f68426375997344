"""Shared fixtures: an in-memory conversion provider and a recording sleep."""

from __future__ import annotations

from typing import Any

import pytest

from image_service.conversion import ProviderResponse, UploadTarget

UPLOAD_URL = "https://upload.example/tasks/abc"


def job_payload(job_id: str, tasks: list[dict[str, Any]]) -> dict[str, Any]:
    return {"data": {"id": job_id, "tasks": tasks}}


def upload_task(url: str | None = UPLOAD_URL, parameters: dict[str, Any] | None = None) -> dict[str, Any]:
    form: dict[str, Any] = {}
    if url is not None:
        form["url"] = url
    form["parameters"] = {"expires": "1700000000", "signature": "s1g"} if parameters is None else parameters
    return {"name": "upload-in", "status": "waiting", "result": {"form": form}}


def export_task(status: str, files: list[dict[str, Any]] | None = None, message: str | None = None) -> dict[str, Any]:
    task: dict[str, Any] = {"name": "export-out", "status": status}
    if files is not None:
        task["result"] = {"files": files}
    if message is not None:
        task["message"] = message
    return task


def poll_response(job_id: str, status: str, **kwargs: Any) -> ProviderResponse:
    return ProviderResponse(status=200, payload=job_payload(job_id, [export_task(status, **kwargs)]))


class FakeGateway:
    """Scriptable provider that records every call."""

    def __init__(self, *, configured: bool = True) -> None:
        self.configured = configured
        self.calls: list[tuple[str, Any]] = []
        self.create_response: ProviderResponse | None = None
        self.upload_response = ProviderResponse(status=201)
        self.poll_responses: list[ProviderResponse] = []
        self.download_response = ProviderResponse(
            status=200, content=b"converted-bytes", headers={"Content-Type": "image/webp"}
        )
        self.job_ids: list[str] = []
        self.uploads: list[tuple[UploadTarget, str, bytes]] = []
        self.errors: dict[str, Exception] = {}

    def _record(self, name: str, arg: Any) -> None:
        self.calls.append((name, arg))
        if name in self.errors:
            raise self.errors[name]

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    def is_configured(self) -> bool:
        return self.configured

    def create_job(self, job_definition: dict[str, object]) -> ProviderResponse:
        self._record("create_job", job_definition)
        if self.create_response is not None:
            return self.create_response
        job_id = f"J{len(self.job_ids) + 1}"
        self.job_ids.append(job_id)
        return ProviderResponse(status=201, payload=job_payload(job_id, [upload_task()]))

    def upload_file(self, target: UploadTarget, filename: str, content: bytes) -> ProviderResponse:
        self._record("upload_file", target.url)
        self.uploads.append((target, filename, content))
        return self.upload_response

    def get_job(self, job_id: str) -> ProviderResponse:
        self._record("get_job", job_id)
        if not self.poll_responses:
            return poll_response(job_id, "processing")
        if len(self.poll_responses) == 1:
            return self.poll_responses[0]
        return self.poll_responses.pop(0)

    def download(self, url: str) -> ProviderResponse:
        self._record("download", url)
        return self.download_response


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()
