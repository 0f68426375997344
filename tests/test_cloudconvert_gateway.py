from unittest.mock import MagicMock

import pytest
import requests

from image_service.conversion import ProviderTransportError, UploadTarget
from image_service.conversion.adapters import CloudConvertGateway

API = "https://api.test/v2"


def _response(status: int = 200, json_body=None, content: bytes = b"", headers=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if json_body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = json_body
    resp.content = content
    resp.headers = headers or {}
    return resp


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def gw(session) -> CloudConvertGateway:
    return CloudConvertGateway("secret-key", api_base=API + "/", timeout=12.0, session=session)


def test_is_configured_requires_key(session):
    assert CloudConvertGateway("k", session=session).is_configured()
    assert not CloudConvertGateway(None, session=session).is_configured()
    assert not CloudConvertGateway("", session=session).is_configured()


def test_create_job_posts_json_with_bearer_auth(gw, session):
    session.request.return_value = _response(201, {"data": {"id": "J1"}})
    definition = {"tasks": {"upload-in": {"operation": "import/upload"}}}

    resp = gw.create_job(definition)

    session.request.assert_called_once_with(
        "POST",
        f"{API}/jobs",
        timeout=12.0,
        json=definition,
        headers={"Authorization": "Bearer secret-key"},
    )
    assert resp.status == 201
    assert resp.payload == {"data": {"id": "J1"}}


def test_get_job_includes_tasks(gw, session):
    session.request.return_value = _response(200, {"data": {"id": "J1", "tasks": []}})

    gw.get_job("J1")

    session.request.assert_called_once_with(
        "GET",
        f"{API}/jobs/J1",
        timeout=12.0,
        params={"include": "tasks"},
        headers={"Authorization": "Bearer secret-key"},
    )


def test_upload_sends_fields_and_file_without_auth(gw, session):
    session.request.return_value = _response(201)
    target = UploadTarget(url="https://storage.test/up", form_fields=(("b", "2"), ("a", "1")))

    resp = gw.upload_file(target, "photo.png", b"raw")

    args, kwargs = session.request.call_args
    assert args == ("POST", "https://storage.test/up")
    assert kwargs["data"] == [("b", "2"), ("a", "1")]
    assert kwargs["files"] == {"file": ("photo.png", b"raw")}
    assert "headers" not in kwargs
    assert resp.ok
    assert resp.payload is None


def test_upload_body_keeps_field_order_with_file_last():
    target = UploadTarget(url="https://storage.test/up", form_fields=(("zeta", "1"), ("alpha", "2")))
    prepared = requests.Request(
        "POST", target.url, data=list(target.form_fields), files={"file": ("photo.png", b"raw")}
    ).prepare()

    body = prepared.body
    assert body.index(b'name="zeta"') < body.index(b'name="alpha"') < body.index(b'name="file"')
    assert b'filename="photo.png"' in body


def test_download_returns_bytes_and_headers(gw, session):
    session.request.return_value = _response(
        200, content=b"\x00webp", headers={"Content-Type": "image/webp"}
    )

    resp = gw.download("https://storage.test/out.webp")

    session.request.assert_called_once_with("GET", "https://storage.test/out.webp", timeout=12.0)
    assert resp.content == b"\x00webp"
    assert resp.headers["Content-Type"] == "image/webp"


def test_non_json_error_body_yields_empty_payload(gw, session):
    session.request.return_value = _response(502)

    resp = gw.create_job({})

    assert resp.status == 502
    assert resp.payload is None
    assert not resp.ok


def test_transport_errors_are_wrapped(gw, session):
    session.request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(ProviderTransportError) as exc:
        gw.get_job("J1")

    assert "refused" in str(exc.value)
    assert "?" not in str(exc.value)
