from unittest.mock import Mock

import pytest
import requests

from account_api.core.exceptions import UploadError
from account_api.services.media_service import MediaService


def _service(settings, session):
    configured = settings.model_copy(update={
        "CLOUDINARY_CLOUD_NAME": "demo",
        "CLOUDINARY_API_KEY": "key",
        "CLOUDINARY_API_SECRET": "secret",
        "MEDIA_TIMEOUT_SECONDS": 5.0,
    })
    return MediaService(configured, session=session)


@pytest.fixture
def staged(tmp_path):
    path = tmp_path / "avatar.png"
    path.write_bytes(b"fake image")
    return path


def test_upload_returns_asset_and_removes_staged_file(settings, staged):
    session = Mock()
    session.post.return_value = Mock(
        ok=True,
        status_code=200,
        json=Mock(return_value={"secure_url": "https://cdn.test/a.png", "public_id": "a"}),
    )
    service = _service(settings, session)

    asset = service.upload(str(staged))

    assert asset.url == "https://cdn.test/a.png"
    assert asset.public_id == "a"
    assert not staged.exists()

    url = session.post.call_args.args[0]
    kwargs = session.post.call_args.kwargs
    assert url == "https://api.cloudinary.com/v1_1/demo/auto/upload"
    assert kwargs["timeout"] == 5.0
    assert kwargs["data"]["api_key"] == "key"
    assert "signature" in kwargs["data"]


def test_upload_timeout_is_upload_error(settings, staged):
    session = Mock()
    session.post.side_effect = requests.exceptions.Timeout()
    service = _service(settings, session)

    with pytest.raises(UploadError):
        service.upload(str(staged))
    assert not staged.exists()


def test_upload_rejected_by_service(settings, staged):
    session = Mock()
    session.post.return_value = Mock(ok=False, status_code=401)
    with pytest.raises(UploadError):
        _service(settings, session).upload(str(staged))


def test_upload_without_url(settings, staged):
    session = Mock()
    session.post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={}))
    with pytest.raises(UploadError):
        _service(settings, session).upload(str(staged))


def test_upload_requires_path(settings):
    with pytest.raises(UploadError):
        _service(settings, Mock()).upload("")


def test_delete(settings):
    session = Mock()
    session.post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={"result": "ok"}))
    service = _service(settings, session)

    assert service.delete("a") is True
    assert session.post.call_args.kwargs["data"]["public_id"] == "a"


def test_delete_failure_returns_false(settings):
    session = Mock()
    session.post.side_effect = requests.exceptions.ConnectionError()
    assert _service(settings, session).delete("a") is False

    session.post.side_effect = None
    session.post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={"result": "not found"}))
    assert _service(settings, session).delete("a") is False


def test_signature_ignores_key_and_file(settings):
    service = _service(settings, Mock())
    signed = service._signed({"public_id": "a"})
    expected = service._sign({"public_id": "a", "timestamp": signed["timestamp"]})
    assert signed["signature"] == expected
