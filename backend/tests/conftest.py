"""Shared fixtures: in-memory database, settings, fake media service."""

from typing import Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from account_api.config import Settings
from account_api.core.database import Database
from account_api.core.exceptions import UploadError
from account_api.main import create_app
from account_api.services.media_service import UploadedAsset
from account_api.services.token_service import TokenService
from account_api.services.user_service import UserService


class FakeMediaService:
    """Records uploads and deletes instead of calling Cloudinary"""

    def __init__(self):
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.fail_on_upload = None
        self._counter = 0

    def upload(self, local_path: str) -> UploadedAsset:
        if self.fail_on_upload is not None and len(self.uploads) + 1 >= self.fail_on_upload:
            raise UploadError()
        self._counter += 1
        self.uploads.append(local_path)
        public_id = f"asset-{self._counter}"
        return UploadedAsset(url=f"https://media.test/{public_id}.png", public_id=public_id)

    def delete(self, public_id: str) -> bool:
        self.deleted.append(public_id)
        return True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ACCESS_TOKEN_SECRET="test-access-secret",
        REFRESH_TOKEN_SECRET="test-refresh-secret",
        LOG_FILE=str(tmp_path / "logs" / "app.log"),
        TEMP_DIR=str(tmp_path / "temp"),
    )


@pytest.fixture
def media() -> FakeMediaService:
    return FakeMediaService()


@pytest.fixture
def token_service(settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def user_service(token_service, media) -> UserService:
    return UserService(token_service, media)


@pytest.fixture
def db(settings) -> Generator[Session, None, None]:
    database = Database(settings)
    database.init_db()
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        database.dispose()


@pytest.fixture
def client(settings, media) -> Generator[TestClient, None, None]:
    app = create_app(settings, media_service=media)
    with TestClient(app) as test_client:
        yield test_client
