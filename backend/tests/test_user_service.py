import pytest
from sqlalchemy.exc import SQLAlchemyError

from account_api.core.exceptions import (
    AuthenticationError,
    CreationError,
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ServerError,
    UploadError,
    ValidationError,
)
from account_api.core.security import verify_password
from account_api.models.user import User
from account_api.repositories.user_repository import UserRepository
from account_api.schemas.user import (
    AccountUpdateRequest,
    ChangePasswordRequest,
    RegistrationRequest,
    UserLogin,
)


def _registration(**overrides):
    fields = dict(
        fullname="Alice Liddell",
        email="a@x.com",
        username="alice",
        password="p1",
        avatar_path="/tmp/avatar.png",
    )
    fields.update(overrides)
    return RegistrationRequest(**fields)


def _register_and_login(user_service, db):
    user_service.register(db, _registration())
    return user_service.login(db, UserLogin(email="a@x.com", password="p1"))


class TestRegister:
    def test_register_sanitizes_and_normalizes(self, user_service, db, media):
        created = user_service.register(db, _registration(username="  Alice  "))

        dumped = created.model_dump()
        assert "password_hash" not in dumped
        assert "refresh_token" not in dumped
        assert created.username == "alice"
        assert created.avatar == "https://media.test/asset-1.png"
        assert created.cover_image == ""
        assert media.uploads == ["/tmp/avatar.png"]

        stored = UserRepository(db).get_by_username("alice")
        assert stored.password_hash != "p1"
        assert verify_password("p1", stored.password_hash)
        assert stored.refresh_token is None

    def test_register_with_cover_image(self, user_service, db, media):
        created = user_service.register(db, _registration(cover_image_path="/tmp/cover.png"))
        assert created.cover_image == "https://media.test/asset-2.png"
        assert len(media.uploads) == 2

    @pytest.mark.parametrize("field", ["fullname", "email", "username", "password"])
    def test_blank_field_rejected(self, user_service, db, media, field):
        with pytest.raises(ValidationError):
            user_service.register(db, _registration(**{field: "   "}))
        assert media.uploads == []

    def test_missing_avatar_rejected_without_upload(self, user_service, db, media):
        with pytest.raises(ValidationError):
            user_service.register(db, _registration(avatar_path=None))
        assert media.uploads == []
        assert db.query(User).count() == 0

    @pytest.mark.parametrize("overrides", [
        {"username": "someone-else"},
        {"email": "other@x.com"},
        {"username": "ALICE", "email": "other@x.com"},
    ])
    def test_duplicate_rejected(self, user_service, db, overrides):
        user_service.register(db, _registration())
        with pytest.raises(ResourceAlreadyExistsError):
            user_service.register(db, _registration(**overrides))
        assert db.query(User).count() == 1

    def test_avatar_upload_failure(self, user_service, db, media):
        media.fail_on_upload = 1
        with pytest.raises(UploadError):
            user_service.register(db, _registration())
        assert db.query(User).count() == 0

    def test_cover_upload_failure_discards_avatar(self, user_service, db, media):
        media.fail_on_upload = 2
        with pytest.raises(UploadError):
            user_service.register(db, _registration(cover_image_path="/tmp/cover.png"))
        assert media.deleted == ["asset-1"]
        assert db.query(User).count() == 0

    def test_creation_failure_deletes_uploads(self, user_service, db, media, monkeypatch):
        def failing_create(self, **fields):
            assert media.deleted == []
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(UserRepository, "create", failing_create)

        with pytest.raises(CreationError):
            user_service.register(db, _registration(cover_image_path="/tmp/cover.png"))
        assert media.deleted == ["asset-1", "asset-2"]

    def test_password_too_long_rejected_before_upload(self, user_service, db, media):
        with pytest.raises(ValidationError):
            user_service.register(
                db, _registration(password="x" * 100, cover_image_path="/tmp/cover.png")
            )
        assert media.uploads == []
        assert media.deleted == []
        assert db.query(User).count() == 0

    def test_non_store_creation_failure_deletes_uploads(self, user_service, db, media, monkeypatch):
        def failing_create(self, **fields):
            raise ValueError("unexpected")

        monkeypatch.setattr(UserRepository, "create", failing_create)

        with pytest.raises(CreationError):
            user_service.register(db, _registration(cover_image_path="/tmp/cover.png"))
        assert media.deleted == ["asset-1", "asset-2"]

    def test_cleanup_failure_does_not_mask_creation_error(self, user_service, db, media, monkeypatch):
        def failing_create(self, **fields):
            raise SQLAlchemyError("disk full")

        def failing_delete(public_id):
            raise RuntimeError("media service down")

        monkeypatch.setattr(UserRepository, "create", failing_create)
        monkeypatch.setattr(media, "delete", failing_delete)

        with pytest.raises(CreationError):
            user_service.register(db, _registration())

    def test_uniqueness_race_reported_as_conflict(self, user_service, db, media, monkeypatch):
        user_service.register(db, _registration())
        monkeypatch.setattr(UserRepository, "exists_with", lambda self, **kwargs: False)

        with pytest.raises(ResourceAlreadyExistsError):
            user_service.register(db, _registration(username="alice2"))
        assert media.deleted == ["asset-2"]
        assert db.query(User).count() == 1


class TestLogin:
    def test_login_stores_issued_refresh_token(self, user_service, db, token_service):
        tokens = _register_and_login(user_service, db)

        stored = UserRepository(db).get_by_email("a@x.com")
        assert stored.refresh_token == tokens.refresh_token
        assert token_service.verify_access_token(tokens.access_token) == stored.id
        assert "password_hash" not in tokens.user.model_dump()

    def test_login_by_username_is_case_insensitive(self, user_service, db):
        user_service.register(db, _registration())
        tokens = user_service.login(db, UserLogin(username="Alice", password="p1"))
        assert tokens.user.username == "alice"

    def test_missing_identifier(self, user_service, db):
        with pytest.raises(ValidationError):
            user_service.login(db, UserLogin(password="p1"))

    def test_unknown_user(self, user_service, db):
        with pytest.raises(ResourceNotFoundError):
            user_service.login(db, UserLogin(email="nobody@x.com", password="p1"))

    def test_wrong_password(self, user_service, db):
        user_service.register(db, _registration())
        with pytest.raises(InvalidCredentialsError):
            user_service.login(db, UserLogin(email="a@x.com", password="wrong"))
        assert UserRepository(db).get_by_email("a@x.com").refresh_token is None

    def test_overlong_password_is_wrong_password(self, user_service, db):
        user_service.register(db, _registration())
        with pytest.raises(InvalidCredentialsError):
            user_service.login(db, UserLogin(email="a@x.com", password="y" * 100))


class TestRefresh:
    def test_refresh_rotates(self, user_service, db):
        first = _register_and_login(user_service, db)
        second = user_service.refresh_access_token(db, first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert UserRepository(db).get_by_email("a@x.com").refresh_token == second.refresh_token

        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, first.refresh_token)

    def test_valid_but_superseded_token_rejected(self, user_service, db):
        first = _register_and_login(user_service, db)
        user_service.login(db, UserLogin(email="a@x.com", password="p1"))

        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, first.refresh_token)

    def test_missing_token(self, user_service, db):
        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, None)

    def test_invalid_token(self, user_service, db):
        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, "garbage")

    def test_unknown_subject(self, user_service, db, token_service):
        ghost = User(id=999, username="ghost", email="g@x.com", fullname="Ghost")
        pair = token_service.issue_token_pair(ghost)
        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, pair.refresh_token)

    def test_unexpected_failure_reported_as_server_error(self, user_service, db, monkeypatch):
        tokens = _register_and_login(user_service, db)

        def broken(self, user_id):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(UserRepository, "get_by_id", broken)
        with pytest.raises(ServerError):
            user_service.refresh_access_token(db, tokens.refresh_token)

    def test_logout_revokes_refresh_token(self, user_service, db):
        tokens = _register_and_login(user_service, db)
        user = UserRepository(db).get_by_email("a@x.com")

        user_service.logout(db, user.id)

        assert UserRepository(db).get_by_email("a@x.com").refresh_token is None
        with pytest.raises(AuthenticationError):
            user_service.refresh_access_token(db, tokens.refresh_token)

    def test_logout_is_idempotent(self, user_service, db):
        _register_and_login(user_service, db)
        user = UserRepository(db).get_by_email("a@x.com")
        user_service.logout(db, user.id)
        user_service.logout(db, user.id)
        user_service.logout(db, 12345)


class TestProfile:
    def test_change_password_wrong_old_password(self, user_service, db):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")
        before = user.password_hash

        with pytest.raises(InvalidCredentialsError):
            user_service.change_password(
                db, user, ChangePasswordRequest(old_password="nope", new_password="p2")
            )
        assert UserRepository(db).get_by_username("alice").password_hash == before

    def test_change_password_overlong_passwords(self, user_service, db):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")
        before = user.password_hash

        with pytest.raises(InvalidCredentialsError):
            user_service.change_password(
                db, user, ChangePasswordRequest(old_password="y" * 100, new_password="p2")
            )
        with pytest.raises(ValidationError):
            user_service.change_password(
                db, user, ChangePasswordRequest(old_password="p1", new_password="z" * 100)
            )
        assert UserRepository(db).get_by_username("alice").password_hash == before

    def test_change_password_keeps_session(self, user_service, db):
        tokens = _register_and_login(user_service, db)
        user = UserRepository(db).get_by_username("alice")

        user_service.change_password(
            db, user, ChangePasswordRequest(old_password="p1", new_password="p2")
        )

        refreshed = user_service.refresh_access_token(db, tokens.refresh_token)
        assert refreshed.user.username == "alice"

        user_service.login(db, UserLogin(email="a@x.com", password="p2"))
        with pytest.raises(InvalidCredentialsError):
            user_service.login(db, UserLogin(email="a@x.com", password="p1"))

    def test_update_account_details(self, user_service, db):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")

        updated = user_service.update_account_details(
            db, user, AccountUpdateRequest(fullname="Alice L.", email="New@X.com")
        )
        assert updated.fullname == "Alice L."
        assert updated.email == "new@x.com"

    def test_update_account_details_email_taken(self, user_service, db):
        user_service.register(db, _registration())
        user_service.register(db, _registration(username="bob", email="b@x.com"))
        bob = UserRepository(db).get_by_username("bob")

        with pytest.raises(ResourceAlreadyExistsError):
            user_service.update_account_details(
                db, bob, AccountUpdateRequest(fullname="Bob", email="a@x.com")
            )

    def test_update_account_details_requires_fields(self, user_service, db):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")
        with pytest.raises(ValidationError):
            user_service.update_account_details(db, user, AccountUpdateRequest(fullname="Alice"))

    def test_update_avatar_and_cover(self, user_service, db):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")

        assert user_service.update_avatar(db, user, "/tmp/new.png").avatar == "https://media.test/asset-2.png"
        assert user_service.update_cover_image(db, user, "/tmp/c.png").cover_image == "https://media.test/asset-3.png"

    def test_update_avatar_requires_file(self, user_service, db, media):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")
        with pytest.raises(ValidationError):
            user_service.update_avatar(db, user, None)
        assert len(media.uploads) == 1

    @pytest.mark.parametrize("method, field", [
        ("update_avatar", "avatar"),
        ("update_cover_image", "cover_image"),
    ])
    def test_image_upload_failure_keeps_stored_url(self, user_service, db, media, method, field):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")
        before = getattr(user, field)

        media.fail_on_upload = 2
        with pytest.raises(UploadError):
            getattr(user_service, method)(db, user, "/tmp/new.png")

        assert media.deleted == []
        assert getattr(UserRepository(db).get_by_username("alice"), field) == before

    def test_image_store_failure_deletes_new_asset(self, user_service, db, media, monkeypatch):
        user_service.register(db, _registration())
        user = UserRepository(db).get_by_username("alice")

        def failing_commit():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(SQLAlchemyError):
            user_service.update_avatar(db, user, "/tmp/new.png")
        monkeypatch.undo()

        assert media.deleted == ["asset-2"]
        assert UserRepository(db).get_by_username("alice").avatar == "https://media.test/asset-1.png"


class TestTokenStore:
    def _failing_commit(self):
        raise SQLAlchemyError("connection lost")

    def test_set_refresh_token_rolls_back_on_commit_failure(self, user_service, db, monkeypatch):
        user_service.register(db, _registration())
        repo = UserRepository(db)
        user_id = repo.get_by_username("alice").id

        monkeypatch.setattr(db, "commit", self._failing_commit)
        with pytest.raises(SQLAlchemyError):
            repo.set_refresh_token(user_id, "token-a")
        monkeypatch.undo()

        assert repo.get_by_id(user_id).refresh_token is None
        assert repo.set_refresh_token(user_id, "token-b") is True
        assert repo.get_by_id(user_id).refresh_token == "token-b"

    def test_replace_refresh_token_rolls_back_on_commit_failure(self, user_service, db, monkeypatch):
        tokens = _register_and_login(user_service, db)
        repo = UserRepository(db)
        user_id = repo.get_by_username("alice").id

        monkeypatch.setattr(db, "commit", self._failing_commit)
        with pytest.raises(SQLAlchemyError):
            repo.replace_refresh_token(user_id, tokens.refresh_token, "token-b")
        monkeypatch.undo()

        assert repo.get_by_id(user_id).refresh_token == tokens.refresh_token
        rotated = user_service.refresh_access_token(db, tokens.refresh_token)
        assert repo.get_by_id(user_id).refresh_token == rotated.refresh_token
