"""Tests for accounts and bearer tokens."""

from datetime import timedelta

import pytest

from storefront.auth import (
    AuthService,
    UserStore,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from storefront.config import Settings
from storefront.errors import (
    AccountDeactivatedError,
    AuthenticationError,
    EmailExistsError,
    InvalidRequestError,
)
from storefront.store import USERS, Database


@pytest.fixture
def settings(temp_dir):
    return Settings(data_dir=temp_dir / "data", jwt_secret="test-secret")


@pytest.fixture
def auth(database, settings):
    return AuthService(database, settings)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("hunter22")
        assert hashed != "hunter22"
        assert verify_password("hunter22", hashed)
        assert not verify_password("wrong", hashed)

    def test_missing_hash_never_verifies(self):
        assert not verify_password("anything", None)


class TestTokens:
    def test_round_trip(self, auth, settings):
        user, token = auth.register("Ada", "ada@example.com", "secret1")
        assert decode_access_token(token, settings) == user.id

    def test_wrong_secret_rejected(self, auth):
        _, token = auth.register("Ada", "ada@example.com", "secret1")
        other = Settings(jwt_secret="another-secret")
        with pytest.raises(AuthenticationError):
            decode_access_token(token, other)

    def test_expired_rejected(self, auth, settings):
        user, _ = auth.register("Ada", "ada@example.com", "secret1")
        token = create_access_token(user, settings, expires_delta=timedelta(seconds=-10))
        with pytest.raises(AuthenticationError):
            decode_access_token(token, settings)

    def test_garbage_rejected(self, settings):
        with pytest.raises(AuthenticationError):
            decode_access_token("not-a-jwt", settings)


class TestAuthService:
    def test_register(self, auth, database):
        user, token = auth.register(" Ada ", "Ada@Example.com", "secret1")

        assert user.name == "Ada"
        assert user.email == "ada@example.com"
        assert user.role == "user"
        assert token
        with database.session() as session:
            stored = UserStore(session).get_user(user.id)
        assert stored.password_hash != "secret1"

    def test_duplicate_email_rejected(self, auth):
        auth.register("Ada", "ada@example.com", "secret1")
        with pytest.raises(EmailExistsError):
            auth.register("Other Ada", "ADA@example.com", "secret2")

    def test_short_password_rejected(self, auth):
        with pytest.raises(InvalidRequestError) as exc_info:
            auth.register("Ada", "ada@example.com", "12345")
        assert exc_info.value.field == "password"

    def test_login(self, auth):
        registered, _ = auth.register("Ada", "ada@example.com", "secret1")
        user, token = auth.login("ada@example.com", "secret1")
        assert user.id == registered.id
        assert auth.resolve_token(token).id == registered.id

    @pytest.mark.parametrize(
        "email,password", [("ada@example.com", "nope"), ("bob@example.com", "secret1")]
    )
    def test_bad_credentials(self, auth, email, password):
        auth.register("Ada", "ada@example.com", "secret1")
        with pytest.raises(AuthenticationError) as exc_info:
            auth.login(email, password)
        assert str(exc_info.value) == "Invalid email or password"

    def test_deactivated_account(self, auth, database):
        user, token = auth.register("Ada", "ada@example.com", "secret1")
        with database.session() as session:
            session.update(USERS, user.id, {"is_active": False})

        with pytest.raises(AccountDeactivatedError):
            auth.login("ada@example.com", "secret1")
        with pytest.raises(AuthenticationError):
            auth.resolve_token(token)

    def test_admin_login_requires_admin_role(self, auth):
        auth.register("Ada", "ada@example.com", "secret1")
        auth.create_admin("Root", "root@example.com", "rootpass")

        with pytest.raises(AuthenticationError) as exc_info:
            auth.admin_login("ada@example.com", "secret1")
        assert str(exc_info.value) == "Invalid admin credentials"

        admin, _ = auth.admin_login("root@example.com", "rootpass")
        assert admin.is_admin

    def test_anonymous_login(self, auth):
        user, token = auth.anonymous_login()

        assert user.is_anonymous
        assert user.role == "anonymous"
        assert user.name.startswith("Guest_")
        assert user.email.endswith("@guest.local")
        assert auth.resolve_token(token).id == user.id

    def test_token_for_missing_user(self, auth, settings):
        _, token = auth.anonymous_login()
        elsewhere = AuthService(Database(settings.data_dir / "elsewhere"), settings)
        with pytest.raises(AuthenticationError):
            elsewhere.resolve_token(token)
