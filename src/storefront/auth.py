"""Accounts, password hashing and bearer tokens."""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import Settings, get_settings
from .errors import (
    AccountDeactivatedError,
    AuthenticationError,
    EmailExistsError,
    InvalidRequestError,
    UserNotFoundError,
)
from .models import User
from .store import USERS, Database, Session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User, settings: Settings, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=settings.token_ttl_hours))
    to_encode = {"sub": user.id, "role": user.role, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> str:
    """
    Return the user ID carried by a token.

    Raises:
        AuthenticationError: If the token is malformed, forged or expired.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid or expired token")
    return user_id


class UserStore:
    """Reads and writes user documents within a session."""

    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: str) -> User:
        doc = self.session.get(USERS, user_id)
        if doc is None:
            raise UserNotFoundError(user_id)
        return User.from_dict(doc)

    def find_by_email(self, email: str) -> User | None:
        doc = self.session.find_one(USERS, email=email.strip().lower())
        return User.from_dict(doc) if doc else None

    def add_user(self, user: User) -> User:
        if user.email and self.find_by_email(user.email):
            raise EmailExistsError(user.email)
        self.session.insert(USERS, user.to_dict())
        return user


class AuthService:
    """Registration, login and token resolution."""

    def __init__(self, database: Database, settings: Settings | None = None):
        self.database = database
        self.settings = settings or get_settings()

    def _issue(self, user: User, expires_delta: timedelta | None = None) -> tuple[User, str]:
        return user, create_access_token(user, self.settings, expires_delta)

    def register(self, name: str, email: str, password: str) -> tuple[User, str]:
        """
        Create a regular user account.

        Raises:
            InvalidRequestError: If a field is blank or the password is too short.
            EmailExistsError: If the email is already registered.
        """
        if not name or not name.strip() or not email or not email.strip() or not password:
            raise InvalidRequestError("Name, email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequestError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )

        user = User.create(name=name.strip(), email=email, password_hash=hash_password(password))
        with self.database.session() as session:
            UserStore(session).add_user(user)

        logger.info("Registered user %s", user.id)
        return self._issue(user)

    def create_admin(self, name: str, email: str, password: str) -> User:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequestError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )
        user = User.create(
            name=name.strip(), email=email, password_hash=hash_password(password), role="admin"
        )
        with self.database.session() as session:
            UserStore(session).add_user(user)
        logger.info("Created admin %s", user.id)
        return user

    def _authenticate(self, email: str, password: str, role: str | None = None) -> User:
        if not email or not password:
            raise InvalidRequestError("Email and password are required")

        with self.database.session() as session:
            user = UserStore(session).find_by_email(email)

        if user is None or (role and user.role != role) or not verify_password(password, user.password_hash):
            raise AuthenticationError(
                "Invalid admin credentials" if role == "admin" else "Invalid email or password"
            )
        if not user.is_active:
            raise AccountDeactivatedError()
        return user

    def login(self, email: str, password: str) -> tuple[User, str]:
        """
        Raises:
            AuthenticationError: If the email/password pair doesn't match.
            AccountDeactivatedError: If the account was deactivated.
        """
        return self._issue(self._authenticate(email, password))

    def admin_login(self, email: str, password: str) -> tuple[User, str]:
        return self._issue(self._authenticate(email, password, role="admin"))

    def anonymous_login(self) -> tuple[User, str]:
        """Create a guest account with a short-lived token so its cart persists."""
        tag = uuid.uuid4().hex[:8]
        user = User.create(name=f"Guest_{tag}", email=f"guest_{tag}@guest.local", role="anonymous")
        with self.database.session() as session:
            UserStore(session).add_user(user)

        return self._issue(user, timedelta(hours=self.settings.anonymous_token_ttl_hours))

    def resolve_token(self, token: str) -> User:
        """
        Map a bearer token to an active user.

        Raises:
            AuthenticationError: If the token is invalid or the user is missing/inactive.
        """
        user_id = decode_access_token(token, self.settings)
        with self.database.session() as session:
            try:
                user = UserStore(session).get_user(user_id)
            except UserNotFoundError:
                raise AuthenticationError("User not found or deactivated")
        if not user.is_active:
            raise AuthenticationError("User not found or deactivated")
        return user
