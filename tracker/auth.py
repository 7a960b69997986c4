from argon2 import PasswordHasher, Type, extract_parameters
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHashError
from argon2.low_level import ARGON2_VERSION
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from tracker.database import atomic
from tracker.errors import (
    CredentialFormatError,
    InvalidCredentialsError,
    InvalidSessionError,
    MalformedCredentialError,
    MissingCredentialError,
)
from tracker.models import User, Session as SessionModel

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class PasswordParams:
    """
    Argon2id cost parameters for new hashes.

    Stored inside every encoded hash, so changing them later does not
    invalidate existing passwords.
    """
    memory_cost: int = 64 * 1024
    time_cost: int = 3
    parallelism: int = 2
    salt_length: int = 16
    hash_length: int = 32

    @classmethod
    def from_settings(cls, settings) -> "PasswordParams":
        return cls(
            memory_cost=settings.argon2_memory_cost,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            salt_length=settings.argon2_salt_length,
            hash_length=settings.argon2_hash_length,
        )

    def hasher(self) -> PasswordHasher:
        return PasswordHasher(
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=self.hash_length,
            salt_len=self.salt_length,
            type=Type.ID,
        )


def hash_password(password: str, params: Optional[PasswordParams] = None) -> str:
    """
    Hash password using Argon2id with a random salt.

    Returns hash string that includes algorithm parameters and salt.
    Format: $argon2id$v=19$m=65536,t=3,p=2$salt$hash
    """
    return (params or PasswordParams()).hasher().hash(password)


def verify_password(password: str, encoded_hash: str) -> bool:
    """
    Verify password against stored hash.

    Cost parameters and salt are read from the hash itself. The digest
    comparison inside argon2 is constant time.

    Raises CredentialFormatError if the hash is not an Argon2 string
    or was produced by an unsupported Argon2 version.
    """
    try:
        params = extract_parameters(encoded_hash)
    except InvalidHashError:
        raise CredentialFormatError("the encoded hash is not in the correct format")
    if params.version != ARGON2_VERSION:
        raise CredentialFormatError("incompatible version of argon2")

    try:
        return PasswordHasher().verify(encoded_hash, password)
    except VerifyMismatchError:
        return False
    except InvalidHashError:
        raise CredentialFormatError("the encoded hash is not in the correct format")
    except VerificationError:
        return False


def needs_rehash(encoded_hash: str, params: Optional[PasswordParams] = None) -> bool:
    """True when the hash was produced with parameters other than the current ones."""
    return (params or PasswordParams()).hasher().check_needs_rehash(encoded_hash)


_dummy_hash: Optional[str] = None


def _burn_verification(password: str, params: Optional[PasswordParams]):
    """
    Spend roughly the same time as a real verification.

    Used for unknown usernames so response time does not reveal
    whether the account exists.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password(secrets.token_hex(16), params)
    verify_password(password, _dummy_hash)


def create_user(
    db: Session,
    username: str,
    password: str,
    person_name: str = "",
    params: Optional[PasswordParams] = None,
) -> User:
    user = User(
        username=username,
        hash_password=hash_password(password, params),
        person_name=person_name or username,
    )
    with atomic(db):
        db.add(user)
    db.refresh(user)
    logger.info("Created user {} ({})", user.user_id, username)
    return user


def generate_token() -> str:
    """
    Generate cryptographically secure token.

    Uses 32 bytes (256 bits) of randomness.
    Hex encoded = 64 character string.
    """
    return secrets.token_hex(32)


def issue_session(db: Session, user_id: int, device: Optional[str] = None, ip: Optional[str] = None) -> str:
    """
    Create new session for user.

    Returns the raw token. It is the only time the caller sees it.
    Sessions do not expire; they live until logout.
    """
    token = generate_token()
    now = datetime.now(timezone.utc)

    session = SessionModel(
        session_code=token,
        user_id=user_id,
        device=device[:512] if device else None,
        last_ip=ip,
        created_at=now,
        last_used=now,
    )

    with atomic(db):
        db.add(session)

    return token


def login(
    db: Session,
    username: str,
    password: str,
    device: Optional[str] = None,
    ip: Optional[str] = None,
    params: Optional[PasswordParams] = None,
) -> str:
    """
    Authenticate username/password and open a session.

    Every failure raises the same InvalidCredentialsError so callers
    cannot tell unknown users from wrong passwords.
    """
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()

    if user is None:
        _burn_verification(password, params)
        logger.info("Login failed for unknown user {}", username)
        raise InvalidCredentialsError()

    try:
        matched = verify_password(password, user.hash_password)
    except CredentialFormatError as exc:
        logger.error("Stored hash for user {} is unusable: {}", user.user_id, exc)
        raise InvalidCredentialsError()

    if not matched:
        logger.info("Login failed for user {}", user.user_id)
        raise InvalidCredentialsError()

    # Upgrade hashes made with older cost parameters while we know the password
    if needs_rehash(user.hash_password, params):
        with atomic(db):
            user.hash_password = hash_password(password, params)
        logger.info("Rehashed password for user {}", user.user_id)

    token = issue_session(db, user.user_id, device, ip)
    logger.info("User {} logged in from {}", user.user_id, ip or "unknown address")
    return token


def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise MissingCredentialError()
    if not authorization.startswith(BEARER_PREFIX):
        raise MalformedCredentialError()
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise MalformedCredentialError()
    return token


def authenticate(db: Session, authorization: Optional[str], ip: Optional[str] = None) -> int:
    """
    Resolve an Authorization header to a user id.

    Refreshes last_used on the session as a side effect. Concurrent
    requests on one token simply race on the timestamp.
    """
    token = parse_bearer(authorization)

    with atomic(db):
        session = db.execute(
            select(SessionModel).where(SessionModel.session_code == token)
        ).scalar_one_or_none()

        if session is None:
            raise InvalidSessionError()

        session.last_used = datetime.now(timezone.utc)
        if ip:
            session.last_ip = ip
        user_id = session.user_id

    return user_id


def revoke_session(db: Session, token: str, user_id: int) -> bool:
    """
    Delete session (logout).

    Scoped to the presenting user so nobody can log out someone else.
    Returns True if session was deleted, False if not found.
    """
    with atomic(db):
        result = db.execute(
            delete(SessionModel).where(
                SessionModel.session_code == token,
                SessionModel.user_id == user_id,
            )
        )
    return result.rowcount > 0


def revoke_all_sessions(db: Session, user_id: int) -> int:
    """
    Delete all sessions for a user ("log out all devices").

    Returns number of sessions deleted.
    """
    with atomic(db):
        result = db.execute(
            delete(SessionModel).where(SessionModel.user_id == user_id)
        )
    logger.info("Revoked {} sessions for user {}", result.rowcount, user_id)
    return result.rowcount
