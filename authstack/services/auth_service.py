from __future__ import annotations

import datetime as dt
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from authstack.db.models import Account, Session, User, Verification, as_utc, utcnow

logger = logging.getLogger(__name__)

CREDENTIAL_PROVIDER = "credential"

# Receives (email, raw_token). Wire an email sender here.
VerificationSender = Callable[[str, str], None]


class AuthError(RuntimeError):
    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentials(AuthError):
    status_code = 401
    code = "INVALID_EMAIL_OR_PASSWORD"


class UserAlreadyExists(AuthError):
    status_code = 422
    code = "USER_ALREADY_EXISTS"


class InvalidPassword(AuthError):
    status_code = 400
    code = "INVALID_PASSWORD"


class EmailNotVerified(AuthError):
    status_code = 403
    code = "EMAIL_NOT_VERIFIED"


class InvalidToken(AuthError):
    status_code = 401
    code = "INVALID_TOKEN"


class SessionNotFound(AuthError):
    status_code = 401
    code = "UNAUTHORIZED"


@dataclass(frozen=True)
class SessionContext:
    session: Session
    user: User
    # Raw token as presented by the client or just issued.
    token: Optional[str] = None
    # True when this lookup slid the expiry forward.
    refreshed: bool = False


def _log_verification_issued(email: str, token: str) -> None:
    logger.info("Email verification token issued but no sender is configured; pass send_verification to create_app")


class AuthService:
    """Email/password authentication with database-backed sessions.

    Users, sessions, credential accounts and verification tokens are persisted
    through the ORM models in `authstack.db.models`. Session tokens are opaque
    random strings; only their SHA-256 is stored.
    """

    def __init__(
        self,
        *,
        secret: str,
        session_expires_in_s: int = 60 * 60 * 24 * 7,
        session_update_age_s: int = 60 * 60 * 24,
        cookie_cache_max_age_s: int = 300,
        password_min_length: int = 8,
        password_max_length: int = 128,
        require_email_verification: bool = False,
        verification_ttl_s: int = 3600,
        send_verification: Optional[VerificationSender] = None,
    ) -> None:
        if not secret:
            raise ValueError("Auth secret must be provided via env var AUTH_SECRET")

        self._secret = secret
        self._expires_in = dt.timedelta(seconds=int(session_expires_in_s))
        self._update_age = dt.timedelta(seconds=int(session_update_age_s))
        self._cache_max_age_s = int(cookie_cache_max_age_s)
        self._password_min = int(password_min_length)
        self._password_max = int(password_max_length)
        self._require_verification = bool(require_email_verification)
        self._verification_ttl = dt.timedelta(seconds=int(verification_ttl_s))
        self._send_verification = send_verification or _log_verification_issued

        self._hasher = PasswordHasher()

    @property
    def session_expires_in_s(self) -> int:
        return int(self._expires_in.total_seconds())

    @property
    def cookie_cache_max_age_s(self) -> int:
        return self._cache_max_age_s

    # -----------------
    # Primitives
    # -----------------

    @staticmethod
    def _sha256_hex(raw: str) -> str:
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @staticmethod
    def _normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Stored password hash could not be verified")
            return False

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise AuthError("Name must not be blank", code="INVALID_NAME")
        return name

    def check_password_policy(self, password: str) -> None:
        if len(password or "") < self._password_min:
            raise InvalidPassword("Password too short", code="PASSWORD_TOO_SHORT")
        if len(password) > self._password_max:
            raise InvalidPassword("Password too long", code="PASSWORD_TOO_LONG")

    def _credential_account(self, user: User) -> Optional[Account]:
        for acc in user.accounts or []:
            if acc.provider_id == CREDENTIAL_PROVIDER:
                return acc
        return None

    # -----------------
    # Sign up / sign in
    # -----------------

    def sign_up_email(
        self,
        db: DBSession,
        *,
        name: str,
        email: str,
        password: str,
        image: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[User, Optional[SessionContext]]:
        email = self._normalize_email(email)
        name = self._clean_name(name)
        self.check_password_policy(password)

        if db.query(User).filter(User.email == email).one_or_none() is not None:
            raise UserAlreadyExists("User already exists")

        user = User(name=name, email=email, email_verified=False, image=image)
        user.accounts = [
            Account(
                provider_id=CREDENTIAL_PROVIDER,
                account_id=email,
                password_hash=self.hash_password(password),
            )
        ]
        db.add(user)
        try:
            db.commit()
        except IntegrityError as e:
            # Concurrent sign-up with the same email.
            db.rollback()
            raise UserAlreadyExists("User already exists") from e

        logger.info("User signed up: %s", user.id)

        token = self.create_verification(db, email=email)
        self._send_verification(email, token)

        if self._require_verification:
            return user, None
        return user, self.create_session(db, user, ip_address=ip_address, user_agent=user_agent)

    def sign_in_email(
        self,
        db: DBSession,
        *,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionContext:
        email = self._normalize_email(email)
        user = db.query(User).filter(User.email == email).one_or_none()
        account = self._credential_account(user) if user else None
        if not user or not account or not account.password_hash:
            # Burn comparable time so unknown emails are not distinguishable by latency.
            self.verify_password(password, self._dummy_hash())
            raise InvalidCredentials("Invalid email or password")

        if not self.verify_password(password, account.password_hash):
            raise InvalidCredentials("Invalid email or password")

        if self._hasher.check_needs_rehash(account.password_hash):
            account.password_hash = self.hash_password(password)
            db.add(account)
            db.commit()

        if self._require_verification and not user.email_verified:
            raise EmailNotVerified("Email not verified")

        return self.create_session(db, user, ip_address=ip_address, user_agent=user_agent)

    _dummy: Optional[str] = None

    def _dummy_hash(self) -> str:
        if self._dummy is None:
            self._dummy = self.hash_password(secrets.token_urlsafe(16))
        return self._dummy

    # -----------------
    # Sessions
    # -----------------

    def create_session(
        self,
        db: DBSession,
        user: User,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionContext:
        token = secrets.token_urlsafe(32)
        sess = Session(
            user_id=user.id,
            token_sha256=self._sha256_hex(token),
            expires_at=utcnow() + self._expires_in,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
        )
        db.add(sess)
        db.commit()
        db.refresh(sess)
        return SessionContext(session=sess, user=user, token=token)

    def get_session(self, db: DBSession, token: Optional[str]) -> Optional[SessionContext]:
        """Resolve a raw session token. Expired sessions are deleted and reported as missing.

        Sessions older than `update_age` get their expiry slid forward.
        """
        if not token:
            return None
        sess = db.query(Session).filter(Session.token_sha256 == self._sha256_hex(token)).one_or_none()
        if sess is None:
            return None

        now = utcnow()
        if as_utc(sess.expires_at) <= now:
            db.delete(sess)
            db.commit()
            return None

        issued_at = as_utc(sess.expires_at) - self._expires_in
        refreshed = now - issued_at >= self._update_age
        if refreshed:
            sess.expires_at = now + self._expires_in
            db.add(sess)
            db.commit()

        return SessionContext(session=sess, user=sess.user, token=token, refreshed=refreshed)

    def sign_out(self, db: DBSession, token: Optional[str]) -> None:
        if not token:
            return
        sess = db.query(Session).filter(Session.token_sha256 == self._sha256_hex(token)).one_or_none()
        if sess is None:
            return
        db.delete(sess)
        db.commit()

    def list_sessions(self, db: DBSession, user: User) -> List[Session]:
        now = utcnow()
        rows = (
            db.query(Session)
            .filter(Session.user_id == user.id)
            .order_by(Session.created_at.desc())
            .all()
        )
        return [s for s in rows if as_utc(s.expires_at) > now]

    def revoke_session(
        self,
        db: DBSession,
        user: User,
        *,
        token: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> bool:
        """Revoke one of the user's sessions, addressed by raw token or by session id."""
        q = db.query(Session).filter(Session.user_id == user.id)
        if token:
            q = q.filter(Session.token_sha256 == self._sha256_hex(token))
        elif session_id:
            q = q.filter(Session.id == session_id)
        else:
            return False
        sess = q.one_or_none()
        if sess is None:
            return False
        db.delete(sess)
        db.commit()
        return True

    def revoke_other_sessions(self, db: DBSession, user: User, *, keep_session_id: str) -> int:
        n = (
            db.query(Session)
            .filter(Session.user_id == user.id, Session.id != keep_session_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return int(n or 0)

    def revoke_sessions(self, db: DBSession, user: User) -> int:
        n = db.query(Session).filter(Session.user_id == user.id).delete(synchronize_session=False)
        db.commit()
        return int(n or 0)

    # -----------------
    # Account management
    # -----------------

    def change_password(
        self,
        db: DBSession,
        user: User,
        *,
        current_password: str,
        new_password: str,
        revoke_other_sessions: bool = False,
        keep_session_id: Optional[str] = None,
    ) -> None:
        account = self._credential_account(user)
        if account is None or not account.password_hash:
            raise InvalidCredentials("Credential account not found", code="CREDENTIAL_ACCOUNT_NOT_FOUND")
        if not self.verify_password(current_password, account.password_hash):
            raise InvalidPassword("Invalid password", code="INVALID_PASSWORD")
        self.check_password_policy(new_password)

        account.password_hash = self.hash_password(new_password)
        db.add(account)
        db.commit()

        if revoke_other_sessions and keep_session_id:
            self.revoke_other_sessions(db, user, keep_session_id=keep_session_id)

    def update_user(
        self,
        db: DBSession,
        user: User,
        *,
        name: Optional[str] = None,
        image: Optional[str] = None,
    ) -> User:
        if name is not None:
            user.name = self._clean_name(name)
        if image is not None:
            user.image = image or None
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    # -----------------
    # Email verification
    # -----------------

    def create_verification(self, db: DBSession, *, email: str) -> str:
        token = secrets.token_urlsafe(32)
        db.add(
            Verification(
                identifier=self._normalize_email(email),
                value_sha256=self._sha256_hex(token),
                expires_at=utcnow() + self._verification_ttl,
            )
        )
        db.commit()
        return token

    def resend_verification(self, db: DBSession, *, email: str) -> bool:
        """Issue and send a fresh token for an unverified user.

        Earlier tokens for the address are discarded. Returns False, sending
        nothing, when the address is unknown or already verified; callers
        should not reveal which.
        """
        email = self._normalize_email(email)
        user = db.query(User).filter(User.email == email).one_or_none()
        if user is None or user.email_verified:
            return False

        db.query(Verification).filter(Verification.identifier == email).delete(synchronize_session=False)
        db.commit()
        token = self.create_verification(db, email=email)
        self._send_verification(email, token)
        logger.info("Verification email re-sent for user %s", user.id)
        return True

    def verify_email(self, db: DBSession, *, token: str) -> User:
        row = (
            db.query(Verification)
            .filter(Verification.value_sha256 == self._sha256_hex(token or ""))
            .one_or_none()
        )
        if row is None:
            raise InvalidToken("Invalid verification token", status_code=400)

        # Single use, even when expired.
        identifier = row.identifier
        expired = as_utc(row.expires_at) <= utcnow()
        db.delete(row)
        db.commit()
        if expired:
            raise InvalidToken("Verification token expired", code="TOKEN_EXPIRED", status_code=400)

        user = db.query(User).filter(User.email == identifier).one_or_none()
        if user is None:
            raise InvalidToken("User not found", code="USER_NOT_FOUND", status_code=400)

        if not user.email_verified:
            user.email_verified = True
            db.add(user)
            db.commit()
        return user

    # -----------------
    # Cookie cache
    # -----------------

    def encode_session_cache(self, ctx: SessionContext) -> str:
        """Sign a short-lived copy of the session for the session-data cookie."""
        now = utcnow()
        payload = {
            "sid": self._sha256_hex(ctx.token or ""),
            "session": session_to_dict(ctx.session),
            "user": user_to_dict(ctx.user),
            "iat": int(now.timestamp()),
            "exp": int(now.timestamp()) + self._cache_max_age_s,
        }
        return jwt.encode(payload, self._secret, algorithm="HS256")

    def decode_session_cache(self, value: Optional[str], token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the cached {session, user} payload, or None if missing/invalid/stale."""
        if not value or not token:
            return None
        try:
            payload = jwt.decode(
                value,
                self._secret,
                algorithms=["HS256"],
                options={"require": ["exp", "iat", "sid"]},
            )
        except jwt.PyJWTError:
            return None
        if not secrets.compare_digest(str(payload.get("sid")), self._sha256_hex(token)):
            return None
        return {"session": payload.get("session"), "user": payload.get("user")}


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "emailVerified": bool(user.email_verified),
        "image": user.image,
        "createdAt": _iso(user.created_at),
        "updatedAt": _iso(user.updated_at),
    }


def session_to_dict(sess: Session) -> Dict[str, Any]:
    return {
        "id": sess.id,
        "userId": sess.user_id,
        "expiresAt": _iso(sess.expires_at),
        "ipAddress": sess.ip_address,
        "userAgent": sess.user_agent,
        "createdAt": _iso(sess.created_at),
        "updatedAt": _iso(sess.updated_at),
    }
