"""
帳號服務
登入 / 註冊 / 登出與登入狀態訂閱 (本機身分提供者)
"""

import hashlib
import hmac
import re
import secrets
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import config
from backend.models.business_models import AppUser
from backend.utils.exceptions import AuthError, NotAuthenticatedError
from backend.utils.logger import get_logger

logger = get_logger(__name__)

AuthCallback = Callable[[Optional[AppUser]], None]

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PBKDF2_ROUNDS = 120_000


@dataclass
class _Account:
    user: AppUser
    salt: bytes
    password_hash: bytes


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ROUNDS)


def uid_for_email(email: str) -> str:
    """以正規化後 email 的 sha256 作為 uid，不同 email 不會共用工作區"""
    digest = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
    return f"user_{digest[:32]}"


class AuthService:
    """帳號服務，token 為不透明字串"""

    def __init__(self, min_password_length: int = None):
        self.min_password_length = min_password_length or config.MIN_PASSWORD_LENGTH
        self._accounts: Dict[str, _Account] = {}
        self._users: Dict[str, AppUser] = {}
        self._tokens: Dict[str, str] = {}
        self._listeners: List[AuthCallback] = []
        self._lock = threading.Lock()

    def _normalize_email(self, email: str) -> str:
        email = (email or "").strip().lower()
        if not _EMAIL_PATTERN.match(email):
            raise AuthError("invalid-email", details={"email": email})
        return email

    def signup(self, email: str, password: str) -> dict:
        """
        註冊新帳號並直接登入

        Raises:
            AuthError: email-already-in-use / weak-password / invalid-email
        """
        email = self._normalize_email(email)
        if len(password or "") < self.min_password_length:
            raise AuthError("weak-password")

        salt = secrets.token_bytes(16)
        user = AppUser(
            uid=uid_for_email(email), email=email, display_name=email.split("@")[0]
        )
        with self._lock:
            if email in self._accounts or user.uid in self._users:
                raise AuthError("email-already-in-use")
            self._accounts[email] = _Account(user, salt, _hash_password(password, salt))
            self._users[user.uid] = user

        logger.info(f"📝 新帳號已建立: {user.uid}")
        return self._start_session(user)

    def login(self, email: str, password: str) -> dict:
        """
        Raises:
            AuthError: invalid-credential
        """
        try:
            email = self._normalize_email(email)
        except AuthError:
            raise AuthError("invalid-credential")

        account = self._accounts.get(email)
        if account is None or not hmac.compare_digest(
            account.password_hash, _hash_password(password or "", account.salt)
        ):
            logger.warning(f"🔑 登入失敗: {email}")
            raise AuthError("invalid-credential")

        logger.info(f"🔑 登入成功: {account.user.uid}")
        return self._start_session(account.user)

    def logout(self, token: str):
        with self._lock:
            uid = self._tokens.pop(token, None)
        if uid is not None:
            logger.info(f"👤 已登出: {uid}")
            self._notify(None)

    def resolve_token(self, token: Optional[str]) -> AppUser:
        """
        Raises:
            NotAuthenticatedError: token 不存在或已登出
        """
        user = self._users.get(self._tokens.get(token or ""))
        if user is None:
            raise NotAuthenticatedError()
        return user

    def subscribe_auth_state(self, on_change: AuthCallback) -> Callable[[], None]:
        """訂閱登入狀態，立即以目前最後登入的使用者 (或 None) 回呼一次"""
        self._listeners.append(on_change)
        on_change(self._current_user())

        def unsubscribe():
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    def _current_user(self) -> Optional[AppUser]:
        if not self._tokens:
            return None
        return self._users.get(list(self._tokens.values())[-1])

    def _start_session(self, user: AppUser) -> dict:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens[token] = user.uid
        self._notify(user)
        return {"token": token, "user": user.model_dump(by_alias=True)}

    def _notify(self, user: Optional[AppUser]):
        for callback in list(self._listeners):
            try:
                callback(user)
            except Exception as e:
                logger.error(f"登入狀態回呼失敗: {e}")
