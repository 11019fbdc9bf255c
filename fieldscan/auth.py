"""Bearer-token authentication backed by the OS keychain."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from .exceptions import AuthenticationError, NetworkError, ServerError

logger = logging.getLogger(__name__)

SERVICE_NAME = "FieldScan"
TOKEN_KEY = "auth_token"

_REJECTED = {401, 403}

# Returns a fresh SSO access token without user interaction, or None.
TokenProvider = Callable[[], Optional[str]]


@dataclass(slots=True)
class AuthUser:
    id: str
    email: str
    name: str


class CredentialStore:
    """Secured key-value storage for the backend token."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class KeyringCredentialStore(CredentialStore):
    """Credential store using the platform keychain via ``keyring``."""

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        import keyring

        self._keyring = keyring
        self.service_name = service_name

    def get(self, key: str) -> Optional[str]:
        return self._keyring.get_password(self.service_name, key)

    def set(self, key: str, value: str) -> None:
        self._keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        from keyring.errors import PasswordDeleteError

        try:
            self._keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            logger.debug("No stored credential for %s", key)


class MemoryCredentialStore(CredentialStore):
    """Process-local store, used when no keychain backend is configured."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class AuthManager:
    """Holds the backend token and refreshes it silently through SSO."""

    def __init__(
        self,
        base_url: str,
        *,
        store: CredentialStore,
        token_provider: TokenProvider | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.token_provider = token_provider
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None
        self._lock = threading.Lock()
        self.current_user: AuthUser | None = None
        self.is_authenticated = False

    @property
    def token(self) -> Optional[str]:
        return self.store.get(TOKEN_KEY)

    def headers(self) -> Dict[str, str]:
        token = self.token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def check_auth_status(self) -> bool:
        """Revalidate the stored token at process start.

        Only an explicit 401/403 discards the stored token. An unreachable or
        failing backend leaves it in place so the session can work offline.
        """

        if not self.token:
            self.is_authenticated = False
            return False
        try:
            if self.refresh():
                return True
        except (NetworkError, ServerError) as exc:
            logger.warning("Token refresh unavailable, keeping stored token: %s", exc)
        try:
            resp = self._client.get(f"{self.base_url}/auth", headers=self.headers())
        except httpx.RequestError as exc:
            # Offline start keeps the stored token; calls will refresh on 401.
            logger.warning("Could not validate token, continuing offline: %s", exc)
            self.is_authenticated = True
            return True
        if resp.status_code in _REJECTED:
            logger.info("Stored token rejected (%s)", resp.status_code)
            self.logout()
            return False
        if not resp.is_success:
            logger.warning("Token validation returned %s, keeping stored token", resp.status_code)
            self.is_authenticated = True
            return True
        self.is_authenticated = True
        self.current_user = self._parse_user(resp)
        return True

    def refresh(self) -> bool:
        """Exchange a silently acquired SSO token for a new backend token.

        Returns False when no fresh token can be obtained or the backend
        rejects it. ``NetworkError`` and ``ServerError`` propagate so callers
        can treat them as transient.
        """

        if self.token_provider is None:
            return False
        with self._lock:
            try:
                sso_token = self.token_provider()
            except Exception as exc:
                logger.warning("Silent SSO token acquisition failed: %s", exc)
                return False
            if not sso_token:
                return False
            try:
                self.exchange_sso_token(sso_token)
            except AuthenticationError as exc:
                logger.warning("Token refresh failed: %s", exc)
                return False
        return True

    def exchange_sso_token(self, sso_token: str) -> AuthUser | None:
        try:
            resp = self._client.post(f"{self.base_url}/auth/sso", json={"accessToken": sso_token})
        except httpx.RequestError as exc:
            raise NetworkError(f"SSO exchange failed: {exc}") from exc
        if resp.status_code >= 500:
            raise ServerError(f"SSO exchange failed: {resp.status_code}", status_code=resp.status_code)
        if not resp.is_success:
            raise AuthenticationError("SSO exchange rejected", status_code=resp.status_code)
        try:
            data = resp.json()
            token = data["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(f"Malformed SSO exchange response: {exc}") from exc
        self.store.set(TOKEN_KEY, token)
        self.current_user = self._user_from_dict(data.get("user"))
        self.is_authenticated = True
        logger.info("Signed in%s", f" as {self.current_user.email}" if self.current_user else "")
        return self.current_user

    def logout(self) -> None:
        self.store.delete(TOKEN_KEY)
        self.current_user = None
        self.is_authenticated = False

    def _parse_user(self, resp: httpx.Response) -> AuthUser | None:
        try:
            return self._user_from_dict(resp.json())
        except ValueError:
            return None

    @staticmethod
    def _user_from_dict(payload: object) -> AuthUser | None:
        if not isinstance(payload, dict):
            return None
        try:
            return AuthUser(id=str(payload["id"]), email=payload["email"], name=payload["name"])
        except KeyError:
            return None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
