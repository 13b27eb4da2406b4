"""Firebase Authentication (Identity Toolkit REST) identity provider."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from ...exceptions import AuthError, BackendError, ConfigError, EVChargeNetError, ValidationError
from ...models import Identity
from ...util import utc_now
from ..base import BaseIdentityProvider, error_message
from ..loader import BackendManifest
from .const import (
    AUTH_ERROR_CODES,
    AUTH_VALIDATION_ERRORS,
    DEFAULT_HEADERS,
    IDENTITY_TOOLKIT_BASE_URL,
    SECURE_TOKEN_URL,
    SIGN_IN_ENDPOINT,
    SIGN_UP_ENDPOINT,
)

_LOGGER = logging.getLogger(__name__)

# Refresh this long before the reported expiry.
_TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


class IdentityProvider(BaseIdentityProvider):
    """Email and password accounts backed by Firebase Authentication."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, manifest, **kwargs)
        self._id_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: datetime | None = None

    async def sign_up(self, email: str, password: str) -> Identity:
        normalized = self._validate_credentials(email, password)
        data = await self._request_json(
            self._toolkit_url(SIGN_UP_ENDPOINT),
            json={"email": normalized, "password": password, "returnSecureToken": True},
        )
        identity = self._store_sign_in(data)
        _LOGGER.debug("Identity provider %s created account %s", self._manifest.id, identity.uid)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        normalized = self._validate_credentials(email, password)
        data = await self._request_json(
            self._toolkit_url(SIGN_IN_ENDPOINT),
            json={"email": normalized, "password": password, "returnSecureToken": True},
        )
        return self._store_sign_in(data)

    async def sign_out(self) -> None:
        self._id_token = None
        self._refresh_token = None
        self._expires_at = None
        await super().sign_out()

    async def get_id_token(self) -> str | None:
        if self._id_token is None:
            return None
        if self._expires_at is not None and utc_now() >= self._expires_at - _TOKEN_EXPIRY_MARGIN:
            await self.refresh()
        return self._id_token

    async def refresh(self) -> None:
        """Exchange the refresh token for a new ID token."""
        if self._refresh_token is None:
            raise AuthError("Authentication required.", error_code="auth_required")
        data = await self._request_json(
            SECURE_TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
        )
        if not isinstance(data, dict):
            raise BackendError("Token refresh returned invalid data.")
        self._id_token = _read_token(data, "id_token")
        self._refresh_token = _read_token(data, "refresh_token")
        self._expires_at = _expiry(data.get("expires_in"))
        _LOGGER.debug("Identity provider %s refreshed its token", self._manifest.id)

    def _toolkit_url(self, endpoint: str) -> str:
        base = (self._base_url or IDENTITY_TOOLKIT_BASE_URL).rstrip("/")
        return f"{base}{endpoint}"

    async def _request_json(self, url: str, **kwargs: Any) -> Any:
        if not self._api_key:
            raise ConfigError("api_key is required for Firebase Authentication.")
        return await self._request(
            "POST",
            url,
            params={"key": self._api_key},
            headers=dict(DEFAULT_HEADERS),
            **kwargs,
        )

    def _store_sign_in(self, data: Any) -> Identity:
        if not isinstance(data, dict):
            raise BackendError("Sign-in returned invalid data.")
        uid = _read_token(data, "localId")
        email = data.get("email")
        if not isinstance(email, str) or not email:
            raise BackendError("Sign-in response is missing the email.")
        self._id_token = _read_token(data, "idToken")
        self._refresh_token = _read_token(data, "refreshToken")
        self._expires_at = _expiry(data.get("expiresIn"))
        identity = Identity(uid=uid, email=email)
        self._set_current_user(identity)
        return identity

    def _error_for_status(self, status: int, payload: Any) -> EVChargeNetError:
        message = error_message(payload)
        if status == 400 and message:
            code = message.split(":", 1)[0].strip()
            if code in AUTH_VALIDATION_ERRORS:
                return ValidationError("Email or password is invalid.", detail=message)
            if code in AUTH_ERROR_CODES:
                return AuthError(
                    "Authentication failed.",
                    error_code=AUTH_ERROR_CODES[code],
                    detail=message,
                )
        return super()._error_for_status(status, payload)


def _read_token(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise BackendError(f"Authentication response is missing {key}.")
    return value


def _expiry(value: Any) -> datetime | None:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return utc_now() + timedelta(seconds=seconds)
