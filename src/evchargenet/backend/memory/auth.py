"""In-memory identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
from passlib.context import CryptContext

from ...exceptions import AuthError
from ...models import Identity
from ...util import new_document_id
from ..base import BaseIdentityProvider
from ..loader import BackendManifest
from .const import MIN_PASSWORD_LENGTH, PASSWORD_SCHEMES

_LOGGER = logging.getLogger(__name__)

_PASSWORD_CONTEXT = CryptContext(schemes=list(PASSWORD_SCHEMES), deprecated="auto")


@dataclass(frozen=True, slots=True)
class _Account:
    uid: str
    email: str
    password_hash: str


class IdentityProvider(BaseIdentityProvider):
    """Email and password accounts held in process memory."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, manifest, **kwargs)
        self._accounts: dict[str, _Account] = {}

    async def sign_up(self, email: str, password: str) -> Identity:
        normalized = self._validate_credentials(email, password)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters.",
                error_code="weak_password",
            )
        if normalized in self._accounts:
            raise AuthError("An account already exists for this email.", error_code="email_exists")
        account = _Account(
            uid=new_document_id(),
            email=normalized,
            password_hash=_PASSWORD_CONTEXT.hash(password),
        )
        self._accounts[normalized] = account
        _LOGGER.debug("Identity provider %s created account %s", self._manifest.id, account.uid)
        identity = Identity(uid=account.uid, email=account.email)
        self._set_current_user(identity)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        normalized = self._validate_credentials(email, password)
        account = self._accounts.get(normalized)
        if account is None or not _PASSWORD_CONTEXT.verify(password, account.password_hash):
            raise AuthError("Invalid email or password.", error_code="invalid_credentials")
        identity = Identity(uid=account.uid, email=account.email)
        self._set_current_user(identity)
        return identity
