"""Bearer-token session for EWS impersonation via AWS WorkMail."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from .errors import MalformedTokenResponseError, TokenAcquisitionError

logger = logging.getLogger("ews-calendar")

# Refresh proactively this long before the token expires.
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)


@runtime_checkable
class IdentityService(Protocol):
    """Exchanges an organization id and role id for an impersonation token.

    Implementations return a mapping with ``Token`` and ``ExpiresIn`` (seconds),
    the shape of the WorkMail AssumeImpersonationRole response.
    """

    def assume_impersonation_role(self, organization_id: str, role_id: str) -> dict[str, Any]: ...


class WorkMailIdentityService:
    """IdentityService backed by the AWS WorkMail API (boto3)."""

    def __init__(self, region: str, client: Any = None):
        self._region = region
        self._client = client  # Lazy init

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        import boto3

        # Credentials come from the default chain (env, shared config, IAM role).
        self._client = boto3.client("workmail", region_name=self._region)
        return self._client

    def assume_impersonation_role(self, organization_id: str, role_id: str) -> dict[str, Any]:
        return self._get_client().assume_impersonation_role(
            OrganizationId=organization_id,
            ImpersonationRoleId=role_id,
        )


class TokenState(str, Enum):
    EMPTY = "empty"
    VALID = "valid"
    EXPIRING = "expiring"
    INVALID = "invalid"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImpersonationSession:
    """Owns the cached impersonation token and its expiry.

    ``get_token`` is the only way in: it returns the cached token while it is
    outside the refresh buffer, otherwise performs a single refresh shared by
    every concurrent caller. A failed refresh never clears a cached token.
    """

    def __init__(
        self,
        identity_service: IdentityService,
        organization_id: str,
        role_id: str,
        refresh_buffer: timedelta = TOKEN_REFRESH_BUFFER,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._identity_service = identity_service
        self._organization_id = organization_id
        self._role_id = role_id
        self._refresh_buffer = refresh_buffer
        self._clock = clock

        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: datetime | None = None
        self._inflight: Future[str] | None = None

    @property
    def state(self) -> TokenState:
        with self._lock:
            if self._token is None or self._expires_at is None:
                return TokenState.EMPTY
            now = self._clock()
            if now < self._expires_at - self._refresh_buffer:
                return TokenState.VALID
            if now < self._expires_at:
                return TokenState.EXPIRING
            return TokenState.INVALID

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    def _token_is_fresh(self) -> bool:
        """Must hold _lock."""
        if self._token is None or self._expires_at is None:
            return False
        return self._clock() < self._expires_at - self._refresh_buffer

    def get_token(self) -> str:
        with self._lock:
            if self._token_is_fresh():
                assert self._token is not None
                return self._token
            inflight = self._inflight
            owner = inflight is None
            if inflight is None:
                inflight = self._inflight = Future()

        if owner:
            try:
                inflight.set_result(self._refresh())
            except BaseException as exc:
                # Handed to every waiter through the future, interrupts included.
                inflight.set_exception(exc)
            finally:
                with self._lock:
                    self._inflight = None
        return inflight.result()

    def _refresh(self) -> str:
        logger.info("Refreshing WorkMail EWS impersonation token...")
        try:
            response = self._identity_service.assume_impersonation_role(
                self._organization_id, self._role_id
            )
        except Exception as exc:
            raise TokenAcquisitionError(f"Failed to assume impersonation role: {exc}") from exc

        token = response.get("Token") if isinstance(response, dict) else None
        expires_in = response.get("ExpiresIn") if isinstance(response, dict) else None
        if not token or expires_in is None:
            raise MalformedTokenResponseError(
                "AssumeImpersonationRole response missing token or expiry"
            )
        try:
            lifetime = timedelta(seconds=int(expires_in))
        except (TypeError, ValueError) as exc:
            raise MalformedTokenResponseError(
                f"AssumeImpersonationRole returned an invalid expiry: {expires_in!r}"
            ) from exc

        expires_at = self._clock() + lifetime
        with self._lock:
            self._token = token
            self._expires_at = expires_at
        logger.info("Successfully refreshed EWS token. Expires at: %s", expires_at.isoformat())
        return token
