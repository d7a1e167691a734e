"""HTTP transport for EWS SOAP requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import TransportError
from .protocol import (
    DEFAULT_SERVER_VERSION,
    EWSRequest,
    EWSResponse,
    build_envelope,
    operation_for,
    parse_response,
)
from .session import ImpersonationSession

logger = logging.getLogger("ews-calendar")

REQUEST_TIMEOUT = 30.0
CONTENT_TYPE = "text/xml; charset=utf-8"


@dataclass(frozen=True)
class BasicCredentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicCredentials(username={self.username!r}, password='***')"


class EWSTransport:
    """Executes one EWS operation per call as a single HTTP POST.

    Direct mode authenticates with ``credentials`` (HTTP Basic). Impersonated
    mode takes a bearer token from ``session`` and adds the impersonation
    header for the target mailbox. Nothing is retried.
    """

    def __init__(
        self,
        url: str,
        *,
        credentials: BasicCredentials | None = None,
        session: ImpersonationSession | None = None,
        server_version: str = DEFAULT_SERVER_VERSION,
        http_client: httpx.Client | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if (credentials is None) == (session is None):
            raise ValueError("Exactly one of 'credentials' or 'session' is required")
        self._url = url
        self._credentials = credentials
        self._session = session
        self._server_version = server_version
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=timeout)

    @property
    def impersonated(self) -> bool:
        return self._session is not None

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> "EWSTransport":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _auth(self) -> tuple[dict[str, str], httpx.Auth | None]:
        if self._session is not None:
            return {"Authorization": f"Bearer {self._session.get_token()}"}, None
        assert self._credentials is not None
        return {}, httpx.BasicAuth(self._credentials.username, self._credentials.password)

    def execute(self, request: EWSRequest, target_mailbox: str | None = None) -> EWSResponse:
        """Send ``request`` and return the response variant of the same kind.

        ``target_mailbox`` is required in impersonated mode and ignored otherwise.
        """
        op = operation_for(request)
        if self.impersonated and not target_mailbox:
            raise ValueError("Impersonated requests need a target mailbox address")

        payload = build_envelope(
            request,
            server_version=self._server_version,
            impersonate=target_mailbox if self.impersonated else None,
        )
        auth_headers, auth = self._auth()
        headers = {
            "Content-Type": CONTENT_TYPE,
            "SOAPAction": op.soap_action,
            **auth_headers,
        }

        logger.debug("EWS %s -> %s", op.name, self._url)
        try:
            response = self._http_client.post(self._url, content=payload, headers=headers, auth=auth)
        except httpx.HTTPError as exc:
            logger.warning("EWS %s request failed: %s", op.name, exc)
            raise TransportError(None, message=f"Error sending EWS {op.name} request: {exc}") from exc

        if response.status_code != 200:
            logger.warning("EWS %s returned HTTP %d", op.name, response.status_code)
            raise TransportError(response.status_code, response.text)

        return parse_response(request, response.content)
