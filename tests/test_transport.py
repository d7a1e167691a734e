"""Tests for the EWS HTTP transport."""

import base64

import httpx
import pytest
from lxml import etree

from ews_calendar.errors import ProtocolError, TokenAcquisitionError, TransportError
from ews_calendar.models import ItemIdentity
from ews_calendar.protocol import NSMAP, DeleteItemRequest, DeleteItemResponse, FindItemRequest
from ews_calendar.transport import BasicCredentials, EWSTransport

URL = "https://ews.example.com/EWS/Exchange.asmx"

DELETE_OK = b"""<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"
            xmlns:m="http://schemas.microsoft.com/exchange/services/2006/messages">
  <s:Body>
    <m:DeleteItemResponse>
      <m:ResponseMessages>
        <m:DeleteItemResponseMessage ResponseClass="Success">
          <m:ResponseCode>NoError</m:ResponseCode>
        </m:DeleteItemResponseMessage>
      </m:ResponseMessages>
    </m:DeleteItemResponse>
  </s:Body>
</s:Envelope>"""


class _Recorder:
    """httpx.MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code: int = 200, content: bytes = DELETE_OK, exc: Exception | None = None):
        self.status_code = status_code
        self.content = content
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, content=self.content)


class _FakeSession:
    def __init__(self, token: str = "tok-1", exc: Exception | None = None):
        self.token = token
        self.exc = exc
        self.calls = 0

    def get_token(self) -> str:
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.token


def _make_direct(recorder: _Recorder) -> EWSTransport:
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return EWSTransport(URL, credentials=BasicCredentials("svc", "s3cret"), http_client=client)


def _make_impersonated(recorder: _Recorder, session: _FakeSession) -> EWSTransport:
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return EWSTransport(URL, session=session, http_client=client)


def _delete() -> DeleteItemRequest:
    return DeleteItemRequest([ItemIdentity("AAMk1", "CK1")])


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_requires_exactly_one_auth_source(self):
        with pytest.raises(ValueError):
            EWSTransport(URL)
        with pytest.raises(ValueError):
            EWSTransport(URL, credentials=BasicCredentials("a", "b"), session=_FakeSession())

    def test_credentials_repr_hides_password(self):
        assert "s3cret" not in repr(BasicCredentials("svc", "s3cret"))

    def test_context_manager_closes_owned_client(self):
        with EWSTransport(URL, credentials=BasicCredentials("a", "b")) as transport:
            assert transport.impersonated is False
        assert transport._http_client.is_closed

    def test_injected_client_left_open(self):
        client = httpx.Client(transport=httpx.MockTransport(_Recorder()))
        EWSTransport(URL, credentials=BasicCredentials("a", "b"), http_client=client).close()
        assert not client.is_closed


# ---------------------------------------------------------------------------
# Direct mode
# ---------------------------------------------------------------------------

class TestDirect:
    def test_headers_and_basic_auth(self):
        recorder = _Recorder()
        resp = _make_direct(recorder).execute(_delete())

        assert resp == DeleteItemResponse("Success", "NoError")
        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert request.headers["Content-Type"] == "text/xml; charset=utf-8"
        assert request.headers["SOAPAction"] == (
            "http://schemas.microsoft.com/exchange/services/2006/messages/DeleteItem"
        )
        expected = base64.b64encode(b"svc:s3cret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_no_impersonation_header(self):
        recorder = _Recorder()
        _make_direct(recorder).execute(_delete(), target_mailbox="ignored@example.com")
        root = etree.fromstring(recorder.requests[0].content)
        assert root.find("s:Header/t:ExchangeImpersonation", NSMAP) is None

    def test_http_500(self):
        recorder = _Recorder(status_code=500, content=b"Internal Server Error")
        with pytest.raises(TransportError) as exc_info:
            _make_direct(recorder).execute(_delete())
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "Internal Server Error"
        assert "500" in str(exc_info.value)
        assert len(recorder.requests) == 1

    def test_http_401(self):
        recorder = _Recorder(status_code=401, content=b"")
        with pytest.raises(TransportError) as exc_info:
            _make_direct(recorder).execute(_delete())
        assert exc_info.value.status_code == 401

    def test_network_error(self):
        recorder = _Recorder(exc=httpx.ConnectError("connection refused"))
        with pytest.raises(TransportError) as exc_info:
            _make_direct(recorder).execute(_delete())
        assert exc_info.value.status_code is None
        assert "connection refused" in str(exc_info.value)
        assert len(recorder.requests) == 1

    def test_malformed_body(self):
        recorder = _Recorder(content=b"<html>login</html")
        with pytest.raises(ProtocolError):
            _make_direct(recorder).execute(_delete())

    def test_unsupported_request_sends_nothing(self):
        recorder = _Recorder()
        with pytest.raises(ProtocolError):
            _make_direct(recorder).execute("GetFolder")
        assert recorder.requests == []


# ---------------------------------------------------------------------------
# Impersonated mode
# ---------------------------------------------------------------------------

class TestImpersonated:
    def test_bearer_and_impersonation_header(self):
        recorder = _Recorder()
        session = _FakeSession("tok-abc")
        _make_impersonated(recorder, session).execute(_delete(), target_mailbox="ops@example.com")

        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer tok-abc"
        root = etree.fromstring(request.content)
        address = root.findtext(
            "s:Header/t:ExchangeImpersonation/t:ConnectingSID/t:PrimarySmtpAddress", namespaces=NSMAP
        )
        assert address == "ops@example.com"
        assert session.calls == 1

    def test_token_fetched_per_request(self):
        recorder = _Recorder()
        session = _FakeSession()
        transport = _make_impersonated(recorder, session)
        transport.execute(_delete(), target_mailbox="ops@example.com")
        transport.execute(_delete(), target_mailbox="ops@example.com")
        assert session.calls == 2

    def test_missing_target(self):
        recorder = _Recorder()
        session = _FakeSession()
        with pytest.raises(ValueError, match="target mailbox"):
            _make_impersonated(recorder, session).execute(FindItemRequest("a", "b"))
        assert recorder.requests == []
        assert session.calls == 0

    def test_token_failure_sends_nothing(self):
        recorder = _Recorder()
        session = _FakeSession(exc=TokenAcquisitionError("denied"))
        with pytest.raises(TokenAcquisitionError):
            _make_impersonated(recorder, session).execute(_delete(), target_mailbox="ops@example.com")
        assert recorder.requests == []
