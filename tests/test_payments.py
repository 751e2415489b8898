import pytest
import requests

from errors import UpstreamError
from payments import PortOneClient


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    def __init__(self, token_response, payment_response=None):
        self.token_response = token_response
        self.payment_response = payment_response
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(("POST", url, json, None, timeout))
        if isinstance(self.token_response, Exception):
            raise self.token_response
        return self.token_response

    def get(self, url, headers=None, timeout=None):
        self.requests.append(("GET", url, None, headers, timeout))
        return self.payment_response


TOKEN = FakeResponse(body={"code": 0, "response": {"access_token": "tok-1"}})


def make_client(session):
    return PortOneClient("https://api.iamport.kr/", "key", "secret", timeout=5, session=session)


def test_fetch_payment_returns_gateway_verdict():
    payment = FakeResponse(
        body={"code": 0, "response": {"imp_uid": "imp_1", "merchant_uid": "m_1", "status": "paid", "amount": 43000}}
    )
    session = FakeSession(TOKEN, payment)

    verification = make_client(session).fetch_payment("imp_1")
    assert verification.is_paid
    assert verification.amount == 43000
    assert verification.merchant_uid == "m_1"

    token_call, payment_call = session.requests
    assert token_call[1] == "https://api.iamport.kr/users/getToken"
    assert token_call[2] == {"imp_key": "key", "imp_secret": "secret"}
    assert payment_call[1] == "https://api.iamport.kr/payments/imp_1"
    assert payment_call[3] == {"Authorization": "Bearer tok-1"}
    assert all(call[4] == 5 for call in session.requests)


def test_unpaid_status_is_reported_not_raised():
    payment = FakeResponse(body={"response": {"imp_uid": "imp_2", "status": "ready", "amount": 1000}})
    verification = make_client(FakeSession(TOKEN, payment)).fetch_payment("imp_2")
    assert verification.status == "ready"
    assert not verification.is_paid


def test_gateway_rejection_is_a_client_error():
    payment = FakeResponse(404, {"code": -1, "message": "No such payment"})
    with pytest.raises(UpstreamError) as exc:
        make_client(FakeSession(TOKEN, payment)).fetch_payment("imp_missing")
    assert exc.value.status_code == 400
    assert "No such payment" in exc.value.message


def test_unreachable_gateway_is_a_server_error():
    session = FakeSession(requests.ConnectionError("connection refused"))
    with pytest.raises(UpstreamError) as exc:
        make_client(session).fetch_payment("imp_3")
    assert exc.value.status_code == 500


def test_missing_access_token():
    session = FakeSession(FakeResponse(body={"code": -1, "response": None}))
    with pytest.raises(UpstreamError) as exc:
        make_client(session).fetch_payment("imp_4")
    assert exc.value.status_code == 500
    assert len(session.requests) == 1


def test_empty_payment_response():
    session = FakeSession(TOKEN, FakeResponse(body={"code": 1, "response": None}))
    with pytest.raises(UpstreamError) as exc:
        make_client(session).fetch_payment("imp_5")
    assert exc.value.status_code == 500


@pytest.mark.parametrize("body", [["unexpected"], "ok", 42])
def test_non_object_payment_reply_is_an_upstream_error(body):
    session = FakeSession(TOKEN, FakeResponse(body=body))
    with pytest.raises(UpstreamError) as exc:
        make_client(session).fetch_payment("imp_6")
    assert exc.value.status_code == 500


def test_non_object_token_reply_is_an_upstream_error():
    session = FakeSession(FakeResponse(body=[{"access_token": "tok"}]))
    with pytest.raises(UpstreamError) as exc:
        make_client(session).fetch_payment("imp_7")
    assert exc.value.status_code == 500
    assert len(session.requests) == 1


def test_non_object_error_reply_keeps_the_rejection():
    payment = FakeResponse(400, ["bad request"])
    with pytest.raises(UpstreamError) as exc:
        make_client(FakeSession(TOKEN, payment)).fetch_payment("imp_8")
    assert exc.value.status_code == 400
