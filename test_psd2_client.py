"""
PSD2 Connector Tests

HTTP client retry/error mapping with the transport patched out, and the
connector's mapping of NextGenPSD2 documents to normalized refs.
"""

import asyncio
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from connectors.bank_base import (
    BankApiError,
    BankConfig,
    BankConsentStatus,
    BankNotFoundError,
    BankRateLimitError,
    BankUnauthorizedError,
    BankValidationError,
    ConsentPayload,
    PaymentPayload,
    create_connector,
)
from connectors.psd2.psd2_client import (
    DEFAULT_RETRY_AFTER_SECONDS,
    Psd2ApiClient,
    Psd2ApiConfig,
    RetryConfig,
    parse_retry_after,
)
from connectors.psd2.psd2_connector import Psd2Connector


def _response(status: int, body=None, headers=None):
    text = json.dumps(body) if isinstance(body, (dict, list)) else (body or "")
    return status, headers or {}, text


def _tpp_error(code: str) -> dict:
    return {"tppMessages": [{"category": "ERROR", "code": code}]}


@pytest.fixture
def auth_provider():
    provider = MagicMock()
    provider.get_authorization_header = AsyncMock(return_value="Bearer tpp-token")
    return provider


@pytest.fixture
def on_retry():
    return MagicMock()


@pytest.fixture
def client(auth_provider, on_retry):
    config = Psd2ApiConfig(
        base_url="https://bank.example/",
        retry_config=RetryConfig(max_retries=2, base_delay=0.0),
        redirect_uri="https://app.example/sca-done",
    )
    return Psd2ApiClient(auth_provider, config, on_retry=on_retry)


def _run(coro):
    return asyncio.run(coro)


class TestPsd2ApiClient:

    def test_success_sends_psd2_headers(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(200, {"accounts": []}))) as send:
            result = _run(client.get("/v1/accounts", consent_id="consent-1"))

        assert result == {"accounts": []}
        method, url, headers = send.call_args.args[:3]
        assert (method, url) == ("GET", "https://bank.example/v1/accounts")
        assert headers["Consent-ID"] == "consent-1"
        assert headers["Authorization"] == "Bearer tpp-token"
        assert headers["X-Request-ID"]
        assert "TPP-Redirect-URI" not in headers

    def test_post_carries_redirect_uri(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(201, {"consentId": "c"}))) as send:
            _run(client.post("/v1/consents", {"access": {}}))

        headers = send.call_args.args[2]
        assert headers["TPP-Redirect-URI"] == "https://app.example/sca-done"

    def test_no_content(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(204))):
            assert _run(client.delete("/v1/consents/c")) == {}

    def test_server_error_retried(self, client, on_retry):
        responses = [_response(503, "unavailable"), _response(200, {"ok": True})]
        with patch.object(client, "_send", AsyncMock(side_effect=responses)) as send:
            assert _run(client.get("/v1/accounts")) == {"ok": True}

        assert send.await_count == 2
        on_retry.assert_called_once()

    def test_server_error_exhausts_retries(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(502, "bad gateway"))) as send:
            with pytest.raises(BankApiError) as exc_info:
                _run(client.get("/v1/accounts"))

        assert send.await_count == 3
        assert exc_info.value.status_code == 502

    def test_network_error_retried(self, client):
        responses = [aiohttp.ClientConnectionError("reset"), _response(200, {"ok": True})]
        with patch.object(client, "_send", AsyncMock(side_effect=responses)):
            assert _run(client.get("/v1/accounts")) == {"ok": True}

    def test_401_refreshes_token_once(self, client, auth_provider):
        with patch.object(client, "_send", AsyncMock(return_value=_response(401, "unauthorized"))) as send:
            with pytest.raises(BankUnauthorizedError):
                _run(client.get("/v1/accounts", consent_id="consent-1"))

        assert send.await_count == 2
        auth_provider.invalidate.assert_called_once()

    @pytest.mark.parametrize("code", ["CONSENT_EXPIRED", "CONSENT_INVALID"])
    def test_consent_errors_are_unauthorized(self, client, auth_provider, code):
        with patch.object(client, "_send", AsyncMock(return_value=_response(401, _tpp_error(code)))) as send:
            with pytest.raises(BankUnauthorizedError):
                _run(client.get("/v1/accounts", consent_id="consent-1"))

        assert send.await_count == 1
        auth_provider.invalidate.assert_not_called()

    def test_rate_limit_carries_retry_after(self, client):
        response = _response(429, _tpp_error("ACCESS_EXCEEDED"), {"Retry-After": "300"})
        with patch.object(client, "_send", AsyncMock(return_value=response)):
            with pytest.raises(BankRateLimitError) as exc_info:
                _run(client.get("/v1/accounts/a/transactions"))

        assert exc_info.value.retry_after == 300

    def test_rate_limit_with_http_date_retry_after(self, client):
        response = _response(429, "", {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        with patch.object(client, "_send", AsyncMock(return_value=response)):
            with pytest.raises(BankRateLimitError) as exc_info:
                _run(client.get("/v1/accounts/a/transactions"))

        assert exc_info.value.retry_after == 0

    @pytest.mark.parametrize("value, expected", [
        ("120", 120),
        ("Mon, 10 Mar 2025 09:32:00 GMT", 120),
        ("Mon, 10 Mar 2025 09:00:00 GMT", 0),
        ("soon", DEFAULT_RETRY_AFTER_SECONDS),
        ("", DEFAULT_RETRY_AFTER_SECONDS),
        (None, DEFAULT_RETRY_AFTER_SECONDS),
    ])
    def test_parse_retry_after(self, value, expected):
        now = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)

        assert parse_retry_after(value, now=now) == expected

    def test_non_json_success_body(self, client):
        response = _response(200, "<html>maintenance</html>")
        with patch.object(client, "_send", AsyncMock(return_value=response)):
            with pytest.raises(BankApiError) as exc_info:
                _run(client.get("/v1/accounts"))

        assert exc_info.value.status_code == 200
        assert exc_info.value.response_body == "<html>maintenance</html>"

    def test_not_found(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(404, "missing"))):
            with pytest.raises(BankNotFoundError):
                _run(client.get("/v1/consents/c/status"))

    def test_validation_error(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(400, _tpp_error("FORMAT_ERROR")))):
            with pytest.raises(BankValidationError):
                _run(client.post("/v1/consents", {}))

    def test_absolute_pagination_link(self, client):
        with patch.object(client, "_send", AsyncMock(return_value=_response(200, {}))) as send:
            _run(client.get("https://bank.example/v1/accounts/a/transactions?page=2"))

        assert send.call_args.args[1] == "https://bank.example/v1/accounts/a/transactions?page=2"


@pytest.fixture
def psd2_connector():
    config = BankConfig(
        connector_type="psd2",
        api_url="https://bank.example",
        client_id="tpp-client",
        client_secret="tpp-secret",
    )
    return create_connector(config)


def _transaction(transaction_id, amount, booking_date, **extra):
    tx = {
        "transactionId": transaction_id,
        "bookingDate": booking_date,
        "transactionAmount": {"currency": "EUR", "amount": amount},
    }
    tx.update(extra)
    return tx


class TestPsd2Connector:

    def test_factory_registers_psd2(self, psd2_connector):
        assert isinstance(psd2_connector, Psd2Connector)
        assert psd2_connector.get_connector_name() == "psd2"

    def test_create_consent(self, psd2_connector):
        body = {
            "consentId": "consent-9",
            "consentStatus": "received",
            "_links": {"scaRedirect": {"href": "https://bank.example/sca/9"}},
        }
        payload = ConsentPayload(access={"allPsd2": "allAccounts"}, valid_until=date(2025, 6, 8))
        with patch.object(psd2_connector.api_client, "post", AsyncMock(return_value=body)) as post:
            consent = _run(psd2_connector.create_consent(payload))

        assert consent.consent_id == "consent-9"
        assert consent.status == BankConsentStatus.RECEIVED
        assert consent.sca_redirect_url == "https://bank.example/sca/9"
        sent = post.call_args.args[1]
        assert sent["validUntil"] == "2025-06-08"
        assert sent["frequencyPerDay"] == 4

    def test_balances_prefer_closing_booked_and_interim_available(self, psd2_connector):
        body = {"balances": [
            {"balanceType": "interimAvailable", "balanceAmount": {"currency": "EUR", "amount": "980.10"}},
            {"balanceType": "closingBooked", "balanceAmount": {"currency": "EUR", "amount": "1000.00"},
             "referenceDate": "2025-03-09"},
        ]}
        with patch.object(psd2_connector.api_client, "get", AsyncMock(return_value=body)):
            balance = _run(psd2_connector.get_balances("consent-1", "acc-1"))

        assert balance.balance == Decimal("1000.00")
        assert balance.available_balance == Decimal("980.10")
        assert balance.reference_date == date(2025, 3, 9)

    def test_transactions_follow_next_links(self, psd2_connector):
        first_page = {"transactions": {
            "booked": [_transaction("t1", "-84.20", "2025-03-03", creditorName="Endesa",
                                    creditorAccount={"iban": "ES7620770024003102575766"},
                                    remittanceInformationUnstructured="RECIBO LUZ")],
            "pending": [{"transactionAmount": {"currency": "EUR", "amount": "-12.50"}, "valueDate": "2025-03-09"}],
            "_links": {"next": {"href": "https://bank.example/v1/accounts/acc-1/transactions?page=2"}},
        }}
        second_page = {"transactions": {
            "booked": [_transaction("t2", "1200.00", "2025-03-05", debtorName="Cliente SL")],
        }}
        get = AsyncMock(side_effect=[first_page, second_page])
        with patch.object(psd2_connector.api_client, "get", get):
            refs = _run(psd2_connector.get_transactions("consent-1", "acc-1", date(2025, 3, 1), date(2025, 3, 10)))

        assert [r.external_id for r in refs] == ["t1", None, "t2"]
        debit, pending, credit = refs
        assert debit.counterparty_name == "Endesa"
        assert debit.counterparty_account == "ES7620770024003102575766"
        assert debit.description == "RECIBO LUZ"
        assert pending.pending and pending.transaction_date == date(2025, 3, 9)
        assert credit.counterparty_name == "Cliente SL"

        first_call, second_call = get.call_args_list
        assert first_call.kwargs["params"] == {"dateFrom": "2025-03-01", "bookingStatus": "both", "dateTo": "2025-03-10"}
        assert second_call.args[0].endswith("page=2")
        assert second_call.kwargs["params"] is None

    def test_initiate_payment(self, psd2_connector):
        body = {"paymentId": "pay-7", "transactionStatus": "RCVD",
                "_links": {"scaRedirect": {"href": "https://bank.example/sca/pay-7"}}}
        payload = PaymentPayload(
            debtor_iban="ES9121000418450200051332",
            creditor_name="Proveedor SL",
            creditor_iban="ES7620770024003102575766",
            amount=Decimal("121"),
            description="Factura F-2025-001",
        )
        with patch.object(psd2_connector.api_client, "post", AsyncMock(return_value=body)) as post:
            payment = _run(psd2_connector.initiate_payment("consent-1", payload))

        assert payment.payment_id == "pay-7"
        assert payment.sca_redirect_url == "https://bank.example/sca/pay-7"
        sent = post.call_args.args[1]
        assert sent["instructedAmount"] == {"currency": "EUR", "amount": "121.00"}
        assert sent["creditorAccount"] == {"iban": "ES7620770024003102575766"}

    def test_malformed_document_is_a_bank_error(self, psd2_connector):
        with patch.object(psd2_connector.api_client, "get", AsyncMock(return_value={"balances": "x"})):
            with pytest.raises(BankApiError, match="Psd2BalancesResponse"):
                _run(psd2_connector.get_balances("consent-1", "acc-1"))

    def test_unknown_consent_status_is_a_bank_error(self, psd2_connector):
        with patch.object(psd2_connector.api_client, "get", AsyncMock(return_value={"consentStatus": "frozen"})):
            with pytest.raises(BankApiError, match="frozen"):
                _run(psd2_connector.get_consent_status("consent-1"))

    def test_endless_pagination_fails_instead_of_truncating(self, psd2_connector):
        page = {"transactions": {
            "booked": [_transaction("t1", "-1.00", "2025-03-03")],
            "_links": {"next": {"href": "https://bank.example/v1/accounts/acc-1/transactions?page=next"}},
        }}
        get = AsyncMock(return_value=page)
        with patch("connectors.psd2.psd2_connector.MAX_TRANSACTION_PAGES", 2):
            with patch.object(psd2_connector.api_client, "get", get):
                with pytest.raises(BankApiError, match="still paginating"):
                    _run(psd2_connector.get_transactions("consent-1", "acc-1", date(2025, 3, 1)))

        assert get.await_count == 2
