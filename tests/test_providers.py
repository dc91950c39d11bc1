"""Tests for the stub provider, provider selection and callback parsing."""

import pytest

from shop4me.config import MpesaConfig
from shop4me.errors import CallbackPayloadError
from shop4me.providers import (
    DarajaClient,
    MpesaStubProvider,
    StkPushRequest,
    build_provider,
    parse_stk_callback,
)


def make_request(**overrides) -> StkPushRequest:
    values = {
        "order_id": "order-1",
        "phone": "254712345678",
        "amount_minor": 100000,
        "account_reference": "SHOP4ME-order-1",
        "transaction_desc": "Shop4Me Order order-1",
    }
    values.update(overrides)
    return StkPushRequest(**values)


class TestMpesaStubProvider:
    """Test stub provider."""

    async def test_accepts_and_records_request(self):
        provider = MpesaStubProvider()
        request = make_request()

        result = await provider.request_payment(request)

        assert result.accepted is True
        assert result.checkout_request_id.startswith("ws_CO_")
        assert result.merchant_request_id
        assert result.response_code == "0"
        assert provider.requests == [request]

    async def test_ids_are_unique_per_request(self):
        provider = MpesaStubProvider()
        first = await provider.request_payment(make_request())
        second = await provider.request_payment(make_request())
        assert first.checkout_request_id != second.checkout_request_id

    async def test_reject_with(self):
        provider = MpesaStubProvider(reject_with=("1032", "Request cancelled by user"))

        result = await provider.request_payment(make_request())

        assert result.accepted is False
        assert result.error_code == "1032"
        assert result.error_message == "Request cancelled by user"

    async def test_success_callback_round_trips_through_parser(self):
        provider = MpesaStubProvider()
        result = await provider.request_payment(make_request())

        payload = provider.build_callback(result.checkout_request_id, receipt="NLJ7RT61SV")
        callback = parse_stk_callback(payload)

        assert callback.succeeded is True
        assert callback.checkout_request_id == result.checkout_request_id
        assert callback.merchant_request_id == result.merchant_request_id
        assert callback.receipt_number == "NLJ7RT61SV"
        assert callback.amount_minor == 100000
        assert callback.metadata["PhoneNumber"] == 254712345678

    async def test_failure_callback_has_no_metadata(self):
        provider = MpesaStubProvider()
        result = await provider.request_payment(make_request())

        callback = parse_stk_callback(
            provider.build_callback(result.checkout_request_id, result_code=1032)
        )

        assert callback.succeeded is False
        assert callback.result_desc == "Request cancelled by user"
        assert callback.metadata == {}


class TestParseStkCallback:
    def test_parses_metadata_by_name(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": "ws_CO_191220191020363925",
                    "ResultCode": 0,
                    "ResultDesc": "The service request is processed successfully.",
                    "CallbackMetadata": {
                        "Item": [
                            {"Name": "TransactionDate", "Value": 20191219102115},
                            {"Name": "Amount", "Value": 100},
                            {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                            {"Name": "Balance"},
                        ]
                    },
                }
            }
        }

        callback = parse_stk_callback(payload)

        assert callback.amount_minor == 100
        assert callback.receipt_number == "NLJ7RT61SV"
        assert callback.metadata["Balance"] is None

    def test_result_code_as_string(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "m",
                    "CheckoutRequestID": "c",
                    "ResultCode": "1032",
                    "ResultDesc": "Request cancelled by user",
                }
            }
        }
        assert parse_stk_callback(payload).result_code == 1032

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {},
            {"Body": {}},
            {"Body": {"stkCallback": "nope"}},
            {"Body": {"stkCallback": {"CheckoutRequestID": "c", "ResultCode": 0}}},
            {"Body": {"stkCallback": {"MerchantRequestID": "m", "ResultCode": 0}}},
            {"Body": {"stkCallback": {"MerchantRequestID": "m", "CheckoutRequestID": "c"}}},
        ],
    )
    def test_structurally_invalid(self, payload):
        with pytest.raises(CallbackPayloadError):
            parse_stk_callback(payload)


class TestBuildProvider:
    def test_stub_environment(self):
        assert isinstance(build_provider(MpesaConfig(environment="stub")), MpesaStubProvider)

    def test_sandbox_environment(self):
        provider = build_provider(MpesaConfig(environment="sandbox"))
        assert isinstance(provider, DarajaClient)
        assert provider.provider_name == "mpesa_daraja"
