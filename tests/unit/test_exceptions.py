"""Tests unitaires pour shared/exceptions.py - taxonomie des erreurs du routeur."""
import pytest

from shared.exceptions import (
    AggregationFailure,
    CircuitOpenError,
    ConfigurationError,
    ErrorCode,
    ExchangeRouterException,
    InvalidDataError,
    PolicyViolationError,
    RpcResponseError,
    StoreFullError,
    TransientFetchError,
    UpstreamStalenessError,
    classify_fetch_error,
    is_staleness_message,
    rpc_error_from_payload,
)


class TestHierarchy:
    @pytest.mark.parametrize("exc", [
        ConfigurationError("bad", config_key="rpc.url"),
        TransientFetchError("timeout"),
        UpstreamStalenessError("stale"),
        RpcResponseError("reverted"),
        InvalidDataError("zero"),
        PolicyViolationError("disabled"),
        AggregationFailure("batch"),
        StoreFullError("k", 10, 5),
    ])
    def test_all_inherit_base(self, exc):
        assert isinstance(exc, ExchangeRouterException)
        assert exc.error_code is not None

    def test_circuit_open_is_transient(self):
        exc = CircuitOpenError("rpc", 12.4)
        assert isinstance(exc, TransientFetchError)
        assert exc.error_code == ErrorCode.CIRCUIT_OPEN
        assert exc.details["circuit"] == "rpc"
        assert "recovery in 12s" in exc.message

    def test_to_dict(self):
        exc = PolicyViolationError("Minting disabled", operation="mint")
        assert exc.to_dict() == {
            "error": "PolicyViolationError",
            "code": "POLICY_VIOLATION",
            "message": "Minting disabled",
            "details": {"operation": "mint"},
        }

    def test_store_full_details(self):
        exc = StoreFullError("cache:x", 2048, 1024)
        assert exc.details == {"key": "cache:x", "size": 2048, "limit": 1024}
        assert exc.error_code == ErrorCode.STORE_FULL

    def test_cause_kept(self):
        cause = OSError("boom")
        exc = TransientFetchError("wrapped", cause=cause)
        assert exc.cause is cause


class TestStalenessClassification:
    @pytest.mark.parametrize("text", [
        "Stale price from Chainlink",
        "ORACLE answer too old",
        "price feed not updated",
    ])
    def test_staleness_messages(self, text):
        assert is_staleness_message(text) is True

    def test_other_messages(self):
        assert is_staleness_message("execution reverted") is False
        assert is_staleness_message(None) is False

    def test_classify_upstream(self):
        assert classify_fetch_error(UpstreamStalenessError("x")) == ErrorCode.UPSTREAM_STALE
        assert classify_fetch_error(RuntimeError("stale oracle")) == ErrorCode.UPSTREAM_STALE

    def test_classify_known_code(self):
        assert classify_fetch_error(InvalidDataError("zero")) == ErrorCode.DATA_INVALID
        assert classify_fetch_error(CircuitOpenError("rpc")) == ErrorCode.CIRCUIT_OPEN

    def test_classify_unknown_is_transient(self):
        assert classify_fetch_error(ConnectionError("reset")) == ErrorCode.TRANSIENT_FETCH
        assert classify_fetch_error(KeyError("x")) == ErrorCode.TRANSIENT_FETCH


class TestRpcErrorPayload:
    def test_plain_error(self):
        exc = rpc_error_from_payload({"code": 3, "message": "execution reverted"}, "eth_call")
        assert isinstance(exc, RpcResponseError)
        assert exc.rpc_code == 3
        assert exc.details["method"] == "eth_call"

    def test_stale_error(self):
        exc = rpc_error_from_payload({"code": -32000, "message": "Stale Stable/USD data"}, "eth_call")
        assert isinstance(exc, UpstreamStalenessError)

    def test_missing_message(self):
        exc = rpc_error_from_payload({})
        assert exc.message == "Unknown JSON-RPC error"
