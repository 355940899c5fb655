"""
Test RPC Client with Mocks

Tests for RPC client behavior with mocked HTTP responses.
"""

import base64
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import httpx

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from solana_volume.infra.rate_limiter import RateLimiter, RateLimitProfile
from solana_volume.infra.rpc import RpcClient, RpcClientConfig


def _response(payload=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status = Mock()
    return response


def _result(result):
    return _response({"jsonrpc": "2.0", "id": 1, "result": result})


def _error(code, message, data=None):
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return _response({"jsonrpc": "2.0", "id": 1, "error": error})


def _client(endpoint="https://api.devnet.solana.com", max_retries=2):
    config = RpcClientConfig(timeout_seconds=5.0, max_retries=max_retries, retry_delay_seconds=0.01)
    limiter = RateLimiter(RateLimitProfile("test", min_interval=0.0, max_concurrent=10))
    return RpcClient(endpoint, config=config, rate_limiter=limiter)


def test_rpc_config_defaults():
    """Test RpcClientConfig default values from global config"""
    print("Testing RpcClientConfig defaults...")

    config = RpcClientConfig()

    assert config.timeout_seconds > 0, "Should have positive timeout"
    assert config.max_retries > 0, "Should have positive retries"
    assert config.commitment in ("processed", "confirmed", "finalized"), "Invalid commitment"
    assert config.rate_profile in ("public", "premium")

    print("  RpcClientConfig defaults: PASSED")


def test_rpc_config_invalid():
    """Test RpcClientConfig validation"""
    from solana_volume.errors import ConfigError

    print("Testing RpcClientConfig validation...")

    for kwargs in ({"max_retries": 0}, {"rate_profile": "unlimited"}):
        try:
            RpcClientConfig(**kwargs)
            assert False, f"Should raise for {kwargs}"
        except ConfigError:
            pass

    print("  RpcClientConfig validation: PASSED")


def test_rpc_client_init():
    """Test RpcClient initialization"""
    from solana_volume.errors import ConfigError

    print("Testing RpcClient init...")

    client = _client("https://api.devnet.solana.com")
    assert client.endpoint == "https://api.devnet.solana.com"

    client = _client(["https://primary.example.com", "https://backup.example.com"])
    assert client.endpoint == "https://primary.example.com"

    try:
        RpcClient([])
        assert False, "Should raise for empty endpoints"
    except ConfigError:
        pass

    print("  RpcClient init: PASSED")


def test_rpc_call_success():
    """Test successful RPC call and typed helpers"""
    print("Testing RPC call success...")

    with patch.object(httpx.Client, 'post', return_value=_result({"context": {"slot": 1}, "value": 12345})) as post:
        client = _client()
        assert client.get_balance("Wallet111") == 12345

        body = post.call_args[1]["json"]
        assert body["method"] == "getBalance"
        assert body["params"][0] == "Wallet111"

    print("  RPC call success: PASSED")


def test_rpc_rate_limit_backoff():
    """Test HTTP 429 and JSON-RPC rate limit codes back off and retry"""
    print("Testing rate limit backoff...")

    responses = [_response(status_code=429), _error(-32429, "rate limited"), _result(7)]

    with patch.object(httpx.Client, 'post', side_effect=responses), \
            patch("solana_volume.infra.rpc.time.sleep") as sleep:
        client = _client(max_retries=3)
        assert client.call("getSlot", []) == 7

        delays = [c[0][0] for c in sleep.call_args_list]
        assert delays == [0.01, 0.02], f"Expected exponential backoff, got {delays}"

    print("  Rate limit backoff: PASSED")


def test_rpc_rate_limit_exhausted():
    """Test RateLimitError once every attempt was rate limited"""
    from solana_volume.errors import RateLimitError

    print("Testing rate limit exhaustion...")

    with patch.object(httpx.Client, 'post', return_value=_response(status_code=429)), \
            patch("solana_volume.infra.rpc.time.sleep"):
        client = _client(max_retries=2)
        try:
            client.call("getSlot", [])
            assert False, "Should raise RateLimitError"
        except RateLimitError as e:
            assert e.recoverable

    print("  Rate limit exhaustion: PASSED")


def test_rpc_timeout_and_rotation():
    """Test timeout errors rotate through every endpoint"""
    from solana_volume.errors import ErrorCode, RpcError

    print("Testing timeout and endpoint rotation...")

    with patch.object(httpx.Client, 'post', side_effect=httpx.ReadTimeout("timed out")) as post, \
            patch("solana_volume.infra.rpc.time.sleep"):
        client = _client(["https://primary.example.com", "https://backup.example.com"], max_retries=2)
        try:
            client.call("getSlot", [])
            assert False, "Should raise RpcError"
        except RpcError as e:
            assert e.code == ErrorCode.RPC_TIMEOUT

        urls = [c[0][0] for c in post.call_args_list]
        assert urls == [
            "https://primary.example.com",
            "https://primary.example.com",
            "https://backup.example.com",
            "https://backup.example.com",
        ], urls

    print("  Timeout and rotation: PASSED")


def test_rpc_ledger_errors_classified():
    """Test preflight failures map to typed errors without retrying"""
    from solana_volume.errors import (
        InsufficientBalanceError,
        LedgerRejectionError,
        StaleReferenceError,
        ValidationError,
    )

    print("Testing ledger error classification...")

    cases = [
        (_error(-32002, "Transaction simulation failed", {"err": "BlockhashNotFound", "logs": []}),
         StaleReferenceError),
        (_error(-32002, "Transaction simulation failed",
                {"err": {"InstructionError": [0, {"Custom": 1}]}, "logs": []}),
         InsufficientBalanceError),
        (_error(-32002, "Transaction simulation failed",
                {"err": {"InstructionError": [0, {"Custom": 9}]}, "logs": ["Program log: nope"]}),
         LedgerRejectionError),
        (_error(-32602, "Invalid params: invalid base64"), ValidationError),
    ]

    for response, expected in cases:
        with patch.object(httpx.Client, 'post', return_value=response) as post:
            client = _client()
            try:
                client.send_raw_transaction(b"\x01\x02")
                assert False, f"Should raise {expected.__name__}"
            except expected:
                pass
            assert post.call_count == 1, "Node rejections must not be retried"

    print("  Ledger error classification: PASSED")


def test_send_raw_transaction_encoding():
    """Test transactions are sent base64-encoded"""
    print("Testing sendTransaction encoding...")

    with patch.object(httpx.Client, 'post', return_value=_result("sig111")) as post:
        client = _client()
        signature = client.send_raw_transaction(b"\x01\x02\x03", skip_preflight=True)

        assert signature == "sig111"
        params = post.call_args[1]["json"]["params"]
        assert params[0] == base64.b64encode(b"\x01\x02\x03").decode("ascii")
        assert params[1]["skipPreflight"] is True
        assert params[1]["encoding"] == "base64"

    print("  sendTransaction encoding: PASSED")


def test_block_reference_parse():
    """Test getLatestBlockhash parsing"""
    from solana_volume.types import BlockReference

    print("Testing block reference parsing...")

    payload = {"context": {"slot": 5}, "value": {"blockhash": "Hash111", "lastValidBlockHeight": 300}}
    with patch.object(httpx.Client, 'post', return_value=_result(payload)):
        client = _client()
        assert client.get_latest_block_reference() == BlockReference("Hash111", 300)

    print("  Block reference parsing: PASSED")


def test_signature_statuses():
    """Test getSignatureStatuses parsing with unknown entries"""
    print("Testing signature statuses...")

    payload = {
        "context": {"slot": 10},
        "value": [
            {"slot": 9, "confirmations": 1, "err": None, "confirmationStatus": "confirmed"},
            None,
        ],
    }
    with patch.object(httpx.Client, 'post', return_value=_result(payload)) as post:
        client = _client()
        statuses = client.get_signature_statuses(["sigA", "sigB"], search_history=True)

        assert statuses[0].signature == "sigA"
        assert statuses[0].is_confirmed
        assert statuses[1] is None
        assert post.call_args[1]["json"]["params"][1] == {"searchTransactionHistory": True}

    print("  Signature statuses: PASSED")


def test_confirm_transaction_expired_blockhash():
    """Test polling raises StaleReferenceError once the blockhash expires"""
    from solana_volume.errors import StaleReferenceError
    from solana_volume.types import BlockReference

    print("Testing confirmation with expired blockhash...")

    client = _client()
    with patch.object(client, "get_signature_status", return_value=None), \
            patch.object(client, "get_block_height", return_value=301):
        try:
            client.confirm_transaction("sig1", BlockReference("Hash111", 300), timeout_seconds=5.0)
            assert False, "Should raise StaleReferenceError"
        except StaleReferenceError as e:
            assert e.blockhash == "Hash111"

    print("  Expired blockhash: PASSED")


def test_confirm_transaction_paths():
    """Test confirmed, failed and timed-out polling"""
    from solana_volume.types import SignatureStatus

    print("Testing confirmation paths...")

    client = _client()

    with patch.object(client, "get_signature_status", return_value=SignatureStatus("sig1", "finalized")):
        status = client.confirm_transaction("sig1", commitment="confirmed", timeout_seconds=1.0)
        assert status.is_confirmed

    failed = SignatureStatus("sig1", "processed", err={"InstructionError": [0, {"Custom": 1}]})
    with patch.object(client, "get_signature_status", return_value=failed):
        status = client.confirm_transaction("sig1", timeout_seconds=1.0)
        assert status.is_failed

    with patch.object(client, "get_signature_status", return_value=None) as get_status:
        assert client.confirm_transaction("sig1", timeout_seconds=0) is None
        assert get_status.call_count == 1, "Should check at least once"

    print("  Confirmation paths: PASSED")


def test_priority_fee_samples():
    """Test getRecentPrioritizationFees parsing"""
    print("Testing priority fee samples...")

    payload = [
        {"slot": 100, "prioritizationFee": 0},
        {"slot": 101, "prioritizationFee": 2500},
    ]
    with patch.object(httpx.Client, 'post', return_value=_result(payload)) as post:
        client = _client()
        samples = client.get_recent_priority_fee_samples(["Acc1"])

        assert [(s.slot, s.fee) for s in samples] == [(100, 0), (101, 2500)]
        assert post.call_args[1]["json"]["params"] == [["Acc1"]]

    print("  Priority fee samples: PASSED")


def test_transaction_fee():
    """Test getTransaction fee lookup"""
    print("Testing transaction fee lookup...")

    with patch.object(httpx.Client, 'post', return_value=_result({"meta": {"fee": 5000, "err": None}})):
        assert _client().get_transaction_fee("sig1") == 5000

    with patch.object(httpx.Client, 'post', return_value=_result(None)):
        assert _client().get_transaction_fee("sig1") is None

    print("  Transaction fee lookup: PASSED")


def _mint_account(decimals, owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"):
    data = bytes(44) + bytes([decimals]) + bytes(37)
    return _result({
        "context": {"slot": 1},
        "value": {
            "owner": owner,
            "lamports": 1_461_600,
            "data": [base64.b64encode(data).decode("ascii"), "base64"],
            "executable": False,
        },
    })


def test_mint_decimals_lookup():
    """Test getAccountInfo mint decoding and per-client caching"""
    print("Testing mint decimals lookup...")

    with patch.object(httpx.Client, 'post', return_value=_mint_account(6)) as post:
        client = _client()

        assert client.get_token_decimals("Mint111") == 6
        info = client.get_mint_info("Mint111")
        assert info.token_program == "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
        assert post.call_count == 1, "Mint info must be cached"

        body = post.call_args[1]["json"]
        assert body["method"] == "getAccountInfo"
        assert body["params"][1]["encoding"] == "base64"

    print("  Mint decimals lookup: PASSED")


def test_mint_lookup_errors():
    """Test missing, foreign-owned and truncated mint accounts"""
    from solana_volume.errors import ValidationError

    print("Testing mint lookup errors...")

    missing = _result({"context": {"slot": 1}, "value": None})
    foreign = _mint_account(6, owner="11111111111111111111111111111111")
    truncated = _result({
        "context": {"slot": 1},
        "value": {
            "owner": "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",
            "data": [base64.b64encode(bytes(20)).decode("ascii"), "base64"],
        },
    })

    for response in (missing, foreign, truncated):
        with patch.object(httpx.Client, 'post', return_value=response):
            try:
                _client().get_mint_info("Mint111")
                assert False, "Should raise ValidationError"
            except ValidationError:
                pass

    print("  Mint lookup errors: PASSED")


def test_token_balance_reads_associated_account():
    """Test getTokenAccountsByOwner is filtered to the associated token account"""
    from solders.keypair import Keypair
    from solders.pubkey import Pubkey
    from solana_volume.infra.token import get_associated_token_address

    print("Testing token balance lookup...")

    owner = Keypair().pubkey()
    mint = Keypair().pubkey()
    ata = get_associated_token_address(owner, mint)

    def token_account(pubkey, amount):
        return {
            "pubkey": str(pubkey),
            "account": {
                "data": {"parsed": {"info": {"tokenAmount": {"amount": str(amount), "decimals": 6}}}},
            },
        }

    accounts = _result({
        "context": {"slot": 1},
        "value": [token_account(Pubkey.new_unique(), 999), token_account(ata, 4_200_000)],
    })
    empty = _result({"context": {"slot": 1}, "value": []})

    with patch.object(httpx.Client, 'post', side_effect=[_mint_account(6), accounts, empty]) as post:
        client = _client()

        assert client.get_token_balance(str(owner), str(mint)) == 4_200_000
        params = post.call_args[1]["json"]["params"]
        assert params[0] == str(owner)
        assert params[1] == {"mint": str(mint)}
        assert params[2]["encoding"] == "jsonParsed"

        assert client.get_token_balance(str(owner), str(mint)) == 0

    print("  Token balance lookup: PASSED")


def test_ws_url_from_http():
    """Test websocket URL derivation"""
    from solana_volume.infra.rpc import ws_url_from_http

    print("Testing websocket URL derivation...")

    assert ws_url_from_http("https://api.devnet.solana.com") == "wss://api.devnet.solana.com"
    assert ws_url_from_http("http://localhost:8899") == "ws://localhost:8899"

    print("  Websocket URL derivation: PASSED")


def main():
    """Run all tests"""
    print("=" * 60)
    print("RPC Client Mock Tests")
    print("=" * 60)

    tests = [
        test_rpc_config_defaults,
        test_rpc_config_invalid,
        test_rpc_client_init,
        test_rpc_call_success,
        test_rpc_rate_limit_backoff,
        test_rpc_rate_limit_exhausted,
        test_rpc_timeout_and_rotation,
        test_rpc_ledger_errors_classified,
        test_send_raw_transaction_encoding,
        test_block_reference_parse,
        test_signature_statuses,
        test_confirm_transaction_expired_blockhash,
        test_confirm_transaction_paths,
        test_priority_fee_samples,
        test_transaction_fee,
        test_mint_decimals_lookup,
        test_mint_lookup_errors,
        test_token_balance_reads_associated_account,
        test_ws_url_from_http,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"  FAILED: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    return failed == 0


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
