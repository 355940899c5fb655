"""
RPC Client for Solana

Provides the JSON-RPC capability surface used by the volume engine:
- Multiple endpoint fallback
- Client-side rate limiting on every call
- Call-scoped exponential backoff on 429 responses
- Translation of node errors into the typed error taxonomy
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from solders.pubkey import Pubkey

from ..errors import (
    ConfigError,
    InsufficientBalanceError,
    LedgerRejectionError,
    RateLimitError,
    RpcError,
    StaleReferenceError,
    ValidationError,
    VolumeError,
)
from ..types import BlockReference, FeeSample, MintInfo, SignatureStatus
from ..config import config as global_config
from .rate_limiter import RateLimiter, PROFILES
from .token import TOKEN_PROGRAM_IDS, get_associated_token_address, parse_mint_decimals

logger = logging.getLogger(__name__)

# JSON-RPC error codes some providers use instead of HTTP 429
RATE_LIMIT_RPC_CODES = (429, -32429)

INVALID_PARAMS_CODE = -32602

# Ledger error variants that mean the payer cannot cover the transfer
INSUFFICIENT_FUNDS_ERRORS = (
    "InsufficientFundsForFee",
    "InsufficientFundsForRent",
    "AccountNotFound",
)

# System program custom error 0x1: transfer would leave a negative balance
SYSTEM_INSUFFICIENT_LAMPORTS = {"Custom": 1}

_shared_limiters: Dict[str, RateLimiter] = {}
_shared_limiters_lock = threading.Lock()


def get_shared_limiter(profile_name: str) -> RateLimiter:
    """Process-wide limiter for a profile, created on first use"""
    key = profile_name.lower()
    with _shared_limiters_lock:
        limiter = _shared_limiters.get(key)
        if limiter is None:
            limiter = RateLimiter.for_profile(key)
            _shared_limiters[key] = limiter
        return limiter


def _ledger_error_name(err: Any) -> Optional[str]:
    if isinstance(err, str):
        return err
    if isinstance(err, dict) and err:
        return next(iter(err))
    return None


def classify_ledger_error(
    err: Any,
    signature: Optional[str] = None,
    logs: Optional[list] = None,
) -> VolumeError:
    """
    Map a ledger TransactionError payload to a typed error

    Args:
        err: The "err" value from simulation or signature status
        signature: Transaction signature when known
        logs: Program logs from simulation

    Returns:
        StaleReferenceError, InsufficientBalanceError or LedgerRejectionError
    """
    name = _ledger_error_name(err)

    if name == "BlockhashNotFound":
        return StaleReferenceError.not_found()

    if name in INSUFFICIENT_FUNDS_ERRORS:
        return InsufficientBalanceError.from_ledger(err)

    if name == "InstructionError":
        detail = err.get("InstructionError") if isinstance(err, dict) else None
        if isinstance(detail, list) and len(detail) == 2:
            if detail[1] == SYSTEM_INSUFFICIENT_LAMPORTS or detail[1] == "InsufficientFunds":
                return InsufficientBalanceError.from_ledger(err)

    if signature:
        return LedgerRejectionError.rejected(signature, err)
    return LedgerRejectionError.simulation_failed(err, logs)


def ws_url_from_http(url: str) -> str:
    """Derive the websocket endpoint from an HTTP RPC url"""
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


@dataclass
class RpcClientConfig:
    """
    RPC client runtime configuration

    Allows per-client overrides while pulling defaults from the global
    config (solana_volume.config.RpcConfig).

    Usage:
        config = RpcClientConfig(timeout_seconds=60, max_retries=5)
        client = RpcClient(endpoint, config=config)
    """
    timeout_seconds: float = None
    max_retries: int = None
    retry_delay_seconds: float = None
    commitment: str = None
    rate_profile: str = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.timeout_seconds is None:
            self.timeout_seconds = global_config.rpc.timeout_seconds
        if self.max_retries is None:
            self.max_retries = global_config.rpc.max_retries
        if self.retry_delay_seconds is None:
            self.retry_delay_seconds = global_config.rpc.retry_delay_seconds
        if self.commitment is None:
            self.commitment = global_config.rpc.commitment
        if self.rate_profile is None:
            self.rate_profile = global_config.rpc.rate_profile
        if self.max_retries < 1:
            raise ConfigError.invalid("max_retries", "must be at least 1")
        if self.rate_profile.lower() not in PROFILES:
            raise ConfigError.invalid("rate_profile", f"unknown profile {self.rate_profile!r}")


class RpcClient:
    """
    Solana JSON-RPC client

    Usage:
        rpc = RpcClient("https://api.devnet.solana.com")

        # Multiple endpoints with fallback
        rpc = RpcClient([
            "https://primary-rpc.example.com",
            "https://backup-rpc.example.com",
        ])

        ref = rpc.get_latest_block_reference()
        balance = rpc.get_balance("Address...")
    """

    def __init__(
        self,
        endpoint: Union[str, List[str]],
        config: Optional[RpcClientConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize RPC client

        Args:
            endpoint: RPC endpoint URL or list of URLs (for fallback)
            config: RPC configuration options
            rate_limiter: Limiter gating every call (shared per profile if None)
        """
        self._endpoints = [endpoint] if isinstance(endpoint, str) else list(endpoint)
        if not self._endpoints or not all(self._endpoints):
            raise ConfigError.missing("RPC endpoint")

        self._config = config or RpcClientConfig()
        self._limiter = rate_limiter or get_shared_limiter(self._config.rate_profile)
        self._current_endpoint_idx = 0
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()
        self._request_id = 0
        self._mints: Dict[str, MintInfo] = {}

    @property
    def endpoint(self) -> str:
        """Current active endpoint"""
        return self._endpoints[self._current_endpoint_idx]

    @property
    def commitment(self) -> str:
        """Default commitment level"""
        return self._config.commitment

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client (thread-safe)"""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = httpx.Client(
                        timeout=self._config.timeout_seconds,
                        headers={"Content-Type": "application/json"},
                    )
        return self._client

    def _next_request_id(self) -> int:
        with self._client_lock:
            self._request_id += 1
            return self._request_id

    def _rotate_endpoint(self):
        """Rotate to next endpoint on failure"""
        if len(self._endpoints) > 1:
            self._current_endpoint_idx = (self._current_endpoint_idx + 1) % len(self._endpoints)
            logger.info(f"Rotating to RPC endpoint: {self.endpoint}")

    def _backoff(self, attempt: int) -> float:
        return self._config.retry_delay_seconds * (2 ** attempt)

    def _error_from_payload(self, method: str, error: Dict[str, Any]) -> VolumeError:
        """Translate a JSON-RPC error object into the error taxonomy"""
        message = error.get("message", str(error))
        code = error.get("code")
        data = error.get("data")

        if isinstance(data, dict) and data.get("err") is not None:
            return classify_ledger_error(data["err"], logs=data.get("logs"))

        if code == INVALID_PARAMS_CODE:
            return ValidationError(f"Invalid params for {method}: {message}")

        return RpcError(
            f"RPC error: {message}",
            endpoint=self.endpoint,
            details={"rpc_error_code": code, "rpc_error_data": data},
        )

    def call(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Make JSON-RPC call

        Every attempt passes through the rate limiter. A 429 response backs
        off exponentially and retries the same call; once the per-endpoint
        budget is spent the next endpoint is tried.

        Args:
            method: RPC method name
            params: RPC parameters
            timeout: Optional timeout override

        Returns:
            RPC result

        Raises:
            RateLimitError: When every endpoint kept answering 429
            RpcError: On transport failure
            VolumeError: Typed node error (stale blockhash, insufficient funds, ...)
        """
        client = self._get_client()
        body = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": method,
            "params": params,
        }
        timeout_val = timeout or self._config.timeout_seconds

        last_error: Optional[VolumeError] = None
        endpoints_tried = 0
        max_endpoints = len(self._endpoints)

        while endpoints_tried < max_endpoints:
            for attempt in range(self._config.max_retries):
                try:
                    with self._limiter.slot():
                        response = client.post(
                            self.endpoint,
                            json=body,
                            timeout=timeout_val,
                        )

                    if response.status_code == 429:
                        last_error = RateLimitError.exhausted(self.endpoint, attempt + 1)
                        delay = self._backoff(attempt)
                        logger.warning(f"Rate limited by {self.endpoint} on {method}, backing off {delay:.2f}s")
                        time.sleep(delay)
                        continue

                    response.raise_for_status()
                    result = response.json()

                    if "error" in result:
                        error = result["error"]
                        if error.get("code") in RATE_LIMIT_RPC_CODES:
                            last_error = RateLimitError.exhausted(self.endpoint, attempt + 1)
                            delay = self._backoff(attempt)
                            logger.warning(f"Rate limited by {self.endpoint} on {method}, backing off {delay:.2f}s")
                            time.sleep(delay)
                            continue
                        raise self._error_from_payload(method, error)

                    return result.get("result")

                except httpx.TimeoutException:
                    last_error = RpcError.timeout(self.endpoint, timeout_val)
                    logger.warning(f"RPC timeout on {method} (attempt {attempt + 1}): {self.endpoint}")

                except httpx.HTTPStatusError as e:
                    last_error = RpcError(
                        f"HTTP error {e.response.status_code}",
                        endpoint=self.endpoint,
                        original_error=e,
                    )
                    logger.warning(f"RPC HTTP error on {method} (attempt {attempt + 1}): {e}")

                except httpx.RequestError as e:
                    last_error = RpcError.connection_failed(self.endpoint, e)
                    logger.warning(f"RPC connection error on {method} (attempt {attempt + 1}): {e}")

                except ValueError as e:
                    last_error = RpcError.invalid_response(self.endpoint, str(e))
                    logger.warning(f"RPC invalid response on {method} (attempt {attempt + 1}): {e}")

                if attempt < self._config.max_retries - 1:
                    time.sleep(self._backoff(attempt))

            self._rotate_endpoint()
            endpoints_tried += 1

        raise last_error or RpcError("All RPC endpoints failed")

    def get_latest_block_reference(
        self,
        commitment: Optional[str] = None,
    ) -> BlockReference:
        """
        Get latest blockhash and its validity bound

        Returns:
            BlockReference with blockhash and lastValidBlockHeight
        """
        params = [{"commitment": commitment or self.commitment}]
        result = self.call("getLatestBlockhash", params)
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        last_valid = value.get("lastValidBlockHeight")
        if not blockhash or last_valid is None:
            raise RpcError.invalid_response(self.endpoint, f"getLatestBlockhash returned {result!r}")
        return BlockReference(blockhash=blockhash, last_valid_height=int(last_valid))

    def get_block_height(self, commitment: Optional[str] = None) -> int:
        """Get current block height"""
        params = [{"commitment": commitment or self.commitment}]
        return self.call("getBlockHeight", params)

    def get_balance(
        self,
        address: str,
        commitment: Optional[str] = None,
    ) -> int:
        """
        Get SOL balance in lamports

        Args:
            address: Account address

        Returns:
            Balance in lamports
        """
        params = [address, {"commitment": commitment or self.commitment}]
        result = self.call("getBalance", params)
        return int((result or {}).get("value", 0))

    def get_minimum_balance_for_rent_exemption(self, data_size: int = 0) -> int:
        """Rent-exempt minimum for an account holding data_size bytes"""
        return int(self.call("getMinimumBalanceForRentExemption", [data_size]))

    def get_account_info(
        self,
        address: str,
        encoding: str = "base64",
        commitment: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Account value (owner, lamports, data), None if the account does not exist"""
        params = [address, {"encoding": encoding, "commitment": commitment or self.commitment}]
        result = self.call("getAccountInfo", params)
        return (result or {}).get("value")

    def get_mint_info(self, mint: str) -> MintInfo:
        """
        Decimals and owning program of a token mint

        Mint decimals never change, so lookups are cached per client.

        Raises:
            ValidationError: The account does not exist or is not a token mint
        """
        cached = self._mints.get(mint)
        if cached is not None:
            return cached

        account = self.get_account_info(mint)
        if not account:
            raise ValidationError.invalid("mint", f"mint account {mint} not found")
        owner = account.get("owner")
        if owner not in TOKEN_PROGRAM_IDS:
            raise ValidationError.invalid("mint", f"{mint} is owned by {owner}, not a token program")

        data = account.get("data") or []
        try:
            raw = base64.b64decode(data[0]) if data else b""
        except ValueError as e:
            raise RpcError.invalid_response(self.endpoint, f"undecodable mint data for {mint}") from e

        info = MintInfo(mint=mint, decimals=parse_mint_decimals(raw), token_program=owner)
        self._mints[mint] = info
        return info

    def get_token_decimals(self, mint: str) -> int:
        return self.get_mint_info(mint).decimals

    def get_token_balance(
        self,
        owner: str,
        mint: str,
        commitment: Optional[str] = None,
    ) -> int:
        """
        Balance of owner's associated token account in base units

        Returns 0 when the account does not exist yet.
        """
        info = self.get_mint_info(mint)
        try:
            ata = get_associated_token_address(
                Pubkey.from_string(owner),
                Pubkey.from_string(mint),
                Pubkey.from_string(info.token_program),
            )
        except ValueError as e:
            raise ValidationError.invalid_address(owner) from e

        params = [
            owner,
            {"mint": mint},
            {"encoding": "jsonParsed", "commitment": commitment or self.commitment},
        ]
        result = self.call("getTokenAccountsByOwner", params)

        for item in (result or {}).get("value") or []:
            if item.get("pubkey") != str(ata):
                continue
            parsed = ((item.get("account") or {}).get("data") or {}).get("parsed") or {}
            token_amount = (parsed.get("info") or {}).get("tokenAmount") or {}
            return int(token_amount.get("amount", 0))
        return 0

    def send_raw_transaction(
        self,
        transaction: bytes,
        skip_preflight: bool = False,
        preflight_commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        """
        Send signed transaction

        Args:
            transaction: Signed transaction bytes
            skip_preflight: Skip preflight simulation
            preflight_commitment: Preflight commitment level
            max_retries: Node-side rebroadcast limit

        Returns:
            Transaction signature (base58)
        """
        tx_data = base64.b64encode(transaction).decode("ascii")

        params = [
            tx_data,
            {
                "skipPreflight": skip_preflight,
                "preflightCommitment": preflight_commitment or self.commitment,
                "encoding": "base64",
            },
        ]
        if max_retries is not None:
            params[1]["maxRetries"] = max_retries

        signature = self.call("sendTransaction", params)
        if not signature:
            raise RpcError.invalid_response(self.endpoint, "sendTransaction returned no signature")
        return signature

    def get_signature_statuses(
        self,
        signatures: Sequence[str],
        search_history: bool = False,
    ) -> List[Optional[SignatureStatus]]:
        """Statuses in request order, None for unknown signatures"""
        params: List[Any] = [list(signatures)]
        if search_history:
            params.append({"searchTransactionHistory": True})
        result = self.call("getSignatureStatuses", params)
        values = (result or {}).get("value") or []
        statuses: List[Optional[SignatureStatus]] = []
        for signature, value in zip(signatures, values):
            statuses.append(SignatureStatus.from_rpc(signature, value) if value else None)
        return statuses

    def get_signature_status(
        self,
        signature: str,
        search_history: bool = True,
    ) -> Optional[SignatureStatus]:
        """Status of one signature, None if the node has never seen it"""
        statuses = self.get_signature_statuses([signature], search_history=search_history)
        return statuses[0] if statuses else None

    def confirm_transaction(
        self,
        signature: str,
        block_reference: Optional[BlockReference] = None,
        commitment: Optional[str] = None,
        timeout_seconds: float = 60.0,
        poll_interval: Optional[float] = None,
    ) -> Optional[SignatureStatus]:
        """
        Poll until the transaction reaches commitment or fails

        At least one status check is made even with a zero timeout.

        Args:
            signature: Transaction signature
            block_reference: Blockhash the transaction was built with
            commitment: Commitment level to wait for
            timeout_seconds: Max wait time
            poll_interval: Seconds between polls

        Returns:
            SignatureStatus once confirmed or failed on-chain (check .err)
            None on timeout

        Raises:
            StaleReferenceError: The blockhash expired without the transaction landing
        """
        commitment = commitment or self.commitment
        interval = poll_interval if poll_interval is not None else global_config.tx.poll_interval
        deadline = time.monotonic() + timeout_seconds
        last_status: Optional[SignatureStatus] = None

        while True:
            status: Optional[SignatureStatus] = None
            try:
                status = self.get_signature_status(signature, search_history=False)
            except RpcError as e:
                logger.debug(f"Error checking transaction status: {e}")

            if status is not None:
                last_status = status
                if status.is_failed:
                    logger.warning(f"Transaction {signature} failed on-chain: {status.err}")
                    return status
                if status.reached(commitment):
                    return status
            elif block_reference is not None:
                height = None
                try:
                    height = self.get_block_height(commitment)
                except RpcError as e:
                    logger.debug(f"Error checking block height: {e}")
                if height is not None and block_reference.is_expired(height):
                    raise StaleReferenceError.expired(
                        block_reference.blockhash, block_reference.last_valid_height, height
                    )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(interval, remaining))

        if last_status is None:
            logger.warning(f"Transaction {signature} was never seen on chain within {timeout_seconds}s")
        else:
            logger.warning(
                f"Transaction {signature} timeout. Last status: {last_status.confirmation_status or 'unknown'}"
            )
        return None

    def get_recent_priority_fee_samples(
        self,
        accounts: Optional[Sequence[str]] = None,
    ) -> List[FeeSample]:
        """
        Recent prioritization fees (microlamports per CU), one sample per slot

        Args:
            accounts: Optional writable accounts to scope the samples to
        """
        params: List[Any] = [list(accounts)] if accounts else []
        result = self.call("getRecentPrioritizationFees", params) or []
        return [
            FeeSample(slot=int(item.get("slot", 0)), fee=int(item.get("prioritizationFee", 0)))
            for item in result
        ]

    def get_transaction_fee(
        self,
        signature: str,
        commitment: Optional[str] = None,
    ) -> Optional[int]:
        """Network fee charged for a landed transaction, None if unavailable"""
        params = [
            signature,
            {
                "encoding": "json",
                "commitment": commitment or self.commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ]
        result = self.call("getTransaction", params)
        if not result:
            return None
        fee = (result.get("meta") or {}).get("fee")
        return int(fee) if fee is not None else None

    def close(self):
        """Close HTTP client"""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
