"""
Transfer and ledger reference types
"""

from dataclasses import dataclass
from typing import Any, Optional

from ..errors import ValidationError

LAMPORTS_PER_SOL = 1_000_000_000

COMMITMENT_ORDER = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class TransferIntent:
    """
    A single transfer waiting to be submitted

    Attributes:
        source: Address of the paying wallet (base58)
        destination: Address of the receiving wallet (base58)
        amount: Lamports, or token base units when mint is set; strictly positive
        is_fee: True for service fee transfers injected by FeeCollector
        mint: SPL token mint moved by the transfer, None for native SOL
    """
    source: str
    destination: str
    amount: int
    is_fee: bool = False
    mint: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValidationError.invalid("amount", f"expected integer lamports, got {self.amount!r}")
        if self.amount <= 0:
            raise ValidationError.invalid("amount", f"must be positive, got {self.amount}")
        if not self.source:
            raise ValidationError.invalid("source", "must not be empty")
        if not self.destination:
            raise ValidationError.invalid("destination", "must not be empty")
        if self.mint is not None and not self.mint:
            raise ValidationError.invalid("mint", "must not be empty")

    @property
    def is_token(self) -> bool:
        return self.mint is not None

    @property
    def amount_sol(self) -> float:
        return self.amount / LAMPORTS_PER_SOL

    def __str__(self) -> str:
        kind = "fee" if self.is_fee else "transfer"
        if self.is_token:
            kind = f"{kind} of {self.mint[:8]}.."
        return f"TransferIntent({kind}, {self.source[:8]}.. -> {self.destination[:8]}.., {self.amount})"


@dataclass(frozen=True)
class MintInfo:
    """
    SPL token mint as read from the ledger

    Attributes:
        mint: Mint address (base58)
        decimals: Decimal places of the token
        token_program: Owning program (Tokenkeg or Token-2022)
    """
    mint: str
    decimals: int
    token_program: str


@dataclass(frozen=True)
class BlockReference:
    """
    Recent blockhash anchoring a transaction's validity window

    Expires once the ledger block height passes last_valid_height.
    """
    blockhash: str
    last_valid_height: int

    def is_expired(self, current_height: int) -> bool:
        return current_height > self.last_valid_height


@dataclass(frozen=True)
class FeeSample:
    """Recent prioritization fee observed in a slot (microlamports per CU)"""
    slot: int
    fee: int


@dataclass
class SignatureStatus:
    """
    Status of a submitted transaction as reported by the node

    Attributes:
        signature: Transaction signature (base58)
        confirmation_status: processed / confirmed / finalized
        err: Ledger error payload, None when the transaction succeeded
        slot: Slot the transaction landed in
    """
    signature: str
    confirmation_status: Optional[str] = None
    err: Any = None
    slot: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.err is None and self.confirmation_status in ("confirmed", "finalized")

    @property
    def is_failed(self) -> bool:
        return self.err is not None

    def reached(self, commitment: str) -> bool:
        """True once the status is at least as durable as commitment"""
        current = COMMITMENT_ORDER.get(self.confirmation_status or "", -1)
        return current >= COMMITMENT_ORDER.get(commitment, COMMITMENT_ORDER["confirmed"])

    @classmethod
    def from_rpc(cls, signature: str, value: dict) -> "SignatureStatus":
        """Build from a getSignatureStatuses value entry"""
        return cls(
            signature=signature,
            confirmation_status=value.get("confirmationStatus"),
            err=value.get("err"),
            slot=value.get("slot"),
        )
