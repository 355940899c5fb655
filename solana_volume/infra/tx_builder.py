"""
Transaction builder

Assembles transfers into an unsigned versioned transaction:
- compute budget instructions (limit and priority fee) first
- one system transfer per SOL intent, in the order given
- per token intent, an idempotent create of the destination's associated
  token account followed by transfer_checked
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from ..errors import ValidationError
from ..types import BlockReference, MintInfo, TransferIntent
from .token import build_create_ata_idempotent_instruction, build_transfer_checked_instruction

logger = logging.getLogger(__name__)

MAX_LAMPORTS = 2 ** 64 - 1


def parse_pubkey(address: str) -> Pubkey:
    """Parse a base58 address, raising ValidationError when malformed"""
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise ValidationError.invalid_address(address) from e


class TxBuilder:
    """
    Builds unsigned transfer transactions

    Usage:
        builder = TxBuilder()
        unsigned = builder.build_transfer(
            payer=signer.pubkey,
            intents=[TransferIntent(signer.pubkey, dest, 1_000_000)],
            block_reference=rpc.get_latest_block_reference(),
            priority_fee=6_000,
            compute_units=200_000,
        )
        signed, signature = signer.sign_transaction(unsigned)
    """

    def transfer_instructions(
        self,
        payer: str,
        intents: Sequence[TransferIntent],
        mints: Optional[Mapping[str, MintInfo]] = None,
    ) -> List[Instruction]:
        """
        Transfer instructions preserving intent order

        Args:
            payer: Fee payer and source of every intent
            intents: Transfers to encode
            mints: Mint info for every token intent, keyed by mint address
        """
        if not intents:
            raise ValidationError.invalid("intents", "at least one transfer is required")

        payer_pubkey = parse_pubkey(payer)
        instructions = []
        for intent in intents:
            if intent.source != payer:
                raise ValidationError.invalid(
                    "source", f"intent source {intent.source} does not match payer {payer}"
                )
            if intent.amount > MAX_LAMPORTS:
                raise ValidationError.invalid("amount", f"{intent.amount} exceeds u64")
            destination = parse_pubkey(intent.destination)

            if intent.is_token:
                info = (mints or {}).get(intent.mint)
                if info is None:
                    raise ValidationError.invalid("mint", f"no mint info for {intent.mint}")
                mint = parse_pubkey(info.mint)
                token_program = parse_pubkey(info.token_program)
                instructions.append(
                    build_create_ata_idempotent_instruction(payer_pubkey, destination, mint, token_program)
                )
                instructions.append(
                    build_transfer_checked_instruction(
                        payer_pubkey, destination, mint, intent.amount, info.decimals, token_program
                    )
                )
                continue

            instructions.append(
                transfer(
                    TransferParams(
                        from_pubkey=payer_pubkey,
                        to_pubkey=destination,
                        lamports=intent.amount,
                    )
                )
            )
        return instructions

    def build(
        self,
        payer: str,
        instructions: Sequence[Instruction],
        block_reference: BlockReference,
        compute_units: int = 0,
        priority_fee: int = 0,
    ) -> bytes:
        """
        Build unsigned versioned transaction

        Args:
            payer: Fee payer pubkey
            instructions: Instructions appended after the compute budget
            block_reference: Fresh blockhash for this attempt
            compute_units: Compute unit limit (0 leaves the default)
            priority_fee: Priority fee in microlamports per CU (0 for none)

        Returns:
            Unsigned transaction bytes
        """
        all_instructions: List[Instruction] = []
        if compute_units > 0:
            all_instructions.append(set_compute_unit_limit(compute_units))
        if priority_fee > 0:
            all_instructions.append(set_compute_unit_price(priority_fee))
        all_instructions.extend(instructions)

        try:
            recent_blockhash = Hash.from_string(block_reference.blockhash)
        except ValueError as e:
            raise ValidationError.invalid("blockhash", block_reference.blockhash) from e

        message = MessageV0.try_compile(
            parse_pubkey(payer),
            all_instructions,
            [],  # Address lookup tables
            recent_blockhash,
        )

        # Placeholder signatures sized to num_required_signatures
        num_signers = message.header.num_required_signatures
        tx = VersionedTransaction.populate(message, [Signature.default()] * num_signers)
        return bytes(tx)

    def build_transfer(
        self,
        payer: str,
        intents: Sequence[TransferIntent],
        block_reference: BlockReference,
        priority_fee: int = 0,
        compute_units: int = 0,
        mints: Optional[Mapping[str, MintInfo]] = None,
    ) -> bytes:
        """Build one unsigned transaction carrying every intent"""
        instructions = self.transfer_instructions(payer, intents, mints)
        logger.debug(
            f"Building transfer tx: payer={payer}, transfers={len(intents)}, instructions={len(instructions)}, "
            f"cu_limit={compute_units}, cu_price={priority_fee}"
        )
        return self.build(payer, instructions, block_reference, compute_units, priority_fee)
