"""
SPL token helpers

Associated token account derivation, the idempotent account creation and
transfer_checked instructions, and mint account decoding. Works for both
the Tokenkeg and Token-2022 programs; the program is taken from the mint
account owner.
"""

import struct
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..errors import ValidationError

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

TOKEN_PROGRAM_IDS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)

# Mint layout: mint_authority COption<Pubkey> (36), supply u64 (8), decimals u8
MINT_SIZE = 82
MINT_DECIMALS_OFFSET = 44

# Token instruction index
TRANSFER_CHECKED = 12


def parse_mint_decimals(data: bytes) -> int:
    """Decimals byte of a raw mint account"""
    if len(data) < MINT_SIZE:
        raise ValidationError.invalid("mint", f"account data is {len(data)} bytes, expected at least {MINT_SIZE}")
    return data[MINT_DECIMALS_OFFSET]


def get_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Optional[Pubkey] = None,
) -> Pubkey:
    """
    Get associated token account address.

    Args:
        owner: Wallet owner
        mint: Token mint
        token_program: Token program (defaults to Tokenkeg)

    Returns:
        ATA address
    """
    if token_program is None:
        token_program = Pubkey.from_string(TOKEN_PROGRAM_ID)

    seeds = [bytes(owner), bytes(token_program), bytes(mint)]
    address, _ = Pubkey.find_program_address(seeds, Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID))
    return address


def build_create_ata_idempotent_instruction(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey,
) -> Instruction:
    """Create owner's associated token account if missing; no-op if it exists"""
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(get_associated_token_address(owner, mint, token_program), is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(Pubkey.from_string(SYSTEM_PROGRAM_ID), is_signer=False, is_writable=False),
        AccountMeta(token_program, is_signer=False, is_writable=False),
    ]
    # 1 = CreateIdempotent
    return Instruction(Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID), bytes([1]), accounts)


def build_transfer_checked_instruction(
    owner: Pubkey,
    destination_owner: Pubkey,
    mint: Pubkey,
    amount: int,
    decimals: int,
    token_program: Pubkey,
) -> Instruction:
    """Move amount base units between the two owners' associated token accounts"""
    accounts = [
        AccountMeta(get_associated_token_address(owner, mint, token_program), is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(
            get_associated_token_address(destination_owner, mint, token_program),
            is_signer=False,
            is_writable=True,
        ),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    data = struct.pack("<BQB", TRANSFER_CHECKED, amount, decimals)
    return Instruction(token_program, data, accounts)
