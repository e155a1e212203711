# memo_transfer.py — Token-2022 "required memo on incoming transfer" extension
from __future__ import annotations
from enum import IntEnum
from typing import Iterable, List, Optional, Sequence

from construct import Bytes, Int8ul, Int16ul, Int32ul, Int64ul, Struct
from pydantic import BaseModel, field_validator
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_2022_PROGRAM_ID

# https://github.com/solana-labs/solana-program-library/blob/master/token/program-2022/src/error.rs
NO_MEMO_LOG = "No memo in previous instruction"
NO_MEMO_ERROR_CODE = 0x24

ACCOUNT_SIZE = 165
MULTISIG_SIZE = 355
ACCOUNT_TYPE_SIZE = 1
TYPE_SIZE = 2
LENGTH_SIZE = 2
MEMO_TRANSFER_SIZE = 1

MEMO_TRANSFER_EXTENSION_IX = 30


class ExtensionType(IntEnum):
    UNINITIALIZED = 0
    TRANSFER_FEE_CONFIG = 1
    TRANSFER_FEE_AMOUNT = 2
    MINT_CLOSE_AUTHORITY = 3
    CONFIDENTIAL_TRANSFER_MINT = 4
    CONFIDENTIAL_TRANSFER_ACCOUNT = 5
    DEFAULT_ACCOUNT_STATE = 6
    IMMUTABLE_OWNER = 7
    MEMO_TRANSFER = 8


class AccountType(IntEnum):
    UNINITIALIZED = 0
    MINT = 1
    ACCOUNT = 2


class MemoTransferInstruction(IntEnum):
    ENABLE = 0
    DISABLE = 1


# fixed-size value of each extension we know how to size
EXTENSION_SIZES = {
    ExtensionType.IMMUTABLE_OWNER: 0,
    ExtensionType.MEMO_TRANSFER: MEMO_TRANSFER_SIZE,
}

ACCOUNT_LAYOUT = Struct(
    "mint" / Bytes(32),
    "owner" / Bytes(32),
    "amount" / Int64ul,
    "delegate_option" / Int32ul,
    "delegate" / Bytes(32),
    "state" / Int8ul,
    "is_native_option" / Int32ul,
    "is_native" / Int64ul,
    "delegated_amount" / Int64ul,
    "close_authority_option" / Int32ul,
    "close_authority" / Bytes(32),
)

TLV_HEADER = Struct(
    "type" / Int16ul,
    "length" / Int16ul,
)


class MemoTransferError(Exception):
    """Account state is missing, malformed, or lacks the memo-transfer extension."""


class TokenAccountState(BaseModel):
    address: str
    mint: str
    owner: str
    amount: int
    state: int
    account_type: Optional[int] = None
    extensions: List[int] = []
    require_incoming_transfer_memos: Optional[bool] = None

    @field_validator("address", "mint", "owner", mode="before")
    @classmethod
    def as_base58(cls, v):
        if isinstance(v, (bytes, bytearray)):
            return str(Pubkey.from_bytes(bytes(v)))
        return str(v)


def get_account_len(extensions: Iterable[ExtensionType]) -> int:
    """Space needed for a token account carrying the given extensions."""
    exts = list(extensions)
    if not exts:
        return ACCOUNT_SIZE
    tlv = 0
    for e in exts:
        if e not in EXTENSION_SIZES:
            raise ValueError(f"Unsupported account extension: {e!r}")
        tlv += TYPE_SIZE + LENGTH_SIZE + EXTENSION_SIZES[e]
    total = ACCOUNT_SIZE + ACCOUNT_TYPE_SIZE + tlv
    if total == MULTISIG_SIZE:
        # would be indistinguishable from a multisig account
        return total + TYPE_SIZE
    return total


def _memo_transfer_ix(
    sub: MemoTransferInstruction,
    account: Pubkey,
    authority: Pubkey,
    multi_signers: Sequence[Pubkey] = (),
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    keys = [
        AccountMeta(pubkey=account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=not multi_signers, is_writable=False),
    ]
    for s in multi_signers:
        keys.append(AccountMeta(pubkey=s, is_signer=True, is_writable=False))
    return Instruction(program_id, bytes([MEMO_TRANSFER_EXTENSION_IX, int(sub)]), keys)


def enable_required_memo_transfers_ix(
    account: Pubkey,
    authority: Pubkey,
    multi_signers: Sequence[Pubkey] = (),
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    return _memo_transfer_ix(MemoTransferInstruction.ENABLE, account, authority, multi_signers, program_id)


def disable_required_memo_transfers_ix(
    account: Pubkey,
    authority: Pubkey,
    multi_signers: Sequence[Pubkey] = (),
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    return _memo_transfer_ix(MemoTransferInstruction.DISABLE, account, authority, multi_signers, program_id)


def _walk_tlv(data: bytes):
    """
    Yield (type, value) for each extension entry after the account-type byte.
    Stops at an Uninitialized entry or when the remaining bytes cannot hold a header.
    """
    off = ACCOUNT_SIZE + ACCOUNT_TYPE_SIZE
    header = TYPE_SIZE + LENGTH_SIZE
    while off + header <= len(data):
        h = TLV_HEADER.parse(data[off:off + header])
        if h.type == ExtensionType.UNINITIALIZED:
            return
        start = off + header
        end = start + h.length
        if end > len(data):
            raise MemoTransferError(f"Truncated extension entry (type {h.type}) at offset {off}")
        yield h.type, data[start:end]
        off = end


def unpack_token_account(address: Pubkey, data: bytes) -> TokenAccountState:
    if len(data) < ACCOUNT_SIZE:
        raise MemoTransferError(f"Account {address} is too short for a token account ({len(data)} bytes)")
    base = ACCOUNT_LAYOUT.parse(data[:ACCOUNT_SIZE])
    account_type: Optional[int] = None
    extensions: List[int] = []
    required: Optional[bool] = None

    if len(data) > ACCOUNT_SIZE:
        if len(data) == MULTISIG_SIZE:
            raise MemoTransferError(f"Account {address} has the size of a multisig account")
        account_type = data[ACCOUNT_SIZE]
        if account_type != AccountType.ACCOUNT:
            raise MemoTransferError(f"Account {address} is not a token account (type {account_type})")
        for ext_type, value in _walk_tlv(data):
            extensions.append(ext_type)
            if ext_type == ExtensionType.MEMO_TRANSFER:
                if len(value) != MEMO_TRANSFER_SIZE:
                    raise MemoTransferError(f"Bad memo-transfer extension length: {len(value)}")
                required = value[0] != 0

    return TokenAccountState(
        address=bytes(address),
        mint=base.mint,
        owner=base.owner,
        amount=base.amount,
        state=base.state,
        account_type=account_type,
        extensions=extensions,
        require_incoming_transfer_memos=required,
    )


def verify_memo_requirement(client, token_account: Pubkey) -> bool:
    """
    Read the account straight from the ledger and return its memo requirement flag.

    The extension must already exist on the account; a missing extension is an
    error rather than False.
    """
    required = client.get_token_account(token_account).require_incoming_transfer_memos
    if required is None:
        raise MemoTransferError("Memo details not found.")
    return required
