"""In-memory stand-in for a test validator running Token-2022.

Executes the handful of System, Token-2022, Associated Token Account and Memo
instructions the demo sends, atomically per transaction, and enforces the
required-memo rule on incoming transfers.
"""

import struct
from typing import Dict, List, Optional, Sequence

from construct import Int16ul
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID

from demo_config import DemoConfig
from memo_transfer import ACCOUNT_LAYOUT, AccountType, ExtensionType
from solana_client import SolanaClient, TxOutcome

NO_MEMO_LOGS = [
    "Program TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb invoke [1]",
    "Program log: Instruction: TransferChecked",
    "Program log: Error: No memo in previous instruction",
    "Program TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb failed: custom program error: 0x24",
]


class Reject(Exception):
    def __init__(self, reason: str, logs: Optional[List[str]] = None):
        super().__init__(reason)
        self.reason = reason
        self.logs = logs or []


class FakeLedger(SolanaClient):
    """SolanaClient whose network calls land on an in-memory ledger."""

    def __init__(self, cfg: Optional[DemoConfig] = None, enforce_memo: bool = True):
        super().__init__(cfg or DemoConfig(), client=object())
        self.enforce_memo = enforce_memo
        self.lamports: Dict[Pubkey, int] = {}
        self.mints: Dict[Pubkey, dict] = {}
        self.accounts: Dict[Pubkey, dict] = {}
        self.submitted: List[List[Instruction]] = []
        self._sig = 0

    # --- network overrides ----------------------------------------------------
    def ping(self) -> bool:
        return True

    def _next_sig(self) -> str:
        self._sig += 1
        return f"sig{self._sig}"

    def airdrop(self, pubkey: Pubkey, lamports: int) -> str:
        self.lamports[pubkey] = self.lamports.get(pubkey, 0) + lamports
        return self._next_sig()

    def rent_exempt_lamports(self, space: int) -> int:
        return 0

    def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> TxOutcome:
        if not signers:
            raise ValueError("At least one signer (the fee payer) is required.")
        self.submitted.append(list(instructions))
        signed = {k.pubkey() for k in signers}
        snapshot = self._snapshot()
        try:
            for i, ix in enumerate(instructions):
                for meta in ix.accounts:
                    if meta.is_signer and meta.pubkey not in signed:
                        raise Reject(f"missing signature for {meta.pubkey}")
                prev = instructions[i - 1] if i > 0 else None
                self._execute(ix, prev, signed)
        except Reject as r:
            self.mints, self.accounts = snapshot
            return TxOutcome.rejected(
                f"Transaction simulation failed: Error processing Instruction: {r.reason}", r.logs
            )
        return TxOutcome.ok(self._next_sig())

    def get_account_data(self, pubkey: Pubkey):
        if pubkey in self.accounts:
            return TOKEN_2022_PROGRAM_ID, self.encode_account(pubkey)
        return None

    def get_recent_memos(self, address: Pubkey, limit: int = 10) -> List[dict]:
        return []

    def _snapshot(self):
        """Copy ledger state for rollback; Pubkeys are immutable and shared between copies."""
        mints = {k: dict(v) for k, v in self.mints.items()}
        accounts = {k: {**v, "extensions": list(v["extensions"])} for k, v in self.accounts.items()}
        return mints, accounts

    # --- helpers for tests ----------------------------------------------------
    def encode_account(self, pubkey: Pubkey) -> bytes:
        a = self.accounts[pubkey]
        base = ACCOUNT_LAYOUT.build(dict(
            mint=bytes(a["mint"]),
            owner=bytes(a["owner"]),
            amount=a["amount"],
            delegate_option=0,
            delegate=bytes(32),
            state=1 if a["initialized"] else 0,
            is_native_option=0,
            is_native=0,
            delegated_amount=0,
            close_authority_option=0,
            close_authority=bytes(32),
        ))
        if a["space"] <= len(base):
            return base
        tlv = b""
        for ext, value in a["extensions"]:
            tlv += Int16ul.build(ext) + Int16ul.build(len(value)) + value
        data = base + bytes([AccountType.ACCOUNT]) + tlv
        return data + bytes(max(0, a["space"] - len(data)))

    def memo_required(self, pubkey: Pubkey) -> Optional[bool]:
        for ext, value in self.accounts[pubkey]["extensions"]:
            if ext == ExtensionType.MEMO_TRANSFER:
                return value[0] != 0
        return None

    # --- execution ------------------------------------------------------------
    def _execute(self, ix: Instruction, prev: Optional[Instruction], signed) -> None:
        keys = [m.pubkey for m in ix.accounts]
        data = bytes(ix.data)
        if ix.program_id == SYSTEM_PROGRAM_ID:
            kind, _lamports, space = struct.unpack_from("<IQQ", data)
            owner = Pubkey.from_bytes(data[20:52])
            if kind != 0 or owner != TOKEN_2022_PROGRAM_ID:
                raise Reject("unsupported system instruction")
            if keys[1] in self.accounts or keys[1] in self.mints:
                raise Reject("account already in use")
            if space == 82:
                self.mints[keys[1]] = {"initialized": False}
            else:
                self.accounts[keys[1]] = {
                    "space": space, "initialized": False, "mint": Pubkey.default(),
                    "owner": Pubkey.default(), "amount": 0, "extensions": [],
                }
        elif ix.program_id == MEMO_PROGRAM_ID:
            return
        elif ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID:
            ata, owner, mint = keys[1], keys[2], keys[3]
            if ata not in self.accounts:
                self.accounts[ata] = {
                    "space": 170, "initialized": True, "mint": mint, "owner": owner, "amount": 0,
                    "extensions": [(ExtensionType.IMMUTABLE_OWNER, b"")],
                }
        elif ix.program_id == TOKEN_2022_PROGRAM_ID:
            self._token_ix(data, keys, prev, signed)
        else:
            raise Reject(f"unknown program {ix.program_id}")

    def _token_ix(self, data: bytes, keys: List[Pubkey], prev, signed) -> None:
        tag = data[0]
        if tag == 0:  # InitializeMint
            self.mints[keys[0]] = {
                "initialized": True,
                "decimals": data[1],
                "authority": Pubkey.from_bytes(data[2:34]),
            }
        elif tag == 1:  # InitializeAccount
            acct = self._account(keys[0])
            acct.update(initialized=True, mint=keys[1], owner=keys[2])
            if acct["space"] > 165:
                acct["extensions"] = [(ExtensionType.MEMO_TRANSFER, b"\x00")]
        elif tag == 14:  # MintToChecked
            mint = self._mint(keys[0], data[9])
            if mint["authority"] != keys[2] or keys[2] not in signed:
                raise Reject("owner does not match")
            self._account(keys[1])["amount"] += struct.unpack_from("<Q", data, 1)[0]
        elif tag == 12:  # TransferChecked
            source, mint, dest, owner = keys[0], keys[1], keys[2], keys[3]
            self._mint(mint, data[9])
            amount = struct.unpack_from("<Q", data, 1)[0]
            src, dst = self._account(source), self._account(dest)
            if src["owner"] != owner:
                raise Reject("owner does not match")
            if self.enforce_memo and self.memo_required(dest) and (prev is None or prev.program_id != MEMO_PROGRAM_ID):
                raise Reject("custom program error: 0x24", list(NO_MEMO_LOGS))
            if src["amount"] < amount:
                raise Reject("custom program error: 0x1")
            src["amount"] -= amount
            dst["amount"] += amount
        elif tag == 30:  # MemoTransferExtension
            acct = self._account(keys[0])
            if acct["owner"] != keys[1]:
                raise Reject("owner does not match")
            value = b"\x01" if data[1] == 0 else b"\x00"
            exts = [(e, v) for e, v in acct["extensions"] if e != ExtensionType.MEMO_TRANSFER]
            if len(exts) == len(acct["extensions"]):
                raise Reject("invalid account data for instruction")
            acct["extensions"] = exts + [(ExtensionType.MEMO_TRANSFER, value)]
        else:
            raise Reject(f"unsupported token instruction {tag}")

    def _account(self, pubkey: Pubkey) -> dict:
        if pubkey not in self.accounts:
            raise Reject(f"account {pubkey} not found")
        return self.accounts[pubkey]

    def _mint(self, pubkey: Pubkey, decimals: int) -> dict:
        mint = self.mints.get(pubkey)
        if not mint or not mint["initialized"]:
            raise Reject("uninitialized mint")
        if mint["decimals"] != decimals:
            raise Reject("custom program error: 0x12")
        return mint
