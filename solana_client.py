# solana_client.py — Token-2022 demo client over solana-py / solders
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.memo.instructions import MemoParams, create_memo
from spl.token.constants import TOKEN_2022_PROGRAM_ID
from spl.token.instructions import (
    InitializeAccountParams,
    InitializeMintParams,
    MintToCheckedParams,
    TransferCheckedParams,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    initialize_account,
    initialize_mint,
    mint_to_checked,
    transfer_checked,
)

from demo_config import DemoConfig
from memo_transfer import (
    ExtensionType,
    MemoTransferError,
    TokenAccountState,
    disable_required_memo_transfers_ix,
    enable_required_memo_transfers_ix,
    get_account_len,
    unpack_token_account,
)

log = logging.getLogger(__name__)

MINT_SIZE = 82

_CUSTOM_ERR_RE = re.compile(r"custom program error: (0x[0-9a-fA-F]+)")
_CUSTOM_ERR_REPR_RE = re.compile(r"Custom\((\d+)\)")


class TransactionRejected(Exception):
    """A submission the demo cannot continue without was rejected."""

    def __init__(self, outcome: "TxOutcome"):
        self.outcome = outcome
        super().__init__(outcome.describe())


@dataclass
class TxOutcome:
    """Accepted(signature) or Rejected(reason, logs, error_code) for one submission."""

    accepted: bool
    signature: Optional[str] = None
    reason: str = ""
    logs: List[str] = field(default_factory=list)
    error_code: Optional[int] = None

    @classmethod
    def ok(cls, signature: str) -> "TxOutcome":
        return cls(accepted=True, signature=signature)

    @classmethod
    def rejected(
        cls,
        reason: str,
        logs: Optional[Sequence[str]] = None,
        error_code: Optional[int] = None,
        signature: Optional[str] = None,
    ) -> "TxOutcome":
        logs = list(logs or [])
        if error_code is None:
            error_code = _error_code_from_text("\n".join(logs) + "\n" + reason)
        return cls(accepted=False, signature=signature, reason=reason, logs=logs, error_code=error_code)

    @property
    def log_text(self) -> str:
        return "\n".join(self.logs)

    def describe(self) -> str:
        if self.accepted:
            return f"accepted: {self.signature}"
        return f"rejected: {self.reason}" + (f"\n{self.log_text}" if self.logs else "")


def _error_code_from_text(text: str) -> Optional[int]:
    m = _CUSTOM_ERR_RE.search(text)
    if m:
        return int(m.group(1), 16)
    m = _CUSTOM_ERR_REPR_RE.search(text)
    if m:
        return int(m.group(1))
    return None


def rejection_from_exception(exc: RPCException) -> TxOutcome:
    """
    Pull the simulation logs out of a preflight failure.
    - older solana-py: RPCException(SendTransactionPreflightFailureMessage)
    - newer solana-py: RPCException(message, data) with the simulation result as data
    """
    logs: List[str] = []
    err = None
    message = ""
    for arg in exc.args:
        if isinstance(arg, str):
            message = message or arg
            continue
        data = getattr(arg, "data", arg)
        found = getattr(data, "logs", None)
        if found:
            logs = list(found)
        err = err or getattr(data, "err", None)
        message = message or getattr(arg, "message", "") or ""
    reason = message or str(exc)
    code = None
    inner = getattr(err, "err", None)
    if inner is not None and hasattr(inner, "code"):
        code = int(inner.code)
    elif err is not None:
        code = _error_code_from_text(str(err))
    return TxOutcome.rejected(reason, logs, code)


class SolanaClient:
    def __init__(self, cfg: DemoConfig, client: Optional[Client] = None):
        self.cfg = cfg
        self.commitment = Commitment(cfg.commitment)
        self.client = client or Client(cfg.network_url, commitment=self.commitment)

    # --- utilities ------------------------------------------------------------
    def ping(self) -> bool:
        try:
            self.client.get_version()
            return True
        except Exception:
            return False

    def wait_tx_confirmed(self, signature, last_valid_block_height: Optional[int] = None):
        """
        Block until the signature reaches the client's commitment; solana-py raises
        UnconfirmedTxError once the blockhash expires.
        """
        resp = self.client.confirm_transaction(
            signature,
            self.commitment,
            sleep_seconds=0.5,
            last_valid_block_height=last_valid_block_height,
        )
        status = resp.value[0]
        if status is None:
            raise RuntimeError(f"No status returned for {signature}")
        return status

    def airdrop(self, pubkey: Pubkey, lamports: int) -> str:
        latest = self.client.get_latest_blockhash(self.commitment).value
        sig = self.client.request_airdrop(pubkey, lamports).value
        status = self.wait_tx_confirmed(sig, latest.last_valid_block_height)
        if status.err is not None:
            raise RuntimeError(f"Airdrop {sig} failed: {status.err}")
        log.debug("airdrop %s lamports to %s: %s", lamports, pubkey, sig)
        return str(sig)

    def rent_exempt_lamports(self, space: int) -> int:
        return self.client.get_minimum_balance_for_rent_exemption(space).value

    # --- submission -----------------------------------------------------------
    def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> TxOutcome:
        """
        Sign with every keypair (fee payer = first), send with preflight and wait for
        confirmation. Rejections come back as outcomes; transport errors propagate.
        """
        if not signers:
            raise ValueError("At least one signer (the fee payer) is required.")
        latest = self.client.get_latest_blockhash(self.commitment).value
        blockhash = latest.blockhash
        msg = Message.new_with_blockhash(list(instructions), signers[0].pubkey(), blockhash)
        tx = Transaction(list(signers), msg, blockhash)
        try:
            sig = self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_confirmation=True, preflight_commitment=self.commitment),
            ).value
        except RPCException as e:
            outcome = rejection_from_exception(e)
            log.debug("preflight rejected: %s", outcome.describe())
            return outcome
        status = self.wait_tx_confirmed(sig, latest.last_valid_block_height)
        if status.err is not None:
            return TxOutcome.rejected(str(status.err), signature=str(sig))
        log.debug("confirmed %s", sig)
        return TxOutcome.ok(str(sig))

    def send_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        outcome = self.submit(instructions, signers)
        if not outcome.accepted:
            raise TransactionRejected(outcome)
        return outcome.signature or ""

    # --- token program --------------------------------------------------------
    def create_mint(
        self,
        payer: Keypair,
        mint_authority: Pubkey,
        freeze_authority: Optional[Pubkey],
        decimals: int,
        mint_keypair: Optional[Keypair] = None,
    ) -> Pubkey:
        mint_kp = mint_keypair or Keypair()
        ixs = [
            create_account(CreateAccountParams(
                from_pubkey=payer.pubkey(),
                to_pubkey=mint_kp.pubkey(),
                lamports=self.rent_exempt_lamports(MINT_SIZE),
                space=MINT_SIZE,
                owner=TOKEN_2022_PROGRAM_ID,
            )),
            initialize_mint(InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_2022_PROGRAM_ID,
                mint=mint_kp.pubkey(),
                mint_authority=mint_authority,
                freeze_authority=freeze_authority,
            )),
        ]
        self.send_and_confirm(ixs, [payer, mint_kp])
        return mint_kp.pubkey()

    def create_account_with_required_memo(
        self,
        payer: Keypair,
        account: Keypair,
        mint: Pubkey,
        owner: Keypair,
    ) -> Pubkey:
        """Allocate, initialize and enable the memo requirement in one transaction."""
        space = get_account_len([ExtensionType.MEMO_TRANSFER])
        ixs = [
            create_account(CreateAccountParams(
                from_pubkey=payer.pubkey(),
                to_pubkey=account.pubkey(),
                lamports=self.rent_exempt_lamports(space),
                space=space,
                owner=TOKEN_2022_PROGRAM_ID,
            )),
            initialize_account(InitializeAccountParams(
                program_id=TOKEN_2022_PROGRAM_ID,
                account=account.pubkey(),
                mint=mint,
                owner=owner.pubkey(),
            )),
            enable_required_memo_transfers_ix(account.pubkey(), owner.pubkey()),
        ]
        self.send_and_confirm(ixs, [payer, owner, account])
        return account.pubkey()

    def ensure_associated_token_account(self, payer: Keypair, mint: Pubkey, owner: Pubkey) -> Pubkey:
        ata = get_associated_token_address(owner, mint, TOKEN_2022_PROGRAM_ID)
        ix = create_idempotent_associated_token_account(payer.pubkey(), owner, mint, TOKEN_2022_PROGRAM_ID)
        self.send_and_confirm([ix], [payer])
        return ata

    def mint_to(
        self,
        payer: Keypair,
        mint: Pubkey,
        dest: Pubkey,
        mint_authority: Keypair,
        amount: int,
        decimals: int,
    ) -> str:
        ix = mint_to_checked(MintToCheckedParams(
            program_id=TOKEN_2022_PROGRAM_ID,
            mint=mint,
            dest=dest,
            mint_authority=mint_authority.pubkey(),
            amount=amount,
            decimals=decimals,
        ))
        return self.send_and_confirm([ix], [payer, mint_authority])

    def transfer_checked_ix(
        self,
        source: Pubkey,
        mint: Pubkey,
        dest: Pubkey,
        owner: Pubkey,
        amount: int,
        decimals: int,
    ) -> Instruction:
        return transfer_checked(TransferCheckedParams(
            program_id=TOKEN_2022_PROGRAM_ID,
            source=source,
            mint=mint,
            dest=dest,
            owner=owner,
            amount=amount,
            decimals=decimals,
        ))

    def memo_ix(self, signer: Pubkey, text: str) -> Instruction:
        return create_memo(MemoParams(program_id=MEMO_PROGRAM_ID, signer=signer, message=text.encode("utf-8")))

    def enable_required_memo_transfers(self, payer: Keypair, account: Pubkey, owner: Keypair) -> str:
        return self.send_and_confirm([enable_required_memo_transfers_ix(account, owner.pubkey())], [payer, owner])

    def disable_required_memo_transfers(self, payer: Keypair, account: Pubkey, owner: Keypair) -> str:
        return self.send_and_confirm([disable_required_memo_transfers_ix(account, owner.pubkey())], [payer, owner])

    # --- reads ----------------------------------------------------------------
    def get_account_data(self, pubkey: Pubkey) -> Optional[Tuple[Pubkey, bytes]]:
        info = self.client.get_account_info(pubkey, commitment=self.commitment).value
        if info is None:
            return None
        return info.owner, bytes(info.data)

    def get_token_account(self, pubkey: Pubkey) -> TokenAccountState:
        found = self.get_account_data(pubkey)
        if found is None:
            raise MemoTransferError(f"Account {pubkey} not found.")
        owner, data = found
        if owner != TOKEN_2022_PROGRAM_ID:
            raise MemoTransferError(f"Account {pubkey} is owned by {owner}, not Token-2022.")
        return unpack_token_account(pubkey, data)

    def get_token_balance(self, pubkey: Pubkey) -> int:
        return self.get_token_account(pubkey).amount

    def get_recent_memos(self, address: Pubkey, limit: int = 10) -> List[dict]:
        rows = []
        resp = self.client.get_signatures_for_address(address, limit=limit, commitment=self.commitment)
        for it in resp.value:
            rows.append({
                "signature": str(it.signature),
                "slot": it.slot,
                "ok": it.err is None,
                "memo": it.memo or "",
            })
        return rows
