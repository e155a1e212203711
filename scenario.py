# scenario.py — required-memo transfer walkthrough against a Token-2022 validator
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from solders.keypair import Keypair

from demo_config import DemoConfig
from memo_transfer import NO_MEMO_ERROR_CODE, NO_MEMO_LOG, verify_memo_requirement
from solana_client import TxOutcome

log = logging.getLogger(__name__)

OK = "✅"
FAIL = "❌"


class Verdict(Enum):
    EXPECTED_ACCEPT = "expected-accept"
    EXPECTED_REJECT = "expected-reject"
    UNEXPECTED_ACCEPT = "unexpected-accept"
    UNEXPECTED_REJECT = "unexpected-reject"


def rejected_for(outcome: TxOutcome, reason: str = NO_MEMO_LOG, code: Optional[int] = NO_MEMO_ERROR_CODE) -> bool:
    """Match on the program log first; fall back to the custom error code when no logs came back."""
    if outcome.accepted:
        return False
    if outcome.logs:
        return reason in outcome.log_text
    return code is not None and outcome.error_code == code


def classify(
    outcome: TxOutcome,
    expect_reject: bool,
    reason: str = NO_MEMO_LOG,
    code: Optional[int] = NO_MEMO_ERROR_CODE,
) -> Verdict:
    if outcome.accepted:
        return Verdict.UNEXPECTED_ACCEPT if expect_reject else Verdict.EXPECTED_ACCEPT
    if expect_reject and rejected_for(outcome, reason, code):
        return Verdict.EXPECTED_REJECT
    return Verdict.UNEXPECTED_REJECT


@dataclass
class StepResult:
    name: str
    ok: bool
    detail: str = ""


@dataclass
class ScenarioReport:
    steps: List[StepResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(s.ok for s in self.steps)

    def failures(self) -> List[StepResult]:
        return [s for s in self.steps if not s.ok]


class Reporter:
    def __init__(self, out: Callable[[str], None] = print):
        self.out = out
        self.report = ScenarioReport()

    def record(self, name: str, ok: bool, line: str, detail: str = "") -> StepResult:
        res = StepResult(name=name, ok=ok, detail=detail)
        self.report.steps.append(res)
        self.out(f"{OK if ok else FAIL} - {line}")
        return res


def _try_submit(client, instructions, signers) -> Tuple[TxOutcome, bool]:
    """Submit a transfer; any error the client raises becomes a rejection flagged as unknown."""
    try:
        return client.submit(instructions, signers), False
    except Exception as e:
        log.debug("transfer submission raised", exc_info=True)
        return TxOutcome.rejected(f"{type(e).__name__}: {e}"), True


def _report_transfer(
    rep: Reporter,
    name: str,
    outcome: TxOutcome,
    verdict: Verdict,
    accepted_line: str,
    unknown: bool = False,
) -> None:
    if unknown:
        rep.record(name, False, f"Unknown error: {outcome.reason}", outcome.reason)
    elif verdict is Verdict.EXPECTED_REJECT:
        rep.record(name, True, "Transaction failed without memo (memo is required).")
    elif verdict is Verdict.EXPECTED_ACCEPT:
        rep.record(name, True, accepted_line, outcome.signature or "")
    elif verdict is Verdict.UNEXPECTED_ACCEPT:
        rep.record(name, False, f"This should have failed, but didn't. Tx: {outcome.signature}", outcome.signature or "")
    elif outcome.logs:
        rep.record(name, False, f"Unexpected error: {outcome.log_text}", outcome.reason)
    else:
        rep.record(name, False, f"Something went wrong. Tx failed unexpectedly: {outcome.reason}", outcome.reason)


def _check_balance(rep: Reporter, client, name: str, account, expected: int) -> None:
    bal = client.get_token_balance(account)
    if bal == expected:
        rep.record(name, True, f"Destination balance is {bal}.")
    else:
        rep.record(name, False, f"Destination balance is {bal}, expected {expected}.", str(bal))


def run_scenario(client, cfg: DemoConfig, out: Callable[[str], None] = print) -> ScenarioReport:
    """
    Walk the memo-requirement lifecycle on a fresh mint and destination account.

    Setup failures and failed administrative toggles raise. Transfer outcomes are
    classified and reported without stopping the run.
    """
    rep = Reporter(out)
    decimals = cfg.decimals
    transfer_amount = cfg.transfer_amount

    payer = Keypair()               # payer, and owner of the source account
    mint_authority = Keypair()
    owner = Keypair()               # owner of the destination account
    destination_keypair = Keypair()
    destination = destination_keypair.pubkey()

    # 1 - fund the payer
    client.airdrop(payer.pubkey(), cfg.airdrop_lamports)
    rep.record("fund-payer", True, f"Airdropped {cfg.airdrop_sol} SOL to payer {payer.pubkey()}.")

    # 2 - mint
    mint = client.create_mint(payer, mint_authority.pubkey(), mint_authority.pubkey(), decimals)
    rep.record("create-mint", True, f"Created mint {mint} ({decimals} decimals).")

    # 3 - destination account, memo requirement enabled at creation
    client.create_account_with_required_memo(payer, destination_keypair, mint, owner)
    required = verify_memo_requirement(client, destination)
    rep.record(
        "create-destination",
        required,
        f"Created destination {destination} with memo requirement "
        + ("enabled." if required else "missing."),
    )

    # 4 - source account (payer's ATA) funded from the mint authority
    source = client.ensure_associated_token_account(payer, mint, payer.pubkey())
    client.mint_to(payer, mint, source, mint_authority, cfg.mint_amount, decimals)
    rep.record("fund-source", True, f"Minted {cfg.mint_amount} base units to source {source}.")

    # 5 - one transfer instruction, reused by every attempt below
    ix = client.transfer_checked_ix(source, mint, destination, payer.pubkey(), transfer_amount, decimals)

    # 6 - no memo, should fail
    outcome, unknown = _try_submit(client, [ix], [payer])
    _report_transfer(rep, "transfer-without-memo", outcome, classify(outcome, expect_reject=True), "", unknown)

    # 7 - memo first, should succeed
    memo = client.memo_ix(payer.pubkey(), cfg.memo)
    outcome, unknown = _try_submit(client, [memo, ix], [payer])
    _report_transfer(
        rep, "transfer-with-memo", outcome, classify(outcome, expect_reject=False),
        "Successful transaction with memo (memo is required).", unknown,
    )
    _check_balance(rep, client, "balance-after-memo-transfer", destination, transfer_amount)

    # 8 - owner turns the requirement off
    client.disable_required_memo_transfers(payer, destination, owner)
    rep.record("disable-requirement", True, "Disabled required memo transfers.")

    # 9 - no memo, should now succeed
    outcome, unknown = _try_submit(client, [ix], [payer])
    _report_transfer(
        rep, "transfer-after-disable", outcome, classify(outcome, expect_reject=False),
        "Successful transaction without memo (memo is NOT required).", unknown,
    )
    _check_balance(rep, client, "balance-after-plain-transfer", destination, 2 * transfer_amount)

    # 10 - read the flag back, then re-enable and read again
    if verify_memo_requirement(client, destination):
        rep.record("verify-disabled", False, "Something's wrong. Expected memo requirement to be disabled.")
    else:
        rep.record("verify-disabled", True, "Memo requirement disabled.")

    client.enable_required_memo_transfers(payer, destination, owner)

    if verify_memo_requirement(client, destination):
        rep.record("verify-enabled", True, "Memo requirement enabled.")
    else:
        rep.record("verify-enabled", False, "Something's wrong. Expected memo to be required.")

    log.debug("scenario finished: %d checks, %d failed", len(rep.report.steps), len(rep.report.failures()))
    return rep.report
