import sys

from solders.pubkey import Pubkey

from demo_config import load_config
from memo_transfer import MemoTransferError, verify_memo_requirement
from solana_client import SolanaClient


def main(argv) -> int:
    if len(argv) != 2:
        print("Usage: python verify_memo.py <token_account>"); return 1
    try:
        acct = Pubkey.from_string(argv[1].strip())
    except Exception as e:
        print("❌ Bad address:", e); return 1

    cfg = load_config()
    c = SolanaClient(cfg)
    if not c.ping():
        print("❌ Node unreachable:", cfg.network_url); return 1

    try:
        required = verify_memo_requirement(c, acct)
    except MemoTransferError as e:
        print("❌", e); return 1
    print("Account:", acct)
    print("Memo required on incoming transfers:", required)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
