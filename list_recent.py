import sys

from solders.pubkey import Pubkey

from demo_config import load_config
from solana_client import SolanaClient


def format_row(row: dict) -> str:
    status = "ok" if row["ok"] else "failed"
    return f"{row['signature']}  slot={row['slot']}  {status}  memo={row['memo']!r}"


def main(argv) -> int:
    if len(argv) not in (2, 3):
        print("Usage: python list_recent.py <address> [limit]"); return 1
    addr = Pubkey.from_string(argv[1].strip())
    limit = int(argv[2]) if len(argv) == 3 else 10

    c = SolanaClient(load_config())
    for row in c.get_recent_memos(addr, limit=limit):
        print(format_row(row))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
