# run_demo.py — required memo on incoming transfers (Token-2022), end to end
import argparse
import logging
import sys

from demo_config import load_config
from scenario import run_scenario
from solana_client import SolanaClient


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Token-2022 required-memo transfer demo")
    ap.add_argument("--settings", default="settings.toml", help="settings file (optional)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_config(args.settings)
    client = SolanaClient(cfg)
    try:
        report = run_scenario(client, cfg)
    except Exception as e:
        logging.getLogger("run_demo").debug("demo aborted", exc_info=True)
        print(f"⚠️ - Demo failed: {e}")
        return 1
    print("🎉 - Demo complete.")
    if not report.passed:
        print(f"{len(report.failures())} check(s) did not pass: " + ", ".join(s.name for s in report.failures()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
