# demo_config.py — settings.toml loader for the required-memo demo
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

# TOML loader (Py 3.11+)
try:
    import tomllib as tomli
except ModuleNotFoundError:
    import tomli  # type: ignore

LOCALNET_URL = "http://127.0.0.1:8899"
DEVNET_URL = "https://api.devnet.solana.com"
TESTNET_URL = "https://api.testnet.solana.com"

LAMPORTS_PER_SOL = 1_000_000_000


def _resolve_network_url(val: str) -> str:
    v = (val or "").strip().lower()
    if v.startswith("http"):
        return val.strip()
    if v in ("localnet", "local", "localhost"):
        return LOCALNET_URL
    if v in ("devnet", "solana-devnet"):
        return DEVNET_URL
    if v in ("testnet", "solana-testnet"):
        return TESTNET_URL
    # fallback to the local test validator
    return LOCALNET_URL


@dataclass
class DemoConfig:
    network_url: str = LOCALNET_URL
    commitment: str = "confirmed"
    decimals: int = 9
    transfer_tokens: int = 1_000
    mint_multiplier: int = 10
    airdrop_sol: int = 2
    memo: str = "QuickNode demo."

    @property
    def transfer_amount(self) -> int:
        """Transfer size in base units (1,000 tokens at 9 decimals by default)."""
        return self.transfer_tokens * 10 ** self.decimals

    @property
    def mint_amount(self) -> int:
        return self.transfer_amount * self.mint_multiplier

    @property
    def airdrop_lamports(self) -> int:
        return self.airdrop_sol * LAMPORTS_PER_SOL


def config_from_dict(raw: Dict[str, Any]) -> DemoConfig:
    sol = raw.get("solana", {}) or {}
    demo = raw.get("demo", {}) or {}
    defaults = DemoConfig()
    cfg = DemoConfig(
        network_url=_resolve_network_url(sol.get("network", "localnet")),
        commitment=str(sol.get("commitment", defaults.commitment)).lower(),
        decimals=int(demo.get("decimals", defaults.decimals)),
        transfer_tokens=int(demo.get("transfer_tokens", defaults.transfer_tokens)),
        mint_multiplier=int(demo.get("mint_multiplier", defaults.mint_multiplier)),
        airdrop_sol=int(demo.get("airdrop_sol", defaults.airdrop_sol)),
        memo=str(demo.get("memo", defaults.memo)),
    )
    if not cfg.memo:
        raise RuntimeError("demo.memo must not be empty.")
    if not 0 <= cfg.decimals <= 255:
        raise RuntimeError(f"demo.decimals out of range: {cfg.decimals}")
    return cfg


def load_config(path: Optional[Union[str, Path]] = "settings.toml") -> DemoConfig:
    """
    Read settings.toml when present; otherwise the built-in demo constants apply.
    """
    if path is None:
        return DemoConfig()
    p = Path(path)
    if not p.exists():
        return DemoConfig()
    return config_from_dict(tomli.loads(p.read_text()))
