import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, PositiveInt, ValidationError, model_validator
from xrpl import CryptoAlgorithm
from xrpl.wallet import Wallet

import airdropper.constants as C
from airdropper.errors import ConfigError
from airdropper.models import Asset

log = logging.getLogger("airdropper.config")

DEFAULT_CONFIG = Path("airdropper.toml")


class LedgerConfig(BaseModel):
    rpc_url: str = C.RPC_URL
    horizon: PositiveInt = C.HORIZON
    timeout: float = C.RPC_TIMEOUT
    probe: bool = True


class AssetConfig(BaseModel):
    currency: str
    issuer: str
    decimals: int = Field(default=6, ge=0, le=15)

    def to_asset(self) -> Asset:
        try:
            return Asset(self.currency, self.issuer, self.decimals)
        except ValueError as e:
            raise ConfigError(f"invalid asset: {e}") from e


class RetrySettings(BaseModel):
    lookup_chunk_size: PositiveInt = C.LOOKUP_CHUNK_SIZE
    transfers_per_tx: int = Field(default=C.TRANSFERS_PER_TX, ge=1, le=C.TRANSFERS_PER_TX)
    check_max_retry: PositiveInt = C.CHECK_MAX_RETRY
    transfer_max_retry: PositiveInt = C.TRANSFER_MAX_RETRY
    confirm_max_retry: PositiveInt = C.CONFIRM_MAX_RETRY
    confirm_sleep_sec: float = Field(default=C.CONFIRM_SLEEP_SEC, ge=0)


class FeeBudget(BaseModel):
    base_fee_drops: PositiveInt = C.BASE_FEE_DROPS
    max_fee_drops: PositiveInt = C.MAX_FEE_DROPS

    def fee_for(self, transfer_count: int) -> int:
        """A lone payment pays the base fee. A Batch pays twice the base fee plus one per inner payment."""
        if transfer_count == 1:
            return self.base_fee_drops
        return (2 + transfer_count) * self.base_fee_drops


class FundingConfig(BaseModel):
    seed: str | None = None
    seed_file: Path | None = None
    algorithm: CryptoAlgorithm | None = None  # taken from the seed encoding when unset


class DistributionConfig(BaseModel):
    total: str  # in whole tokens, e.g. "1000000.5"
    minimum_balance: str = "0"
    blacklist: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    asset: AssetConfig
    snapshot_asset: AssetConfig | None = None  # what holders are weighted by; defaults to `asset`
    distribution: DistributionConfig
    retry: RetrySettings = Field(default_factory=RetrySettings)
    fee: FeeBudget = Field(default_factory=FeeBudget)
    funding: FundingConfig = Field(default_factory=FundingConfig)
    wallet_list: Path = Path("wallets.csv")
    snapshot_file: Path = Path("snapshot.csv")

    @model_validator(mode="after")
    def _fee_cap(self):
        if self.fee.fee_for(self.retry.transfers_per_tx) > self.fee.max_fee_drops:
            raise ValueError(
                f"a full batch of {self.retry.transfers_per_tx} costs {self.fee.fee_for(self.retry.transfers_per_tx)} drops, "
                f"more than max_fee_drops={self.fee.max_fee_drops}"
            )
        return self

    @property
    def holdings_asset(self) -> AssetConfig:
        return self.snapshot_asset or self.asset


def load_settings(path: Path | None = None) -> Settings:
    path = Path(path) if path is not None else DEFAULT_CONFIG
    try:
        cfg = tomllib.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"could not read config {path}: {e}") from e

    ledger = cfg.setdefault("ledger", {})
    if rpc_url := os.getenv("RPC_URL"):
        ledger["rpc_url"] = rpc_url

    try:
        settings = Settings.model_validate(cfg)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}:\n{e}") from e

    # relative file paths are relative to the config file
    for name in ("wallet_list", "snapshot_file"):
        p = getattr(settings, name)
        if not p.is_absolute():
            setattr(settings, name, path.parent / p)
    if settings.funding.seed_file is not None and not settings.funding.seed_file.is_absolute():
        settings.funding.seed_file = path.parent / settings.funding.seed_file

    log.debug("Loaded config from %s: rpc_url=%s asset=%s", path, settings.ledger.rpc_url, settings.asset.currency)
    return settings


def load_wallet(funding: FundingConfig, seed_file: Path | None = None) -> Wallet:
    """Funding wallet from `--seed-file`, else funding.seed_file, else funding.seed."""
    seed_file = seed_file or funding.seed_file
    if seed_file is not None:
        try:
            seed = Path(seed_file).read_text().strip()
        except OSError as e:
            raise ConfigError(f"could not read seed file {seed_file}: {e}") from e
    else:
        seed = funding.seed
    if not seed:
        raise ConfigError("no funding seed configured (set funding.seed, funding.seed_file or --seed-file)")
    try:
        return Wallet.from_seed(seed=seed, algorithm=funding.algorithm)
    except Exception as e:
        # xrpl-py raises several unrelated types for a bad seed
        raise ConfigError(f"invalid funding seed: {e.__class__.__name__}") from None
