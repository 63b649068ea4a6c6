from dataclasses import dataclass


@dataclass
class AssetDeposited:
    account: str
    asset_id: int
    amount: int
    deposit_id: int


@dataclass
class AssetWithdrawn:
    account: str
    asset_id: int
    amount: int


@dataclass
class BalanceSynced:
    strategy_id: int
    delta: int
    sync_id: int


@dataclass
class RollupBlockCommitted:
    block_id: int


@dataclass
class RollupBlockExecuted:
    block_id: int


@dataclass
class RollupBlockReverted:
    block_id: int
    reason: str
