"""
Transition evaluator.

Maps (transition, account leaf, strategy leaf) to the updated leaves, or to a
failure. Pure: inputs are never mutated and nothing outside the arguments is
read, so the same function serves dispute-time re-derivation and the
off-chain block builder.
"""

from dataclasses import dataclass, replace
from typing import Optional

import rollup.config as config
from rollup.state import AccountInfo, StrategyInfo
from rollup.transition import (
    Transition,
    InitTransition,
    DepositTransition,
    WithdrawTransition,
    CommitTransition,
    UncommitTransition,
    SyncCommitmentTransition,
    SyncBalanceTransition,
    signed_by,
)

ERR_FAILED = "failed to evaluate"
ERR_ACCOUNT_ID = "invalid account id"
ERR_INIT = "invalid init transition"


@dataclass
class EvaluationResult:
    ok: bool
    account_info: Optional[AccountInfo] = None
    strategy_info: Optional[StrategyInfo] = None
    error: Optional[str] = None


def _fail(error: str = ERR_FAILED) -> EvaluationResult:
    return EvaluationResult(ok=False, error=error)


def _valid_amount(amount: int) -> bool:
    return 0 <= amount <= config.MAX_AMOUNT


def _copy_account(info: AccountInfo) -> AccountInfo:
    return AccountInfo.from_dict(info.to_dict())


def evaluate_transition(transition: Transition,
                        account_info: Optional[AccountInfo] = None,
                        strategy_info: Optional[StrategyInfo] = None,
                        genesis_root: Optional[str] = None,
                        strategy_asset_id: int = 0) -> EvaluationResult:
    """
    Apply one transition to the leaves it touches.
    
    Args:
        transition: Decoded transition record
        account_info: Current account leaf (empty leaf on first deposit)
        strategy_info: Current strategy leaf
        genesis_root: Required root of an init transition
        strategy_asset_id: Asset id of the strategy, used when its leaf is still empty
    
    Returns:
        EvaluationResult with the new leaves when ok
    """
    account_info = account_info if account_info is not None else AccountInfo()
    strategy_info = strategy_info if strategy_info is not None else StrategyInfo()
    tn_type = getattr(transition, "TRANSITION_TYPE", config.TN_TYPE_INVALID)
    
    if tn_type == config.TN_TYPE_INIT:
        return _apply_init(transition, genesis_root)
    if tn_type == config.TN_TYPE_DEPOSIT:
        return _apply_deposit(transition, account_info)
    if tn_type == config.TN_TYPE_WITHDRAW:
        return _apply_withdraw(transition, account_info)
    if tn_type == config.TN_TYPE_COMMIT:
        return _apply_commit(transition, account_info, strategy_info, strategy_asset_id)
    if tn_type == config.TN_TYPE_UNCOMMIT:
        return _apply_uncommit(transition, account_info, strategy_info)
    if tn_type == config.TN_TYPE_SYNC_COMMITMENT:
        return _apply_sync_commitment(transition, strategy_info)
    if tn_type == config.TN_TYPE_SYNC_BALANCE:
        return _apply_sync_balance(transition, strategy_info)
    return _fail()


def _apply_init(tn: InitTransition, genesis_root: Optional[str]) -> EvaluationResult:
    if genesis_root is None or tn.state_root != genesis_root:
        return _fail(ERR_INIT)
    return EvaluationResult(ok=True)


def _check_account_binding(account: str, account_id: int, info: AccountInfo) -> bool:
    return info.account == account and info.account_id == account_id


def _apply_deposit(tn: DepositTransition, info: AccountInfo) -> EvaluationResult:
    if not tn.account or tn.account_id <= 0 or not _valid_amount(tn.amount) or tn.asset_id <= 0:
        return _fail()
    
    if info.is_empty():
        # First deposit binds the address to this id
        info = AccountInfo(account=tn.account, account_id=tn.account_id)
    elif not _check_account_binding(tn.account, tn.account_id, info):
        return _fail(ERR_ACCOUNT_ID)
    else:
        info = _copy_account(info)
    
    new_balance = info.idle_asset(tn.asset_id) + tn.amount
    if new_balance > config.MAX_AMOUNT:
        return _fail()
    info.idle_assets = info.with_idle_asset(tn.asset_id, new_balance)
    return EvaluationResult(ok=True, account_info=info)


def _check_signed(tn, info: AccountInfo) -> bool:
    if info.is_empty():
        return False
    if tn.timestamp <= info.timestamp:
        return False
    return signed_by(tn, info.account)


def _apply_withdraw(tn: WithdrawTransition, info: AccountInfo) -> EvaluationResult:
    if not _check_account_binding(tn.account, tn.account_id, info) or info.is_empty():
        return _fail()
    if not _valid_amount(tn.amount) or not _check_signed(tn, info):
        return _fail()
    
    idle = info.idle_asset(tn.asset_id)
    if idle < tn.amount:
        return _fail()
    
    info = _copy_account(info)
    info.idle_assets = info.with_idle_asset(tn.asset_id, idle - tn.amount)
    info.timestamp = tn.timestamp
    return EvaluationResult(ok=True, account_info=info)


def _apply_commit(tn: CommitTransition, info: AccountInfo, strategy: StrategyInfo,
                  strategy_asset_id: int) -> EvaluationResult:
    if info.account_id != tn.account_id or tn.strategy_id <= 0:
        return _fail()
    if not _valid_amount(tn.asset_amount) or not _check_signed(tn, info):
        return _fail()
    
    asset_id = strategy.asset_id or strategy_asset_id
    if asset_id <= 0:
        return _fail()
    
    idle = info.idle_asset(asset_id)
    if idle < tn.asset_amount:
        return _fail()
    
    if strategy.asset_balance == 0 or strategy.st_token_supply == 0:
        new_st_tokens = tn.asset_amount
    else:
        new_st_tokens = tn.asset_amount * strategy.st_token_supply // strategy.asset_balance
    
    info = _copy_account(info)
    info.idle_assets = info.with_idle_asset(asset_id, idle - tn.asset_amount)
    info.st_tokens = info.with_st_token(tn.strategy_id, info.st_token(tn.strategy_id) + new_st_tokens)
    info.timestamp = tn.timestamp
    
    strategy = replace(
        strategy,
        asset_id=asset_id,
        asset_balance=strategy.asset_balance + tn.asset_amount,
        st_token_supply=strategy.st_token_supply + new_st_tokens,
        pending_commit_amount=strategy.pending_commit_amount + tn.asset_amount
    )
    return EvaluationResult(ok=True, account_info=info, strategy_info=strategy)


def _apply_uncommit(tn: UncommitTransition, info: AccountInfo, strategy: StrategyInfo) -> EvaluationResult:
    if info.account_id != tn.account_id or tn.strategy_id <= 0:
        return _fail()
    if not _valid_amount(tn.st_token_amount) or not _check_signed(tn, info):
        return _fail()
    
    held = info.st_token(tn.strategy_id)
    if held < tn.st_token_amount or strategy.st_token_supply < tn.st_token_amount:
        return _fail()
    if strategy.st_token_supply == 0 or strategy.asset_id <= 0:
        return _fail()
    
    asset_amount = tn.st_token_amount * strategy.asset_balance // strategy.st_token_supply
    
    info = _copy_account(info)
    info.idle_assets = info.with_idle_asset(strategy.asset_id, info.idle_asset(strategy.asset_id) + asset_amount)
    info.st_tokens = info.with_st_token(tn.strategy_id, held - tn.st_token_amount)
    info.timestamp = tn.timestamp
    
    strategy = replace(
        strategy,
        asset_balance=strategy.asset_balance - asset_amount,
        st_token_supply=strategy.st_token_supply - tn.st_token_amount,
        pending_uncommit_amount=strategy.pending_uncommit_amount + asset_amount
    )
    return EvaluationResult(ok=True, account_info=info, strategy_info=strategy)


def _apply_sync_commitment(tn: SyncCommitmentTransition, strategy: StrategyInfo) -> EvaluationResult:
    if tn.strategy_id <= 0:
        return _fail()
    if (tn.pending_commit_amount != strategy.pending_commit_amount
            or tn.pending_uncommit_amount != strategy.pending_uncommit_amount):
        return _fail()
    
    strategy = replace(strategy, pending_commit_amount=0, pending_uncommit_amount=0)
    return EvaluationResult(ok=True, strategy_info=strategy)


def _apply_sync_balance(tn: SyncBalanceTransition, strategy: StrategyInfo) -> EvaluationResult:
    if tn.strategy_id <= 0:
        return _fail()
    new_balance = strategy.asset_balance + tn.new_asset_delta
    if new_balance < 0 or new_balance > config.MAX_AMOUNT:
        return _fail()
    
    strategy = replace(strategy, asset_balance=new_balance)
    return EvaluationResult(ok=True, strategy_info=strategy)
