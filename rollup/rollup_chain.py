import json
import os
import tempfile
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import rollup.config as config
from rollup.block import Block, BlockStatus, calculate_intent_hash
from rollup.disputer import TransitionDisputer
from rollup.events import (
    AssetDeposited,
    AssetWithdrawn,
    BalanceSynced,
    RollupBlockCommitted,
    RollupBlockExecuted,
    RollupBlockReverted,
)
from rollup.intake import (
    IntakeQueue,
    DepositIntake,
    WithdrawCommit,
    BalanceSyncIntake,
)
from rollup.registry import Registry
from rollup.state import AccountProof, StateTree, StrategyProof
from rollup.strategy import Strategy
from rollup.token import Token, WrappedNativeToken
from rollup.transition import TransitionProof, decode_transition, get_transition_type


class RollupChain:
    """
    Settlement ledger for the rollup.

    Owns the intake queues, the append-only block list, the challenge clock
    and execution. Blocks are stored as commitments only and are never
    evaluated here: invalid transitions are caught by disputes within the
    challenge period, after which a block is final and may be executed.

    Every call that depends on time takes `now` explicitly. Precondition
    failures raise ValueError before any state is touched.
    """

    def __init__(self, registry: Registry, owner: str, operator: Optional[str] = None,
                 address: str = "rollup",
                 block_challenge_period: float = config.DEFAULT_BLOCK_CHALLENGE_PERIOD,
                 max_priority_tx_delay: float = config.DEFAULT_MAX_PRIORITY_TX_DELAY,
                 genesis_root: Optional[str] = None,
                 data_dir: Optional[str] = None, quiet: bool = False):
        self.registry = registry
        self.address = address
        self.owner = owner
        self.operator = operator or owner
        self.paused = False
        self.quiet = quiet  # Suppress status output (tests, read-only tooling)

        self.block_challenge_period = block_challenge_period
        self.max_priority_tx_delay = max_priority_tx_delay

        # Genesis root defaults to the root of an empty state tree
        self.genesis_root = genesis_root or StateTree().root

        self.blocks: List[Block] = []
        # Execution pointer: every block below it is executed or reverted
        self.count_executed = 0

        self.pending_deposits = IntakeQueue("deposit")
        self.pending_withdraw_commits = IntakeQueue("withdraw_commit")
        self.pending_balance_syncs = IntakeQueue("balance_sync")

        # Cleared withdrawal credit: (account, asset_id) -> amount
        self.pending_withdraws: Dict[Tuple[str, int], int] = defaultdict(int)

        self.net_deposit_limits: Dict[int, int] = {}
        self.net_deposits: Dict[int, int] = defaultdict(int)

        # Strategy balances as last observed by sync_balance or moved by execution
        self.strategy_asset_balances: Dict[int, int] = defaultdict(int)

        # Base-ledger collaborators, keyed by address
        self.tokens: Dict[str, Token] = {}
        self.strategies: Dict[str, Strategy] = {}
        self.wrapped_native: Optional[WrappedNativeToken] = None

        self.events: List[object] = []
        self.disputer = TransitionDisputer(self.genesis_root, strategy_asset_id=self._strategy_asset_id)

        self.data_dir = data_dir
        if self.data_dir:
            os.makedirs(self.data_dir, exist_ok=True)
            self.load_state()

    def _log(self, message: str):
        if not self.quiet:
            print(message)

    def _emit(self, event):
        self.events.append(event)

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def _only_owner(self, sender: str):
        if sender != self.owner:
            raise ValueError("Ownable: caller is not the owner")

    def _only_operator(self, sender: str):
        if sender != self.operator:
            raise ValueError("caller is not operator")

    def _when_not_paused(self):
        if self.paused:
            raise ValueError("Pausable: paused")

    def _when_paused(self):
        if not self.paused:
            raise ValueError("Pausable: not paused")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def attach_token(self, token: Token):
        self.tokens[token.address] = token
        if isinstance(token, WrappedNativeToken):
            self.wrapped_native = token

    def attach_strategy(self, strategy: Strategy):
        self.strategies[strategy.address] = strategy

    def _get_token(self, asset_address: str) -> Tuple[int, Token]:
        asset_id = self.registry.asset_address_to_index(asset_address)
        token = self.tokens.get(asset_address)
        if asset_id == 0 or token is None:
            raise ValueError("Unknown asset")
        return asset_id, token

    def _get_strategy(self, strategy_id: int) -> Strategy:
        strategy_address = self.registry.strategy_index_to_address(strategy_id)
        strategy = self.strategies.get(strategy_address) if strategy_address else None
        if strategy is None:
            raise ValueError("Unknown strategy")
        return strategy

    def _get_wrapped_native(self) -> Tuple[int, WrappedNativeToken]:
        if self.wrapped_native is None:
            raise ValueError("Native asset not supported")
        return self._get_token(self.wrapped_native.address)[0], self.wrapped_native

    def _strategy_asset_id(self, strategy_id: int) -> int:
        strategy_address = self.registry.strategy_index_to_address(strategy_id)
        strategy = self.strategies.get(strategy_address) if strategy_address else None
        if strategy is None:
            return 0
        return self.registry.asset_address_to_index(strategy.get_asset_address())

    # ------------------------------------------------------------------
    # Intake: deposits, withdrawals, balance syncs
    # ------------------------------------------------------------------

    def _check_deposit_limit(self, asset_id: int, amount: int):
        if self.net_deposits[asset_id] + amount > self.net_deposit_limits.get(asset_id, 0):
            raise ValueError("net deposit exceeds limit")

    def _add_pending_deposit(self, account: str, asset_id: int, amount: int, now: float) -> int:
        self.net_deposits[asset_id] += amount
        deposit_id = self.pending_deposits.append(DepositIntake(account, asset_id, amount, enqueued_at=now))
        self._emit(AssetDeposited(account, asset_id, amount, deposit_id))
        self._log(f"📥 Deposit #{deposit_id}: {amount} of asset {asset_id} from {account[:12]}...")
        return deposit_id

    def deposit(self, sender: str, asset_address: str, amount: int, now: float) -> int:
        """
        Lock `amount` of a registered asset and queue it for inclusion.

        Returns:
            int: deposit id (position in the deposit queue)
        """
        self._when_not_paused()
        asset_id, token = self._get_token(asset_address)
        if amount <= 0:
            raise ValueError("Invalid deposit amount")
        self._check_deposit_limit(asset_id, amount)

        token.transfer_from(self.address, sender, self.address, amount)
        return self._add_pending_deposit(sender, asset_id, amount, now)

    def deposit_eth(self, sender: str, amount: int, value: int, now: float) -> int:
        """Native-asset deposit: `value` native units are wrapped and queued like a token deposit."""
        self._when_not_paused()
        asset_id, wrapped = self._get_wrapped_native()
        if amount <= 0:
            raise ValueError("Invalid deposit amount")
        if value != amount:
            raise ValueError("ETH amount mismatch")
        self._check_deposit_limit(asset_id, amount)

        wrapped.send_native(sender, self.address, value)
        wrapped.wrap(self.address, value)
        return self._add_pending_deposit(sender, asset_id, amount, now)

    def withdraw(self, account: str, asset_address: str) -> int:
        """Pay out all executed withdrawal credit of `account` for one asset. Callable by anyone."""
        self._when_not_paused()
        asset_id, token = self._get_token(asset_address)
        amount = self.pending_withdraws.get((account, asset_id), 0)
        if amount == 0:
            raise ValueError("Nothing to withdraw")

        token.transfer(self.address, account, amount)
        del self.pending_withdraws[(account, asset_id)]
        self._emit(AssetWithdrawn(account, asset_id, amount))
        self._log(f"📤 Withdrawn {amount} of asset {asset_id} to {account[:12]}...")
        return amount

    def withdraw_eth(self, account: str) -> int:
        self._when_not_paused()
        asset_id, wrapped = self._get_wrapped_native()
        amount = self.pending_withdraws.get((account, asset_id), 0)
        if amount == 0:
            raise ValueError("Nothing to withdraw")

        wrapped.unwrap(self.address, amount)
        wrapped.send_native(self.address, account, amount)
        del self.pending_withdraws[(account, asset_id)]
        self._emit(AssetWithdrawn(account, asset_id, amount))
        self._log(f"📤 Withdrawn {amount} native to {account[:12]}...")
        return amount

    def sync_balance(self, sender: str, strategy_id: int, now: float) -> int:
        """
        Record the balance change a strategy observed since the last sync.

        Returns:
            int: balance sync id (position in the balance sync queue)
        """
        self._only_operator(sender)
        self._when_not_paused()
        strategy = self._get_strategy(strategy_id)

        new_balance = strategy.sync_balance()
        delta = new_balance - self.strategy_asset_balances[strategy_id]
        self.strategy_asset_balances[strategy_id] = new_balance

        sync_id = self.pending_balance_syncs.append(BalanceSyncIntake(strategy_id, delta, enqueued_at=now))
        self._emit(BalanceSynced(strategy_id, delta, sync_id))
        self._log(f"🔄 Balance sync #{sync_id}: strategy {strategy_id} delta {delta}")
        return sync_id

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def commit_block(self, sender: str, block_id: int, transitions: List[bytes], now: float) -> Block:
        """
        Post a block of encoded transitions.

        Only the fields needed to match intake queues are read: deposits and
        balance syncs must consume the oldest pending entries in order,
        withdrawals become withdraw commits of this block. Nothing is
        evaluated; the block is accepted optimistically.
        """
        self._only_operator(sender)
        self._when_not_paused()
        if block_id != len(self.blocks):
            raise ValueError("Wrong block ID")
        if not transitions:
            raise ValueError("Empty block")
        if len(transitions) > config.MAX_TRANSITIONS_PER_BLOCK:
            raise ValueError("Too many transitions")

        pending_deposit_ids = self.pending_deposits.pending_ids()
        pending_sync_ids = self.pending_balance_syncs.pending_ids()
        included_deposits: List[int] = []
        included_syncs: List[int] = []
        withdraw_commits: List[WithdrawCommit] = []
        intents: List[bytes] = []

        for transition_data in transitions:
            if not isinstance(transition_data, (bytes, bytearray)):
                raise ValueError("Invalid transition data")
            transition_data = bytes(transition_data)
            tn_type = get_transition_type(transition_data)

            if tn_type == config.TN_TYPE_DEPOSIT:
                tn = decode_transition(transition_data)
                position = len(included_deposits)
                entry = (self.pending_deposits.get(pending_deposit_ids[position])
                         if position < len(pending_deposit_ids) else None)
                if (entry is None or entry.account != tn.account
                        or entry.asset_id != tn.asset_id or entry.amount != tn.amount):
                    raise ValueError("invalid deposit transition, mismatch or wrong ordering")
                included_deposits.append(pending_deposit_ids[position])

            elif tn_type == config.TN_TYPE_WITHDRAW:
                tn = decode_transition(transition_data)
                if tn.amount <= 0 or tn.amount > config.MAX_AMOUNT:
                    raise ValueError("Invalid withdraw transition")
                withdraw_commits.append(WithdrawCommit(tn.account, tn.asset_id, tn.amount,
                                                       enqueued_at=now, block_id=block_id))

            elif tn_type == config.TN_TYPE_SYNC_COMMITMENT:
                intents.append(transition_data)

            elif tn_type == config.TN_TYPE_SYNC_BALANCE:
                tn = decode_transition(transition_data)
                position = len(included_syncs)
                entry = (self.pending_balance_syncs.get(pending_sync_ids[position])
                         if position < len(pending_sync_ids) else None)
                if entry is None or entry.strategy_id != tn.strategy_id or entry.delta != tn.new_asset_delta:
                    raise ValueError("invalid balance sync transition, mismatch or wrong ordering")
                included_syncs.append(pending_sync_ids[position])

        if self.max_priority_tx_delay > 0:
            left_out = pending_deposit_ids[len(included_deposits):]
            if left_out:
                oldest = self.pending_deposits.get(left_out[0])
                if now - oldest.enqueued_at > self.max_priority_tx_delay:
                    raise ValueError("Missing priority deposit")

        block = Block.from_transitions(block_id, now, transitions, intents)
        for deposit_id in included_deposits:
            self.pending_deposits.include(deposit_id, block_id)
        for sync_id in included_syncs:
            self.pending_balance_syncs.include(sync_id, block_id)
        for commit in withdraw_commits:
            self.pending_withdraw_commits.append(commit)
        self.blocks.append(block)

        self._emit(RollupBlockCommitted(block_id))
        self._log(f"✅ Block {block_id} committed: {len(transitions)} transitions, root {block.root_hash[:16]}...")
        return block

    def _next_block_to_execute(self) -> Optional[Block]:
        while self.count_executed < len(self.blocks):
            block = self.blocks[self.count_executed]
            if block.status == BlockStatus.COMMITTED:
                return block
            self.count_executed += 1
        return None

    def execute_block(self, sender: str, intents: List[bytes], now: float) -> int:
        """
        Execute the oldest committed block once its challenge period is over.
        Callable by anyone.

        Args:
            sender: caller address
            intents: the block's sync-commitment transitions, in block order
            now: current time

        Returns:
            int: executed block id
        """
        block = self._next_block_to_execute()
        if block is None:
            raise ValueError("No blocks pending execution")
        if not block.challenge_period_over(now, self.block_challenge_period):
            raise ValueError("Block challenge period is not over")
        if calculate_intent_hash(intents) != block.intent_hash:
            raise ValueError("Invalid block intent")

        commitments = self._net_commitments(block.block_id, intents)

        for strategy_id, (strategy, net) in commitments.items():
            if net > 0:
                token = self.tokens[strategy.get_asset_address()]
                token.approve(self.address, strategy.address, net)
                strategy.aggregate_commit(self.address, net)
            elif net < 0:
                strategy.aggregate_uncommit(self.address, -net)
            self.strategy_asset_balances[strategy_id] += net

        self.pending_deposits.clear_block(block.block_id)
        self.pending_balance_syncs.clear_block(block.block_id)
        for commit_id in self.pending_withdraw_commits.clear_block(block.block_id):
            commit = self.pending_withdraw_commits.get(commit_id)
            self.pending_withdraws[(commit.account, commit.asset_id)] += commit.amount

        block.status = BlockStatus.EXECUTED
        self.count_executed += 1
        self._emit(RollupBlockExecuted(block.block_id))
        self._log(f"✅ Block {block.block_id} executed")
        return block.block_id

    def _net_commitments(self, block_id: int, intents: List[bytes]) -> Dict[int, Tuple[Strategy, int]]:
        """
        Net each strategy's sync commitments and check every transfer can
        complete before any of them is made.

        Intents already matched the block's intent hash, so an undecodable
        one was committed that way by the operator. It is skipped and moves
        no funds: raising here would leave the block unexecutable forever,
        and the only remedy for such a transition is a "failed to evaluate"
        dispute inside the challenge period.
        """
        nets: Dict[int, int] = defaultdict(int)
        for intent in intents:
            try:
                tn = decode_transition(intent)
            except ValueError:
                self._log(f"⚠️  Block {block_id}: skipping undecodable sync commitment")
                continue
            if tn.TRANSITION_TYPE != config.TN_TYPE_SYNC_COMMITMENT:
                continue
            nets[tn.strategy_id] += tn.pending_commit_amount - tn.pending_uncommit_amount

        commitments: Dict[int, Tuple[Strategy, int]] = {}
        required: Dict[str, int] = defaultdict(int)
        for strategy_id, net in nets.items():
            strategy = self._get_strategy(strategy_id)
            asset_address = strategy.get_asset_address()
            if asset_address not in self.tokens:
                raise ValueError("Unknown asset")
            if net > 0:
                required[asset_address] += net
            elif net < 0 and strategy.get_balance() < -net:
                raise ValueError("Strategy balance too low for uncommit")
            commitments[strategy_id] = (strategy, net)

        for asset_address, amount in required.items():
            if self.tokens[asset_address].balance_of(self.address) < amount:
                raise ValueError("Insufficient assets for commit")
        return commitments

    def dispute_transition(self, sender: str, prev_proof: TransitionProof, invalid_proof: TransitionProof,
                           account_proof: Optional[AccountProof], strategy_proof: Optional[StrategyProof],
                           now: float) -> str:
        """
        Challenge one transition of a committed block. Callable by anyone.

        Returns:
            str: revert reason; the block has been reverted

        Raises:
            ValueError: dispute rejected, nothing changed
        """
        block_id = invalid_proof.block_id
        if not isinstance(block_id, int) or block_id < 0 or block_id >= len(self.blocks):
            raise ValueError("Failed to dispute")
        block = self.blocks[block_id]
        if block.challenge_period_over(now, self.block_challenge_period):
            raise ValueError("Block challenge period is over")
        if not block.is_committed():
            raise ValueError("Block is not committed")

        block_id, reason = self.disputer.dispute_transition(
            prev_proof, invalid_proof, account_proof, strategy_proof, self.blocks
        )
        self._revert_block(block_id, reason)
        return reason

    def _revert_block(self, block_id: int, reason: str):
        block = self.blocks[block_id]
        block.status = BlockStatus.REVERTED
        block.revert_reason = reason

        deposits = self.pending_deposits.revert_block(block_id)
        syncs = self.pending_balance_syncs.revert_block(block_id)
        self.pending_withdraw_commits.discard_block(block_id)

        self._emit(RollupBlockReverted(block_id, reason))
        self._log(f"⚠️  Block {block_id} reverted: {reason} ({deposits} deposits, {syncs} balance syncs back to pending)")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def pause(self, sender: str):
        self._only_owner(sender)
        self._when_not_paused()
        self.paused = True
        self._log("🔒 Rollup paused")

    def unpause(self, sender: str):
        self._only_owner(sender)
        self._when_paused()
        self.paused = False
        self._log("🔓 Rollup unpaused")

    def set_operator(self, sender: str, operator: str):
        self._only_owner(sender)
        self.operator = operator

    def set_net_deposit_limit(self, sender: str, asset_address: str, limit: int):
        self._only_owner(sender)
        asset_id = self.registry.asset_address_to_index(asset_address)
        if asset_id == 0:
            raise ValueError("Unknown asset")
        self.net_deposit_limits[asset_id] = limit

    def set_block_challenge_period(self, sender: str, period: float):
        self._only_owner(sender)
        self.block_challenge_period = period

    def set_max_priority_tx_delay(self, sender: str, delay: float):
        self._only_owner(sender)
        self.max_priority_tx_delay = delay

    def drain_token(self, sender: str, asset_address: str, amount: int):
        """Emergency: move custodied tokens to the owner. Only while paused."""
        self._only_owner(sender)
        self._when_paused()
        token = self.tokens.get(asset_address)
        if token is None:
            raise ValueError("Unknown asset")
        token.transfer(self.address, self.owner, amount)
        self._log(f"⚠️  Drained {amount} of {asset_address} to owner")

    def drain_eth(self, sender: str, amount: int):
        self._only_owner(sender)
        self._when_paused()
        _, wrapped = self._get_wrapped_native()
        wrapped.unwrap(self.address, amount)
        wrapped.send_native(self.address, self.owner, amount)
        self._log(f"⚠️  Drained {amount} native to owner")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_current_block_id(self) -> int:
        """Id of the latest committed block, -1 before the first one."""
        return len(self.blocks) - 1

    def get_block(self, block_id: int) -> Optional[Block]:
        if 0 <= block_id < len(self.blocks):
            return self.blocks[block_id]
        return None

    def get_block_count(self) -> int:
        return len(self.blocks)

    def pending_deposit(self, deposit_id: int) -> Optional[DepositIntake]:
        return self.pending_deposits.get(deposit_id)

    def pending_balance_sync(self, sync_id: int) -> Optional[BalanceSyncIntake]:
        return self.pending_balance_syncs.get(sync_id)

    def get_pending_withdraw_commits(self, block_id: int) -> List[WithdrawCommit]:
        return [entry for entry in self.pending_withdraw_commits.entries.values() if entry.block_id == block_id]

    def pending_withdraw(self, account: str, asset_id: int) -> int:
        return self.pending_withdraws.get((account, asset_id), 0)

    def net_deposit(self, asset_id: int) -> int:
        return self.net_deposits.get(asset_id, 0)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_state(self):
        """Write ledger state to <data_dir>/rollup_state.json atomically."""
        if not self.data_dir:
            raise ValueError("No data directory configured")

        state = {
            "genesis_root": self.genesis_root,
            "owner": self.owner,
            "operator": self.operator,
            "paused": self.paused,
            "block_challenge_period": self.block_challenge_period,
            "max_priority_tx_delay": self.max_priority_tx_delay,
            "blocks": [block.to_dict() for block in self.blocks],
            "count_executed": self.count_executed,
            "pending_deposits": self.pending_deposits.to_dict(),
            "pending_withdraw_commits": self.pending_withdraw_commits.to_dict(),
            "pending_balance_syncs": self.pending_balance_syncs.to_dict(),
            "pending_withdraws": [
                {"account": account, "asset_id": asset_id, "amount": amount}
                for (account, asset_id), amount in self.pending_withdraws.items() if amount
            ],
            "net_deposit_limits": {str(k): v for k, v in self.net_deposit_limits.items()},
            "net_deposits": {str(k): v for k, v in self.net_deposits.items()},
            "strategy_asset_balances": {str(k): v for k, v in self.strategy_asset_balances.items()}
        }

        state_file = os.path.join(self.data_dir, config.LEDGER_STATE_FILE)
        temp_fd, temp_path = tempfile.mkstemp(dir=self.data_dir, suffix='.tmp')

        try:
            with os.fdopen(temp_fd, 'w') as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, state_file)
        except Exception as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise e

    def load_state(self):
        state_file = os.path.join(self.data_dir, config.LEDGER_STATE_FILE)
        if not os.path.exists(state_file):
            return

        try:
            with open(state_file, 'r') as f:
                state = json.load(f)
        except json.JSONDecodeError as e:
            print(f"ERROR: Corrupted rollup state file: {e}")
            raise e

        if state.get("genesis_root", self.genesis_root) != self.genesis_root:
            raise ValueError("Stored state has a different genesis root")

        self.owner = state.get("owner", self.owner)
        self.operator = state.get("operator", self.operator)
        self.paused = state.get("paused", False)
        self.block_challenge_period = state.get("block_challenge_period", self.block_challenge_period)
        self.max_priority_tx_delay = state.get("max_priority_tx_delay", self.max_priority_tx_delay)
        self.blocks = [Block.from_dict(data) for data in state.get("blocks", [])]
        self.count_executed = state.get("count_executed", 0)

        if "pending_deposits" in state:
            self.pending_deposits = IntakeQueue.from_dict(state["pending_deposits"])
        if "pending_withdraw_commits" in state:
            self.pending_withdraw_commits = IntakeQueue.from_dict(state["pending_withdraw_commits"])
        if "pending_balance_syncs" in state:
            self.pending_balance_syncs = IntakeQueue.from_dict(state["pending_balance_syncs"])

        self.pending_withdraws = defaultdict(int)
        for item in state.get("pending_withdraws", []):
            self.pending_withdraws[(item["account"], item["asset_id"])] = item["amount"]

        self.net_deposit_limits = {int(k): v for k, v in state.get("net_deposit_limits", {}).items()}
        self.net_deposits = defaultdict(int, {int(k): v for k, v in state.get("net_deposits", {}).items()})
        self.strategy_asset_balances = defaultdict(
            int, {int(k): v for k, v in state.get("strategy_asset_balances", {}).items()}
        )

        self._log(f"✅ Loaded rollup state: {len(self.blocks)} blocks, {self.count_executed} executed")
