"""
ROLLUP CONFIGURATION

Protocol constants shared by the ledger, the evaluator and the off-chain
block builder. Ledger constructor arguments override the defaults.
"""

CHAIN_ID = "yield-rollup"
ADDRESS_PREFIX = "0x"

# Sparse state tree: one account subtree and one strategy subtree, each
# STATE_TREE_HEIGHT levels deep. Leaf proofs carry one extra sibling for the
# other subtree root.
STATE_TREE_HEIGHT = 32
MAX_TREE_INDEX = 2 ** STATE_TREE_HEIGHT - 1
EMPTY_LEAF = "0" * 64

# Transition discriminants
TN_TYPE_INVALID = 0
TN_TYPE_DEPOSIT = 1
TN_TYPE_WITHDRAW = 2
TN_TYPE_COMMIT = 3
TN_TYPE_UNCOMMIT = 4
TN_TYPE_SYNC_COMMITMENT = 5
TN_TYPE_SYNC_BALANCE = 6
TN_TYPE_INIT = 7

# Challenge period in seconds measured from block commit time
DEFAULT_BLOCK_CHALLENGE_PERIOD = 6 * 60 * 60

# Oldest pending deposit a block may leave out (seconds, 0 = disabled)
DEFAULT_MAX_PRIORITY_TX_DELAY = 0

MAX_TRANSITIONS_PER_BLOCK = 1024
MAX_AMOUNT = 2 ** 256 - 1

LEDGER_STATE_FILE = "rollup_state.json"
