"""Chain validation constants.

Keep builtin addresses, code IDs and reward parameters aligned with the
actors the implementations under test ship at genesis.
"""

# Network
NETWORK_NAME = "chain-validation"

# Units
FIL_PRECISION = 10**18
TOTAL_FILECOIN = 2_000_000_000
TOTAL_NETWORK_BALANCE = TOTAL_FILECOIN * FIL_PRECISION

# Rewards
FIRST_EPOCH_REWARD = 10**17
EXPECTED_LEADERS_PER_EPOCH = 5

# Gas
BASE_FEE = 100
GAS_OVERUSE_NUM = 11
GAS_OVERUSE_DENOM = 10

DEFAULT_GAS_LIMIT = 1_000_000_000
DEFAULT_GAS_FEE_CAP = 200
DEFAULT_GAS_PREMIUM = 1

# Builtin singleton actor IDs
SYSTEM_ACTOR_ID = 0
INIT_ACTOR_ID = 1
REWARD_ACTOR_ID = 2
CRON_ACTOR_ID = 3
STORAGE_POWER_ACTOR_ID = 4
STORAGE_MARKET_ACTOR_ID = 5
VERIFIED_REGISTRY_ACTOR_ID = 6
BURNT_FUNDS_ACTOR_ID = 99

# First ID handed out by the init actor
FIRST_NON_SINGLETON_ID = 100

# Actor code IDs
SYSTEM_ACTOR_CODE = "fil/1/system"
INIT_ACTOR_CODE = "fil/1/init"
REWARD_ACTOR_CODE = "fil/1/reward"
CRON_ACTOR_CODE = "fil/1/cron"
STORAGE_POWER_ACTOR_CODE = "fil/1/storagepower"
STORAGE_MARKET_ACTOR_CODE = "fil/1/storagemarket"
STORAGE_MINER_ACTOR_CODE = "fil/1/storageminer"
ACCOUNT_ACTOR_CODE = "fil/1/account"
MULTISIG_ACTOR_CODE = "fil/1/multisig"
PAYMENT_CHANNEL_ACTOR_CODE = "fil/1/paymentchannel"

# Actors that may appear as the top-level sender of a message
SIGNABLE_ACTOR_CODES = frozenset({ACCOUNT_ACTOR_CODE})

# Actors the init actor is allowed to construct through Exec
EXEC_ALLOWED_CODES = frozenset({MULTISIG_ACTOR_CODE, PAYMENT_CHANNEL_ACTOR_CODE})

# Mining
TEST_SEAL_PROOF_TYPE = 0  # StackedDrg2KiBV1
TEST_SECTOR_SIZE = 2048

# Address sizes
PAYLOAD_HASH_LENGTH = 20
CHECKSUM_HASH_LENGTH = 4
BLS_PUBLIC_KEY_BYTES = 48
SECP_PUBLIC_KEY_BYTES = 65
