"""Default configuration values."""

DEFAULT_DATABASE_FILE = "coderace.db"

# Bring-up: minimum wait after each command sent to a session, then a
# bounded poll for the pane to stop changing
DEFAULT_STEP_SETTLE_SECONDS = 2.0
DEFAULT_SETTLE_TIMEOUT_SECONDS = 10.0
DEFAULT_SETTLE_POLL_INTERVAL_SECONDS = 0.5

# Delay between the agent launch command and the task prompt
DEFAULT_PROMPT_DELAY_SECONDS = 3.0

# A session whose pane is unchanged for this long is considered waiting
DEFAULT_WAITING_THRESHOLD_SECONDS = 30.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

DEFAULT_TEARDOWN_TIMEOUT_SECONDS = 120.0

# ELO
DEFAULT_ELO_RATING = 1500.0
DEFAULT_K_FACTOR = 32.0
MIN_K_FACTOR = 16.0
MAX_K_FACTOR = 64.0
PROVISIONAL_GAMES = 30
MASTER_RATING = 2100.0

# Session naming
TASK_SESSION_PREFIX = "task_"
DEV_SESSION_PREFIX = "dev_"
