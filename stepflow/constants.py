"""Engine-wide defaults. All durations are milliseconds."""

DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_MAX_CONCURRENT_EXECUTIONS = 10
DEFAULT_MAX_GRAPH_STEPS = 1000
DEFAULT_WORKFLOW_VERSION = "1.0.0"
DEFAULT_RETENTION_HOURS = 24

DEFAULT_RETRY_INITIAL_DELAY_MS = 1000
DEFAULT_RETRY_BACKOFF_MULTIPLIER = 2.0
DEFAULT_RETRY_MAX_DELAY_MS = 30_000

DEFAULT_STEP_RETRY_INITIAL_DELAY_MS = 100

STEP_TIMEOUT_MESSAGE = "Step execution timeout"
