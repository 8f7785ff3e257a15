"""Default values shared across stepgraph modules."""

DEFAULT_MAX_DELAY_MS = 60_000
DEFAULT_MAX_LOOP_ITERATIONS = 1000
DEFAULT_EXECUTION_TIMEOUT_MS = 3_600_000
DEFAULT_MAX_CONCURRENT_EXECUTIONS = 100
DEFAULT_EVENT_PUBLISH_TIMEOUT = 5.0

TRUE_BRANCH_LABELS = frozenset({"true", "yes", "success"})
FALSE_BRANCH_LABELS = frozenset({"false", "no", "failure"})
