DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9100
DEFAULT_ROUTE_PREFIX = "/test"
DEFAULT_HEARTBEAT_SECONDS = 10.0
DEFAULT_SNAPSHOT_ENV = "UPDATE_SNAPSHOTS"
DEFAULT_TEST_FILES = ["tests/**/test_*.py"]
DEFAULT_STORAGE_PATH = ".testdaemon/storage.json"
DEFAULT_COVERAGE_DIR = ".testdaemon/coverage"
DEFAULT_COVERAGE_REPORTS = ["text"]

# Separator between ancestor titles in a fully-qualified title.
TITLE_SEPARATOR = " "

# Collections with this prefix survive the post-run cleanup.
PROTECTED_COLLECTION_PREFIX = "system."

MATCH_ALL_DESCRIPTION = "all tests"
ALREADY_RUNNING_MESSAGE = "Tests already running"
SHUTDOWN_REASON_DEFAULT = "Test daemon is shutting down"
