"""Centralized constants for Shipyard."""

# Output layout
BUILDS_DIR = "Builds"
RELEASES_DIR = "Releases"
VERSION_FILE = "VERSION"

# Command retry policy (recoverable conditions only)
COMMAND_RETRY_ATTEMPTS = 3
COMMAND_RETRY_DELAY_SECONDS = 1.0

# Caller-level backoff for rate limits / server errors
NETWORK_RETRY_ATTEMPTS = 3
NETWORK_RETRY_BASE_DELAY_SECONDS = 2.0

# Signing timeouts (seconds)
KEYCHAIN_TIMEOUT = 30
CODESIGN_TIMEOUT = 120
CODESIGN_VERIFY_TIMEOUT = 60
STAPLE_TIMEOUT = 60
DITTO_TIMEOUT = 120

# Remote job-trigger API accepts at most this many top-level inputs
MAX_WORKFLOW_INPUTS = 5
DEFAULT_DMG_WORKFLOW = "create-dmg.yml"
DEFAULT_WORKFLOW_REF = "main"

# Status string marker for failures
FAILURE_MARKER = "[error] "

# HTTP
USER_AGENT = "shipyard-release-pipeline"
GITHUB_ACCEPT = "application/vnd.github+json"

# Windows installer compiler default location
DEFAULT_INNO_SETUP_PATH = r"C:\Program Files (x86)\Inno Setup 6\ISCC.exe"

# Workflow bootstrap
WORKFLOWS_DIR = ".github/workflows"
WORKFLOWS_BUNDLE = ".shipyard/workflows.zip"
