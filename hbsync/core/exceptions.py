"""
Error Taxonomy
All service errors derive from HBSyncError

- Configuration errors are fatal at startup
- Token and remote errors propagate to the nearest transaction boundary
- Store errors are raised before any write happens
"""
from typing import Optional


class HBSyncError(Exception):
    """Base class for every error raised by the sync service."""


# ============================================================================
# CONFIGURATION
# ============================================================================

class ConfigurationError(HBSyncError):
    """Invalid or incomplete configuration. The process must not proceed."""


# ============================================================================
# TOKENS
# ============================================================================

class TokenError(HBSyncError):
    """Base class for OAuth token failures."""


class TokenUnavailableError(TokenError):
    """The token ready gate resolved unavailable (init failed or timed out)."""


class BootstrapCredentialsMissingError(TokenError):
    """No stored token and no INIT_TOKEN / INIT_REF_TOKEN to seed one from."""


class TokenRefreshError(TokenError):
    """The provider's token endpoint rejected a refresh."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# ============================================================================
# REMOTE API
# ============================================================================

class ProcoreAPIError(HBSyncError):
    """Non-2xx response from the Procore REST API."""

    def __init__(self, status_code: int, body: str, url: str = ""):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(self.describe())

    def describe(self) -> str:
        return f"Procore API error {self.status_code} for {self.url}: {self.body[:200]}"


class ProcoreAuthError(ProcoreAPIError):
    """401 - access token rejected."""


class ProcorePermissionError(ProcoreAPIError):
    """403 - the admin identity lacks permission for this resource."""

    def describe(self) -> str:
        return f"Procore denied access to {self.url} (403): check the admin user's tool permissions"


class ProcoreNotFoundError(ProcoreAPIError):
    """404 - resource or company does not exist."""

    def describe(self) -> str:
        return f"Procore resource not found: {self.url} (404)"


class ProcoreRateLimitError(ProcoreAPIError):
    """429 - rate limit hit."""

    def __init__(self, status_code: int, body: str, url: str = "", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(status_code, body, url)


class ProcoreServerError(ProcoreAPIError):
    """5xx - provider side failure."""


# ============================================================================
# STORE
# ============================================================================

class StoreError(HBSyncError):
    """Base class for persistence failures."""


class UnknownTableError(StoreError):
    def __init__(self, table: str):
        super().__init__(f"Unknown table: {table}")
        self.table = table


class MissingNaturalKeyError(StoreError):
    def __init__(self, table: str, missing: list):
        super().__init__(f"Missing natural key field(s) for {table}: {', '.join(missing)}")
        self.table = table
        self.missing = missing


class UnknownColumnError(StoreError):
    def __init__(self, table: str, columns: list):
        super().__init__(f"Unknown column(s) for {table}: {', '.join(columns)}")
        self.table = table
        self.columns = columns


class HistoryDecodeError(StoreError):
    """A history row could not be decoded into a snapshot."""


# ============================================================================
# ORCHESTRATION
# ============================================================================

class SyncAlreadyRunningError(HBSyncError):
    """A sync run was requested while another is in progress in this process."""
