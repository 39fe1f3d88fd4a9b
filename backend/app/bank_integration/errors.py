"""
Bank integration error taxonomy.

Components raise these internally; every public operation catches
BankIntegrationError and reports it as a {'success': False, ...} result.
Messages are short and safe to show to the user. Response bodies and
credentials stay in the logs.
"""

from typing import Optional


class BankIntegrationError(Exception):
    """Base class for failures scoped to one integration, account or order."""

    code = "bank_integration_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(BankIntegrationError):
    """Integration, account, transaction or order is missing or belongs to another company."""

    code = "not_found"


class NoToken(BankIntegrationError):
    """The integration never completed the OAuth flow."""

    code = "no_token"


class RefreshFailed(BankIntegrationError):
    """The bank rejected the refresh token. Terminal until re-authorization."""

    code = "refresh_failed"


class BankApiError(BankIntegrationError):
    """Non-2xx or malformed response from the bank."""

    code = "bank_api_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(BankIntegrationError):
    """Transport-level failure talking to the bank. Always retryable."""

    code = "network_error"


class ValidationError(BankIntegrationError):
    """Operation not allowed in the current state."""

    code = "validation_error"
