"""Error taxonomy for the tool OAuth flow.

Every failure that terminates a flow attempt derives from ToolOAuthError and
carries an HTTP status code plus a fixed public message. The exception's own
message and ``detail`` may contain provider text and are only rendered to end
users in development mode.

Errors that are recovered locally (RegistrationError, TokenExchangeFailure,
CredentialStoreError) never reach the HTTP layer directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .oauth.callback import FlowStage


class ToolOAuthError(Exception):
    """Base class for errors that end an OAuth flow attempt."""

    status_code: int = 500
    public_message: str = "OAuth Processing Failed. Please try again."

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        # Set by the callback processor to the stage that failed
        self.stage: "FlowStage | None" = None


class ConfigurationError(ToolOAuthError):
    """Provider does not support OAuth, or discovery is misconfigured."""

    status_code = 400
    public_message = "OAuth is not available for this tool."


class NotFoundError(ToolOAuthError):
    """Tool (or another required record) does not exist."""

    status_code = 404
    public_message = "Tool not found."


class ProviderError(ToolOAuthError):
    """Authorization denied or error reported by the provider."""

    status_code = 400
    public_message = "OAuth Authorization Failed. Please try again."


class SessionExpiredError(ToolOAuthError):
    """Flow token missing, expired or already consumed. Not retryable."""

    status_code = 400
    public_message = (
        "OAuth Session Expired: The OAuth session has expired or is invalid. "
        "Please try again."
    )


class ExchangeError(ToolOAuthError):
    """Every token exchange strategy failed."""

    status_code = 502
    public_message = "Authentication failed. Please try again or contact support."


class PersistenceError(ToolOAuthError):
    """No usable secret store, or a store write / reference upsert failed."""

    status_code = 500
    public_message = "Failed to save credentials. Please try again."


class FlowTokenCollisionError(ToolOAuthError):
    """A flow token was stored while another flow with it is still pending."""

    status_code = 500


class RegistrationError(Exception):
    """Dynamic client registration failed (recovered with default client id)."""


class TokenExchangeFailure(Exception):
    """A single token exchange strategy failed.

    Attributes:
        strategy: Name of the failing strategy
        status_code: HTTP status from the token endpoint, if any
        body: Raw provider response body, if any
    """

    def __init__(
        self,
        strategy: str,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy
        self.status_code = status_code
        self.body = body


class CredentialStoreError(Exception):
    """A credential store could not read or write a secret."""
