"""OAuth callback processing.

Stages of a callback:

    AWAITING_CODE -> VALIDATING_STATE -> EXCHANGING_TOKEN
        -> PERSISTING_CREDENTIAL -> COMPLETE

Any stage may exit to FAILED. The ToolOAuthError raised on failure carries
the stage it failed in (``error.stage``). Nothing is retried here; the user
restarts from the login route.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

import msgspec

from ..errors import (
    ConfigurationError,
    NotFoundError,
    ProviderError,
    SessionExpiredError,
    ToolOAuthError,
)
from ..logging_config import get_logger
from ..models import CredentialReference, MintedTokenSet, PendingFlow
from .exchange import ExchangeRequest, TokenExchanger
from .flow_store import PendingFlowStore
from .initiator import DiscoverEndpoints

if TYPE_CHECKING:
    from ..credentials.persistence import CredentialPersister
    from ..registry import ToolRegistry

logger = get_logger("oauth.callback")


class FlowStage(str, enum.Enum):
    AWAITING_CODE = "awaiting_code"
    VALIDATING_STATE = "validating_state"
    EXCHANGING_TOKEN = "exchanging_token"
    PERSISTING_CREDENTIAL = "persisting_credential"
    COMPLETE = "complete"
    FAILED = "failed"


class CallbackResult(msgspec.Struct, kw_only=True):
    """Outcome of a completed flow."""

    tool_id: str
    token_set: MintedTokenSet
    credential_reference: CredentialReference
    # Exchange strategy that produced the token (for logs, not end users)
    strategy: str
    stage: FlowStage = FlowStage.COMPLETE


class CallbackProcessor:
    """Completes an authorization attempt started by FlowInitiator."""

    def __init__(
        self,
        flow_store: PendingFlowStore,
        tools: "ToolRegistry",
        discover: DiscoverEndpoints,
        exchanger: TokenExchanger,
        persister: "CredentialPersister",
    ) -> None:
        self._flow_store = flow_store
        self._tools = tools
        self._discover = discover
        self._exchanger = exchanger
        self._persister = persister

    async def handle_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        """Process the provider's redirect back to this service.

        Args:
            code: Authorization code
            state: Flow token issued at initiation
            error: Provider error code, if authorization failed
            error_description: Provider error description

        Returns:
            CallbackResult with the minted tokens and linked credential

        Raises:
            ProviderError: Provider reported an error or sent no code
            SessionExpiredError: Unknown, expired or already used state
            NotFoundError: Tool no longer exists
            ConfigurationError: Tool server no longer supports OAuth
            ExchangeError: Every token exchange strategy failed
            PersistenceError: Token could not be stored or linked
        """
        stage = FlowStage.AWAITING_CODE
        try:
            if error or not code:
                if state:
                    # A failed attempt must not leave a replayable flow behind
                    await self._flow_store.consume(state)
                if error:
                    logger.error(
                        "OAuth authorization failed at provider: error=%s", error
                    )
                    raise ProviderError(
                        f"Provider returned error: {error}", detail=error_description
                    )
                raise ProviderError("Callback is missing the authorization code")

            stage = FlowStage.VALIDATING_STATE
            flow = await self._flow_store.consume(state) if state else None
            if flow is None:
                logger.error("Invalid, expired or reused OAuth state")
                raise SessionExpiredError("OAuth state is unknown, expired or already used")

            logger.info(
                "Processing OAuth callback: tool_id=%s, tenant_id=%s, project_id=%s",
                flow.tool_id,
                flow.tenant_id,
                flow.project_id,
            )
            token_url = await self._resolve_token_url(flow)

            stage = FlowStage.EXCHANGING_TOKEN
            outcome = await self._exchanger.exchange(
                ExchangeRequest(
                    token_url=token_url,
                    client_id=flow.client_id,
                    code=code,
                    code_verifier=flow.code_verifier,
                    redirect_uri=flow.redirect_uri,
                )
            )

            stage = FlowStage.PERSISTING_CREDENTIAL
            reference = await self._persister.persist(
                tool_id=flow.tool_id,
                tenant_id=flow.tenant_id,
                project_id=flow.project_id,
                token_set=outcome.token_set,
            )
        except ToolOAuthError as e:
            e.stage = stage
            logger.warning(
                "OAuth callback failed: stage=%s, error=%s", stage.value, type(e).__name__
            )
            raise

        logger.info(
            "OAuth flow completed successfully: tool_id=%s, credential_id=%s",
            flow.tool_id,
            reference.id,
        )
        return CallbackResult(
            tool_id=flow.tool_id,
            token_set=outcome.token_set,
            credential_reference=reference,
            strategy=outcome.strategy,
        )

    async def _resolve_token_url(self, flow: PendingFlow) -> str:
        tool = await self._tools.get_tool_by_id(flow.scopes, flow.tool_id)
        if tool is None:
            raise NotFoundError(f"Tool {flow.tool_id} not found")

        config = await self._discover(tool.server_url)
        if config is None or not config.token_url:
            raise ConfigurationError("Could not discover OAuth token endpoint")
        return config.token_url
