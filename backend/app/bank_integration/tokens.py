"""
Token Lifecycle Manager

Owns the OAuth authorization-code exchange and token refresh for a single
BankIntegration row, and answers "give me a valid access token now".
All writes are confined to that one integration row.
"""

import json
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from backend.app.models import BankIntegration, IntegrationStatus
from backend.config import get_settings
from .banks import BANK_OAUTH_CONFIG, BankOAuthConfig
from .encryption import TokenEncryption
from .errors import (
    BankIntegrationError, NotFound, NoToken, RefreshFailed,
    BankApiError, NetworkError, ValidationError
)

logger = logging.getLogger(__name__)

OAUTH_CALLBACK_PATH = "/api/accounting/bank-oauth/callback"

# Statuses where the stored token is known dead; fail without calling the bank
DEAD_TOKEN_STATUSES = (IntegrationStatus.TOKEN_EXPIRED, IntegrationStatus.EXPIRED)


def build_redirect_uri() -> str:
    return f"{get_settings().app_base_url.rstrip('/')}{OAUTH_CALLBACK_PATH}"


def find_integration_by_oauth_state(db: Session, state: str) -> Optional[BankIntegration]:
    """Locate the integration waiting on an OAuth callback. Used before the company is known."""
    if not state:
        return None
    return db.query(BankIntegration).filter(BankIntegration.oauth_state == state).first()


class TokenManager:
    """
    OAuth token lifecycle for one company's bank integrations.

    Refresh is proactive: a token expiring within the look-ahead window is
    refreshed before it is handed out. A refresh the bank rejects marks the
    integration token_expired, and every later call fails fast until a
    human re-authorizes. A rejection caused by a concurrent refresh that
    already rotated the token pair is not treated as expiry.
    """

    def __init__(
        self,
        db: Session,
        company_id: int,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.db = db
        self.company_id = company_id
        self.transport = transport
        self.encryption = TokenEncryption()
        settings = get_settings()
        self.refresh_window = timedelta(minutes=settings.token_refresh_window_minutes)
        self.timeout = settings.bank_api_timeout_seconds

    def get_integration(self, integration_id: int) -> BankIntegration:
        integration = self.db.query(BankIntegration).filter(
            BankIntegration.id == integration_id,
            BankIntegration.company_id == self.company_id
        ).first()
        if not integration:
            raise NotFound("Integration not found")
        return integration

    def _oauth_config(self, bank_code: str) -> BankOAuthConfig:
        config = BANK_OAUTH_CONFIG.get(bank_code)
        if not config:
            raise ValidationError(f"OAuth is not supported for bank {bank_code}")
        return config

    async def ensure_valid_token(self, integration_id: int) -> Dict[str, Any]:
        """
        Return a usable access token, refreshing it first if needed.

        Returns:
            {'valid': True, 'token': str} or
            {'valid': False, 'error': str, 'error_code': str}
        """
        try:
            token = await self.get_access_token(integration_id)
        except BankIntegrationError as e:
            return {'valid': False, 'error': e.message, 'error_code': e.code}
        return {'valid': True, 'token': token}

    async def get_access_token(self, integration_id: int) -> str:
        """
        Raising variant of ensure_valid_token, used by the synchronizer and
        the payment submitter.

        Raises:
            NotFound, NoToken, RefreshFailed, NetworkError, ValidationError
        """
        integration = self.get_integration(integration_id)

        if not integration.api_access_token:
            raise NoToken("No access token")

        if integration.status in DEAD_TOKEN_STATUSES:
            raise RefreshFailed("Bank authorization has expired. Please reconnect the bank.")

        expires_at = integration.api_token_expires_at
        if expires_at and expires_at - datetime.utcnow() < self.refresh_window:
            logger.info(f"Token for integration {integration.id} expires at {expires_at}, refreshing")
            return await self._refresh(integration)

        return self.encryption.decrypt(integration.api_access_token)

    async def refresh_access_token(self, integration_id: int) -> Dict[str, Any]:
        """Refresh unconditionally. Returns {'success': bool, 'error'?: str}."""
        try:
            integration = self.get_integration(integration_id)
            await self._refresh(integration, force=True)
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}
        return {'success': True}

    async def _refresh(self, integration: BankIntegration, force: bool = False) -> str:
        refresh_token = self.encryption.decrypt(integration.api_refresh_token)

        if not refresh_token:
            expires_at = integration.api_token_expires_at
            if not force and expires_at and expires_at > datetime.utcnow():
                # Cannot renew, but the current token is still alive
                return self.encryption.decrypt(integration.api_access_token)
            self._mark_token_expired(integration, "No refresh token available")
            raise RefreshFailed("Token refresh failed")

        config = self._oauth_config(integration.bank_code)

        try:
            tokens = await self._post_token_request(
                config.token_url_for(integration.is_sandbox),
                {
                    'grant_type': 'refresh_token',
                    'refresh_token': refresh_token,
                    'client_id': integration.api_client_id or '',
                    'client_secret': self.encryption.decrypt(integration.api_client_secret) or '',
                }
            )
        except BankApiError:
            rotated = self._token_rotated_elsewhere(integration, refresh_token)
            if rotated is not None:
                return rotated
            self._mark_token_expired(integration, "Token refresh failed")
            raise RefreshFailed("Token refresh failed")
        except NetworkError:
            raise NetworkError("Network error during token refresh")

        self._store_tokens(integration, tokens, previous_refresh_token=refresh_token)
        integration.status = IntegrationStatus.ACTIVE
        integration.last_error = None
        self.db.commit()

        logger.info(f"Refreshed token for integration {integration.id}, new expiry {integration.api_token_expires_at}")
        return tokens['access_token']

    def _token_rotated_elsewhere(self, integration: BankIntegration, sent_refresh_token: str) -> Optional[str]:
        """
        After a rejected refresh, check whether a concurrent caller already
        stored a new token pair. The bank invalidates the old refresh token
        once it rotates, so the rejection is then not a dead authorization.

        Returns:
            The stored access token, or None if nothing was rotated

        Raises:
            RefreshFailed: Another caller won but its token is already inside the
                refresh window; the integration is left as it is for a retry
        """
        self.db.refresh(integration)
        stored_refresh_token = self.encryption.decrypt(integration.api_refresh_token)
        if not stored_refresh_token or stored_refresh_token == sent_refresh_token:
            return None

        logger.info(f"Integration {integration.id}: refresh token was rotated by a concurrent refresh")
        expires_at = integration.api_token_expires_at
        if expires_at and expires_at - datetime.utcnow() < self.refresh_window:
            raise RefreshFailed("Token refresh failed")
        return self.encryption.decrypt(integration.api_access_token)

    def _mark_token_expired(self, integration: BankIntegration, message: str):
        logger.warning(f"Integration {integration.id}: {message}, marking token_expired")
        integration.status = IntegrationStatus.TOKEN_EXPIRED
        integration.last_error = message
        self.db.commit()

    def _store_tokens(
        self,
        integration: BankIntegration,
        tokens: Dict[str, Any],
        previous_refresh_token: Optional[str] = None
    ):
        # Banks that do not rotate refresh tokens omit it from the response
        refresh_token = tokens.get('refresh_token') or previous_refresh_token
        expires_in = tokens.get('expires_in')

        integration.api_access_token = self.encryption.encrypt(tokens['access_token'])
        integration.api_refresh_token = self.encryption.encrypt(refresh_token)
        integration.api_token_expires_at = (
            datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        )

    async def _post_token_request(self, token_url: str, form: Dict[str, str]) -> Dict[str, Any]:
        """
        POST a form-encoded grant to the bank's token endpoint.

        Raises:
            BankApiError: Non-2xx or a body without access_token
            NetworkError: Transport failure
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    token_url,
                    data=form,
                    headers={'Accept': 'application/json'}
                )
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint {token_url} unreachable: {e!r}")
            raise NetworkError("Network error") from e

        if not response.is_success:
            logger.error(f"Token endpoint {token_url} returned {response.status_code}: {response.text}")
            raise BankApiError(
                f"Token endpoint error: {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )

        try:
            tokens = response.json()
        except json.JSONDecodeError as e:
            logger.error(f"Token endpoint {token_url} returned non-JSON body")
            raise BankApiError("Malformed token response", status_code=response.status_code) from e

        if not isinstance(tokens, dict) or not tokens.get('access_token'):
            logger.error(f"Token endpoint {token_url} response has no access_token")
            raise BankApiError("Malformed token response", status_code=response.status_code)

        return tokens

    def generate_oauth_url(self, integration_id: int) -> Dict[str, Any]:
        """
        Build the bank's authorize URL with a fresh CSRF state.

        The state is persisted on the integration and checked again in
        exchange_code_for_tokens().

        Returns:
            {'success': True, 'url': str, 'state': str} or a failure dict
        """
        try:
            integration = self.get_integration(integration_id)
            config = self._oauth_config(integration.bank_code)
            if not integration.api_client_id:
                raise ValidationError("Client ID not configured for integration")
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        state = secrets.token_urlsafe(32)
        integration.oauth_state = state
        self.db.commit()

        params = urlencode({
            'response_type': 'code',
            'client_id': integration.api_client_id,
            'redirect_uri': build_redirect_uri(),
            'scope': config.scope,
            'state': state,
        })

        return {
            'success': True,
            'url': f"{config.auth_url_for(integration.is_sandbox)}?{params}",
            'state': state
        }

    async def exchange_code_for_tokens(self, bank_code: str, code: str, state: str) -> Dict[str, Any]:
        """
        Complete the OAuth flow: validate state, trade the code for tokens,
        activate the integration.

        Returns:
            {'success': True, 'integration_id': int} or a failure dict
        """
        try:
            config = self._oauth_config(bank_code)

            integration = None
            if state:
                integration = self.db.query(BankIntegration).filter(
                    BankIntegration.company_id == self.company_id,
                    BankIntegration.bank_code == bank_code,
                    BankIntegration.oauth_state == state
                ).first()
            if not integration:
                raise NotFound("Invalid state or integration not found")

            try:
                tokens = await self._post_token_request(
                    config.token_url_for(integration.is_sandbox),
                    {
                        'grant_type': 'authorization_code',
                        'code': code,
                        'redirect_uri': build_redirect_uri(),
                        'client_id': integration.api_client_id or '',
                        'client_secret': self.encryption.decrypt(integration.api_client_secret) or '',
                    }
                )
            except BankApiError:
                raise BankApiError("Token exchange failed")
            except NetworkError:
                raise NetworkError("Network error during token exchange")

        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        self._store_tokens(integration, tokens)
        integration.oauth_state = None
        integration.status = IntegrationStatus.ACTIVE
        integration.last_error = None
        self.db.commit()

        logger.info(f"Integration {integration.id} ({bank_code}) authorized")
        return {'success': True, 'integration_id': integration.id}
