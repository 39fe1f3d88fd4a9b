"""
Bank Wire Client bindings

One implementation per bank code, selected by create_wire_client().
"""

from types import MappingProxyType
from typing import Optional

import httpx

from backend.config import get_settings
from ..banks import get_api_base_url, get_bank_info
from ..errors import ValidationError
from .base import BankWireClient
from .tinkoff import TinkoffClient

WIRE_CLIENTS = MappingProxyType({
    'tinkoff': TinkoffClient,
})


def create_wire_client(
    integration,
    access_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> BankWireClient:
    """
    Build the wire client for an integration's bank.

    Args:
        integration: BankIntegration row (bank_code, is_sandbox, api_base_url)
        access_token: Valid token from the Token Lifecycle Manager
        transport: Optional httpx transport (tests inject a MockTransport)

    Raises:
        ValidationError: If the bank has no API binding
    """
    client_cls = WIRE_CLIENTS.get(integration.bank_code)
    base_url = integration.api_base_url or get_api_base_url(integration.bank_code, integration.is_sandbox)

    if client_cls is None or base_url is None:
        bank = get_bank_info(integration.bank_code)
        bank_name = bank.name if bank else integration.bank_code
        raise ValidationError(f"API access is not supported for {bank_name}")

    return client_cls(
        access_token=access_token,
        base_url=base_url,
        timeout=get_settings().bank_api_timeout_seconds,
        transport=transport
    )


__all__ = ['BankWireClient', 'TinkoffClient', 'WIRE_CLIENTS', 'create_wire_client']
