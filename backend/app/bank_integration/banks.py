"""
Bank registry

Static, process-wide configuration of the banks we know about: display
metadata, OAuth endpoints and REST API base URLs. Read-only mappings, looked
up by bank code.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional, Tuple


@dataclass(frozen=True)
class BankInfo:
    name: str
    short_name: str
    has_api: bool
    oauth_supported: bool
    payments_supported: bool = False
    api_docs_url: Optional[str] = None


@dataclass(frozen=True)
class BankOAuthConfig:
    auth_url: str
    token_url: str
    scope: str
    sandbox_auth_url: Optional[str] = None
    sandbox_token_url: Optional[str] = None

    def auth_url_for(self, is_sandbox: bool) -> str:
        if is_sandbox and self.sandbox_auth_url:
            return self.sandbox_auth_url
        return self.auth_url

    def token_url_for(self, is_sandbox: bool) -> str:
        if is_sandbox and self.sandbox_token_url:
            return self.sandbox_token_url
        return self.token_url


BANKS = MappingProxyType({
    'sber': BankInfo('Сбербанк', 'Сбер', True, True, api_docs_url='https://developer.sberbank.ru/'),
    'tinkoff': BankInfo('Тинькофф Бизнес', 'Тинькофф', True, True, payments_supported=True,
                        api_docs_url='https://www.tinkoff.ru/business/open-api/'),
    'alfa': BankInfo('Альфа-Банк', 'Альфа', True, True, api_docs_url='https://developers.alfabank.ru/'),
    'vtb': BankInfo('ВТБ', 'ВТБ', True, True, api_docs_url='https://developer.vtb.ru/'),
    'raiffeisen': BankInfo('Райффайзенбанк', 'Райффайзен', True, True, api_docs_url='https://developers.raiffeisen.ru/'),
    'modulbank': BankInfo('Модульбанк', 'Модуль', True, True, api_docs_url='https://api.modulbank.ru/'),
    'tochka': BankInfo('Точка Банк', 'Точка', True, True, api_docs_url='https://enter.tochka.com/doc/v2/'),
    'otkritie': BankInfo('Банк Открытие', 'Открытие', True, True, api_docs_url='https://developers.open.ru/'),
    'psb': BankInfo('Промсвязьбанк', 'ПСБ', True, False),
    'other': BankInfo('Другой банк', 'Другой', False, False),
})


BANK_OAUTH_CONFIG = MappingProxyType({
    'tinkoff': BankOAuthConfig(
        auth_url='https://id.tinkoff.ru/auth/authorize',
        token_url='https://id.tinkoff.ru/auth/token',
        scope=(
            'opensme/individual/accounts/read opensme/individual/statements/read '
            'opensme/individual/payments/read opensme/individual/payments/create'
        ),
        sandbox_auth_url='https://id.tinkoff.ru/auth/authorize',
        sandbox_token_url='https://id.tinkoff.ru/auth/token',
    ),
    'sber': BankOAuthConfig(
        auth_url='https://api.sberbank.ru/prod/tokens/v2/oauth',
        token_url='https://api.sberbank.ru/prod/tokens/v2/token',
        scope='openid profile',
    ),
    'alfa': BankOAuthConfig(
        auth_url='https://baas.alfabank.ru/oidc/authorize',
        token_url='https://baas.alfabank.ru/oidc/token',
        scope='accounts:read statements:read payments:read payments:create',
    ),
    'tochka': BankOAuthConfig(
        auth_url='https://enter.tochka.com/connect/authorize',
        token_url='https://enter.tochka.com/connect/token',
        scope='accounts statements',
    ),
    'modulbank': BankOAuthConfig(
        auth_url='https://oauth.modulbank.ru/oauth/authorize',
        token_url='https://oauth.modulbank.ru/oauth/token',
        scope='account-info operation-history',
    ),
})


# (production, sandbox)
BANK_API_BASE_URLS = MappingProxyType({
    'tinkoff': (
        'https://business.tinkoff.ru/openapi/api/v1',
        'https://business.tinkoff.ru/openapi/sandbox/api/v1',
    ),
})


def get_bank_info(bank_code: str) -> Optional[BankInfo]:
    return BANKS.get(bank_code)


def get_api_base_url(bank_code: str, is_sandbox: bool) -> Optional[str]:
    urls: Optional[Tuple[str, str]] = BANK_API_BASE_URLS.get(bank_code)
    if not urls:
        return None
    return urls[1] if is_sandbox else urls[0]
