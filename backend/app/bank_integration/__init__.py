"""
Bank Integration Module

Connects company bank accounts over the banks' OAuth-protected business APIs:
token lifecycle, statement sync, categorization and payment orders.
Per-bank wire bindings live in providers/.
"""

from .service import BankIntegrationService, run_scheduled_sync
from .encryption import TokenEncryption
from .errors import BankIntegrationError

__all__ = ['BankIntegrationService', 'run_scheduled_sync', 'TokenEncryption', 'BankIntegrationError']
