"""Repository abstractions for database interactions."""

from .campaign_repository import CampaignRepository
from .credential_repository import CredentialRepository, IssuedCredentials
from .idempotency_repository import IdempotencyRepository
from .ledger_repository import LedgerRepository, WalletReconciliation
from .receipt_repository import ReceiptRepository
from .rollup_repository import RollupRepository

__all__ = [
    "CampaignRepository",
    "CredentialRepository",
    "IdempotencyRepository",
    "IssuedCredentials",
    "LedgerRepository",
    "ReceiptRepository",
    "RollupRepository",
    "WalletReconciliation",
]
