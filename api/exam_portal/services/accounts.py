"""
Account Repository
Authentication against stored accounts, the recovery administrator, and bulk
user import.
"""
import logging
from typing import Optional, Sequence

from pydantic import ValidationError as SchemaError

from exam_portal.config import USERS_COLLECTION, get_failsafe_credentials
from exam_portal.errors import StoreUnavailable, ValidationError
from exam_portal.schemas import Account, Role, UserImportReport
from exam_portal.services.store import DocumentStore
from exam_portal.services.tabular import Row, decode_user_rows, read_rows

logger = logging.getLogger(__name__)


class RecoveryAccount:
    """
    Bootstrap administrator that authenticates regardless of store state.

    Consulted only after the normal lookup found no match or the store failed,
    so it never overrides a stored account's own password check.
    """

    def __init__(self, username: str, password: str, name: str = "Administrator"):
        self.username = username
        self.password = password
        self.name = name

    @classmethod
    def from_config(cls) -> "RecoveryAccount":
        username, password = get_failsafe_credentials()
        return cls(username, password)

    def check(self, username: str, password: str) -> Optional[Account]:
        if username == self.username and password == self.password:
            logger.warning(f"[Auth] Using failsafe admin login for '{username}'")
            return Account(username=self.username, password=self.password, name=self.name, role=Role.ADMIN)
        return None


class AccountRepository:
    def __init__(self, store: DocumentStore, recovery: Optional[RecoveryAccount] = None):
        self.store = store
        self.recovery = recovery or RecoveryAccount.from_config()

    def _lookup(self, username: str, password: str) -> Optional[Account]:
        for document in self.store.find(USERS_COLLECTION, {"username": username}):
            if document.get("password") != password:
                continue
            try:
                return Account.model_validate(document)
            except SchemaError as e:
                logger.warning(f"[Auth] Malformed account document for '{username}': {e}")
        return None

    def authenticate(self, username: str, password: str) -> Optional[Account]:
        """Returns the matching account, or None on a credential mismatch."""
        try:
            account = self._lookup(username, password)
        except StoreUnavailable as e:
            logger.error(f"[Auth] Account store unavailable: {e}")
            account = None

        if account is None:
            account = self.recovery.check(username, password)
        return account

    def get(self, username: str) -> Optional[Account]:
        document = self.store.get(USERS_COLLECTION, username)
        return Account.model_validate(document) if document is not None else None

    def save_users(self, accounts: Sequence[Account]) -> int:
        """Create or replace accounts keyed by username."""
        documents = {account.username: account.to_document() for account in accounts}
        written = self.store.put_many(USERS_COLLECTION, documents)
        logger.info(f"[Import] Saved {written} user(s)")
        return len(documents)

    def import_users(self, rows: Sequence[Row]) -> UserImportReport:
        """
        Decodes user rows and saves the valid ones.

        Raises:
            FormatError: If there are no rows at all.
            ValidationError: If no row produced a valid account.
            StoreUnavailable: If saving fails.
        """
        decoded = decode_user_rows(rows)
        if not decoded.accounts:
            raise ValidationError("No valid users found.")
        imported = self.save_users(decoded.accounts)
        return UserImportReport(imported=imported, skipped=decoded.skipped)

    def import_users_file(self, content: bytes) -> UserImportReport:
        return self.import_users(read_rows(content))
