"""
Test Account Repository
Login against stored accounts, the recovery admin, and bulk user import.
"""
from unittest.mock import MagicMock

import pytest

from conftest import make_workbook
from exam_portal.errors import FormatError, StoreUnavailable, ValidationError
from exam_portal.schemas import Account, Role
from exam_portal.services.accounts import AccountRepository, RecoveryAccount


def test_recovery_admin_logs_in_on_empty_store(account_repo):
    account = account_repo.authenticate("admin", "admin123")

    assert account is not None
    assert account.role == Role.ADMIN


def test_recovery_admin_logs_in_when_store_is_down():
    store = MagicMock()
    store.find.side_effect = StoreUnavailable("no route to host")
    repo = AccountRepository(store, recovery=RecoveryAccount("admin", "admin123"))

    account = repo.authenticate("admin", "admin123")

    assert account.role == Role.ADMIN
    assert repo.authenticate("student", "pw") is None


def test_stored_account_with_matching_password(account_repo):
    account_repo.save_users([Account(username="s1", password="pw", name="Sam")])

    account = account_repo.authenticate("s1", "pw")

    assert account.name == "Sam"
    assert account.role == Role.STUDENT


def test_wrong_password_is_rejected(account_repo):
    account_repo.save_users([Account(username="s1", password="pw")])

    assert account_repo.authenticate("s1", "nope") is None
    assert account_repo.authenticate("ghost", "pw") is None


def test_stored_admin_does_not_disable_recovery_login(account_repo):
    account_repo.save_users([Account(username="admin", password="different", role=Role.ADMIN)])

    assert account_repo.authenticate("admin", "different").name == ""
    assert account_repo.authenticate("admin", "admin123").name == "Administrator"


def test_recovery_credentials_come_from_config(monkeypatch):
    monkeypatch.setenv("FAILSAFE_ADMIN_USERNAME", "root")
    monkeypatch.setenv("FAILSAFE_ADMIN_PASSWORD", "s3cret")

    recovery = RecoveryAccount.from_config()

    assert recovery.check("root", "s3cret").role == Role.ADMIN
    assert recovery.check("admin", "admin123") is None


def test_import_users_upserts_by_username(account_repo, store):
    account_repo.save_users([Account(username="s1", password="old")])

    report = account_repo.import_users([
        {"Username": "s1", "Password": "new", "Name": "Sam"},
        {"Username": "s2", "Password": "pw", "Role": "admin"},
        {"Username": "", "Password": "pw"},
    ])

    assert report.imported == 2
    assert [issue.index for issue in report.skipped] == [2]
    assert store.get("users", "s1")["password"] == "new"
    assert account_repo.get("s2").role == Role.ADMIN


def test_import_users_without_valid_rows(account_repo):
    with pytest.raises(ValidationError, match="No valid users"):
        account_repo.import_users([{"Username": "only-name"}])


def test_import_users_file(account_repo):
    content = make_workbook(["Username", "Password", "Name", "Role"], [["s9", "pw", "Nine", "student"]])

    report = account_repo.import_users_file(content)

    assert report.imported == 1
    assert account_repo.authenticate("s9", "pw").name == "Nine"


def test_import_users_file_empty_sheet(account_repo):
    content = make_workbook(["Username", "Password"], [])

    with pytest.raises(FormatError):
        account_repo.import_users_file(content)
