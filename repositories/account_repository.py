"""
Account repository for end-user identity records.

Accounts are unique per email (database constraint). Writes go through the
store's generic upsert so provisioning and signup can both run repeatedly
without creating a second account for the same email.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional, Tuple
from uuid import uuid4

from domain.account import Account, AccountStatus, normalize_email
from domain.time import parse_utc_datetime, to_iso_utc, utc_now
from repositories.store import BaseStore

_ACCOUNTS_TABLE: str = "accounts"


def _row_to_account(row: Mapping[str, Any]) -> Account:
    return Account(
        account_id=str(row["account_id"]),
        email=str(row["email"]),
        status=AccountStatus(str(row["status"])),
        name=row.get("name"),
        identity_user_id=row.get("identity_user_id"),
        payment_gateway=row.get("payment_gateway"),
        payment_id=row.get("payment_id"),
        payment_date=parse_utc_datetime(row.get("payment_date_utc")),
        payment_status=row.get("payment_status"),
        paid=bool(row.get("paid", False)),
        suspended_reason=row.get("suspended_reason"),
        suspended_at=parse_utc_datetime(row.get("suspended_at_utc")),
        created_at=parse_utc_datetime(row.get("created_at_utc")),
        updated_at=parse_utc_datetime(row.get("updated_at_utc")),
    )


class AccountRepository:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    def get_by_email(self, email: str) -> Optional[Account]:
        row = self._store.find_one(_ACCOUNTS_TABLE, {"email": normalize_email(email)})
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: str) -> Optional[Account]:
        row = self._store.find_one(_ACCOUNTS_TABLE, {"account_id": account_id})
        return _row_to_account(row) if row is not None else None

    def upsert_by_email(self, email: str, patch: Mapping[str, Any]) -> Tuple[Account, bool]:
        """
        Create or update the account for `email`.

        Args:
            email: Account email (normalized before use)
            patch: Column values to write; `status` may be an AccountStatus
                   and datetime values are serialized to UTC ISO-8601

        Returns:
            (account, created)

        Example:
            account, created = accounts.upsert_by_email(
                "buyer@example.com", {"paid": True, "status": AccountStatus.ACTIVE}
            )
        """

        now = utc_now()
        row_patch: dict[str, Any] = {}
        for column, value in patch.items():
            if isinstance(value, AccountStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = to_iso_utc(value, name=column)
            row_patch[column] = value
        row_patch["updated_at_utc"] = now.isoformat()

        result = self._store.upsert(
            _ACCOUNTS_TABLE,
            {"email": normalize_email(email)},
            row_patch,
            defaults={
                "account_id": str(uuid4()),
                "status": AccountStatus.INVITED.value,
                "paid": False,
                "created_at_utc": now.isoformat(),
            },
        )
        return _row_to_account(result.row), result.created


__all__ = ["AccountRepository"]
