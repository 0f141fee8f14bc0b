"""
Supabase-backed identity store (owner credential + staff directory).

This adapter implements `IdentityStoreProtocol` on top of a supabase-py
client. It is duck-typed: the client only needs `.table(name)` returning a
PostgREST query builder with `select/eq/limit/upsert/delete/execute`.

Tables:
- `dev_auth`: single row with id `primary_dev` (phone, password, name, created_at)
- `staff`: one row per staff member keyed by `phone` (name, password, permissions jsonb)

Security:
- The client must be created with the Service Role key; both tables hold
  plaintext passwords and must not be readable by the anon key.
- Errors are wrapped in `StoreFailure` with the operation name only. Row
  contents never end up in exception messages or logs.
"""
from __future__ import annotations

import logging
import os
from typing import Any, List, Optional

from .domain import OwnerCredential, PermissionSet, StaffRecord, StoreFailure


logger = logging.getLogger("taihub.identity_access.supabase")

OWNER_TABLE = "dev_auth"
STAFF_TABLE = "staff"
OWNER_ROW_ID = "primary_dev"


def _rows(res: Any) -> list:
    data = getattr(res, "data", None)
    if data is None and isinstance(res, dict):
        data = res.get("data")
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


class SupabaseIdentityStore:
    """Identity store using a supabase client for table reads and writes."""

    def __init__(self, client: Any, *, owner_table: str = OWNER_TABLE, staff_table: str = STAFF_TABLE):
        self._client = client
        self._owner_table = owner_table
        self._staff_table = staff_table

    @classmethod
    def from_env(cls) -> "SupabaseIdentityStore":
        """Create a store from SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."""
        from supabase import create_client

        url = (os.getenv("SUPABASE_URL") or "").strip()
        key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        return cls(create_client(url, key))

    def _table(self, name: str) -> Any:
        return self._client.table(name)

    # --- Owner ------------------------------------------------------------------

    def fetch_owner_credential(self) -> Optional[OwnerCredential]:
        try:
            res = self._table(self._owner_table).select("*").eq("id", OWNER_ROW_ID).limit(1).execute()
        except Exception as exc:
            raise StoreFailure("fetch_owner_credential", exc.__class__.__name__) from exc
        rows = _rows(res)
        if not rows:
            return None
        row = rows[0]
        phone, password, name = row.get("phone"), row.get("password"), row.get("name")
        if not all(isinstance(v, str) and v for v in (phone, password, name)):
            raise StoreFailure("fetch_owner_credential", "malformed_row")
        created = row.get("created_at")
        return OwnerCredential(
            phone=phone,
            password=password,
            name=name,
            created_at=int(created) if isinstance(created, (int, float)) else None,
        )

    def save_owner_credential(self, cred: OwnerCredential) -> None:
        row = {
            "id": OWNER_ROW_ID,
            "phone": cred.phone,
            "password": cred.password,
            "name": cred.name,
            "created_at": cred.created_at,
        }
        try:
            self._table(self._owner_table).upsert(row).execute()
        except Exception as exc:
            raise StoreFailure("save_owner_credential", exc.__class__.__name__) from exc

    # --- Staff ------------------------------------------------------------------

    def fetch_all_staff(self) -> List[StaffRecord]:
        try:
            res = self._table(self._staff_table).select("*").execute()
        except Exception as exc:
            raise StoreFailure("fetch_all_staff", exc.__class__.__name__) from exc
        records: List[StaffRecord] = []
        for row in _rows(res):
            try:
                records.append(
                    StaffRecord(
                        phone=str(row["phone"]),
                        name=str(row.get("name") or ""),
                        password=str(row.get("password") or ""),
                        permissions=PermissionSet.from_mapping(row.get("permissions")),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                # One bad row must not lock every other staff member out.
                logger.warning("Skipping malformed staff row: %s", exc.__class__.__name__)
        return records

    def save_staff_record(self, record: StaffRecord) -> None:
        row = {
            "phone": record.phone,
            "name": record.name,
            "password": record.password,
            "permissions": record.permissions.to_dict(),
        }
        try:
            self._table(self._staff_table).upsert(row, on_conflict="phone").execute()
        except Exception as exc:
            raise StoreFailure("save_staff_record", exc.__class__.__name__) from exc

    def delete_staff_record(self, phone: str) -> None:
        try:
            self._table(self._staff_table).delete().eq("phone", phone).execute()
        except Exception as exc:
            raise StoreFailure("delete_staff_record", exc.__class__.__name__) from exc


__all__ = ["OWNER_ROW_ID", "OWNER_TABLE", "STAFF_TABLE", "SupabaseIdentityStore"]
