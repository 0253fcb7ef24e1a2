"""Repository for per-user MFA enrollment status."""

from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Any

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from mfa_gateway.auth.models import EnrollmentStatus
from mfa_gateway.core.config import StoreConfig


class EnrollmentRepository:
    """Enrollment repository with MongoDB primary and file-store fallback."""

    def __init__(self, app_root: Path, config: StoreConfig) -> None:
        """Initialize repository storage backends."""
        self._fallback_dir = app_root / "runtime" / "mfa_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._status_file = self._fallback_dir / "user_mfa_status.json"
        self._file_lock = Lock()

        self._mongo_status = None

        if config.mongodb_uri:
            try:
                client: MongoClient = MongoClient(
                    config.mongodb_uri, serverSelectionTimeoutMS=3000
                )
                client.admin.command("ping")
                db = client[config.mongodb_db]
                self._mongo_status = db["user_mfa_status"]
                self._mongo_status.create_index("user_id", unique=True)
            except PyMongoError:
                self._mongo_status = None

    @property
    def backend(self) -> str:
        return "mongodb" if self._mongo_status is not None else "file"

    def _read_json_file(self, path: Path) -> list[dict[str, Any]]:
        """Read list payload from JSON file with empty fallback."""
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return []
        return payload if isinstance(payload, list) else []

    def _write_json_file(self, path: Path, items: list[dict[str, Any]]) -> None:
        """Persist list payload to JSON file."""
        path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")

    def get_status(self, user_id: str) -> EnrollmentStatus | None:
        """Get enrollment status by user id."""
        if self._mongo_status is not None:
            doc = self._mongo_status.find_one({"user_id": user_id}, {"_id": 0})
            return EnrollmentStatus.model_validate(doc) if doc else None

        for row in self._read_json_file(self._status_file):
            if str(row.get("user_id", "")) == user_id:
                return EnrollmentStatus.model_validate(row)
        return None

    def upsert_status(self, status: EnrollmentStatus) -> None:
        """Create or update enrollment status keyed by user id."""
        if self._mongo_status is not None:
            self._mongo_status.update_one(
                {"user_id": status.user_id},
                {"$set": status.model_dump()},
                upsert=True,
            )
            return

        with self._file_lock:
            items = self._read_json_file(self._status_file)
            next_items = [row for row in items if str(row.get("user_id", "")) != status.user_id]
            next_items.append(status.model_dump(mode="json"))
            self._write_json_file(self._status_file, next_items)
