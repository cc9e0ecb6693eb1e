import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from .config import Settings
from .db import db_lock, transaction
from .errors import StoreError, ValidationError
from .logs import structured_log
from .models import Device, DeviceDescriptor


def _row_to_device(row) -> Device:
    return Device(
        id=row["id"],
        identity_key=row["identity_key"],
        owner=row["owner"],
        model=row["model"],
        firmware=row["firmware"],
        capacity_gb=row["capacity_gb"],
        info=json.loads(row["info"]) if row["info"] else {},
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class DeviceDirectory:
    """Find-or-create of device records, unique per (owner, identity key)."""

    def __init__(self, settings: Settings):
        self.db_path = settings.db_path

    def find(self, owner: str, identity_key: str) -> Optional[Device]:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM devices WHERE owner = ? AND identity_key = ?",
                (owner, identity_key),
            ).fetchone()
        return _row_to_device(row) if row else None

    def resolve(self, owner: str, descriptor: DeviceDescriptor) -> Device:
        identity_key = (descriptor.identity_key or "").strip()
        if not identity_key:
            raise ValidationError("Device descriptor lacks an identity key")
        if not owner:
            raise ValidationError("Device owner is required")
        existing = self.find(owner, identity_key)
        if existing:
            return existing
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            with db_lock, transaction(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO devices(identity_key, owner, model, firmware, capacity_gb, info, created_at) "
                    "VALUES (?,?,?,?,?,?,?)",
                    (
                        identity_key,
                        owner,
                        descriptor.model,
                        descriptor.firmware,
                        descriptor.capacity_gb,
                        json.dumps(descriptor.info),
                        created_at,
                    ),
                )
        except sqlite3.IntegrityError:
            # Another request created it between our lookup and insert
            structured_log("device_create_race", owner=owner, identity_key=identity_key)
        else:
            structured_log("device_created", owner=owner, identity_key=identity_key)
        device = self.find(owner, identity_key)
        if device is None:
            raise StoreError(f"Device {identity_key} vanished after creation")
        return device
