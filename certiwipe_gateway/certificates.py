import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import Settings
from .db import db_lock, transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .models import TERMINAL_STATUSES, Certificate, CertificateStatus, Device, WipeResult

# Only these columns may change after creation; payload and signature never do
MUTABLE_FIELDS = ("artifact_url", "error")

ALLOWED_TRANSITIONS = {
    CertificateStatus.running: (CertificateStatus.running, CertificateStatus.completed, CertificateStatus.failed),
    CertificateStatus.completed: (CertificateStatus.completed,),
    CertificateStatus.failed: (CertificateStatus.failed,),
}


def new_certificate(result: WipeResult, owner: str, device: Device) -> Certificate:
    """Build the record for a freshly signed wipe result."""
    return Certificate(
        certificate_id=result.certificate_id,
        user=result.user_id or owner,
        device=device.id,
        wipe_method=result.wipe_method,
        status=result.status,
        log_hash=result.log_hash,
        payload=result.payload,
        signature=result.signature,
        created_at=datetime.now(timezone.utc),
        completed_at=result.completed_at,
    )


def _row_to_certificate(row) -> Certificate:
    return Certificate(
        certificate_id=row["certificate_id"],
        user=row["user"],
        device=row["device"],
        wipe_method=row["wipe_method"],
        status=CertificateStatus(row["status"]),
        log_hash=row["log_hash"],
        payload=json.loads(row["payload"]),
        signature=row["signature"],
        artifact_url=row["artifact_url"],
        error=row["error"],
        created_at=datetime.fromisoformat(row["created_at"]),
        completed_at=row["completed_at"],
    )


class CertificateStore:
    def __init__(self, settings: Settings):
        self.db_path = settings.db_path

    def create(self, record: Certificate) -> Certificate:
        try:
            with db_lock, transaction(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO certificates(certificate_id, user, device, wipe_method, status, log_hash, "
                    "payload, signature, artifact_url, error, created_at, completed_at) "
                    "VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        record.certificate_id,
                        record.user,
                        record.device,
                        record.wipe_method,
                        record.status.value,
                        record.log_hash,
                        json.dumps(record.payload),
                        record.signature,
                        record.artifact_url,
                        record.error,
                        record.created_at.isoformat(),
                        record.completed_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Certificate {record.certificate_id} already exists") from e
        return record

    def find_by_id(self, certificate_id: str) -> Optional[Certificate]:
        with transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM certificates WHERE certificate_id = ?", (certificate_id,)).fetchone()
        return _row_to_certificate(row) if row else None

    def get(self, certificate_id: str) -> Certificate:
        cert = self.find_by_id(certificate_id)
        if cert is None:
            raise NotFoundError(f"Certificate {certificate_id} not found")
        return cert

    def find_by_owner(self, owner: str) -> List[Certificate]:
        with transaction(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM certificates WHERE user = ? ORDER BY created_at, certificate_id",
                (owner,),
            ).fetchall()
        return [_row_to_certificate(r) for r in rows]

    def update_status(self, certificate_id: str, new_status, fields: Optional[Dict[str, Any]] = None) -> Certificate:
        """Move a certificate along running -> completed|failed.

        Re-applying an update that is already reflected in the record is a
        no-op. On a terminal record the status cannot change and fields
        that already hold a value cannot be overwritten.
        """
        new_status = CertificateStatus(new_status)
        fields = dict(fields or {})
        unknown = set(fields) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        with db_lock, transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM certificates WHERE certificate_id = ?", (certificate_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Certificate {certificate_id} not found")
            current = _row_to_certificate(row)
            if new_status not in ALLOWED_TRANSITIONS[current.status]:
                raise ConflictError(
                    f"Certificate {certificate_id} cannot move from {current.status.value} to {new_status.value}"
                )
            changes = {k: v for k, v in fields.items() if getattr(current, k) != v}
            if current.status in TERMINAL_STATUSES:
                clobbered = [k for k in changes if getattr(current, k) is not None]
                if clobbered:
                    raise ConflictError(
                        f"Certificate {certificate_id} is {current.status.value}; "
                        f"cannot overwrite {', '.join(sorted(clobbered))}"
                    )
            if not changes and new_status == current.status:
                return current
            assignments = ["status = ?"] + [f"{k} = ?" for k in changes]
            params = [new_status.value] + list(changes.values()) + [certificate_id, current.status.value]
            cur = conn.execute(
                f"UPDATE certificates SET {', '.join(assignments)} WHERE certificate_id = ? AND status = ?",
                params,
            )
            if cur.rowcount == 0:
                # another writer on the same file settled it first
                latest = conn.execute("SELECT status FROM certificates WHERE certificate_id = ?",
                                      (certificate_id,)).fetchone()
                if latest is None:
                    raise NotFoundError(f"Certificate {certificate_id} not found")
                raise ConflictError(
                    f"Certificate {certificate_id} changed to {latest['status']} during update"
                )
        return current.model_copy(update={"status": new_status, **changes})
