from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CertificateStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = (CertificateStatus.completed, CertificateStatus.failed)


class DeviceDescriptor(BaseModel):
    identity_key: str
    model: Optional[str] = None
    firmware: Optional[str] = None
    capacity_gb: Optional[float] = None
    info: Dict[str, Any] = Field(default_factory=dict)


class Device(BaseModel):
    id: int
    identity_key: str
    owner: str
    model: Optional[str] = None
    firmware: Optional[str] = None
    capacity_gb: Optional[float] = None
    info: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class WipeResult(BaseModel):
    """Parsed answer of the engine's wipe endpoint."""
    status: CertificateStatus = CertificateStatus.running
    certificate_id: str
    user_id: Optional[str] = None
    wipe_method: str = "zero-fill-1pass"
    log_hash: Optional[str] = None
    completed_at: Optional[str] = None
    payload: Dict[str, Any]
    signature: str


class Certificate(BaseModel):
    certificate_id: str
    user: str
    device: int
    wipe_method: str
    status: CertificateStatus = CertificateStatus.running
    log_hash: Optional[str] = None
    payload: Dict[str, Any]
    signature: str
    artifact_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[str] = None


class SignedCertificate(BaseModel):
    payload: Dict[str, Any]
    signature: str


class WipeResponse(BaseModel):
    status: CertificateStatus
    certificate: SignedCertificate
    message: str = "Wipe triggered successfully"


class CallerIdentity(BaseModel):
    user_id: str
    username: Optional[str] = None
    claims: Dict[str, Any] = Field(default_factory=dict)
