"""Mapping of untyped request/engine documents onto typed records.

Every function here is total: it either returns a fully populated model
(with named defaults for optional fields) or raises a typed error.
"""
from typing import Any, Dict, Optional

from .errors import UpstreamError, ValidationError
from .models import CertificateStatus, DeviceDescriptor, WipeResult

DEFAULT_WIPE_METHOD = "zero-fill-1pass"
DEVICE_KEY_FIELDS = ("id", "serial", "path")
DEVICE_META_FIELDS = ("model", "firmware", "capacityGb", "capacity_gb", "owner")


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_capacity(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_device_descriptor(doc: Any) -> DeviceDescriptor:
    if not isinstance(doc, dict):
        raise ValidationError("Device descriptor must be an object")
    identity_key = None
    for field in DEVICE_KEY_FIELDS:
        identity_key = _clean_str(doc.get(field))
        if identity_key:
            break
    if not identity_key:
        raise ValidationError("Device descriptor requires an id, serial or path")
    capacity = doc.get("capacityGb", doc.get("capacity_gb"))
    # owner is stamped from the caller, never trusted from the body
    info = {k: v for k, v in doc.items() if k not in DEVICE_KEY_FIELDS + DEVICE_META_FIELDS}
    return DeviceDescriptor(
        identity_key=identity_key,
        model=_clean_str(doc.get("model")),
        firmware=_clean_str(doc.get("firmware")),
        capacity_gb=_coerce_capacity(capacity),
        info=info,
    )


def parse_status(value: Any) -> CertificateStatus:
    """Engine statuses other than completed/failed ("started (linux)", ...) mean running."""
    text = (_clean_str(value) or "").lower()
    if text == CertificateStatus.completed.value:
        return CertificateStatus.completed
    if text == CertificateStatus.failed.value:
        return CertificateStatus.failed
    return CertificateStatus.running


def _signed_material(doc: Dict[str, Any]):
    signed = doc.get("certificate_json")
    if isinstance(signed, dict):
        return signed.get("payload"), signed.get("signature")
    return doc.get("certificate"), doc.get("signature")


def parse_wipe_result(doc: Any) -> WipeResult:
    if not isinstance(doc, dict):
        raise UpstreamError("Malformed wipe response from compute service", body=doc)
    payload, signature = _signed_material(doc)
    if not isinstance(payload, dict):
        raise UpstreamError("Wipe response carries no certificate payload", body=doc)
    certificate_id = _clean_str(payload.get("certificate_id")) or _clean_str(payload.get("id"))
    if not certificate_id:
        raise UpstreamError("Wipe response certificate has no identifier", body=doc)
    signature = _clean_str(signature)
    if not signature:
        raise UpstreamError("Wipe response certificate is unsigned", body=doc)
    wipe = payload.get("wipe")
    if not isinstance(wipe, dict):
        wipe = {}
    return WipeResult(
        status=parse_status(doc.get("status")),
        certificate_id=certificate_id,
        user_id=_clean_str(payload.get("user_id")),
        wipe_method=_clean_str(wipe.get("method")) or DEFAULT_WIPE_METHOD,
        log_hash=_clean_str(wipe.get("log_hash")),
        completed_at=_clean_str(wipe.get("completed_at")),
        payload=payload,
        signature=signature,
    )
