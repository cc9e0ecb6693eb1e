import sqlite3

import pytest

from certiwipe_gateway import certificates as certificates_module
from certiwipe_gateway.certificates import CertificateStore, new_certificate
from certiwipe_gateway.db import init_schema
from certiwipe_gateway.devices import DeviceDirectory
from certiwipe_gateway.errors import ConflictError, NotFoundError, ValidationError
from certiwipe_gateway.models import CertificateStatus, DeviceDescriptor
from certiwipe_gateway.normalize import parse_wipe_result

from conftest import wipe_answer


@pytest.fixture
def store(settings):
    init_schema(settings.db_path)
    return CertificateStore(settings)


@pytest.fixture
def device(settings, store):
    return DeviceDirectory(settings).resolve("U1", DeviceDescriptor(identity_key="dev-1"))


def make_cert(device, cert_id="C1", status="running"):
    return new_certificate(parse_wipe_result(wipe_answer(cert_id=cert_id, status=status)), "U1", device)


def test_create_and_find(store, device):
    store.create(make_cert(device))
    cert = store.find_by_id("C1")
    assert cert.status == CertificateStatus.running
    assert cert.device == device.id
    assert cert.user == "U1"
    assert cert.signature == "sig1"
    assert cert.log_hash == "abc"
    assert cert.artifact_url is None
    assert store.find_by_id("nope") is None


def test_duplicate_identifier_conflicts(store, device):
    store.create(make_cert(device))
    with pytest.raises(ConflictError):
        store.create(make_cert(device))


def test_compute_reported_status_kept(store, device):
    store.create(make_cert(device, status="completed"))
    assert store.get("C1").status == CertificateStatus.completed


def test_complete_keeps_payload(store, device):
    created = store.create(make_cert(device))
    updated = store.update_status("C1", "completed", {"artifact_url": "https://blob/C1.pdf"})
    assert updated.status == CertificateStatus.completed
    stored = store.get("C1")
    assert stored.artifact_url == "https://blob/C1.pdf"
    assert stored.payload == created.payload
    assert stored.signature == created.signature


def test_terminal_update_is_idempotent(store, device):
    store.create(make_cert(device))
    first = store.update_status("C1", CertificateStatus.completed, {"artifact_url": "https://blob/C1.pdf"})
    second = store.update_status("C1", CertificateStatus.completed, {"artifact_url": "https://blob/C1.pdf"})
    assert first == second
    assert store.get("C1") == second


def test_terminal_state_never_regresses(store, device):
    store.create(make_cert(device))
    store.update_status("C1", "failed", {"error": "timeout"})
    with pytest.raises(ConflictError):
        store.update_status("C1", "completed", {"artifact_url": "https://blob/C1.pdf"})
    with pytest.raises(ConflictError):
        store.update_status("C1", "running")
    with pytest.raises(ConflictError):
        store.update_status("C1", "failed", {"error": "something else"})
    cert = store.get("C1")
    assert cert.status == CertificateStatus.failed
    assert cert.error == "timeout"
    assert cert.artifact_url is None


def test_update_missing_record(store):
    with pytest.raises(NotFoundError):
        store.update_status("ghost", "completed", {"artifact_url": "x"})


def test_update_rejects_immutable_fields(store, device):
    store.create(make_cert(device))
    with pytest.raises(ValidationError):
        store.update_status("C1", "completed", {"signature": "forged"})


def test_find_by_owner_is_stable(store, device):
    for cid in ("C3", "C1", "C2"):
        store.create(make_cert(device, cert_id=cid))
    first = [c.certificate_id for c in store.find_by_owner("U1")]
    second = [c.certificate_id for c in store.find_by_owner("U1")]
    assert sorted(first) == ["C1", "C2", "C3"]
    assert first == second
    assert store.find_by_owner("U2") == []


def test_completed_at_creation_gets_artifact_url(store, device):
    store.create(make_cert(device, status="completed"))
    updated = store.update_status("C1", "completed", {"artifact_url": "https://blob/C1.pdf"})
    assert updated.status == CertificateStatus.completed
    assert store.get("C1").artifact_url == "https://blob/C1.pdf"
    # repeat is a no-op, a different URL is refused
    assert store.update_status("C1", "completed", {"artifact_url": "https://blob/C1.pdf"}) == store.get("C1")
    with pytest.raises(ConflictError):
        store.update_status("C1", "completed", {"artifact_url": "https://blob/other.pdf"})
    with pytest.raises(ConflictError):
        store.update_status("C1", "failed", {"error": "late"})


def test_update_lost_to_other_writer(store, device, settings, monkeypatch):
    store.create(make_cert(device))
    real_row_to_certificate = certificates_module._row_to_certificate

    def read_then_race(row):
        cert = real_row_to_certificate(row)
        # a second process settles the record between our read and write
        other = sqlite3.connect(settings.db_path)
        with other:
            other.execute("UPDATE certificates SET status = 'failed', error = 'other' WHERE certificate_id = ?",
                          (cert.certificate_id,))
        other.close()
        return cert

    monkeypatch.setattr(certificates_module, "_row_to_certificate", read_then_race)
    with pytest.raises(ConflictError):
        store.update_status("C1", "completed", {"artifact_url": "https://blob/C1.pdf"})
    monkeypatch.undo()
    cert = store.get("C1")
    assert cert.status == CertificateStatus.failed
    assert cert.artifact_url is None
