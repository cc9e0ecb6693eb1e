from typing import Any, Callable, Dict

from .certificates import CertificateStore, new_certificate
from .compute import ComputeClient
from .devices import DeviceDirectory
from .errors import ValidationError
from .logs import structured_log
from .models import CallerIdentity, CertificateStatus, SignedCertificate, WipeResponse
from .normalize import parse_device_descriptor
from .pipeline import ArtifactPipeline

# schedule(fn, *args): run fn(*args) detached from the request
Scheduler = Callable[..., Any]


class FulfillmentOrchestrator:
    def __init__(self, devices: DeviceDirectory, compute: ComputeClient,
                 certificates: CertificateStore, pipeline: ArtifactPipeline):
        self.devices = devices
        self.compute = compute
        self.certificates = certificates
        self.pipeline = pipeline

    def handle_wipe_request(self, caller: CallerIdentity, body: Dict[str, Any], schedule: Scheduler) -> WipeResponse:
        if not isinstance(body, dict) or not body.get("device"):
            raise ValidationError("Device descriptor is required")
        descriptor = parse_device_descriptor(body["device"])
        device = self.devices.resolve(caller.user_id, descriptor)

        data = {**body, "user_id": caller.user_id, "username": caller.username}
        structured_log("wipe_requested", user_id=caller.user_id, device=device.identity_key, device_id=device.id)
        result = self.compute.request_wipe(data)

        certificate = self.certificates.create(new_certificate(result, caller.user_id, device))
        structured_log("certificate_created", certificate_id=certificate.certificate_id,
                       status=certificate.status.value, user_id=certificate.user)

        response = WipeResponse(
            status=certificate.status,
            certificate=SignedCertificate(payload=certificate.payload, signature=certificate.signature),
        )
        # A wipe the engine already reports as failed has nothing to render
        if certificate.status != CertificateStatus.failed:
            schedule(self.pipeline.run, certificate)
        return response
