from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from . import __version__
from .auth import current_caller
from .blobstore import BlobStore, S3BlobStore
from .certificates import CertificateStore
from .compute import ComputeClient
from .config import Settings, get_settings
from .db import init_schema
from .devices import DeviceDirectory
from .errors import ArtifactNotReadyError, GatewayError, NotFoundError, UpstreamError, ValidationError
from .logs import configure_logging, structured_log
from .models import CallerIdentity
from .orchestrator import FulfillmentOrchestrator
from .pipeline import ArtifactPipeline

FULL_COVERAGE = "SignatureCoverageLevel.ENTIRE_FILE"


@dataclass
class Services:
    settings: Settings
    devices: DeviceDirectory
    certificates: CertificateStore
    compute: ComputeClient
    blobs: BlobStore
    pipeline: ArtifactPipeline
    orchestrator: FulfillmentOrchestrator


def build_services(settings: Settings, session: Optional[requests.Session] = None,
                   blobs: Optional[BlobStore] = None) -> Services:
    """Wire every collaborator once from a single settings object."""
    init_schema(settings.db_path)
    devices = DeviceDirectory(settings)
    certificates = CertificateStore(settings)
    compute = ComputeClient(settings, session=session)
    blobs = blobs or S3BlobStore(settings)
    pipeline = ArtifactPipeline(compute, blobs, certificates)
    orchestrator = FulfillmentOrchestrator(devices, compute, certificates, pipeline)
    return Services(settings, devices, certificates, compute, blobs, pipeline, orchestrator)


app = FastAPI(title="CertiWipe Gateway", description="Wipe-to-certificate fulfilment in front of the CertiWipe engine",
              version=__version__)
app.state.services = None

_startup_settings = get_settings()
configure_logging(_startup_settings)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_startup_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> Services:
    if request.app.state.services is None:
        request.app.state.services = build_services(get_settings())
    return request.app.state.services


@app.exception_handler(GatewayError)
async def on_gateway_error(request: Request, exc: GatewayError):
    content: Dict[str, Any] = {"success": False, "error": exc.code, "message": exc.message}
    if isinstance(exc, UpstreamError) and exc.body is not None:
        content["upstream"] = exc.body
    return JSONResponse(status_code=exc.status, content=content)


@app.get("/profile")
def profile(caller: CallerIdentity = Depends(current_caller)):
    return {"success": True, "user": caller.claims}


@app.post("/api/wipe")
def wipe(background_tasks: BackgroundTasks, body: Dict[str, Any] = Body(...),
         caller: CallerIdentity = Depends(current_caller), services: Services = Depends(get_services)):
    # Background tasks run after the response is sent
    response = services.orchestrator.handle_wipe_request(caller, body, background_tasks.add_task)
    return response.model_dump(mode="json")


@app.get("/api/list-certificates")
def list_certificates(caller: CallerIdentity = Depends(current_caller), services: Services = Depends(get_services)):
    certs = services.certificates.find_by_owner(caller.user_id)
    return {"success": True, "certificates": [c.model_dump(mode="json") for c in certs]}


@app.get("/api/certificates/{cert_id}")
def certificate_json(cert_id: str, caller: CallerIdentity = Depends(current_caller),
                     services: Services = Depends(get_services)):
    return services.compute.fetch_certificate(cert_id)


@app.get("/api/certificates/{cert_id}/pdf")
def certificate_pdf(cert_id: str, caller: CallerIdentity = Depends(current_caller),
                    services: Services = Depends(get_services)):
    cert = services.certificates.find_by_id(cert_id)
    if cert is None:
        raise NotFoundError("Certificate not found")
    if not cert.artifact_url:
        raise ArtifactNotReadyError("PDF not ready yet")
    return RedirectResponse(cert.artifact_url, status_code=302)


@app.post("/api/verify-cert")
def verify_cert(body: Dict[str, Any] = Body(...), caller: CallerIdentity = Depends(current_caller),
                services: Services = Depends(get_services)):
    return services.compute.verify_certificate(body)


def describe_pdf_verdict(result: Dict[str, Any]) -> str:
    full = result.get("coverage") == FULL_COVERAGE
    if result.get("valid") and full:
        return "The PDF signature is valid and issued by SecureWipe."
    if not result.get("valid") and full:
        return "The PDF contains signature that are not issued by SecureWipe."
    return "The PDF signature is either invalid or not present."


def expect_object(result: Any, what: str) -> Dict[str, Any]:
    if not isinstance(result, dict):
        raise UpstreamError(f"Malformed {what} response from compute service", body=result)
    return result


@app.post("/api/verify-pdf")
def verify_pdf(file: Optional[UploadFile] = File(None), services: Services = Depends(get_services)):
    if file is None:
        raise ValidationError("PDF file is required")
    result = expect_object(services.compute.verify_pdf(file.filename, file.file.read()), "verify-pdf")
    result["message"] = describe_pdf_verdict(result)
    return result


def describe_drive_health(score: Any) -> Dict[str, Any]:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return {"prediction": None, "message": "Unable to determine drive health. Please check input or try again."}
    prediction = f"{int(score * 100 + 0.5)}%"
    if 0 <= score < 0.3:
        message = "The drive is robust. No failure predicted."
    elif 0.3 <= score < 0.5:
        message = "The drive is healthy. Minimal risk detected."
    elif 0.5 <= score < 0.8:
        message = "The drive shows moderate risk. Consider monitoring and backing up important data."
    elif 0.8 <= score <= 1:
        message = "The drive is predicted to fail. Please avoid using it for critical data."
    else:
        message = "Unable to determine drive health. Please check input or try again."
    return {"prediction": prediction, "message": message}


@app.post("/api/drive/health")
def drive_health(body: Dict[str, Any] = Body(...), caller: CallerIdentity = Depends(current_caller),
                 services: Services = Depends(get_services)):
    if not body.get("drive_id"):
        raise ValidationError("Drive ID field is required")
    result = expect_object(services.compute.drive_health(body), "drive health")
    result.update(describe_drive_health(result.get("health_score")))
    structured_log("drive_health", drive_id=body.get("drive_id"), prediction=result["prediction"])
    return result
