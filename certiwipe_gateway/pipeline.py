import logging
from contextlib import closing

from .blobstore import PDF_CONTENT_TYPE, BlobStore, artifact_key
from .certificates import CertificateStore
from .compute import ComputeClient
from .logs import structured_log
from .models import Certificate, CertificateStatus


class ArtifactPipeline:
    """Background half of a wipe: render the PDF, upload it, settle the status.

    run() is scheduled after the response has been sent, so it never
    raises; every outcome ends up in the certificate record or the log.
    """

    def __init__(self, compute: ComputeClient, blobs: BlobStore, certificates: CertificateStore):
        self.compute = compute
        self.blobs = blobs
        self.certificates = certificates

    def run(self, certificate: Certificate) -> None:
        cid = certificate.certificate_id
        try:
            with closing(self.compute.request_artifact(certificate.payload, certificate.signature)) as chunks:
                url = self.blobs.upload_stream(chunks, artifact_key(cid), PDF_CONTENT_TYPE)
        except Exception as e:
            error = getattr(e, "message", None) or str(e) or "PDF upload failure"
            structured_log("artifact_failed", level=logging.ERROR, certificate_id=cid, error=error,
                           error_type=type(e).__name__)
            self._settle(cid, CertificateStatus.failed, {"error": error})
            return
        structured_log("artifact_uploaded", certificate_id=cid, url=url)
        self._settle(cid, CertificateStatus.completed, {"artifact_url": url})

    def _settle(self, cid: str, status: CertificateStatus, fields: dict) -> None:
        try:
            self.certificates.update_status(cid, status, fields)
        except Exception as e:
            # nobody is left to report to
            structured_log("artifact_status_update_failed", level=logging.ERROR, certificate_id=cid,
                           status=status.value, error=str(e))
