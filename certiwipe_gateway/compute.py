from typing import Any, Dict, Iterator, Optional

import requests

from .config import Settings
from .errors import ComputeTimeoutError, UpstreamError
from .logs import structured_log
from .models import WipeResult
from .normalize import parse_wipe_result

ARTIFACT_CHUNK_BYTES = 64 * 1024


def _response_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class ArtifactStream:
    """Chunks of a streamed engine response. close() releases the connection
    whether or not iteration ever started."""

    def __init__(self, resp: requests.Response, timeout: float):
        self.resp = resp
        self.timeout = timeout

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self.resp.iter_content(chunk_size=ARTIFACT_CHUNK_BYTES):
                if chunk:
                    yield chunk
        except requests.Timeout as e:
            raise ComputeTimeoutError("Compute service stalled while streaming the artifact", timeout=self.timeout) from e
        except requests.RequestException as e:
            raise UpstreamError(f"Artifact stream interrupted: {e}") from e
        finally:
            self.resp.close()

    def close(self) -> None:
        self.resp.close()


class ComputeClient:
    """Request/response wrapper around the CertiWipe engine.

    Every call maps transport problems onto UpstreamError or
    ComputeTimeoutError so callers never see a raw requests exception.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.base_url = settings.compute_base_url.rstrip("/")
        self.wipe_timeout = settings.compute_wipe_timeout
        self.artifact_timeout = settings.compute_artifact_timeout
        self.service_token = settings.internal_service_token
        self.token_header = settings.internal_token_header
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, timeout: float, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            structured_log("upstream_error", path=path, reason="timeout", timeout=timeout)
            raise ComputeTimeoutError(f"Compute service timed out after {timeout}s on {path}", timeout=timeout) from e
        except requests.RequestException as e:
            structured_log("upstream_error", path=path, reason=str(e))
            raise UpstreamError(f"Compute service unreachable: {e}") from e
        if not 200 <= resp.status_code < 300:
            body = _response_body(resp)
            resp.close()
            structured_log("upstream_error", path=path, status=resp.status_code)
            raise UpstreamError(
                f"Compute service returned {resp.status_code} for {path}",
                upstream_status=resp.status_code,
                body=body,
            )
        return resp

    def _json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("Compute service returned a non-JSON body", upstream_status=resp.status_code, body=resp.text) from e

    def request_wipe(self, payload: Dict[str, Any]) -> WipeResult:
        resp = self._call("POST", "/api/wipe", self.wipe_timeout, json=payload)
        return parse_wipe_result(self._json(resp))

    def request_artifact(self, payload: Dict[str, Any], signature: str) -> ArtifactStream:
        """Ask the engine to render and sign the PDF; the caller must close() the stream."""
        headers = {"Content-Type": "application/json"}
        if self.service_token:
            headers[self.token_header] = self.service_token
        resp = self._call(
            "POST",
            "/api/genpdf",
            self.artifact_timeout,
            json={"payload": payload, "signature": signature},
            headers=headers,
            stream=True,
        )
        return ArtifactStream(resp, self.artifact_timeout)

    def fetch_certificate(self, cert_id: str) -> Any:
        return self._json(self._call("GET", f"/api/certificates/{cert_id}", self.wipe_timeout))

    def verify_certificate(self, doc: Dict[str, Any]) -> Any:
        return self._json(self._call("POST", "/api/verify-cert", self.wipe_timeout, json=doc))

    def verify_pdf(self, filename: str, content: bytes) -> Dict[str, Any]:
        files = {"file": (filename or "certificate.pdf", content, "application/pdf")}
        return self._json(self._call("POST", "/api/verify-pdf", self.wipe_timeout, files=files))

    def drive_health(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return self._json(self._call("POST", "/api/drive/health", self.wipe_timeout, json=doc))
