"""HTTP client for the maintenance backend."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from httpx import Limits

from .auth import AuthManager
from .exceptions import (
    ApiError,
    AuthenticationError,
    EndpointNotFoundError,
    MalformedResponseError,
    NetworkError,
    ReauthenticationRequired,
    ServerError,
)
from .models import (
    BoundingBox,
    ChecklistResponse,
    Checkpoint,
    DetectionResponse,
    DeviationReport,
    EquipmentCategory,
    EquipmentCodeInfo,
    EquipmentMatch,
    Job,
    JobTask,
    Submission,
    SubmissionResult,
    TaskStatus,
)

logger = logging.getLogger(__name__)

MINUTES_PER_CHECKPOINT = 2
LEGACY_FALLBACK_MESSAGE = "Registrert via fallback"

_NOT_IMPLEMENTED = {404, 501}
_UNKNOWN_ROUTE = {404, 405}


class ApiClient:
    """Backend client with retries and bearer-token authentication.

    Transport failures and 5xx answers are retried with exponential backoff
    before surfacing as ``NetworkError``/``ServerError``. A 401 triggers one
    silent token refresh.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: AuthManager | None = None,
        timeout: float = 20.0,
        max_retries: int = 3,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            limits=Limits(max_connections=10, max_keepalive_connections=5),
            timeout=timeout,
        )
        logger.info("ApiClient initialized: base_url=%s, auth=%s", self.base_url, "yes" if auth else "no")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth is not None:
            headers.update(self.auth.headers())
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _handle_response_error(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status == 401:
            raise AuthenticationError("Token rejected", status_code=status)
        if status in _NOT_IMPLEMENTED or status == 405:
            raise EndpointNotFoundError(f"{resp.request.url.path} unavailable ({status})", status_code=status)
        if status >= 500:
            raise ServerError(f"Server error: {status}", status_code=status)
        if status >= 400:
            raise ApiError(f"Request failed: {status}", status_code=status)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._request_with_retry(method, path, **kwargs)
        except AuthenticationError:
            if self.auth is None or not self.auth.refresh():
                raise ReauthenticationRequired("Session expired, sign in again")
            logger.info("Token refreshed, retrying %s %s", method.upper(), path)
            try:
                return self._request_with_retry(method, path, **kwargs)
            except AuthenticationError as exc:
                raise ReauthenticationRequired("Session expired, sign in again") from exc

    def _request_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = self._client.request(
                    method, self._url(path), headers=self._headers(), timeout=self.timeout, **kwargs
                )
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self.max_retries - 1:
                    delay = 2**attempt
                    logger.warning("Network error: %s, retrying in %ss", exc, delay)
                    self._sleep(delay)
                    continue
                raise NetworkError(f"Backend unreachable: {exc}") from exc
            except httpx.DecodingError as exc:
                raise MalformedResponseError(f"Undecodable response body from {path}: {exc}") from exc
            except httpx.RequestError as exc:
                raise NetworkError(f"Request to {path} failed: {exc}") from exc
            retryable = resp.status_code >= 500 and resp.status_code not in _NOT_IMPLEMENTED
            if retryable and attempt < self.max_retries - 1:
                delay = 2**attempt
                logger.warning("Server returned %s, retrying in %ss", resp.status_code, delay)
                self._sleep(delay)
                continue
            self._handle_response_error(resp)
            return resp
        raise NetworkError(f"Backend unreachable: {last_error}")

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid JSON from {resp.request.url.path}") from exc

    def health(self) -> bool:
        try:
            resp = self._client.get(self._url("/health"), headers=self._headers(), timeout=2.0)
        except httpx.RequestError as exc:
            logger.debug("Health check network error: %s", exc)
            return False
        return resp.status_code < 500

    # Checklists

    def lookup_checkpoints(self, code: str) -> List[Checkpoint]:
        resp = self._request("get", "/lookup", params={"code": code})
        data = self._json(resp)
        try:
            return [Checkpoint.from_wire(item["definisjon"]) for item in data if item.get("definisjon")]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected lookup payload: {exc}") from exc

    def generate_checklist(
        self,
        code: str,
        context: Optional[str] = None,
        location: Optional[str] = None,
    ) -> ChecklistResponse:
        body = {"ns3457_code": code, "context": context, "location": location}
        try:
            resp = self._request("post", "/ios/generate-checklist", json=body)
        except EndpointNotFoundError as exc:
            if exc.status_code not in _NOT_IMPLEMENTED:
                raise
            logger.info("generate-checklist not available, using lookup for %s", code)
            checkpoints = self.lookup_checkpoints(code)
            return ChecklistResponse(
                checkpoints=checkpoints,
                tips=None,
                estimated_minutes=len(checkpoints) * MINUTES_PER_CHECKPOINT,
            )
        data = self._json(resp)
        try:
            return ChecklistResponse(
                checkpoints=[Checkpoint.from_wire(item) for item in data["checkpoints"]],
                tips=data.get("ai_tips"),
                estimated_minutes=data.get("estimated_time_minutes"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected checklist payload: {exc}") from exc

    # Submissions

    def submit_checklist(self, submission: Submission) -> SubmissionResult:
        body = {
            "ns3457_code": submission.code,
            "equipment_id": submission.equipment_id,
            "location": submission.location,
            "performed_by": submission.performed_by,
            "results": [_snake_case_result(result.to_dict()) for result in submission.results],
            "photos": None,
            "notes": submission.notes,
            "completed_at": submission.completed_at.isoformat(),
        }
        try:
            resp = self._request("post", "/ios/submit-checklist", json=body)
        except EndpointNotFoundError as exc:
            if exc.status_code not in _UNKNOWN_ROUTE:
                raise
            return self._submit_legacy(submission)
        data = self._json(resp)
        if not isinstance(data, dict) or "success" not in data:
            raise MalformedResponseError("Submission response missing 'success'")
        return SubmissionResult(
            success=bool(data["success"]),
            job_id=data.get("job_id"),
            message=data.get("message"),
        )

    def _submit_legacy(self, submission: Submission) -> SubmissionResult:
        logger.info("submit-checklist route unknown, using legacy registration for %s", submission.code)
        body = {
            "code": submission.code,
            "points": [result.to_dict() for result in submission.results],
            "responsible": submission.performed_by,
        }
        self._request("post", "/registrations", json=body)
        return SubmissionResult(success=True, job_id=None, message=LEGACY_FALLBACK_MESSAGE)

    # Equipment codes and server-side detection

    def list_equipment_codes(self) -> List[EquipmentCodeInfo]:
        return self._parse_code_infos(self._json(self._request("get", "/ns3457/codes")))

    def search_equipment_codes(self, query: str) -> List[EquipmentCodeInfo]:
        resp = self._request("get", "/ns3457/search", params={"q": query})
        return self._parse_code_infos(self._json(resp))

    @staticmethod
    def _parse_code_infos(data: Any) -> List[EquipmentCodeInfo]:
        try:
            return [
                EquipmentCodeInfo(
                    code=item["code"],
                    name=item["name"],
                    description=item.get("description"),
                    category=item.get("category"),
                    checkpoint_count=item.get("checkpoint_count") or 0,
                )
                for item in data
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected code list payload: {exc}") from exc

    def detect_equipment(self, image_bytes: bytes, device_info: Dict[str, str] | None = None) -> DetectionResponse:
        body = {
            "image_base64": base64.b64encode(image_bytes).decode("ascii"),
            "device_info": device_info,
        }
        try:
            resp = self._request("post", "/ios/detect", json=body)
        except EndpointNotFoundError:
            return DetectionResponse(matches=[])
        data = self._json(resp)
        try:
            matches = [
                EquipmentMatch(
                    code=item["ns3457_code"],
                    name=item["suggested_name"],
                    category=EquipmentCategory.parse(item.get("category")),
                    confidence=float(item["confidence"]),
                    source_region=_parse_box(item.get("bounding_box")),
                )
                for item in data.get("detected_objects", [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected detection payload: {exc}") from exc
        return DetectionResponse(
            matches=matches,
            suggested_codes=list(data.get("suggested_codes") or []),
            processing_time_ms=data.get("processing_time_ms"),
        )

    # Maintenance jobs

    def my_jobs(self) -> List[Job]:
        """Jobs assigned to the signed-in technician."""

        return self._parse_jobs(self._json(self._request("get", "/cmms/mine-jobber")))

    def start_job(self, job_id: int) -> Job:
        return self._job_transition(job_id, "start")

    def pause_job(self, job_id: int) -> Job:
        return self._job_transition(job_id, "pause")

    def resume_job(self, job_id: int) -> Job:
        return self._job_transition(job_id, "gjenoppta")

    def complete_job(self, job_id: int) -> Job:
        return self._job_transition(job_id, "fullfor")

    def _job_transition(self, job_id: int, action: str) -> Job:
        data = self._json(self._request("post", f"/cmms/jobb/{job_id}/{action}"))
        try:
            return Job.from_wire(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected job payload: {exc}") from exc

    def complete_task(self, task_id: int, status: TaskStatus, measured_value: Optional[str] = None) -> JobTask:
        body = {"status": status.value, "maaleVerdi": measured_value or ""}
        data = self._json(self._request("post", f"/cmms/oppgave/{task_id}/fullfor", json=body))
        try:
            return JobTask.from_wire(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected task payload: {exc}") from exc

    def auto_fill_tasks(self, job_id: int) -> List[JobTask]:
        """Let the backend fill sensor-backed tasks from live readings."""

        data = self._json(self._request("post", f"/cmms/jobb/{job_id}/auto-fyll"))
        try:
            return [JobTask.from_wire(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected task list payload: {exc}") from exc

    def register_deviation(self, report: DeviationReport) -> None:
        self._request("post", "/cmms/avvik", json=report.to_wire())
        logger.info("Deviation registered for task %s (%s)", report.task_id, report.severity.value)

    
    @staticmethod
    def _parse_jobs(data: Any) -> List[Job]:
        try:
            return [Job.from_wire(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(f"Unexpected job list payload: {exc}") from exc

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _snake_case_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sjekkpunkt_id": payload["sjekkpunktId"],
        "oppgave_tekst": payload["oppgaveTekst"],
        "type": payload["type"],
        "value": payload["value"],
        "status": payload["status"],
        "comment": payload["comment"],
    }


def _parse_box(payload: Optional[dict]) -> Optional[BoundingBox]:
    if not payload:
        return None
    return BoundingBox(
        x=float(payload["x"]),
        y=float(payload["y"]),
        width=float(payload["width"]),
        height=float(payload["height"]),
    )
