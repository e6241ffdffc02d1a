import logging
from dataclasses import dataclass

import httpx

from text_humanizer.config import settings

logger = logging.getLogger(__name__)

# mode -> (readability, purpose)
MODE_PARAMETERS = {
    "standard": ("University", "Article"),
    "casual": ("High School", "General Writing"),
    "academic": ("Doctorate", "Essay"),
    "creative": ("Marketing", "Story"),
}


class HumanizerError(RuntimeError):
    code = "HUMANIZER_ERROR"


class SubmitError(HumanizerError):
    code = "SUBMIT_ERROR"


class AuthError(SubmitError):
    code = "AUTH_ERROR"


class BadRequestError(SubmitError):
    code = "BAD_REQUEST"


class TransportError(SubmitError):
    code = "TRANSPORT_ERROR"


class FetchError(HumanizerError):
    code = "FETCH_ERROR"


@dataclass
class HumanizeParameters:
    readability: str
    purpose: str
    strength: str = "Balanced"
    model: str = "v11"

    def as_body(self, content: str) -> dict:
        return {
            "content": content,
            "readability": self.readability,
            "purpose": self.purpose,
            "strength": self.strength,
            "model": self.model,
        }


@dataclass
class JobHandle:
    id: str
    status: str


@dataclass
class JobResult:
    id: str
    output: str = ""
    input: str = ""
    readability: str = ""
    purpose: str = ""
    created_date: str = ""
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return bool(self.error) or bool(self.output)

    @property
    def succeeded(self) -> bool:
        return not self.error and bool(self.output)

    @classmethod
    def from_payload(cls, job_id: str, data: dict) -> "JobResult":
        return cls(
            id=str(data.get("id") or job_id),
            output=data.get("output") or "",
            input=data.get("input") or "",
            readability=data.get("readability") or "",
            purpose=data.get("purpose") or "",
            created_date=data.get("createdDate") or "",
            error=data.get("error") or None,
        )


def map_strength(strength: int | None) -> str:
    if not strength:
        return "Balanced"
    if strength <= 3:
        return "Quality"
    if strength <= 7:
        return "Balanced"
    return "More Human"


def parameters_for(mode: str, strength: int | None = None, model: str | None = None) -> HumanizeParameters:
    readability, purpose = MODE_PARAMETERS.get(mode, MODE_PARAMETERS["standard"])
    return HumanizeParameters(
        readability=readability,
        purpose=purpose,
        strength=map_strength(strength),
        model=model or settings.humanizer_model,
    )


class UndetectableClient:
    """Client for the asynchronous humanize API (submit + document lookup).

    Holds no per-job state, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = settings.humanizer_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.humanizer_base_url).rstrip("/")
        self._transport = transport

    def _headers(self) -> dict:
        if not self.api_key:
            raise AuthError("HUMANIZER_API_KEY is not set")
        return {
            "apikey": self.api_key,
            "Content-Type": "application/json",
        }

    def _post(self, path: str, body: dict, timeout_sec: int) -> httpx.Response:
        headers = self._headers()
        with httpx.Client(timeout=timeout_sec, transport=self._transport) as client:
            return client.post(f"{self.base_url}{path}", headers=headers, json=body)

    def submit(self, text: str, parameters: HumanizeParameters) -> JobHandle:
        logger.info(
            "submitting document readability=%s purpose=%s strength=%s model=%s chars=%d",
            parameters.readability,
            parameters.purpose,
            parameters.strength,
            parameters.model,
            len(text),
        )
        try:
            r = self._post("/submit", parameters.as_body(text), settings.submit_timeout_sec)
        except httpx.TimeoutException as exc:
            raise TransportError(f"submit timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"submit failed: {exc}") from exc

        if r.status_code in {401, 403}:
            raise AuthError(f"http_{r.status_code}: {r.text}")
        if 400 <= r.status_code < 500:
            detail = r.text or "Likely insufficient credits or invalid API key"
            raise BadRequestError(f"Bad request: {detail}")
        if r.status_code >= 500:
            raise TransportError(f"http_{r.status_code}: {r.text}")

        try:
            data = r.json()
        except ValueError as exc:
            raise TransportError(f"invalid_submit_json: {r.text[:250]}") from exc

        if data.get("error"):
            raise BadRequestError(f"Bad request: {data['error']}")
        if not data.get("id"):
            raise BadRequestError(f"submit_response_missing_id: {r.text[:250]}")
        return JobHandle(id=str(data["id"]), status=str(data.get("status", "")))

    def fetch(self, job_id: str) -> JobResult:
        try:
            r = self._post("/document", {"id": job_id}, settings.fetch_timeout_sec)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as exc:
            raise FetchError(f"http_{exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(str(exc)) from exc
        except ValueError as exc:
            raise FetchError(f"invalid_document_json: {exc}") from exc

        return JobResult.from_payload(job_id, data)
