from __future__ import annotations
from datetime import date
from typing import Any
import httpx
import structlog

log = structlog.get_logger()


class ApiError(Exception):
    """Non-2xx response from the StepLeague API."""

    def __init__(self, status: int, payload: Any = None):
        self.status = status
        self.payload = payload
        super().__init__(parse_api_message(payload) or f"Request failed ({status})")


def parse_api_message(payload: Any) -> str | None:
    if isinstance(payload, str):
        return payload or None
    if not isinstance(payload, dict):
        return None
    for key in ("message", "detail", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class ApiClient:
    """
    Authenticated session against the API.

    Construct one per signed-in user and close it on sign-out; nothing is kept
    at module level.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http: httpx.AsyncClient | None = None,
        upload_http: httpx.AsyncClient | None = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=30)
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"
        # signed upload URLs point at object storage, not the API
        self._upload_http = upload_http or httpx.AsyncClient(timeout=60)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._upload_http.aclose()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._http.request(method, path, **kwargs)
        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        if not response.is_success:
            log.info("api_error", method=method, path=path, status=response.status_code)
            raise ApiError(response.status_code, payload)
        return payload

    async def sign_upload(self, content_type: str) -> dict:
        return await self.request("POST", "/proofs/sign-upload", json={"content_type": content_type})

    async def upload_to_signed_url(self, upload_url: str, data: bytes, content_type: str) -> None:
        response = await self._upload_http.put(upload_url, content=data, headers={"Content-Type": content_type})
        if not response.is_success:
            raise ApiError(response.status_code, response.text)

    async def create_submission(self, payload: dict) -> dict:
        return await self.request("POST", "/submissions", json=payload)

    async def verify_submission(
        self, submission_id: str, league_id: str, steps: int, for_date: date, proof_path: str
    ) -> dict:
        return await self.request(
            "POST",
            "/submissions/verify",
            json={
                "submission_id": submission_id,
                "league_id": league_id,
                "steps": steps,
                "for_date": for_date.isoformat(),
                "proof_path": proof_path,
            },
        )
