import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

import httpx

USER_POLL_INTERVAL = 10.0


class APIError(RuntimeError):
    """Error returned by the Queueline API or raised while reaching it."""

    def __init__(self, message: str, *, status_code: int | None = None, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown server error"

    if isinstance(data, Mapping):
        message = data.get("message")
        if isinstance(message, str):
            return message
    return "The request failed"


def _called_numbers(snapshot: Mapping[str, Any]) -> tuple[tuple[int, ...], tuple[int, ...]]:
    return (
        tuple(ticket["number"] for ticket in snapshot.get("assessment", [])),
        tuple(ticket["number"] for ticket in snapshot.get("purchase", [])),
    )


@dataclass(slots=True)
class QueueAPIClient:
    """Small client for kiosks and staff screens talking to the Queueline API."""

    base_url: str
    token: str | None = None
    timeout: float = 10.0

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._build_url(path)
        headers: dict[str, str] = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        headers.update(kwargs.pop("headers", {}))

        try:
            response = httpx.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as exc:
            raise APIError(f"API request failed: {exc}") from exc

        if response.status_code >= 400:
            message = _extract_error_message(response)
            raise APIError(message, status_code=response.status_code, response=response)

        if not response.content:
            return None

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text

    def _build_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url.rstrip('/')}{normalized}"

    # Health and identity
    def ping(self) -> Mapping[str, Any]:
        return self._request("GET", "/ping")

    def profile(self) -> Mapping[str, Any]:
        return self._request("GET", "/profile")

    # User operations
    def issue_ticket(self, *, lat: float | None = None, lng: float | None = None) -> Mapping[str, Any]:
        payload: dict[str, Any] = {}
        if lat is not None and lng is not None:
            payload["location"] = {"lat": lat, "lng": lng}
        return self._request("POST", "/tickets", json=payload)

    def my_ticket(self) -> Mapping[str, Any] | None:
        try:
            return self._request("GET", "/tickets/my-ticket")
        except APIError as exc:
            if exc.status_code == 404:
                return None
            raise

    def called(self) -> Mapping[str, Any]:
        return self._request("GET", "/tickets/called")

    def watch_called(
        self,
        *,
        interval: float = USER_POLL_INTERVAL,
        max_polls: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[Mapping[str, Any]]:
        """Poll the "now serving" lists and yield a snapshot whenever they change."""

        previous: tuple[tuple[int, ...], tuple[int, ...]] | None = None
        polls = 0
        while True:
            snapshot = self.called()
            polls += 1
            numbers = _called_numbers(snapshot)
            if numbers != previous:
                previous = numbers
                yield snapshot
            if max_polls is not None and polls >= max_polls:
                return
            sleep(interval)

    # Staff operations
    def assessment_queue(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/admin/assessment-queue") or [])

    def call_next_assessment(self) -> Mapping[str, Any]:
        return self._request("POST", "/admin/call/assessment")

    def complete_assessment(self, ticket_id: str) -> Mapping[str, Any]:
        return self._request("POST", f"/admin/assessment-complete/{ticket_id}")

    def purchase_queue(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/admin/purchase-queue") or [])

    def call_for_purchase(self, ticket_id: str) -> Mapping[str, Any]:
        return self._request("POST", f"/admin/call/purchase/{ticket_id}")

    def complete_ticket(self, ticket_id: str) -> Mapping[str, Any]:
        return self._request("POST", f"/admin/ticket/complete/{ticket_id}")
