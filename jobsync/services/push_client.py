from __future__ import annotations

from typing import Any

import httpx

from jobsync.schemas.alerts import PushMessage, PushTicket

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class ExpoPushClient:
    """Client for an Expo-compatible push endpoint.

    ``send`` posts one batch and returns one ticket per message, in order.
    Transport and HTTP errors propagate; the fan-out decides what a failed
    batch means.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str = EXPO_PUSH_URL,
        access_token: str | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self.client = client
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            self.headers["Authorization"] = f"Bearer {access_token}"

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        if not messages:
            return []
        response = await self.client.post(
            self.url,
            json=[message.model_dump() for message in messages],
            headers=self.headers,
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        return [_ticket(item) for item in _ticket_rows(payload)]


def _ticket_rows(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
    return []


def _ticket(item: Any) -> PushTicket:
    if not isinstance(item, dict):
        return PushTicket(status="error", message="malformed ticket")
    details = item.get("details") if isinstance(item.get("details"), dict) else {}
    return PushTicket(
        status=str(item.get("status") or "error"),
        id=item.get("id"),
        message=item.get("message"),
        error=details.get("error"),
    )
