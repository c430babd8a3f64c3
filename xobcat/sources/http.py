"""Remote session source — fetches sessions from a session API over HTTP.

Expects ``GET {base_url}/sessions?start=<iso>&end=<iso>`` to return either a
JSON list of sessions or an object with a ``data`` (or ``sessions``) list,
in the same shape :class:`~xobcat.models.ChatSession` validates.
"""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from xobcat.models import ChatSession

logger = logging.getLogger(__name__)


class HttpSessionSource:
    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def fetch_sessions(self, start: datetime, end: datetime) -> list[ChatSession]:
        """Fetch sessions starting in ``[start, end)``.

        Raises:
            httpx.HTTPError: network failure or non-2xx response.  The
                sampler wraps it as an upstream failure.
        """
        params = {"start": start.isoformat(), "end": end.isoformat()}
        logger.debug("Fetching sessions %s → %s from %s", params["start"], params["end"], self.base_url)

        if self._client is not None:
            resp = await self._client.get(
                f"{self.base_url}/sessions", params=params, headers=self._headers()
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.base_url}/sessions", params=params, headers=self._headers()
                )
        resp.raise_for_status()

        payload = resp.json()
        if isinstance(payload, dict):
            payload = payload.get("data", payload.get("sessions", []))
        sessions = [ChatSession.model_validate(item) for item in payload]
        # Half-open window regardless of how the API bounds its query
        return [s for s in sessions if start <= s.start_time < end]
