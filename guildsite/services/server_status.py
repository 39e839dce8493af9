"""
ServerStatusClient Class - Third-party game server status lookup
"""

from typing import Any, Dict, Optional

import httpx

from guildsite.utils.logger import get_logger

log = get_logger("services.server_status")


class ServerStatusClient:
    def __init__(
        self,
        api_base: str,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def lookup(self, host: str, port: str) -> Dict[str, Any]:
        """
        Fetch status JSON for host:port.
        The upstream API has no TPS figure, so `tps` is always null.
        Raises httpx.HTTPError or ValueError on failure.
        """
        url = f"{self.api_base}/{host}:{port}"
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            data = resp.json()

        if not isinstance(data, dict):
            raise ValueError("Unexpected status payload")
        data["tps"] = None
        return data
