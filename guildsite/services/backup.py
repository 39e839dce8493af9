"""
BackupTrigger Class - Webhook "backup" signal with cooldown

Automatic triggers are spaced by a cooldown; manual triggers skip the check
but still restart it on success. Disaster mode turns on with the first
successful delivery and stays on until reset_disaster_mode().
"""

import asyncio
from typing import Optional

import httpx

from guildsite.errors import ConfigurationError, CooldownError, DeliveryError
from guildsite.models.data_models import BackupState, SecuritySnapshot, TriggerResult
from guildsite.utils.helpers import Clock, iso_from_ms, now_ms
from guildsite.utils.logger import get_logger

log = get_logger("services.backup")


class BackupTrigger:
    def __init__(
        self,
        webhook_url: Optional[str],
        cooldown_ms: int = 10 * 60 * 1000,
        timeout_s: float = 10.0,
        clock: Optional[Clock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.cooldown_ms = cooldown_ms
        self.timeout_s = timeout_s
        self._clock = clock or now_ms
        self._transport = transport
        self._lock = asyncio.Lock()
        self._triggering = False
        self.last_trigger_ms: Optional[int] = None
        self.disaster_mode = False

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def state(self, now: Optional[int] = None) -> BackupState:
        if self._triggering:
            return BackupState.TRIGGERING
        if self._cooldown_remaining(self._clock() if now is None else now) > 0:
            return BackupState.COOLING_DOWN
        return BackupState.IDLE

    def _cooldown_remaining(self, now: int) -> int:
        if self.last_trigger_ms is None:
            return 0
        return max(0, self.cooldown_ms - (now - self.last_trigger_ms))

    async def request_trigger(self, snapshot: SecuritySnapshot, manual: bool = False) -> TriggerResult:
        """
        Deliver a backup notification.

        Raises ConfigurationError without a webhook, CooldownError for an
        automatic request inside the cooldown, DeliveryError when the
        webhook is unreachable, times out or answers non-2xx.
        """
        if not self.configured:
            raise ConfigurationError("No webhook configured")

        # one attempt at a time, so a second automatic caller sees the new cooldown
        async with self._lock:
            now = self._clock()
            remaining = self._cooldown_remaining(now)
            if not manual and remaining > 0:
                raise CooldownError(remaining)

            payload = {
                "action": "backup",
                "at": iso_from_ms(now),
                "snapshot": snapshot.to_dict(),
            }

            self._triggering = True
            try:
                status = await self._deliver(payload)
            finally:
                self._triggering = False

            self.last_trigger_ms = now
            self.disaster_mode = True
            log.warning(
                "Backup webhook fired (%s, status %s, level %s)",
                "manual" if manual else "automatic",
                status,
                snapshot.status_level.value,
            )
            return TriggerResult(triggered=True, status=status)

    async def _deliver(self, payload: dict) -> int:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
                resp.raise_for_status()
                return resp.status_code
        except httpx.HTTPError as e:
            log.error("Backup webhook delivery failed: %r", e)
            raise DeliveryError(str(e) or e.__class__.__name__) from e

    def reset_disaster_mode(self) -> None:
        if self.disaster_mode:
            log.info("Disaster mode cleared")
        self.disaster_mode = False
