"""Push delivery collaborator - base interface and Expo implementation"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from choreflow.config import settings
from choreflow.utils.monitoring import StructuredLogger


class PushProvider(ABC):
    """Sends a single push message to one device"""

    @abstractmethod
    async def send(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Deliver a message; True on success, False on any failure"""
        pass


class ExpoPushProvider(PushProvider):
    """Expo push service integration"""

    def __init__(
        self,
        push_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.push_url = push_url or settings.EXPO_PUSH_URL
        self.access_token = access_token if access_token is not None else settings.EXPO_ACCESS_TOKEN
        self.timeout = timeout or settings.PUSH_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _post(self, message: Dict[str, Any]) -> requests.Response:
        return requests.post(self.push_url, json=message, headers=self._headers(), timeout=self.timeout)

    async def send(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        data = data or {}
        message = {
            "to": device_token,
            "title": title,
            "body": body,
            "data": data,
            "priority": "high" if data.get("priority") in ("high", "critical") else "default",
        }
        if data.get("sound"):
            message["sound"] = data["sound"]

        try:
            response = await asyncio.to_thread(self._post, message)
            response.raise_for_status()
            ticket = response.json().get("data", {})
        except (requests.exceptions.RequestException, ValueError) as e:
            StructuredLogger.log_event(
                "push_send_failed",
                f"Push request failed: {str(e)}",
                metadata={"error_type": type(e).__name__},
                level="WARNING",
            )
            return False

        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}

        if ticket.get("status") != "ok":
            StructuredLogger.log_event(
                "push_ticket_error",
                f"Push rejected: {ticket.get('message', 'unknown error')}",
                metadata={"details": ticket.get("details")},
                level="WARNING",
            )
            return False

        return True
