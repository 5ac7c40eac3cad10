"""Minimal messaging gateway client for sending and receiving chat messages."""
import time
from typing import Optional, Dict, Any

import requests

from handoff import settings
from handoff.logging_conf import logger

MAX_RETRIES = 3


class GatewayError(Exception):
    """The gateway could not complete a request."""


class GatewayClient:
    """Talks to the chat transport gateway over HTTP."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None):
        self.base_url = (base_url or settings.GATEWAY_URL or "").rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        token = token or settings.GATEWAY_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def send_message(self, to: str, text: str) -> Dict[str, Any]:
        """
        Send a text message to a chat.

        Args:
            to: Destination chat ID
            text: Message body

        Returns:
            The gateway's message record

        Raises:
            GatewayError if the message could not be delivered
        """
        logger.debug(f"Sending message to {to}: {text[:50]}...")
        response = self._request("POST", "/messages", json={"to": to, "text": text.strip()})
        if response is None:
            raise GatewayError(f"Failed to send message to {to}")
        return response

    def fetch_updates(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch inbound messages received after `cursor`.

        Returns:
            Dict with "messages" (list) and "cursor" (str or None)

        Raises:
            GatewayError if the gateway is unreachable
        """
        params = {"after": cursor} if cursor else {}
        response = self._request("GET", "/updates", params=params)
        if response is None:
            raise GatewayError("Failed to fetch updates")
        return {
            "messages": response.get("messages", []),
            "cursor": response.get("cursor", cursor),
        }

    def _request(self, method: str, endpoint: str, retry_count: int = 0, **kwargs) -> Optional[Dict[str, Any]]:
        """Make API request with retry logic."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method=method, url=url, timeout=30, **kwargs)

            if response.status_code == 429 and retry_count < MAX_RETRIES:
                retry_after = int(response.headers.get("Retry-After", 5))
                logger.warning(f"Rate limited. Waiting {retry_after}s...")
                time.sleep(retry_after)
                return self._request(method, endpoint, retry_count + 1, **kwargs)

            if response.status_code >= 500 and retry_count < MAX_RETRIES:
                wait_time = 2 ** retry_count
                logger.warning(f"Server error {response.status_code}. Retrying in {wait_time}s...")
                time.sleep(wait_time)
                return self._request(method, endpoint, retry_count + 1, **kwargs)

            response.raise_for_status()
            return response.json() if response.content else {}

        except requests.exceptions.RequestException as e:
            if retry_count < MAX_RETRIES and isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
                wait_time = 2 ** retry_count
                time.sleep(wait_time)
                return self._request(method, endpoint, retry_count + 1, **kwargs)
            logger.error(f"Gateway request failed: {e}")
            return None
