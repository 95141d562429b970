"""
Realtime Service Client Module

HTTP collaborators used while a session is being established:
- CredentialProvider: obtains a short-lived client secret
- RealtimeNegotiator: exchanges the SDP offer for the service's answer

Both are async (aiohttp) and raise TransportError subclasses with a
human-readable message, which the session controller shows as status.

Usage:
    provider = HttpCredentialProvider()
    token = await provider.fetch()
    answer_sdp = await RealtimeNegotiator().exchange(offer_sdp, token)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from medinterp.config import RealtimeConfig, settings
from medinterp.logger import get_logger

logger = get_logger(__name__)


class TransportError(RuntimeError):
    """Fatal failure while establishing or running the audio transport."""


class CaptureError(TransportError):
    """Local audio capture device could not be acquired."""


class CredentialError(TransportError):
    """Ephemeral credential could not be obtained."""


class NegotiationError(TransportError):
    """SDP offer/answer exchange failed."""


class CredentialProvider(ABC):
    """
    Abstract source of short-lived credentials for the realtime service.
    """

    @abstractmethod
    async def fetch(self) -> str:
        """
        Obtain a client secret.

        Returns:
            Bearer token for the negotiation request

        Raises:
            CredentialError: If no usable credential could be obtained
        """
        pass


class StaticCredentialProvider(CredentialProvider):
    """Returns a fixed token (useful for scripts with a pre-minted secret)."""

    def __init__(self, token: str):
        self._token = token

    async def fetch(self) -> str:
        if not self._token:
            raise CredentialError("No credential configured")
        return self._token


def extract_client_secret(data: Any) -> str:
    """Pull `client_secret.value` out of a token endpoint response."""
    if not isinstance(data, dict):
        raise CredentialError("Invalid token response: expected a JSON object")
    secret = data.get("client_secret")
    value = secret.get("value") if isinstance(secret, dict) else None
    if not value or not isinstance(value, str):
        raise CredentialError("Invalid token response: missing client_secret")
    return value


class HttpCredentialProvider(CredentialProvider):
    """
    Fetches a client secret from the application's token endpoint.

    The endpoint takes an empty POST and answers
    `{"client_secret": {"value": "..."}}`.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        config: Optional[RealtimeConfig] = None,
    ):
        self._config = config or settings.realtime
        self._endpoint = endpoint or self._config.token_endpoint

    async def fetch(self) -> str:
        timeout = aiohttp.ClientTimeout(total=self._config.http_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self._endpoint,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        logger.error(f"Token endpoint error {response.status}: {body[:200]}")
                        raise CredentialError(f"Failed to get ephemeral token: {response.status}")
                    data = await response.json(content_type=None)
        except CredentialError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CredentialError(f"Failed to get ephemeral token: {e}") from e

        token = extract_client_secret(data)
        logger.debug("Ephemeral token obtained")
        return token


class RealtimeNegotiator:
    """
    Performs the SDP offer/answer exchange with the realtime endpoint.

    The offer is posted as `application/sdp` with the bearer credential;
    model and voice travel as query parameters.
    """

    def __init__(self, config: Optional[RealtimeConfig] = None):
        self._config = config or settings.realtime

    @property
    def _params(self) -> Dict[str, str]:
        return {"model": self._config.model, "voice": self._config.voice}

    async def exchange(self, offer_sdp: str, token: str) -> str:
        """
        Send the local offer, return the remote answer SDP.

        Raises:
            NegotiationError: On network failure or a non-2xx answer
        """
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/sdp",
        }
        timeout = aiohttp.ClientTimeout(total=self._config.http_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self._config.base_url,
                    params=self._params,
                    data=offer_sdp.encode("utf-8"),
                    headers=headers,
                ) as response:
                    answer = await response.text()
                    if response.status >= 400:
                        logger.error(f"Negotiation error {response.status}: {answer[:200]}")
                        raise NegotiationError(f"Realtime negotiation failed: {response.status}")
        except NegotiationError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NegotiationError(f"Realtime negotiation failed: {e}") from e

        if not answer.strip():
            raise NegotiationError("Realtime negotiation failed: empty SDP answer")
        return answer
