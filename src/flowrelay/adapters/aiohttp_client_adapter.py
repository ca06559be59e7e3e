# flowrelay/adapters/aiohttp_client_adapter.py
import asyncio
from typing import Any, Dict, Optional

import aiohttp

from flowrelay.core.exceptions import ProtocolViolation, TransportError
from flowrelay.core.interfaces.http_client import HttpClientPort
from flowrelay.core.settings import logger

# statuses at or above this are not HTTP responses we can reason about
MAX_DELIVERED_STATUS = 600


class AioHttpClientAdapter(HttpClientPort):
    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None
        # Remote workflows may take arbitrarily long, so by default there is
        # no total or read timeout. Only the connect phase is bounded.
        self._default_sock_connect: float = 30.0
        self._default_client_timeout = aiohttp.ClientTimeout(
            total=None,
            sock_read=None,
            sock_connect=self._default_sock_connect,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
        return False

    def _client_timeout(self, timeout: float | None) -> aiohttp.ClientTimeout:
        if timeout is None:
            return self._default_client_timeout
        return aiohttp.ClientTimeout(total=timeout, sock_connect=self._default_sock_connect)

    async def get(
        self,
        url: str,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")

        try:
            async with self._session.get(
                url, timeout=self._client_timeout(timeout), headers=headers
            ) as response:
                if response.status >= MAX_DELIVERED_STATUS:
                    logger.error("Invalid HTTP status from remote service. URL: %s, Status: %s", url, response.status)
                    raise ProtocolViolation(
                        f"Remote service answered with invalid HTTP status {response.status}",
                        url=url,
                        status=response.status,
                    )
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    # not JSON at all; ContentTypeError is disabled by content_type=None
                    response_text = await response.text()
                    logger.error(
                        "Invalid JSON response from remote service. URL: %s, Content: %s",
                        url,
                        response_text[:500],
                    )
                    raise ProtocolViolation(
                        f"The response from the remote service was not valid JSON: '{response_text[:100]}'",
                        url=url,
                        status=response.status,
                    )

                return {
                    "status": response.status,
                    "headers": dict(response.headers),
                    "body": body,
                }

        except TransportError:
            raise

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting remote service. URL: %s", url)
            raise TransportError("The request to the remote service timed out.", url=url, code="timeout")

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting remote service. URL: %s, Error: %s",
                url,
                str(client_error),
            )
            raise TransportError(
                f"Connection error with the remote service: {client_error}",
                url=url,
                code=type(client_error).__name__,
            )

        except Exception as unexpected_error:
            logger.error(
                "Unexpected error for remote service. URL: %s, Error: %s",
                url,
                str(unexpected_error),
            )
            raise TransportError(
                f"Unexpected error while requesting the remote service: {unexpected_error}",
                url=url,
                code="unexpected",
            )

    async def close(self) -> None:
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def post(
        self,
        url: str,
        json: Dict[str, Any] | None,
        timeout: float | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")

        try:
            async with self._session.post(
                url, json=json, timeout=self._client_timeout(timeout), headers=headers
            ) as response:
                # Attempt to parse JSON, but return status and headers as well
                try:
                    body = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()

                # The caller inspects the status; no raise_for_status here
                return {
                    "status": response.status,
                    "headers": dict(response.headers),
                    "body": body,
                }

        except asyncio.TimeoutError:
            logger.error("Timeout when POSTing to remote service. URL: %s", url)
            raise TransportError("The request to the remote service timed out.", url=url, code="timeout")
        except aiohttp.ClientError as client_err:
            logger.error("Connection error when POSTing to remote service. URL: %s, Error: %s", url, str(client_err))
            raise TransportError(
                f"Connection error with the remote service: {client_err}",
                url=url,
                code=type(client_err).__name__,
            )
        except Exception as unexpected_post_error:
            logger.error("Unexpected error when POSTing to remote service. URL: %s, Error: %s", url, str(unexpected_post_error))
            raise TransportError(
                f"Unexpected error while requesting the remote service: {unexpected_post_error}",
                url=url,
                code="unexpected",
            )
