import aiohttp
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

class SessionManager:
    """Owns one aiohttp session per provider, created on first use.

    Default headers and the request timeout are fixed at construction so
    every request a provider makes carries them.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        self._session: Optional[aiohttp.ClientSession] = None
        self.headers: Dict[str, str] = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            kwargs: Dict[str, Any] = {"headers": self.headers}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._session = aiohttp.ClientSession(**kwargs)
            logger.debug("Opened HTTP session")
        return self._session

    async def post_json(self, url: str, payload: Dict[str, Any]) -> Tuple[int, Any]:
        """POST ``payload`` as JSON.

        Returns the status and the decoded JSON body on 200, or the raw text
        body for any other status. aiohttp errors propagate to the caller.
        """
        session = await self.get_session()
        async with session.post(url, json=payload) as response:
            if response.status != 200:
                return response.status, await response.text()
            return response.status, await response.json()

    async def close(self):
        """Close the current session if it exists."""
        if self._session and not self._session.closed:
            try:
                await self._session.close()
            except aiohttp.ClientError as e:
                logger.error(f"Error closing session: {e}")
            finally:
                self._session = None

    async def __aenter__(self) -> 'SessionManager':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
