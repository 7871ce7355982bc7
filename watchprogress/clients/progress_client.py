import logging
import httpx
from pydantic import ValidationError
from typing import Callable, Optional
from ..config import settings
from ..errors import ProgressAPIError
from ..models import ProgressPayload, ProgressRecord

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

class BearerTokenAuth(httpx.Auth):
    """Asks the token provider on every request so refreshed tokens are picked up."""

    def __init__(self, token_provider: TokenProvider):
        self.token_provider = token_provider

    def auth_flow(self, request):
        token = self.token_provider()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request

class ProgressAPIClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=(base_url or settings.PROGRESS_API_BASE_URL).rstrip('/'),
            auth=BearerTokenAuth(token_provider or (lambda: settings.PROGRESS_API_TOKEN)),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def get_progress(self, content_id: str) -> ProgressRecord:
        """
        Fetch the stored record for content_id.
        The server answers with a zeroed record when nothing was saved yet.
        """
        resp = await self.client.get(f"/progress/{content_id}")
        self._raise_for_status(resp)
        return self._parse_record(resp)

    async def save_progress(self, content_id: str, payload: ProgressPayload) -> ProgressRecord:
        """Send the full merged set. Returns the server's merged record."""
        resp = await self.client.post(
            f"/progress/{content_id}",
            json=payload.model_dump(mode="json", by_alias=True),
        )
        self._raise_for_status(resp)
        record = self._parse_record(resp)
        logger.debug(f"Saved progress for {content_id}: {record.progress_percentage:.1f}%")
        return record

    async def aclose(self):
        await self.client.aclose()

    @staticmethod
    def _parse_record(resp: httpx.Response) -> ProgressRecord:
        try:
            return ProgressRecord.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Malformed progress record from {resp.request.url}: {e}")
            raise ProgressAPIError(resp.status_code, "malformed progress record") from e

    @staticmethod
    def _raise_for_status(resp: httpx.Response):
        if resp.is_success:
            return
        detail = None
        try:
            body = resp.json()
            detail = body.get("detail") if isinstance(body, dict) else body
        except ValueError:
            detail = resp.text or None
        raise ProgressAPIError(resp.status_code, str(detail) if detail is not None else None)
