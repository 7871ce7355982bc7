from typing import Optional

class WatchProgressError(Exception):
    """Base class for errors raised by watchprogress."""

class ProgressAPIError(WatchProgressError):
    def __init__(self, status_code: int, detail: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Progress API returned {status_code}: {detail}")

    @property
    def retryable(self) -> bool:
        # 4xx means the payload itself is bad; sending it again will not help
        return self.status_code >= 500
