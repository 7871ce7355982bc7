import logging
from typing import Protocol

from .models import Notice, NoticeKind

class Notifier(Protocol):
    def notify(self, notice: Notice) -> None: ...

class LoggingNotifier:
    """Default notifier for headless use: routes notices to the log."""

    def __init__(self, logger_name: str = "watchprogress.notices"):
        self.logger = logging.getLogger(logger_name)

    def notify(self, notice: Notice) -> None:
        level = logging.WARNING if notice.kind in (NoticeKind.SAVE_FAILED, NoticeKind.LOAD_FAILED) else logging.INFO
        self.logger.log(level, f"{notice.title}: {notice.message}" if notice.message else notice.title)
