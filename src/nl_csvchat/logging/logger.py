import glob
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_INITIALIZED = False


class SizeTimestampRotatingFileHandler(RotatingFileHandler):
    """Roll the log over to `<stem>_<timestamp><suffix>` once it reaches maxBytes.

    The live log keeps its configured path. backupCount=0 keeps every rolled file,
    a positive value keeps only the newest N.
    """

    def _rolled_name(self) -> str:
        base = Path(self.baseFilename)
        suffix = base.suffix or ".log"
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        candidate = base.with_name(f"{base.stem}_{ts}{suffix}")
        n = 1
        while candidate.exists():
            candidate = base.with_name(f"{base.stem}_{ts}_{n}{suffix}")
            n += 1
        return str(candidate)

    def _prune(self) -> None:
        base = Path(self.baseFilename)
        pattern = str(base.with_name(f"{base.stem}_*{base.suffix or '.log'}"))
        rolled = sorted(glob.glob(pattern), key=os.path.getmtime, reverse=True)
        for old in rolled[self.backupCount:]:
            try:
                os.remove(old)
            except OSError:
                pass

    def doRollover(self) -> None:
        if self.stream:
            try:
                self.stream.close()
            finally:
                self.stream = None

        if os.path.exists(self.baseFilename):
            try:
                os.replace(self.baseFilename, self._rolled_name())
            except OSError:
                # Logging must never take the app down.
                pass

        if self.backupCount > 0:
            self._prune()

        if not self.delay:
            self.stream = self._open()


def init_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/app.log",
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 0,
) -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return

    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            SizeTimestampRotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=handlers,
    )
    _INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"nl_csvchat.{name}")
