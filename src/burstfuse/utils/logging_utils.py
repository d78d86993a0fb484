from __future__ import annotations

import logging
from pathlib import Path
import time
from types import TracebackType


logger = logging.getLogger(__name__)

# Third-party loggers that are chatty at DEBUG.
_QUIET_LOGGERS = ("PIL", "tifffile")


def configure_logging(level: str, log_file: Path | None = None) -> None:
    resolved_level = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))


class Measure:
    """Context manager logging the wall time of a pipeline stage at DEBUG."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.elapsed_s = 0.0
        self._start = 0.0

    def __enter__(self) -> Measure:
        self._start = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.elapsed_s = time.perf_counter() - self._start
        if exc_type is None:
            logger.debug("%s took %.3fs", self.label, self.elapsed_s)
        else:
            logger.debug("%s failed after %.3fs", self.label, self.elapsed_s)
