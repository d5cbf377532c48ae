"""Per-run transcript: matched lines and log messages in one file."""

from __future__ import annotations

import logging
from pathlib import Path

TRANSCRIPT_FORMAT = "[%(levelname)s] %(message)s"


class RunTranscript:
    """Text file receiving ripgrep output and everything logged under ``logger_name``."""

    def __init__(self, path: Path, logger_name: str = "ebsmon"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8")
        self._logger = logging.getLogger(logger_name)
        self._saved_level = self._logger.level

        self._handler = logging.StreamHandler(self._file)
        self._handler.setLevel(logging.INFO)
        self._handler.setFormatter(logging.Formatter(TRANSCRIPT_FORMAT))
        self._logger.addHandler(self._handler)
        if not self._logger.isEnabledFor(logging.INFO):
            self._logger.setLevel(logging.INFO)

    @property
    def closed(self) -> bool:
        return self._file.closed

    def write(self, text: str) -> None:
        self._file.write(text)

    def close(self) -> None:
        if self._file.closed:
            return
        self._logger.removeHandler(self._handler)
        self._logger.setLevel(self._saved_level)
        self._handler.close()
        self._file.close()

    def __enter__(self) -> RunTranscript:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
