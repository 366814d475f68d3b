"""
Logging setup for the attestation service.

Log messages are snake_case event names; context travels in
``extra={...}``. The formatter appends those extra fields so they are
visible without a structured log collector. Secrets never reach a log
record: settings hold them as ``SecretStr``.
"""

import logging
import sys

# Attributes every LogRecord carries; anything else came from ``extra``
_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if not extras:
            return line
        rendered = " ".join(f"{k}={v!r}" for k, v in sorted(extras.items()))
        return f"{line} {rendered}"


def configure_logging(level: str = "INFO") -> None:
    """
    Route all ``attestation.*`` loggers to stderr.

    Called once at startup, before the first request is served.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ExtraFieldsFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )

    root = logging.getLogger("attestation")
    root.setLevel(level.upper())

    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
