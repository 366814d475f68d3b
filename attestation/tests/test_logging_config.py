import logging

from attestation.app.core.logging_config import (
    ExtraFieldsFormatter,
    configure_logging,
)


def test_formatter_appends_extra_fields():
    record = logging.LogRecord(
        "attestation.pinning", logging.INFO, __file__, 1,
        "content_published", (), None,
    )
    record.trace_id = "trace-1"
    record.content_id = "Qm123"

    line = ExtraFieldsFormatter("%(message)s").format(record)

    assert line == "content_published content_id='Qm123' trace_id='trace-1'"


def test_formatter_leaves_plain_records_unchanged():
    record = logging.LogRecord(
        "attestation", logging.INFO, __file__, 1, "startup", (), None,
    )

    assert ExtraFieldsFormatter("%(message)s").format(record) == "startup"


def test_configure_logging_is_idempotent():
    configure_logging("debug")
    configure_logging("DEBUG")

    logger = logging.getLogger("attestation")
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
