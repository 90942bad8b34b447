"""
Tests for Logging Infrastructure
"""
import pytest
import json
import logging
from io import StringIO

from app.core.logging import (
    CorrelationIdFilter,
    JSONFormatter,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    log_sync_operation,
    set_correlation_id,
    setup_logging,
)


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def json_logger(log_stream: StringIO, request):
    """logger עם JSONFormatter שכותב ל-StringIO"""
    handler = logging.StreamHandler(log_stream)
    handler.setFormatter(JSONFormatter())
    logger = get_logger(f"test.{request.node.name}")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger
    logger.removeHandler(handler)


def _entries(log_stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in log_stream.getvalue().splitlines() if line]


class TestCorrelationId:
    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()
        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get(self):
        assert set_correlation_id("SMabc123") == "SMabc123"
        assert get_correlation_id() == "SMabc123"

    @pytest.mark.unit
    def test_set_generates_if_none(self):
        assert len(set_correlation_id(None)) == 8

    @pytest.mark.unit
    def test_scope_restores_previous_id(self):
        set_correlation_id("outer001")

        with correlation_scope("task-42") as cid:
            assert cid == "task-42"
            assert get_correlation_id() == "task-42"

        assert get_correlation_id() == "outer001"

    @pytest.mark.unit
    def test_scope_generates_id(self):
        with correlation_scope() as cid:
            assert len(cid) == 8
            assert get_correlation_id() == cid


class TestJSONFormatter:
    @pytest.mark.unit
    def test_basic_entry(self, json_logger, log_stream):
        json_logger.info("Report submitted")

        [entry] = _entries(log_stream)
        assert entry["level"] == "INFO"
        assert entry["message"] == "Report submitted"
        assert entry["logger"] == json_logger.name
        assert entry["timestamp"].endswith("Z")

    @pytest.mark.unit
    def test_includes_correlation_id(self, json_logger, log_stream):
        with correlation_scope("SMcorr01"):
            json_logger.info("Inbound message")

        assert _entries(log_stream)[0]["correlation_id"] == "SMcorr01"

    @pytest.mark.unit
    def test_includes_exception(self, json_logger, log_stream):
        try:
            raise ValueError("bad coordinates")
        except ValueError:
            json_logger.error("Geo lookup failed", exc_info=True)

        [entry] = _entries(log_stream)
        assert entry["level"] == "ERROR"
        assert "ValueError" in entry["exception"]

    @pytest.mark.unit
    def test_devanagari_is_not_escaped(self, log_stream, json_logger):
        json_logger.info("दिघी आळंदी")
        assert "दिघी आळंदी" in log_stream.getvalue()

    @pytest.mark.unit
    def test_full_phone_numbers_are_redacted(self, json_logger, log_stream):
        json_logger.info(
            "Reply to whatsapp:+919876543210",
            extra_data={"recipients": ["whatsapp:+918180094312"], "officer": {"phone": "+919822000000"}},
        )

        [entry] = _entries(log_stream)
        assert entry["message"] == "Reply to whatsapp:+91987654****"
        assert entry["extra"] == {
            "recipients": ["whatsapp:+91818009****"],
            "officer": {"phone": "+91982200****"},
        }

    @pytest.mark.unit
    def test_already_masked_and_non_phone_values_untouched(self, json_logger, log_stream):
        json_logger.info("ok", extra_data={"user": "whatsapp:+91987654****", "sid": "SM1234567890123456"})
        assert _entries(log_stream)[0]["extra"] == {"user": "whatsapp:+91987654****", "sid": "SM1234567890123456"}


class TestStructuredLogger:
    @pytest.mark.unit
    def test_get_logger(self):
        assert get_logger("app.workers.tasks").name == "app.workers.tasks"

    @pytest.mark.unit
    def test_extra_data(self, json_logger, log_stream):
        json_logger.warning(
            "Officer notification failed",
            extra_data={"division": "DIGHI ALANDI", "public_id": "TB-1234"},
        )

        [entry] = _entries(log_stream)
        assert entry["extra"] == {"division": "DIGHI ALANDI", "public_id": "TB-1234"}

    @pytest.mark.unit
    def test_level_filtering(self, json_logger, log_stream):
        json_logger.setLevel(logging.WARNING)
        json_logger.info("hidden")
        json_logger.debug("hidden", extra_data={"x": 1})
        assert _entries(log_stream) == []


class TestSetupLogging:
    @pytest.mark.unit
    def test_text_format_uses_correlation_filter(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(level="DEBUG", json_format=False)

            [handler] = root.handlers
            assert root.level == logging.DEBUG
            assert any(isinstance(f, CorrelationIdFilter) for f in handler.filters)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    @pytest.mark.unit
    def test_json_format(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(level="info")
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    @pytest.mark.unit
    def test_filter_fills_placeholder(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)
        with correlation_scope("abc12345"):
            CorrelationIdFilter().filter(record)
        assert record.correlation_id == "abc12345"


class TestOperationDecorators:
    @pytest.mark.unit
    async def test_async_success(self):
        @log_async_operation("geo_resolve")
        async def resolve():
            return "DIGHI ALANDI"

        assert await resolve() == "DIGHI ALANDI"

    @pytest.mark.unit
    async def test_async_failure_reraises(self):
        @log_async_operation("officer_notify")
        async def notify():
            raise RuntimeError("Twilio down")

        with pytest.raises(RuntimeError):
            await notify()

    @pytest.mark.unit
    def test_sync_success_and_failure(self):
        @log_sync_operation("compress_image")
        def compress(data: bytes) -> bytes:
            if not data:
                raise ValueError("empty")
            return data[:2]

        assert compress(b"abcd") == b"ab"
        with pytest.raises(ValueError):
            compress(b"")
