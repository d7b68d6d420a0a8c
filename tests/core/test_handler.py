"""Tests for the global ErrorHandler."""

import asyncio
import json
import logging
import threading

import pytest
from bitchat.core.codes import ErrorCategory, ErrorCode, ErrorSeverity
from bitchat.core.config import BitChatConfig, HandlerConfig
from bitchat.core.errors import (
    BitChatError,
    ConfigError,
    CryptoError,
    NetworkError,
    StorageError,
)
from bitchat.core.handler import (
    ErrorHandler,
    create_safe,
    create_safe_async,
    get_error_handler,
    handle_error,
    init_error_handling,
    reset_error_handler,
)


# ━━━ handle_error ━━━


@pytest.mark.parametrize(
    "raw",
    [NetworkError.offline(), ValueError("bad"), "plain text", 42, None, object()],
)
def test_handle_error_is_total(handler: ErrorHandler, raw):
    """Any raised value comes back as a BitChatError and is logged."""
    error = handler.handle_error(raw)

    assert isinstance(error, BitChatError)
    assert error.context.session_id == handler.session_id
    assert len(handler.get_log()) == 1


def test_typed_error_passes_through(handler: ErrorHandler):
    original = CryptoError.not_ready()
    assert handler.handle_error(original) is original


def test_context_applies_to_untyped_errors(handler: ErrorHandler):
    error = handler.handle_error(ValueError("x"), context={"component": "composer"})

    assert error.context.component == "composer"
    assert error.cause is not None


def test_existing_session_id_is_kept(handler: ErrorHandler):
    error = NetworkError.offline({"session_id": "session_other"})
    handler.handle_error(error)

    assert error.context.session_id == "session_other"


def test_session_id_format(handler: ErrorHandler):
    assert handler.session_id.startswith("session_")


# ━━━ Log ━━━


def test_log_is_most_recent_first(handler: ErrorHandler):
    handler.handle_error("first")
    handler.handle_error("second")

    log = handler.get_log()
    assert [entry.error.message for entry in log] == ["second", "first"]
    assert all(entry.id.startswith("err_") for entry in log)
    assert all(entry.handled for entry in log)


def test_log_is_bounded(handler_config):
    """Only the max_log_size most recent entries are kept."""
    handler = ErrorHandler(handler_config, max_log_size=3)
    for i in range(5):
        handler.handle_error(f"error {i}")

    assert [e.error.message for e in handler.get_log()] == ["error 4", "error 3", "error 2"]


def test_shrinking_max_log_size_trims(handler: ErrorHandler):
    for i in range(5):
        handler.handle_error(f"error {i}")

    handler.configure(max_log_size=2)

    assert len(handler.get_log()) == 2
    assert handler.get_log()[0].error.message == "error 4"


def test_configure_rejects_invalid_values(handler: ErrorHandler):
    with pytest.raises(ConfigError):
        handler.configure(max_log_size=0)


def test_get_log_returns_copy(handler: ErrorHandler):
    handler.handle_error("x")
    handler.get_log().clear()

    assert len(handler.get_log()) == 1


def test_recent_errors_and_lookup(handler: ErrorHandler):
    for i in range(12):
        handler.handle_error(f"error {i}")

    recent = handler.get_recent_errors()
    assert len(recent) == 10
    assert recent[0].error.message == "error 11"
    assert len(handler.get_recent_errors(3)) == 3

    wanted = handler.get_log()[5]
    assert handler.get_error_by_id(wanted.id) is wanted
    assert handler.get_error_by_id("err_missing") is None

    handler.clear_log()
    assert handler.get_log() == []


def test_stats(handler: ErrorHandler):
    """Two network errors and one crypto error."""
    handler.handle_error(NetworkError.offline())
    handler.handle_error(NetworkError.timeout("sync"))
    handler.handle_error(CryptoError.not_ready())

    stats = handler.get_stats()

    assert stats.total_errors == 3
    assert stats.by_category[ErrorCategory.NETWORK] == 2
    assert stats.by_category[ErrorCategory.CRYPTO] == 1
    assert stats.by_category[ErrorCategory.STORAGE] == 0
    assert set(stats.by_category) == set(ErrorCategory)
    assert stats.by_severity[ErrorSeverity.WARNING] == 2
    assert stats.by_severity[ErrorSeverity.ERROR] == 1
    assert stats.by_severity[ErrorSeverity.CRITICAL] == 0
    assert stats.last_error.error.name == "CryptoError"
    assert len(stats.recent_errors) == 3


def test_empty_stats(handler: ErrorHandler):
    stats = handler.get_stats()

    assert stats.total_errors == 0
    assert stats.last_error is None
    assert stats.recent_errors == []
    assert all(count == 0 for count in stats.by_category.values())


def test_export_log(handler: ErrorHandler):
    handler.handle_error(StorageError.quota_exceeded())

    exported = json.loads(handler.export_log())

    assert set(exported) == {"sessionId", "exportedAt", "stats", "errors"}
    assert exported["sessionId"] == handler.session_id
    assert exported["stats"]["totalErrors"] == 1
    assert exported["stats"]["byCategory"]["storage"] == 1
    assert exported["errors"][0]["error"]["code"] == ErrorCode.STORAGE_QUOTA_EXCEEDED
    assert exported["errors"][0]["error"]["userMessage"].startswith("Storage is full")


# ━━━ Routing ━━━


def test_routing_order(handler: ErrorHandler):
    """Category handler, then code handler, then listeners."""
    calls = []
    handler.add_listener(lambda e: calls.append("listener"))
    handler.add_code_handler(ErrorCode.NETWORK_OFFLINE, lambda e: calls.append("code"))
    handler.add_category_handler(ErrorCategory.NETWORK, lambda e: calls.append("category"))

    handler.handle_error(NetworkError.offline())

    assert calls == ["category", "code", "listener"]


def test_handlers_only_match_their_key(handler: ErrorHandler):
    calls = []
    handler.add_category_handler(ErrorCategory.CRYPTO, lambda e: calls.append("crypto"))
    handler.add_code_handler(ErrorCode.NETWORK_TIMEOUT, lambda e: calls.append("timeout"))

    handler.handle_error(NetworkError.offline())

    assert calls == []


def test_last_writer_wins(handler: ErrorHandler):
    calls = []
    handler.add_category_handler(ErrorCategory.NETWORK, lambda e: calls.append("first"))
    handler.add_category_handler(ErrorCategory.NETWORK, lambda e: calls.append("second"))
    handler.add_code_handler(ErrorCode.NETWORK_OFFLINE, lambda e: calls.append("code-a"))
    handler.add_code_handler(ErrorCode.NETWORK_OFFLINE, lambda e: calls.append("code-b"))

    handler.handle_error(NetworkError.offline())

    assert calls == ["second", "code-b"]


def test_remove_handlers(handler: ErrorHandler):
    calls = []
    handler.add_category_handler(ErrorCategory.NETWORK, lambda e: calls.append("category"))
    handler.add_code_handler(ErrorCode.NETWORK_OFFLINE, lambda e: calls.append("code"))
    handler.remove_category_handler(ErrorCategory.NETWORK)
    handler.remove_code_handler(ErrorCode.NETWORK_OFFLINE)

    handler.handle_error(NetworkError.offline())

    assert calls == []


def test_listener_failure_is_isolated(handler: ErrorHandler):
    """A raising listener does not stop the ones after it."""
    received = []

    def broken(error):
        raise RuntimeError("listener bug")

    handler.add_category_handler(ErrorCategory.GENERIC, broken)
    handler.add_listener(broken)
    handler.add_listener(received.append)

    error = handler.handle_error("boom")

    assert received == [error]
    assert handler.get_log()[0].handled is True


def test_non_mapping_context_data_is_logged_and_routed(handler: ErrorHandler):
    received = []
    handler.add_listener(received.append)

    error = handler.handle_error(RuntimeError("x"), context={"data": "payload"})

    assert received == [error]
    entry = handler.get_log()[0]
    assert entry.handled is True
    assert entry.error.context.data == {"value": "payload"}


def test_routing_survives_a_failed_log_append(handler: ErrorHandler, monkeypatch):
    """Handlers and listeners still run when the entry cannot be recorded."""
    received, by_code = [], []

    def broken_append(error):
        raise ValueError("cannot serialize")

    monkeypatch.setattr(handler, "_append", broken_append)
    handler.add_code_handler(ErrorCode.NETWORK_OFFLINE, by_code.append)
    handler.add_listener(received.append)

    error = handler.handle_error(NetworkError.offline())

    assert by_code == [error]
    assert received == [error]
    assert handler.get_log() == []


def test_unsubscribe(handler: ErrorHandler):
    received = []
    unsubscribe = handler.add_listener(received.append)

    handler.handle_error("one")
    unsubscribe()
    handler.handle_error("two")

    assert len(received) == 1
    assert handler.listener_count == 0


def test_listener_registered_twice_is_called_once(handler: ErrorHandler):
    received = []
    handler.add_listener(received.append)
    handler.add_listener(received.append)

    handler.handle_error("x")

    assert len(received) == 1


@pytest.mark.asyncio
async def test_async_listener_is_scheduled(handler: ErrorHandler):
    received = []

    async def listener(error):
        received.append(error)

    error = handler.handle_error("x")
    assert received == []

    handler.add_listener(listener)
    error = handler.handle_error("y")
    await asyncio.sleep(0)

    assert received == [error]


@pytest.mark.asyncio
async def test_async_listener_failure_is_isolated(handler: ErrorHandler):
    async def broken(error):
        raise RuntimeError("async listener bug")

    handler.add_listener(broken)
    handler.handle_error("x")
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert handler.get_log()[0].handled is True


def test_async_listener_without_loop(handler: ErrorHandler):
    """Without a running loop the coroutine is closed, never left pending."""
    ran = []

    async def listener(error):
        ran.append(error)

    handler.add_listener(listener)
    handler.handle_error("x")

    assert ran == []


def test_concurrent_handle_error(handler_config):
    handler = ErrorHandler(handler_config, max_log_size=1000)

    def worker():
        for _ in range(50):
            handler.handle_error(NetworkError.offline())

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert handler.get_stats().total_errors == 200
    assert handler.get_stats().by_category[ErrorCategory.NETWORK] == 200


# ━━━ Console transport ━━━


def test_console_levels(caplog):
    handler = ErrorHandler(
        HandlerConfig(capture_global_errors=False, capture_unhandled_rejections=False)
    )
    caplog.set_level(logging.DEBUG, logger="bitchat")

    handler.handle_error(BitChatError("note", severity=ErrorSeverity.INFO))
    handler.handle_error(NetworkError.offline())
    handler.handle_error(CryptoError.not_ready())
    handler.handle_error(BitChatError("meltdown", severity=ErrorSeverity.CRITICAL))

    records = [r for r in caplog.records if r.name == "bitchat.core.handler"]
    assert [(r.levelno, r.getMessage().split("]")[0] + "]") for r in records] == [
        (logging.INFO, "[BitChat]"),
        (logging.WARNING, "[BitChat]"),
        (logging.ERROR, "[BitChat]"),
        (logging.ERROR, "[BitChat CRITICAL]"),
    ]
    assert records[2].exc_info is not None
    assert "meltdown" in records[3].getMessage()


def test_silent_skips_console(caplog):
    handler = ErrorHandler(
        HandlerConfig(capture_global_errors=False, capture_unhandled_rejections=False)
    )
    caplog.set_level(logging.DEBUG, logger="bitchat")

    handler.handle_error(NetworkError.offline(), silent=True)

    assert not [r for r in caplog.records if "[BitChat]" in r.getMessage()]
    assert len(handler.get_log()) == 1


def test_log_to_console_false_is_quiet(handler: ErrorHandler, caplog):
    caplog.set_level(logging.DEBUG, logger="bitchat")
    handler.add_listener(lambda e: 1 / 0)

    handler.handle_error(NetworkError.offline())

    assert not [r for r in caplog.records if r.name == "bitchat.core.handler"]


def test_listener_failure_is_logged_when_console_enabled(caplog):
    handler = ErrorHandler(
        HandlerConfig(capture_global_errors=False, capture_unhandled_rejections=False)
    )
    caplog.set_level(logging.DEBUG, logger="bitchat")
    handler.add_listener(lambda e: 1 / 0)

    handler.handle_error("x")

    assert any(
        r.getMessage().startswith("[ErrorHandler] Error listener threw error")
        for r in caplog.records
    )


# ━━━ Default instance ━━━


def test_default_instance_lifecycle():
    first = get_error_handler()
    assert get_error_handler() is first

    reset_error_handler()
    assert get_error_handler() is not first


def test_init_error_handling_configures_default():
    handler = init_error_handling(
        log_to_console=False,
        capture_global_errors=False,
        capture_unhandled_rejections=False,
        max_log_size=7,
    )

    assert handler is get_error_handler()
    assert handler.installed
    assert handler.config.max_log_size == 7

    again = init_error_handling(max_log_size=8)
    assert again is handler
    assert handler.config.max_log_size == 8


def test_init_error_handling_accepts_loaded_config(tmp_path):
    project = tmp_path / "bitchat.toml"
    project.write_text(
        "[handler]\n"
        "max_log_size = 3\n"
        "log_to_console = false\n"
        "capture_global_errors = false\n"
        "capture_unhandled_rejections = false\n"
        "\n"
        "[logging]\n"
        'level = "error"\n',
        encoding="utf-8",
    )
    config = BitChatConfig.load(project_path=project, user_path=tmp_path / "missing.toml")

    try:
        handler = init_error_handling(config)
        assert handler.config.max_log_size == 3
        assert handler.config.log_to_console is False
        assert logging.getLogger("bitchat").handlers[0].level == logging.ERROR
    finally:
        logging.getLogger("bitchat").handlers = []


def test_module_handle_error_uses_default():
    init_error_handling(
        log_to_console=False, capture_global_errors=False, capture_unhandled_rejections=False
    )
    error = handle_error("boom")

    assert get_error_handler().get_log()[0].error.message == error.message


# ━━━ Safe wrappers ━━━


def test_create_safe_returns_fallback(handler: ErrorHandler):
    seen = []

    def parse(text):
        raise ValueError(f"cannot parse {text}")

    safe_parse = create_safe(
        parse, context={"component": "parser"}, on_error=seen.append, fallback=None, handler=handler
    )

    assert safe_parse("x") is None
    assert seen[0].context.component == "parser"
    assert len(handler.get_log()) == 1


def test_create_safe_raises_typed_error(handler: ErrorHandler):
    def parse():
        raise ValueError("bad")

    with pytest.raises(BitChatError) as exc_info:
        create_safe(parse, handler=handler)()

    assert isinstance(exc_info.value.__cause__, ValueError)


def test_create_safe_passes_success_through(handler: ErrorHandler):
    assert create_safe(lambda a, b: a + b, handler=handler)(1, 2) == 3
    assert handler.get_log() == []


@pytest.mark.asyncio
async def test_create_safe_async(handler: ErrorHandler):
    async def load():
        raise NetworkError.offline()

    safe_load = create_safe_async(load, fallback=[], handler=handler)
    assert await safe_load() == []

    with pytest.raises(NetworkError):
        await create_safe_async(load, handler=handler)()
