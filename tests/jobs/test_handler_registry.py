"""HandlerRegistry: registration, lookup and freezing."""

from datetime import UTC, datetime

import pytest

from erp_jobs.tasks import FunctionHandler, HandlerRegistry, JobHandler
from erp_kernel.exceptions import HandlerNotRegisteredError, NotFoundError

DEADLINE = datetime(2026, 2, 1, 12, 5, tzinfo=UTC)


class EchoHandler:
    def invoke(self, payload, deadline):
        return {"echo": dict(payload), "deadline": deadline}


class TestHandlerRegistry:

    def test_register_handler_object(self):
        registry = HandlerRegistry()
        handler = EchoHandler()
        registry.register("echo", handler)

        assert registry.get("echo") is handler
        assert "echo" in registry
        assert len(registry) == 1

    def test_callable_is_wrapped(self):
        registry = HandlerRegistry()
        registry.register("double", lambda payload, deadline: payload["n"] * 2)

        handler = registry.get("double")

        assert isinstance(handler, FunctionHandler)
        assert isinstance(handler, JobHandler)
        assert handler.invoke({"n": 21}, DEADLINE) == 42

    def test_duplicate_key_rejected(self):
        registry = HandlerRegistry()
        registry.register("echo", EchoHandler())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("echo", EchoHandler())

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            HandlerRegistry().register("broken", 42)

    def test_unknown_key(self):
        with pytest.raises(HandlerNotRegisteredError) as exc_info:
            HandlerRegistry().get("missing")
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.handler == "missing"

    def test_frozen_registry_rejects_registration(self):
        registry = HandlerRegistry()
        registry.register("echo", EchoHandler())
        registry.freeze()

        assert registry.frozen
        with pytest.raises(ValueError, match="frozen"):
            registry.register("late", EchoHandler())
        assert registry.get("echo").invoke({"a": 1}, DEADLINE)["echo"] == {"a": 1}

    def test_list_handlers_sorted(self):
        registry = HandlerRegistry()
        for key in ("reports.nightly", "approvals.escalate_overdue", "mail.digest"):
            registry.register(key, EchoHandler())
        assert registry.list_handlers() == (
            "approvals.escalate_overdue", "mail.digest", "reports.nightly",
        )
