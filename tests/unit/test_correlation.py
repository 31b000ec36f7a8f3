"""
Unit tests for correlation module.

Tests correlation ID generation and scoping around message delivery.
"""

import asyncio

import pytest

from yoto_sync.correlation import (
    correlation_context,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def clear_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


class TestGenerateCorrelationId:
    """Tests for generate_correlation_id function"""

    def test_generates_unique_hex_ids(self):
        ids = {generate_correlation_id() for _ in range(10)}

        assert len(ids) == 10
        assert all(len(corr_id) == 32 for corr_id in ids)
        assert all(c in "0123456789abcdef" for corr_id in ids for c in corr_id)


class TestCorrelationContext:
    """Tests for correlation_context context manager"""

    def test_auto_generates_id(self):
        with correlation_context() as corr_id:
            assert corr_id is not None
            assert get_correlation_id() == corr_id

        assert get_correlation_id() is None

    def test_custom_id(self):
        with correlation_context(correlation_id="poll-cycle-1") as corr_id:
            assert corr_id == "poll-cycle-1"

    def test_no_auto_generate(self):
        with correlation_context(auto_generate=False) as corr_id:
            assert corr_id is None
            assert get_correlation_id() is None

    def test_nested_contexts_restore_outer_id(self):
        with correlation_context("outer"):
            with correlation_context("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_restores_on_exception(self):
        set_correlation_id("before")

        with pytest.raises(RuntimeError), correlation_context():
            raise RuntimeError("handler failed")

        assert get_correlation_id() == "before"

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_ids(self):
        """Each message handled in its own task keeps its own correlation ID"""

        async def handle(name: str) -> str | None:
            with correlation_context(name):
                await asyncio.sleep(0.001)
                return get_correlation_id()

        results = await asyncio.gather(handle("status"), handle("events"))

        assert results == ["status", "events"]


class TestEnsureCorrelationId:
    """Tests for ensure_correlation_id function"""

    def test_creates_when_missing(self):
        corr_id = ensure_correlation_id()

        assert get_correlation_id() == corr_id

    def test_keeps_existing(self):
        set_correlation_id("existing")

        assert ensure_correlation_id() == "existing"
