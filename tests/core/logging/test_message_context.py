"""Tests for queue message logging context."""

from core.logging.message_context import MessageLogContext, get_message_context


class TestMessageLogContext:
    def test_empty_outside_context(self):
        assert get_message_context() == {}

    def test_sets_and_resets(self):
        with MessageLogContext(topic="content.changes", partition=2, offset=17, key="sanity:a"):
            assert get_message_context() == {
                "message_topic": "content.changes",
                "message_partition": 2,
                "message_offset": 17,
                "message_key": "sanity:a",
            }
        assert get_message_context() == {}

    def test_partition_zero_is_reported(self):
        with MessageLogContext(topic="content.changes", partition=0, offset=0):
            context = get_message_context()
        assert context["message_partition"] == 0
        assert context["message_offset"] == 0

    def test_nested_restores_outer(self):
        with MessageLogContext(topic="content.changes", offset=1):
            with MessageLogContext(offset=2):
                assert get_message_context()["message_offset"] == 2
            assert get_message_context()["message_offset"] == 1

    def test_exception_does_not_leak(self):
        try:
            with MessageLogContext(topic="content.changes"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert get_message_context() == {}
