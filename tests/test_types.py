"""Tests for core types."""

from modelgate.core.types import ActionResult, ChatMessage, last_user_message


def test_message_to_llm_format():
    """ChatMessage converts to LLM API format."""
    msg = ChatMessage(role="user", content="Hello")
    assert msg.to_llm_format() == {"role": "user", "content": "Hello"}


def test_action_result_defaults():
    """ActionResult carries no data or error by default."""
    result = ActionResult(success=True)
    assert result.data is None
    assert result.error is None
    assert result.metadata == {}


def test_last_user_message():
    """The newest user turn wins; assistant turns are skipped."""
    conversation = [
        ChatMessage(role="user", content="first"),
        ChatMessage(role="assistant", content="reply"),
        ChatMessage(role="user", content="second"),
        ChatMessage(role="assistant", content="another reply"),
    ]
    assert last_user_message(conversation) == "second"
    assert last_user_message([]) == ""
