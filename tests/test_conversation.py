"""Tests for the append-only conversation state."""

import pytest

from toolchat.core.conversation import (
    ArgumentParseError,
    ConversationError,
    ConversationState,
    Role,
    ToolCallIntent,
    ToolResponse,
    Turn,
)


def intent(call_id="call_1", name="get_weather", arguments='{"location": "London"}'):
    return ToolCallIntent(id=call_id, tool_name=name, arguments=arguments)


class TestConversationState:
    """Tests for ConversationState."""

    def test_system_prompt_is_first_turn(self):
        conversation = ConversationState(system_prompt="Be brief.")

        assert conversation.snapshot()[0] == Turn.system("Be brief.")
        assert len(conversation) == 1

    def test_no_system_prompt(self):
        assert len(ConversationState()) == 0
        assert ConversationState().last() is None

    def test_snapshot_is_a_prefix_of_later_snapshots(self):
        """Appending never changes what an earlier snapshot saw."""
        conversation = ConversationState()
        conversation.append(Turn.user("hi"))
        before = conversation.snapshot()

        conversation.append(Turn.assistant("hello"))
        after = conversation.snapshot()

        assert before == (Turn.user("hi"),)
        assert after[:len(before)] == before
        assert conversation.last() == Turn.assistant("hello")

    def test_intent_then_result(self):
        conversation = ConversationState()
        call = intent()

        conversation.append(Turn.intent(call))
        assert conversation.pending_tool_calls() == [call]

        conversation.append(Turn.tool_result(ToolResponse(call.id, "light rain", name="get_weather")))
        assert conversation.pending_tool_calls() == []
        assert [t.role for t in conversation] == [Role.ASSISTANT, Role.TOOL_RESULT]

    def test_result_without_intent_is_rejected(self):
        conversation = ConversationState()

        with pytest.raises(ConversationError, match="unknown or answered"):
            conversation.append(Turn.tool_result(ToolResponse("call_x", "orphan")))

        assert len(conversation) == 0

    def test_second_result_for_same_call_is_rejected(self):
        conversation = ConversationState()
        call = intent()
        conversation.append(Turn.intent(call))
        conversation.append(Turn.tool_result(ToolResponse(call.id, "first")))

        with pytest.raises(ConversationError):
            conversation.append(Turn.tool_result(ToolResponse(call.id, "second")))

    def test_unanswered_call_id_cannot_be_reused(self):
        conversation = ConversationState()
        conversation.append(Turn.intent(intent("call_1")))

        with pytest.raises(ConversationError, match="Duplicate unanswered"):
            conversation.append(Turn.intent(intent("call_1")))

    def test_answered_call_id_can_be_reused(self):
        """Vendors that number calls per response repeat ids like call_0."""
        conversation = ConversationState()
        conversation.append(Turn.intent(intent("call_0")))
        conversation.append(Turn.tool_result(ToolResponse("call_0", "first")))

        conversation.append(Turn.intent(intent("call_0", arguments='{"location": "Paris"}')))
        conversation.append(Turn.tool_result(ToolResponse("call_0", "second")))

        assert conversation.pending_tool_calls() == []
        assert [t.content for t in conversation][-1] == "second"

    def test_role_payload_mismatch(self):
        conversation = ConversationState()

        with pytest.raises(ConversationError):
            conversation.append(Turn(Role.USER, "hi", tool_call=intent()))
        with pytest.raises(ConversationError):
            conversation.append(Turn(Role.TOOL_RESULT, "no payload"))
        with pytest.raises(ConversationError):
            conversation.append(Turn(Role.ASSISTANT, "x", tool_response=ToolResponse("call_1", "x")))


class TestToolCallIntent:
    """Tests for ToolCallIntent argument handling."""

    def test_missing_id_is_generated(self):
        call = ToolCallIntent(id="", tool_name="get_weather", arguments={})

        assert call.id.startswith("call_")
        assert len(call.id) == len("call_") + 12

    def test_parsed_arguments_from_json(self):
        assert intent().parsed_arguments() == {"location": "London"}

    def test_parsed_arguments_from_dict(self):
        call = ToolCallIntent(id="c", tool_name="t", arguments={"a": 1})

        assert call.parsed_arguments() == {"a": 1}
        assert call.arguments_json() == '{"a": 1}'

    @pytest.mark.parametrize("raw", ["", "   "])
    def test_empty_arguments_mean_no_arguments(self, raw):
        assert intent(arguments=raw).parsed_arguments() == {}
        assert intent(arguments="").arguments_json() == "{}"

    def test_malformed_json(self):
        with pytest.raises(ArgumentParseError, match="get_weather"):
            intent(arguments='{"location": ').parsed_arguments()

    def test_non_object_json(self):
        with pytest.raises(ArgumentParseError, match="expected a JSON object"):
            intent(arguments='["London"]').parsed_arguments()
