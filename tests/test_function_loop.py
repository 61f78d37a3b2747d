"""
Tests for the function-call loop driving the programmer conversation.

Run with:
$ pytest -q
"""

from typing import (
    List,
    Tuple,
)

import pytest
from conftest import (
    FakeModelClient,
    call_reply,
    text_reply,
)

from tandem.agent.conversation import Conversation
from tandem.agent.function_loop import run_to_completion
from tandem.core.errors import (
    LoopLimitError,
    ModelErrorKind,
    RemoteModelError,
    ToolNotFoundError,
)
from tandem.core.schema import (
    FunctionCall,
    ModelReply,
    Outcome,
    Part,
)
from tandem.tools import ToolRegistry

Calls = List[Tuple[str, ...]]


def _recording_registry(calls: Calls) -> ToolRegistry:
    registry = ToolRegistry()

    @registry.register("step_a")
    def step_a(value: str) -> str:
        calls.append(("step_a", value))
        return f"a:{value}"

    @registry.register("step_b")
    def step_b(value: str) -> str:
        calls.append(("step_b", value))
        return f"b:{value}"

    @registry.register("broken")
    def broken() -> str:
        calls.append(("broken",))
        raise OSError("disk on fire")

    return registry


def _assert_no_unanswered_call(conversation: Conversation) -> None:
    """Every recorded model call is followed by a turn answering it."""
    history = conversation.history
    for index, turn in enumerate(history):
        calls = [p.function_call for p in turn.parts if p.function_call is not None]
        if not calls:
            continue
        assert index + 1 < len(history), f"history ends with an unanswered call {calls[0]}"
        answers = [p.function_response for p in history[index + 1].parts if p.function_response]
        assert [a.name for a in answers] == [c.name for c in calls]


@pytest.mark.asyncio
async def test_text_reply_ends_loop_immediately() -> None:
    """A reply without function calls is the final answer."""
    client = FakeModelClient([text_reply("Just an answer.")])
    conversation = Conversation(client)

    outcome = await run_to_completion(conversation, [Part(text="hi")], ToolRegistry())

    assert outcome.text == "Just an answer."
    assert outcome.tool_results == []
    assert outcome.rounds == 1
    assert len(conversation.history) == 2


@pytest.mark.asyncio
async def test_sequential_calls_feed_results_back() -> None:
    """Each tool result is sent back under the tool's name before the next round."""
    calls: Calls = []
    client = FakeModelClient(
        [
            call_reply("step_a", value="1"),
            call_reply("step_b", value="2"),
            text_reply("All done."),
        ]
    )
    conversation = Conversation(client)

    outcome = await run_to_completion(
        conversation, [Part(text="go")], _recording_registry(calls)
    )

    assert calls == [("step_a", "1"), ("step_b", "2")]
    assert outcome.text == "All done."
    assert [r.name for r in outcome.tool_results] == ["step_a", "step_b"]
    assert outcome.rounds == 3

    first_feedback = client.sent[1][0].function_response
    assert first_feedback.name == "step_a"
    assert first_feedback.response == {"result": "a:1"}
    second_feedback = client.sent[2][0].function_response
    assert second_feedback.name == "step_b"
    assert second_feedback.response == {"result": "b:2"}

    # user/model pair per round trip
    assert len(conversation.history) == 6
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_feedback_disabled_stops_after_first_tool() -> None:
    """One-shot mode runs the tool and returns without another round trip."""
    calls: Calls = []
    client = FakeModelClient([call_reply("step_a", text="Creating it.", value="x")])
    conversation = Conversation(client)

    outcome = await run_to_completion(
        conversation, [Part(text="go")], _recording_registry(calls), feedback_enabled=False
    )

    assert calls == [("step_a", "x")]
    assert outcome.text == "Creating it."
    assert outcome.rounds == 1
    assert len(client.sent) == 1
    last = conversation.history[-1]
    assert last.role == "user"
    assert last.parts[0].function_response.response == {"result": "a:x"}
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_unregistered_tool_is_fatal_and_nothing_runs() -> None:
    """An unknown tool aborts the loop without invoking anything."""
    calls: Calls = []
    client = FakeModelClient([call_reply("delete_everything")])
    conversation = Conversation(client)

    with pytest.raises(ToolNotFoundError) as excinfo:
        await run_to_completion(conversation, [Part(text="go")], _recording_registry(calls))

    assert excinfo.value.name == "delete_everything"
    assert calls == []
    assert "error" in conversation.history[-1].parts[0].function_response.response
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_tool_fault_is_fed_back_as_error_payload() -> None:
    """Exceptions raised by a tool reach the model as an error payload."""
    calls: Calls = []
    client = FakeModelClient([call_reply("broken"), text_reply("Sorry, that failed.")])
    conversation = Conversation(client)

    outcome = await run_to_completion(conversation, [Part(text="go")], _recording_registry(calls))

    assert outcome.text == "Sorry, that failed."
    assert outcome.tool_results[0].outcome is Outcome.ERROR
    feedback = client.sent[1][0].function_response.response
    assert "disk on fire" in feedback["error"]


@pytest.mark.asyncio
async def test_round_bound_raises_loop_limit() -> None:
    """The loop stops after the configured number of round trips."""
    calls: Calls = []
    client = FakeModelClient(
        [call_reply("step_a", value=str(i)) for i in range(5)] + [text_reply("never")]
    )
    conversation = Conversation(client)

    with pytest.raises(LoopLimitError):
        await run_to_completion(
            conversation, [Part(text="go")], _recording_registry(calls), max_rounds=3
        )

    assert len(client.sent) == 3
    assert len(calls) == 3
    # the last tool ran, so its real result answers the call
    assert conversation.history[-1].parts[0].function_response.response == {"result": "a:2"}
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_repeated_identical_call_is_a_cycle() -> None:
    """The same call requested three times in a row is refused."""
    calls: Calls = []
    client = FakeModelClient([call_reply("step_a", value="same") for _ in range(5)])
    conversation = Conversation(client)

    with pytest.raises(LoopLimitError):
        await run_to_completion(
            conversation,
            [Part(text="go")],
            _recording_registry(calls),
            max_repeated_calls=3,
        )

    # the third identical request is refused before running
    assert calls == [("step_a", "same"), ("step_a", "same")]
    last = conversation.history[-1]
    assert last.parts[-1].function_call is None
    assert "same arguments" in last.parts[0].function_response.response["error"]
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_model_failure_mid_loop_answers_the_pending_call() -> None:
    """A failed feedback round trip still leaves the executed call answered."""
    calls: Calls = []
    client = FakeModelClient(
        [
            call_reply("step_a", value="1"),
            RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, "connection reset"),
        ]
    )
    conversation = Conversation(client)

    with pytest.raises(RemoteModelError):
        await run_to_completion(conversation, [Part(text="go")], _recording_registry(calls))

    assert calls == [("step_a", "1")]
    assert conversation.history[-1].parts[0].function_response.response == {"result": "a:1"}
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_conversation_is_reusable_after_an_aborted_loop() -> None:
    """The next request after a cycle starts from a well-formed history."""
    calls: Calls = []
    client = FakeModelClient(
        [call_reply("step_a", value="same") for _ in range(3)] + [text_reply("Fresh start.")]
    )
    conversation = Conversation(client)
    registry = _recording_registry(calls)

    with pytest.raises(LoopLimitError):
        await run_to_completion(conversation, [Part(text="loop")], registry)
    outcome = await run_to_completion(conversation, [Part(text="again")], registry)

    assert outcome.text == "Fresh start."
    seen = client.histories[-1]
    assert seen[-1].role == "user"
    assert seen[-1].parts[0].function_response is not None
    _assert_no_unanswered_call(conversation)


@pytest.mark.asyncio
async def test_only_first_of_several_calls_is_acted_on() -> None:
    """Extra calls in one reply are neither run nor recorded."""
    calls: Calls = []
    client = FakeModelClient(
        [
            ModelReply(
                function_calls=[
                    FunctionCall(name="step_a", args={"value": "1"}),
                    FunctionCall(name="step_b", args={"value": "2"}),
                ]
            ),
            text_reply("ok"),
        ]
    )
    conversation = Conversation(client)

    outcome = await run_to_completion(conversation, [Part(text="go")], _recording_registry(calls))

    assert calls == [("step_a", "1")]
    assert [r.name for r in outcome.tool_results] == ["step_a"]
    model_turn = conversation.history[1]
    assert [p.function_call.name for p in model_turn.parts if p.function_call] == ["step_a"]
    _assert_no_unanswered_call(conversation)
