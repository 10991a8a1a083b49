"""
Group chat orchestration tests.

The selection and termination prompts are answered by the `strategy_llm`
fixture; agent turns by a scripted FakeAnthropic client.

Run:
    cd backend
    python -m pytest tests/test_group_chat.py -v
"""

from types import SimpleNamespace

import pytest

from agents.agent_factory import (
    API_CALLER_AGENT,
    COORDINATOR_AGENT,
    EMAIL_WRITER_AGENT,
    RAG_AGENT,
    WORKER_AGENTS,
    create_agent,
)
from agents.agent_loop import AgentToolComplete, AgentToolStart, CancellationToken
from agents.group_chat import (
    AgentGroupChat,
    GroupChatComplete,
    ParticipantMessage,
    ParticipantSelected,
    ParticipantToolEvent,
    SelectionStrategy,
    TerminationStrategy,
    format_history,
    parse_agent_name,
    parse_termination,
    truncate_history,
)
from exceptions import AgentSelectionError, OrchestrationError
from schemas.chat import GroupChatMessage
from tests.helpers import FakeAnthropic, by_system_prompt, text_response, tool_use_response

NAMES = [RAG_AGENT, API_CALLER_AGENT, EMAIL_WRITER_AGENT, COORDINATOR_AGENT]

COORDINATOR_MARKER = f"You are the {COORDINATOR_AGENT}"
EMAIL_MARKER = "Send an email based on the user's query"


def _msg(content, role="assistant", name=None):
    return GroupChatMessage(role=role, content=content, name=name)


def _participants():
    return [SimpleNamespace(name=name) for name in NAMES]


async def _collect(generator):
    return [event async for event in generator]


def _build_chat(client, maximum_iterations=5, automatic_reset=False):
    agents = [
        create_agent(EMAIL_WRITER_AGENT, "Send an email based on the user's query.", ["email"], client),
        create_agent(COORDINATOR_AGENT, f"You are the {COORDINATOR_AGENT}. Route the request.", [], client),
    ]
    selection = SelectionStrategy(initial_agent=agents[1])
    termination = TerminationStrategy(
        agents=WORKER_AGENTS,
        maximum_iterations=maximum_iterations,
        automatic_reset=automatic_reset,
    )
    return AgentGroupChat(agents, selection, termination)


# ═══════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═══════════════════════════════════════════════════════════════════════════


class TestHistoryHelpers:

    def test_truncate_keeps_last_messages(self):
        history = [_msg(str(i)) for i in range(6)]
        assert [m.content for m in truncate_history(history, 3)] == ["3", "4", "5"]

    def test_truncate_with_window_larger_than_history(self):
        history = [_msg("a"), _msg("b")]
        assert truncate_history(history, 10) == history

    def test_truncate_zero_window_is_empty(self):
        assert truncate_history([_msg("a")], 0) == []

    def test_format_history_labels_speaker(self):
        text = format_history([
            _msg("hello", role="user"),
            _msg("routing", name=COORDINATOR_AGENT),
            _msg("plain reply"),
        ])
        assert text.splitlines() == [
            "user: hello",
            f"{COORDINATOR_AGENT}: routing",
            "assistant: plain reply",
        ]


class TestParseAgentName:

    @pytest.mark.parametrize("reply", [
        "RAGAgent",
        "  ragagent\n",
        '"RAGAgent"',
        "RAGAgent.",
        "“RAGAgent”",
        "The next participant is RAGAgent",
    ])
    def test_accepts_name_variants(self, reply):
        assert parse_agent_name(reply, NAMES) == RAG_AGENT

    @pytest.mark.parametrize("reply", ["", "   ", "Nobody", "RAGAgent or EmailWriterAgent"])
    def test_rejects_unknown_or_ambiguous(self, reply):
        assert parse_agent_name(reply, NAMES) is None


class TestParseTermination:

    @pytest.mark.parametrize("reply", ["Yes", "yes", " YES.\n", "'Yes'"])
    def test_yes(self, reply):
        assert parse_termination(reply) is True

    @pytest.mark.parametrize("reply", ["No", "", "Yes, but continue", "Maybe"])
    def test_everything_else_is_no(self, reply):
        assert parse_termination(reply) is False


# ═══════════════════════════════════════════════════════════════════════════
# Selection strategy
# ═══════════════════════════════════════════════════════════════════════════


class TestSelectionStrategy:

    async def test_initial_agent_goes_first_without_prompt(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1])

        chosen = await strategy.next(agents, [_msg("hi", role="user")])

        assert chosen.name == COORDINATOR_AGENT
        assert strategy_llm.calls == []

    async def test_later_turns_use_prompt(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1])
        strategy_llm.selections.append("EmailWriterAgent")

        await strategy.next(agents, [])
        chosen = await strategy.next(agents, [_msg("send a mail", role="user")])

        assert chosen.name == EMAIL_WRITER_AGENT
        assert strategy_llm.kinds() == ["selection"]

    async def test_prompt_values(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1], history_window=2)
        strategy_llm.selections.append(RAG_AGENT)
        history = [_msg("one", role="user"), _msg("two", name=COORDINATOR_AGENT), _msg("three", role="user")]

        strategy.has_selected = True
        await strategy.next(agents, history)

        values = strategy_llm.calls[0]["values"]
        assert "  - RAGAgent" in values["participants"]
        assert values["fallback_agent"] == COORDINATOR_AGENT
        assert "one" not in values["lastmessage"]
        assert values["lastmessage"].endswith("user: three")

    async def test_unparseable_reply_falls_back_to_initial_agent(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1])
        strategy.has_selected = True
        strategy_llm.selections.append("I am not sure")

        chosen = await strategy.next(agents, [])

        assert chosen.name == COORDINATOR_AGENT

    async def test_failed_prompt_falls_back_to_initial_agent(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1])
        strategy.has_selected = True
        strategy_llm.selections.append(RuntimeError("rate limited"))

        chosen = await strategy.next(agents, [])

        assert chosen.name == COORDINATOR_AGENT

    async def test_unparseable_reply_without_fallback_raises(self, strategy_llm):
        strategy = SelectionStrategy(initial_agent=None, use_initial_agent_as_fallback=False)
        strategy_llm.selections.append("SomebodyElse")

        with pytest.raises(AgentSelectionError) as exc_info:
            await strategy.next(_participants(), [])

        assert exc_info.value.raw_result == "SomebodyElse"
        assert strategy_llm.calls[0]["values"]["fallback_agent"] == COORDINATOR_AGENT

    async def test_reset_restores_initial_agent(self, strategy_llm):
        agents = _participants()
        strategy = SelectionStrategy(initial_agent=agents[-1])
        strategy_llm.selections.append(RAG_AGENT)

        await strategy.next(agents, [])
        assert (await strategy.next(agents, [])).name == RAG_AGENT

        strategy.reset()
        assert (await strategy.next(agents, [])).name == COORDINATOR_AGENT


# ═══════════════════════════════════════════════════════════════════════════
# Termination strategy
# ═══════════════════════════════════════════════════════════════════════════


class TestTerminationStrategy:

    async def test_unlisted_agent_never_terminates(self, strategy_llm):
        strategy = TerminationStrategy(agents=WORKER_AGENTS)

        assert await strategy.should_terminate(COORDINATOR_AGENT, [_msg("done")]) is False
        assert strategy_llm.calls == []

    async def test_yes_terminates(self, strategy_llm):
        strategy = TerminationStrategy(agents=WORKER_AGENTS)
        strategy_llm.terminations.append("Yes")

        assert await strategy.should_terminate(RAG_AGENT, [_msg("Here is the answer.")]) is True

    async def test_no_continues(self, strategy_llm):
        strategy = TerminationStrategy(agents=WORKER_AGENTS)
        strategy_llm.terminations.append("No")

        assert await strategy.should_terminate(RAG_AGENT, [_msg("Searching now...")]) is False

    async def test_failed_prompt_continues(self, strategy_llm):
        strategy = TerminationStrategy(agents=WORKER_AGENTS)
        strategy_llm.terminations.append(RuntimeError("timeout"))

        assert await strategy.should_terminate(RAG_AGENT, [_msg("done")]) is False

    async def test_no_agent_list_checks_everyone(self, strategy_llm):
        strategy = TerminationStrategy(agents=None)

        assert await strategy.should_terminate(COORDINATOR_AGENT, [_msg("done")]) is True
        assert strategy_llm.kinds() == ["termination"]

    async def test_history_window(self, strategy_llm):
        strategy = TerminationStrategy(agents=None, history_window=1)
        await strategy.should_terminate(RAG_AGENT, [_msg("first"), _msg("last", name=RAG_AGENT)])

        assert strategy_llm.calls[0]["values"]["lastmessage"] == f"{RAG_AGENT}: last"


# ═══════════════════════════════════════════════════════════════════════════
# AgentGroupChat
# ═══════════════════════════════════════════════════════════════════════════


class TestAgentGroupChat:

    async def test_routes_to_worker_and_terminates(self, strategy_llm):
        client = FakeAnthropic(by_system_prompt({
            COORDINATOR_MARKER: [text_response("Routing this to the email writer.")],
            EMAIL_MARKER: [
                tool_use_response("send_email", {"to": "bob@example.com", "body": "Lunch at noon?"}),
                text_response("Here is the preview. Shall I send it?"),
            ],
        }))
        strategy_llm.selections.append(EMAIL_WRITER_AGENT)
        strategy_llm.terminations.append("Yes")
        chat = _build_chat(client)
        history = [_msg("Email bob about lunch", role="user")]

        events = await _collect(chat.invoke(history, None, 1))

        selected = [e for e in events if isinstance(e, ParticipantSelected)]
        assert [(e.agent_name, e.iteration) for e in selected] == [
            (COORDINATOR_AGENT, 1),
            (EMAIL_WRITER_AGENT, 2),
        ]

        tool_events = [e for e in events if isinstance(e, ParticipantToolEvent)]
        assert [type(e.event) for e in tool_events] == [AgentToolStart, AgentToolComplete]
        assert all(e.agent_name == EMAIL_WRITER_AGENT for e in tool_events)
        assert tool_events[1].event.result_text.startswith("Preview Email:\nTo: bob@example.com")

        messages = [e for e in events if isinstance(e, ParticipantMessage)]
        assert [m.agent_name for m in messages] == [COORDINATOR_AGENT, EMAIL_WRITER_AGENT]

        complete = events[-1]
        assert isinstance(complete, GroupChatComplete)
        assert complete.reason == "terminated"
        assert [r.name for r in complete.responses] == [COORDINATOR_AGENT, EMAIL_WRITER_AGENT]
        assert chat.is_complete is True

        # Tool calls and traces of every turn are carried to the caller
        assert messages[1].tool_calls == complete.tool_calls
        assert [(c["agent_name"], c["tool_name"]) for c in complete.tool_calls] == [
            (EMAIL_WRITER_AGENT, "send_email"),
        ]
        assert complete.tool_calls[0]["input"] == {"to": "bob@example.com", "body": "Lunch at noon?"}
        assert complete.tool_calls[0]["output"].startswith("Preview Email:")
        assert complete.payloads == []
        assert [t.agent_name for t in complete.traces] == [COORDINATOR_AGENT, EMAIL_WRITER_AGENT]
        assert [t.outcome for t in complete.traces] == ["complete", "complete"]

        # Only worker turns are checked for termination
        assert strategy_llm.kinds() == ["selection", "termination"]

        # Replies are appended to the shared history
        assert [m.name for m in history] == [None, COORDINATOR_AGENT, EMAIL_WRITER_AGENT]

    async def test_other_agents_replies_are_user_turns(self, strategy_llm):
        client = FakeAnthropic(by_system_prompt({
            COORDINATOR_MARKER: [text_response("Routing this to the email writer.")],
            EMAIL_MARKER: [text_response("Who should receive it?")],
        }))
        strategy_llm.selections.append(EMAIL_WRITER_AGENT)
        chat = _build_chat(client)

        await _collect(chat.invoke([_msg("Send an email", role="user")], None, 1))

        email_call = client.calls[1]
        assert email_call["messages"] == [{
            "role": "user",
            "content": f"Send an email\n\n[{COORDINATOR_AGENT}]: Routing this to the email writer.",
        }]
        assert [t["name"] for t in email_call["tools"]] == ["send_email"]
        assert "tools" not in client.calls[0]

    async def test_stops_at_maximum_iterations(self, strategy_llm):
        client = FakeAnthropic(lambda kwargs: text_response("Could you clarify?"))
        chat = _build_chat(client, maximum_iterations=2)

        events = await _collect(chat.invoke([_msg("hmm", role="user")], None, 1))

        complete = events[-1]
        assert complete.reason == "max_iterations"
        assert len(complete.responses) == 2
        # Unparseable selection falls back to the coordinator, which is never checked for termination
        assert strategy_llm.kinds() == ["selection"]
        assert chat.is_complete is False

    async def test_agent_error_raises(self, strategy_llm):
        client = FakeAnthropic([RuntimeError("upstream exploded")])
        chat = _build_chat(client)

        with pytest.raises(OrchestrationError) as exc_info:
            await _collect(chat.invoke([_msg("hi", role="user")], None, 1))

        assert COORDINATOR_AGENT in exc_info.value.message

    async def test_cancelled_before_start(self, strategy_llm):
        client = FakeAnthropic([])
        chat = _build_chat(client)
        token = CancellationToken()
        token.cancel()

        events = await _collect(chat.invoke([_msg("hi", role="user")], None, 1, cancellation_token=token))

        assert len(events) == 1
        assert events[0].reason == "cancelled"
        assert client.calls == []

    async def test_empty_reply_is_not_recorded(self, strategy_llm):
        client = FakeAnthropic(lambda kwargs: text_response(""))
        chat = _build_chat(client, maximum_iterations=1)
        history = [_msg("hi", role="user")]

        events = await _collect(chat.invoke(history, None, 1))

        assert not any(isinstance(e, ParticipantMessage) for e in events)
        assert events[-1].responses == []
        assert len(history) == 1

    async def test_completed_chat_cannot_be_reinvoked(self, strategy_llm):
        client = FakeAnthropic(by_system_prompt({
            COORDINATOR_MARKER: [text_response("Routing.")],
            EMAIL_MARKER: [text_response("Preview ready.")],
        }))
        strategy_llm.selections.append(EMAIL_WRITER_AGENT)
        chat = _build_chat(client)
        await _collect(chat.invoke([_msg("mail", role="user")], None, 1))

        with pytest.raises(OrchestrationError):
            await _collect(chat.invoke([_msg("again", role="user")], None, 1))

        chat.reset()
        client._responder = lambda kwargs: text_response("Routing again.")
        events = await _collect(chat.invoke([_msg("again", role="user")], None, 1))
        assert isinstance(events[-1], GroupChatComplete)

    async def test_automatic_reset_allows_reinvoke(self, strategy_llm):
        client = FakeAnthropic(lambda kwargs: text_response("Done, here it is."))
        strategy_llm.default_selection = EMAIL_WRITER_AGENT
        chat = _build_chat(client, automatic_reset=True)

        first = await _collect(chat.invoke([_msg("mail", role="user")], None, 1))
        second = await _collect(chat.invoke([_msg("mail again", role="user")], None, 1))

        assert first[-1].reason == "terminated"
        assert second[-1].reason == "terminated"
        # The coordinator opens every run
        assert second[0].agent_name == COORDINATOR_AGENT

    def test_requires_agents(self):
        with pytest.raises(ValueError):
            AgentGroupChat([], SelectionStrategy(), TerminationStrategy())
