"""Tests for token estimation, history trimming, and chat message layout."""

from world_engine.history import ChatMessage, build_chat_messages, estimate_tokens, trim_history
from world_engine.prompts import DepthInjection, PromptAssembly


def msg(role, content):
    return ChatMessage(role=role, content=content)


def contents(messages):
    return [m.content for m in messages]


# ── estimate_tokens ──────────────────────────────────────


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


# ── trim_history ─────────────────────────────────────────


def test_trim_keeps_newest():
    history = [msg("user", "a" * 40), msg("assistant", "b" * 40), msg("user", "c" * 40)]
    assert contents(trim_history(history, 20)) == ["b" * 40, "c" * 40]


def test_trim_always_keeps_one():
    history = [msg("user", "x" * 1000)]
    assert len(trim_history(history, 1)) == 1


def test_trim_without_budget_keeps_all():
    history = [msg("user", "a"), msg("assistant", "b")]
    assert trim_history(history, None) == history


def test_trim_empty():
    assert trim_history([], 10) == []


# ── build_chat_messages ──────────────────────────────────


class TestBuildChatMessages:
    def test_layout(self):
        assembly = PromptAssembly(system_prompt="SYS", post_history=["POST"])
        history = [msg("user", "hi"), msg("assistant", "hello")]
        messages = build_chat_messages(assembly, history, "how are you?")
        assert [(m.role, m.content) for m in messages] == [
            ("system", "SYS"),
            ("user", "hi"),
            ("assistant", "hello"),
            ("user", "how are you?"),
            ("system", "POST"),
        ]

    def test_depth_zero_goes_last_in_body(self):
        assembly = PromptAssembly(
            system_prompt="SYS", depth_injections=[DepthInjection(content="D0", depth=0)]
        )
        messages = build_chat_messages(assembly, [msg("user", "hi")], "next")
        assert contents(messages) == ["SYS", "hi", "next", "D0"]

    def test_depth_counts_from_end(self):
        assembly = PromptAssembly(
            system_prompt="SYS",
            depth_injections=[
                DepthInjection(content="D1", depth=1),
                DepthInjection(content="D2", depth=2),
            ],
        )
        history = [msg("user", "a"), msg("assistant", "b")]
        messages = build_chat_messages(assembly, history, "c")
        assert contents(messages) == ["SYS", "a", "D2", "b", "D1", "c"]

    def test_depth_beyond_history_goes_first(self):
        assembly = PromptAssembly(
            system_prompt="SYS", depth_injections=[DepthInjection(content="DEEP", depth=50)]
        )
        messages = build_chat_messages(assembly, [], "hi")
        assert contents(messages) == ["SYS", "DEEP", "hi"]

    def test_no_user_message(self):
        assembly = PromptAssembly(system_prompt="SYS")
        messages = build_chat_messages(assembly, [msg("user", "hi")])
        assert contents(messages) == ["SYS", "hi"]

    def test_history_trimmed_by_budget(self):
        assembly = PromptAssembly(system_prompt="S" * 40)  # 10 tokens
        history = [msg("user", "a" * 40), msg("assistant", "b" * 40)]
        messages = build_chat_messages(assembly, history, max_tokens=20)
        assert contents(messages) == ["S" * 40, "b" * 40]
