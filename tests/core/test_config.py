from __future__ import annotations

import pytest

from promptloop.core import HeuristicTokenCounter, RunnerConfig, RunnerConfigurationError
from promptloop.llms import Message, ToolCall


def test_default_config_is_valid():
    config = RunnerConfig()

    assert config.validate() is config
    assert config.max_turns == 10
    assert config.max_tool_output_bytes == 200_000
    assert config.max_tool_calls_per_turn is None
    assert config.summary_mode == "safe"


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_turns": 0},
        {"max_turns": True},
        {"max_turns": 2.0},
        {"max_tool_output_bytes": 63},
        {"max_tool_calls_per_turn": 0},
        {"max_tool_argument_bytes": -5},
        {"context_window": 0},
        {"reserved_output_tokens": -1},
        {"context_window": 100, "reserved_output_tokens": 100},
        {"summary_mode": "verbose"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(RunnerConfigurationError):
        RunnerConfig(**overrides).validate()


def test_minimum_output_budget_is_accepted():
    assert RunnerConfig(max_tool_output_bytes=64).validate().max_tool_output_bytes == 64


def test_from_env_reads_promptloop_variables(monkeypatch):
    monkeypatch.setenv("PROMPTLOOP_MAX_TURNS", "4")
    monkeypatch.setenv("PROMPTLOOP_MAX_TOOL_OUTPUT_BYTES", "4096")
    monkeypatch.setenv("PROMPTLOOP_MAX_TOOL_CALLS_PER_TURN", "2")
    monkeypatch.setenv("PROMPTLOOP_FIX_EMPTY_FINAL", "off")
    monkeypatch.setenv("PROMPTLOOP_CONTEXT_WINDOW", "8000")
    monkeypatch.setenv("PROMPTLOOP_RESERVED_OUTPUT_TOKENS", "1000")
    monkeypatch.setenv("PROMPTLOOP_SUMMARY_MODE", "debug")
    monkeypatch.setenv("PROMPTLOOP_TOOL_NAME_ALIASES", "0")

    config = RunnerConfig.from_env()

    assert config.max_turns == 4
    assert config.max_tool_output_bytes == 4096
    assert config.max_tool_calls_per_turn == 2
    assert config.fix_empty_final is False
    assert config.fix_empty_final_disable_tools is True
    assert config.context_window == 8000
    assert config.reserved_output_tokens == 1000
    assert config.summary_mode == "debug"
    assert config.tool_name_aliases is False


def test_from_env_validates(monkeypatch):
    monkeypatch.setenv("PROMPTLOOP_MAX_TURNS", "0")

    with pytest.raises(RunnerConfigurationError):
        RunnerConfig.from_env()


@pytest.mark.parametrize(
    "name", ["PROMPTLOOP_MAX_TURNS", "PROMPTLOOP_MAX_TOOL_CALLS_PER_TURN", "PROMPTLOOP_CONTEXT_WINDOW"]
)
def test_from_env_names_non_integer_variables(monkeypatch, name):
    monkeypatch.setenv(name, "ten")

    with pytest.raises(RunnerConfigurationError, match=name):
        RunnerConfig.from_env()


def test_from_env_treats_blank_limits_as_unset(monkeypatch):
    monkeypatch.setenv("PROMPTLOOP_MAX_TOOL_CALLS_PER_TURN", " ")
    monkeypatch.setenv("PROMPTLOOP_MAX_TURNS", "")

    config = RunnerConfig.from_env()

    assert config.max_tool_calls_per_turn is None
    assert config.max_turns == 10


def test_heuristic_token_counter():
    counter = HeuristicTokenCounter()
    messages = [
        Message(role="user", content="abcdefgh"),
        Message(role="assistant", content="", tool_calls=[ToolCall(id="c1", name="echo", arguments={"a": 1})]),
        Message(role="user", content=[{"type": "text", "text": "abcd"}]),
    ]

    # 8 chars -> 2, "echo" + '{"a": 1}' = 12 chars -> 3, 4 chars -> 1; plus 4 overhead each
    assert counter.count_messages(messages) == 2 + 3 + 1 + 12
    assert counter.count_messages([]) == 0
    assert counter.count_tools(None) == 0
    assert counter.count_tools([]) == 0
    assert counter.count_tools([{"type": "function", "function": {"name": "x", "parameters": {}}}]) > 0
