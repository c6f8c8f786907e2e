"""Tests for the CLI turn handling."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from coverage_assistant.errors import ModelTimeoutError
from coverage_assistant.main import SORRY, take_turn
from coverage_assistant.session import SessionState


def _history() -> list[dict[str, str]]:
    return [{"role": "user", "content": "I have back pain"}]


class TestTakeTurn:
    def test_returns_result(self):
        agent = MagicMock()
        history = _history()
        assert take_turn(agent, history, SessionState()) is agent.run_turn.return_value
        assert len(history) == 1

    @pytest.mark.parametrize("exc", [ModelTimeoutError(60, 1), RuntimeError("boom"), KeyError("x")])
    def test_failure_drops_message_and_apologises(self, exc, capsys):
        agent = MagicMock()
        agent.run_turn.side_effect = exc
        history = _history()
        assert take_turn(agent, history, SessionState()) is None
        assert history == []
        assert SORRY in capsys.readouterr().out

    def test_keyboard_interrupt_propagates(self):
        agent = MagicMock()
        agent.run_turn.side_effect = KeyboardInterrupt
        with pytest.raises(KeyboardInterrupt):
            take_turn(agent, _history(), SessionState())
