"""Title derivation prompt, cleanup and empty-result handling."""

from __future__ import annotations

import pytest

from botmate.ai.title import TitleDeriver, clean_title
from botmate.storage.models import Message, Session

from conftest import TITLE_SETTINGS, ScriptedGateway


def _session() -> Session:
    session = Session(bot_id=1, id=5)
    session.messages = [
        Message(user_message="Plan a trip to Kyoto", agent_response="Sure, when?"),
        Message(user_message="In April", agent_response="Cherry blossom season!"),
    ]
    return session


def test_clean_title_collapses_and_truncates() -> None:
    assert clean_title('  "Kyoto\n  Trip"  ') == "Kyoto Trip"
    assert clean_title("Title: Spring in Japan") == "Spring in Japan"
    assert clean_title("x" * 100, max_length=10) == "x" * 10
    assert clean_title(" \n\t ") == ""


def test_prompt_embeds_every_pair_in_order() -> None:
    prompt = TitleDeriver(ScriptedGateway(), TITLE_SETTINGS, max_length=50).build_prompt(_session())

    first = prompt.index("User Message: Plan a trip to Kyoto")
    second = prompt.index("User Message: In April")
    assert first < prompt.index("Agent Response: Sure, when?") < second
    assert "Title not exceed 50 characters" in prompt


@pytest.mark.asyncio
async def test_derive_concatenates_items_with_title_settings() -> None:
    gateway = ScriptedGateway(completion=["Kyoto ", "Spring\n", "Trip"])

    title = await TitleDeriver(gateway, TITLE_SETTINGS).derive(_session())

    assert title == "Kyoto Spring Trip"
    context, settings = gateway.complete_calls[0]
    assert settings == TITLE_SETTINGS
    assert len(context.turns) == 1
    assert context.system_prompt == ""


@pytest.mark.asyncio
async def test_derive_returns_none_for_blank_answer() -> None:
    gateway = ScriptedGateway(completion=["  ", "\n"])
    assert await TitleDeriver(gateway, TITLE_SETTINGS).derive(_session()) is None
