"""BotMateApp wiring end to end with an injected gateway and uploader."""

from __future__ import annotations

import pytest

from botmate.app import BotMateApp
from botmate.config import AppConfig

from conftest import ScriptedGateway, StubUploader


def _config(tmp_path, **overrides) -> AppConfig:
    data = {
        "account": "acme",
        "actor": "cli",
        "storage": {"db_path": str(tmp_path / "app.db")},
        "chat": {"model": "chat-model", "provider_name": "TestProvider"},
        "bots": {"support": {"system_prompt": "Be kind."}},
    }
    data.update(overrides)
    return AppConfig(**data)


@pytest.mark.asyncio
async def test_app_runs_a_turn_with_configured_bot(tmp_path) -> None:
    gateway = ScriptedGateway(completion=["Support Chat"])

    async with BotMateApp(_config(tmp_path), gateway=gateway, uploader=StubUploader()) as app:
        bot = await app.bot_resolver.get_bot("support", create_if_missing=True)
        message = await app.orchestrator.submit_new_turn(bot.id, "Help me")
        sessions = await app.store.list_sessions(bot.id, order_by="updated_at")

    assert bot.system_prompt == "Be kind."
    assert bot.account_id == "acme"
    assert message.provider_name == "TestProvider"
    assert message.created_by == "cli"
    assert [s.title for s in sessions] == ["Support Chat"]
    context, settings = gateway.stream_calls[0]
    assert context.system_prompt == "Be kind."
    assert settings.model == "chat-model"


@pytest.mark.asyncio
async def test_title_derivation_can_be_disabled(tmp_path) -> None:
    gateway = ScriptedGateway()
    config = _config(tmp_path, title={"enabled": False})

    async with BotMateApp(config, gateway=gateway, uploader=StubUploader()) as app:
        bot = await app.bot_resolver.get_bot("support", create_if_missing=True)
        message = await app.orchestrator.submit_new_turn(bot.id, "Help me")

    assert gateway.complete_calls == []
    assert message.session.title == "New Session"


def test_missing_anthropic_section_without_gateway(tmp_path) -> None:
    with pytest.raises(ValueError):
        BotMateApp(_config(tmp_path), uploader=StubUploader())
