import pytest

from crypto_mail_agent.core import app as app_module
from crypto_mail_agent.core.app import Application
from crypto_mail_agent.errors import ConfigurationError
from crypto_mail_agent.llm.base import LLMResponse
from crypto_mail_agent.llm.router import LLMRouter
from crypto_mail_agent.mailer import Mailer
from crypto_mail_agent.storage.database import Database
from crypto_mail_agent.wallet.provider import Web3ChainProvider

from conftest import make_config, tool_call


async def test_application_is_wired_from_config(application, config):
    assert application.dispatcher.max_rounds == config.llm.max_rounds
    assert application.dispatcher.timeout_seconds == config.llm.timeout_seconds
    assert application.engine.chain.chain_id == config.chain.chain_id
    assert application.registry.engine is application.engine


async def test_handle_normalises_requester(application, llm):
    llm.script = [tool_call("create_wallet"), LLMResponse(content="done")]

    await application.handle("  Alice@Test.com ", "create wallet")

    assert await application.engine.get_primary_wallet("alice@test.com") is not None
    assert "alice@test.com" in llm.calls[0][1].content


async def test_process_email_without_mail_configured(config, db, chain, llm):
    application = Application(config, db, chain, llm, mailer=Mailer(make_config(email={}).email))
    llm.script = [LLMResponse(content="Hello!")]

    result = await application.process_email("alice@test.com", "Hi", "hello")

    assert result == {
        "from": "alice@test.com",
        "subject": "Hi",
        "response": "Hello!",
        "replySubject": "Re: Hi",
        "sent": False,
    }


async def test_load_refuses_incomplete_config():
    with pytest.raises(ConfigurationError):
        await Application.load(make_config(custody={"encryption_key": ""}))


async def test_load_rejects_unsupported_chain_before_opening_database(tmp_path):
    config = make_config(
        chain={"chain_id": 5, "rpc_url": "http://localhost:8545"},
        database={"path": str(tmp_path / "app.db")},
    )

    with pytest.raises(ConfigurationError, match="chain_id"):
        await Application.load(config)

    assert not (tmp_path / "app.db").exists()


async def test_load_closes_database_when_wiring_fails(tmp_path, monkeypatch):
    opened = []

    def fake_get_database(path):
        database = Database(tmp_path / "app.db")
        opened.append(database)
        return database

    def broken_router(self, name=None):
        raise ConfigurationError("llm.openai.model is not set.")

    monkeypatch.setattr(app_module, "get_database", fake_get_database)
    monkeypatch.setattr(LLMRouter, "get_provider", broken_router)

    with pytest.raises(ConfigurationError):
        await Application.load(make_config())

    assert len(opened) == 1
    with pytest.raises(RuntimeError):
        await opened[0].fetch_all("SELECT 1")


async def test_load_builds_real_components(tmp_path):
    config = make_config(database={"path": str(tmp_path / "app.db")})

    application = await Application.load(config)
    try:
        assert isinstance(application.chain_provider, Web3ChainProvider)
        assert application.chain_provider.rpc_url == "http://localhost:8545"
        assert application.dispatcher.provider.model == "gpt-4o-mini"
        assert (tmp_path / "app.db").exists()
    finally:
        await application.close()
