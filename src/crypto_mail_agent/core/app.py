"""Application - wires configuration into the running components."""

from __future__ import annotations

import logging

from crypto_mail_agent.config import AppConfig
from crypto_mail_agent.core.dispatcher import IntentDispatcher
from crypto_mail_agent.llm.base import BaseLLMProvider
from crypto_mail_agent.llm.router import LLMRouter
from crypto_mail_agent.mailer import Mailer, reply_subject
from crypto_mail_agent.storage.database import Database, get_database
from crypto_mail_agent.tools import OperationRegistry
from crypto_mail_agent.wallet.keystore import SecretBox
from crypto_mail_agent.wallet.manager import WalletEngine, normalize_email
from crypto_mail_agent.wallet.provider import ChainProvider, Web3ChainProvider

logger = logging.getLogger("crypto_mail_agent.app")


class Application:
    """Everything one process needs to answer wallet requests.

    Built once from an :class:`AppConfig`; components never read the
    configuration on their own.
    """

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        chain_provider: ChainProvider,
        llm_provider: BaseLLMProvider,
        mailer: Mailer | None = None,
    ):
        self.config = config
        self.db = db
        self.chain_provider = chain_provider
        self.engine = WalletEngine(
            db=db,
            provider=chain_provider,
            secret_box=SecretBox(config.custody.key_bytes()),
            chain_id=config.chain.chain_id,
        )
        self.registry = OperationRegistry(self.engine)
        self.dispatcher = IntentDispatcher(
            provider=llm_provider,
            registry=self.registry,
            max_rounds=config.llm.max_rounds,
            timeout_seconds=config.llm.timeout_seconds,
        )
        self.mailer = mailer or Mailer(config.email)

    @classmethod
    async def load(cls, config: AppConfig) -> Application:
        """Validate *config*, open the database and build the real providers.

        Raises
        ------
        ConfigurationError
            If a required setting is missing or malformed.
        """
        config.validate_startup()

        db = get_database(config.database.path)
        await db.connect()
        try:
            chain_provider = Web3ChainProvider(
                config.chain.rpc_url, timeout_seconds=config.chain.timeout_seconds,
            )
            llm_provider = LLMRouter(config.llm).get_provider()
            application = cls(config, db, chain_provider, llm_provider)
        except Exception:
            await db.close()
            raise
        logger.info(
            f"Application ready: chain_id={config.chain.chain_id}, "
            f"llm={config.llm.default_provider}, db={config.database.path}"
        )
        return application

    async def handle(self, requester: str, text: str, subject: str | None = None) -> str:
        return await self.dispatcher.handle(normalize_email(requester), text, subject)

    async def process_email(
        self,
        sender: str,
        subject: str | None,
        body: str,
        send_reply: bool = True,
    ) -> dict:
        """Answer one inbound e-mail and, if asked, mail the reply back."""
        sender = normalize_email(sender)
        logger.info(f"Email from {sender}: {subject!r}")
        response = await self.handle(sender, body or "", subject)

        result = {
            "from": sender,
            "subject": subject or "",
            "response": response,
            "replySubject": reply_subject(subject),
            "sent": False,
        }
        if send_reply:
            if not self.mailer.enabled:
                logger.warning(f"Email not configured; reply to {sender} not sent")
            else:
                await self.mailer.send(sender, result["replySubject"], response)
                result["sent"] = True
        return result

    async def close(self) -> None:
        await self.db.close()
