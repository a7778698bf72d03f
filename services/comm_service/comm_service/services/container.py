"""
Service container wiring the store, channels and engines together.
Built once per process by the application lifespan; tests build their own
around an in-memory store and fake channels.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from comm_service.channels.email import EmailChannel
from comm_service.channels.registry import ChannelRegistry, OperatorDirectory
from comm_service.channels.telegram import TelegramChannel
from comm_service.core.config import Settings
from comm_service.core.idempotency import IdempotencyGuard
from comm_service.core.lock import DistributedLock
from comm_service.core.security import TokenIssuer
from comm_service.core.store import KeyValueStore, RedisStore
from comm_service.schemas.common import Channel
from comm_service.services.commands import CommandService
from comm_service.services.confirmation import ConfirmationStateMachine
from comm_service.services.dispatcher import DispatchEngine
from comm_service.services.events import EventService
from comm_service.services.messages import MessageService
from comm_service.services.tasks import TaskRunner
from comm_service.services.verification import VerificationEngine

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: KeyValueStore
    tokens: TokenIssuer
    tasks: TaskRunner
    channels: ChannelRegistry
    operators: OperatorDirectory
    idempotency: IdempotencyGuard
    engine: DispatchEngine
    confirmation: ConfirmationStateMachine
    commands: CommandService
    messages: MessageService
    events: EventService
    verification: VerificationEngine
    http_client: Optional[httpx.AsyncClient] = None

    async def close(self) -> None:
        """Let background work finish, then release network resources."""
        await self.tasks.shutdown()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.store.close()


def default_channels(settings: Settings, http_client: Optional[httpx.AsyncClient]) -> ChannelRegistry:
    return ChannelRegistry(
        {
            Channel.TELEGRAM: TelegramChannel(
                settings.telegram_bot_token,
                api_base=settings.telegram_api_base,
                timeout=settings.webhook_timeout,
                client=http_client,
            ),
            Channel.EMAIL: EmailChannel(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                from_address=settings.email_from,
                timeout=settings.webhook_timeout,
            ),
        }
    )


def build_container(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    channels: Optional[ChannelRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ServiceContainer:
    """
    Create the service graph.

    Args:
        settings: Application settings
        store: Key-value store (default: Redis from ``settings``)
        channels: Channel registry (default: Telegram + SMTP from ``settings``)
        http_client: Shared client for outbound calls (default: one owned by the container)

    Returns:
        ServiceContainer: Fully wired services
    """
    if store is None:
        store = RedisStore.from_settings(settings)
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.webhook_timeout)
    if channels is None:
        channels = default_channels(settings, http_client)

    tokens = TokenIssuer(settings)
    tasks = TaskRunner()
    operators = OperatorDirectory(
        telegram_chat_ids=settings.admin_chat_ids, admin_email=settings.admin_email
    )
    # The idempotency lock lives beside its cache entry as ``idempotency:{key}:lock``
    idempotency = IdempotencyGuard(
        store,
        DistributedLock(store, prefix=""),
        ttl=settings.idempotency_ttl,
        lock_ttl=settings.idempotency_lock_ttl,
    )
    engine = DispatchEngine(store, channels, operators, tokens, tasks, settings)
    confirmation = ConfirmationStateMachine(engine)
    commands = CommandService(engine, confirmation, http_client=http_client)
    messages = MessageService(engine, confirmation)
    events = EventService(engine, commands)
    verification = VerificationEngine(store, channels, tokens, settings)

    logger.info(
        f"Service container built: {len(operators.telegram_chat_ids)} admin chats, "
        f"admin email {'set' if operators.admin_email else 'unset'}"
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        tokens=tokens,
        tasks=tasks,
        channels=channels,
        operators=operators,
        idempotency=idempotency,
        engine=engine,
        confirmation=confirmation,
        commands=commands,
        messages=messages,
        events=events,
        verification=verification,
        http_client=http_client,
    )
