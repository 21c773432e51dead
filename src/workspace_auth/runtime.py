"""Composition root: builds and owns every long-lived component.

All collaborators are constructed explicitly here and injected into each
other; nothing is a module-level singleton.  :class:`WorkspaceAuthRuntime`
is an async context manager::

    async with WorkspaceAuthRuntime(WorkspaceAuthConfig.from_env()) as runtime:
        gmail = await runtime.gmail("user@example.com")
        messages = await gmail.list_messages(query="has:attachment")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx

from workspace_auth.accounts.callback import CallbackCorrelator, FallbackPolicy
from workspace_auth.accounts.client_cache import AccountAuth, AuthenticatedClientCache
from workspace_auth.accounts.manager import AccountManager
from workspace_auth.accounts.oauth import OAuthExchangeClient
from workspace_auth.accounts.registry import AccountRegistry
from workspace_auth.accounts.renewal import TokenRenewalPolicy
from workspace_auth.accounts.token_store import TokenStore
from workspace_auth.api.app import create_app
from workspace_auth.api.server import CallbackServer
from workspace_auth.attachments.cleanup import AttachmentCleanupScheduler
from workspace_auth.attachments.index import AttachmentMetadataIndex
from workspace_auth.attachments.transformer import AttachmentResponseTransformer
from workspace_auth.clock import Clock, epoch_ms
from workspace_auth.config import WorkspaceAuthConfig
from workspace_auth.scopes import ScopeRegistry, default_scope_registry
from workspace_auth.services.base import GoogleApiClient
from workspace_auth.services.calendar import CalendarService
from workspace_auth.services.contacts import ContactsService
from workspace_auth.services.drive import DriveService
from workspace_auth.services.gmail import GmailService

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT_SECONDS = 30.0

ServiceT = TypeVar("ServiceT", bound=GoogleApiClient)


class WorkspaceAuthRuntime:
    def __init__(
        self,
        config: WorkspaceAuthConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = epoch_ms,
        fallback: FallbackPolicy = FallbackPolicy.UNMATCHED_ONLY,
        scopes: ScopeRegistry | None = None,
    ) -> None:
        self.config = config
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS)

        self.store = TokenStore(config.credentials_path)
        self.oauth = OAuthExchangeClient.from_config(
            config, http_client=self.http_client, clock=clock
        )
        self.policy = TokenRenewalPolicy(self.store, self.oauth, clock=clock)
        self.correlator = CallbackCorrelator(fallback=fallback)
        self.client_cache = AuthenticatedClientCache(self.policy)

        self.attachment_index = AttachmentMetadataIndex(clock=clock)
        self.cleanup_scheduler = AttachmentCleanupScheduler(self.attachment_index, clock=clock)
        self.transformer = AttachmentResponseTransformer(
            self.attachment_index, self.cleanup_scheduler
        )

        self.scopes = scopes or default_scope_registry()
        self.registry = AccountRegistry(config.accounts_path)
        self.accounts = AccountManager(
            registry=self.registry,
            store=self.store,
            policy=self.policy,
            oauth_client=self.oauth,
            correlator=self.correlator,
            scopes=self.scopes,
            client_cache=self.client_cache,
        )

        self.app = create_app(self.correlator)
        self._callback_server: CallbackServer | None = None

    @property
    def callback_server(self) -> CallbackServer | None:
        return self._callback_server

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, serve_callback: bool = True) -> None:
        """Load accounts, start the cleanup timer and (locally) the callback server.

        With an external callback URL the redirect is handled elsewhere and no
        local server is started.  A failed start stops whatever already started.

        Raises
        ------
        ConfigError
            If the callback port cannot be bound.
        """
        try:
            await self.registry.load()
            self.cleanup_scheduler.start()
            if serve_callback and not self.config.uses_external_callback:
                self._callback_server = CallbackServer(
                    self.app,
                    host=self.config.callback_host,
                    port=self.config.callback_port,
                )
                await self._callback_server.start()
            elif self.config.uses_external_callback:
                logger.info("Using external OAuth callback: %s", self.config.callback_url)
        except BaseException:
            logger.error("Workspace auth runtime failed to start; shutting down")
            await self.stop()
            raise
        logger.info("Workspace auth runtime started")

    async def stop(self) -> None:
        self.correlator.cancel_all()
        if self._callback_server is not None:
            await self._callback_server.stop()
            self._callback_server = None
        await self.cleanup_scheduler.stop()
        await self.client_cache.close()
        await self.oauth.aclose()
        if self._owns_http_client:
            await self.http_client.aclose()
        logger.info("Workspace auth runtime stopped")

    async def __aenter__(self) -> WorkspaceAuthRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Service clients
    # ------------------------------------------------------------------

    async def gmail(self, email: str) -> GmailService:
        return await self._service(
            email,
            GmailService,
            lambda auth: GmailService(
                auth,
                self.http_client,
                index=self.attachment_index,
                transformer=self.transformer,
            ),
        )

    async def calendar(self, email: str) -> CalendarService:
        return await self._service(
            email,
            CalendarService,
            lambda auth: CalendarService(auth, self.http_client, transformer=self.transformer),
        )

    async def drive(self, email: str) -> DriveService:
        return await self._service(
            email, DriveService, lambda auth: DriveService(auth, self.http_client)
        )

    async def contacts(self, email: str) -> ContactsService:
        return await self._service(
            email, ContactsService, lambda auth: ContactsService(auth, self.http_client)
        )

    async def _service(
        self,
        email: str,
        service_cls: type[ServiceT],
        factory: Callable[[AccountAuth], ServiceT],
    ) -> ServiceT:
        return await self.client_cache.get(
            email,
            service_cls.service_name,
            factory,
            required_scopes=service_cls.required_scopes,
        )
