"""Dependency injection container for Field Service Billing.

Wires the SQLite repositories, the notification gateway and the services
built on them. Everything is created on first access and cached.

Usage:
    from fieldservice_billing.container import get_container

    container = get_container()
    builder = container.new_builder(DocumentType.INVOICE, job_id="job-42")
    ledger = container.payment_ledger
"""

from collections.abc import Iterable
from functools import cached_property, lru_cache
from typing import TYPE_CHECKING
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.documents import UpsellItem
from fieldservice_billing.domain.value_objects import DocumentType
from fieldservice_billing.logging_config import configure_logging, get_logger

if TYPE_CHECKING:
    from fieldservice_billing.repositories.sqlite import (
        SQLiteCommunicationRepository,
        SQLiteDatabase,
        SQLiteDocumentRepository,
        SQLiteHistoryRepository,
        SQLitePaymentRepository,
        SQLiteSequenceGenerator,
    )
    from fieldservice_billing.services.builder import DocumentBuilder
    from fieldservice_billing.services.conversion import DocumentConversionService
    from fieldservice_billing.services.dispatch import SendDispatcher
    from fieldservice_billing.services.drafts import DocumentDraft
    from fieldservice_billing.services.guards import OperationGuard
    from fieldservice_billing.services.history import HistoryRecorder
    from fieldservice_billing.services.interfaces import NotificationGateway
    from fieldservice_billing.services.payments import PaymentLedgerService

logger = get_logger(__name__)


class Container:
    """Dependency injection container.

    For tests, build one around an in-memory database:

        container = Container(settings=Settings(sqlite_path=":memory:"))
    """

    def __init__(
        self,
        settings: Settings | None = None,
        gateway: "NotificationGateway | None" = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._gateway_override = gateway
        configure_logging(self._settings)
        logger.debug(
            "container_created",
            sqlite_path=str(self._settings.sqlite_path),
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @cached_property
    def database(self) -> "SQLiteDatabase":
        """The SQLite database, schema created on first access."""
        from fieldservice_billing.repositories.sqlite import SQLiteDatabase

        db_path = str(self._settings.sqlite_path)
        logger.info("initializing_sqlite_database", path=db_path)
        db = SQLiteDatabase(db_path)
        db.initialize()
        return db

    @cached_property
    def documents(self) -> "SQLiteDocumentRepository":
        from fieldservice_billing.repositories.sqlite import SQLiteDocumentRepository

        return SQLiteDocumentRepository(self.database)

    @cached_property
    def payments(self) -> "SQLitePaymentRepository":
        from fieldservice_billing.repositories.sqlite import SQLitePaymentRepository

        return SQLitePaymentRepository(self.database)

    @cached_property
    def sequence(self) -> "SQLiteSequenceGenerator":
        from fieldservice_billing.repositories.sqlite import SQLiteSequenceGenerator

        return SQLiteSequenceGenerator(self.database, self._settings)

    @cached_property
    def history_repository(self) -> "SQLiteHistoryRepository":
        from fieldservice_billing.repositories.sqlite import SQLiteHistoryRepository

        return SQLiteHistoryRepository(self.database)

    @cached_property
    def communications(self) -> "SQLiteCommunicationRepository":
        from fieldservice_billing.repositories.sqlite import (
            SQLiteCommunicationRepository,
        )

        return SQLiteCommunicationRepository(self.database)

    @cached_property
    def history(self) -> "HistoryRecorder":
        from fieldservice_billing.services.history import HistoryRecorder

        return HistoryRecorder(self.history_repository)

    @cached_property
    def guard(self) -> "OperationGuard":
        from fieldservice_billing.services.guards import OperationGuard

        return OperationGuard(self._settings.operation_timeout_seconds)

    @cached_property
    def gateway(self) -> "NotificationGateway":
        """HTTP relay when configured, otherwise a log-only gateway."""
        if self._gateway_override is not None:
            return self._gateway_override
        from fieldservice_billing.services.notifications import (
            HttpNotificationGateway,
            LoggingNotificationGateway,
        )

        if self._settings.notification_relay_url:
            logger.info("using_http_notification_gateway")
            return HttpNotificationGateway(
                self._settings.notification_relay_url,
                api_key=self._settings.notification_api_key,
                sender_name=self._settings.company_name,
                timeout=self._settings.operation_timeout_seconds,
            )
        logger.info("using_logging_notification_gateway")
        return LoggingNotificationGateway()

    @cached_property
    def dispatcher(self) -> "SendDispatcher":
        from fieldservice_billing.services.dispatch import SendDispatcher

        return SendDispatcher(
            self.documents,
            self.gateway,
            communications=self.communications,
            history=self.history,
            guard=self.guard,
            settings=self._settings,
        )

    @cached_property
    def payment_ledger(self) -> "PaymentLedgerService":
        from fieldservice_billing.services.payments import PaymentLedgerService

        return PaymentLedgerService(
            self.documents,
            self.payments,
            sequence=self.sequence,
            dispatcher=self.dispatcher,
            history=self.history,
            guard=self.guard,
            settings=self._settings,
        )

    @cached_property
    def conversion(self) -> "DocumentConversionService":
        from fieldservice_billing.services.conversion import DocumentConversionService

        return DocumentConversionService(
            self.documents,
            sequence=self.sequence,
            history=self.history,
            guard=self.guard,
            settings=self._settings,
        )

    def new_draft(
        self,
        document_type: DocumentType,
        job_id: str | None = None,
        client_id: str | None = None,
    ) -> "DocumentDraft":
        from fieldservice_billing.services.drafts import DocumentDraft

        return DocumentDraft(
            document_type,
            self.documents,
            self.sequence,
            self._settings,
            job_id=job_id,
            client_id=client_id,
            history=self.history,
        )

    def open_draft(self, document_type: DocumentType, document_id: UUID) -> "DocumentDraft":
        from fieldservice_billing.services.drafts import DocumentDraft

        return DocumentDraft.load(
            self.documents,
            self.sequence,
            document_type,
            document_id,
            settings=self._settings,
            history=self.history,
        )

    def builder_for(
        self, draft: "DocumentDraft", upsell_catalog: Iterable[UpsellItem] = ()
    ) -> "DocumentBuilder":
        from fieldservice_billing.services.builder import DocumentBuilder

        return DocumentBuilder(
            draft,
            upsell_catalog,
            dispatcher=self.dispatcher,
            ledger=self.payment_ledger,
            conversion=self.conversion,
            guard=self.guard,
        )

    def new_builder(
        self,
        document_type: DocumentType,
        job_id: str | None = None,
        client_id: str | None = None,
        upsell_catalog: Iterable[UpsellItem] = (),
    ) -> "DocumentBuilder":
        return self.builder_for(self.new_draft(document_type, job_id, client_id), upsell_catalog)

    def close(self) -> None:
        """Close all resources held by the container."""
        if "gateway" in self.__dict__ and hasattr(self.gateway, "close"):
            self.gateway.close()  # type: ignore[attr-defined]
        if "database" in self.__dict__:
            logger.info("closing_database_connection")
            self.database.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


_container: Container | None = None


@lru_cache
def get_container() -> Container:
    """Get the global container singleton.

    For testing, create a Container directly with custom settings instead.
    """
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container() -> None:
    """Reset the global container. Used by tests."""
    global _container
    if _container is not None:
        _container.close()
        _container = None
    get_container.cache_clear()
