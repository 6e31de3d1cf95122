from collections.abc import Callable
from decimal import Decimal

import pytest

from fieldservice_billing.config import Environment, Settings
from fieldservice_billing.domain.documents import Estimate, Invoice, UpsellItem
from fieldservice_billing.domain.value_objects import DocumentType, Money
from fieldservice_billing.repositories.sqlite import (
    SQLiteCommunicationRepository,
    SQLiteDatabase,
    SQLiteDocumentRepository,
    SQLiteHistoryRepository,
    SQLitePaymentRepository,
    SQLiteSequenceGenerator,
)
from fieldservice_billing.services.conversion import DocumentConversionService
from fieldservice_billing.services.dispatch import SendDispatcher
from fieldservice_billing.services.drafts import DocumentDraft
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.notifications import LoggingNotificationGateway
from fieldservice_billing.services.payments import PaymentLedgerService


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment=Environment.TESTING,
        sqlite_path=":memory:",
        default_tax_rate=Decimal("13"),
    )


@pytest.fixture
def db() -> SQLiteDatabase:
    """Create an in-memory SQLite database for testing."""
    database = SQLiteDatabase(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def document_repo(db: SQLiteDatabase) -> SQLiteDocumentRepository:
    return SQLiteDocumentRepository(db)


@pytest.fixture
def payment_repo(db: SQLiteDatabase) -> SQLitePaymentRepository:
    return SQLitePaymentRepository(db)


@pytest.fixture
def sequence(db: SQLiteDatabase, settings: Settings) -> SQLiteSequenceGenerator:
    return SQLiteSequenceGenerator(db, settings)


@pytest.fixture
def history_repo(db: SQLiteDatabase) -> SQLiteHistoryRepository:
    return SQLiteHistoryRepository(db)


@pytest.fixture
def communication_repo(db: SQLiteDatabase) -> SQLiteCommunicationRepository:
    return SQLiteCommunicationRepository(db)


@pytest.fixture
def history(history_repo: SQLiteHistoryRepository) -> HistoryRecorder:
    return HistoryRecorder(history_repo)


@pytest.fixture
def guard(settings: Settings) -> OperationGuard:
    return OperationGuard(settings.operation_timeout_seconds)


@pytest.fixture
def gateway() -> LoggingNotificationGateway:
    return LoggingNotificationGateway()


@pytest.fixture
def dispatcher(
    document_repo: SQLiteDocumentRepository,
    gateway: LoggingNotificationGateway,
    communication_repo: SQLiteCommunicationRepository,
    history: HistoryRecorder,
    guard: OperationGuard,
    settings: Settings,
) -> SendDispatcher:
    return SendDispatcher(
        document_repo,
        gateway,
        communications=communication_repo,
        history=history,
        guard=guard,
        settings=settings,
    )


@pytest.fixture
def ledger(
    document_repo: SQLiteDocumentRepository,
    payment_repo: SQLitePaymentRepository,
    sequence: SQLiteSequenceGenerator,
    dispatcher: SendDispatcher,
    history: HistoryRecorder,
    guard: OperationGuard,
    settings: Settings,
) -> PaymentLedgerService:
    return PaymentLedgerService(
        document_repo,
        payment_repo,
        sequence=sequence,
        dispatcher=dispatcher,
        history=history,
        guard=guard,
        settings=settings,
    )


@pytest.fixture
def conversion(
    document_repo: SQLiteDocumentRepository,
    sequence: SQLiteSequenceGenerator,
    history: HistoryRecorder,
    guard: OperationGuard,
    settings: Settings,
) -> DocumentConversionService:
    return DocumentConversionService(
        document_repo,
        sequence=sequence,
        history=history,
        guard=guard,
        settings=settings,
    )


@pytest.fixture
def new_draft(
    document_repo: SQLiteDocumentRepository,
    sequence: SQLiteSequenceGenerator,
    history: HistoryRecorder,
    settings: Settings,
) -> Callable[..., DocumentDraft]:
    def factory(
        document_type: DocumentType = DocumentType.INVOICE,
        tax_rate: Decimal | str | None = None,
        job_id: str | None = "job-100",
    ) -> DocumentDraft:
        return DocumentDraft(
            document_type,
            document_repo,
            sequence,
            settings,
            job_id=job_id,
            client_id="client-7",
            tax_rate=tax_rate,
            history=history,
        )

    return factory


@pytest.fixture
def saved_invoice(new_draft: Callable[..., DocumentDraft]) -> Callable[..., Invoice]:
    """Persist an invoice whose total equals `total` (no tax)."""

    def factory(total: str = "100.00") -> Invoice:
        draft = new_draft(DocumentType.INVOICE, tax_rate="0")
        draft.add_item({"name": "Service call", "price": total})
        return draft.save()  # type: ignore[return-value]

    return factory


@pytest.fixture
def saved_estimate(new_draft: Callable[..., DocumentDraft]) -> Estimate:
    draft = new_draft(DocumentType.ESTIMATE)
    draft.add_item({"name": "Furnace tune-up", "price": "150.00", "cost": "60.00"})
    draft.add_item(
        {"name": "Filter", "price": "25.00", "quantity": "2", "taxable": False}
    )
    draft.set_notes("Includes safety inspection.")
    return draft.save()  # type: ignore[return-value]


@pytest.fixture
def warranty_catalog() -> list[UpsellItem]:
    return [
        UpsellItem(
            title="1-Year Parts Warranty",
            price=Money(Decimal("49.00")),
            description="Covers replacement parts for one year",
        ),
        UpsellItem(
            title="Priority Service Plan",
            price=Money(Decimal("99.00")),
            category="maintenance",
        ),
    ]
