from fieldservice_billing.repositories.interfaces import (
    CommunicationRepository,
    DocumentRepository,
    HistoryRepository,
    HistorySink,
    PaymentRepository,
    SequenceGenerator,
)
from fieldservice_billing.repositories.sqlite import (
    SQLiteCommunicationRepository,
    SQLiteDatabase,
    SQLiteDocumentRepository,
    SQLiteHistoryRepository,
    SQLitePaymentRepository,
    SQLiteSequenceGenerator,
)

__all__ = [
    "CommunicationRepository",
    "DocumentRepository",
    "HistoryRepository",
    "HistorySink",
    "PaymentRepository",
    "SequenceGenerator",
    "SQLiteCommunicationRepository",
    "SQLiteDatabase",
    "SQLiteDocumentRepository",
    "SQLiteHistoryRepository",
    "SQLitePaymentRepository",
    "SQLiteSequenceGenerator",
]
