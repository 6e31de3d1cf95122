"""SQLite implementations of repository interfaces."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.documents import Document, Estimate, Invoice, LineItem
from fieldservice_billing.domain.history import (
    DocumentCommunication,
    HistoryEntry,
    HistoryEntryType,
)
from fieldservice_billing.domain.payments import Payment
from fieldservice_billing.domain.value_objects import (
    CommunicationStatus,
    DeliveryChannel,
    DocumentType,
    EstimateStatus,
    InvoiceStatus,
    Money,
    PaymentMethod,
    PaymentStatus,
)
from fieldservice_billing.exceptions import (
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
    PaymentNotFoundError,
    PersistenceError,
)
from fieldservice_billing.repositories.interfaces import (
    CommunicationRepository,
    DocumentRepository,
    HistoryRepository,
    HistorySink,
    PaymentRepository,
    SequenceGenerator,
)

_DOCUMENT_TABLES = {
    DocumentType.ESTIMATE: "estimates",
    DocumentType.INVOICE: "invoices",
}


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _parse_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


class SQLiteDatabase:
    """SQLite database connection manager."""

    def __init__(
        self, path: str | Path = ":memory:", check_same_thread: bool = True
    ) -> None:
        self._path = str(path)
        self._check_same_thread = check_same_thread
        self._connection: sqlite3.Connection | None = None
        self._depth = 0

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            try:
                self._connection = sqlite3.connect(
                    self._path, check_same_thread=self._check_same_thread
                )
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open database: {e}") from e
            self._connection.row_factory = sqlite3.Row
            # Enable foreign keys
            self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically.

        Commits on success, rolls back on any error. sqlite3 errors leave as
        PersistenceError; IntegrityError is re-raised untouched so callers
        can map constraint names to specific errors. A transaction opened
        inside another one joins it: only the outermost block commits or
        rolls back.
        """
        conn = self.get_connection()
        if self._depth:
            self._depth += 1
            try:
                yield conn
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database write failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._depth = 0

    def query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self.get_connection().execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Database read failed: {e}") from e

    def initialize(self) -> None:
        """Create all database tables."""
        conn = self.get_connection()
        conn.executescript(
            """
            -- Estimates table
            CREATE TABLE IF NOT EXISTS estimates (
                id TEXT PRIMARY KEY,
                number TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL,
                tax_rate TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                tax_total TEXT NOT NULL,
                total TEXT NOT NULL,
                notes TEXT NOT NULL DEFAULT '',
                client_id TEXT,
                job_id TEXT,
                number_is_provisional INTEGER NOT NULL DEFAULT 0,
                converted_invoice_id TEXT,
                valid_until TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                sent_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_estimates_job ON estimates(job_id);

            -- Invoices table. One invoice per source estimate.
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT PRIMARY KEY,
                number TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL,
                tax_rate TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                tax_total TEXT NOT NULL,
                total TEXT NOT NULL,
                amount_paid TEXT NOT NULL DEFAULT '0',
                notes TEXT NOT NULL DEFAULT '',
                client_id TEXT,
                job_id TEXT,
                number_is_provisional INTEGER NOT NULL DEFAULT 0,
                estimate_id TEXT UNIQUE,
                issue_date TEXT NOT NULL,
                due_date TEXT,
                paid_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                sent_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_invoices_job ON invoices(job_id);

            -- Line items for both document types
            CREATE TABLE IF NOT EXISTS line_items (
                id TEXT PRIMARY KEY,
                parent_type TEXT NOT NULL,
                parent_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                quantity TEXT NOT NULL,
                unit_price TEXT NOT NULL,
                discount_percent TEXT NOT NULL DEFAULT '0',
                taxable INTEGER NOT NULL DEFAULT 1,
                our_cost TEXT NOT NULL DEFAULT '0',
                source_upsell_id TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_line_items_parent ON line_items(parent_type, parent_id);

            -- Payments table
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                invoice_id TEXT NOT NULL,
                payment_number TEXT NOT NULL,
                amount TEXT NOT NULL,
                method TEXT NOT NULL,
                reference TEXT,
                notes TEXT,
                payment_date TEXT NOT NULL,
                status TEXT NOT NULL,
                idempotency_key TEXT,
                created_at TEXT NOT NULL,
                refunded_at TEXT,
                UNIQUE(invoice_id, idempotency_key),
                FOREIGN KEY (invoice_id) REFERENCES invoices(id)
            );
            CREATE INDEX IF NOT EXISTS idx_payments_invoice ON payments(invoice_id);

            -- Number sequences per document type
            CREATE TABLE IF NOT EXISTS document_sequences (
                document_type TEXT PRIMARY KEY,
                last_value INTEGER NOT NULL DEFAULT 0
            );

            -- Job history
            CREATE TABLE IF NOT EXISTS job_history (
                id TEXT PRIMARY KEY,
                job_id TEXT,
                entry_type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                meta TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_job_history_job ON job_history(job_id);

            -- Delivery attempts
            CREATE TABLE IF NOT EXISTS document_communications (
                id TEXT PRIMARY KEY,
                document_type TEXT NOT NULL,
                document_id TEXT NOT NULL,
                channel TEXT NOT NULL,
                recipient TEXT NOT NULL,
                status TEXT NOT NULL,
                provider_message_id TEXT,
                error TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_communications_document
                ON document_communications(document_type, document_id);
            """
        )
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


class SQLiteDocumentRepository(DocumentRepository):
    """SQLite implementation of DocumentRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, document: Document) -> Document:
        document_type = document.document_type
        table = _DOCUMENT_TABLES[document_type]
        columns = self._columns(document)
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                    tuple(columns.values()),
                )
                self._insert_line_items(conn, document)
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(document, e) from e

        stored = self.get(document_type, document.id)
        if stored is None:
            raise PersistenceError(
                f"Inserted {document_type.value} {document.id} could not be read back"
            )
        return stored

    def get(self, document_type: DocumentType, document_id: UUID) -> Document | None:
        document_type = DocumentType(document_type)
        rows = self._db.query(
            f"SELECT * FROM {_DOCUMENT_TABLES[document_type]} WHERE id = ?",
            (str(document_id),),
        )
        if not rows:
            return None
        return self._row_to_document(document_type, rows[0])

    def get_by_number(
        self, document_type: DocumentType, number: str
    ) -> Document | None:
        document_type = DocumentType(document_type)
        rows = self._db.query(
            f"SELECT * FROM {_DOCUMENT_TABLES[document_type]} WHERE number = ?",
            (number,),
        )
        if not rows:
            return None
        return self._row_to_document(document_type, rows[0])

    def update(self, document: Document) -> None:
        table = _DOCUMENT_TABLES[document.document_type]
        columns = self._columns(document)
        document_id = columns.pop("id")
        assignments = ", ".join(f"{column} = ?" for column in columns)
        try:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    (*columns.values(), document_id),
                )
                if cursor.rowcount == 0:
                    raise DocumentNotFoundError(document.document_type, document.id)
                conn.execute(
                    "DELETE FROM line_items WHERE parent_type = ? AND parent_id = ?",
                    (document.document_type.value, document_id),
                )
                self._insert_line_items(conn, document)
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(document, e) from e

    def delete(self, document_type: DocumentType, document_id: UUID) -> None:
        document_type = DocumentType(document_type)
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM line_items WHERE parent_type = ? AND parent_id = ?",
                (document_type.value, str(document_id)),
            )
            conn.execute(
                f"DELETE FROM {_DOCUMENT_TABLES[document_type]} WHERE id = ?",
                (str(document_id),),
            )

    def get_invoice_for_estimate(self, estimate_id: UUID) -> Invoice | None:
        rows = self._db.query(
            "SELECT * FROM invoices WHERE estimate_id = ?", (str(estimate_id),)
        )
        if not rows:
            return None
        return self._row_to_document(DocumentType.INVOICE, rows[0])  # type: ignore[return-value]

    def list_converted_invoices(self) -> Iterable[Invoice]:
        rows = self._db.query(
            "SELECT * FROM invoices WHERE estimate_id IS NOT NULL ORDER BY created_at"
        )
        return [
            self._row_to_document(DocumentType.INVOICE, row)  # type: ignore[misc]
            for row in rows
        ]

    def list_expired_estimates(self, as_of: date) -> Iterable[Estimate]:
        rows = self._db.query(
            "SELECT * FROM estimates WHERE status IN (?, ?) "
            "AND converted_invoice_id IS NULL AND valid_until IS NOT NULL AND valid_until < ? "
            "ORDER BY valid_until",
            (EstimateStatus.DRAFT.value, EstimateStatus.SENT.value, as_of.isoformat()),
        )
        return [
            self._row_to_document(DocumentType.ESTIMATE, row)  # type: ignore[misc]
            for row in rows
        ]

    def list_provisional(self, document_type: DocumentType) -> Iterable[Document]:
        document_type = DocumentType(document_type)
        rows = self._db.query(
            f"SELECT * FROM {_DOCUMENT_TABLES[document_type]} "
            "WHERE number_is_provisional = 1 ORDER BY created_at"
        )
        return [self._row_to_document(document_type, row) for row in rows]

    def _columns(self, document: Document) -> dict[str, Any]:
        columns: dict[str, Any] = {
            "id": str(document.id),
            "number": document.number,
            "status": document.status.value,  # type: ignore[attr-defined]
            "tax_rate": str(document.tax_rate),
            "subtotal": str(document.subtotal.amount),
            "tax_total": str(document.tax_total.amount),
            "total": str(document.total.amount),
            "notes": document.notes,
            "client_id": document.client_id,
            "job_id": document.job_id,
            "number_is_provisional": 1 if document.number_is_provisional else 0,
            "created_at": _iso(document.created_at),
            "updated_at": _iso(document.updated_at),
            "sent_at": _iso(document.sent_at),
        }
        if isinstance(document, Estimate):
            columns["converted_invoice_id"] = (
                str(document.converted_invoice_id)
                if document.converted_invoice_id
                else None
            )
            columns["valid_until"] = _iso(document.valid_until)
        elif isinstance(document, Invoice):
            columns["amount_paid"] = str(document.amount_paid.amount)
            columns["estimate_id"] = (
                str(document.estimate_id) if document.estimate_id else None
            )
            columns["issue_date"] = _iso(document.issue_date)
            columns["due_date"] = _iso(document.due_date)
            columns["paid_at"] = _iso(document.paid_at)
        return columns

    def _insert_line_items(self, conn: sqlite3.Connection, document: Document) -> None:
        for position, item in enumerate(document.items):
            conn.execute(
                """
                INSERT INTO line_items (id, parent_type, parent_id, position, name, description,
                                        quantity, unit_price, discount_percent, taxable, our_cost,
                                        source_upsell_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(item.id),
                    document.document_type.value,
                    str(document.id),
                    position,
                    item.name,
                    item.description,
                    str(item.quantity),
                    str(item.unit_price.amount),
                    str(item.discount_percent),
                    1 if item.taxable else 0,
                    str(item.our_cost.amount),
                    str(item.source_upsell_id) if item.source_upsell_id else None,
                ),
            )

    def _translate_integrity_error(
        self, document: Document, error: sqlite3.IntegrityError
    ) -> Exception:
        message = str(error)
        if ".number" in message:
            return DuplicateDocumentNumberError(document.document_type, document.number)
        if ".estimate_id" in message:
            return PersistenceError(
                f"Estimate {getattr(document, 'estimate_id', None)} already has an invoice",
                error_code="ESTIMATE_ALREADY_INVOICED",
                status_code=409,
            )
        return PersistenceError(f"Constraint violated: {message}", status_code=409)

    def _row_to_document(self, document_type: DocumentType, row: sqlite3.Row) -> Document:
        item_rows = self._db.query(
            """
            SELECT * FROM line_items
            WHERE parent_type = ? AND parent_id = ?
            ORDER BY position
            """,
            (document_type.value, row["id"]),
        )
        items = [self._row_to_line_item(item_row) for item_row in item_rows]

        common: dict[str, Any] = {
            "id": UUID(row["id"]),
            "number": row["number"],
            "items": items,
            "tax_rate": Decimal(row["tax_rate"]),
            "notes": row["notes"],
            "client_id": row["client_id"],
            "job_id": row["job_id"],
            "subtotal": Money(Decimal(row["subtotal"])),
            "tax_total": Money(Decimal(row["tax_total"])),
            "total": Money(Decimal(row["total"])),
            "number_is_provisional": bool(row["number_is_provisional"]),
            "created_at": datetime.fromisoformat(row["created_at"]),
            "updated_at": datetime.fromisoformat(row["updated_at"]),
            "sent_at": _parse_datetime(row["sent_at"]),
        }
        if document_type == DocumentType.ESTIMATE:
            return Estimate(
                status=EstimateStatus(row["status"]),
                converted_invoice_id=_parse_uuid(row["converted_invoice_id"]),
                valid_until=_parse_date(row["valid_until"]),
                **common,
            )
        return Invoice(
            status=InvoiceStatus(row["status"]),
            amount_paid=Money(Decimal(row["amount_paid"])),
            estimate_id=_parse_uuid(row["estimate_id"]),
            issue_date=date.fromisoformat(row["issue_date"]),
            due_date=_parse_date(row["due_date"]),
            paid_at=_parse_datetime(row["paid_at"]),
            **common,
        )

    def _row_to_line_item(self, row: sqlite3.Row) -> LineItem:
        return LineItem(
            id=UUID(row["id"]),
            name=row["name"],
            description=row["description"],
            quantity=Decimal(row["quantity"]),
            unit_price=Money(Decimal(row["unit_price"])),
            discount_percent=Decimal(row["discount_percent"]),
            taxable=bool(row["taxable"]),
            our_cost=Money(Decimal(row["our_cost"])),
            source_upsell_id=_parse_uuid(row["source_upsell_id"]),
        )


class SQLitePaymentRepository(PaymentRepository):
    """SQLite implementation of PaymentRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, payment: Payment) -> Payment:
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO payments (id, invoice_id, payment_number, amount, method, reference,
                                          notes, payment_date, status, idempotency_key, created_at,
                                          refunded_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(payment.id),
                        str(payment.invoice_id),
                        payment.payment_number,
                        str(payment.amount.amount),
                        payment.method.value,
                        payment.reference,
                        payment.notes,
                        payment.payment_date.isoformat(),
                        payment.status.value,
                        payment.idempotency_key,
                        payment.created_at.isoformat(),
                        _iso(payment.refunded_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceError(
                f"Payment rejected by store: {e}",
                error_code="PAYMENT_CONFLICT",
                status_code=409,
                context={"invoice_id": str(payment.invoice_id)},
            ) from e
        stored = self.get(payment.id)
        if stored is None:
            raise PersistenceError(f"Inserted payment {payment.id} could not be read back")
        return stored

    def get(self, payment_id: UUID) -> Payment | None:
        rows = self._db.query("SELECT * FROM payments WHERE id = ?", (str(payment_id),))
        if not rows:
            return None
        return self._row_to_payment(rows[0])

    def get_by_idempotency_key(
        self, invoice_id: UUID, idempotency_key: str
    ) -> Payment | None:
        rows = self._db.query(
            "SELECT * FROM payments WHERE invoice_id = ? AND idempotency_key = ?",
            (str(invoice_id), idempotency_key),
        )
        if not rows:
            return None
        return self._row_to_payment(rows[0])

    def list_by_invoice(self, invoice_id: UUID) -> Iterable[Payment]:
        rows = self._db.query(
            "SELECT * FROM payments WHERE invoice_id = ? ORDER BY created_at",
            (str(invoice_id),),
        )
        return [self._row_to_payment(row) for row in rows]

    def update(self, payment: Payment) -> None:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE payments SET
                    reference = ?,
                    notes = ?,
                    status = ?,
                    refunded_at = ?
                WHERE id = ?
                """,
                (
                    payment.reference,
                    payment.notes,
                    payment.status.value,
                    _iso(payment.refunded_at),
                    str(payment.id),
                ),
            )
            if cursor.rowcount == 0:
                raise PaymentNotFoundError(payment.id)

    def delete(self, payment_id: UUID) -> None:
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM payments WHERE id = ?", (str(payment_id),))

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Payments and documents share one database, so one transaction covers both."""
        with self._db.transaction():
            yield

    def _row_to_payment(self, row: sqlite3.Row) -> Payment:
        return Payment(
            id=UUID(row["id"]),
            invoice_id=UUID(row["invoice_id"]),
            payment_number=row["payment_number"],
            amount=Money(Decimal(row["amount"])),
            method=PaymentMethod(row["method"]),
            reference=row["reference"],
            notes=row["notes"],
            payment_date=date.fromisoformat(row["payment_date"]),
            status=PaymentStatus(row["status"]),
            idempotency_key=row["idempotency_key"],
            created_at=datetime.fromisoformat(row["created_at"]),
            refunded_at=_parse_datetime(row["refunded_at"]),
        )


class SQLiteSequenceGenerator(SequenceGenerator):
    """Per-type counters stored in document_sequences.

    Numbers look like EST-0001, INV-0042, PAY-0007.
    """

    def __init__(self, database: SQLiteDatabase, settings: Settings | None = None) -> None:
        self._db = database
        self._settings = settings or get_settings()

    def next_number(self, document_type: str) -> str:
        key = getattr(document_type, "value", document_type)
        prefix = self._settings.number_prefix(key)
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO document_sequences (document_type, last_value) VALUES (?, 0)",
                (key,),
            )
            conn.execute(
                "UPDATE document_sequences SET last_value = last_value + 1 WHERE document_type = ?",
                (key,),
            )
            row = conn.execute(
                "SELECT last_value FROM document_sequences WHERE document_type = ?",
                (key,),
            ).fetchone()
        return f"{prefix}-{row['last_value']:04d}"


class SQLiteHistoryRepository(HistoryRepository, HistorySink):
    """SQLite implementation of HistoryRepository, usable as a HistorySink."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def record(
        self,
        job_id: str | None,
        entry_type: str,
        title: str,
        description: str,
        meta: dict[str, Any] | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            job_id=job_id,
            entry_type=HistoryEntryType(entry_type),
            title=title,
            description=description,
            meta=meta or {},
        )
        self.add(entry)
        return entry

    def add(self, entry: HistoryEntry) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_history (id, job_id, entry_type, title, description, meta, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(entry.id),
                    entry.job_id,
                    entry.entry_type.value,
                    entry.title,
                    entry.description,
                    json.dumps(entry.meta, default=str) if entry.meta else None,
                    entry.created_at.isoformat(),
                ),
            )

    def list_by_job(self, job_id: str) -> Iterable[HistoryEntry]:
        rows = self._db.query(
            "SELECT * FROM job_history WHERE job_id = ? ORDER BY created_at",
            (job_id,),
        )
        return [
            HistoryEntry(
                id=UUID(row["id"]),
                job_id=row["job_id"],
                entry_type=HistoryEntryType(row["entry_type"]),
                title=row["title"],
                description=row["description"],
                meta=json.loads(row["meta"]) if row["meta"] else {},
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


class SQLiteCommunicationRepository(CommunicationRepository):
    """SQLite implementation of CommunicationRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, communication: DocumentCommunication) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO document_communications (id, document_type, document_id, channel,
                                                     recipient, status, provider_message_id,
                                                     error, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(communication.id),
                    communication.document_type.value,
                    str(communication.document_id),
                    communication.channel.value,
                    communication.recipient,
                    communication.status.value,
                    communication.provider_message_id,
                    communication.error,
                    communication.created_at.isoformat(),
                ),
            )

    def list_by_document(
        self, document_type: DocumentType, document_id: UUID
    ) -> Iterable[DocumentCommunication]:
        document_type = DocumentType(document_type)
        rows = self._db.query(
            """
            SELECT * FROM document_communications
            WHERE document_type = ? AND document_id = ?
            ORDER BY created_at
            """,
            (document_type.value, str(document_id)),
        )
        return [
            DocumentCommunication(
                id=UUID(row["id"]),
                document_type=DocumentType(row["document_type"]),
                document_id=UUID(row["document_id"]),
                channel=DeliveryChannel(row["channel"]),
                recipient=row["recipient"],
                status=CommunicationStatus(row["status"]),
                provider_message_id=row["provider_message_id"],
                error=row["error"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
