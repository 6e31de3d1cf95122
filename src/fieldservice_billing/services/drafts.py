"""In-progress estimates and invoices.

A DocumentDraft holds one document while it is being built. Every line item
change recomputes the totals; save() is the only place the draft touches the
store.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from fieldservice_billing.config import Settings, get_settings
from fieldservice_billing.domain.calculator import DocumentTotals
from fieldservice_billing.domain.documents import (
    Document,
    Estimate,
    Invoice,
    LineItem,
    UpsellItem,
    document_class,
)
from fieldservice_billing.domain.value_objects import DocumentType, Money, to_decimal
from fieldservice_billing.exceptions import (
    DocumentNotFoundError,
    DuplicateDocumentNumberError,
    InvalidLineItemError,
    LineItemNotFoundError,
    PersistenceError,
)
from fieldservice_billing.logging_config import get_logger
from fieldservice_billing.repositories.interfaces import (
    DocumentRepository,
    SequenceGenerator,
)
from fieldservice_billing.schemas import LineItemPatch, ProductInput, parse_input
from fieldservice_billing.services.history import HistoryRecorder
from fieldservice_billing.services.numbering import allocate_number

logger = get_logger(__name__)


class DocumentDraft:
    def __init__(
        self,
        document_type: DocumentType,
        repository: DocumentRepository,
        sequence: SequenceGenerator | None = None,
        settings: Settings | None = None,
        *,
        job_id: str | None = None,
        client_id: str | None = None,
        tax_rate: Decimal | int | str | None = None,
        history: HistoryRecorder | None = None,
        document: Document | None = None,
    ) -> None:
        self._repository = repository
        self._sequence = sequence
        self._settings = settings or get_settings()
        self._history = history or HistoryRecorder(None)

        if document is not None:
            self._document = document
            self._persisted = True
            self._dirty = False
            return

        rate = self._settings.default_tax_rate if tax_rate is None else tax_rate
        self._document = document_class(document_type)(
            tax_rate=to_decimal(rate), job_id=job_id, client_id=client_id
        )
        if isinstance(self._document, Invoice):
            self._document.due_date = self._document.issue_date + timedelta(
                days=self._settings.invoice_due_days
            )
        elif isinstance(self._document, Estimate) and self._settings.estimate_valid_days:
            self._document.valid_until = date.today() + timedelta(
                days=self._settings.estimate_valid_days
            )
        self._persisted = False
        self._dirty = True

    @classmethod
    def load(
        cls,
        repository: DocumentRepository,
        sequence: SequenceGenerator | None,
        document_type: DocumentType,
        document_id: UUID,
        settings: Settings | None = None,
        history: HistoryRecorder | None = None,
    ) -> DocumentDraft:
        """Reopen a persisted document for editing."""
        document = repository.get(document_type, document_id)
        if document is None:
            raise DocumentNotFoundError(document_type, document_id)
        return cls(
            document.document_type,
            repository,
            sequence,
            settings,
            history=history,
            document=document,
        )

    @property
    def document(self) -> Document:
        return self._document

    @property
    def document_type(self) -> DocumentType:
        return self._document.document_type

    @property
    def id(self) -> UUID:
        return self._document.id

    @property
    def items(self) -> list[LineItem]:
        return list(self._document.items)

    @property
    def has_items(self) -> bool:
        return bool(self._document.items)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def is_persisted(self) -> bool:
        return self._persisted

    @property
    def totals(self) -> DocumentTotals:
        return self._document.derived_totals()

    def add_item(self, product: ProductInput | Mapping[str, Any]) -> LineItem:
        product = parse_input(ProductInput, product)
        item = LineItem(
            description=product.description or product.name,
            quantity=product.quantity,
            unit_price=Money(product.price),
            name=product.name,
            discount_percent=product.discount_percent,
            taxable=product.taxable,
            our_cost=Money(product.cost),
        )
        self._document.items.append(item)
        self._changed()
        logger.debug("line_item_added", document_id=str(self.id), item_id=str(item.id))
        return item

    def remove_item(self, item_id: UUID) -> LineItem:
        index = self._index_of(item_id)
        item = self._document.items.pop(index)
        self._changed()
        return item

    def update_item(
        self, item_id: UUID, patch: LineItemPatch | Mapping[str, Any]
    ) -> LineItem:
        patch = parse_input(LineItemPatch, patch)
        index = self._index_of(item_id)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        for money_field in ("unit_price", "our_cost"):
            if money_field in changes:
                changes[money_field] = Money(changes[money_field])
        updated = replace(self._document.items[index], **changes)
        self._document.items[index] = updated
        self._changed()
        return updated

    def set_tax_rate(self, tax_rate: Decimal | int | str) -> None:
        rate = to_decimal(tax_rate)
        if not Decimal("0") <= rate <= Decimal("100"):
            raise InvalidLineItemError("tax_rate", rate, "must be between 0 and 100")
        self._document.tax_rate = rate
        self._changed()

    def set_notes(self, notes: str) -> None:
        self._document.notes = notes.strip()
        self._mark_dirty()

    def append_notes(self, text: str) -> bool:
        """Append a paragraph to the notes unless it is already there."""
        text = text.strip()
        if not text or text in self._document.notes:
            return False
        if self._document.notes:
            self._document.notes = f"{self._document.notes}\n\n{text}"
        else:
            self._document.notes = text
        self._mark_dirty()
        return True

    def merge_upsells(self, upsells: Iterable[UpsellItem]) -> list[LineItem]:
        """Replace lines from any earlier upsell merge with the given selection."""
        kept = [item for item in self._document.items if item.source_upsell_id is None]
        added = [upsell.to_line_item() for upsell in upsells]
        previous = {item.source_upsell_id for item in self._document.items} - {None}
        if previous == {item.source_upsell_id for item in added}:
            return []
        self._document.items = kept + added
        self._changed()
        return added

    def generate_number(self) -> str:
        if self._document.number:
            return self._document.number
        number, provisional = allocate_number(
            self._sequence, self._settings, self.document_type
        )
        self._document.number = number
        self._document.number_is_provisional = provisional
        self._mark_dirty()
        return number

    def save(self, status: Any = None) -> Document:
        """Persist the draft.

        Saving an unchanged, already persisted draft does nothing. A draft
        whose earlier insert reached the store but whose response was lost is
        recognised by id and updated rather than inserted twice.
        """
        document = self._document
        if status is not None and document.status != status:  # type: ignore[attr-defined]
            document.status = type(document.status)(status)  # type: ignore[attr-defined]
            self._dirty = True

        if self._persisted and not self._dirty:
            return document

        self.generate_number()
        document.recalculate()
        if isinstance(document, Invoice) and document.has_ledger_activity:
            document.apply_ledger(document.amount_paid)
        document.touch()

        created = False
        try:
            if self._persisted or self._repository.get(self.document_type, document.id):
                self._repository.update(document)
            else:
                document = self._insert(document)
                created = True
        except PersistenceError as e:
            logger.error(
                "document_save_failed",
                document_type=self.document_type.value,
                document_id=str(self.id),
                error=str(e),
            )
            raise

        self._document = document
        self._persisted = True
        self._dirty = False
        logger.info(
            "document_saved",
            document_type=self.document_type.value,
            document_id=str(document.id),
            number=document.number,
            total=str(document.total),
            created=created,
        )
        self._history.document_saved(document, created)
        return document

    def reload(self) -> Document:
        """Replace the in-memory document with the stored one.

        Used after another service (dispatcher, ledger, conversion) has
        written the document, so a later save does not overwrite its changes.
        """
        document = self._repository.get(self.document_type, self.id)
        if document is None:
            raise DocumentNotFoundError(self.document_type, self.id)
        self._document = document
        self._persisted = True
        self._dirty = False
        return document

    def _insert(self, document: Document) -> Document:
        try:
            return self._repository.add(document)
        except DuplicateDocumentNumberError:
            existing = self._repository.get_by_number(self.document_type, document.number)
            if existing is not None and existing.id == document.id:
                return existing
            raise

    def _index_of(self, item_id: UUID) -> int:
        for index, item in enumerate(self._document.items):
            if item.id == item_id:
                return index
        raise LineItemNotFoundError(item_id)

    def _changed(self) -> None:
        self._document.recalculate()
        self._mark_dirty()

    def _mark_dirty(self) -> None:
        self._document.touch()
        self._dirty = True


def reconcile_provisional_numbers(
    repository: DocumentRepository,
    sequence: SequenceGenerator,
    document_type: DocumentType,
) -> list[tuple[str, str]]:
    """Give documents saved under a fallback number an authoritative one.

    Returns (old, new) number pairs. Stops at the first sequence failure;
    whatever was renumbered before it stays renumbered.
    """
    renumbered: list[tuple[str, str]] = []
    for document in repository.list_provisional(document_type):
        try:
            new_number = sequence.next_number(document.document_type.value)
        except Exception as e:
            logger.warning(
                "provisional_reconcile_stopped",
                document_type=document.document_type.value,
                error=str(e),
            )
            break
        old_number = document.number
        document.number = new_number
        document.number_is_provisional = False
        document.touch()
        repository.update(document)
        renumbered.append((old_number, new_number))
        logger.info(
            "provisional_number_reconciled",
            document_id=str(document.id),
            old_number=old_number,
            new_number=new_number,
        )
    return renumbered
