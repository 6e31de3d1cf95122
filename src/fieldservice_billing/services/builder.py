"""Step-by-step estimate and invoice creation.

Estimates go items -> upsell -> send; invoices go items -> upsell -> preview.
Each forward step persists the draft before the step changes, so the step
shown to the user never runs ahead of what is stored.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from fieldservice_billing.domain.documents import Document, UpsellItem
from fieldservice_billing.domain.value_objects import DeliveryChannel, DocumentType
from fieldservice_billing.exceptions import (
    EmptyDocumentError,
    InvalidStepTransitionError,
    ValidationError,
    WorkflowError,
)
from fieldservice_billing.logging_config import get_logger
from fieldservice_billing.schemas import NotificationTarget, PaymentRequest
from fieldservice_billing.services.conversion import DocumentConversionService
from fieldservice_billing.services.dispatch import SendDispatcher
from fieldservice_billing.services.drafts import DocumentDraft
from fieldservice_billing.services.guards import OperationGuard
from fieldservice_billing.services.interfaces import (
    BuilderStep,
    CloseOutcome,
    ConversionResult,
    LedgerResult,
    SendResult,
)
from fieldservice_billing.services.payments import PaymentLedgerService

logger = get_logger(__name__)


class DocumentBuilder:
    def __init__(
        self,
        draft: DocumentDraft,
        upsell_catalog: Iterable[UpsellItem] = (),
        dispatcher: SendDispatcher | None = None,
        ledger: PaymentLedgerService | None = None,
        conversion: DocumentConversionService | None = None,
        guard: OperationGuard | None = None,
    ) -> None:
        self._draft = draft
        self._catalog = {upsell.id: upsell for upsell in upsell_catalog}
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._conversion = conversion
        self._guard = guard or OperationGuard()
        self._step = BuilderStep.ITEMS
        self._closed = False
        self._upsell_notes = ""
        # Reopened drafts start with the upsells they already carry.
        self._selected: set[UUID] = {
            item.source_upsell_id
            for item in draft.items
            if item.source_upsell_id in self._catalog
        }

    @property
    def draft(self) -> DocumentDraft:
        return self._draft

    @property
    def document(self) -> Document:
        return self._draft.document

    @property
    def step(self) -> BuilderStep:
        return self._step

    @property
    def terminal_step(self) -> BuilderStep:
        if self._draft.document_type == DocumentType.ESTIMATE:
            return BuilderStep.SEND
        return BuilderStep.PREVIEW

    @property
    def upsell_catalog(self) -> list[UpsellItem]:
        return [
            UpsellItem(
                title=upsell.title,
                price=upsell.price,
                id=upsell.id,
                description=upsell.description,
                category=upsell.category,
                selected=upsell.id in self._selected,
            )
            for upsell in self._catalog.values()
        ]

    @property
    def selected_upsells(self) -> list[UpsellItem]:
        return [upsell for upsell in self.upsell_catalog if upsell.selected]

    @property
    def upsell_notes(self) -> str:
        return self._upsell_notes

    def continue_to_upsell(self) -> Document:
        self._require_step("continue to upsell", BuilderStep.ITEMS)
        if not self._draft.has_items:
            raise EmptyDocumentError()
        document = self._save()
        self._move_to(BuilderStep.UPSELL)
        return document

    def toggle_upsell(self, upsell_id: UUID) -> bool:
        """Flip the selection of a catalog upsell. Nothing is saved until finalize."""
        self._require_step("select upsell", BuilderStep.UPSELL)
        if upsell_id not in self._catalog:
            raise ValidationError(
                f"Unknown upsell: {upsell_id}", context={"upsell_id": str(upsell_id)}
            )
        if upsell_id in self._selected:
            self._selected.discard(upsell_id)
            return False
        self._selected.add(upsell_id)
        return True

    def set_upsell_notes(self, notes: str) -> None:
        self._require_step("edit upsell notes", BuilderStep.UPSELL)
        self._upsell_notes = notes.strip()

    def continue_to_finalize(self) -> Document:
        self._require_step("finalize", BuilderStep.UPSELL)
        self._draft.merge_upsells(self.selected_upsells)
        if self._upsell_notes:
            self._draft.append_notes(self._upsell_notes)
        document = self._save()
        self._move_to(self.terminal_step)
        return document

    def go_back(self) -> BuilderStep:
        self._require_open("go back")
        if self._step == BuilderStep.UPSELL:
            self._move_to(BuilderStep.ITEMS)
        elif self._step.is_terminal:
            self._move_to(BuilderStep.UPSELL)
        else:
            raise InvalidStepTransitionError(self._step.value, "go back")
        return self._step

    def send(
        self, channel: DeliveryChannel, recipient: str, client_name: str = ""
    ) -> SendResult:
        self._require_step("send", self.terminal_step)
        if self._dispatcher is None:
            raise WorkflowError("No dispatcher configured for sending")
        self._save()
        result = self._dispatcher.send(
            self._draft.document_type, self._draft.id, channel, recipient, client_name
        )
        self._draft.reload()
        return result

    def record_payment(
        self,
        request: PaymentRequest | Mapping[str, Any],
        notify: NotificationTarget | Mapping[str, Any] | None = None,
    ) -> LedgerResult:
        if self._draft.document_type != DocumentType.INVOICE:
            raise InvalidStepTransitionError(self._step.value, "record payment on an estimate")
        self._require_step("record payment", BuilderStep.PREVIEW)
        if self._ledger is None:
            raise WorkflowError("No payment ledger configured")
        self._save()
        result = self._ledger.record_payment(self._draft.id, request, notify)
        self._draft.reload()
        return result

    def convert(self) -> ConversionResult:
        if self._draft.document_type != DocumentType.ESTIMATE:
            raise InvalidStepTransitionError(self._step.value, "convert an invoice")
        self._require_step("convert", BuilderStep.SEND)
        if self._conversion is None:
            raise WorkflowError("No conversion service configured")
        self._save()
        result = self._conversion.convert_estimate_to_invoice(self._draft.id)
        self._draft.reload()
        return result

    def close(self, save_as_draft: bool | None = None) -> CloseOutcome:
        """Leave the builder.

        An untouched new document is dropped silently. Unsaved work needs an
        explicit save_as_draft decision; without one the caller gets
        CONFIRMATION_REQUIRED and nothing happens.
        """
        self._require_open("close")
        draft = self._draft
        if not draft.is_persisted and not draft.has_items:
            outcome = CloseOutcome.DISCARDED
        elif draft.is_persisted and not draft.is_dirty:
            outcome = CloseOutcome.CLOSED
        elif save_as_draft is None:
            return CloseOutcome.CONFIRMATION_REQUIRED
        elif save_as_draft:
            self._save()
            outcome = CloseOutcome.SAVED_AS_DRAFT
        else:
            outcome = CloseOutcome.DISCARDED

        self._closed = True
        logger.info(
            "builder_closed",
            document_id=str(draft.id),
            step=self._step.value,
            outcome=outcome.value,
        )
        return outcome

    def _save(self) -> Document:
        with self._guard.hold("save", self._draft.id):
            return self._draft.save()

    def _move_to(self, step: BuilderStep) -> None:
        logger.debug(
            "builder_step_changed",
            document_id=str(self._draft.id),
            from_step=self._step.value,
            to_step=step.value,
        )
        self._step = step

    def _require_open(self, action: str) -> None:
        if self._closed:
            raise InvalidStepTransitionError("closed", action)

    def _require_step(self, action: str, step: BuilderStep) -> None:
        self._require_open(action)
        if self._step != step:
            raise InvalidStepTransitionError(self._step.value, action)
