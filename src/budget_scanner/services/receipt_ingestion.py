"""
Receipt pipeline: image -> OCR text -> LLM JSON -> ledger updates.

notes:
- OCR, LLM and JSON recovery failures abort the run before anything is written.
  LLM and JSON failures keep the OCR text on the raised error.
- Store write failures (PersistenceError) abort the run; no callbacks run.
- Bad items (missing fields, non-numeric price) are skipped one by one, so a
  receipt can be applied partially.
- Items are applied in receipt order, one at a time.
- The budget refresh callback runs once, after the whole receipt.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Protocol

from budget_scanner.domain.errors import CategoryNotFoundError, ItemValidationError, LlmError
from budget_scanner.domain.models import AppliedItem, ReceiptResult, SkippedItem
from budget_scanner.tools.receipt_ocr import prepare_image
from budget_scanner.tools.receipt_parser import (
    build_receipt_prompt,
    recover_json,
    to_structured_receipt,
    validate_item,
)

logger = logging.getLogger(__name__)


class OcrGateway(Protocol):
    def extract_text(self, image_bytes: bytes) -> str: ...


class LlmGateway(Protocol):
    def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str: ...


# (category name, amount, item name) -> persisted item; raises CategoryNotFoundError
AddSpendingItem = Callable[[str, float, str], object]


class ReceiptPipeline:
    def __init__(
        self,
        ocr: OcrGateway,
        llm: LlmGateway,
        on_unmatched_category: str = "skip",
        resize: bool = True,
        max_edge: int = 1000,
        quality: int = 70,
    ):
        if on_unmatched_category not in ("skip", "abort"):
            raise ValueError(f"on_unmatched_category must be 'skip' or 'abort', got {on_unmatched_category!r}")
        self.ocr = ocr
        self.llm = llm
        self.on_unmatched_category = on_unmatched_category
        self.resize = resize
        self.max_edge = max_edge
        self.quality = quality

    def extract_text(self, image_bytes: bytes) -> str:
        if self.resize:
            image_bytes = prepare_image(image_bytes, max_edge=self.max_edge, quality=self.quality)
        return self.ocr.extract_text(image_bytes)

    def process(
        self,
        image_bytes: bytes,
        category_names: Iterable[str],
        add_spending_item: AddSpendingItem,
        on_budget_refresh: Optional[Callable[[], object]] = None,
        on_receipt_processed: Optional[Callable[[List[AppliedItem]], object]] = None,
    ) -> ReceiptResult:
        # Step 1: OCR
        text = self.extract_text(image_bytes)
        logger.info("OCR extracted %d characters", len(text))
        logger.debug("OCR text:\n%s", text)

        # Step 2 + 3: LLM extraction and JSON recovery
        prompt = build_receipt_prompt(text, category_names)
        try:
            reply = self.llm.complete(prompt)
        except LlmError as e:
            raise LlmError(str(e), ocr_text=text) from e
        logger.debug("LLM raw reply: %s", reply)

        data = recover_json(reply, ocr_text=text)
        receipt = to_structured_receipt(data, ocr_text=text)
        result = ReceiptResult(ocr_text=text, receipt=receipt)

        # Step 4: per-item ledger updates
        for item in receipt.items:
            try:
                category, amount, item_name = validate_item(item)
            except ItemValidationError as e:
                logger.warning("Skipping receipt item: %s", e)
                result.skipped.append(SkippedItem(item.description, item.price, item.category, str(e)))
                continue

            try:
                add_spending_item(category, amount, item_name)
            except CategoryNotFoundError as e:
                if self.on_unmatched_category == "abort":
                    raise
                logger.warning("Skipping receipt item %r: %s", item_name, e)
                result.skipped.append(SkippedItem(item.description, item.price, item.category, str(e)))
                continue

            result.applied.append(AppliedItem(category_name=category, amount=amount, item_name=item_name))

        logger.info(
            "Receipt from %s: %d items applied (%.2f), %d skipped",
            receipt.store_name or "unknown store",
            len(result.applied),
            result.total_applied,
            len(result.skipped),
        )

        if on_receipt_processed is not None and result.applied:
            on_receipt_processed(result.applied)

        if on_budget_refresh is not None:
            on_budget_refresh()

        return result
