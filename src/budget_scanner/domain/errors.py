"""
Error types raised by the receipt pipeline and the ledger store.

OCR, LLM and response-format failures abort a pipeline run before anything
is written; once OCR has succeeded they carry the extracted text. Item
validation failures never leave the pipeline: they become skipped items.
"""

from __future__ import annotations

from typing import Optional


class BudgetScannerError(Exception):
    pass


class OcrError(BudgetScannerError):
    """The OCR gateway failed or found no text."""


class LlmError(BudgetScannerError):
    """The LLM call itself failed (transport, auth, provider error)."""

    def __init__(self, message: str, ocr_text: Optional[str] = None):
        super().__init__(message)
        self.ocr_text = ocr_text


class ResponseFormatError(BudgetScannerError):
    """The LLM reply could not be turned into a receipt object."""

    def __init__(self, message: str, ocr_text: Optional[str] = None, reply: Optional[str] = None):
        super().__init__(message)
        self.ocr_text = ocr_text
        self.reply = reply


class ItemValidationError(BudgetScannerError):
    """A single receipt item is missing a field or has a non-numeric price."""


class CategoryNotFoundError(BudgetScannerError):
    def __init__(self, category: object):
        super().__init__(f'Could not find the category "{category}" in the database.')
        self.category = category


class DuplicateCategoryError(BudgetScannerError):
    def __init__(self, name: str):
        super().__init__(f'The category "{name}" already exists.')
        self.name = name


class BudgetNotFoundError(BudgetScannerError):
    def __init__(self, budget_id: int):
        super().__init__(f"Could not find budget {budget_id}.")
        self.budget_id = budget_id


class PersistenceError(BudgetScannerError):
    """A store write failed. The message is the store's own."""
