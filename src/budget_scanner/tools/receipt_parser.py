"""
Turns messy OCR text into a structured receipt.

- builds the extraction prompt sent to the LLM
- recovers the JSON object from the model's reply
- cleans prices and category names before they reach the ledger
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, Iterable, Iterator, Optional

from budget_scanner.domain.errors import ItemValidationError, ResponseFormatError
from budget_scanner.domain.models import ReceiptItem, StructuredReceipt

_price_junk_re = re.compile(r"[^0-9.\-]+")
_leading_number_re = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_edge_quote_re = re.compile(r'^"|"$')


def build_receipt_prompt(ocr_text: str, category_names: Iterable[str]) -> str:
    names = '", "'.join(category_names)

    return f"""From the following receipt text, extract the store name, the final total, and a list of all items. For each item, provide its description, price, and classify it into one of the available categories.

Please return ONLY a valid JSON object. Do not include any other text, explanations, or markdown formatting.

The JSON object must have these keys: "storeName", "total", "items".
The "items" key must hold an array of objects, where each object has "description", "price", and "category" keys.
- The "description" should be a short, clean name for the item.
- The "price" must be a number (e.g., 12.99).
- The "category" must be one of the provided category names.
- Explicitly look for a "Tax" or "Sales Tax" line item and classify it under the "Tax" category.

If a value cannot be found, use null. For item categorization, use "Other" if no other category fits.

Available Categories:
"{names}"

Receipt Text:
{ocr_text}"""


def iter_json_objects(text: str) -> Iterator[str]:
    """
    Yield every balanced {...} substring, outermost first, left to right.

    Braces inside JSON strings are ignored, so prose like "use {braces}"
    before the payload only costs one failed candidate.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end is not None:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def recover_json(reply: str, ocr_text: Optional[str] = None) -> Dict[str, Any]:
    text = (reply or "").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    # double-encoded reply: a JSON string holding the object
    if isinstance(data, str):
        text = data
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None

    if isinstance(data, dict):
        return data

    for candidate in iter_json_objects(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    if "{" not in text:
        raise ResponseFormatError("The AI's response was not in the expected format.", ocr_text=ocr_text, reply=reply)
    raise ResponseFormatError(
        "Could not parse the structured data from the AI's response.", ocr_text=ocr_text, reply=reply
    )


def to_structured_receipt(data: Dict[str, Any], ocr_text: Optional[str] = None) -> StructuredReceipt:
    items = data.get("items")

    if isinstance(items, list):
        parsed = [
            ReceiptItem(
                description=it.get("description"),
                price=it.get("price"),
                category=it.get("category"),
            )
            for it in items
            if isinstance(it, dict)
        ]
    elif data.get("category"):
        # older single-classification shape: the whole receipt is one item
        parsed = [ReceiptItem(description=data.get("storeName"), price=data.get("total"), category=data["category"])]
    else:
        raise ResponseFormatError("AI response did not include a valid 'items' array.", ocr_text=ocr_text)

    return StructuredReceipt(
        store_name=data.get("storeName"),
        total=data.get("total"),
        items=parsed,
        raw=data,
    )


def parse_price(value: Any) -> float:
    """
    Keep only digits, '.' and '-' then read the leading number.

    "$1,299.00" -> 1299.0 and "12.34.56" -> 12.34; anything without a
    leading number (e.g. "N/A") comes back as NaN.
    """
    cleaned = _price_junk_re.sub("", str(value))
    m = _leading_number_re.match(cleaned)
    if not m:
        return math.nan
    return float(m.group(0))


def clean_category_name(value: Any) -> str:
    return _edge_quote_re.sub("", str(value)).strip()


def validate_item(item: ReceiptItem) -> tuple[str, float, str]:
    """
    Return (category, amount, item name) or raise ItemValidationError.
    """
    if not item.category or not item.price:
        raise ItemValidationError(f'Item "{item.description}" is missing a category or price.')

    amount = parse_price(item.price)
    if not math.isfinite(amount):
        raise ItemValidationError(f'Invalid amount for item "{item.description}": {item.price}')

    category = clean_category_name(item.category)
    if not category:
        raise ItemValidationError(f'Item "{item.description}" has an empty category.')

    name = str(item.description).strip() if item.description else ""
    return category, amount, name or "Scanned Item"
