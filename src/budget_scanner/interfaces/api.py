# budget_scanner/interfaces/api.py
# FastAPI backend for Budget Scanner
# - receipt image -> OCR -> LLM -> category totals
# - categories, spending items, manual entry
# - budgets + progress / alerts
# - /api/vision and /api/llm proxies (API keys stay server-side)

from __future__ import annotations

import logging
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, Iterator, List

from fastapi import Body, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from budget_scanner.agent.categorizer import seed_default_categories
from budget_scanner.agent.tips import generate_spending_tips
from budget_scanner.config import Settings, build_llm_gateway, build_ocr_gateway, configure_logging
from budget_scanner.data.db import BudgetDB
from budget_scanner.domain.errors import (
    BudgetNotFoundError,
    BudgetScannerError,
    CategoryNotFoundError,
    DuplicateCategoryError,
    LlmError,
    OcrError,
    PersistenceError,
    ResponseFormatError,
)
from budget_scanner.services.ledger import Ledger
from budget_scanner.services.receipt_ingestion import ReceiptPipeline
from budget_scanner.tools.llm import build_payload, unwrap_reply
from budget_scanner.tools.receipt_ocr import VisionOCRGateway

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Scanner API", version="0.1.0")

# Allow local Streamlit dev server(s)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8501", "http://127.0.0.1:8501"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# Pydantic models
# ----------------------------
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1)


class CategoryTotalIn(BaseModel):
    amount: float = Field(..., allow_inf_nan=False)


class CategoryAdjustIn(BaseModel):
    delta: float = Field(..., allow_inf_nan=False)


class ManualEntryIn(BaseModel):
    category: str
    amount: float = Field(..., allow_inf_nan=False)
    name: str = Field(..., min_length=1)


class BudgetIn(BaseModel):
    category_id: int
    budget_amount: float = Field(..., ge=0, allow_inf_nan=False)


class BudgetUpdateIn(BaseModel):
    budget_amount: float = Field(..., ge=0, allow_inf_nan=False)


class VisionProxyIn(BaseModel):
    imageBase64: str


# ----------------------------
# Dependencies
# ----------------------------
@lru_cache
def get_settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings


def get_db(settings: Settings = Depends(get_settings)) -> Iterator[BudgetDB]:
    db = BudgetDB(settings.db_path)
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    # Auth lives in front of this service; we only need the owning user id.
    return x_user_id


def get_ledger(db: BudgetDB = Depends(get_db), user_id: str = Depends(get_user_id)) -> Ledger:
    return Ledger(db, user_id)


def get_llm(settings: Settings = Depends(get_settings)):
    return build_llm_gateway(settings)


def get_pipeline(settings: Settings = Depends(get_settings), llm=Depends(get_llm)) -> ReceiptPipeline:
    return ReceiptPipeline(
        ocr=build_ocr_gateway(settings),
        llm=llm,
        on_unmatched_category=settings.on_unmatched_category,
        max_edge=settings.image_max_edge,
        quality=settings.image_quality,
    )


def get_vision(settings: Settings = Depends(get_settings)) -> VisionOCRGateway:
    return VisionOCRGateway(api_key=settings.vision_api_key, timeout=settings.request_timeout)


# ----------------------------
# Error handlers
# ----------------------------
_STATUS = {
    OcrError: 502,
    LlmError: 502,
    ResponseFormatError: 422,
    CategoryNotFoundError: 404,
    BudgetNotFoundError: 404,
    DuplicateCategoryError: 409,
    PersistenceError: 500,
}


@app.exception_handler(BudgetScannerError)
def budget_scanner_error_handler(request: Request, exc: BudgetScannerError):
    status = next((code for kind, code in _STATUS.items() if isinstance(exc, kind)), 500)
    content: Dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
    # keep the OCR text so the user can still read the receipt
    ocr_text = getattr(exc, "ocr_text", None)
    if ocr_text is not None:
        content["ocr_text"] = ocr_text
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=status, content=content)


@app.exception_handler(ValueError)
def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": "ValueError", "detail": str(exc)})


# ----------------------------
# Routes
# ----------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/categories")
def categories(ledger: Ledger = Depends(get_ledger)):
    return [asdict(c) for c in ledger.categories()]


@app.post("/categories", status_code=201)
def add_category(payload: CategoryIn, ledger: Ledger = Depends(get_ledger)):
    return asdict(ledger.db.add_category(ledger.user_id, payload.name.strip()))


@app.post("/categories/defaults")
def add_default_categories(ledger: Ledger = Depends(get_ledger)):
    added = seed_default_categories(ledger.db, ledger.user_id)
    return {"added": [c.name for c in added]}


@app.put("/categories/{category_id}/total")
def set_category_total(category_id: int, payload: CategoryTotalIn, ledger: Ledger = Depends(get_ledger)):
    return asdict(ledger.db.set_category_total(ledger.user_id, category_id, payload.amount))


@app.post("/categories/{category_id}/adjust")
def adjust_category_total(category_id: int, payload: CategoryAdjustIn, ledger: Ledger = Depends(get_ledger)):
    return asdict(ledger.db.adjust_category_total(ledger.user_id, category_id, payload.delta))


@app.post("/categories/reset")
def reset_categories(ledger: Ledger = Depends(get_ledger)):
    return {"reset": ledger.db.reset_all_totals(ledger.user_id)}


@app.get("/categories/{category_id}/items")
def category_items(category_id: int, ledger: Ledger = Depends(get_ledger)):
    ledger.db.get_category(ledger.user_id, category_id)
    return [asdict(s) for s in ledger.db.fetch_spending_items(ledger.user_id, category_id)]


@app.get("/spending-items")
def spending_items(ledger: Ledger = Depends(get_ledger)):
    return [asdict(s) for s in ledger.db.fetch_all_spending_items(ledger.user_id)]


@app.post("/spending-items", status_code=201)
def add_manual_entry(payload: ManualEntryIn, ledger: Ledger = Depends(get_ledger)):
    item = ledger.add_spending_item(payload.category, payload.amount, payload.name.strip())
    return asdict(item)


@app.get("/budgets")
def budgets(ledger: Ledger = Depends(get_ledger)):
    return [asdict(b) for b in ledger.db.fetch_active_budgets(ledger.user_id)]


@app.post("/budgets", status_code=201)
def create_budget(payload: BudgetIn, ledger: Ledger = Depends(get_ledger)):
    return asdict(ledger.db.create_budget(ledger.user_id, payload.category_id, payload.budget_amount))


@app.put("/budgets/{budget_id}")
def update_budget(budget_id: int, payload: BudgetUpdateIn, ledger: Ledger = Depends(get_ledger)):
    return asdict(ledger.db.update_budget(ledger.user_id, budget_id, payload.budget_amount))


@app.delete("/budgets/{budget_id}")
def delete_budget(budget_id: int, ledger: Ledger = Depends(get_ledger)):
    ledger.db.delete_budget(ledger.user_id, budget_id)
    return {"ok": True}


@app.get("/budgets/progress")
def budget_progress(ledger: Ledger = Depends(get_ledger)):
    return [asdict(p) for p in ledger.budget_progress()]


@app.get("/budgets/alerts")
def budget_alerts(ledger: Ledger = Depends(get_ledger)):
    return [asdict(p) for p in ledger.budget_alerts()]


@app.post("/receipts/process")
async def process_receipt(
    file: UploadFile = File(...),
    ledger: Ledger = Depends(get_ledger),
    pipeline: ReceiptPipeline = Depends(get_pipeline),
):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")

    refreshed: List[Any] = []
    # OCR, LLM and sqlite calls all block; keep them off the event loop
    result = await run_in_threadpool(
        pipeline.process,
        data,
        ledger.category_names(),
        ledger.add_spending_item,
        on_budget_refresh=lambda: refreshed.extend(ledger.budget_progress()),
    )

    return {
        "ocr_text": result.ocr_text,
        "store_name": result.receipt.store_name,
        "total": result.receipt.total,
        "structured": result.receipt.raw,
        "applied": [asdict(a) for a in result.applied],
        "skipped": [asdict(s) for s in result.skipped],
        "total_applied": result.total_applied,
        "budget_progress": [asdict(p) for p in refreshed],
    }


@app.post("/tips")
def spending_tips(ledger: Ledger = Depends(get_ledger), llm=Depends(get_llm)):
    return {"tips": generate_spending_tips(llm, ledger.categories(), ledger.budget_progress())}


# ----------------------------
# Proxies
# ----------------------------
@app.post("/api/vision")
def vision_proxy(payload: VisionProxyIn, vision: VisionOCRGateway = Depends(get_vision)):
    return vision.annotate(payload.imageBase64)


@app.post("/api/llm")
def llm_proxy(payload: Dict[str, Any] = Body(...), settings: Settings = Depends(get_settings), llm=Depends(get_llm)):
    if not hasattr(llm, "create"):
        raise HTTPException(status_code=501, detail="LLM proxy needs LLM_PROVIDER=openai or anthropic on the server.")

    # simple {prompt} body or a full message payload
    if isinstance(payload.get("prompt"), str):
        request_payload = build_payload(payload["prompt"], settings.llm_model, 256)
    elif isinstance(payload.get("messages"), list):
        # the server's provider decides the model
        request_payload = {**payload, "model": settings.llm_model}
    else:
        raise HTTPException(status_code=400, detail="Expected {prompt} or {model, max_tokens, messages}.")

    raw = llm.create(request_payload)
    return {**raw, "tip": unwrap_reply(llm.reply_text(raw))}
