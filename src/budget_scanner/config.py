# Runtime configuration for Budget Scanner
# - reads .env + environment once
# - builds the OCR / LLM gateways the pipeline is given

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

OCR_PROVIDERS = ("vision", "proxy", "tesseract")
LLM_PROVIDERS = ("openai", "anthropic", "proxy")
UNMATCHED_POLICIES = ("skip", "abort")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
    "proxy": "gpt-4o-mini",
}


def _choice(name: str, value: str, allowed: tuple) -> str:
    value = value.strip().lower()
    if value not in allowed:
        raise ValueError(f"{name} must be one of {', '.join(allowed)} (got {value!r})")
    return value


@dataclass(frozen=True)
class Settings:
    db_path: str = "budget.db"
    ocr_provider: str = "vision"
    vision_api_key: Optional[str] = None
    ocr_proxy_url: str = "http://127.0.0.1:8000"
    llm_provider: str = "openai"
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    llm_model: str = DEFAULT_MODELS["openai"]
    llm_max_tokens: int = 2048
    llm_proxy_url: str = "http://127.0.0.1:8000"
    request_timeout: float = 60.0
    image_max_edge: int = 1000
    image_quality: int = 70
    on_unmatched_category: str = "skip"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        llm_provider = _choice("LLM_PROVIDER", os.getenv("LLM_PROVIDER", "openai"), LLM_PROVIDERS)

        return cls(
            db_path=os.getenv("BUDGET_DB_PATH", "budget.db"),
            ocr_provider=_choice("OCR_PROVIDER", os.getenv("OCR_PROVIDER", "vision"), OCR_PROVIDERS),
            vision_api_key=os.getenv("GOOGLE_CLOUD_VISION_API_KEY"),
            ocr_proxy_url=os.getenv("OCR_PROXY_URL", "http://127.0.0.1:8000"),
            llm_provider=llm_provider,
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            llm_model=os.getenv("LLM_MODEL") or DEFAULT_MODELS[llm_provider],
            llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2048")),
            llm_proxy_url=os.getenv("LLM_PROXY_URL", "http://127.0.0.1:8000"),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "60")),
            image_max_edge=int(os.getenv("IMAGE_MAX_EDGE", "1000")),
            image_quality=int(os.getenv("IMAGE_QUALITY", "70")),
            on_unmatched_category=_choice(
                "ON_UNMATCHED_CATEGORY",
                os.getenv("ON_UNMATCHED_CATEGORY", "skip"),
                UNMATCHED_POLICIES,
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def build_ocr_gateway(settings: Settings):
    from budget_scanner.tools.receipt_ocr import (
        ProxiedVisionOCRGateway,
        TesseractOCRGateway,
        VisionOCRGateway,
    )

    if settings.ocr_provider == "vision":
        return VisionOCRGateway(api_key=settings.vision_api_key, timeout=settings.request_timeout)
    if settings.ocr_provider == "proxy":
        return ProxiedVisionOCRGateway(base_url=settings.ocr_proxy_url, timeout=settings.request_timeout)
    return TesseractOCRGateway()


def build_llm_gateway(settings: Settings):
    from budget_scanner.tools.llm import AnthropicLLMGateway, OpenAILLMGateway, ProxiedLLMGateway

    if settings.llm_provider == "openai":
        return OpenAILLMGateway(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.request_timeout,
        )
    if settings.llm_provider == "anthropic":
        return AnthropicLLMGateway(
            api_key=settings.anthropic_api_key,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.request_timeout,
        )
    return ProxiedLLMGateway(
        base_url=settings.llm_proxy_url,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.request_timeout,
    )
