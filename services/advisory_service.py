"""
Advisory Service - textual digest of a run and the text-generation client.

Provides:
- build_advisory_digest(config, result) -> str
- is_advisory_configured() -> bool
- request_advisory(config, result, question=None) -> str | None

The returned prose is passed through verbatim for display and is never fed
back into the engine.
"""

import os
import logging
from typing import Optional

import httpx
from dotenv import load_dotenv

from simulation_models import CalculationConfig, SimulationResult, TradeMode

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration
# ============================================================================

ADVISORY_API_URL = os.getenv("ADVISORY_API_URL", "")
ADVISORY_API_KEY = os.getenv("ADVISORY_API_KEY", "")
ADVISORY_MODEL = os.getenv("ADVISORY_MODEL", "")
ADVISORY_TIMEOUT = float(os.getenv("ADVISORY_TIMEOUT", "30"))

SYSTEM_PROMPT = (
    "你是一名熟悉西藏园区税收政策和供应链金融的财税顾问。"
    "根据以下贸易链路测算结果，给出合规风险、定价和账期方面的建议。"
)


def is_advisory_configured() -> bool:
    """Check if the text-generation endpoint is configured."""
    return bool(ADVISORY_API_URL) and bool(ADVISORY_API_KEY)


# ============================================================================
# DIGEST
# ============================================================================

def build_advisory_digest(config: CalculationConfig, result: SimulationResult) -> str:
    """
    Summarize a run as plain text for the advisory request.

    Args:
        config: Configuration the run was computed from
        result: Simulation result

    Returns:
        Multi-line digest: chain settings, then one line per entity
    """
    mode = "代销" if config.retailer.trade_mode == TradeMode.CONSIGNMENT else "经销"
    lines = [
        f"链路: {' -> '.join(entity.name for entity in result.entities())}",
        f"渠道模式: {mode}",
        f"资方年化利率: {config.settings.funder_interest_rate}%",
        f"平台运营成本率: {config.settings.platform_operational_cost_percent}%",
        "",
    ]

    for entity in result.entities():
        lines.append(
            f"- {entity.role} {entity.name} ({entity.region.label}, {entity.tax_identity.label}): "
            f"销售额(不含税) {entity.out_price_excl_tax:.2f}, "
            f"应缴增值税 {entity.vat_payable:.2f}, 附加税 {entity.surcharges:.2f}, "
            f"所得税 {entity.income_tax:.2f}, 税返 {entity.tax_refunds:.2f}, "
            f"资金成本 {entity.finance_cost:.2f}, 净利 {entity.net_profit:.2f}"
        )
        for warning in entity.warnings:
            lines.append(f"  ! {warning}")

    lines.append("")
    lines.append(
        f"合计: 应缴增值税 {result.total_vat_payable:.2f}, "
        f"附加税 {result.total_surcharges:.2f}, 所得税 {result.total_income_tax:.2f}, "
        f"税返 {result.total_tax_refunds:.2f}"
    )
    return "\n".join(lines)


# ============================================================================
# API CALL (internal)
# ============================================================================

def _call_advisory_api(prompt: str) -> dict:
    """POST a chat-style request to the advisory endpoint."""
    if not is_advisory_configured():
        raise ValueError("ADVISORY_API_URL / ADVISORY_API_KEY not configured")

    headers = {
        "Authorization": f"Bearer {ADVISORY_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
    }
    if ADVISORY_MODEL:
        payload["model"] = ADVISORY_MODEL

    response = httpx.post(ADVISORY_API_URL, json=payload, headers=headers, timeout=ADVISORY_TIMEOUT)
    response.raise_for_status()
    return response.json()


def extract_advisory_text(response_data: dict) -> Optional[str]:
    """Pull generated text from a chat-completions or plain {"text": ...} response."""
    choices = response_data.get("choices") or []
    if choices:
        message = choices[0].get("message") or {}
        text = message.get("content") or choices[0].get("text")
    else:
        text = response_data.get("text")
    if not text:
        return None
    return text.strip()


# ============================================================================
# REQUEST ADVISORY
# ============================================================================

def request_advisory(
    config: CalculationConfig,
    result: SimulationResult,
    question: Optional[str] = None
) -> Optional[str]:
    """
    Ask the text-generation service for advice on a run.

    Args:
        config: Configuration the run was computed from
        result: Simulation result
        question: Optional follow-up question appended to the digest

    Returns:
        Generated advice text, or None on transport/HTTP errors or empty response

    Raises:
        ValueError: If the service is not configured
    """
    if not is_advisory_configured():
        raise ValueError("ADVISORY_API_URL / ADVISORY_API_KEY not configured")

    prompt = build_advisory_digest(config, result)
    if question:
        prompt += f"\n\n问题: {question.strip()}"

    try:
        response_data = _call_advisory_api(prompt)
    except httpx.HTTPStatusError as e:
        logger.error("Advisory request failed with status %s", e.response.status_code)
        return None
    except httpx.HTTPError as e:
        logger.error("Advisory request failed: %s", e)
        return None
    except ValueError as e:
        logger.error("Advisory response was not valid JSON: %s", e)
        return None

    return extract_advisory_text(response_data)
