"""Narrative and recommendation synthesis.

Free-form markdown from the chat model. Any failure is raised as
``SynthesisError``; the pipeline swaps in its fixed fallback text.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from ....schemas.analysis_schema import Competitor
from ....services.openai_client import call_openai_text_async
from ..errors import SynthesisError
from .interfaces import SynthesisContext, SynthesisKind


def _text(value: Any, default: str = "Not available") -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or default
    return str(value) if value else default


def _threshold_label(threshold: Optional[int]) -> str:
    if threshold == 0:
        return "Free"
    if threshold is None:
        return "Not found"
    return f"${threshold}"


def competitor_context(competitors: List[Competitor]) -> str:
    blocks = []
    for comp in competitors:
        data: Mapping[str, Any] = comp.extracted or {}
        blocks.append(
            f"{comp.name} ({comp.website}):\n"
            f"- Products: {comp.products_summary or 'Not available'}\n"
            f"- Description: {_text(data.get('business_description'))}\n"
            f"- Target Audience: {_text(data.get('target_audience'))}\n"
            f"- Price Range: {_text(data.get('price_range'))}\n"
            f"- Unique Selling Points: {_text(data.get('unique_selling_points'))}\n"
            f"- Shipping Threshold: {_threshold_label(comp.threshold)}\n"
            f"- Shipping: {comp.shipping_summary or 'Not available'}"
        )
    return "\n\n".join(blocks) or "No competitor data available."


def primary_context(context: SynthesisContext) -> str:
    data = context.primary_data
    if not data:
        return f"Primary Website: {context.website_url}"
    shipping: Mapping[str, Any] = data.get("shipping_info") or {}
    return (
        "Primary Business Analysis:\n"
        f"Name: {_text(data.get('business_name'))}\n"
        f"Website: {context.website_url}\n"
        f"Description: {_text(data.get('business_description'))}\n"
        f"Summary: {_text(data.get('business_summary'))}\n"
        f"Products: {_text(data.get('products'))}\n"
        f"Product Categories: {_text(data.get('product_categories'))}\n"
        f"Has Free Shipping: {shipping.get('has_free_shipping', 'N/A')}\n"
        f"Conditions: {_text(shipping.get('free_shipping_conditions'), 'N/A')}\n"
        f"Thresholds: {_text(shipping.get('shipping_thresholds'), 'N/A')}\n"
        f"General Policy: {_text(shipping.get('general_shipping_policy'), 'N/A')}"
    )


def analysis_prompt(context: SynthesisContext) -> str:
    return f"""Create a comprehensive competitive business analysis based on this data:

{primary_context(context)}

COMPETITOR ANALYSIS:
{competitor_context(context.competitors)}

Start your analysis with a specific Industry classification and Business Overview.

## **Industry**: [SPECIFIC INDUSTRY - NOT "eCommerce"]

## **Business Overview**
[2-3 sentences on what this business does, its main products and its value proposition.]

## **Business Positioning Analysis**
## **Product Portfolio Comparison**
## **Pricing Strategy Analysis**
## **Shipping Strategy Competitive Assessment**
- Free shipping threshold analysis against the competitors above
## **Unique Value Propositions**
## **Market Positioning Summary**

Focus on actionable insights. Be specific and descriptive throughout."""


def recommendations_prompt(context: SynthesisContext) -> str:
    primary = json.dumps(context.primary_data or {}, indent=2, default=str)[:6000]
    return f"""Based on this competitive analysis and business data, provide 5-7 strategic recommendations:

{context.analysis}

Primary Business Data: {primary}

Provide specific, actionable recommendations in this format:

## **Strategic Recommendations**

**1. [Recommendation Title]**
[Specific actionable advice with justification]

Continue with 5-7 total recommendations focused on shipping incentives, competitive advantages, market positioning and growth opportunities."""


_PROMPTS = {
    "analysis": (analysis_prompt, 2000),
    "recommendations": (recommendations_prompt, 1500),
}


class OpenAINarrativeSynthesizer:
    """``NarrativeSynthesizer`` backed by plain chat completions."""

    def __init__(self, *, temperature: float = 0.1):
        self.temperature = temperature

    async def synthesize(self, kind: SynthesisKind, context: SynthesisContext) -> str:
        if kind not in _PROMPTS:
            raise SynthesisError(f"Unknown synthesis kind: {kind}")
        build_prompt, max_tokens = _PROMPTS[kind]

        messages: List[Dict[str, str]] = [{"role": "user", "content": build_prompt(context)}]
        try:
            text = await call_openai_text_async(
                messages=messages,
                max_completion_tokens=max_tokens,
                temperature=self.temperature,
            )
        except EnvironmentError as exc:
            raise SynthesisError(str(exc)) from exc

        if not text:
            raise SynthesisError(f"No {kind} text generated")
        return text
