"""Prompt builders for the two scoring tiers."""

from __future__ import annotations

import json
import re

from news_funnel.pipeline.state import CATEGORIES

TITLE_CLIP = 250
GROUP_TITLE_CLIP = 260
GROUP_CONTENT_CLIP = 1800

_WHITESPACE = re.compile(r"\s+")

TITLE_RANK_SYSTEM_PROMPT = """You are an expert markets editor. Score each news title for market-moving relevance for public equity investors.

Instructions:
- For EVERY input item, return an array of JSON objects with fields {"id": number, "score": integer 0-100}.
- 90-100: Must-read, direct high impact (Fed decisions, CPI/PPI, mega-cap earnings, major M&A, critical guidance).
- 70-89: Highly relevant sector/company news (approvals, warnings, significant launches, guidance changes).
- 40-69: Useful context but not immediate catalyst.
- 10-39: General business interest.
- 0-9: Not financial news.
- Output ONLY the JSON array. No explanations, no markdown."""

GROUP_ANALYSIS_SYSTEM_PROMPT = """You are an expert financial analyst. Analyze the following news items and return JSON ONLY.

For EACH item, output an object with keys:
- idx: number (echo from input)
- relevance_score: integer 0-100
- categories: array of strings (from this list only: {categories})
- summary_points: array of 3-5 markdown-ready strings, each beginning with a bolded label, e.g., "**What happened:** ..."

Also provide a short combined summary for the whole group.

STRICT OUTPUT FORMAT (no commentary, no markdown fences):
{{
  "articles": [
    {{ "idx": number, "relevance_score": number, "categories": [string,...], "summary_points": [string,...] }},
    ... one per input item in the SAME ORDER ...
  ],
  "combined": {{ "summary_points": [string,...] }}
}}"""


def build_title_rank_prompt(items: list[tuple[int, str]]) -> str:
    lines = "\n".join(
        json.dumps({"id": idx, "title": title[:TITLE_CLIP]}, ensure_ascii=False)
        for idx, title in items
    )
    return f"{TITLE_RANK_SYSTEM_PROMPT}\n\nInput titles (JSON per line):\n{lines}\n"


def build_group_analysis_prompt(items: list[tuple[int, str, str]]) -> str:
    payload = [
        {
            "idx": idx,
            "title": title[:GROUP_TITLE_CLIP],
            "content": _WHITESPACE.sub(" ", content).strip()[:GROUP_CONTENT_CLIP],
        }
        for idx, title, content in items
    ]
    categories = ", ".join(json.dumps(c) for c in CATEGORIES)
    system = GROUP_ANALYSIS_SYSTEM_PROMPT.format(categories=categories)
    items_json = json.dumps(payload, ensure_ascii=False)
    return f"{system}\n\nINPUT_ITEMS = {items_json}\nReturn ONLY the JSON object."
