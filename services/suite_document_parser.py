"""
services/suite_document_parser.py
Best-effort extraction of statistics from a rendered suite document.

The combiner prefers the JSON sidecar written next to each suite document.
This parser covers documents without one (older renders, dated copies):
it reads the identity meta tags, the hidden API registry, the six-cell
folder summary rows, and which APIs carry the soft-failure marker.

Tolerated markup variations in summary rows:
- numeric cells wrapped in inline markup (badge spans)
- optional '%' in the pass-rate cell
- thousands separators / decimals in the latency cell
- a trailing count (plain or badge) appended to the name cell
Rows that don't fit are skipped.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from utils.report_utils import contains_soft_failure

logger = logging.getLogger(__name__)

DEFAULT_PARENT = "Parent"
DEFAULT_MODULE = "Module"
DEFAULT_WINDOW = 30000

RE_COUNT_CELL = re.compile(r"^\d{1,3}(?:,\d{3})*$|^\d+$")
RE_PCT_CELL = re.compile(r"^(\d+(?:\.\d+)?)\s*%?$")
RE_LATENCY_CELL = re.compile(r"^\d[\d,]*(?:\.\d+)?$|^\.\d+$")
RE_TRAILING_COUNT = re.compile(r"\s+\d+$")


# ============================================================
# Public API
# ============================================================

def parse_suite_document(html_text: str, marker: str = "+ --> Failing",
                         window: int = DEFAULT_WINDOW) -> Dict[str, Any]:
    """
    Extract identity, API registry, summary rows and soft-failure APIs.

    Returns the same shape as the JSON sidecar:
        {
          "suite": {"grouping_key", "module_key"},
          "suite_apis": [...],
          "folder_rows": [{"name", "passed", "failed", "total", "pass_pct", "avg_response_ms"}],
          "soft_fail_apis": [...],
          "source": "html"
        }
    """
    soup = BeautifulSoup(html_text, "html.parser")
    rows = extract_summary_rows(soup)
    suite_apis = extract_suite_apis(soup)
    api_list = suite_apis or list(dict.fromkeys(r["name"] for r in rows if r["name"]))

    return {
        "suite": {
            "grouping_key": _meta_content(soup, "suite-parent") or DEFAULT_PARENT,
            "module_key": _meta_content(soup, "suite-module") or DEFAULT_MODULE,
        },
        "suite_apis": suite_apis,
        "folder_rows": rows,
        "soft_fail_apis": sorted(detect_soft_fail_apis(html_text, soup, api_list, marker, window)),
        "source": "html",
    }


def extract_suite_apis(soup: BeautifulSoup) -> List[str]:
    """API registry from <script id="suite-apis">; invalid or missing JSON yields []."""
    tag = soup.find("script", id="suite-apis")
    if tag is None:
        return []
    try:
        values = json.loads(tag.string or "")
    except ValueError:
        logger.debug("suite-apis registry is not valid JSON; ignoring it.")
        return []
    if not isinstance(values, list):
        return []
    names = (str(v if v is not None else "").strip() for v in values)
    return [n for n in names if n]


def extract_summary_rows(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """Every six-cell row whose last five cells are numeric."""
    rows = []
    for tr in soup.find_all("tr"):
        cells = tr.find_all("td", recursive=False)
        if len(cells) != 6:
            continue
        row = _parse_row(cells)
        if row is not None:
            rows.append(row)
    return rows


def detect_soft_fail_apis(html_text: str, soup: BeautifulSoup, api_list: List[str],
                          marker: str, window: int = DEFAULT_WINDOW) -> set:
    """
    APIs whose rendered section contains the soft-failure marker.

    For each API, the section is the <details> element whose <summary><b>
    heading matches the name (API-level sections preferred over folder
    sections). Without a matching heading, fall back to a case-insensitive
    search for '<b>name</b>' and scan a fixed window after it.
    """
    headings = _summary_headings(soup)
    flagged = set()
    for api in api_list:
        if not api:
            continue
        sections = headings.get(api.casefold())
        if sections:
            if any(contains_soft_failure(section.get_text(" "), marker) for section in sections):
                flagged.add(api)
            continue

        chunk = _fallback_window(html_text, api, window)
        if chunk is not None and contains_soft_failure(chunk, marker):
            flagged.add(api)
    return flagged


# ============================================================
# Internal helpers
# ============================================================

def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": name})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _parse_row(cells) -> Optional[Dict[str, Any]]:
    texts = [cell.get_text(" ", strip=True) for cell in cells[1:]]
    passed_text, failed_text, total_text, pct_text, avg_text = texts

    if not all(RE_COUNT_CELL.match(t) for t in (passed_text, failed_text, total_text)):
        return None
    pct_match = RE_PCT_CELL.match(pct_text)
    if not pct_match or not RE_LATENCY_CELL.match(avg_text):
        return None

    name = _row_name(cells[0])
    if not name:
        return None

    return {
        "name": name,
        "passed": int(passed_text.replace(",", "")),
        "failed": int(failed_text.replace(",", "")),
        "total": int(total_text.replace(",", "")),
        "pass_pct": float(pct_match.group(1)),
        "avg_response_ms": float(avg_text.replace(",", "")),
    }


def _row_name(cell) -> str:
    # Work on a copy so the shared soup keeps its badges for other lookups
    cell = BeautifulSoup(str(cell), "html.parser").td
    badges = cell.find_all("span", class_=lambda c: c and "badge" in c)
    for badge in badges:
        badge.decompose()
    name = cell.get_text(" ", strip=True)
    if badges:
        return name
    # Plain-text count with no badge markup
    return RE_TRAILING_COUNT.sub("", name).strip()


def _summary_headings(soup: BeautifulSoup) -> Dict[str, List[Any]]:
    """casefolded heading text -> enclosing <details> sections (API-level first)."""
    api_sections: Dict[str, List[Any]] = {}
    other_sections: Dict[str, List[Any]] = {}
    for summary in soup.find_all("summary"):
        bold = summary.find("b")
        details = summary.find_parent("details")
        if bold is None or details is None:
            continue
        key = bold.get_text(" ", strip=True).casefold()
        target = api_sections if str(details.get("id", "")).startswith("api-") else other_sections
        target.setdefault(key, []).append(details)
    for key, sections in other_sections.items():
        api_sections.setdefault(key, sections)
    return api_sections


def _fallback_window(html_text: str, api: str, window: int) -> Optional[str]:
    lowered = html_text.lower()
    index = lowered.find(f"<b>{api.lower()}</b>")
    if index == -1:
        index = lowered.find(api.lower())
    if index == -1:
        return None
    return html_text[index:index + window]
