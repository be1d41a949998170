"""
services/combined_report_aggregator.py
Combined dashboard and email bodies across every suite document in Temp/.

Each suite document is read through its JSON sidecar when one exists and is
valid; otherwise the rendered HTML is parsed (services/suite_document_parser).
Rows from all documents are merged into:
  - a global rollup and one rollup per grouping key (API level and case level)
  - a dashboard with one section per grouping and one table per module
  - a script-free email body, written twice (EmailBody.html, EmailBody_Inline.html)
"""
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import pandas as pd

from services.suite_document_parser import DEFAULT_MODULE, DEFAULT_PARENT, parse_suite_document
from utils.config import DEFAULT_SOFT_FAIL_MARKER, DEFAULT_TITLE, load_report_settings
from utils.file_utils import (
    discover_suite_documents,
    load_json_safe,
    load_template,
    load_text_file,
    save_text_file,
    sidecar_path_for,
)
from utils.report_utils import esc, fmt, pct, pct_str, render_template, slugify

logger = logging.getLogger(__name__)

COMBINED_TEMPLATE = "combined_report.html"
EMAIL_TEMPLATE = "email_body.html"
EMAIL_BODY_NAMES = ("EmailBody.html", "EmailBody_Inline.html")
SOFT_FAIL_ROW_STYLE = ' style="background:#FFF7C2"'

API_TILES = (
    ("Unique APIs", "unique_apis", "#EFE9FF", "#D6CCFF"),
    ("Passed APIs", "passed_apis", "#ECFDF5", "#BBF7D0"),
    ("Failed APIs", "failed_apis", "#FFF1F2", "#FECDD3"),
    ("Pass API %", "api_pass_pct", "#FEFCE8", "#FDE68A"),
)
CASE_TILES = (
    ("Total Test Cases", "total_cases", "#EFF6FF", "#DBEAFE"),
    ("Passed Test Cases", "passed_cases", "#ECFDF5", "#BBF7D0"),
    ("Failed Test Cases", "failed_cases", "#FFF1F2", "#FECDD3"),
    ("Pass Test Case %", "case_pass_pct", "#FEFCE8", "#FDE68A"),
)


# -----------------------------------------------
# Main combine function
# -----------------------------------------------
def generate_combined_report(settings: Optional[Dict] = None, today: Optional[date] = None) -> Dict:
    """
    Merge every suite document under Temp/ into the combined outputs.

    Args:
        settings: Report settings from load_report_settings().
        today: Date used for the output folder (defaults to the current date).

    Returns:
        dict with status ("OK" or "NO_REPORTS"), output paths and rollups.
    """
    settings = settings or load_report_settings()
    today = today or date.today()
    temp_root = Path(settings["temp_root"])

    logger.info("Combine: scanning %s", temp_root)
    documents = discover_suite_documents(temp_root)
    if not documents:
        logger.info("No per-suite HTML files found in Temp.")
        return {"status": "NO_REPORTS", "temp_root": str(temp_root), "files_combined": 0}

    suites = []
    skipped = []
    for path in documents:
        suite = load_suite_record(path, settings)
        if suite is None:
            skipped.append(str(path))
            continue
        logger.info("Combine: %s (%s, %d row(s))", path.name, suite["source"], len(suite["rows"]))
        suites.append(suite)

    combined = merge_suites(suites)
    title = settings.get("title") or DEFAULT_TITLE
    date_str = today.isoformat()

    dashboard_html = render_dashboard(combined, title, date_str, settings)
    email_html = render_email_body(combined, title, settings)

    out_dir = Path(settings["email_root"]) / date_str
    report_path = save_text_file(out_dir / settings.get("combined_report_name", "Digital Api Automation Report.html"),
                                 dashboard_html)
    email_paths = [save_text_file(out_dir / name, email_html) for name in EMAIL_BODY_NAMES]
    logger.info("Final + Email written -> %s", out_dir)

    return {
        "status": "OK",
        "files_combined": len(suites),
        "files_skipped": skipped,
        "output_dir": str(out_dir),
        "report_path": str(report_path),
        "email_body_paths": [str(p) for p in email_paths],
        "grand": combined["grand"],
        "groupings": combined["groupings"],
        "soft_fail_rows": len(combined["soft_fail_keys"]),
    }


# -----------------------------------------------
# Loading suite documents
# -----------------------------------------------
def load_suite_record(path: Path, settings: Dict) -> Optional[Dict[str, Any]]:
    """
    Identity, registry, rows and soft-failure APIs of one suite document.

    Prefers the JSON sidecar; falls back to parsing the HTML. Returns None
    (after logging) when the document cannot be read.
    """
    warnings: List[str] = []
    sidecar = load_json_safe(sidecar_path_for(path), warnings)
    for warning in warnings:
        logger.warning("Combine: ignoring sidecar. %s", warning)

    if _is_valid_sidecar(sidecar):
        data = dict(sidecar, source="sidecar")
    else:
        try:
            html_text = load_text_file(path)
        except OSError as e:
            logger.warning("Combine: skipping unreadable %s (%s)", path, e)
            return None
        data = parse_suite_document(
            html_text,
            settings.get("soft_fail_marker", DEFAULT_SOFT_FAIL_MARKER),
            settings.get("soft_fail_window", 30000),
        )

    suite = data.get("suite") or {}
    parent = str(suite.get("grouping_key") or DEFAULT_PARENT)
    module = str(suite.get("module_key") or DEFAULT_MODULE)
    rows = [_combined_row(r, parent, module) for r in data.get("folder_rows") or [] if isinstance(r, dict)]
    rows = [r for r in rows if r["api"]]

    return {
        "path": str(path),
        "source": data.get("source", "html"),
        "grouping_key": parent,
        "module_key": module,
        "suite_apis": [str(a).strip() for a in data.get("suite_apis") or [] if str(a or "").strip()],
        "rows": rows,
        "soft_fail_apis": set(data.get("soft_fail_apis") or []),
    }


def _is_valid_sidecar(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("suite"), dict)
        and isinstance(data.get("folder_rows"), list)
    )


def _combined_row(raw: Dict[str, Any], parent: str, module: str) -> Dict[str, Any]:
    return {
        "parent": parent,
        "module": module,
        "api": str(raw.get("name") or "").strip(),
        "pass": _as_number(raw.get("passed")),
        "fail": _as_number(raw.get("failed")),
        "total": _as_number(raw.get("total")),
        "pass_pct": _as_number(raw.get("pass_pct")),
        "avg": _as_number(raw.get("avg_response_ms")),
    }


def _as_number(value: Any):
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).replace(",", "").rstrip("%"))
    except ValueError:
        return 0
    return int(number) if number.is_integer() else number


# -----------------------------------------------
# Aggregation
# -----------------------------------------------
def merge_suites(suites: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge suite records into rows, registries, soft-failure keys and rollups.

    Unique APIs are counted per (grouping, api) from each document's registry
    (or its row names when the registry is empty); the same API under two
    modules of one grouping counts once.
    """
    all_rows: List[Dict[str, Any]] = []
    grand_unique: Set[str] = set()
    unique_by_parent: Dict[str, Set[str]] = {}
    soft_fail_keys: Set[str] = set()

    for suite in suites:
        parent = suite["grouping_key"]
        all_rows.extend(suite["rows"])

        for row in suite["rows"]:
            if row["api"] in suite["soft_fail_apis"]:
                soft_fail_keys.add(row_key(row))

        api_list = suite["suite_apis"] or list(dict.fromkeys(r["api"] for r in suite["rows"]))
        parent_set = unique_by_parent.setdefault(parent, set())
        for name in api_list:
            parent_set.add(name)
            grand_unique.add(f"{parent}|{name}")

    rows_by_parent: Dict[str, List[Dict[str, Any]]] = {}
    for row in all_rows:
        rows_by_parent.setdefault(row["parent"], []).append(row)

    groupings = {
        parent: rollup(rows_by_parent[parent], len(unique_by_parent.get(parent, ())))
        for parent in sorted(rows_by_parent)
    }

    return {
        "rows": all_rows,
        "rows_by_parent": rows_by_parent,
        "soft_fail_keys": soft_fail_keys,
        "grand": rollup(all_rows, len(grand_unique)),
        "groupings": groupings,
    }


def row_key(row: Dict[str, Any]) -> str:
    return f"{row['parent']}|{row['module']}|{row['api']}"


def aggregate_api_stats(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Sum rows per (grouping, module, api) key.

    An aggregate passes when it ran at least one case and had no failures.
    """
    if not rows:
        return {"unique": 0, "passed": 0, "failed": 0, "aggregates": {}}

    df = pd.DataFrame.from_records(rows, columns=["parent", "module", "api", "pass", "fail", "total"])
    df[["pass", "fail", "total"]] = df[["pass", "fail", "total"]].apply(pd.to_numeric, errors="coerce").fillna(0)
    sums = df.groupby(["parent", "module", "api"], sort=False)[["pass", "fail", "total"]].sum()

    aggregates = {
        f"{parent}|{module}|{api}": {"pass": int(r["pass"]), "fail": int(r["fail"]), "total": int(r["total"])}
        for (parent, module, api), r in sums.iterrows()
    }
    unique = len(aggregates)
    passed = sum(1 for a in aggregates.values() if a["total"] > 0 and a["fail"] == 0)
    return {"unique": unique, "passed": passed, "failed": max(0, unique - passed), "aggregates": aggregates}


def aggregate_case_stats(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    """Case counts summed directly across rows (total defaults to pass + fail)."""
    passed = failed = total = 0
    for row in rows:
        passed += row.get("pass") or 0
        failed += row.get("fail") or 0
        total += row.get("total") or ((row.get("pass") or 0) + (row.get("fail") or 0))
    return {"total": total, "pass": passed, "fail": failed}


def rollup(rows: List[Dict[str, Any]], registry_size: int) -> Dict[str, Any]:
    """
    API-level and case-level rollup for a set of rows.

    registry_size is the distinct-API count from the registries; when it
    is 0 the number of distinct aggregate keys is used instead.
    """
    api_stats = aggregate_api_stats(rows)
    case_stats = aggregate_case_stats(rows)
    unique = registry_size or api_stats["unique"]
    passed = api_stats["passed"]
    return {
        "unique_apis": unique,
        "passed_apis": passed,
        "failed_apis": max(0, unique - passed),
        "api_pass_pct": pct(passed, unique),
        "total_cases": case_stats["total"],
        "passed_cases": case_stats["pass"],
        "failed_cases": case_stats["fail"],
        "case_pass_pct": pct(case_stats["pass"], case_stats["total"]),
    }


# -----------------------------------------------
# Dashboard rendering
# -----------------------------------------------
def render_dashboard(combined: Dict[str, Any], title: str, date_str: str, settings: Dict) -> str:
    template = load_template(settings["templates_path"], COMBINED_TEMPLATE)
    context = {
        "TITLE": esc(title),
        "MCP_VERSION": esc(settings.get("mcp_version", "unknown")),
        "TOTAL_TILES": _tiles(combined["grand"], API_TILES) + _tiles(combined["grand"], CASE_TILES),
        "PARENT_SECTIONS": "\n".join(
            _parent_section(index, parent, combined["rows_by_parent"][parent], stats, combined["soft_fail_keys"])
            for index, (parent, stats) in enumerate(combined["groupings"].items(), start=1)
        ),
        "GENERATED_DATE": esc(date_str),
    }
    return render_template(template, context)


def _tiles(stats: Dict[str, Any], tile_defs) -> str:
    tiles = []
    for label, key, bg, border in tile_defs:
        value = f"{stats[key]}%" if key.endswith("_pct") else fmt(stats[key])
        tiles.append(
            f'<div class="tile" style="background:{bg};border:1px solid {border};">'
            f'<div class="lab">{esc(label)}</div><div class="val">{esc(value)}</div></div>'
        )
    return '<div class="tiles">' + "".join(tiles) + "</div>"


def _parent_section(index: int, parent: str, rows: List[Dict[str, Any]], stats: Dict[str, Any],
                    soft_fail_keys: Set[str]) -> str:
    by_module: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        by_module.setdefault(row["module"], []).append(row)

    modules_html = "".join(_module_details(m, by_module[m], soft_fail_keys) for m in sorted(by_module))
    pid = esc(f"grp-{index}-{slugify(parent) or 'parent'}")
    return (
        f'<section class="section" id="{pid}">'
        '<div style="display:flex;align-items:center;justify-content:space-between;gap:8px;flex-wrap:wrap">'
        f"<h3>{esc(parent)} Summary — Test Cases</h3>"
        '<div class="controls">'
        f'<button data-parent="{pid}" class="px">Expand</button>'
        f'<button data-parent="{pid}" class="pc">Collapse</button>'
        "</div></div>"
        f"{_tiles(stats, API_TILES)}{_tiles(stats, CASE_TILES)}"
        f"{modules_html}"
        "</section>"
    )


def _module_details(module: str, rows: List[Dict[str, Any]], soft_fail_keys: Set[str]) -> str:
    body = []
    for row in rows:
        style = SOFT_FAIL_ROW_STYLE if row_key(row) in soft_fail_keys else ""
        body.append(
            f"<tr{style}>"
            f"<td>{esc(row['api'])}</td>"
            f'<td style="text-align:right">{fmt(row["pass"])}</td>'
            f'<td style="text-align:right">{fmt(row["fail"])}</td>'
            f'<td style="text-align:right">{fmt(row["total"])}</td>'
            f'<td style="text-align:right">{fmt(row["pass_pct"])}%</td>'
            f'<td style="text-align:right">{fmt(row["avg"])}</td>'
            "</tr>"
        )
    return (
        f"<details><summary>{esc(module)}</summary>"
        '<div style="padding:8px 12px 12px"><table><thead><tr>'
        '<th>API / Folder</th><th style="text-align:right">Pass</th><th style="text-align:right">Fail</th>'
        '<th style="text-align:right">Total</th><th style="text-align:right">Pass %</th>'
        '<th style="text-align:right">Avg (ms)</th>'
        f"</tr></thead><tbody>{''.join(body)}</tbody></table></div></details>"
    )


# -----------------------------------------------
# Email body rendering
# -----------------------------------------------
def render_email_body(combined: Dict[str, Any], title: str, settings: Dict) -> str:
    template = load_template(settings["templates_path"], EMAIL_TEMPLATE)
    sections = [_email_section("Total Summary — Test Cases", combined["grand"])]
    sections.extend(
        _email_section(f"{parent} Summary — Test Cases", stats)
        for parent, stats in combined["groupings"].items()
    )
    return render_template(template, {"TITLE": esc(title), "EMAIL_SECTIONS": "".join(sections)})


def _email_section(heading: str, stats: Dict[str, Any]) -> str:
    api_rows = [
        ("Unique APIs", fmt(stats["unique_apis"])),
        ("Passed APIs", fmt(stats["passed_apis"])),
        ("Failed APIs", fmt(stats["failed_apis"])),
        ("Pass API %", esc(pct_str(stats["passed_apis"], stats["unique_apis"]))),
    ]
    case_rows = [
        ("Total Test Cases", fmt(stats["total_cases"])),
        ("Passed Test Cases", fmt(stats["passed_cases"])),
        ("Failed Test Cases", fmt(stats["failed_cases"])),
        ("Pass Test Case %", esc(pct_str(stats["passed_cases"], stats["total_cases"]))),
    ]
    return (
        f"<h2>{esc(heading)}</h2>"
        f"{_two_column_table(api_rows)}<br/>{_two_column_table(case_rows)}"
    )


def _two_column_table(rows) -> str:
    cells = "".join(f"<tr><td><b>{esc(label)}</b></td><td>{value}</td></tr>" for label, value in rows)
    return f"<table><tbody>{cells}</tbody></table>"
