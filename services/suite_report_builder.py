"""
services/suite_report_builder.py
Per-suite HTML report generation from a Newman run report.

Flow:
  1. Load and normalize the run JSON (fails fast, nothing written on error)
  2. Derive the suite identity (grouping / module) from the output path
  3. Aggregate folder and API statistics over Pass/Fail cases
  4. Render a self-contained HTML document (tables, charts, drill-down,
     base64 request/response payloads, hidden API registry)
  5. Write it to the caller's path and to Temp/<grouping>/<module>_latest.html,
     plus a structured JSON sidecar next to the Temp copy for the combiner
"""
import base64
import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from services.chart_generator import generate_folder_bar_chart
from services.execution_normalizer import (
    Outcome,
    extract_run_metadata,
    load_run_file,
    normalize_run,
)
from utils.config import DEFAULT_SLA_MS, DEFAULT_TITLE, load_report_settings
from utils.file_utils import load_template, save_json_file, save_text_file
from utils.report_utils import (
    contains_soft_failure,
    esc,
    fmt,
    pct,
    pretty_name,
    render_template,
    round_half_up,
    slugify,
    sort_key,
)

logger = logging.getLogger(__name__)

SUITE_TEMPLATE = "suite_report.html"
SIDECAR_SCHEMA_VERSION = 1
CONSIDERED_OUTCOMES = (Outcome.PASS, Outcome.FAIL)


# -----------------------------------------------
# Main suite report function
# -----------------------------------------------
def generate_suite_report(
    input_path,
    output_path,
    title: Optional[str] = None,
    sla_ms: Optional[int] = None,
    settings: Optional[Dict] = None,
) -> Dict:
    """
    Build the per-suite report for one Newman run.

    Args:
        input_path: Path to the Newman run JSON.
        output_path: Caller-chosen path of the primary HTML report.
        title: Display title (settings default when omitted).
        sla_ms: Response-time SLA in ms (settings default when omitted).
        settings: Report settings from load_report_settings().

    Returns:
        dict with suite identity, statistics and written paths.

    Raises:
        RunInputError: If the run JSON cannot be read or parsed. No file is
                       written in that case.
    """
    settings = settings or load_report_settings()
    title = title or settings.get("title") or DEFAULT_TITLE
    sla_ms = int(sla_ms if sla_ms is not None else settings.get("sla_ms", DEFAULT_SLA_MS))
    output_path = Path(output_path)

    logger.info("Suite report: reading %s", input_path)
    run_data = load_run_file(input_path)
    run_meta = extract_run_metadata(run_data)

    test_cases = normalize_run(run_data, settings.get("skip_marker", "skip"))
    grouping_key, module_key = derive_suite_identity(
        output_path, settings.get("anchor_dir", "NewManCollectionList"), run_meta.get("collection_name")
    )
    logger.info("Suite report: %d execution(s) for %s / %s", len(test_cases), grouping_key, module_key)

    stats = build_suite_statistics(test_cases, sla_ms)
    considered = [tc for tc in test_cases if tc["outcome"] in CONSIDERED_OUTCOMES]
    soft_fail_apis = detect_soft_fail_apis(considered, settings.get("soft_fail_marker", "+ --> Failing"))

    html_text = render_suite_html(
        test_cases, stats, title, sla_ms, (grouping_key, module_key),
        run_meta.get("started_at"), settings,
    )
    sidecar = build_sidecar(stats, title, sla_ms, (grouping_key, module_key), soft_fail_apis, run_meta)

    # Everything is rendered before the first write
    save_text_file(output_path, html_text)
    logger.info("Wrote per-suite HTML -> %s", output_path)

    temp_path = Path(settings["temp_root"]) / grouping_key / f"{module_key}_latest.html"
    save_text_file(temp_path, html_text)
    logger.info("Temp report -> %s", temp_path)

    sidecar_path = None
    if settings.get("write_sidecar", True):
        sidecar_path = save_json_file(temp_path.with_suffix(".json"), sidecar)
        logger.info("Temp sidecar -> %s", sidecar_path)

    return {
        "status": "OK",
        "title": title,
        "sla_ms": sla_ms,
        "suite": {"grouping_key": grouping_key, "module_key": module_key},
        "statistics": _summary_statistics(stats),
        "soft_fail_apis": soft_fail_apis,
        "report_path": str(output_path),
        "temp_path": str(temp_path),
        "sidecar_path": str(sidecar_path) if sidecar_path else None,
    }


# -----------------------------------------------
# Suite identity
# -----------------------------------------------
def derive_suite_identity(output_path, anchor_dir: str, collection_name: Optional[str] = None) -> Tuple[str, str]:
    """
    (grouping_key, module_key) from the two path segments after the anchor folder.

    Example:
        .../NewManCollectionList/Billing/Invoices/report.html -> ("Billing", "Invoices")

    Falls back to "Misc" for the grouping key, and to the last '-' token of
    the collection name (else "Module") for the module key.
    """
    segments = [s for s in re.split(r"[\\/]+", os.path.abspath(str(output_path))) if s]
    anchor = str(anchor_dir or "").lower()
    index = next((i for i, seg in enumerate(segments) if anchor and anchor in seg.lower()), -1)

    grouping_key = segments[index + 1] if index >= 0 and index + 1 < len(segments) else "Misc"
    if index >= 0 and index + 2 < len(segments):
        module_key = segments[index + 2]
    else:
        module_key = (str(collection_name or "").split("-")[-1].strip()) or "Module"
    return grouping_key, module_key


# -----------------------------------------------
# Aggregation
# -----------------------------------------------
def build_suite_statistics(test_cases: List[Dict[str, Any]], sla_ms: int) -> Dict[str, Any]:
    """
    Aggregate suite, folder and API statistics.

    Only Pass/Fail cases are considered; Skipped and Not Run cases are
    counted separately and excluded from every rate and average.

    Returns:
        dict with: total_cases, passed_cases, failed_cases, pass_pct,
        within_sla, within_sla_pct, skipped_cases, not_run_cases, folders
        (FolderSummary list), api_summary (group -> ApiSummary list),
        suite_apis (unique pretty API names, first-seen order).
    """
    considered = [tc for tc in test_cases if tc["outcome"] in CONSIDERED_OUTCOMES]
    df = _cases_frame(considered)

    total_cases = len(df)
    passed_cases = int(df["passed"].sum()) if total_cases else 0
    failed_cases = total_cases - passed_cases
    within_sla = int((df["resp_ms"] <= sla_ms).sum()) if total_cases else 0

    folders: List[Dict[str, Any]] = []
    api_summary: Dict[str, List[Dict[str, Any]]] = {}
    if total_cases:
        for group_key, group_df in df.groupby("group", sort=False):
            row = _summary_row(group_df)
            row.update({
                "group_key": group_key,
                "name": pretty_name(group_key),
                "api_count": int(group_df["api"].nunique()),
            })
            folders.append(row)

            apis = []
            for api_name, api_df in group_df.groupby("api", sort=False):
                api_row = _summary_row(api_df)
                api_row.update({"api_name": api_name, "name": pretty_name(api_name)})
                apis.append(api_row)
            api_summary[group_key] = sorted(apis, key=lambda a: (sort_key(a["api_name"]), a["name"]))

    folders.sort(key=lambda f: (sort_key(f["group_key"]), f["name"]))

    suite_apis = list(dict.fromkeys(pretty_name(tc["api_name"]) for tc in considered))

    return {
        "total_cases": total_cases,
        "passed_cases": passed_cases,
        "failed_cases": failed_cases,
        "pass_pct": pct(passed_cases, total_cases),
        "within_sla": within_sla,
        "within_sla_pct": pct(within_sla, total_cases),
        "skipped_cases": sum(1 for tc in test_cases if tc["outcome"] is Outcome.SKIPPED),
        "not_run_cases": sum(1 for tc in test_cases if tc["outcome"] is Outcome.NOT_RUN),
        "folders": folders,
        "api_summary": api_summary,
        "suite_apis": suite_apis,
    }


def detect_soft_fail_apis(test_cases: Iterable[Dict[str, Any]], marker: str) -> List[str]:
    """Pretty names of APIs with the soft-failure marker in any assertion name or message."""
    flagged = []
    for tc in test_cases:
        if any(contains_soft_failure(a["name"], marker) or contains_soft_failure(a["message"], marker)
               for a in tc["assertions"]):
            flagged.append(pretty_name(tc["api_name"]))
    return sorted(set(flagged))


def _cases_frame(cases: List[Dict[str, Any]]) -> pd.DataFrame:
    records = [{
        "group": tc["group_key"] or "Ungrouped",
        "api": tc["api_name"] or "Request",
        "passed": tc["outcome"] is Outcome.PASS,
        "resp_ms": tc["response_time_ms"],
    } for tc in cases]
    df = pd.DataFrame.from_records(records, columns=["group", "api", "passed", "resp_ms"])
    df["resp_ms"] = pd.to_numeric(df["resp_ms"], errors="coerce")
    df["passed"] = df["passed"].astype(bool)
    return df


def _summary_row(df: pd.DataFrame) -> Dict[str, Any]:
    total = int(len(df))
    passed = int(df["passed"].sum())
    mean_ms = df["resp_ms"].mean()
    return {
        "total": total,
        "passed": passed,
        "failed": total - passed,
        "pass_pct": pct(passed, total),
        "avg_response_ms": 0 if pd.isna(mean_ms) else round_half_up(float(mean_ms)),
    }


def _summary_statistics(stats: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("total_cases", "passed_cases", "failed_cases", "pass_pct", "within_sla",
            "within_sla_pct", "skipped_cases", "not_run_cases")
    return {k: stats[k] for k in keys}


# -----------------------------------------------
# Sidecar
# -----------------------------------------------
def build_sidecar(stats: Dict[str, Any], title: str, sla_ms: int, identity: Tuple[str, str],
                  soft_fail_apis: List[str], run_meta: Optional[Dict] = None) -> Dict[str, Any]:
    """Structured record the combiner reads instead of scraping the HTML."""
    grouping_key, module_key = identity
    return {
        "schema_version": SIDECAR_SCHEMA_VERSION,
        "generated_at": datetime.now().isoformat(),
        "title": title,
        "sla_ms": sla_ms,
        "collection_name": (run_meta or {}).get("collection_name"),
        "suite": {"grouping_key": grouping_key, "module_key": module_key},
        "suite_apis": list(stats["suite_apis"]),
        "folder_rows": [
            {k: f[k] for k in ("name", "group_key", "passed", "failed", "total", "pass_pct", "avg_response_ms")}
            for f in stats["folders"]
        ],
        "api_summary": stats["api_summary"],
        "soft_fail_apis": list(soft_fail_apis),
        "statistics": _summary_statistics(stats),
    }


# -----------------------------------------------
# HTML rendering
# -----------------------------------------------
def render_suite_html(
    test_cases: List[Dict[str, Any]],
    stats: Dict[str, Any],
    title: str,
    sla_ms: int,
    identity: Tuple[str, str],
    started_at: Optional[str],
    settings: Dict,
) -> str:
    """Render the self-contained suite document from the suite template."""
    grouping_key, module_key = identity
    template = load_template(settings["templates_path"], SUITE_TEMPLATE)

    considered = [tc for tc in test_cases if tc["outcome"] in CONSIDERED_OUTCOMES]
    case_ids = _unique_case_ids(considered)

    context = {
        "TITLE": esc(title),
        "SUITE_PARENT": esc(grouping_key),
        "SUITE_MODULE": esc(module_key),
        "MCP_VERSION": esc(settings.get("mcp_version", "unknown")),
        "GENERATED": esc(_format_timestamp(started_at)),
        "KPI_TILES": _kpi_tiles(stats, sla_ms),
        "CHARTS_SECTION": _charts_section(stats["folders"], settings),
        "FOLDER_ROWS": _folder_rows(stats),
        "FOLDER_DETAILS": _folder_details(stats["folders"], considered, case_ids),
        "SUITE_APIS_JSON": _script_json(stats["suite_apis"]),
    }
    return render_template(template, context)


def _kpi_tiles(stats: Dict[str, Any], sla_ms: int) -> str:
    tiles = [
        (f"{fmt(stats['pass_pct'])}%", "Pass Rate"),
        (fmt(stats["total_cases"]), "Total Test Cases"),
        (fmt(stats["passed_cases"]), "Passed"),
        (fmt(stats["failed_cases"]), "Failed"),
        (f"{fmt(stats['within_sla_pct'])}%", f"Within SLA ({fmt(sla_ms)} ms)"),
    ]
    return "\n".join(
        f'    <div class="kpi"><b>{esc(value)}</b><span>{esc(label)}</span></div>' for value, label in tiles
    )


def _charts_section(folders: List[Dict[str, Any]], settings: Dict) -> str:
    if not folders or not settings.get("charts_enabled", True):
        return ""
    labels = [f["name"] for f in folders]
    pass_chart = generate_folder_bar_chart(
        labels, [f["pass_pct"] for f in folders], "Pass % by Folder", settings,
        color="success", x_max=100, value_suffix="%",
    )
    resp_chart = generate_folder_bar_chart(
        labels, [f["avg_response_ms"] for f in folders], "Average Response Time (ms) by Folder", settings,
        color="primary",
    )
    boxes = [
        f'      <div class="chart-box"><img alt="{esc(alt)}" src="{uri}"/></div>'
        for alt, uri in (("Pass % by Folder", pass_chart), ("Average Response Time by Folder", resp_chart))
        if uri
    ]
    if not boxes:
        return ""
    return '  <div class="card">\n    <div class="canvas-row">\n' + "\n".join(boxes) + "\n    </div>\n  </div>"


def _folder_rows(stats: Dict[str, Any]) -> str:
    rows = []
    for folder in stats["folders"]:
        fid = "folder-" + slugify(folder["group_key"])
        chips = "".join(
            '<div class="api-chip"><b>' + esc(api["name"]) + "</b>"
            f'<span class="badge pass">{api["passed"]}</span>'
            f'<span class="badge fail">{api["failed"]}</span>'
            f'<span class="muted">{api["pass_pct"]}%</span></div>'
            for api in stats["api_summary"].get(folder["group_key"], [])
        ) or '<span class="muted">No executed APIs in this folder for this run.</span>'
        rows.append(
            f'        <tr class="clickable" data-row="{fid}" data-folder="{esc(folder["group_key"])}">'
            f'<td>{esc(folder["name"])} <span class="badge">{folder["api_count"]}</span></td>'
            f'<td><span class="badge pass">{fmt(folder["passed"])}</span></td>'
            f'<td><span class="badge fail">{fmt(folder["failed"])}</span></td>'
            f'<td>{fmt(folder["total"])}</td>'
            f'<td>{fmt(folder["pass_pct"])}%</td>'
            f'<td>{fmt(folder["avg_response_ms"])}</td></tr>\n'
            f'        <tr class="subrow" id="sub-{fid}" style="display:none"><td colspan="6">'
            f'<div class="expand-card" id="box-{fid}">{chips}</div></td></tr>'
        )
    return "\n".join(rows)


def _folder_details(folders: List[Dict[str, Any]], considered: List[Dict[str, Any]],
                    case_ids: Dict[int, str]) -> str:
    if not folders:
        return '    <div class="muted">No folders found.</div>'

    by_folder: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
    for tc in considered:
        by_folder.setdefault(tc["group_key"], {}).setdefault(tc["api_name"], []).append(tc)

    parts = []
    for folder in folders:
        api_map = by_folder.get(folder["group_key"], {})
        api_names = sorted(api_map, key=lambda a: (sort_key(a), pretty_name(a)))
        parts.append(
            f'    <details id="folder-{slugify(folder["group_key"])}">'
            f'<summary><b>{esc(folder["name"])}</b> — {len(api_names)} API(s)</summary>'
        )
        for api_name in api_names:
            cases = sorted(api_map[api_name], key=lambda c: c["iteration"])
            pass_count = sum(1 for c in cases if c["outcome"] is Outcome.PASS)
            fail_count = len(cases) - pass_count
            parts.append(
                f'<details id="api-{slugify(folder["group_key"] + "-" + api_name)}" style="margin:8px 12px">'
                f'<summary><b>{esc(pretty_name(api_name))}</b> — {len(cases)} case(s) · '
                f'<span class="badge pass">{pass_count}</span> <span class="badge fail">{fail_count}</span></summary>'
            )
            parts.extend(_case_block(tc, case_ids[id(tc)]) for tc in cases)
            parts.append("</details>")
        parts.append("</details>")
    return "\n".join(parts)


def _case_block(tc: Dict[str, Any], case_id: str) -> str:
    badge = "pass" if tc["outcome"] is Outcome.PASS else "fail"
    status = f'· <b>Status:</b> {esc(tc["status_code"])} ' if tc["status_code"] is not None else ""
    resp = f'· <b>Resp:</b> {fmt(tc["response_time_ms"])} ms ' if tc["response_time_ms"] is not None else ""

    if tc["assertions"]:
        check_rows = "".join(
            f'<tr class="{"ok" if a["passed"] else "ng"}"><td>{i}</td><td>{esc(a["name"])}</td>'
            f'<td>{"PASS" if a["passed"] else "FAIL"}</td><td>{esc("OK" if a["passed"] else a["message"])}</td></tr>'
            for i, a in enumerate(tc["assertions"], start=1)
        )
        checks = ('<table class="checks"><thead><tr><th>#</th><th>Assertion</th><th>Status</th>'
                  f'<th>Message</th></tr></thead><tbody>{check_rows}</tbody></table>')
    else:
        checks = '<div class="muted">— no assertions —</div>'

    return (
        f'<div class="block" id="{case_id}"><div>'
        f'<span class="badge {badge}">{tc["outcome"].value.upper()}</span> '
        f'<b>{tc["tc_id"]}-{esc(pretty_name(tc["api_name"]))}</b> {status}{resp}'
        f'<button class="btn-mini" data-open="req" data-for="{case_id}">View Request</button> '
        f'<button class="btn-mini" data-open="res" data-for="{case_id}">View Response</button></div>'
        f'<script type="application/json" id="payload-req-{case_id}">{encode_payload(tc["request_snapshot"])}</script>'
        f'<script type="application/json" id="payload-res-{case_id}">{encode_payload(tc["response_snapshot"])}</script>'
        f'<div><b>Checks:</b> {fmt(tc["checks_passed"])} / {fmt(tc["checks_total"])}</div>'
        f"{checks}</div>"
    )


def encode_payload(snapshot: Dict[str, Any]) -> str:
    """Base64 over UTF-8 JSON (lossless, safe inside a script element)."""
    raw = json.dumps(snapshot, ensure_ascii=False, default=str).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def _unique_case_ids(cases: List[Dict[str, Any]]) -> Dict[int, str]:
    """Element id per case; repeats of the same request and iteration get a numeric suffix."""
    seen: Dict[str, int] = {}
    ids: Dict[int, str] = {}
    for tc in cases:
        base = tc["case_id"] or "case"
        seen[base] = seen.get(base, 0) + 1
        ids[id(tc)] = base if seen[base] == 1 else f"{base}-{seen[base]}"
    return ids


def _script_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False).replace("</", "<\\/")


def _format_timestamp(started_at: Optional[str]) -> str:
    if started_at:
        try:
            return datetime.fromisoformat(str(started_at).replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            return str(started_at)
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
