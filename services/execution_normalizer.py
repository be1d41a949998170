"""
execution_normalizer.py

Turns a raw Newman run report into an ordered list of test-case records.

Responsibilities:
- Walk run.executions and build one test-case dict per execution entry
- Classify each case as Pass / Fail / Skipped / Not Run
- Derive the folder (group) and request (API) names from the item name
- Capture request/response snapshots (method, URL, headers, body) for display

The capture helpers never raise: malformed headers are skipped and bodies
fall back to raw text or an empty string. The run report schema is owned
by Newman, so every field is optional here.
"""

import json
import logging
import math
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from utils.file_utils import load_json_file
from utils.report_utils import contains_skip_marker, slugify

logger = logging.getLogger(__name__)

DEFAULT_ITEM_NAME = "Request"
DEFAULT_GROUP = "Ungrouped"
DEFAULT_ASSERTION_NAME = "Assertion"

HEADER_LIST_FIELDS = ("members", "header", "headers")


class Outcome(Enum):
    """Test-case result."""
    PASS = "Pass"
    FAIL = "Fail"
    SKIPPED = "Skipped"
    NOT_RUN = "Not Run"


class ReportError(Exception):
    """Base error for the report stages."""


class RunInputError(ReportError, ValueError):
    """Raised when the run report cannot be read or parsed."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to read/parse input JSON: {self.path} ({reason})")


# ============================================================
# Public API
# ============================================================

def load_run_file(path) -> Dict[str, Any]:
    """
    Read and parse a Newman run report.

    Raises:
        RunInputError: If the file is unreadable, is not valid JSON, or its
                       top level is not a JSON object.
    """
    try:
        data = load_json_file(Path(path))
    except (OSError, UnicodeDecodeError) as e:
        raise RunInputError(path, str(e)) from e
    except json.JSONDecodeError as e:
        raise RunInputError(path, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise RunInputError(path, "top-level JSON value must be an object")
    return data


def extract_run_metadata(run_data: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Collection name and start timestamp of a run (both optional)."""
    run = _as_dict(run_data.get("run"))
    collection = _as_dict(run_data.get("collection"))
    info = _as_dict(collection.get("info"))
    started = _as_dict(run.get("timings")).get("started") or run_data.get("timestamp")
    return {
        "collection_name": info.get("name") or collection.get("name"),
        "started_at": started,
    }


def normalize_run(run_data: Dict[str, Any], skip_marker: str = "skip") -> List[Dict[str, Any]]:
    """
    Normalize every execution of a run into test-case dicts, in run order.

    Args:
        run_data: Parsed Newman run report.
        skip_marker: Word that marks an assertion as skipped.

    Returns:
        List of test-case dicts (see normalize_execution).
    """
    executions = _as_dict(run_data.get("run")).get("executions") or []
    if not isinstance(executions, list):
        logger.warning("run.executions is not a list; treating the run as empty.")
        return []
    return [normalize_execution(ex, skip_marker) for ex in executions]


def normalize_execution(execution: Optional[Dict[str, Any]], skip_marker: str = "skip") -> Dict[str, Any]:
    """
    Build one test-case record from a raw execution entry.

    A missing entry (None), or one with neither assertions nor a response
    (the request never completed), yields a 'Not Run' case. Outcome precedence:
    Not Run, then Skipped (skip marker in any assertion name or message),
    then Fail (any assertion error), then Pass. A case without assertions
    is a Pass.

    Returns:
        dict with: case_id, tc_id, group_key, api_name, iteration, outcome,
        assertions (tuple), checks_total, checks_passed, checks_failed,
        status_code, status_text, response_time_ms, request_snapshot,
        response_snapshot.
    """
    ex = execution if isinstance(execution, dict) else None
    data = ex or {}

    item_name = _item_name(data)
    group_key = item_name.split("/")[0] or DEFAULT_GROUP
    iteration = _iteration(data)

    raw_assertions = data.get("assertions") or []
    if not isinstance(raw_assertions, list):
        raw_assertions = []
    assertions = tuple(_normalize_assertion(a) for a in raw_assertions if isinstance(a, dict))
    failed = sum(1 for a in assertions if not a["passed"])

    response = _as_dict(data.get("response"))
    request = _as_dict(data.get("request"))

    if ex is None or (not assertions and not response):
        outcome = Outcome.NOT_RUN
    elif any(contains_skip_marker(a["name"], skip_marker) or contains_skip_marker(a["message"], skip_marker)
             for a in assertions):
        outcome = Outcome.SKIPPED
    elif failed > 0:
        outcome = Outcome.FAIL
    else:
        outcome = Outcome.PASS

    return {
        "case_id": slugify(f"{item_name}-{iteration}"),
        "tc_id": f"TC{iteration:03d}",
        "group_key": group_key,
        "api_name": item_name,
        "iteration": iteration,
        "outcome": outcome,
        "assertions": assertions,
        "checks_total": len(assertions),
        "checks_passed": len(assertions) - failed,
        "checks_failed": failed,
        "status_code": _status_code(response.get("code")),
        "status_text": response.get("status") or None,
        "response_time_ms": _response_time(response.get("responseTime")),
        "request_snapshot": capture_request(request),
        "response_snapshot": capture_response(response),
    }


# ============================================================
# Request / response capture
# ============================================================

def capture_request(request: Dict[str, Any]) -> Dict[str, Any]:
    """Normalized request snapshot: method, url, headers, body."""
    request = _as_dict(request)
    header_source = request.get("header") or request.get("headers") or request
    return {
        "method": str(request.get("method") or ""),
        "url": build_url(request.get("url")),
        "headers": headers_to_dict(header_source),
        "body": parse_json_or_text(request_body_text(request.get("body"))),
    }


def capture_response(response: Dict[str, Any]) -> Dict[str, Any]:
    """Normalized response snapshot: code, status, headers, body."""
    response = _as_dict(response)
    code = response.get("code")
    return {
        "code": code if code is not None else "",
        "status": response.get("status") or "",
        "headers": headers_to_dict(response.get("header")),
        "body": parse_json_or_text(response_body_text(response)),
    }


def build_url(url: Any) -> str:
    """
    Rebuild a display URL from a Newman URL value.

    Accepts a plain string, an object with 'raw', or an object with
    protocol/host/path parts (host and path may be lists).
    """
    if not url:
        return ""
    if isinstance(url, str):
        return url
    if not isinstance(url, dict):
        return str(url)
    if url.get("raw"):
        return str(url["raw"])
    protocol = f"{url['protocol']}://" if url.get("protocol") else ""
    host = url.get("host") or ""
    if isinstance(host, list):
        host = ".".join(str(h) for h in host)
    path = url.get("path")
    if isinstance(path, list):
        path = "/" + "/".join(str(p) for p in path)
    elif path:
        path = "/" + str(path)
    else:
        path = ""
    return f"{protocol}{host}{path}"


def headers_to_dict(headers: Any) -> Dict[str, str]:
    """
    Normalize headers into an ordered key -> value dict (key case preserved).

    Accepted shapes: a list of {key|name, value|val|description} pairs, or an
    object carrying such a list under 'members', 'header' or 'headers'.
    Disabled entries and entries without a key are skipped.
    """
    if not headers:
        return {}
    entries: List[Any] = []
    if isinstance(headers, list):
        entries = headers
    elif isinstance(headers, dict):
        for field in HEADER_LIST_FIELDS:
            if isinstance(headers.get(field), list):
                entries = headers[field]
                break

    result: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("disabled"):
            continue
        key = _first_present(entry, ("key", "name"))
        if key is None or key == "":
            continue
        value = _first_present(entry, ("value", "val", "description"))
        result[str(key)] = "" if value is None else str(value)
    return result


def request_body_text(body: Any) -> str:
    """Flatten a Newman request body into text according to its mode."""
    if not body:
        return ""
    if isinstance(body, str):
        return body
    if not isinstance(body, dict):
        return str(body)
    mode = body.get("mode") or ("raw" if body.get("raw") else None)
    if mode == "raw":
        raw = body.get("raw")
        return "" if raw is None else str(raw)
    if mode == "urlencoded":
        return "&".join(_pair_text(p) for p in body.get("urlencoded") or [] if isinstance(p, dict))
    if mode == "formdata":
        return "\n".join(_pair_text(p) for p in body.get("formdata") or [] if isinstance(p, dict))
    payload = body.get(mode) if mode and body.get(mode) is not None else body
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return str(payload)


def response_body_text(response: Dict[str, Any]) -> str:
    """Response body from 'text', a string 'body', or the 'stream' byte list."""
    if isinstance(response.get("text"), str):
        return response["text"]
    if isinstance(response.get("body"), str):
        return response["body"]
    stream = response.get("stream")
    if isinstance(stream, dict) and isinstance(stream.get("data"), list):
        try:
            return bytes(stream["data"]).decode("utf-8", errors="replace")
        except (TypeError, ValueError):
            logger.debug("Unreadable response stream; leaving body empty.")
    return ""


def parse_json_or_text(body: Any) -> Any:
    """Parsed JSON when the text is valid JSON, else the trimmed raw text ('' when blank)."""
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return body
    text = str(body).strip()
    if not text:
        return ""
    try:
        return json.loads(text)
    except ValueError:
        return text


# ============================================================
# Internal helpers
# ============================================================

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_present(entry: Dict[str, Any], fields) -> Any:
    for field in fields:
        if entry.get(field) is not None:
            return entry[field]
    return None


def _pair_text(pair: Dict[str, Any]) -> str:
    key = pair.get("key")
    value = pair.get("value")
    return f"{'' if key is None else key}={'' if value is None else value}"


def _item_name(execution: Dict[str, Any]) -> str:
    name = _as_dict(execution.get("item")).get("name")
    return str(name) if name else DEFAULT_ITEM_NAME


def _iteration(execution: Dict[str, Any]) -> int:
    raw = _as_dict(execution.get("cursor")).get("iteration")
    try:
        index = int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        index = 0
    return max(index, 0) + 1


def _normalize_assertion(raw: Dict[str, Any]) -> Dict[str, Any]:
    error = raw.get("error")
    error_dict = _as_dict(error)
    name = raw.get("assertion") or error_dict.get("test") or error_dict.get("name") or DEFAULT_ASSERTION_NAME
    if error:
        message = str(error_dict.get("message") or error_dict.get("stack") or
                      ("" if error_dict else error)).strip()
    else:
        message = "OK"
    return {"name": str(name), "passed": not error, "message": message}


def _status_code(code: Any) -> Optional[int]:
    if isinstance(code, bool) or code is None or code == "":
        return None
    try:
        return int(code)
    except (TypeError, ValueError):
        return None


def _response_time(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value
