import json
from pathlib import Path

import pytest

from utils.config import load_report_settings


def ok(name="Status code is 200"):
    return {"assertion": name}


def failing(name="Status code is 200", message="expected 500 to equal 200"):
    return {"assertion": name, "error": {"name": "AssertionError", "test": name, "message": message}}


def make_execution(name, iteration=0, assertions=(), response_time=120, code=200, response=True):
    """One Newman run.executions entry."""
    execution = {
        "item": {"name": name},
        "cursor": {"iteration": iteration},
        "request": {
            "method": "GET",
            "url": {"protocol": "https", "host": ["api", "example", "test"], "path": ["v1", "items"]},
            "header": [{"key": "Accept", "value": "application/json"}],
        },
        "assertions": list(assertions),
    }
    if response:
        execution["response"] = {
            "code": code,
            "status": "OK" if code == 200 else "Error",
            "responseTime": response_time,
            "header": [{"key": "Content-Type", "value": "application/json"}],
            "stream": {"type": "Buffer", "data": list('{"id": 42, "note": "café"}'.encode("utf-8"))},
        }
    return execution


def make_run(executions, collection_name="Digital - Invoices", started="2025-03-04T05:06:07.000Z"):
    return {
        "collection": {"info": {"name": collection_name}},
        "run": {"timings": {"started": started}, "executions": list(executions)},
    }


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def settings(project_root):
    return load_report_settings(project_root=str(project_root), overrides={"charts_enabled": False})


@pytest.fixture
def write_run(tmp_path):
    """Write a run dict to a JSON file and return its path."""
    counter = {"n": 0}

    def _write(run_data, name=None):
        counter["n"] += 1
        path = tmp_path / "runs" / (name or f"run_{counter['n']}.json")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(run_data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def suite_output(project_root):
    """Output path whose folders after the anchor give ('Billing', 'Invoices')."""
    return project_root / "NewManCollectionList" / "Billing" / "Invoices" / "Invoices_report.html"


@pytest.fixture
def three_execution_run():
    return make_run([
        make_execution("Invoices/Get Invoice", assertions=[ok(), ok("Body has id")], response_time=400),
        make_execution("Invoices/Create Invoice", assertions=[failing()], response_time=1500),
        make_execution("Invoices/Delete Invoice", response=False),
    ])


def write_sidecar_document(temp_root: Path, grouping: str, module: str, rows, suite_apis, soft_fail_apis=()):
    """A suite document plus its JSON sidecar, as the suite builder leaves them in Temp/."""
    html_path = Path(temp_root) / grouping / f"{module}_latest.html"
    html_path.parent.mkdir(parents=True, exist_ok=True)
    html_path.write_text("<!doctype html><html><body>display only</body></html>", encoding="utf-8")
    sidecar = {
        "schema_version": 1,
        "suite": {"grouping_key": grouping, "module_key": module},
        "suite_apis": list(suite_apis),
        "folder_rows": list(rows),
        "soft_fail_apis": list(soft_fail_apis),
    }
    html_path.with_suffix(".json").write_text(json.dumps(sidecar), encoding="utf-8")
    return html_path


def folder_row(name, passed, failed, avg=100):
    total = passed + failed
    return {
        "name": name,
        "passed": passed,
        "failed": failed,
        "total": total,
        "pass_pct": round(100 * passed / total) if total else 0,
        "avg_response_ms": avg,
    }
