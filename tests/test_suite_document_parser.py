import json

from conftest import failing, make_execution, make_run, ok
from services.suite_document_parser import parse_suite_document
from services.suite_report_builder import generate_suite_report

HANDWRITTEN = """
<html><head>
<meta name="suite-parent" content="Retail &amp; Stores">
<meta name="suite-module" content="Orders">
</head><body>
<table id="tbl"><thead><tr><th>Folder</th><th>P</th><th>F</th><th>T</th><th>%</th><th>Avg</th></tr></thead>
<tbody>
<tr><td>Orders <span class="badge">3</span></td><td><span class="badge pass">1,204</span></td><td>6</td>
    <td>1,210</td><td>99.5 %</td><td>1,234.5</td></tr>
<tr><td>Payments 2</td><td>4</td><td>0</td><td>4</td><td>100</td><td>87</td></tr>
<tr><td>Broken</td><td>n/a</td><td>0</td><td>0</td><td>0%</td><td>0</td></tr>
<tr><td>Short</td><td>1</td></tr>
</tbody></table>
<details id="api-orders"><summary><b>Orders</b> — 1 case(s)</summary>
  <div class="block"><table class="checks"><tr><td>1</td><td>Schema</td><td>FAIL</td>
  <td>Body schema + --&amp;gt; Failing</td></tr></table></div>
</details>
<details id="api-payments"><summary><b>Payments</b> — 1 case(s)</summary>
  <div class="block">Still Failing but no marker</div>
</details>
<p><b>Legacy</b> response + --&gt; Failing</p>
<script type="application/json" id="suite-apis">["Orders", "Payments", "Legacy", ""]</script>
</body></html>
"""


def test_identity_from_meta_tags():
    parsed = parse_suite_document(HANDWRITTEN)
    assert parsed["suite"] == {"grouping_key": "Retail & Stores", "module_key": "Orders"}
    assert parsed["source"] == "html"


def test_identity_defaults_when_meta_missing():
    parsed = parse_suite_document("<html><body></body></html>")
    assert parsed["suite"] == {"grouping_key": "Parent", "module_key": "Module"}
    assert parsed["folder_rows"] == []
    assert parsed["suite_apis"] == []


def test_tolerant_summary_rows():
    rows = parse_suite_document(HANDWRITTEN)["folder_rows"]
    assert rows == [
        {"name": "Orders", "passed": 1204, "failed": 6, "total": 1210, "pass_pct": 99.5, "avg_response_ms": 1234.5},
        {"name": "Payments", "passed": 4, "failed": 0, "total": 4, "pass_pct": 100.0, "avg_response_ms": 87.0},
    ]


def test_trailing_number_kept_when_badge_present():
    html_text = HANDWRITTEN.replace("<td>Orders <span", "<td>Version 2 <span")
    rows = parse_suite_document(html_text)["folder_rows"]
    assert [r["name"] for r in rows] == ["Version 2", "Payments"]


def test_registry_drops_blank_names():
    assert parse_suite_document(HANDWRITTEN)["suite_apis"] == ["Orders", "Payments", "Legacy"]


def test_invalid_registry_falls_back_to_row_names_for_soft_fail_scan():
    html_text = HANDWRITTEN.replace('["Orders", "Payments", "Legacy", ""]', "{not json")
    parsed = parse_suite_document(html_text)
    assert parsed["suite_apis"] == []
    assert parsed["soft_fail_apis"] == ["Orders"]


def test_soft_fail_sections_and_fallback_search():
    assert parse_suite_document(HANDWRITTEN)["soft_fail_apis"] == ["Legacy", "Orders"]


def test_soft_fail_marker_is_configurable():
    html_text = HANDWRITTEN.replace("Still Failing but no marker", "!! flaky !!")
    parsed = parse_suite_document(html_text, marker="!! flaky")
    assert parsed["soft_fail_apis"] == ["Payments"]


def test_round_trip_of_rendered_document(settings, write_run, suite_output):
    run = make_run([
        make_execution("SC_01_Get_Invoice", assertions=[ok()], response_time=200),
        make_execution("SC_01_Get_Invoice", iteration=1, assertions=[failing("Schema", "Body schema + --> Failing")],
                       response_time=300),
        make_execution("Lookups/Currencies", assertions=[ok()], response_time=2000),
        make_execution("Lookups/Countries & <Regions>", assertions=[ok()], response_time=1000),
    ])
    result = generate_suite_report(write_run(run), suite_output, "Billing", 1000, settings)
    sidecar_rows = {r["name"]: r for r in _sidecar(settings)["folder_rows"]}

    parsed = parse_suite_document(suite_output.read_text(encoding="utf-8"))

    assert parsed["suite"] == result["suite"]
    assert set(parsed["suite_apis"]) == {"Get Invoice", "Lookups/Currencies", "Lookups/Countries & <Regions>"}
    assert parsed["soft_fail_apis"] == ["Get Invoice"] == result["soft_fail_apis"]
    for row in parsed["folder_rows"]:
        expected = sidecar_rows[row["name"]]
        for key in ("passed", "failed", "total", "pass_pct", "avg_response_ms"):
            assert row[key] == expected[key]
    assert {r["name"] for r in parsed["folder_rows"]} == {"Get Invoice", "Lookups"}


def _sidecar(settings):
    path = settings["temp_root"] / "Billing" / "Invoices_latest.json"
    return json.loads(path.read_text(encoding="utf-8"))
