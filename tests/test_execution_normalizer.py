import json

import pytest

from conftest import failing, make_execution, make_run, ok
from services.execution_normalizer import (
    Outcome,
    ReportError,
    RunInputError,
    build_url,
    extract_run_metadata,
    headers_to_dict,
    load_run_file,
    normalize_execution,
    normalize_run,
    parse_json_or_text,
    request_body_text,
)


class TestOutcome:
    def test_missing_entry_is_not_run(self):
        assert normalize_execution(None)["outcome"] is Outcome.NOT_RUN

    def test_no_assertions_and_no_response_is_not_run(self):
        case = normalize_execution(make_execution("Orders/List", response=False))
        assert case["outcome"] is Outcome.NOT_RUN

    def test_zero_assertions_with_response_is_pass(self):
        case = normalize_execution(make_execution("Orders/List"))
        assert case["outcome"] is Outcome.PASS
        assert case["checks_total"] == 0

    def test_any_error_is_fail(self):
        case = normalize_execution(make_execution("Orders/List", assertions=[ok(), failing()]))
        assert case["outcome"] is Outcome.FAIL
        assert (case["checks_total"], case["checks_passed"], case["checks_failed"]) == (2, 1, 1)

    def test_skip_marker_wins_over_failure(self):
        execution = make_execution("Orders/List", assertions=[failing("SKIP - not on staging", "boom")])
        assert normalize_execution(execution)["outcome"] is Outcome.SKIPPED

    def test_skip_marker_in_message(self):
        execution = make_execution("Orders/List", assertions=[failing("Check", "skip this for now")])
        assert normalize_execution(execution)["outcome"] is Outcome.SKIPPED

    def test_skipped_word_is_not_a_skip_marker(self):
        execution = make_execution("Orders/List", assertions=[failing("Check", "was skipped upstream")])
        assert normalize_execution(execution)["outcome"] is Outcome.FAIL


class TestIdentityFields:
    def test_group_api_and_iteration(self):
        case = normalize_execution(make_execution("Invoices/Get Invoice", iteration=2))
        assert case["group_key"] == "Invoices"
        assert case["api_name"] == "Invoices/Get Invoice"
        assert case["iteration"] == 3
        assert case["tc_id"] == "TC003"
        assert case["case_id"] == "invoices-get-invoice-3"

    def test_missing_item_name(self):
        case = normalize_execution({"assertions": [ok()], "response": {"code": 200}})
        assert case["api_name"] == "Request"
        assert case["group_key"] == "Request"
        assert case["iteration"] == 1

    def test_leading_slash_gives_ungrouped(self):
        case = normalize_execution(make_execution("/Health"))
        assert case["group_key"] == "Ungrouped"


class TestAssertions:
    def test_names_and_messages(self):
        execution = make_execution("A", assertions=[
            ok("Status is 200"),
            {"error": {"test": "From test", "message": "  bad value  "}},
            {"error": {"name": "TypeError", "stack": "trace"}},
            {"error": {}},
        ])
        names = [a["name"] for a in normalize_execution(execution)["assertions"]]
        messages = [a["message"] for a in normalize_execution(execution)["assertions"]]
        assert names == ["Status is 200", "From test", "TypeError", "Assertion"]
        assert messages == ["OK", "bad value", "trace", "OK"]

    def test_assertions_are_immutable_tuple(self):
        case = normalize_execution(make_execution("A", assertions=[ok()]))
        assert isinstance(case["assertions"], tuple)


class TestResponseFields:
    def test_status_and_response_time(self):
        case = normalize_execution(make_execution("A", assertions=[ok()], response_time=400, code=201))
        assert case["status_code"] == 201
        assert case["response_time_ms"] == 400

    @pytest.mark.parametrize("value", [None, "400", -5, float("inf"), float("nan"), True])
    def test_invalid_response_time_is_dropped(self, value):
        execution = make_execution("A", assertions=[ok()])
        execution["response"]["responseTime"] = value
        assert normalize_execution(execution)["response_time_ms"] is None

    def test_snapshots(self):
        case = normalize_execution(make_execution("A", assertions=[ok()]))
        assert case["request_snapshot"] == {
            "method": "GET",
            "url": "https://api.example.test/v1/items",
            "headers": {"Accept": "application/json"},
            "body": "",
        }
        response = case["response_snapshot"]
        assert response["code"] == 200
        assert response["headers"] == {"Content-Type": "application/json"}
        assert response["body"] == {"id": 42, "note": "café"}

    def test_missing_response_snapshot(self):
        case = normalize_execution(make_execution("A", assertions=[ok()], response=False))
        assert case["status_code"] is None
        assert case["response_snapshot"] == {"code": "", "status": "", "headers": {}, "body": ""}


class TestCaptureHelpers:
    def test_build_url_variants(self):
        assert build_url("https://x.test/a") == "https://x.test/a"
        assert build_url({"raw": "https://x.test/raw"}) == "https://x.test/raw"
        assert build_url({"host": "x.test", "path": "a/b"}) == "x.test/a/b"
        assert build_url(None) == ""

    def test_headers_skip_disabled_and_keyless(self):
        headers = [
            {"key": "A", "value": "1"},
            {"name": "B", "val": 2},
            {"key": "C", "value": "3", "disabled": True},
            {"value": "no key"},
            "garbage",
        ]
        assert headers_to_dict(headers) == {"A": "1", "B": "2"}
        assert headers_to_dict({"members": [{"key": "D", "description": "d"}]}) == {"D": "d"}
        assert headers_to_dict(None) == {}

    def test_request_body_modes(self):
        assert request_body_text({"mode": "raw", "raw": '{"a": 1}'}) == '{"a": 1}'
        assert request_body_text({"mode": "urlencoded", "urlencoded": [{"key": "a", "value": "1"},
                                                                       {"key": "b", "value": None}]}) == "a=1&b="
        assert request_body_text({"mode": "formdata", "formdata": [{"key": "f", "value": "v"}]}) == "f=v"
        assert json.loads(request_body_text({"mode": "graphql", "graphql": {"query": "{ x }"}})) == {"query": "{ x }"}
        assert request_body_text(None) == ""

    def test_parse_json_or_text(self):
        assert parse_json_or_text('{"a": 1}') == {"a": 1}
        assert parse_json_or_text("  plain  ") == "plain"
        assert parse_json_or_text("   ") == ""


def test_normalize_run_keeps_order(three_execution_run):
    cases = normalize_run(three_execution_run)
    assert [c["outcome"] for c in cases] == [Outcome.PASS, Outcome.FAIL, Outcome.NOT_RUN]


def test_normalize_run_without_executions():
    assert normalize_run({}) == []
    assert normalize_run({"run": {"executions": "oops"}}) == []


def test_extract_run_metadata():
    meta = extract_run_metadata(make_run([], collection_name="Digital - Billing", started="2025-01-02T03:04:05Z"))
    assert meta == {"collection_name": "Digital - Billing", "started_at": "2025-01-02T03:04:05Z"}
    assert extract_run_metadata({"timestamp": "t"}) == {"collection_name": None, "started_at": "t"}


class TestLoadRunFile:
    def test_valid_file(self, write_run, three_execution_run):
        assert load_run_file(write_run(three_execution_run))["run"]["executions"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(RunInputError) as excinfo:
            load_run_file(tmp_path / "missing.json")
        assert "missing.json" in str(excinfo.value)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RunInputError, match="Failed to read/parse input JSON"):
            load_run_file(path)

    def test_top_level_must_be_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ReportError):
            load_run_file(path)
