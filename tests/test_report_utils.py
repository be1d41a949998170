import pytest

from utils.report_utils import (
    contains_skip_marker,
    contains_soft_failure,
    fmt,
    normalize_markup_text,
    pct,
    pct_str,
    pretty_name,
    render_template,
    slugify,
    sort_key,
)

MARKER = "+ --> Failing"


@pytest.mark.parametrize("raw, expected", [
    ("SC_01_Get_Invoice", "Get Invoice"),
    ("  Create Invoice  ", "Create Invoice"),
    ("SC_1x_Name", "SC 1x Name"),
    ("", "Untitled"),
    (None, "Untitled"),
])
def test_pretty_name(raw, expected):
    assert pretty_name(raw) == expected


def test_sort_key_ignores_prefix_punctuation_and_case():
    assert sort_key("SC_02_get-invoice!") == sort_key("Getinvoice")
    assert sorted(["beta", "SC_01_Alpha", "(Gamma)"], key=sort_key) == ["SC_01_Alpha", "beta", "(Gamma)"]


def test_slugify():
    assert slugify("Get Invoice-1") == "get-invoice-1"
    assert slugify("Invoices/Create Invoice") == "invoices-create-invoice"
    assert slugify("") == ""


def test_pct_rounds_half_up_and_handles_zero_denominator():
    assert pct(1, 8) == 13
    assert pct(1, 3) == 33
    assert pct(0, 0) == 0
    assert pct_str(8, 10) == "80%"
    assert pct_str(3, 0) == "0%"


def test_fmt():
    assert fmt(1234567) == "1,234,567"
    assert fmt(950.0) == "950"
    assert fmt(1234.5) == "1,234.5"
    assert fmt(None) == "—"


def test_render_template_is_single_pass():
    template = "<h1>{{TITLE}}</h1><p>{{BODY}}</p>{{UNKNOWN}}"
    rendered = render_template(template, {"TITLE": "{{BODY}}", "BODY": "text"})
    assert rendered == "<h1>{{BODY}}</h1><p>text</p>{{UNKNOWN}}"


class TestSoftFailureMarker:
    def test_literal_marker(self):
        assert contains_soft_failure("Body schema + --> Failing", MARKER)

    def test_html_escaped_marker(self):
        assert contains_soft_failure("+ --&gt; Failing", MARKER)

    def test_double_escaped_marker(self):
        assert contains_soft_failure("+ --&amp;gt; Failing", MARKER)

    def test_whitespace_and_case_variants(self):
        assert contains_soft_failure("+-->failing", MARKER)
        assert contains_soft_failure("+   -->\n  FAILING", MARKER)

    def test_failing_alone_is_not_a_marker(self):
        assert not contains_soft_failure("Failing", MARKER)
        assert not contains_soft_failure("Test is Failing --> again", MARKER)

    def test_empty_text(self):
        assert not contains_soft_failure("", MARKER)
        assert not contains_soft_failure(None, MARKER)


def test_normalize_markup_text_is_stable():
    assert normalize_markup_text("a &amp;amp;lt; b") == "a < b"
    assert normalize_markup_text("plain") == "plain"


@pytest.mark.parametrize("text, expected", [
    ("skip: feature flag off", True),
    ("Test SKIP", True),
    ("skipped by runner", False),
    ("noskip", False),
    ("", False),
])
def test_skip_marker_matches_whole_word(text, expected):
    assert contains_skip_marker(text) is expected
