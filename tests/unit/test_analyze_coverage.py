from __future__ import annotations

import pytest

from mender.models.llm_client import LLMSchemaError
from mender.phases.analyze_coverage import CoverageFinding, analyze_coverage

REPORT = """\
File      | % Stmts | % Branch | % Funcs | % Lines | Uncovered Line #s
----------|---------|----------|---------|---------|-------------------
All files |   81.25 |       50 |     100 |   81.25 |
 calc.ts  |   81.25 |       50 |     100 |   81.25 | 10-12
"""

FINDING = {
    "file_path": "src/calc.ts",
    "statements": 81.25,
    "branches": 50,
    "functions": 100,
    "lines": 81.25,
    "uncovered_lines": "10-12",
}


def test_findings_are_parsed_into_records(scripted_client) -> None:
    client = scripted_client(default={"analyze_coverage": {"files": [FINDING]}})

    findings = analyze_coverage(REPORT, 90, client=client)

    assert findings == [
        CoverageFinding(
            file_path="src/calc.ts",
            statements=81.25,
            branches=50.0,
            functions=100.0,
            lines=81.25,
            uncovered_lines="10-12",
        )
    ]


def test_same_report_yields_same_findings(scripted_client) -> None:
    client = scripted_client(default={"analyze_coverage": {"files": [FINDING]}})

    first = analyze_coverage(REPORT, 100, client=client)
    second = analyze_coverage(REPORT, 100, client=client)

    assert first == second
    prompts = [call["input"] for call in client.calls_for("analyze_coverage")]
    assert prompts[0] == prompts[1]


def test_duplicate_and_blank_paths_are_dropped(scripted_client) -> None:
    blank = dict(FINDING, file_path="  ")
    repeated = dict(FINDING, uncovered_lines="3")
    other = dict(FINDING, file_path="src/other.ts")
    client = scripted_client({"analyze_coverage": [{"files": [FINDING, blank, repeated, other]}]})

    findings = analyze_coverage(REPORT, 100, client=client)

    assert [finding.file_path for finding in findings] == ["src/calc.ts", "src/other.ts"]
    assert findings[0].uncovered_lines == "10-12"


def test_no_findings_returns_empty_list(scripted_client) -> None:
    client = scripted_client({"analyze_coverage": [{"files": []}]})

    assert analyze_coverage(REPORT, 100, client=client) == []


def test_schema_failure_is_raised(scripted_client) -> None:
    client = scripted_client({"analyze_coverage": [{"files": [{"file_path": "src/calc.ts"}]}]})

    with pytest.raises(LLMSchemaError):
        analyze_coverage(REPORT, 100, client=client)


def test_prompt_includes_report_and_threshold(scripted_client, payload_text) -> None:
    client = scripted_client({"analyze_coverage": [{"files": []}]})

    analyze_coverage(REPORT, 87.5, client=client)

    text = payload_text(client.calls_for("analyze_coverage")[0])
    assert "threshold of 87.5%" in text
    assert " calc.ts  |   81.25" in text
