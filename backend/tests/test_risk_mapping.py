import pytest

from scanworker.scanner.normalizers.risk import (
    map_confidence,
    map_severity,
    risk_to_level,
    risk_to_score,
    risk_to_severity,
    severity_to_score,
)


def test_mixed_risk_inputs_map_to_expected_severities():
    assert [risk_to_severity(r) for r in ("high", "Medium", 2, 99)] == [
        "high", "medium", "medium", "info",
    ]


@pytest.mark.parametrize("risk, score", [
    ("High", 3),
    ("medium", 2),
    ("LOW", 1),
    ("Informational", 0),
    ("3", 3),
    (2, 2),
    (7.5, 7.5),
    (None, 0),
    ("", 0),
    ([], 0),
])
def test_risk_to_score(risk, score):
    assert risk_to_score(risk) == score


def test_risk_level_defaults_to_info_for_unknown_values():
    assert risk_to_level("high") == "high"
    assert risk_to_level(1) == "low"
    assert risk_to_level("critical") == "info"
    assert risk_to_level(object()) == "info"


@pytest.mark.parametrize("confidence, expected", [
    ("Confirmed", "confirmed"),
    ("HIGH", "high"),
    ("medium", "medium"),
    ("Low", "low"),
    ("False Positive", "low"),
    (None, "low"),
])
def test_map_confidence(confidence, expected):
    assert map_confidence(confidence) == expected


def test_map_severity_and_score():
    assert map_severity("CRITICAL") == "critical"
    assert map_severity("informational") == "info"
    assert map_severity("unknown") == "info"
    assert map_severity(None) == "info"
    assert severity_to_score("critical") == 4
    assert severity_to_score("info") == 0
    assert severity_to_score("bogus") == 0
