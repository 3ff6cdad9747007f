"""Impact analyzer: delay/cost extraction, critical keywords, compliance."""

import pytest

from contractflow.services.impact_analyzer import ImpactAnalyzer


@pytest.fixture()
def analyzer():
    return ImpactAnalyzer()


class TestAnalyze:
    def test_worked_example(self, analyzer):
        impact = analyzer.analyze(
            "Steel delivery delayed 2 days due to supplier issue affecting foundation works",
            "weather_delay", "60.1(12)",
        )
        assert impact.delay_days == 2
        assert impact.cost == 4000
        assert impact.affects_critical_path is True
        assert impact.confidence == 0.8

    def test_compensation_event_rate(self, analyzer):
        impact = analyzer.analyze("Access withheld for 3 days", "access_delay", "60.1(1)")
        assert impact.delay_days == 3
        assert impact.cost == 15000
        assert impact.affects_critical_path is False

    def test_singular_day(self, analyzer):
        assert analyzer.analyze("Lost 1 day to rain", "weather_delay", None).delay_days == 1

    def test_no_delay_mentioned(self, analyzer):
        impact = analyzer.analyze("Minor change with no measurable delay", "scope_change", "60.1(12)")
        assert impact.delay_days == 0
        assert impact.cost == 0

    def test_unknown_clause_costs_nothing(self, analyzer):
        impact = analyzer.analyze("Delay of 4 days", "other", "14.3")
        assert impact.delay_days == 4
        assert impact.cost == 0

    def test_empty_description(self, analyzer):
        impact = analyzer.analyze(None, "other", None)
        assert (impact.delay_days, impact.cost, impact.affects_critical_path) == (0, 0, False)

    @pytest.mark.parametrize("text", [
        "Critical crane unavailable",
        "STRUCTURE steel late",
        "Foundation redesign",
    ])
    def test_critical_keywords_case_insensitive(self, analyzer, text):
        assert analyzer.analyze(text, "other", None).affects_critical_path is True

    def test_from_config_overrides(self, app):
        analyzer = ImpactAnalyzer.from_config({
            "IMPACT_CLAUSE_DAY_RATES": {"60.1(5)": 100},
            "IMPACT_CRITICAL_KEYWORDS": ["Bridge"],
            "IMPACT_CONFIDENCE": 0.5,
        })
        impact = analyzer.analyze("bridge works slipped 2 days", "other", "60.1(5)")
        assert impact.cost == 200
        assert impact.affects_critical_path is True
        assert impact.confidence == 0.5

    def test_to_dict(self, analyzer):
        data = analyzer.analyze("5 days", "other", "60.1(12)").to_dict()
        assert data == {
            "delay_days": 5,
            "cost": 10000,
            "affects_critical_path": False,
            "confidence": 0.8,
        }


class TestCompliance:
    def test_clause_present(self):
        result = ImpactAnalyzer.validate_compliance(" 60.1(12) ")
        assert result.is_valid is True
        assert result.clause_reference == "60.1(12)"
        assert result.reason == "Valid NEC4 clause reference found"

    @pytest.mark.parametrize("clause", [None, "", "   "])
    def test_clause_missing(self, clause):
        result = ImpactAnalyzer.validate_compliance(clause)
        assert result.is_valid is False
        assert result.reason == "No NEC4 clause reference provided"
