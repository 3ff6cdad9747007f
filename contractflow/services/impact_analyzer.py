"""
Impact Analyzer — change impact estimation and NEC4 compliance check.

Heuristic, text-driven:
    - delay_days:  first "<n> day(s)" in the description, else 0
    - cost:        delay_days × day rate of the first clause family that
                   appears in the clause reference, else 0
    - critical:    any critical keyword in the lower-cased description
    - confidence:  constant (the heuristic does not self-assess)

No schedule network is consulted; float and criticality from the imported
programme are not used here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

_DELAY_RE = re.compile(r"(\d+)\s*days?", re.IGNORECASE)

DEFAULT_CLAUSE_DAY_RATES = {"60.1(12)": 2000, "60.1(1)": 5000}
DEFAULT_CRITICAL_KEYWORDS = ("critical", "foundation", "structure")
DEFAULT_CONFIDENCE = 0.8


@dataclass(frozen=True)
class Impact:
    delay_days: int
    cost: float
    affects_critical_path: bool
    confidence: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Compliance:
    is_valid: bool
    clause_reference: str
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


class ImpactAnalyzer:
    """Derives an Impact from a change description and clause reference."""

    def __init__(self, clause_rates=None, critical_keywords=None, confidence=None):
        self.clause_rates = dict(clause_rates if clause_rates is not None else DEFAULT_CLAUSE_DAY_RATES)
        self.critical_keywords = tuple(
            k.lower() for k in (critical_keywords if critical_keywords is not None
                                else DEFAULT_CRITICAL_KEYWORDS)
        )
        self.confidence = DEFAULT_CONFIDENCE if confidence is None else float(confidence)

    @classmethod
    def from_config(cls, config) -> "ImpactAnalyzer":
        return cls(
            clause_rates=config.get("IMPACT_CLAUSE_DAY_RATES"),
            critical_keywords=config.get("IMPACT_CRITICAL_KEYWORDS"),
            confidence=config.get("IMPACT_CONFIDENCE"),
        )

    def day_rate(self, clause_reference: str | None) -> float:
        clause = clause_reference or ""
        for family, rate in self.clause_rates.items():
            if family in clause:
                return float(rate)
        return 0.0

    def analyze(self, description: str | None, change_type: str | None,
                clause_reference: str | None) -> Impact:
        text = description or ""
        match = _DELAY_RE.search(text)
        delay_days = int(match.group(1)) if match else 0
        cost = delay_days * self.day_rate(clause_reference)
        lowered = text.lower()
        critical = any(k in lowered for k in self.critical_keywords)

        impact = Impact(
            delay_days=delay_days,
            cost=cost,
            affects_critical_path=critical,
            confidence=self.confidence,
        )
        logger.debug("Impact for %s (%s): %s", change_type, clause_reference, impact)
        return impact

    @staticmethod
    def validate_compliance(clause_reference: str | None) -> Compliance:
        clause = (clause_reference or "").strip()
        if clause:
            return Compliance(True, clause, "Valid NEC4 clause reference found")
        return Compliance(False, "", "No NEC4 clause reference provided")
