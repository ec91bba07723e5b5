"""
Budget-gated two-tier escalation.

- EscalationController: selects priority markets and runs them through the analyzer
- Analyzer / OpenAIAnalyzer: expensive per-market analysis with a CostMeter
- AnalysisTools: read-only lookups offered to the analyzer
- CooldownStore: per-market last-analyzed timestamps (memory or DynamoDB)
"""

from edgescan.escalation.analyzer import AnalysisRequest, AnalysisResult, Analyzer, CostMeter, OpenAIAnalyzer
from edgescan.escalation.controller import EscalationController, EscalationOutcome, SpendLedger
from edgescan.escalation.cooldown_store import CooldownStore, DynamoCooldownStore, InMemoryCooldownStore
from edgescan.escalation.tools import AnalysisTools

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisTools",
    "Analyzer",
    "CooldownStore",
    "CostMeter",
    "DynamoCooldownStore",
    "EscalationController",
    "EscalationOutcome",
    "InMemoryCooldownStore",
    "OpenAIAnalyzer",
    "SpendLedger",
]
