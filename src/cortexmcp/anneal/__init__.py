"""Self-annealing loop: remediation, quality audits and the knowledge sink."""

from cortexmcp.anneal.auditor import QualityAuditor
from cortexmcp.anneal.cycle import CycleReport
from cortexmcp.anneal.cycle import SelfAnnealCycle
from cortexmcp.anneal.knowledge import KnowledgeSink
from cortexmcp.anneal.knowledge import Learning
from cortexmcp.anneal.remediation import AutoRemediationEngine
from cortexmcp.anneal.remediation import choose_remediation
from cortexmcp.anneal.remediation import Remediation
from cortexmcp.anneal.remediation import RemediationAction
from cortexmcp.anneal.remediation import RemediationOutcome

__all__ = [
    "AutoRemediationEngine",
    "CycleReport",
    "KnowledgeSink",
    "Learning",
    "QualityAuditor",
    "Remediation",
    "RemediationAction",
    "RemediationOutcome",
    "SelfAnnealCycle",
    "choose_remediation",
]
