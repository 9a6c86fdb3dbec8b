"""
ProcFlow Orchestration Layer

Components:
- engine: Status transition core (the only writer of node status)
- rules: Named reactive rules keyed by trigger
- scheduler: Event queue drained to a fixpoint
- analyzer: Cycles, critical path, bottlenecks
- report: Dependency report with recommendations
"""
from orchestration.engine import DependencyEngine
from orchestration.rules import Rule, RuleRegistry, RuleDefinitionError
from orchestration.scheduler import EventScheduler, EngineEvent
from orchestration.analyzer import GraphAnalyzer, CriticalPath, Bottleneck, DependencyMetrics
from orchestration.report import ReportGenerator, Report, Recommendation

__all__ = [
    'DependencyEngine',
    'Rule',
    'RuleRegistry',
    'RuleDefinitionError',
    'EventScheduler',
    'EngineEvent',
    'GraphAnalyzer',
    'CriticalPath',
    'Bottleneck',
    'DependencyMetrics',
    'ReportGenerator',
    'Report',
    'Recommendation',
]
