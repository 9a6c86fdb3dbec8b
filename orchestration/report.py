"""
DEPENDENCY REPORT
Read-only snapshot of the process graph for dashboards and export.
"""
import logging
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field

from infrastructure.graph_db import GraphDB
from orchestration.analyzer import (
    GraphAnalyzer, CriticalPath, Bottleneck, DependencyMetrics,
)
from orchestration.rules import RuleRegistry

logger = logging.getLogger("ProcFlow.Report")


class Recommendation(BaseModel):
    type: str
    priority: str  # high | medium | low
    title: str
    description: str
    action: str


class Report(BaseModel):
    """The document an export feature serializes (camelCase keys)."""
    total_nodes: int = Field(alias="totalNodes")
    total_edges: int = Field(alias="totalEdges")
    rule_executions: Dict[str, int] = Field(default_factory=dict, alias="ruleExecutions")
    metrics: DependencyMetrics
    critical_path: Optional[CriticalPath] = Field(default=None, alias="criticalPath")
    bottlenecks: List[Bottleneck] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def build_recommendations(
    metrics: DependencyMetrics,
    bottlenecks: List[Bottleneck],
    self_loops: List[str]
) -> List[Recommendation]:
    """Fixed threshold rules over the computed metrics."""
    recommendations = []

    if metrics.cycle_count > 0:
        recommendations.append(Recommendation(
            type="circular_dependencies",
            priority="high",
            title="Resolve circular dependencies",
            description=f"{metrics.cycle_count} cyclic dependencies block the workflow.",
            action="Analyze the cycles and break them by reorganizing the processes."
        ))

    if self_loops:
        recommendations.append(Recommendation(
            type="self_dependencies",
            priority="high",
            title="Remove self-dependencies",
            description=f"{len(self_loops)} node(s) depend on themselves: {', '.join(self_loops)}.",
            action="Delete the self-referencing edges; a node cannot wait for itself."
        ))

    if metrics.isolated_node_count > 0:
        recommendations.append(Recommendation(
            type="isolated_nodes",
            priority="medium",
            title="Integrate isolated nodes",
            description=f"{metrics.isolated_node_count} node(s) have no dependencies.",
            action="Check whether these nodes should be connected to the workflow."
        ))

    if bottlenecks:
        recommendations.append(Recommendation(
            type="dependency_bottlenecks",
            priority="high",
            title="Reduce dependency bottlenecks",
            description=f"{len(bottlenecks)} node(s) have too many dependencies.",
            action="Split complex processes to reduce their dependencies."
        ))

    return recommendations


class ReportGenerator:
    def __init__(self, db: GraphDB, analyzer: GraphAnalyzer, registry: RuleRegistry):
        self.db = db
        self.analyzer = analyzer
        self.registry = registry

    def generate(self) -> Report:
        cycles = self.analyzer.detect_cycles()
        metrics = self.analyzer.degree_metrics(cycle_count=len(cycles))
        bottlenecks = self.analyzer.bottlenecks()

        report = Report(
            total_nodes=self.db.node_count(),
            total_edges=self.db.edge_count(),
            rule_executions=self.registry.execution_counts(),
            metrics=metrics,
            critical_path=self.analyzer.critical_path(),
            bottlenecks=bottlenecks,
            recommendations=build_recommendations(
                metrics, bottlenecks, self.analyzer.find_self_loops()
            )
        )
        logger.info(
            f"Report: {report.total_nodes} nodes, {report.total_edges} edges, "
            f"{metrics.cycle_count} cycle(s), {len(bottlenecks)} bottleneck(s)"
        )
        return report
