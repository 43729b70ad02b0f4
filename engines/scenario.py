"""Branching decision scenarios.

A :class:`ScenarioGraph` is an arena of nodes keyed by id; decisions refer to
their target by ``next_node_id`` rather than by object reference, so loops
and back-references are plain data. Scores come from walking the submitted
``(node_id, decision_id)`` path against the graph; a client-reported total is
never consulted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from engines.base import round_half_up
from engines.validation import SubmissionValidationError
from schemas import DecisionAnalysis, PathStep, Scenario, ScenarioDecision, ScenarioNode


@dataclass
class ScenarioScore:
    raw_score: int
    max_score: int
    score_percentage: int
    steps: List[DecisionAnalysis] = field(default_factory=list)

    @property
    def invalid_steps(self) -> int:
        return sum(1 for step in self.steps if not step.valid)

    @property
    def optimal_steps(self) -> int:
        return sum(1 for step in self.steps if step.was_optimal)


class ScenarioGraph:
    def __init__(self, scenario: Scenario):
        if scenario.max_score <= 0:
            raise SubmissionValidationError(
                f"Scenario {scenario.id} must have a positive max_score"
            )
        if not scenario.nodes:
            raise SubmissionValidationError(f"Scenario {scenario.id} has no nodes")

        self.scenario = scenario
        self.nodes: Dict[str, ScenarioNode] = {}
        self._decisions: Dict[Tuple[str, str], ScenarioDecision] = {}
        for node in scenario.nodes:
            if node.id in self.nodes:
                raise SubmissionValidationError(
                    f"Scenario {scenario.id} repeats node id {node.id}"
                )
            self.nodes[node.id] = node
            for decision in node.decisions:
                key = (node.id, decision.id)
                if key in self._decisions:
                    raise SubmissionValidationError(
                        f"Node {node.id} repeats decision id {decision.id}"
                    )
                self._decisions[key] = decision

    @property
    def entry_node_id(self) -> str:
        return self.scenario.nodes[0].id

    @property
    def max_score(self) -> int:
        return self.scenario.max_score

    def decision(self, node_id: str, decision_id: str) -> Optional[ScenarioDecision]:
        return self._decisions.get((node_id, decision_id))

    def dangling_edges(self) -> List[Tuple[str, str, str]]:
        """Decisions whose ``next_node_id`` points at no node."""

        missing = []
        for (node_id, decision_id), decision in self._decisions.items():
            if decision.next_node_id and decision.next_node_id not in self.nodes:
                missing.append((node_id, decision_id, decision.next_node_id))
        return missing

    def validate(self) -> None:
        dangling = self.dangling_edges()
        if dangling:
            node_id, decision_id, target = dangling[0]
            raise SubmissionValidationError(
                f"Decision {node_id}/{decision_id} points at unknown node {target}"
            )

    def optimal_path(self) -> List[str]:
        """Node ids visited by always taking the first optimal decision."""

        path: List[str] = []
        seen = set()
        node_id: Optional[str] = self.entry_node_id
        while node_id and node_id in self.nodes and node_id not in seen:
            seen.add(node_id)
            path.append(node_id)
            node = self.nodes[node_id]
            best = next((d for d in node.decisions if d.is_optimal), None)
            node_id = best.next_node_id if best else None
        return path

    def score_path(self, path: Iterable[PathStep]) -> ScenarioScore:
        total = 0
        steps: List[DecisionAnalysis] = []
        for step in path:
            decision = self.decision(step.node_id, step.decision_id)
            if decision is None:
                steps.append(
                    DecisionAnalysis(
                        node_id=step.node_id,
                        decision_id=step.decision_id,
                        valid=False,
                    )
                )
                continue
            total += decision.score_impact
            steps.append(
                DecisionAnalysis(
                    node_id=step.node_id,
                    decision_id=step.decision_id,
                    valid=True,
                    was_optimal=decision.is_optimal,
                    score_impact=decision.score_impact,
                    rationale=decision.rationale,
                )
            )

        percentage = round_half_up(100 * total / self.max_score)
        return ScenarioScore(
            raw_score=total,
            max_score=self.max_score,
            score_percentage=max(0, min(100, percentage)),
            steps=steps,
        )


def score_scenario(scenario: Scenario, path: Iterable[PathStep]) -> ScenarioScore:
    return ScenarioGraph(scenario).score_path(path)


__all__ = ["ScenarioGraph", "ScenarioScore", "score_scenario"]
