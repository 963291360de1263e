"""Cascade rule declarations and the validated rule registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from rosterflow.models import PlayerRecord

from . import scoring


Recompute = Callable[[PlayerRecord], Mapping[str, Any]]


class RegistryError(ValueError):
    """Raised when a rule set cannot be loaded (duplicates, unknown fields, cycles)."""


@dataclass(frozen=True)
class CascadeRule:
    id: str
    trigger_fields: FrozenSet[str]
    target_fields: Tuple[str, ...]
    priority: int
    compute: Recompute = field(compare=False)
    high_impact: bool = False
    subsystem: str = ""

    @property
    def computed_from(self) -> Tuple[str, ...]:
        return tuple(sorted(self.trigger_fields))

    def sort_key(self) -> Tuple[int, str]:
        return (self.priority, self.id)


DERIVED_FIELDS: Tuple[str, ...] = (
    "attendance_score",
    "medical_score",
    "medical_status",
    "fitness_rating",
    "performance_flag",
    "workload_score",
    "performance_score",
    "physicality_index",
    "player_value",
    "cohesion_reliability",
    "availability_status",
    "fitness_status",
    "selection_risk",
    "medical_review_required",
)


def _rule(
    rule_id: str,
    triggers: Iterable[str],
    targets: Sequence[str],
    priority: int,
    compute: Recompute,
    *,
    high_impact: bool = False,
    subsystem: str,
) -> CascadeRule:
    return CascadeRule(
        id=rule_id,
        trigger_fields=frozenset(triggers),
        target_fields=tuple(targets),
        priority=priority,
        compute=compute,
        high_impact=high_impact,
        subsystem=subsystem,
    )


_DEFAULT_RULES: Tuple[CascadeRule, ...] = (
    _rule(
        "attendance_score",
        ("training.sessions_absent", "training.sessions_late", "medical.appointments_missed"),
        ("attendance_score",),
        10,
        scoring.attendance_score,
        subsystem="Attendance Tracking",
    ),
    _rule(
        "medical_score",
        ("medical.appointments_missed", "injuries.open_injuries", "injuries.season_injury_count"),
        ("medical_score",),
        20,
        scoring.medical_score,
        high_impact=True,
        subsystem="Medical Compliance Tracking",
    ),
    _rule(
        "medical_status",
        ("injuries.open_injuries",),
        ("medical_status",),
        25,
        scoring.medical_status,
        high_impact=True,
        subsystem="Medical Status Tracking",
    ),
    _rule(
        "gps_fitness",
        ("gps.total_distance",),
        ("fitness_rating", "performance_flag"),
        26,
        scoring.gps_fitness,
        subsystem="Fitness Monitoring",
    ),
    _rule(
        "workload_score",
        ("gps.player_load",),
        ("workload_score",),
        27,
        scoring.workload_score,
        subsystem="Training Load Management",
    ),
    _rule(
        "performance_score",
        ("ai.game_impact_rating", "ai.physicality_rating", "ai.skillset_rating"),
        ("performance_score",),
        28,
        scoring.performance_score,
        subsystem="Performance Analytics",
    ),
    _rule(
        "physicality_index",
        ("physical.weight_kg", "physical.height_cm"),
        ("physicality_index",),
        29,
        scoring.physicality_index,
        subsystem="Physical Profiling",
    ),
    _rule(
        "player_value",
        ("financial.base_value", "attendance_score", "medical_score", "fitness_rating"),
        ("player_value",),
        30,
        scoring.player_value,
        subsystem="Player Value Analysis",
    ),
    _rule(
        "cohesion_reliability",
        ("attendance_score", "cohesion.teamwork_rating"),
        ("cohesion_reliability",),
        40,
        scoring.cohesion_reliability,
        subsystem="Team Cohesion Metrics",
    ),
    _rule(
        "availability_status",
        ("medical_status",),
        ("availability_status",),
        50,
        scoring.availability_status,
        high_impact=True,
        subsystem="Team Selection",
    ),
    _rule(
        "fitness_status",
        ("fitness_rating",),
        ("fitness_status",),
        55,
        scoring.fitness_status,
        subsystem="Fitness Monitoring",
    ),
    _rule(
        "selection_risk",
        ("medical_status", "medical_score", "performance_flag"),
        ("selection_risk",),
        60,
        scoring.selection_risk,
        high_impact=True,
        subsystem="Selection Risk Assessment",
    ),
    _rule(
        "medical_review_required",
        ("performance_flag", "medical_status"),
        ("medical_review_required",),
        70,
        scoring.medical_review_required,
        high_impact=True,
        subsystem="Medical Alert System",
    ),
)


class RuleRegistry:
    """Immutable, load-time validated set of cascade rules.

    Construction fails with :class:`RegistryError` when two rules share an id,
    a rule targets an undeclared derived field, two rules target the same
    field, a trigger is neither a source path nor a derived field, or the
    trigger -> target graph contains a cycle.
    """

    def __init__(
        self,
        rules: Iterable[CascadeRule],
        derived_fields: Iterable[str] = DERIVED_FIELDS,
    ) -> None:
        self._rules: Dict[str, CascadeRule] = {}
        self._derived_fields: Tuple[str, ...] = tuple(derived_fields)
        self._owner: Dict[str, str] = {}
        for rule in rules:
            self._register(rule)
        self._check_triggers()
        self._order = self._topological_order()
        self._max_passes = self._longest_chain() + 1

    def _register(self, rule: CascadeRule) -> None:
        if rule.id in self._rules:
            raise RegistryError(f"Duplicate cascade rule id: {rule.id}")
        if not rule.target_fields:
            raise RegistryError(f"Rule {rule.id} declares no target fields")
        for target in rule.target_fields:
            if target not in self._derived_fields:
                raise RegistryError(f"Rule {rule.id} targets undeclared derived field {target!r}")
            owner = self._owner.get(target)
            if owner is not None:
                raise RegistryError(f"Derived field {target!r} is targeted by both {owner} and {rule.id}")
            self._owner[target] = rule.id
        self._rules[rule.id] = rule

    def _check_triggers(self) -> None:
        for rule in self._rules.values():
            for trigger in sorted(rule.trigger_fields):
                if trigger in self._derived_fields:
                    continue
                if not PlayerRecord.has_source_field(trigger):
                    raise RegistryError(
                        f"Rule {rule.id} trigger {trigger!r} is neither a source field nor a derived field"
                    )

    def _upstream(self, rule: CascadeRule) -> List[str]:
        # rules whose targets feed this rule's triggers
        return sorted({self._owner[t] for t in rule.trigger_fields if t in self._owner})

    def _topological_order(self) -> Tuple[CascadeRule, ...]:
        pending = {rule_id: set(self._upstream(rule)) for rule_id, rule in self._rules.items()}
        ordered: List[CascadeRule] = []
        while pending:
            ready = sorted(
                (self._rules[rule_id] for rule_id, deps in pending.items() if not deps),
                key=CascadeRule.sort_key,
            )
            if not ready:
                cycle = ", ".join(sorted(pending))
                raise RegistryError(f"Cascade rules form a cycle among: {cycle}")
            for rule in ready:
                ordered.append(rule)
                del pending[rule.id]
            for deps in pending.values():
                deps.difference_update(rule.id for rule in ready)
        return tuple(ordered)

    def _longest_chain(self) -> int:
        depth: Dict[str, int] = {}
        for rule in self._order:
            upstream = self._upstream(rule)
            depth[rule.id] = 1 + max((depth[u] for u in upstream), default=0)
        return max(depth.values(), default=0)

    @property
    def max_passes(self) -> int:
        return self._max_passes

    @property
    def derived_fields(self) -> Tuple[str, ...]:
        return self._derived_fields

    def get(self, rule_id: str) -> CascadeRule:
        try:
            return self._rules[rule_id]
        except KeyError as exc:
            raise KeyError(f"No cascade rule registered with id={rule_id!r}") from exc

    def __iter__(self):
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._rules)

    def topological_order(self) -> Tuple[CascadeRule, ...]:
        return self._order

    def rules_triggered_by(self, fields: Iterable[str]) -> List[CascadeRule]:
        """Rules with at least one trigger in ``fields``, ordered by (priority, id)."""

        changed = set(fields)
        selected = [rule for rule in self._rules.values() if rule.trigger_fields & changed]
        return sorted(selected, key=CascadeRule.sort_key)


def iter_default_rules() -> Iterable[CascadeRule]:
    return iter(_DEFAULT_RULES)


_DEFAULT_REGISTRY: RuleRegistry | None = None


def default_registry() -> RuleRegistry:
    """Return the process-wide registry built from the default rules."""

    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = RuleRegistry(_DEFAULT_RULES)
    return _DEFAULT_REGISTRY
