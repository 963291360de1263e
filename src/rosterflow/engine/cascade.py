"""Cascade engine: recompute derived fields after source-field changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from rosterflow.config.rules import CascadeRule, RuleRegistry
from rosterflow.models import DerivedValue, FieldChange, PlayerRecord


logger = logging.getLogger(__name__)


class CascadeComputationError(RuntimeError):
    """The rule graph misbehaved: a recompute failed or the pass limit was exceeded."""


@dataclass
class CascadeOutcome:
    record: PlayerRecord
    changes: List[FieldChange] = field(default_factory=list)
    fired_rules: List[str] = field(default_factory=list)
    derived: Dict[str, DerivedValue] = field(default_factory=dict)
    passes: int = 0

    def changed_fields(self) -> List[str]:
        return [change.field for change in self.changes]


def _apply_rule(
    rule: CascadeRule,
    snapshot: PlayerRecord,
    timestamp: datetime,
) -> Tuple[PlayerRecord, Dict[str, DerivedValue], List[FieldChange]]:
    try:
        values = dict(rule.compute(snapshot))
    except Exception as exc:
        raise CascadeComputationError(f"Rule {rule.id} failed for player {snapshot.player_id}: {exc}") from exc

    missing = [target for target in rule.target_fields if target not in values]
    extra = sorted(set(values) - set(rule.target_fields))
    if missing or extra:
        raise CascadeComputationError(
            f"Rule {rule.id} returned fields {sorted(values)}, expected {list(rule.target_fields)}"
        )

    derived: Dict[str, DerivedValue] = {}
    changes: List[FieldChange] = []
    for target in rule.target_fields:
        before = snapshot.get_field(target)
        after = values[target]
        derived[target] = DerivedValue(
            value=after,
            computed_from=rule.computed_from,
            last_computed_at=timestamp,
        )
        if before != after:
            changes.append(FieldChange(field=target, before=before, after=after, rule_id=rule.id))
    return snapshot.with_derived(derived), derived, changes


def run_cascade(
    record: PlayerRecord,
    changed_fields: Iterable[str],
    registry: RuleRegistry,
    timestamp: datetime,
) -> CascadeOutcome:
    """Walk the rule graph starting from ``changed_fields``.

    ``record`` must already carry the source changes. Each pass fires, in
    (priority, id) order, every rule triggered by a field that changed in the
    previous pass; later rules in a pass read the values written by earlier
    ones. The returned change list is deterministic for a given snapshot and
    field set.
    """

    outcome = CascadeOutcome(record=record)
    frontier = set(changed_fields)
    snapshot = record
    while frontier:
        if outcome.passes >= registry.max_passes:
            raise CascadeComputationError(
                f"Cascade for player {record.player_id} did not settle after {registry.max_passes} passes"
            )
        outcome.passes += 1
        next_frontier: set[str] = set()
        for rule in registry.rules_triggered_by(frontier):
            snapshot, derived, changes = _apply_rule(rule, snapshot, timestamp)
            outcome.fired_rules.append(rule.id)
            outcome.derived.update(derived)
            outcome.changes.extend(changes)
            next_frontier.update(change.field for change in changes)
        frontier = next_frontier

    outcome.record = snapshot
    logger.debug(
        "Cascade for %s fired %d rules over %d passes",
        record.player_id,
        len(outcome.fired_rules),
        outcome.passes,
    )
    return outcome


def recompute_all(record: PlayerRecord, registry: RuleRegistry, timestamp: datetime) -> CascadeOutcome:
    """Run every rule once in dependency order, e.g. for a newly onboarded player."""

    outcome = CascadeOutcome(record=record, passes=1)
    snapshot = record
    for rule in registry.topological_order():
        snapshot, derived, changes = _apply_rule(rule, snapshot, timestamp)
        outcome.fired_rules.append(rule.id)
        outcome.derived.update(derived)
        outcome.changes.extend(changes)
    outcome.record = snapshot
    return outcome


def stale_derived_fields(record: PlayerRecord, registry: RuleRegistry) -> List[str]:
    """Derived fields whose stored value differs from a fresh recompute of ``record``."""

    stale: List[str] = []
    snapshot = record
    for rule in registry.topological_order():
        try:
            values: Mapping[str, Any] = rule.compute(snapshot)
        except Exception as exc:
            raise CascadeComputationError(f"Rule {rule.id} failed for player {record.player_id}: {exc}") from exc
        for target in rule.target_fields:
            stored = record.derived.get(target)
            if stored is None or stored.value != values.get(target):
                stale.append(target)
        # later rules must see the recomputed values, not the stored ones
        snapshot = snapshot.with_derived(
            {target: DerivedValue(value=values.get(target)) for target in rule.target_fields}
        )
    return stale
