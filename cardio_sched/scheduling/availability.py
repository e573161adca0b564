"""Availability rule evaluation.

Rules are administratively authored and read-only here. Evaluation is a pure
reduction over the matching rules with severity hard > warn > none, so the
same rule set always yields the same answer for the same slot.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Optional, Protocol

from cardio_sched.scheduling.calendar import day_of_week
from cardio_sched.scheduling.models import (
    AvailabilityResult,
    AvailabilityRuleInfo,
    AvailabilityViolation,
    BulkAvailabilityResult,
    Enforcement,
    ProviderInfo,
    RuleType,
    ServiceInfo,
    TimeBlock,
)

BLOCKED_REASON = "Provider is blocked for this time slot"
ALLOW_LIST_REASON = "Provider is only available on specific days/times"

_SEVERITY: dict[Optional[Enforcement], int] = {
    None: 0,
    Enforcement.WARN: 1,
    Enforcement.HARD: 2,
}

ALLOWED = AvailabilityResult(allowed=True, enforcement=None, reason=None)


class SlotLike(Protocol):
    provider_id: str
    service_id: str
    date: date
    time_block: TimeBlock


def _in_scope(rule: AvailabilityRuleInfo, provider_id: str, service_id: Optional[str]) -> bool:
    if rule.provider_id != provider_id:
        return False
    return rule.service_id is None or rule.service_id == service_id


def _slot_matches(rule: AvailabilityRuleInfo, dow: int, time_block: TimeBlock) -> bool:
    return rule.day_of_week == dow and TimeBlock(rule.time_block).overlaps(time_block)


def _result_for(enforcement: Enforcement, reason: str) -> AvailabilityResult:
    return AvailabilityResult(
        allowed=enforcement is not Enforcement.HARD,
        enforcement=enforcement,
        reason=reason,
    )


def reduce_violations(results: Iterable[AvailabilityResult]) -> AvailabilityResult:
    """Pick the most severe result; the first one wins among equals."""
    worst = ALLOWED
    for result in results:
        if _SEVERITY[result.enforcement] > _SEVERITY[worst.enforcement]:
            worst = result
    return worst


def slot_violations(
    rules: Iterable[AvailabilityRuleInfo],
    provider_id: str,
    service_id: Optional[str],
    dow: int,
    time_block: TimeBlock,
) -> list[AvailabilityResult]:
    """Every rule-derived objection to placing the provider in this slot.

    Allow rules turn the provider's scope into an allow-list: if any allow rule
    is in scope and none covers the slot, that is a violation, hard when any of
    the allow rules is hard. Block rules covering the slot are violations with
    their own enforcement.
    """
    scoped = [r for r in rules if _in_scope(r, provider_id, service_id)]
    found: list[AvailabilityResult] = []

    allow_rules = [r for r in scoped if r.rule_type == RuleType.ALLOW]
    if allow_rules and not any(_slot_matches(r, dow, time_block) for r in allow_rules):
        hard = any(r.enforcement == Enforcement.HARD for r in allow_rules)
        found.append(
            _result_for(Enforcement.HARD if hard else Enforcement.WARN, ALLOW_LIST_REASON)
        )

    for rule in scoped:
        if rule.rule_type == RuleType.BLOCK and _slot_matches(rule, dow, time_block):
            found.append(_result_for(Enforcement(rule.enforcement), rule.reason or BLOCKED_REASON))
    return found


def evaluate(
    rules: Iterable[AvailabilityRuleInfo],
    provider_id: str,
    service_id: Optional[str],
    dow: int,
    time_block: TimeBlock,
) -> AvailabilityResult:
    """Decide whether the provider may work ``service_id`` at (dow, time_block).

    ``warn`` results are allowed but must be confirmed by the caller; ``hard``
    results are not allowed.
    """
    return reduce_violations(slot_violations(rules, provider_id, service_id, dow, time_block))


def evaluate_on(
    rules: Iterable[AvailabilityRuleInfo],
    provider_id: str,
    service_id: Optional[str],
    day: date,
    time_block: TimeBlock,
) -> AvailabilityResult:
    return evaluate(rules, provider_id, service_id, day_of_week(day), time_block)


def strictest_block(
    rules: Iterable[AvailabilityRuleInfo],
    provider_id: str,
    day: date,
    time_block: TimeBlock,
) -> AvailabilityResult:
    """Most severe block rule for the provider at this slot, across all services."""
    dow = day_of_week(day)
    return reduce_violations(
        _result_for(Enforcement(r.enforcement), r.reason or BLOCKED_REASON)
        for r in rules
        if r.provider_id == provider_id
        and r.rule_type == RuleType.BLOCK
        and _slot_matches(r, dow, time_block)
    )


def check_bulk(
    rules: Sequence[AvailabilityRuleInfo],
    proposals: Iterable[SlotLike],
    providers: Mapping[str, ProviderInfo] | None = None,
    services: Mapping[str, ServiceInfo] | None = None,
) -> BulkAvailabilityResult:
    """Evaluate a batch of proposed placements and itemise the objections."""
    providers = providers or {}
    services = services or {}
    by_provider: dict[str, list[AvailabilityRuleInfo]] = {}
    for rule in rules:
        by_provider.setdefault(rule.provider_id, []).append(rule)

    violations: list[AvailabilityViolation] = []
    for proposal in proposals:
        provider_rules = by_provider.get(proposal.provider_id)
        if not provider_rules:
            continue
        result = evaluate_on(
            provider_rules,
            proposal.provider_id,
            proposal.service_id,
            proposal.date,
            proposal.time_block,
        )
        if result.enforcement is None:
            continue
        provider = providers.get(proposal.provider_id)
        service = services.get(proposal.service_id)
        violations.append(
            AvailabilityViolation(
                provider_id=proposal.provider_id,
                provider_initials=provider.initials if provider else "Unknown",
                service_id=proposal.service_id,
                service_name=service.name if service else "Unknown",
                date=proposal.date,
                time_block=proposal.time_block,
                enforcement=result.enforcement,
                reason=result.reason,
            )
        )
    return BulkAvailabilityResult(violations=violations)
