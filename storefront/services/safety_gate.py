"""
Pre-flight checks for destructive catalog syncs.

Guards run in a fixed order and stop at the first failure:
1. confirmation flag present in the invocation args
2. target is allowed: on the explicit allow-list when one is configured, and
   matching none of the blocked keywords
3. provider returned at least min_source_items items

The keyword match is a case-insensitive substring heuristic over the target
descriptor. It catches the obvious "prod" database URL and nothing more; the
allow-list is the real control.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)


class SafetyGuard:
    CONFIRMATION = "confirmation"
    TARGET = "target"
    SOURCE_COUNT = "source_count"


@dataclass(frozen=True)
class SyncSafetyConfig:
    require_confirmation: bool = True
    confirmation_flag: str = "--confirm-sync"
    min_source_items: int = 1
    blocked_target_keywords: frozenset = frozenset({"production", "prod"})
    allowed_targets: frozenset = frozenset()


DEFAULT_SYNC_SAFETY_CONFIG = SyncSafetyConfig()


@dataclass(frozen=True)
class SafetyCheckResult:
    passed: bool
    guard: Optional[str] = None
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        if self.passed:
            return "All safety checks passed"
        parts = [f"{k}={v}" for k, v in self.details.items()]
        suffix = f" ({', '.join(parts)})" if parts else ""
        return f"{self.reason}{suffix}"


_PASSED = SafetyCheckResult(passed=True)


def check_confirmation_flag(
    args: Sequence[str],
    config: SyncSafetyConfig = DEFAULT_SYNC_SAFETY_CONFIG,
) -> SafetyCheckResult:
    if not config.require_confirmation:
        return _PASSED
    if config.confirmation_flag in args:
        return _PASSED
    return SafetyCheckResult(
        passed=False,
        guard=SafetyGuard.CONFIRMATION,
        reason="Confirmation flag required",
        details={"required_flag": config.confirmation_flag},
    )


def _target_key(descriptor: str) -> Optional[str]:
    """host[:port]/database of a URL-shaped descriptor, lowercased."""
    try:
        url = make_url(descriptor)
    except Exception:
        return None
    host = url.host or ""
    if url.port:
        host = f"{host}:{url.port}"
    return f"{host}/{url.database or ''}".lower()


def check_target(
    target_descriptor: Optional[str],
    config: SyncSafetyConfig = DEFAULT_SYNC_SAFETY_CONFIG,
) -> SafetyCheckResult:
    if not target_descriptor:
        return SafetyCheckResult(
            passed=False,
            guard=SafetyGuard.TARGET,
            reason="Database URL not provided",
        )

    if config.allowed_targets:
        candidates = {target_descriptor.lower()}
        key = _target_key(target_descriptor)
        if key:
            candidates.add(key)
        allowed = {t.lower() for t in config.allowed_targets}
        if not candidates & allowed:
            return SafetyCheckResult(
                passed=False,
                guard=SafetyGuard.TARGET,
                reason="Target not in allow-list",
                details={"target": key or "<unparseable>"},
            )

    lowered = target_descriptor.lower()
    detected = sorted(kw for kw in config.blocked_target_keywords if kw and kw.lower() in lowered)
    if detected:
        return SafetyCheckResult(
            passed=False,
            guard=SafetyGuard.TARGET,
            reason="Production environment detected",
            details={"detected_keywords": detected},
        )
    return _PASSED


def check_minimum_source_items(
    source_item_count: int,
    config: SyncSafetyConfig = DEFAULT_SYNC_SAFETY_CONFIG,
) -> SafetyCheckResult:
    if source_item_count >= config.min_source_items:
        return _PASSED
    return SafetyCheckResult(
        passed=False,
        guard=SafetyGuard.SOURCE_COUNT,
        reason="Insufficient source items",
        details={
            "source_item_count": source_item_count,
            "minimum_required": config.min_source_items,
        },
    )


def run_safety_checks(
    args: Sequence[str],
    target_descriptor: Optional[str],
    source_item_count: int,
    config: SyncSafetyConfig = DEFAULT_SYNC_SAFETY_CONFIG,
) -> SafetyCheckResult:
    """First failing guard wins; passes only when all three hold."""
    checks = (
        lambda: check_confirmation_flag(args, config),
        lambda: check_target(target_descriptor, config),
        lambda: check_minimum_source_items(source_item_count, config),
    )
    for check in checks:
        result = check()
        if not result.passed:
            logger.warning(
                "Sync safety check failed [%s]: %s", result.guard, result.describe(),
            )
            return result
    logger.info("Sync safety checks passed (%d source items)", source_item_count)
    return _PASSED
