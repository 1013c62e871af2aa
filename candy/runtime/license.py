from __future__ import annotations

from dataclasses import dataclass

from .protocol import ContextMode, LicenseTier


@dataclass(frozen=True, slots=True)
class TierLimits:
    tier: LicenseTier
    max_iterations: int | None
    allow_smart_context: bool
    allow_full_context: bool


_TIER_LIMITS: dict[LicenseTier, TierLimits] = {
    LicenseTier.FREE: TierLimits(LicenseTier.FREE, max_iterations=50, allow_smart_context=False, allow_full_context=False),
    LicenseTier.STANDARD: TierLimits(
        LicenseTier.STANDARD, max_iterations=15, allow_smart_context=True, allow_full_context=False
    ),
    LicenseTier.PRO: TierLimits(LicenseTier.PRO, max_iterations=None, allow_smart_context=True, allow_full_context=True),
}


def parse_tier(raw: str | LicenseTier | None) -> LicenseTier:
    """Unknown or missing tiers fall back to free."""
    if isinstance(raw, LicenseTier):
        return raw
    if isinstance(raw, str):
        try:
            return LicenseTier(raw.strip().lower())
        except ValueError:
            return LicenseTier.FREE
    return LicenseTier.FREE


def limits_for_tier(tier: str | LicenseTier | None) -> TierLimits:
    return _TIER_LIMITS[parse_tier(tier)]


@dataclass(frozen=True, slots=True)
class ContextModeDecision:
    requested: ContextMode
    effective: ContextMode

    @property
    def downgraded(self) -> bool:
        return self.requested is not self.effective

    def notice(self) -> str | None:
        if not self.downgraded:
            return None
        return (
            f'> **License Limit:** Context downgraded to "{self.effective.value}". '
            "Upgrade your license for better context awareness.\n\n"
        )


def resolve_context_mode(limits: TierLimits, requested: ContextMode | None) -> ContextModeDecision:
    """Downgrade `full -> smart -> minimal` to what the tier allows. Missing requests mean smart."""
    req = requested or ContextMode.SMART
    effective = req
    if req is ContextMode.FULL and not limits.allow_full_context:
        effective = ContextMode.SMART if limits.allow_smart_context else ContextMode.MINIMAL
    elif req is ContextMode.SMART and not limits.allow_smart_context:
        effective = ContextMode.MINIMAL
    return ContextModeDecision(requested=req, effective=effective)


def limit_reached_notice(max_iterations: int) -> str:
    return (
        f"\n\n**License Limit Reached:** The autonomous agent has stopped after {max_iterations} iterations. "
        "Upgrade to a higher tier for extended autonomous coding."
    )
