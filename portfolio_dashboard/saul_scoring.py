from typing import Any, Dict, Iterable, Mapping, Optional

from .coercion import round_half_up


TIER_DEFS = {
    "tier1": ["R_001", "R_001A", "R_003", "R_006"],
    "tier2": ["R_002", "R_004", "R_005", "R_007", "R_008", "R_009"],
    "tier3": ["R_010", "R_011", "R_012", "R_013", "R_014", "R_015", "R_016", "R_017"],
    "tier4": ["R_018", "R_019", "R_020", "R_021", "R_022", "R_023", "R_024"],
}

DISQUALIFYING_STATUSES = {"FAIL", "DISQUALIFIED", "DISQ"}
CAUTION_STATUSES = {"CAUTION", "WARNING"}
NOT_APPLICABLE_STATUSES = {"N/A", "INSUFFICIENT_DATA", "UNCLEAR"}

TIER2_BONUS_MAX = 25
WARNING_PENALTY_EACH = 2
WARNING_PENALTY_MAX = 10


def tier_for_rule(rule_id: str) -> Optional[str]:
    for tier, members in TIER_DEFS.items():
        if rule_id in members:
            return tier
    return None


def _normalize_status(status: Any) -> str:
    return str(status or "").strip().upper().replace(" ", "_")


def _count(statuses: Iterable[str], accepted: set) -> int:
    return sum(1 for status in statuses if _normalize_status(status) in accepted)


def compute_saul_summary(rules: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not rules:
        return None

    tiers: Dict[str, Dict[str, Any]] = {name: {} for name in TIER_DEFS}
    for rule_id, status in rules.items():
        tier = tier_for_rule(rule_id)
        if tier is not None:
            tiers[tier][rule_id] = status

    tier1 = list(tiers["tier1"].values())
    tier1_count = len(tier1)
    if tier1_count == 0:
        base_score = 0
    elif _count(tier1, DISQUALIFYING_STATUSES):
        base_score = 0
    elif _count(tier1, CAUTION_STATUSES):
        base_score = 50
    else:
        base_score = 70

    tier2 = list(tiers["tier2"].values())
    tier2_applicable = len(tier2) - _count(tier2, NOT_APPLICABLE_STATUSES)
    tier2_passes = _count(tier2, {"PASS"})
    tier2_bonus = 0
    if tier2_applicable > 0:
        tier2_bonus = round_half_up(tier2_passes / tier2_applicable * TIER2_BONUS_MAX)

    tier4_warnings = _count(tiers["tier4"].values(), CAUTION_STATUSES)
    warning_penalty = min(tier4_warnings * WARNING_PENALTY_EACH, WARNING_PENALTY_MAX)

    score = max(0, min(100, base_score + tier2_bonus - warning_penalty))

    tier3_passes = _count(tiers["tier3"].values(), {"PASS"})
    if tier3_passes >= 5 and tier4_warnings <= 1:
        conviction = "High"
    elif tier3_passes >= 3 and tier4_warnings <= 3:
        conviction = "Medium"
    else:
        conviction = "Low"

    return {
        "tiers": tiers,
        "score": score,
        "conviction": conviction,
        "base_score": base_score,
        "tier2_bonus": tier2_bonus,
        "warning_penalty": warning_penalty,
        "tier1_count": tier1_count,
        "tier2_passes": tier2_passes,
        "tier2_applicable": tier2_applicable,
        "tier3_passes": tier3_passes,
        "tier4_warnings": tier4_warnings,
    }
