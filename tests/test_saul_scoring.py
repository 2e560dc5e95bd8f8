from portfolio_dashboard.saul_scoring import compute_saul_summary, tier_for_rule


TIER1_PASS = {"R_001": "PASS", "R_001A": "PASS", "R_003": "PASS", "R_006": "PASS"}


def test_empty_rules_return_none():
    assert compute_saul_summary({}) is None
    assert compute_saul_summary(None) is None


def test_tier1_all_pass_scores_seventy():
    summary = compute_saul_summary(TIER1_PASS)
    assert summary["score"] == 70
    assert summary["base_score"] == 70
    assert summary["tier2_bonus"] == 0
    assert summary["warning_penalty"] == 0
    assert summary["tier1_count"] == 4


def test_tier1_fail_zeroes_score_regardless_of_other_tiers():
    rules = dict(TIER1_PASS, R_003="FAIL")
    rules.update({"R_002": "PASS", "R_004": "PASS", "R_010": "PASS"})
    assert compute_saul_summary(rules)["score"] == 0


def test_tier1_caution_gives_fifty_base():
    summary = compute_saul_summary(dict(TIER1_PASS, R_006="warning"))
    assert summary["base_score"] == 50


def test_tier2_bonus_ignores_not_applicable_rules():
    rules = dict(TIER1_PASS)
    rules.update({"R_002": "PASS", "R_004": "FAIL", "R_005": "N/A", "R_007": "INSUFFICIENT DATA"})
    summary = compute_saul_summary(rules)
    assert summary["tier2_applicable"] == 2
    assert summary["tier2_passes"] == 1
    assert summary["tier2_bonus"] == 13
    assert summary["score"] == 83


def test_tier4_warning_penalty_is_capped():
    rules = dict(TIER1_PASS)
    for rule_id in ["R_018", "R_019", "R_020", "R_021", "R_022", "R_023"]:
        rules[rule_id] = "WARNING"
    summary = compute_saul_summary(rules)
    assert summary["tier4_warnings"] == 6
    assert summary["warning_penalty"] == 10
    assert summary["score"] == 60
    assert summary["conviction"] == "Low"


def test_conviction_levels():
    rules = dict(TIER1_PASS)
    for rule_id in ["R_010", "R_011", "R_012", "R_013", "R_014"]:
        rules[rule_id] = "PASS"
    assert compute_saul_summary(rules)["conviction"] == "High"

    rules = dict(TIER1_PASS, R_010="PASS", R_011="PASS", R_012="PASS", R_018="CAUTION", R_019="CAUTION")
    assert compute_saul_summary(rules)["conviction"] == "Medium"


def test_unknown_rule_ids_are_dropped_and_scoring_is_deterministic():
    rules = dict(TIER1_PASS, R_099="PASS")
    first = compute_saul_summary(rules)
    second = compute_saul_summary(rules)
    assert first == second
    assert all("R_099" not in tier for tier in first["tiers"].values())
    assert tier_for_rule("R_099") is None
    assert tier_for_rule("R_001A") == "tier1"
