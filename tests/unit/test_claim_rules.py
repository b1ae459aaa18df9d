from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace

from idynic.core.evaluation import find_duplicate_claims, find_missing_fields, label_similarity, sample_claims
from idynic.core.reflection import allowed_fields, sanitize_reflection
from idynic.types import IdentityReflection


def _claim(claim_id: int, label: str, type: str = "skill", day: int = 1) -> SimpleNamespace:
    return SimpleNamespace(id=claim_id, label=label, type=type, created_at=datetime(2026, 1, day, tzinfo=UTC))


def test_label_similarity_is_case_insensitive() -> None:
    assert label_similarity("Python", "python ") == 1.0
    assert label_similarity("", "python") == 0.0
    assert label_similarity("Python Development", "Python Developement") > 0.9


def test_newer_near_duplicate_is_flagged() -> None:
    claims = [_claim(1, "Python Development", day=1), _claim(2, "Python Developement", day=5)]

    issues = find_duplicate_claims(claims)

    assert len(issues) == 1
    assert issues[0].claim_id == 2
    assert issues[0].related_claim_id == 1
    assert issues[0].issue_type == "duplicate"
    assert issues[0].message == 'Possible duplicate of "Python Development"'


def test_duplicates_only_compare_within_a_type() -> None:
    claims = [_claim(1, "Team Leadership", type="attribute"), _claim(2, "Team Leadership", type="achievement")]
    assert find_duplicate_claims(claims) == []


def test_missing_fields_are_errors() -> None:
    claims = [_claim(1, "", type="skill"), _claim(2, "Kubernetes", type="")]

    issues = find_missing_fields(claims)

    assert {(issue.claim_id, issue.message) for issue in issues} == {
        (1, "Claim is missing a label"),
        (2, "Claim is missing a type (skill, achievement, or attribute)"),
    }
    assert all(issue.severity == "error" for issue in issues)


def test_sample_prefers_thin_then_recent_claims() -> None:
    claims = [_claim(1, "a", day=1), _claim(2, "b", day=2), _claim(3, "c", day=3), _claim(4, "d", day=4)]
    counts = {1: 0, 2: 3, 3: 0, 4: 1}

    sampled = sample_claims(claims, counts, limit=3)

    assert [claim.id for claim in sampled] == [3, 1, 4]


def test_reflection_fields_unlock_with_claim_count() -> None:
    assert allowed_fields(0) == []
    assert allowed_fields(1) == ["headline", "archetype"]
    assert allowed_fields(4) == ["headline", "archetype", "keywords"]
    assert allowed_fields(12) == ["headline", "archetype", "keywords", "bio", "matches"]


def test_sanitize_reflection_normalizes_archetype_and_drops_locked_fields() -> None:
    raw = IdentityReflection(
        headline="Platform engineer",
        bio="Builds things.",
        archetype=" builder ",
        keywords=[f"k{index}" for index in range(14)],
    )

    result = sanitize_reflection(raw, ["headline", "archetype", "keywords"])

    assert result.archetype == "Builder"
    assert result.bio is None
    assert len(result.keywords) == 10


def test_unknown_archetype_is_dropped() -> None:
    result = sanitize_reflection(IdentityReflection(archetype="Wizard"), ["archetype"])
    assert result.archetype is None
