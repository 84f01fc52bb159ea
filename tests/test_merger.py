"""Tests for contribution merging and the canonical count rule."""
from datetime import datetime, timedelta

from latidos.modules.audit.merger import (
    combine_observations,
    merge_contribution,
    resolve_physical_count,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_same_participant_replaces_entry_in_place():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5}]

    merged = merge_contribution(existing, "A", "Ana", {"count": 7}, NOW)

    assert len(merged) == 1
    assert merged[0]["participantId"] == "A"
    assert merged[0]["count"] == 7


def test_new_participant_is_appended():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5}]

    merged = merge_contribution(existing, "B", "Bob", {"count": 3}, NOW)

    assert len(merged) == 2
    assert merged[0]["participantId"] == "A"
    assert merged[1] == {
        "participantId": "B",
        "participantName": "Bob",
        "count": 3,
        "updatedAt": NOW.isoformat(timespec="microseconds"),
        "countedAt": NOW.isoformat(timespec="microseconds"),
    }


def test_focus_only_update_leaves_contributions_untouched():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5}]

    merged = merge_contribution(existing, "A", "Ana", {}, NOW)

    assert merged == existing


def test_only_provided_fields_overwrite():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5, "observations": "caja rota"}]

    merged = merge_contribution(existing, "A", "Ana María", {"count": 6}, NOW)

    assert merged[0]["count"] == 6
    assert merged[0]["observations"] == "caja rota"
    assert merged[0]["participantName"] == "Ana María"


def test_explicit_null_count_clears_value():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5}]

    merged = merge_contribution(existing, "A", "Ana", {"count": None}, NOW)

    assert merged[0]["count"] is None


def test_input_list_is_not_mutated():
    existing = [{"participantId": "A", "participantName": "Ana", "count": 5}]

    merge_contribution(existing, "A", "Ana", {"count": 9}, NOW)
    merge_contribution(existing, "B", "Bob", {"count": 1}, NOW)

    assert existing == [{"participantId": "A", "participantName": "Ana", "count": 5}]


def test_unknown_fields_are_ignored():
    merged = merge_contribution([], "A", "Ana", {"lockedBy": "A"}, NOW)

    assert merged == []


def test_latest_contribution_wins():
    older = NOW.isoformat(timespec="microseconds")
    newer = (NOW + timedelta(seconds=5)).isoformat(timespec="microseconds")
    contributions = [
        {"participantId": "A", "count": 10, "updatedAt": newer},
        {"participantId": "B", "count": 11, "updatedAt": older},
    ]

    assert resolve_physical_count(contributions) == 10


def test_tie_goes_to_later_entry():
    stamp = NOW.isoformat(timespec="microseconds")
    contributions = [
        {"participantId": "A", "count": 10, "updatedAt": stamp},
        {"participantId": "B", "count": 11, "updatedAt": stamp},
    ]

    assert resolve_physical_count(contributions) == 11


def test_entries_without_count_are_skipped():
    contributions = [
        {"participantId": "A", "count": 4, "updatedAt": NOW.isoformat(timespec="microseconds")},
        {"participantId": "B", "observations": "falta etiqueta",
         "updatedAt": (NOW + timedelta(seconds=1)).isoformat(timespec="microseconds")},
    ]

    assert resolve_physical_count(contributions) == 4
    assert resolve_physical_count([]) is None
    assert resolve_physical_count(None) is None


def test_resolve_after_sequential_merges():
    contributions = merge_contribution([], "u1", "Ana", {"count": 10}, NOW)
    contributions = merge_contribution(contributions, "u2", "Bob", {"count": 11}, NOW + timedelta(seconds=1))
    contributions = merge_contribution(contributions, "u1", "Ana", {"count": 12}, NOW + timedelta(seconds=2))

    assert [c["participantId"] for c in contributions] == ["u1", "u2"]
    assert resolve_physical_count(contributions) == 12


def test_combine_observations():
    contributions = [
        {"participantId": "u1", "participantName": "Ana", "observations": "caja abierta"},
        {"participantId": "u2", "participantName": "Bob", "observations": "  "},
        {"participantId": "u3", "observations": "sin sello"},
    ]

    assert combine_observations(contributions) == "Ana: caja abierta; u3: sin sello"


def test_observation_edit_does_not_refresh_count():
    contributions = merge_contribution([], "u1", "Ana", {"count": 10}, NOW)
    contributions = merge_contribution(contributions, "u2", "Bob", {"count": 11}, NOW + timedelta(seconds=1))
    assert resolve_physical_count(contributions) == 11

    contributions = merge_contribution(
        contributions, "u1", "Ana", {"observations": "caja abierta"}, NOW + timedelta(seconds=2)
    )

    assert contributions[0]["updatedAt"] == (NOW + timedelta(seconds=2)).isoformat(timespec="microseconds")
    assert contributions[0]["countedAt"] == NOW.isoformat(timespec="microseconds")
    assert resolve_physical_count(contributions) == 11


def test_count_stamp_falls_back_to_update_stamp():
    contributions = [
        {"participantId": "A", "count": 10, "updatedAt": (NOW + timedelta(seconds=5)).isoformat(timespec="microseconds")},
        {"participantId": "B", "count": 11, "countedAt": NOW.isoformat(timespec="microseconds"),
         "updatedAt": (NOW + timedelta(seconds=9)).isoformat(timespec="microseconds")},
    ]

    assert resolve_physical_count(contributions) == 10
