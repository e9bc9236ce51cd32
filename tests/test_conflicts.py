"""Overlap graph and conflict classification."""

from datetime import timedelta

from emergent_sync.services.sync.conflicts import classify_conflicts, detect_conflicts
from tests.fakes.builders import at, stored


def test_three_event_scenario():
    events = [
        stored("E1", at(9), at(10)),
        stored("E2", at(9, 30), at(10, 30)),
        stored("E3", at(11), at(12)),
    ]

    assert detect_conflicts(events) == {"E1": {"E2"}, "E2": {"E1"}, "E3": set()}


def test_touching_intervals_do_not_conflict():
    graph = detect_conflicts([stored("A", at(9), at(10)), stored("B", at(10), at(11))])

    assert graph == {"A": set(), "B": set()}


def test_one_millisecond_overlap_conflicts():
    graph = detect_conflicts([
        stored("A", at(9), at(10) + timedelta(milliseconds=1)),
        stored("B", at(10), at(11)),
    ])

    assert graph == {"A": {"B"}, "B": {"A"}}


def test_graph_is_symmetric_and_input_order_independent():
    events = [
        stored("long", at(8), at(17)),
        stored("standup", at(9), at(9, 15)),
        stored("lunch", at(12), at(13)),
        stored("late", at(18), at(19)),
        stored("overlap-lunch", at(12, 30), at(14)),
    ]

    graph = detect_conflicts(events)
    assert graph == detect_conflicts(list(reversed(events)))
    for event_id, others in graph.items():
        for other in others:
            assert event_id in graph[other]
    assert graph["long"] == {"standup", "lunch", "overlap-lunch"}
    assert graph["late"] == set()


def test_cancelled_and_zero_length_events_are_ignored():
    events = [
        stored("A", at(9), at(10)),
        stored("cancelled", at(9), at(10), status="cancelled"),
        stored("zero", at(9, 30), at(9, 30)),
    ]

    assert detect_conflicts(events) == {"A": set()}


def test_classify_hard_overlap_severity():
    critical = classify_conflicts([stored("A", at(9), at(10)), stored("B", at(9, 15), at(11))])
    high = classify_conflicts([stored("A", at(9), at(10)), stored("B", at(9, 45), at(11))])

    assert [(d.type, d.severity) for d in critical] == [("hard_overlap", "critical")]
    assert "45 minutes" in critical[0].details
    assert [(d.type, d.severity) for d in high] == [("hard_overlap", "high")]


def test_classify_contained_event_uses_real_overlap():
    details = classify_conflicts([stored("A", at(9), at(12)), stored("B", at(10), at(10, 20))])

    assert details[0].severity == "high"
    assert "20 minutes" in details[0].details


def test_classify_back_to_back_and_buffer():
    details = classify_conflicts([
        stored("A", at(9), at(10)),
        stored("B", at(10), at(10, 30)),
        stored("C", at(10, 40), at(11)),
    ])

    kinds = {(d.event_id, d.overlap_ids[0]): (d.type, d.severity) for d in details}
    assert kinds[("A", "B")] == ("back_to_back", "medium")
    assert kinds[("B", "C")] == ("insufficient_buffer", "low")


def test_classify_travel_conflict_only_between_physical_locations():
    travel = classify_conflicts([
        stored("A", at(9), at(10), location="HQ, Floor 3"),
        stored("B", at(10, 20), at(11), location="Client office downtown"),
    ])
    online = classify_conflicts([
        stored("A", at(9), at(10), location="HQ, Floor 3"),
        stored("B", at(10, 20), at(11), location="https://zoom.us/j/123"),
    ])
    same_place = classify_conflicts([
        stored("A", at(9), at(10), location="HQ"),
        stored("B", at(10, 20), at(11), location="hq "),
    ])

    assert [(d.type, d.severity) for d in travel] == [("travel_conflict", "high")]
    assert online == []
    assert same_place == []
