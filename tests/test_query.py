"""
Query Service Tests

Live sessions first, persisted snapshots for evicted ones, no double counting.
"""

import pytest

from simtelemetry.contracts.base import PersistenceError
from simtelemetry.query import QueryService
from simtelemetry.storage.gateway import InMemoryGateway
from simtelemetry.storage.http_gateway import HttpGateway

from .fixtures import build_ingestor, collision_payload, run, violation_payload


def finished_session(ingestor, session_id, user_id, violations=0, collisions=0):
    for i in range(violations):
        ingestor.submit(violation_payload(i), "Violation", session_id=session_id, user_id=user_id)
    for i in range(collisions):
        ingestor.submit(collision_payload(i), "Collision", session_id=session_id, user_id=user_id)
    ingestor.submit("end", "SessionControl", session_id=session_id, user_id=user_id)


class TestSessionStats:

    def test_live_session_from_memory(self):
        ingestor, gateway, _ = build_ingestor()
        ingestor.submit(violation_payload(1), "Violation", session_id="s1")
        query = QueryService(ingestor.aggregator, gateway)

        stats = run(query.get_session_stats("s1"))

        assert stats.violation_count == 1
        assert not stats.is_ended

    def test_evicted_session_from_last_snapshot(self):
        ingestor, gateway, _ = build_ingestor()
        finished_session(ingestor, "s1", "u1", violations=2, collisions=1)
        ingestor.tick()
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        stats = run(query.get_session_stats("s1"))

        assert ingestor.aggregator.get("s1") is None
        assert stats.violation_count == 2
        assert stats.collision_count == 1
        assert stats.end_reason == "explicit"

    def test_unknown_session(self):
        ingestor, gateway, _ = build_ingestor()
        query = QueryService(ingestor.aggregator, gateway)

        assert run(query.get_session_stats("nope")) is None

    def test_write_only_gateway_has_no_history(self):
        ingestor, _, _ = build_ingestor()
        query = QueryService(ingestor.aggregator, HttpGateway("http://store.invalid"))

        assert run(query.get_session_stats("evicted")) is None

    def test_history_failure_propagates(self):
        class BrokenHistory(InMemoryGateway):
            async def find(self, collection, field, value):
                raise PersistenceError("history offline", collection)

        ingestor, _, _ = build_ingestor()
        query = QueryService(ingestor.aggregator, BrokenHistory())

        with pytest.raises(PersistenceError):
            run(query.get_session_stats("s1"))


class TestUserAggregate:

    def test_combines_live_and_persisted_sessions(self):
        ingestor, gateway, _ = build_ingestor()
        finished_session(ingestor, "old", "u1", violations=3, collisions=2)
        ingestor.tick()
        ingestor.submit(violation_payload(1), "Violation", session_id="live", user_id="u1")
        ingestor.submit(violation_payload(1), "Violation", session_id="other", user_id="u2")
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("u1"))

        assert aggregate.total_sessions == 2
        assert aggregate.total_violations == 4
        assert aggregate.total_collisions == 2

    def test_latest_snapshot_wins(self):
        ingestor, gateway, clock = build_ingestor()
        for i in range(5):
            ingestor.submit(violation_payload(i), "Violation", session_id="s1", user_id="u1")
        clock.advance(1)
        ingestor.submit(violation_payload(99), "Violation", session_id="s1", user_id="u1")
        ingestor.submit("end", "SessionControl", session_id="s1", user_id="u1")
        ingestor.tick()
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("u1"))

        assert gateway.count("sessions") == 2
        assert aggregate.total_sessions == 1
        assert aggregate.total_violations == 6

    def test_live_session_not_double_counted(self):
        ingestor, gateway, _ = build_ingestor()
        for i in range(5):
            ingestor.submit(violation_payload(i), "Violation", session_id="s1", user_id="u1")
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("u1"))

        assert gateway.count("sessions") == 1
        assert aggregate.total_sessions == 1
        assert aggregate.total_violations == 5


    def test_reopened_session_keeps_totals_of_ended_run(self):
        ingestor, gateway, clock = build_ingestor()
        finished_session(ingestor, "s1", "u1", violations=2, collisions=1)
        run(ingestor.queue.flush())
        clock.advance(5)
        ingestor.submit(violation_payload(7), "Violation", session_id="s1", user_id="u1")
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("u1"))

        assert ingestor.aggregator.get("s1").violation_count == 1
        assert aggregate.total_sessions == 2
        assert aggregate.total_violations == 3
        assert aggregate.total_collisions == 1

    def test_reopened_session_after_eviction(self):
        ingestor, gateway, clock = build_ingestor()
        finished_session(ingestor, "s1", "u1", violations=2)
        ingestor.tick()
        clock.advance(5)
        ingestor.submit(violation_payload(7), "Violation", session_id="s1", user_id="u1")
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("u1"))

        assert aggregate.total_sessions == 2
        assert aggregate.total_violations == 3
    def test_unknown_user(self):
        ingestor, gateway, _ = build_ingestor()
        query = QueryService(ingestor.aggregator, gateway)

        aggregate = run(query.get_user_aggregate("ghost"))

        assert aggregate.to_dict() == {
            'user_id': 'ghost',
            'total_violations': 0,
            'total_collisions': 0,
            'total_sessions': 0,
        }


class TestLatestProgress:

    def test_latest_persisted_progress(self):
        ingestor, gateway, clock = build_ingestor()
        ingestor.submit("2|800|0.4|120", "Progress", session_id="s1", user_id="u1")
        clock.advance(1)
        ingestor.submit("3|1200|0.6|180", "Progress", session_id="s1", user_id="u1")
        ingestor.submit("1|50|0.1|10", "Progress", session_id="s2", user_id="u2")
        run(ingestor.queue.flush())
        query = QueryService(ingestor.aggregator, gateway)

        progress = run(query.get_latest_progress("u1"))

        assert progress["level"] == 3
        assert progress["score"] == 1200
        assert progress["sessionId"] == "s1"

    def test_live_progress_without_history(self):
        ingestor, _, clock = build_ingestor()
        ingestor.submit("2|800|0.4|120", "Progress", session_id="old", user_id="u1")
        clock.advance(1)
        ingestor.submit("4|1500|0.9|300", "Progress", session_id="new", user_id="u1")
        query = QueryService(ingestor.aggregator, HttpGateway("http://store.invalid"))

        progress = run(query.get_latest_progress("u1"))

        assert progress["sessionId"] == "new"
        assert progress["level"] == 4
        assert progress["score"] == 1500

    def test_no_progress(self):
        ingestor, gateway, _ = build_ingestor()
        ingestor.submit(violation_payload(1), "Violation", session_id="s1", user_id="u1")
        query = QueryService(ingestor.aggregator, gateway)

        assert run(query.get_latest_progress("u1")) is None
        assert run(query.get_latest_progress("ghost")) is None

    def test_history_failure_propagates(self):
        class BrokenHistory(InMemoryGateway):
            async def find(self, collection, field, value):
                raise PersistenceError("history offline", collection)

        ingestor, _, _ = build_ingestor()
        query = QueryService(ingestor.aggregator, BrokenHistory())

        with pytest.raises(PersistenceError):
            run(query.get_latest_progress("u1"))
