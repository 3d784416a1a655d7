"""
Tests for SequenceService -- named, transactional counters.
"""

from trust_kernel.services.sequence_service import SequenceService


class TestSequenceService:

    def test_starts_at_one(self, session):
        sequences = SequenceService(session)
        assert sequences.current_value("test_counter") is None
        assert sequences.next_value("test_counter") == 1
        assert sequences.current_value("test_counter") == 1

    def test_monotonic(self, session):
        sequences = SequenceService(session)
        values = [sequences.next_value("test_counter") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_counters_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("a_counter")
        sequences.next_value("a_counter")
        assert sequences.next_value("b_counter") == 1

    def test_rolled_back_allocation_is_reused(self, session):
        sequences = SequenceService(session)
        sequences.next_value("test_counter")
        savepoint = session.begin_nested()
        sequences.next_value("test_counter")
        savepoint.rollback()
        assert sequences.next_value("test_counter") == 2
