"""
Progress Tracker Unit Tests
===========================

Run with: python -m pytest tests/unit/test_progress_tracker.py -v
"""

from vaultbatch.batch.progress import ProgressStage, ProgressTracker


class TestProgressTracker:

    def test_forward_moves_are_emitted(self):
        events = []
        tracker = ProgressTracker(events.append)

        assert tracker.advance(ProgressStage.PREPARING)
        assert tracker.advance(ProgressStage.SIGNING)
        assert tracker.advance(ProgressStage.SIGNING, "still signing")

        assert [e.stage for e in events] == [ProgressStage.PREPARING, ProgressStage.SIGNING, ProgressStage.SIGNING]
        assert events[-1].message == "still signing"

    def test_backward_move_is_refused(self):
        tracker = ProgressTracker()
        tracker.advance(ProgressStage.SENDING)

        assert tracker.advance(ProgressStage.SIGNING) is False
        assert tracker.stage is ProgressStage.SENDING

    def test_nothing_after_terminal(self):
        tracker = ProgressTracker()
        tracker.advance(ProgressStage.DONE)

        assert tracker.fail("late error") is False
        assert tracker.advance(ProgressStage.DONE) is False
        assert len(tracker.history) == 1

    def test_fail_carries_error_text(self):
        events = []
        tracker = ProgressTracker(events.append)
        tracker.advance(ProgressStage.CONFIRMING)
        tracker.fail("Transaction failed or unconfirmed")

        assert events[-1].stage is ProgressStage.ERROR
        assert events[-1].error == "Transaction failed or unconfirmed"
        assert events[-1].stage.is_terminal

    def test_advance_to_error_routes_through_fail(self):
        tracker = ProgressTracker()
        tracker.advance(ProgressStage.ERROR)

        assert tracker.history[-1].error == "Error occurred"
