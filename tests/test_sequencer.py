from mouse_bot.messenger.sequencer import ReplySequencer


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestReplySequencer:
    def test_counts_up_to_cap_then_refuses(self):
        sequencer = ReplySequencer(ttl=300, max_sequence=5, clock=FakeClock())
        assert [sequencer.next_sequence("m1") for _ in range(5)] == [1, 2, 3, 4, 5]
        assert sequencer.next_sequence("m1") is None
        assert sequencer.next_sequence("m1") is None

    def test_restarts_after_ttl(self):
        clock = FakeClock()
        sequencer = ReplySequencer(ttl=300, max_sequence=5, clock=clock)
        for _ in range(5):
            sequencer.next_sequence("m1")
        assert sequencer.next_sequence("m1") is None

        clock.now += 301
        assert sequencer.next_sequence("m1") == 1

    def test_each_reply_extends_window(self):
        clock = FakeClock()
        sequencer = ReplySequencer(ttl=300, max_sequence=5, clock=clock)
        assert sequencer.next_sequence("m1") == 1
        clock.now += 200
        assert sequencer.next_sequence("m1") == 2
        clock.now += 200
        assert sequencer.next_sequence("m1") == 3

    def test_message_ids_are_independent(self):
        sequencer = ReplySequencer(clock=FakeClock())
        assert sequencer.next_sequence("m1") == 1
        assert sequencer.next_sequence("m2") == 1
        assert sequencer.next_sequence("m1") == 2

    def test_per_call_overrides(self):
        sequencer = ReplySequencer(ttl=300, max_sequence=5, clock=FakeClock())
        assert sequencer.next_sequence("m1", max_sequence=1) == 1
        assert sequencer.next_sequence("m1", max_sequence=1) is None

    def test_expired_entries_are_purged(self):
        clock = FakeClock()
        sequencer = ReplySequencer(ttl=10, clock=clock)
        sequencer.next_sequence("old")
        clock.now += 11
        sequencer.next_sequence("new")
        assert len(sequencer) == 1
