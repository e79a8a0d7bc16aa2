# tests/test_events.py
"""Test the event emitter"""

from pattern_sync.core.events import EventEmitter, Events


class TestEventEmitter:
    """Test subscription and delivery"""

    def test_on_receives_payload(self):
        """Test listeners get keyword payloads"""
        events = EventEmitter()
        seen = []
        events.on(Events.TRACK_SAVED, lambda **kw: seen.append(kw))
        events.emit(Events.TRACK_SAVED, track_id="t1", manual=False)
        events.emit(Events.SAVE_FAILED, message="other event")
        assert seen == [{"track_id": "t1", "manual": False}]

    def test_unsubscribe(self):
        """Test the returned callable removes the listener"""
        events = EventEmitter()
        seen = []
        unsubscribe = events.on(Events.TRACK_DELETED, lambda **kw: seen.append(kw))
        unsubscribe()
        unsubscribe()
        events.emit(Events.TRACK_DELETED, track_id="t1")
        assert seen == []

    def test_on_any(self):
        """Test wildcard listeners get the event name"""
        events = EventEmitter()
        seen = []
        events.on_any(lambda event, **kw: seen.append(event))
        events.emit(Events.FOLDER_CREATED, folder_id="f1")
        events.emit(Events.AUTH_REQUIRED)
        assert seen == [Events.FOLDER_CREATED, Events.AUTH_REQUIRED]

    def test_failing_listener_is_isolated(self, caplog):
        """Test one broken listener does not stop the others"""
        events = EventEmitter()
        seen = []

        def broken(**kw):
            raise RuntimeError("boom")

        events.on(Events.TRACK_SAVED, broken)
        events.on(Events.TRACK_SAVED, lambda **kw: seen.append("ok"))
        events.emit(Events.TRACK_SAVED, track_id="t1")
        assert seen == ["ok"]
        assert "boom" in caplog.text
