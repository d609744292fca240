"""Progress channel — subscription lifecycle, clamping and teardown."""

import asyncio
import os
import sys
import threading

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.agents.shipping_analysis.progress import ProgressChannel, QueueSink
from app.schemas.analysis_schema import ProgressEvent
from pipeline_fakes import RecordingSink


def _progress(progress, completed=(), stage="Verifying URLs"):
    return ProgressEvent(type="progress", stage=stage, message="", progress=progress, completed_stages=list(completed))


class ExplodingSink(RecordingSink):
    def write(self, event):
        if event.type == "connected":
            return super().write(event)
        raise ConnectionResetError("client went away")


class TestSubscription:
    def test_open_sends_connected(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)

        assert [e.type for e in sink.events] == ["connected"]
        assert channel.active_sessions() == ["s1"]

    def test_second_open_replaces_first(self):
        channel = ProgressChannel()
        first, second = RecordingSink(), RecordingSink()
        channel.open("s1", first)
        channel.open("s1", second)

        channel.publish("s1", _progress(15))

        assert first.closed
        assert [e.type for e in first.events] == ["connected"]
        assert [e.type for e in second.events] == ["connected", "progress"]

    def test_publish_without_subscriber_is_noop(self):
        channel = ProgressChannel()
        assert channel.publish("missing", _progress(5)) is False
        assert channel.publish(None, _progress(5)) is False

    def test_close_sends_complete_and_removes(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)

        assert channel.close("s1", {"ok": True}) is True

        assert sink.events[-1].type == "complete"
        assert sink.events[-1].result == {"ok": True}
        assert sink.events[-1].progress == 100
        assert sink.closed
        assert channel.active_sessions() == []
        assert channel.close("s1") is False

    def test_close_with_error_keeps_progress(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)
        channel.publish("s1", _progress(15, ["discovery"]))

        channel.close("s1", error="Unable to analyze")

        final = sink.events[-1]
        assert final.error == "Unable to analyze"
        assert final.progress == 15
        assert final.stage == "Analysis Failed"


class TestClamping:
    def test_progress_never_goes_backwards(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)

        channel.publish("s1", _progress(40, ["discovery", "verification"]))
        channel.publish("s1", _progress(30, ["discovery"]))

        late = sink.events[-1]
        assert late.progress == 40
        assert late.completed_stages == ["discovery", "verification"]
        assert channel.session("s1").progress_percent == 40

    def test_completed_stages_union_keeps_order(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)

        channel.publish("s1", _progress(15, ["discovery"]))
        channel.publish("s1", _progress(25, ["discovery", "verification"]))

        assert sink.events[-1].completed_stages == ["discovery", "verification"]


class TestTeardown:
    def test_failed_write_removes_session(self):
        channel = ProgressChannel()
        channel.open("s1", ExplodingSink())

        assert channel.publish("s1", _progress(5)) is False
        assert channel.active_sessions() == []

    def test_dead_sink_returning_false_removes_session(self):
        channel = ProgressChannel()
        sink = RecordingSink()
        channel.open("s1", sink)
        sink.alive = False

        assert channel.publish("s1", _progress(5)) is False
        assert channel.active_sessions() == []

    def test_disconnect_only_removes_matching_sink(self):
        channel = ProgressChannel()
        old, new = RecordingSink(), RecordingSink()
        channel.open("s1", old)
        channel.open("s1", new)

        channel.disconnect("s1", old)
        assert channel.active_sessions() == ["s1"]

        channel.disconnect("s1", new)
        assert channel.active_sessions() == []


class TestQueueSink:
    def test_stream_ends_on_complete(self):
        async def scenario():
            channel = ProgressChannel()
            sink = channel.open("s1", QueueSink())
            channel.publish("s1", _progress(5))
            channel.close("s1", {"done": True})
            return [event.type async for event in sink.stream()]

        assert asyncio.run(scenario()) == ["connected", "progress", "complete"]

    def test_write_after_close_fails(self):
        async def scenario():
            sink = QueueSink()
            sink.close()
            return sink.write(_progress(5))

        assert asyncio.run(scenario()) is False


class TestConcurrentSessions:
    def test_threads_on_distinct_sessions_do_not_cross(self):
        channel = ProgressChannel()
        sinks = {f"s{i}": RecordingSink() for i in range(8)}
        for session_id, sink in sinks.items():
            channel.open(session_id, sink)

        def produce(session_id):
            for progress in range(1, 51):
                channel.publish(session_id, _progress(progress, stage=session_id))
            channel.close(session_id, {"session": session_id})

        threads = [threading.Thread(target=produce, args=(sid,)) for sid in sinks]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        for session_id, sink in sinks.items():
            progress_events = [e for e in sink.events if e.type == "progress"]
            assert [e.progress for e in progress_events] == list(range(1, 51))
            assert {e.stage for e in progress_events} == {session_id}
            assert sink.events[-1].result == {"session": session_id}
            assert sink.closed
        assert channel.active_sessions() == []

    def test_gathered_sessions_each_get_their_own_stream(self):
        async def produce(channel, session_id):
            sink = channel.open(session_id, QueueSink())
            for progress in (5, 15, 25):
                channel.publish(session_id, _progress(progress, stage=session_id))
                await asyncio.sleep(0)
            channel.close(session_id, {"session": session_id})
            return session_id, [event async for event in sink.stream()]

        async def scenario():
            channel = ProgressChannel()
            streams = await asyncio.gather(*(produce(channel, f"g{i}") for i in range(5)))
            return streams, channel.active_sessions()

        streams, remaining = asyncio.run(scenario())

        assert remaining == []
        for session_id, events in streams:
            assert [e.type for e in events] == ["connected", "progress", "progress", "progress", "complete"]
            assert {e.stage for e in events if e.type == "progress"} == {session_id}
            assert events[-1].result == {"session": session_id}
