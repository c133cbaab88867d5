from adchat.events.models import ChatEvent
from adchat.events.sink import EventSink, LogEventSink, RecordingEventSink, build_event_sink

__all__ = ["ChatEvent", "EventSink", "LogEventSink", "RecordingEventSink", "build_event_sink"]
