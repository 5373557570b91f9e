import logging
import threading
from collections import deque
from datetime import datetime

from flask_socketio import SocketIO

logger = logging.getLogger(__name__)

socketio = SocketIO()

STREAMS = ('scores', 'locks', 'activity')


def emit_realtime_update(event_name, payload=None, room=None):
    try:
        socketio.emit(event_name, payload or {}, to=room)
    except Exception:
        logger.warning('Realtime emit failed for %s', event_name, exc_info=True)


class ChangeFeed:
    """Append-only, replayable change events keyed by stream.

    Each stream keeps its own sequence counter and a bounded buffer of the
    most recent events. A subscriber that reconnects asks for everything
    after the last sequence it saw; if that point has already been evicted
    the replay is reported as incomplete and the subscriber must refetch
    the authoritative state instead.
    """

    def __init__(self, maxlen=500):
        self.maxlen = maxlen
        self._lock = threading.Lock()
        self._events = {}
        self._sequence = {}
        self.reset()

    def reset(self, maxlen=None):
        with self._lock:
            if maxlen:
                self.maxlen = maxlen
            self._events = {stream: deque(maxlen=self.maxlen) for stream in STREAMS}
            self._sequence = {stream: 0 for stream in STREAMS}

    def _check_stream(self, stream):
        if stream not in STREAMS:
            raise KeyError(f'Unknown change stream: {stream}')

    def publish(self, stream, action, payload=None):
        self._check_stream(stream)
        with self._lock:
            self._sequence[stream] += 1
            event = {
                'stream': stream,
                'seq': self._sequence[stream],
                'action': action,
                'payload': payload or {},
                'at': datetime.utcnow().isoformat()
            }
            self._events[stream].append(event)
        emit_realtime_update(stream, event, room=stream)
        return event

    def latest(self, stream):
        self._check_stream(stream)
        with self._lock:
            return self._sequence[stream]

    def replay(self, stream, since=0):
        self._check_stream(stream)
        with self._lock:
            events = list(self._events[stream])
            latest = self._sequence[stream]
        since = max(int(since or 0), 0)
        if since > latest:
            # Sequence from a previous process, nothing here lines up with it
            return [], False
        oldest = events[0]['seq'] if events else latest + 1
        complete = since >= oldest - 1
        return [event for event in events if event['seq'] > since], complete


change_feed = ChangeFeed()


def publish_change(stream, action, payload=None):
    return change_feed.publish(stream, action, payload)
