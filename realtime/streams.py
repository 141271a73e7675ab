import json
import logging
import queue

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.http import StreamingHttpResponse

from .feed import feed

logger = logging.getLogger(__name__)

KEEPALIVE = ': keep-alive\n\n'


def format_sse(event, data):
    payload = json.dumps(data, cls=DjangoJSONEncoder)
    return f"event: {event}\ndata: {payload}\n\n"


def event_stream_response(stream):
    response = StreamingHttpResponse(stream, content_type='text/event-stream')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response


def queue_stream(updates, event_name, is_final=None, keepalive=None):
    """Yield SSE frames for items put on ``updates`` until ``is_final`` says stop."""
    keepalive = keepalive or settings.REALTIME_KEEPALIVE_SECONDS
    while True:
        try:
            item = updates.get(timeout=keepalive)
        except queue.Empty:
            yield KEEPALIVE
            continue
        yield format_sse(event_name, item)
        if is_final is not None and is_final(item):
            return


def subscription_stream(table, event_name, events, filters, render=None):
    """Stream feed events for ``table`` matching ``filters`` to one client.

    The subscription is dropped when the client disconnects.
    """
    updates = queue.Queue()
    render = render or (lambda event: event.as_dict())

    def stream():
        subscription = feed.subscribe(table, lambda event: updates.put(render(event)), events=events, **filters)
        try:
            yield format_sse('ready', {'table': table, 'filters': subscription.filters})
            yield from queue_stream(updates, event_name)
        finally:
            subscription.unsubscribe()
            logger.debug(f"Closed {table} stream for {subscription.filters}")

    return stream()
