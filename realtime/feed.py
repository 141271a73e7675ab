"""
In-process change feed.

Model signal handlers publish row changes after the surrounding database
transaction commits; subscribers register for one table, a set of event types
and column filters (``order_id=...``, ``user_id=...``) and get called with a
``ChangeEvent`` for every matching change. Nobody polls.

Subscriptions live in the memory of the process that created them, so event
streams must be served by the same process that writes the rows (a threaded
server or a single async worker).
"""
import logging
import threading

from django.db import transaction

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'


class ChangeEvent:

    def __init__(self, table, event_type, new, old=None):
        self.table = table
        self.event_type = event_type
        self.new = new
        self.old = old or {}

    def __repr__(self):
        return f"<ChangeEvent {self.event_type} {self.table} {self.new.get('id')}>"

    def as_dict(self):
        return {
            'table': self.table,
            'eventType': self.event_type,
            'new': self.new,
            'old': self.old,
        }


class Subscription:

    def __init__(self, feed, table, callback, events, filters):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.events = frozenset(events)
        self.filters = {key: str(value) for key, value in filters.items()}
        self.active = True

    def matches(self, event):
        if not self.active or event.table != self.table or event.event_type not in self.events:
            return False
        return all(str(event.new.get(key)) == value for key, value in self.filters.items())

    def unsubscribe(self):
        self.feed.unsubscribe(self)


class ChangeFeed:

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions = []

    def subscribe(self, table, callback, events=(INSERT, UPDATE), **filters):
        subscription = Subscription(self, table, callback, events, filters)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} {sorted(subscription.events)} where {subscription.filters}")
        return subscription

    def unsubscribe(self, subscription):
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, table, event_type, new, old=None):
        event = ChangeEvent(table, event_type, new, old)
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]

        for subscription in targets:
            try:
                subscription.callback(event)
            except Exception:
                # A broken subscriber must not affect the writer or other subscribers
                logger.exception(f"Subscriber failed handling {event!r}")
        return event

    def publish_on_commit(self, table, event_type, new, old=None):
        transaction.on_commit(lambda: self.publish(table, event_type, new, old))

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscriptions)


def instance_to_row(instance):
    """Column values of a model instance, keyed like the database columns."""
    row = {}
    for field in instance._meta.concrete_fields:
        row[field.attname] = getattr(instance, field.attname)
    if 'id' not in row:
        row['id'] = instance.pk
    return row


feed = ChangeFeed()
