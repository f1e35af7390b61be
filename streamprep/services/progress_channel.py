"""
In-process publish/subscribe fan-out for progress events.

Subscribers attach to one job or to one user. `publish` delivers an event
synchronously to every subscriber of the event's job and of its owning user,
in registration order. Nothing is buffered: an event published while nobody
listens is dropped, and a late subscriber only sees what comes after it.

The channel knows nothing about connections or transports; see
`progress_gateway` for the adapter that maps connections onto it.
"""

import itertools
import threading
from typing import Callable, Dict, List, Tuple

from loguru import logger

from ..domain.progress import ProgressEvent

Subscriber = Callable[[ProgressEvent], None]
Unsubscribe = Callable[[], None]

_JOB_SCOPE = "job"
_USER_SCOPE = "user"


class ProgressChannel:
    def __init__(self):
        # (scope, key) -> {subscription id: callback}; dicts keep insertion order.
        self._subscribers: Dict[Tuple[str, str], Dict[int, Subscriber]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe_to_job(self, job_id: str, callback: Subscriber) -> Unsubscribe:
        return self._subscribe((_JOB_SCOPE, job_id), callback)

    def subscribe_to_user(self, user_id: str, callback: Subscriber) -> Unsubscribe:
        return self._subscribe((_USER_SCOPE, user_id), callback)

    def _subscribe(self, scope: Tuple[str, str], callback: Subscriber) -> Unsubscribe:
        with self._lock:
            subscription_id = next(self._ids)
            self._subscribers.setdefault(scope, {})[subscription_id] = callback
        logger.trace(f"Subscribed #{subscription_id} to {scope[0]} {scope[1]}")

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(scope)
                if callbacks is None or callbacks.pop(subscription_id, None) is None:
                    return
                if not callbacks:
                    del self._subscribers[scope]
            logger.trace(f"Unsubscribed #{subscription_id} from {scope[0]} {scope[1]}")

        return unsubscribe

    def publish(self, job_id: str, user_id: str, event: ProgressEvent) -> int:
        """
        Delivers `event` to the job's and the user's subscribers.

        A subscriber that raises is logged and skipped; the remaining
        subscribers still receive the event.

        Returns:
            The number of subscribers the event was handed to.
        """
        with self._lock:
            targets: List[Subscriber] = list(self._subscribers.get((_JOB_SCOPE, job_id), {}).values())
            targets += list(self._subscribers.get((_USER_SCOPE, user_id), {}).values())

        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Progress subscriber failed for job {job_id} ({event.stage.value}): {e}")
        return len(targets)

    def subscriber_count(self) -> int:
        with self._lock:
            return sum(len(callbacks) for callbacks in self._subscribers.values())
