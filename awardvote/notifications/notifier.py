# awardvote/notifications/notifier.py

# Fire-and-forget delivery of credential and confirmation emails.
# Callers enqueue and return at once; a daemon worker drains the queue.
# A failed send is logged and counted, never raised back to the caller.

import logging
import threading
from queue import Queue, Full, Empty

from awardvote import timeutil
from awardvote.errors import Unavailable

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, sink, async_mode=True, max_queue_size=1000):
        """
        Args:
            sink: EmailSink used for delivery
            async_mode: deliver from a background thread; False sends inline
            max_queue_size: pending messages kept before new ones are dropped
        """
        self.sink = sink
        self.async_mode = async_mode
        self.queue: Queue = Queue(maxsize=max_queue_size)

        self.metrics = {
            "queued": 0,
            "sent": 0,
            "failed": 0,
            "dropped": 0,
            "last_send_time": None,
        }
        self._metrics_lock = threading.Lock()

        self.running = async_mode
        self.worker = None
        if async_mode:
            self.worker = threading.Thread(target=self._process_queue, name="notifier")
            self.worker.daemon = True
            self.worker.start()

    def _count(self, key):
        with self._metrics_lock:
            self.metrics[key] += 1

    def notify_credential(self, email, credential):
        self._submit('send_credential', email, credential)

    def notify_vote_confirmation(self, email, category_count):
        self._submit('send_vote_confirmation', email, category_count)

    def _submit(self, method, *args):
        if not self.async_mode:
            self._deliver(method, args)
            return
        try:
            self.queue.put_nowait((method, args))
            self._count("queued")
        except Full:
            self._count("dropped")
            logger.error("Notification queue full, dropping %s", method)

    def _deliver(self, method, args):
        try:
            getattr(self.sink, method)(*args)
            self._count("sent")
            with self._metrics_lock:
                self.metrics["last_send_time"] = timeutil.utcnow()
        except Unavailable as e:
            self._count("failed")
            logger.error("Notification %s failed: %s", method, e.message)
        except Exception:
            # The worker thread must survive any sink bug
            self._count("failed")
            logger.exception("Notification %s failed unexpectedly", method)

    def _process_queue(self):
        while self.running:
            try:
                method, args = self.queue.get(timeout=1)
            except Empty:
                continue
            try:
                self._deliver(method, args)
            finally:
                self.queue.task_done()

    def flush(self):
        """Block until every queued message has been attempted."""
        if self.async_mode:
            self.queue.join()

    def shutdown(self):
        self.flush()
        self.running = False
        if self.worker:
            self.worker.join(timeout=5)
