# credora/scheduler.py
import logging
import threading

logger = logging.getLogger(__name__)


class ScoreRefresher:
    """
    Re-scores one wallet every ``interval`` seconds on a background thread.

    With ``immediate`` set (the default) the first refresh runs as soon as the
    thread starts instead of one interval later.

    ``stop()`` wakes the thread, waits for it and releases it, so no callback
    fires after it returns. Use it as a context manager to tie the timer to
    the consumer's lifetime:

        with ScoreRefresher(service, wallet, 30, on_result=render):
            ...

    A failing refresh is logged and passed to ``on_error``; polling goes on.
    An exception raised by ``on_result`` or ``on_error`` is logged as well and
    never ends the polling thread.
    """

    def __init__(self, service, wallet, interval, on_result=None, on_error=None, immediate=True):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.service = service
        self.wallet = wallet
        self.interval = interval
        self.on_result = on_result
        self.on_error = on_error
        self.immediate = immediate
        self._stop = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"score-refresh-{self.wallet}",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Auto-refresh started for {self.wallet} every {self.interval}s")
        return self

    def stop(self, timeout=None):
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info(f"Auto-refresh stopped for {self.wallet}")

    def refresh_once(self):
        try:
            result = self.service.get_score(self.wallet)
        except Exception as e:
            logger.error(f"Auto-refresh failed for {self.wallet}: {e}")
            self._notify(self.on_error, e)
            return None
        self._notify(self.on_result, result)
        return result

    def _notify(self, callback, value):
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.exception(f"Auto-refresh callback failed for {self.wallet}: {e}")

    def _run(self):
        if self.immediate and not self._stop.is_set():
            self.refresh_once()
        while not self._stop.wait(self.interval):
            self.refresh_once()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
