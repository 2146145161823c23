from datetime import timedelta
from typing import List
import logging

logger = logging.getLogger(__name__)


class IdleSweeper:
    """
    Periodically unregisters connections that stopped sending heartbeats
    without a clean disconnect.

    Runs as a Flask-SocketIO background task so it cooperates with whatever
    async mode the server was started in.
    """

    def __init__(self, socketio, sync_service, timeout_seconds: int = 300, interval_seconds: int = 300):
        self.socketio = socketio
        self.sync_service = sync_service
        self.timeout = timedelta(seconds=timeout_seconds)
        self.interval = interval_seconds
        self._running = False
        self._task = None

    @property
    def running(self) -> bool:
        return self._running

    def run_once(self) -> List[str]:
        removed = self.sync_service.sweep_idle(self.timeout)
        if removed:
            logger.info(f"Idle sweep removed {len(removed)} connection(s)")
        return removed

    def start(self):
        if self._running:
            return self._task
        self._running = True
        self._task = self.socketio.start_background_task(self._loop)
        logger.info(f"Idle sweeper started (every {self.interval}s, timeout {self.timeout})")
        return self._task

    def stop(self):
        self._running = False

    def _loop(self):
        while self._running:
            self.socketio.sleep(self.interval)
            if not self._running:
                break
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Idle sweep failed: {e}")
