"""
Cycle Scheduler - fires the pollers on a fixed interval

- One cycle at a time: campaign replies first, then P2P commands
- Cursors are loaded from the datastore at the start of a cycle and saved at
  the end, so a restart resumes from the last watermark
- A failing cycle is logged and counted; the next one runs on schedule
- After the uptime ceiling the process asks itself to exit (SIGTERM) and
  relies on the supervisor to relaunch it
"""

import asyncio
import logging
import os
import signal
import time
from datetime import datetime, timezone
from typing import Optional

from core.constitution import TEMPO_CHAIN, TEMPO_RULES

logger = logging.getLogger("monibot.scheduler")


class CycleScheduler:

    def __init__(
        self,
        pollers: list,
        cursor_store,
        worker_id: str = "tempo-worker",
        poll_interval_seconds: float = TEMPO_RULES.DEFAULT_POLL_INTERVAL_MS / 1000,
        max_uptime_seconds: Optional[float] = TEMPO_RULES.DEFAULT_AUTO_RESTART_MINUTES * 60,
    ):
        self._pollers = pollers
        self._cursor_store = cursor_store
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.max_uptime_seconds = max_uptime_seconds

        self.started_at: float = time.time()
        self.last_poll: Optional[str] = None
        self.cycle_count: int = 0
        self.processed_count: int = 0
        self.error_count: int = 0

        self._running: bool = False
        self._stopped = asyncio.Event()

    async def run_cycle(self) -> int:
        """Run every poller once. Returns completed transfers in this cycle."""
        self.cycle_count += 1
        self.last_poll = datetime.now(timezone.utc).isoformat()
        logger.info(f"[Cycle {self.cycle_count}] Polling at {self.last_poll}")

        self._running = True
        cycle_processed = 0
        counts: list[str] = []
        try:
            cursors = await self._cursor_store.load_cursors()
            for poller in self._pollers:
                outcome = await poller.poll(cursors)
                cycle_processed += outcome.processed
                self.error_count += outcome.errors
                cursors = outcome.cursors
                counts.append(f"{type(poller).__name__}={outcome.processed}")
            await self._cursor_store.save_cursors(cursors)
        except Exception as e:
            self.error_count += 1
            logger.error(f"Poll error: {type(e).__name__}: {e}", exc_info=True)
        finally:
            self._running = False
            self.processed_count += cycle_processed

        logger.info(
            f"   Cycle {self.cycle_count} done: {', '.join(counts) or 'aborted'}, "
            f"total={self.processed_count}"
        )
        return cycle_processed

    async def run_forever(self) -> None:
        while not self._stopped.is_set():
            if self._uptime_exceeded():
                logger.info(f"{self.max_uptime_seconds / 60:.0f}-minute auto-restart triggered...")
                logger.info(f"Completed {self.cycle_count} poll cycles, {self.processed_count} transactions.")
                self._request_exit()
                return

            await self.run_cycle()

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()

    def _uptime_exceeded(self) -> bool:
        if not self.max_uptime_seconds:
            return False
        return time.time() - self.started_at >= self.max_uptime_seconds

    def _request_exit(self) -> None:
        self.stop()
        os.kill(os.getpid(), signal.SIGTERM)

    def get_status(self) -> dict:
        return {
            "status": "ok",
            "worker_id": self.worker_id,
            "chain": TEMPO_CHAIN["name"],
            "token": TEMPO_RULES.TOKEN_SYMBOL,
            "started_at": datetime.fromtimestamp(self.started_at, timezone.utc).isoformat(),
            "last_poll": self.last_poll,
            "cycle_count": self.cycle_count,
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "cycle_running": self._running,
            "uptime_seconds": round(time.time() - self.started_at, 1),
        }
