"""Background SLA ticker.

Implements the long-running asyncio loop that drives the shared SLA
tick (1 Hz by default) and, optionally, an order source such as the
demo generator every N ticks.
"""

import asyncio
import logging
import signal
from typing import Any, Protocol

from handoff.core.ports import SLAMonitorPort

logger = logging.getLogger(__name__)

# Consecutive failing ticks before the scheduler escalates to CRITICAL.
FAILURE_ALERT_THRESHOLD = 5


class OrderSource(Protocol):
    """Anything that can be driven once per scheduler cycle."""

    async def run_cycle(self) -> Any: ...


class DaemonScheduler:
    """Asyncio-based daemon scheduler for the SLA tick loop."""

    def __init__(
        self,
        sla_port: SLAMonitorPort | None = None,
        tick_interval_seconds: float = 1.0,
        order_source: OrderSource | None = None,
        source_every_n_ticks: int = 5,
    ):
        """
        Args:
            sla_port: SLAMonitorPort to tick (can be set later).
            tick_interval_seconds: Interval between ticks in seconds.
            order_source: Optional order source driven by the same loop.
            source_every_n_ticks: Run the order source once per this many ticks.
        """
        if tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")
        if source_every_n_ticks < 1:
            raise ValueError("source_every_n_ticks must be >= 1")
        self.sla_port = sla_port
        self.tick_interval_seconds = tick_interval_seconds
        self.order_source = order_source
        self.source_every_n_ticks = source_every_n_ticks
        self.running = False
        self.tick_count = 0
        self.breach_count = 0
        self._stop_event = asyncio.Event()
        self._failure_count = 0

    async def start(self) -> None:
        """Start the daemon scheduler loop (blocks until stopped).

        Raises:
            ValueError: If sla_port is not set.
        """
        if self.sla_port is None:
            raise ValueError("sla_port must be set before starting the scheduler")

        if self.running:
            logger.warning("SLA ticker already running")
            return

        self.running = True
        self._stop_event.clear()
        logger.info(
            f"Starting daemon scheduler with {self.tick_interval_seconds}s tick"
        )

        self._setup_signal_handlers()

        try:
            await self._run_loop()
        except asyncio.CancelledError:
            logger.info("SLA ticker cancelled")
        except Exception as e:
            logger.error(f"SLA ticker crashed: {e}", exc_info=True)
        finally:
            self.running = False
            logger.info(
                f"Daemon scheduler stopped after {self.tick_count} ticks "
                f"({self.breach_count} SLA breaches)"
            )

    async def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        if not self.running:
            return

        logger.info("Stopping SLA ticker")
        self.running = False
        self._stop_event.set()

    def _setup_signal_handlers(self) -> None:
        """Turn SIGINT and SIGTERM into stop()."""
        try:
            loop = asyncio.get_running_loop()

            def _handle_signal(sig: int) -> None:
                logger.info(f"Signal {sig} received, stopping")
                asyncio.create_task(self.stop())

            loop.add_signal_handler(signal.SIGTERM, _handle_signal, signal.SIGTERM)
            loop.add_signal_handler(signal.SIGINT, _handle_signal, signal.SIGINT)
        except NotImplementedError:
            logger.debug("Loop signal handlers unsupported here (Windows)")
        except (RuntimeError, ValueError) as e:
            # Not on the main thread, or no running loop
            logger.warning(f"Signal handlers not installed: {e}")

    async def run_once(self) -> int:
        """Run one scheduler cycle and return the number of SLA breaches.

        Raises:
            ValueError: If sla_port is not set.
        """
        if self.sla_port is None:
            raise ValueError("sla_port must be set to run a cycle")

        self.tick_count += 1
        breaches = await self.sla_port.tick()
        self.breach_count += len(breaches)
        if breaches:
            logger.info(f"Tick #{self.tick_count}: {len(breaches)} SLA breaches")

        if (
            self.order_source is not None
            and self.tick_count % self.source_every_n_ticks == 0
        ):
            await self.order_source.run_cycle()
        return len(breaches)

    async def _run_loop(self) -> None:
        """Tick until stopped; a failing cycle is logged and the loop carries on."""
        while self.running:
            try:
                await self.run_once()
                self._failure_count = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failure_count += 1
                logger.error(
                    f"Error in scheduler cycle #{self.tick_count}: {e} "
                    f"(consecutive failures: {self._failure_count})",
                    exc_info=True,
                )
                if self._failure_count >= FAILURE_ALERT_THRESHOLD:
                    logger.critical(
                        f"Scheduler cycle has failed {self._failure_count} "
                        f"consecutive times. SLA breaches may go unreported."
                    )

            if self.running:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.tick_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
