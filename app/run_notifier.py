# app/run_notifier.py
import os
import sys
import json
import signal
import argparse
import asyncio
from typing import Optional

from infra import HttpContainer
from offers.config import EngineSettings, make_settings_from_cfg
from offers.errors import ConfigError, OfferEngineError, SourceError
from offers.services.coordinator_service import CoordinatorAggregator, CoordinatorSource, probe_info
from offers.services.mock_source import MockSource
from offers.services.notifier import LogNotifier, Notifier
from offers.services.reconcile_service import ReconcileService
from offers.services.scheduler import Scheduler
from offers.stores.offer_store import OfferStateStore
from utils import logger, load_cfg


class NotifierApp:
    """Composition root: wires store, sources, notifier, reconciler and scheduler."""

    def __init__(self, cfg_path: Optional[str], settings: EngineSettings, notifier: Notifier) -> None:
        self.cfg_path = cfg_path
        self.settings = settings
        self.notifier = notifier
        self.container: Optional[HttpContainer] = None
        self.store = OfferStateStore(settings.store_path, fallback_ttl_ms=settings.fallback_ttl_ms)
        self.aggregator: Optional[CoordinatorAggregator] = None
        self.scheduler: Optional[Scheduler] = None
        self._stop = asyncio.Event()

    async def setup(self) -> None:
        s = self.settings
        if s.use_mock:
            logger.warning("⚠️  MOCK MODE ENABLED - Using fake data for testing")
            mock = MockSource(s.target_currencies, new_offer_probability=0.3)
            self.aggregator = CoordinatorAggregator(lambda _sid: mock)
        else:
            self.container = await HttpContainer.start(
                s.api_url, logger, timeout_ms=s.timeout_ms, host_header=s.host_header,
            )
            http = self.container.http
            self.aggregator = CoordinatorAggregator(lambda sid: CoordinatorSource(sid, http))
            logger.info(f"RoboSats API URL: {s.api_url}")

        logger.info(f"Monitoring {len(s.coordinators)} coordinator(s): {', '.join(s.coordinators)}")
        logger.info(f"Target currencies: {', '.join(c.code for c in s.target_currencies)}")

        self.store.load()

        reconciler = ReconcileService(self.aggregator, self.store, self.notifier)
        self.scheduler = Scheduler(reconciler)

    async def probe(self) -> None:
        if self.settings.use_mock or self.aggregator is None:
            return
        sources = [self.aggregator.source(c) for c in self.settings.coordinators]
        try:
            info = await probe_info(s for s in sources if isinstance(s, CoordinatorSource))
            logger.info(f"Coordinator info: {json.dumps(info)[:300]}")
        except SourceError as e:
            logger.warning(f"Coordinator probe failed: {e}")

    async def reload(self) -> None:
        """Re-read config.yaml and hand a fresh snapshot to the scheduler."""
        try:
            new = make_settings_from_cfg(load_cfg(self.cfg_path))
        except (ConfigError, OSError) as e:
            logger.error(f"Configuration reload rejected: {e}")
            return
        if (new.api_url, new.use_mock, new.data_dir) != (self.settings.api_url, self.settings.use_mock, self.settings.data_dir):
            logger.warning("api_url / use_mock / data_dir changes need a restart, keeping the current ones")
            new = new.model_copy(update={"api_url": self.settings.api_url,
                                         "use_mock": self.settings.use_mock,
                                         "data_dir": self.settings.data_dir})
        logger.info("Configuration changed")
        self.settings = new
        self.scheduler.reconfigure(new, run_now=new.enabled)

    def request_stop(self) -> None:
        logger.info("Shutdown requested, stopping gracefully...")
        self._stop.set()

    async def run_forever(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                pass
        if hasattr(signal, "SIGHUP"):
            try:
                loop.add_signal_handler(signal.SIGHUP, lambda: asyncio.ensure_future(self.reload()))
            except NotImplementedError:
                pass

        if self.settings.enabled:
            logger.info("Bot is enabled - starting periodic checks...")
            self.scheduler.start(self.settings, run_now=True)
        else:
            logger.info("Bot is paused - send SIGHUP after enabling it in config.yaml")

        await self._stop.wait()

    async def close(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        if self.container is not None:
            await self.container.stop()


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="run_notifier", description="RoboSats offer notifier")
    parser.add_argument("--config", default=os.getenv("NOTIFIER_CONFIG"), help="path to config.yaml")
    parser.add_argument("--once", action="store_true", help="run a single reconciliation cycle and exit")
    args = parser.parse_args(argv)

    try:
        settings = make_settings_from_cfg(load_cfg(args.config))
    except ConfigError as e:
        logger.error(str(e))
        return 1

    app = NotifierApp(args.config, settings, LogNotifier())
    try:
        await app.setup()
        await app.probe()
        if args.once:
            await app.scheduler.run_once(settings)
            print(json.dumps(app.scheduler.status(), indent=2))
            return 0 if app.scheduler.last_error is None else 2
        await app.run_forever()
        return 0
    except OfferEngineError as e:
        logger.error(f"Fatal error during startup: {e}")
        return 1
    finally:
        await app.close()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
