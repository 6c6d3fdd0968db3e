"""
main.py - Live Trading Entry Point

Wires the live pipeline for one symbol:

    BinanceClient -> MarketFeed -> LiveSession (SignalAggregator,
    PositionTracker, RiskManager, OrderReconciler)

Module Order: Core → Monitoring → Data → Strategy → Risk → Execution

Usage:
    python main.py -c core/config.yaml --testnet
    python main.py -c core/config.yaml --live --auto-trade

Credentials come from .env (TESTNET_API_KEY / TESTNET_API_SECRET or
LIVE_API_KEY / LIVE_API_SECRET). Without --auto-trade the session only
logs decisions.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from core.config import AppConfig, ConfigError, load_config
from core.environment import Environment, EnvironmentConfig, load_environment
from core.types import Symbol, Timeframe
from data.binance_client import BinanceClient
from data.market_feed import MarketFeed
from execution.live_session import LiveSession
from execution.position_tracker import PositionTracker
from monitoring import logger as event_log
from risk.daily_loss_guard import RiskManager
from strategies.presets import build_modules
from strategies.signal_aggregator import SignalAggregator


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class TradingApp:
    """
    Orchestrator for the live session.

    Contains no trading logic: it builds the collaborators, runs the feed
    and the session side by side, and tears them down on shutdown.
    """

    def __init__(
        self,
        config_path: str = "core/config.yaml",
        testnet: Optional[bool] = None,
        auto_trade: Optional[bool] = None,
        log_level: Optional[str] = None,
        env_file: str = ".env",
    ):
        self.config_path = config_path
        self.testnet_override = testnet
        self.auto_trade_override = auto_trade
        self.log_level_override = log_level
        self.env_file = env_file
        self.shutdown_requested = False

        self.config: Optional[AppConfig] = None
        self.env: Optional[EnvironmentConfig] = None
        self.client: Optional[BinanceClient] = None
        self.feed: Optional[MarketFeed] = None
        self.session: Optional[LiveSession] = None

    async def setup(self) -> None:
        logger.info("=" * 80)
        logger.info("LIVE SESSION INITIALIZATION")
        logger.info("=" * 80)

        self.config = load_config(self.config_path)
        live = self.config.live
        if self.testnet_override is not None:
            live.testnet = self.testnet_override
        if self.auto_trade_override is not None:
            live.auto_trade = self.auto_trade_override
        if self.log_level_override:
            self.config.monitoring.log_level = self.log_level_override

        logger.info("[1/5] Core (environment)")
        mode = Environment.TESTNET if live.testnet else Environment.LIVE
        self.env = load_environment(mode, self.env_file)
        if not self.env.is_valid():
            raise ConfigError(f"Missing API credentials for {mode.value} in {self.env_file}")

        logger.info("[2/5] Monitoring (event log)")
        event_log.configure(
            level=self.config.monitoring.log_level,
            log_file=self.config.monitoring.log_file,
        )
        logging.getLogger().setLevel(self.config.monitoring.log_level.upper())

        logger.info("[3/5] Data (exchange client & market feed)")
        symbol = Symbol.parse(live.symbol)
        timeframe = Timeframe.parse(live.timeframe)
        self.client = BinanceClient(self.env.api_key, self.env.api_secret, testnet=self.env.testnet)
        await self.client.initialize()
        self.feed = MarketFeed(self.client, symbol, timeframe, poll_interval=live.feed_poll_interval)

        logger.info("[4/5] Strategy & risk")
        aggregator = SignalAggregator(
            build_modules(self.config.modules),
            self.config.weights,
            self.config.decision.thr_long,
            self.config.decision.thr_short,
        )
        risk = RiskManager(max_daily_loss_pct=self.config.risk.max_daily_loss_pct)

        logger.info("[5/5] Execution (session)")
        self.session = LiveSession(
            exchange=self.client,
            aggregator=aggregator,
            tracker=PositionTracker(),
            risk=risk,
            symbol=symbol,
            timeframe=timeframe,
            settings=live,
            capital_base=self.config.risk.capital_base,
        )
        self.feed.on_bar = self.session.push_bar
        self.feed.on_price = self.session.update_price

        event_log.log_event("platform.initialized", {
            'environment': mode.value,
            'symbol': symbol.name,
            'timeframe': timeframe.value,
            'auto_trade': live.auto_trade,
            'weights': self.config.weights,
        })

    def request_shutdown(self) -> None:
        self.shutdown_requested = True
        if self.feed:
            self.feed.stop()
        if self.session:
            self.session.stop()

    async def shutdown(self) -> None:
        logger.info("=" * 80)
        logger.info("INITIATING GRACEFUL SHUTDOWN")
        logger.info("=" * 80)
        self.request_shutdown()

        try:
            if self.session:
                logger.info(f"   ✓ Final position: {self.session.position.to_dict()}")
                logger.info(f"   ✓ Risk state: {self.session.risk.state.to_dict()}")
            if self.client:
                await self.client.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

        logger.info("SHUTDOWN COMPLETE")

    async def run(self) -> int:
        """Setup, run feed and session until stopped, then shut down."""
        exit_code = 0
        try:
            await self.setup()
            if not self.shutdown_requested:
                await asyncio.gather(self.feed.run(), self.session.run())
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            exit_code = 2
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            exit_code = 1
        finally:
            await self.shutdown()
        return exit_code


# Global app instance for signal handler
app_instance: Optional[TradingApp] = None


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info(f"Received signal {signum}")
    if app_instance:
        app_instance.request_shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Signal trader live session")
    parser.add_argument('-c', '--config', default='core/config.yaml', help='Path to config YAML')
    env_group = parser.add_mutually_exclusive_group()
    env_group.add_argument('--testnet', dest='testnet', action='store_true', help='Trade on the spot testnet')
    env_group.add_argument('--live', dest='testnet', action='store_false', help='Trade on the real exchange')
    parser.set_defaults(testnet=None)
    parser.add_argument('--auto-trade', dest='auto_trade', action='store_true', default=None,
                        help='Submit orders on LONG/SHORT decisions')
    parser.add_argument('--env-file', default='.env', help='Credentials file')
    parser.add_argument('--log-level', dest='log_level', help='Override log level (DEBUG/INFO/WARNING/ERROR)')
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()

    app_instance = TradingApp(
        config_path=args.config,
        testnet=args.testnet,
        auto_trade=args.auto_trade,
        log_level=args.log_level,
        env_file=args.env_file,
    )
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        sys.exit(asyncio.run(app_instance.run()))
    except KeyboardInterrupt:
        logger.info("Shutdown via keyboard interrupt")
        sys.exit(0)
