"""
Discord Web Chat Bridge

Main entry point. Runs a Discord bot and an HTTP API in one process so a
password-protected web page can read and post to a single Discord channel
(or a DM with a single user).

Architecture:
- bot_client.py: Discord WebSocket client, reconnect backoff, backend calls
- bridge.py: shared state (history, typing, presence) and web operations
- api_handlers.py: HTTP API endpoints
- rate_limiting.py: per-client request limits
- message_logic.py: message normalization and outbound formatting
- message_cache.py: bounded message history
- typing_tracker.py / presence.py: typing indicators and bot presence
- bot_models.py: core data structures
- bot_exceptions.py: error handling hierarchy
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Optional

import aiohttp
import discord
from aiohttp import web
from dotenv import load_dotenv

from .api_handlers import BridgeAPIHandlers, create_routes, create_static_routes
from .bot_client import DiscordBotClient
from .bot_models import BridgeConfig, RateLimitRule
from .bridge import MessageBridge
from .loggers import setup_logging
from .rate_limiting import RateLimiter, create_rate_limit_middleware

logger = logging.getLogger(__name__)

###############################################################################
# CONFIGURATION
###############################################################################


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def load_config() -> BridgeConfig:
    """Build the bridge configuration from the environment (and .env)."""
    load_dotenv()

    return BridgeConfig(
        channel_id=os.getenv("DISCORD_CHANNEL_ID", ""),
        chat_password=os.getenv("CHAT_PASSWORD", ""),
        bot_client_id=os.getenv("DISCORD_BOT_CLIENT_ID") or None,
        default_username=os.getenv("DEFAULT_USERNAME", "web"),
        max_messages=_env_int("MAX_MESSAGES", 100),
        typing_timeout=_env_float("TYPING_TIMEOUT", 5.0),
        presence_timeout=_env_float("PRESENCE_TIMEOUT", 15.0),
        presence_poll_interval=_env_float("PRESENCE_POLL_INTERVAL", 10.0),
        history_days=_env_int("HISTORY_DAYS", 7),
        history_limit=_env_int("HISTORY_LIMIT", 100),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 3000),
        static_dir=os.getenv("STATIC_DIR", "public") or None,
        enable_debug_logging=os.getenv("ENABLE_DEBUG_LOGGING", "false").lower() == "true"
    )


def missing_settings(token: Optional[str], config: BridgeConfig) -> list:
    """Names of required environment variables that are unset."""
    required = {
        "DISCORD_BOT_TOKEN": token,
        "DISCORD_CHANNEL_ID": config.channel_id,
        "CHAT_PASSWORD": config.chat_password,
    }
    return [name for name, value in required.items() if not value]


###############################################################################
# HTTP APPLICATION
###############################################################################


def create_app(
    bridge: MessageBridge,
    limiter: Optional[RateLimiter] = None,
    rules: Optional[Dict[str, RateLimitRule]] = None,
    static_dir: Optional[str] = None
) -> web.Application:
    """Build the aiohttp application: rate limiting, API routes, static client."""
    limiter = limiter or RateLimiter()

    app = web.Application(middlewares=[create_rate_limit_middleware(limiter, rules)])
    app.add_routes(create_routes(BridgeAPIHandlers(bridge)))
    app.add_routes(create_static_routes(static_dir))
    return app


###############################################################################
# BRIDGE SERVICE
###############################################################################

class BridgeService:
    """
    Coordinates the Discord client, the bridge state and the HTTP server.

    The HTTP server starts first and keeps serving even if the gateway can't
    log in; web requests that need Discord then fail with 404/500.
    """

    def __init__(self, config: BridgeConfig):
        self.config = config
        self.bot_client: Optional[DiscordBotClient] = None
        self.bridge: Optional[MessageBridge] = None
        self.web_app: Optional[web.Application] = None
        self.web_runner: Optional[web.AppRunner] = None
        self.web_site: Optional[web.TCPSite] = None
        self._stopped = asyncio.Event()

        logger.info("Bridge service initialized")

    async def start(self, token: str):
        """Start serving and run the gateway until stopped."""
        logger.info("Starting bridge service...")

        self.bot_client = DiscordBotClient(config=self.config)
        self.bridge = MessageBridge(self.config, self.bot_client)
        self.bot_client.attach_bridge(self.bridge)

        await self._setup_http_server()

        try:
            await self.bot_client.start_with_backoff(token)
        except discord.LoginFailure as e:
            logger.error(f"Discord login failed, check DISCORD_BOT_TOKEN: {e}")
        except discord.PrivilegedIntentsRequired as e:
            logger.error(f"Message content intent is not enabled for this bot: {e}")
        except Exception:
            logger.exception("Discord gateway stopped unexpectedly")

        if not self._stopped.is_set():
            logger.warning("Discord gateway stopped; HTTP API still serving")
            await self._stopped.wait()

    async def _setup_http_server(self):
        """Set up the HTTP API server."""
        try:
            self.web_app = create_app(self.bridge, static_dir=self.config.static_dir)

            self.web_runner = web.AppRunner(self.web_app)
            await self.web_runner.setup()

            self.web_site = web.TCPSite(self.web_runner, self.config.host, self.config.port)
            await self.web_site.start()

            logger.info(f"HTTP API server started on http://{self.config.host}:{self.config.port}")

        except Exception as e:
            logger.error(f"Error setting up HTTP server: {e}")
            raise

    async def stop(self):
        """Stop the gateway and the HTTP server."""
        logger.info("Stopping bridge service...")
        self._stopped.set()

        try:
            if self.bot_client:
                await self.bot_client.shutdown()

            if self.web_runner:
                await self.web_runner.cleanup()

            logger.info("Bridge service stopped")

        except Exception as e:
            logger.error(f"Error stopping bridge service: {e}")


###############################################################################
# MAIN ENTRY POINT
###############################################################################

async def main(debug: bool = False):
    """Main entry point for the bridge."""
    config = load_config()
    token = os.getenv("DISCORD_BOT_TOKEN")

    if debug:
        config.enable_debug_logging = True

    missing = missing_settings(token, config)
    if missing:
        for name in missing:
            logger.error(f"{name} environment variable not set")
        logger.error("Please set them in the .env file")
        sys.exit(1)

    logger.info("Starting bridge with configuration:")
    logger.info(f"  HTTP: {config.host}:{config.port}")
    logger.info(f"  Discord target: {config.channel_id}")
    logger.info(f"  History size: {config.max_messages}")
    logger.info(f"  Static files: {config.static_dir}")
    logger.info(f"  Debug Logging: {config.enable_debug_logging}")

    service = BridgeService(config)

    try:
        await service.start(token)

    except asyncio.CancelledError:
        logger.info("Shutdown requested")

    except Exception as e:
        logger.error(f"Fatal error: {e}")

    finally:
        await service.stop()
        logger.info("Bridge shutdown complete")


###############################################################################
# DEVELOPMENT AND TESTING UTILITIES
###############################################################################

async def run_health_check(port: Optional[int] = None) -> bool:
    """Run a health check against a running bridge."""
    port = port or _env_int("PORT", 3000)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://localhost:{port}/health") as resp:
                if resp.status == 200:
                    data = (await resp.json()).get("data", {})
                    status = data.get("status", {})
                    print("✅ Health check passed")
                    print(f"Gateway ready: {status.get('gateway_ready', False)}")
                    print(f"Messages cached: {data.get('history', {}).get('size', 0)}")
                    print(f"Presence: {data.get('presence')}")
                    return True
                else:
                    print(f"❌ Health check failed: {resp.status}")
                    return False
    except Exception as e:
        print(f"❌ Health check error: {e}")
        return False


def run(argv=None):
    parser = argparse.ArgumentParser(description="Discord web chat bridge")
    parser.add_argument("--health-check", action="store_true", help="Run health check")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    load_dotenv()
    debug = args.debug or os.getenv("ENABLE_DEBUG_LOGGING", "false").lower() == "true"
    setup_logging(debug=debug)

    if args.health_check:
        print("Running health check...")
        result = asyncio.run(run_health_check())
        sys.exit(0 if result else 1)

    try:
        asyncio.run(main(debug=debug))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
