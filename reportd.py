#!/usr/bin/env python3
"""reportd — a chat bot that answers report lookups and free-text questions.

Entry point. Wires config → credentials → channel → storage → provider →
resolvers → dispatcher → supervisor. Handles PID file, Unix signals, the
liveness server, and runs until the session ends for good.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any

# Add project directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from channels import create_channel
from channels.http_api import HealthServer, self_ping_loop
from config import Config, ConfigError, load_config
from credentials import FileCredentialStore
from dispatcher import Cooldown, Dispatcher
from pairing import present_pairing
from providers import create_provider
from replies import Notices
from reports import DailyReportResolver, MonthlyReportResolver
from responder import AIResponder
from storage import create_storage
from supervisor import ClosePolicy, Supervisor

log = logging.getLogger("reportd")

# ─── PID File ────────────────────────────────────────────────────

def _check_pid_file(path: Path) -> None:
    """Refuse to start if another instance is live.

    Two instances would fight over the same linked-device session.
    """
    if path.exists():
        try:
            pid = int(path.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"Another instance is running (PID {pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except PermissionError:
            print(f"Another instance is running (PID {pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            log.info("Stale PID file found, removing")
            path.unlink()


def _write_pid_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(os.getpid()))


def _remove_pid_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:  # noqa: S110
        pass


class ReportDaemon:
    def __init__(self, config: Config):
        self.config = config
        self.start_time = time.time()
        self.notices = Notices.from_dict(config.messages)
        self.store: FileCredentialStore | None = None
        self.channel: Any = None
        self.storage: Any = None
        self.dispatcher: Dispatcher | None = None
        self.supervisor: Supervisor | None = None
        self._health: HealthServer | None = None
        self._ping_task: asyncio.Task | None = None

    def _setup_logging(self) -> None:
        """Configure logging to file + stderr."""
        log_file = self.config.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)

        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        fh = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=self.config.log_max_bytes,
            backupCount=self.config.log_backup_count, encoding="utf-8",
        )
        fh.setFormatter(fmt)
        fh.setLevel(logging.DEBUG)

        # Stderr handler (for journald / hosting console)
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(fmt)
        sh.setLevel(logging.INFO)

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        root.addHandler(fh)
        root.addHandler(sh)

        # Silence noisy third-party loggers
        for name in ("httpx", "httpcore", "openai", "anthropic", "aiohttp.access", "google"):
            logging.getLogger(name).setLevel(logging.WARNING)

    def _init_components(self) -> None:
        cfg = self.config
        self.store = FileCredentialStore(cfg.credentials_file)
        self.channel = create_channel(cfg)
        self.storage = create_storage(cfg)
        log.info("Storage: %s (scope %s)", cfg.storage_type, cfg.folder_id)

        api_key = cfg.ai_api_key
        if not api_key:
            log.warning("No API key for AI provider '%s'", cfg.ai_config.get("provider", ""))
        provider = create_provider(cfg.ai_config, api_key)
        log.info("AI provider: %s / %s", cfg.ai_config.get("provider"), cfg.ai_config.get("model"))

        daily = DailyReportResolver(
            self.storage, cfg.folder_id, self.notices,
            extension=cfg.daily_extension, caption=cfg.daily_caption,
        )
        monthly = MonthlyReportResolver(
            self.storage, cfg.folder_id, self.notices,
            name_template=cfg.monthly_name_template, caption=cfg.monthly_caption,
        )
        responder = AIResponder(provider, self.notices, timeout=cfg.ai_timeout)

        policy = ClosePolicy(
            logged_out_codes=cfg.logged_out_codes,
            rejected_codes=cfg.rejected_codes,
            retry_delay=cfg.retry_delay,
            rejected_cooldown=cfg.rejected_cooldown,
            rejected_retries=cfg.rejected_retries,
        )
        # Dispatcher sends through the supervisor; supervisor delivers to the dispatcher
        self.supervisor = Supervisor(
            channel=self.channel,
            store=self.store,
            on_message=self._on_message,
            policy=policy,
            on_pairing=present_pairing,
            drain_timeout=cfg.drain_timeout,
        )
        self.dispatcher = Dispatcher(
            daily=daily,
            monthly=monthly,
            responder=responder,
            send=self.supervisor.send,
            cooldown=Cooldown(cfg.ai_cooldown),
            notices=self.notices,
            cooldown_policy=cfg.ai_cooldown_policy,
            handler_timeout=cfg.handler_timeout,
        )

    async def _on_message(self, message) -> None:
        await self.dispatcher.handle(message)

    def _build_status(self) -> dict:
        sup = self.supervisor
        state = sup.state if sup else None
        return {
            "status": "ok",
            "bot": self.config.bot_name,
            "pid": os.getpid(),
            "uptime_seconds": int(time.time() - self.start_time),
            "connection": state.status.value if state else "disconnected",
            "close_reason": state.reason.value if state and state.reason else None,
            "connect_attempts": sup.connect_attempts if sup else 0,
            "pairing_pending": sup.pairing_pending if sup else False,
            "messages": dict(self.dispatcher.stats) if self.dispatcher else {},
        }

    def _setup_signals(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register Unix signal handlers."""
        def handle_sigterm():
            log.info("Signal received: shutting down gracefully")
            if self.supervisor:
                self.supervisor.stop()

        try:
            loop.add_signal_handler(signal.SIGTERM, handle_sigterm)
            loop.add_signal_handler(signal.SIGINT, handle_sigterm)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async def run(self) -> None:
        """Main entry point — runs until the session ends for good."""
        cfg = self.config
        pid_path = cfg.state_dir / "reportd.pid"

        self._setup_logging()
        log.info("Starting reportd '%s'", cfg.bot_name)

        _check_pid_file(pid_path)
        _write_pid_file(pid_path)

        try:
            self._init_components()
            self._setup_signals(asyncio.get_running_loop())

            if cfg.http_enabled:
                self._health = HealthServer(cfg.http_host, cfg.http_port,
                                            get_status=self._build_status)
                await self._health.start()
            if cfg.self_ping_url:
                self._ping_task = asyncio.create_task(
                    self_ping_loop(cfg.self_ping_url, cfg.self_ping_interval)
                )

            log.info("reportd running (PID %d)", os.getpid())
            final = await self.supervisor.run()
            log.info("Supervisor finished: %s%s", final.status.value,
                     f" ({final.reason.value})" if final.reason else "")

        except Exception as e:
            log.error("Fatal error: %s", e, exc_info=True)
            raise
        finally:
            if self._ping_task:
                self._ping_task.cancel()
                try:
                    await self._ping_task
                except asyncio.CancelledError:
                    pass
            if self._health:
                await self._health.stop()
            if self.storage is not None:
                try:
                    await self.storage.close()
                except Exception as e:
                    log.debug("Storage close failed: %s", e)
            _remove_pid_file(pid_path)
            log.info("reportd stopped")


# ─── CLI Entry Point ─────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="reportd — report lookup and AI chat bot",
    )
    parser.add_argument(
        "-c", "--config",
        default=os.environ.get("REPORTD_CONFIG", "./reportd.toml"),
        help="Path to config file (default: $REPORTD_CONFIG or ./reportd.toml)",
    )
    parser.add_argument(
        "--channel",
        help="Override channel type (e.g., 'cli' for testing)",
    )
    args = parser.parse_args()

    overrides = {}
    if args.channel:
        overrides["channel.type"] = args.channel

    try:
        config = load_config(args.config, overrides=overrides)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    daemon = ReportDaemon(config)
    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
