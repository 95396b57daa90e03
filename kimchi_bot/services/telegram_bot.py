"""Telegram bot: signal/trade notifications and remote control of the monitor.

The bot polls on its own event loop in a daemon thread. Anything touching the
monitor, Redis or the scheduler is submitted to the application's main loop.

Commands (whitelisted chat ids only):
    /status                  monitor state and schedule
    /latest                  last cycle premiums with global intensities
    /premium <SYMBOL>        one coin from the last cycle
    /opportunities [N]       newest trading signals
    /start_monitor           start the periodic cycle
    /stop_monitor            stop it
    /stop_all                emergency stop, after an inline confirmation
"""

import asyncio
import functools
import logging
import threading
from typing import TYPE_CHECKING, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from kimchi_bot.config import settings

if TYPE_CHECKING:
    from kimchi_bot.engine.monitor import KimchiMonitor

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None

CONFIRM_STOP_ALL = "stop_all:confirm"
CANCEL_STOP_ALL = "stop_all:cancel"


def format_status(status: dict) -> str:
    return "\n".join([
        f"Monitor: {'running' if status['is_running'] else 'stopped'}",
        f"Interval: {status['interval_seconds']}s",
        f"Coins: {', '.join(status['coins']) or '-'}",
        f"Next run: {status.get('next_execution_time') or '-'}",
        f"Last cycle: {status.get('last_cycle_at') or '-'}",
    ])


def format_premium_line(premium: dict, intensity: int) -> str:
    return f"{premium['symbol']}: {premium['premium_percent']:+.2f}% | intensity {intensity}"


def format_latest(latest: dict) -> str:
    summary = latest.get("summary")
    if not summary:
        return "No monitoring results yet."
    header = f"FX {summary['fx_rate']:,.2f} ({summary['fx_source']}) | ok {summary['successful']}/{summary['total_coins']}"
    intensities = latest.get("intensities", {})
    lines = [header]
    lines += [format_premium_line(p, intensities.get(p["symbol"], 0)) for p in summary["premiums"]]
    if summary.get("failed_symbols"):
        lines.append(f"Failed: {', '.join(summary['failed_symbols'])}")
    return "\n".join(lines)


def format_opportunity(opportunity: dict) -> str:
    scope = "global" if opportunity.get("user_id") is None else f"user {opportunity['user_id']}"
    return (
        f"[{opportunity['symbol']}] Trading signal ({scope}): premium "
        f"{opportunity['premium_percent']:+.2f}%, intensity {opportunity['intensity']}/{opportunity['threshold']}"
    )


def authorized(handler):
    """Drop updates from chats outside the whitelist."""

    @functools.wraps(handler)
    async def wrapper(self: "TelegramBot", update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        if not user or user.id not in self.chat_ids:
            if update.effective_message:
                await update.effective_message.reply_text("Unauthorized.")
            return
        if self.monitor is None:
            await update.effective_message.reply_text("Monitor not attached.")
            return
        await handler(self, update, context)

    return wrapper


class TelegramBot:
    def __init__(
        self,
        token: str,
        chat_ids: list[int],
        monitor: Optional["KimchiMonitor"] = None,
        main_loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.monitor = monitor
        self.main_loop = main_loop
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def _on_main_loop(self, coro):
        """Await `coro` on the application loop from the bot loop."""
        if self.main_loop is None:
            coro.close()
            raise RuntimeError("Main event loop not attached")
        return await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(coro, self.main_loop))

    @authorized
    async def cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.effective_message.reply_text(format_status(self.monitor.get_status()))

    @authorized
    async def cmd_latest(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        latest = await self._on_main_loop(self.monitor.get_latest_results())
        await update.effective_message.reply_text(format_latest(latest))

    @authorized
    async def cmd_premium(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.effective_message.reply_text("Usage: /premium <SYMBOL>")
            return
        symbol = context.args[0].upper()
        latest = await self._on_main_loop(self.monitor.get_latest_results())
        premium = next((p for p in latest["premiums"] if p["symbol"] == symbol), None)
        if premium is None:
            await update.effective_message.reply_text(f"No premium for {symbol} in the last cycle.")
            return
        line = format_premium_line(premium, latest["intensities"].get(symbol, 0))
        await update.effective_message.reply_text(f"{line}\nat {premium['timestamp']}")

    @authorized
    async def cmd_opportunities(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            limit = int(context.args[0]) if context.args else 5
        except ValueError:
            limit = 5
        items = await self._on_main_loop(self.monitor.cache.get_opportunities(limit))
        text = "\n".join(format_opportunity(o) for o in items) if items else "No trading signals yet."
        await update.effective_message.reply_text(text)

    @authorized
    async def cmd_start_monitor(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        started = await self._on_main_loop(self.monitor.start())
        reply = "Monitoring started." if started else "Monitoring already running or first cycle failed."
        await update.effective_message.reply_text(reply)

    @authorized
    async def cmd_stop_monitor(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        stopped = await self._on_main_loop(self.monitor.stop())
        await update.effective_message.reply_text("Monitoring stopped." if stopped else "Monitoring was not running.")

    @authorized
    async def cmd_stop_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton("Stop everything", callback_data=CONFIRM_STOP_ALL),
            InlineKeyboardButton("Cancel", callback_data=CANCEL_STOP_ALL),
        ]])
        await update.effective_message.reply_text(
            "Stop monitoring, block new trades and disable every user bot?", reply_markup=keyboard
        )

    @authorized
    async def on_stop_all_choice(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        from kimchi_bot.services.emergency_stop import run_emergency_stop

        query = update.callback_query
        await query.answer()
        if query.data != CONFIRM_STOP_ALL:
            await query.edit_message_text("Cancelled.")
            return

        await query.edit_message_text("Emergency stop in progress...")
        result = await self._on_main_loop(run_emergency_stop(self.monitor, disable_bots=True))
        lines = [
            f"Monitoring {'stopped' if result['monitoring_stopped'] else 'was not running'}.",
            "New trades are blocked.",
            f"Disabled {result['bots_disabled']} user bots.",
        ]
        lines += [f"Error: {err}" for err in result["errors"]]
        await query.edit_message_text("\n".join(lines))

    async def send_notification(self, message: str):
        """Send `message` to every whitelisted chat."""
        if not self._app:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Telegram notification to {chat_id} failed: {e}")

    def _build_app(self) -> Application:
        app = Application.builder().token(self.token).build()
        commands = {
            "status": self.cmd_status,
            "latest": self.cmd_latest,
            "premium": self.cmd_premium,
            "opportunities": self.cmd_opportunities,
            "start_monitor": self.cmd_start_monitor,
            "stop_monitor": self.cmd_stop_monitor,
            "stop_all": self.cmd_stop_all,
        }
        for name, callback in commands.items():
            app.add_handler(CommandHandler(name, callback))
        app.add_handler(CallbackQueryHandler(self.on_stop_all_choice, pattern=r"^stop_all:"))
        return app

    async def _serve(self):
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()
        logger.info(f"Telegram bot polling for {len(self.chat_ids)} chat(s)")

    def _run(self):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._app = self._build_app()
        self._loop.run_until_complete(self._serve())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run, name="telegram-bot", daemon=True)
        self._thread.start()

    def stop(self):
        if not (self._loop and self._app):
            return

        async def _shutdown():
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()

        asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
        self._loop.call_soon_threadsafe(self._loop.stop)
        logger.info("Telegram bot stopped")


def init_bot(
    monitor: Optional["KimchiMonitor"] = None,
    main_loop: Optional[asyncio.AbstractEventLoop] = None,
) -> TelegramBot:
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
        monitor=monitor,
        main_loop=main_loop,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    return _bot_instance


def notify(message: str):
    """Fire-and-forget notification. Does nothing unless the bot is polling."""
    bot = get_bot()
    if bot and bot._loop and bot._loop.is_running():
        asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
