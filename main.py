# main.py
import asyncio
import os
import sys
import time
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

from arbwatch.config import load_config
from arbwatch.errors import ConfigurationError
from arbwatch.logger import setup_console_logger
from arbwatch.models import now_ms
from arbwatch.sinks import AuditSink, ConsoleSink, LogSink
from arbwatch.websocket_engine import WebSocketEngine

CONFIG_PATH = os.environ.get("ARBWATCH_CONFIG", "config.yaml")

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick which configured venues to watch."""
    print("\n🚀 ARBWATCH CROSS-VENUE MONITOR \n")
    names = [v.name for v in config.venues]
    chosen = questionary.checkbox("Select Venues to Watch:", choices=names).ask()
    if not chosen or len(chosen) < 2:
        print("Need at least 2 venues for arbitrage. Exiting.")
        sys.exit()
    return config.select_venues(chosen)

def generate_dashboard(engine: WebSocketEngine):
    """
    Live quotes per venue, connection states, skew bound and counters.
    """
    quote_table = Table(title=f"📡 Live Quotes {engine.cfg.instrument.upper()}")
    quote_table.add_column("Venue", style="magenta")
    quote_table.add_column("State", style="cyan")
    quote_table.add_column("Bid", justify="right", style="green")
    quote_table.add_column("Ask", justify="right", style="red")
    quote_table.add_column("Age (ms)", justify="right")

    snapshot = engine.get_snapshot()
    now = now_ms()
    for venue, state in engine.connection_states().items():
        q = snapshot.get(venue)
        if q is None:
            quote_table.add_row(venue.upper(), state.value, "-", "-", "-")
            continue
        age = q.age(now)
        age_str = f"{age:,.0f}" if age < engine.cfg.price_expiry_ms else f"[yellow]{age:,.0f}[/yellow]"
        quote_table.add_row(venue.upper(), state.value, str(q.bid), str(q.ask), age_str)

    stats = engine.stats.snapshot()
    stats_table = Table(title="📊 Detection")
    stats_table.add_column("Counter", style="cyan")
    stats_table.add_column("Total", justify="right")
    stats_table.add_row("Checks", str(stats.checks))
    stats_table.add_row("Skipped (stale)", str(stats.skipped))
    stats_table.add_row("Opportunities", f"[bold green]{stats.opportunities}[/bold green]")
    stats_table.add_row("Reconnects", str(stats.reconnects))
    stats_table.add_row("Decode errors", str(stats.decode_errors))
    stats_table.add_row("Dropped", str(stats.dropped))

    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )
    layout["top"].split_row(
        Layout(Panel(quote_table)),
        Layout(Panel(stats_table))
    )

    skew = engine.estimator.stats()
    footer = Panel(
        f"[bold gold1]SKEW BOUND: {skew.bound_ms:,.0f}ms[/bold gold1] | mean {skew.mean_ms:,.1f}ms "
        f"| stddev {skew.stddev_ms:,.1f}ms | x{skew.multiplier:.2f} | samples {skew.samples} "
        f"| threshold {engine.cfg.margin_threshold_percent}%",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class ArbWatch:
    def __init__(self, config):
        self.config = config
        self.logger = setup_console_logger("arbwatch", config.log_level)

        self.console = Console()
        sinks = [LogSink(), ConsoleSink(self.console)]
        if config.audit_log:
            sinks.append(AuditSink(config.audit_log))
        self.engine = WebSocketEngine(config, sinks=sinks)

    async def run(self):
        try:
            await self.engine.start()
            with Live(console=self.console, refresh_per_second=4) as live:
                while self.engine.running:
                    start_tick = time.time()
                    live.update(generate_dashboard(self.engine))
                    elapsed = time.time() - start_tick
                    await asyncio.sleep(max(0, 0.25 - elapsed))
        finally:
            print("Shutting down resources...")
            await self.engine.shutdown()

if __name__ == "__main__":
    try:
        conf = load_config(CONFIG_PATH)
        if "--pick" in sys.argv:
            conf = startup_selection(conf)
        bot = ArbWatch(conf)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    try:
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\n🛑 Monitor Stopped by User.")
        sys.exit()
