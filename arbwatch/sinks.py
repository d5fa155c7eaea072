# arbwatch/sinks.py
from rich.console import Console

from .logger import AsyncAuditLogger, get_logger
from .models import AUDIT_HEADER, ArbitrageOpportunity


class LogSink:
    """Writes each opportunity to the `arbwatch.opportunities` logger."""
    def __init__(self):
        self.logger = get_logger("opportunities")

    async def handle(self, opportunity: ArbitrageOpportunity) -> None:
        self.logger.info(
            f"{opportunity.instrument} | BUY {opportunity.buy_venue} {opportunity.buy_price} "
            f"| SELL {opportunity.sell_venue} {opportunity.sell_price} | {opportunity.margin_percent:.4f}%"
        )


class ConsoleSink:
    """Colored one-liner per opportunity."""
    def __init__(self, console: Console = None):
        self.console = console or Console()

    async def handle(self, opportunity: ArbitrageOpportunity) -> None:
        self.console.print(
            f"[bold cyan]{opportunity.detected_at:%H:%M:%S}[/bold cyan] "
            f"[green]BUY {opportunity.buy_venue.upper()} @ {opportunity.buy_price}[/green] -> "
            f"[red]SELL {opportunity.sell_venue.upper()} @ {opportunity.sell_price}[/red] "
            f"[bold yellow]{opportunity.margin_percent:.4f}%[/bold yellow] "
            f"(spread {opportunity.spread})"
        )


class AuditSink:
    """CSV audit trail of every emitted opportunity."""
    def __init__(self, filepath: str):
        self.writer = AsyncAuditLogger(filepath, header=AUDIT_HEADER)

    async def start(self):
        await self.writer.start()

    async def stop(self):
        await self.writer.stop()

    async def handle(self, opportunity: ArbitrageOpportunity) -> None:
        await self.writer.log_row(opportunity.as_row())
