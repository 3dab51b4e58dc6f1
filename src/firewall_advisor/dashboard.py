"""Rich TUI dashboard for live alert and analysis display."""

from datetime import datetime

from rich.layout import Layout
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from firewall_advisor.config import TargetSettings
from firewall_advisor.history import HistoryStore
from firewall_advisor.models import Recommendation
from firewall_advisor.pipeline import AdvisorPipeline, AnalysisSession

RECOMMENDATION_COLORS = {
    Recommendation.ALLOW: "green",
    Recommendation.BLOCK: "bold red",
    Recommendation.CAUTION: "yellow",
    Recommendation.UNKNOWN: "white",
}

RECOMMENDATION_DOTS = {
    "Allow": "[green]●[/green]",
    "Block": "[red]●[/red]",
    "Caution": "[yellow]●[/yellow]",
    "Unknown": "[white]●[/white]",
}


class AdvisorDashboard:
    """Five-panel TUI for the firewall advisor.

    Panels:
    1. Monitor (top) — target application and monitoring state
    2. Current alert — connection details of the newest alert
    3. Analysis — the AI verdict, or the analysis error
    4. History — table of past analyses
    5. Status (footer) — one-line status message

    Attributes:
        target: The watched application.
        history: History store rendered in the history panel.
        session: Session for the alert currently displayed.
        monitoring: Whether the window watcher is running.
        credential_count: Number of configured credentials.
        status: Status-bar text.
        last_event: When the displayed session last changed.
    """

    def __init__(self, target: TargetSettings, history: HistoryStore) -> None:
        self.target = target
        self.history = history
        self.session: AnalysisSession | None = None
        self.monitoring = False
        self.credential_count = 0
        self.status: str | None = None
        self.last_event: datetime | None = None
        self._frame: int = 0

    def register_callbacks(self, pipeline: AdvisorPipeline) -> None:
        """Subscribe to pipeline events for live updates.

        Args:
            pipeline: The AdvisorPipeline to subscribe to.
        """
        pipeline.on("alert", self.show_session)
        pipeline.on("enriched", self._touch)
        pipeline.on("analysis", self._touch)
        pipeline.on("error", self._touch)
        pipeline.on("dismissed", self._on_dismissed)

    def show_session(self, session: AnalysisSession) -> None:
        """Display a new alert's session."""
        self.session = session
        self._touch(session)

    def _touch(self, session: AnalysisSession) -> None:
        self.last_event = datetime.now()

    def _on_dismissed(self, session: AnalysisSession) -> None:
        if session is self.session:
            self.session = None
        self.update_status("[dim]Alert resolved in the firewall.[/dim]")

    def update_status(self, text: str | None) -> None:
        """Set the status-bar text.

        Args:
            text: Markup text, or None to clear.
        """
        self.status = text

    def _dots(self) -> str:
        """Return an animated ellipsis that cycles across render frames."""
        return "." * ((self._frame % 3) + 1)

    def __rich__(self) -> Layout:
        """Allow Rich to use this object directly as a renderable."""
        return self.render()

    def render(self) -> Layout:
        """Build and return the full dashboard layout."""
        self._frame += 1
        layout = Layout()
        layout.split_column(
            Layout(name="monitor", size=3),
            Layout(name="alert", size=8),
            Layout(name="analysis", size=8),
            Layout(name="history", ratio=1),
            Layout(name="status", size=3),
        )
        layout["monitor"].update(self._render_monitor_panel())
        layout["alert"].update(self._render_alert_panel())
        layout["analysis"].update(self._render_analysis_panel())
        layout["history"].update(self._render_history_panel())
        layout["status"].update(self._render_status_panel())
        return layout

    def _render_monitor_panel(self) -> Panel:
        state = "[green]monitoring[/green]" if self.monitoring else "[red]idle[/red]"
        keys = (
            f"{self.credential_count} configured"
            if self.credential_count
            else "[red]none configured[/red]"
        )
        text = Text.from_markup(
            f"  Watching [bold]{escape(self.target.app_name)}[/bold]: {state}"
            f"    API keys: {keys}"
            f"    History: {len(self.history)} entries"
        )
        return Panel(text, title="[bold]Firewall Advisor[/bold]", border_style="blue")

    def _render_alert_panel(self) -> Panel:
        session = self.session
        if session is None:
            content = Text.from_markup("  [dim]Waiting for the next firewall alert...[/dim]")
            return Panel(content, title="[bold]Current Alert[/bold]", border_style="cyan")

        alert = session.alert
        parts = [
            f"  Process:     [bold]{escape(alert.process_name or '?')}[/bold]"
            f"  {escape(alert.process_path)}",
            f"  Destination: [bold]{escape(alert.destination or '?')}[/bold]"
            f" ({alert.protocol})  {escape(alert.reverse_dns)}",
        ]
        if session.is_loading_enrichment:
            parts.append(f"  [dim italic]Looking up destination{self._dots()}[/dim italic]")
        else:
            if alert.geo_location:
                parts.append(f"  Location:    {escape(alert.geo_location)}")
            if alert.whois_data:
                parts.append(f"  Network:     {escape(alert.whois_data)}")

        content = Text.from_markup("\n".join(parts))
        return Panel(content, title="[bold]Current Alert[/bold]", border_style="cyan")

    def _render_analysis_panel(self) -> Panel:
        session = self.session
        parts: list[str] = []
        if session is None:
            parts.append("  [dim]No analysis yet.[/dim]")
        elif session.error:
            parts.append(f"  [red]{escape(session.error)}[/red]")
            if session.needs_credential:
                parts.append("  [dim]Add a key with: firewall-advisor add-key <key>[/dim]")
        elif session.analysis is not None:
            analysis = session.analysis
            color = RECOMMENDATION_COLORS[analysis.recommendation]
            service = f"  ({escape(analysis.known_service)})" if analysis.known_service else ""
            parts.append(
                f"  Verdict: [{color}]{analysis.recommendation.value.upper()}[/{color}]"
                f"  Confidence: {analysis.confidence:.0%}{service}"
            )
            parts.append(f"  {escape(analysis.summary)}")
            if analysis.risks:
                parts.append(f"  [yellow]Risks:[/yellow] {escape(', '.join(analysis.risks))}")
        elif session.is_loading_analysis:
            parts.append(f"  [dim italic]Analyzing{self._dots()}[/dim italic]")

        content = Text.from_markup("\n".join(parts))
        return Panel(content, title="[bold]AI Analysis[/bold]", border_style="magenta")

    def _render_history_panel(self) -> Panel:
        table = Table(show_header=True, header_style="bold", expand=True, padding=(0, 1))
        table.add_column("TIME", width=10)
        table.add_column("VERDICT", width=12)
        table.add_column("PROCESS", width=20)
        table.add_column("DESTINATION", width=30)
        table.add_column("SUMMARY", ratio=1)

        for entry in reversed(self.history.entries()):
            dot = RECOMMENDATION_DOTS.get(entry.recommendation, "●")
            table.add_row(
                entry.timestamp.strftime("%H:%M:%S"),
                Text.from_markup(f"{dot} {escape(entry.recommendation.upper())}"),
                Text(entry.process_name),
                Text(entry.display_host),
                Text(entry.summary),
            )

        return Panel(table, title="[bold]History[/bold]", border_style="blue")

    def _render_status_panel(self) -> Panel:
        if self.status:
            content = Text.from_markup(f"  {self.status}")
        else:
            content = Text.from_markup("  [dim]Ready.[/dim]")
        return Panel(content, title="[bold]Status[/bold]", border_style="dim")
