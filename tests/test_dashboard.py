"""Tests for the rich dashboard."""

from unittest.mock import AsyncMock, MagicMock

from rich.console import Console

from firewall_advisor.config import TargetSettings
from firewall_advisor.dashboard import AdvisorDashboard
from firewall_advisor.history import HistoryStore
from firewall_advisor.models import AIAnalysis, ConnectionAlert, Recommendation
from firewall_advisor.pipeline import AdvisorPipeline, AnalysisSession


def _render(dashboard: AdvisorDashboard) -> str:
    console = Console(width=140, height=50, record=True, force_terminal=False)
    console.print(dashboard)
    return console.export_text()


def _session() -> AnalysisSession:
    return AnalysisSession(
        ConnectionAlert(
            process_name="curl",
            process_path="/usr/bin/curl",
            ip_address="140.82.112.6",
            port="443",
            reverse_dns="github.com",
        )
    )


class TestRender:
    """Tests for panel contents."""

    def test_idle(self):
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        text = _render(dashboard)
        assert "Watching LuLu" in text
        assert "Waiting for the next firewall alert" in text
        assert "none configured" in text

    def test_analysis_shown(self):
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        session = _session()
        session.update_enrichment(session.alert)
        session.update_analysis(
            AIAnalysis(
                recommendation=Recommendation.BLOCK,
                confidence=0.9,
                summary="Unexpected upload",
                risks=["data exfiltration"],
            )
        )
        dashboard.show_session(session)

        text = _render(dashboard)

        assert "140.82.112.6:443" in text
        assert "BLOCK" in text
        assert "Unexpected upload" in text
        assert "data exfiltration" in text

    def test_credential_error_shows_hint(self):
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        session = _session()
        session.set_error("No API key configured.", needs_credential=True)
        dashboard.show_session(session)

        text = _render(dashboard)

        assert "No API key configured." in text
        assert "firewall-advisor add-key" in text

    def test_history_rows(self):
        history = HistoryStore()
        session = _session()
        history.record(
            session.alert,
            AIAnalysis(recommendation=Recommendation.ALLOW, summary="GitHub API"),
        )
        dashboard = AdvisorDashboard(TargetSettings(), history)

        text = _render(dashboard)

        assert "ALLOW" in text
        assert "github.com" in text
        assert "History: 1 entries" in text

    def test_status_text(self):
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        dashboard.update_status("Demo alert 1/3")
        assert "Demo alert 1/3" in _render(dashboard)

    def test_history_text_with_brackets(self):
        """Model and window text is shown literally, never parsed as markup."""
        history = HistoryStore()
        alert = ConnectionAlert(
            process_name="[bold]evil",
            ip_address="10.0.0.1",
            port="22",
            reverse_dns="[/red]",
        )
        history.record(
            alert,
            AIAnalysis(recommendation=Recommendation.CAUTION, summary="Talks to [/etc] host"),
        )
        dashboard = AdvisorDashboard(TargetSettings(), history)

        text = _render(dashboard)

        assert "Talks to [/etc] host" in text
        assert "[bold]evil" in text


class TestCallbacks:
    """Tests for pipeline wiring."""

    def test_register_callbacks(self):
        pipeline = AdvisorPipeline(MagicMock(analyze=AsyncMock()))
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        dashboard.register_callbacks(pipeline)

        for event in ("alert", "enriched", "analysis", "error", "dismissed"):
            assert len(pipeline.callbacks[event]) == 1

    def test_dismissed_clears_current_session(self):
        dashboard = AdvisorDashboard(TargetSettings(), HistoryStore())
        session = _session()
        dashboard.show_session(session)
        assert dashboard.last_event is not None

        dashboard._on_dismissed(session)

        assert dashboard.session is None
        assert "resolved" in dashboard.status
