"""Alert pipeline — orchestrates enrichment, analysis, history and dismissal."""

import asyncio
import logging
import weakref
from collections import defaultdict
from typing import Any, Callable

from firewall_advisor.actions import RemoteControl
from firewall_advisor.analysis import AnalysisClient
from firewall_advisor.config import DismissalSettings, TargetSettings
from firewall_advisor.dismissal import DismissalWatcher
from firewall_advisor.enrichment import Enricher, NullEnricher
from firewall_advisor.errors import AnalysisError, NoCredentialError, is_auth_failure
from firewall_advisor.history import HistoryStore
from firewall_advisor.models import AIAnalysis, ConnectionAlert
from firewall_advisor.windows import WindowSource

logger = logging.getLogger(__name__)


class AnalysisSession:
    """State of the transient advisory shown for one alert.

    Attributes:
        alert: The alert, replaced by its enriched copy once available.
        analysis: The analysis, once available.
        error: User-facing error message, if analysis failed.
        needs_credential: True when the failure calls for a new key rather
            than a retry.
        is_loading_enrichment: True until enrichment finished.
        is_loading_analysis: True until analysis finished or failed.
        closed: True once the advisory was closed or superseded.
    """

    def __init__(self, alert: ConnectionAlert) -> None:
        """Start a session for *alert* with both stages loading."""
        self.alert = alert
        self.analysis: AIAnalysis | None = None
        self.error: str | None = None
        self.needs_credential = False
        self.is_loading_enrichment = True
        self.is_loading_analysis = True
        self.closed = False

    def update_enrichment(self, alert: ConnectionAlert) -> None:
        """Replace the alert with its enriched copy."""
        self.alert = alert
        self.is_loading_enrichment = False

    def update_analysis(self, analysis: AIAnalysis) -> None:
        """Publish a successful analysis and clear any earlier error."""
        self.analysis = analysis
        self.error = None
        self.is_loading_analysis = False

    def set_error(self, message: str, needs_credential: bool = False) -> None:
        """Record a terminal failure and stop both loading indicators.

        Args:
            message: Operator-facing description of the failure.
            needs_credential: True when adding or replacing a key would help.
        """
        self.error = message
        self.needs_credential = needs_credential
        self.is_loading_enrichment = False
        self.is_loading_analysis = False

    def close(self) -> None:
        """Mark the session as resolved or superseded."""
        self.closed = True


def describe_failure(exc: AnalysisError) -> tuple[str, bool]:
    """Return (message, needs_credential) for a terminal analysis error."""
    if isinstance(exc, NoCredentialError):
        return "No API key configured. Add one to enable analysis.", True
    if is_auth_failure(exc):
        return f"API key rejected ({exc.status_code}). Add a valid key.", True
    return str(exc), False


class AdvisorPipeline:
    """Runs each detected alert through enrichment and analysis.

    Every alert gets a fresh :class:`AnalysisSession` and a generation
    number. The background task only holds a weak reference to its
    session and re-checks the generation before committing each stage,
    so a superseded alert's late result never reaches the newer session.

    Attributes:
        client: The analysis client.
        enricher: Geo/network enrichment.
        history: Where successful analyses are recorded.
        remote: Optional remote-control registry notified of analyses.
        dismissal: Optional watcher that closes the session once the
            operator resolved the alert in the firewall itself.
        current_session: The session for the newest alert.
        callbacks: Registered event callbacks.
    """

    def __init__(
        self,
        client: AnalysisClient,
        enricher: Enricher | None = None,
        history: HistoryStore | None = None,
        remote: RemoteControl | None = None,
    ) -> None:
        self.client = client
        self.enricher = enricher or NullEnricher()
        self.history = history if history is not None else HistoryStore()
        self.remote = remote
        self.dismissal: DismissalWatcher | None = None
        self.current_session: AnalysisSession | None = None
        self.callbacks: dict[str, list[Callable]] = defaultdict(list)
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable) -> None:
        """Register a callback for an event.

        Args:
            event: Event name ("alert", "enriched", "analysis", "error",
                "dismissed").
            callback: Function called with the AnalysisSession.
        """
        self.callbacks[event].append(callback)

    def _emit(self, event: str, data: Any) -> None:
        for callback in self.callbacks.get(event, []):
            callback(data)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_busy(self) -> bool:
        """True while the newest alert is still being enriched or analyzed."""
        return self._task is not None and not self._task.done()

    def attach_dismissal(
        self,
        source: WindowSource,
        target: TargetSettings | None = None,
        settings: DismissalSettings | None = None,
    ) -> DismissalWatcher:
        """Auto-close sessions once the operator resolves the alert window.

        Returns:
            The watcher, armed on every new alert.
        """
        self.dismissal = DismissalWatcher(
            source,
            is_busy=lambda: self.is_busy,
            on_dismissed=self.dismiss,
            target=target,
            settings=settings,
        )
        return self.dismissal

    def handle_alert(self, alert: ConnectionAlert) -> AnalysisSession:
        """Start processing a newly detected alert.

        Must be called from the event loop. Supersedes any session for a
        previous alert.

        Returns:
            The new session.
        """
        self._generation += 1
        generation = self._generation

        if self.current_session is not None:
            self.current_session.close()
        session = AnalysisSession(alert)
        self.current_session = session
        self._emit("alert", session)

        self._task = asyncio.get_running_loop().create_task(
            self._process(alert, generation, weakref.ref(session))
        )
        self._task.add_done_callback(self._log_failure)
        # Superseded tasks run to completion; keep them referenced until then.
        self._background.add(self._task)
        self._task.add_done_callback(self._background.discard)
        if self.dismissal is not None:
            self.dismissal.arm()
        return session

    def dismiss(self) -> None:
        """Close the current session (the operator resolved the alert)."""
        session = self.current_session
        if session is None or session.closed:
            return
        session.close()
        self._emit("dismissed", session)

    async def shutdown(self) -> None:
        """Stop the dismissal watcher and cancel in-flight alert tasks."""
        if self.dismissal is not None:
            self.dismissal.stop()
        self._task = None
        tasks = [task for task in self._background if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _live(
        self, generation: int, ref: "weakref.ReferenceType[AnalysisSession]"
    ) -> AnalysisSession | None:
        session = ref()
        if session is None or generation != self._generation or session.closed:
            return None
        return session

    async def _process(
        self,
        alert: ConnectionAlert,
        generation: int,
        ref: "weakref.ReferenceType[AnalysisSession]",
    ) -> None:
        # Stage 1: enrichment
        enriched = await self.enricher.enrich(alert)
        session = self._live(generation, ref)
        if session is None:
            logger.debug("Alert %s superseded before enrichment finished", alert.id[:8])
            return
        session.update_enrichment(enriched)
        self._emit("enriched", session)
        del session

        # Stage 2: analysis
        try:
            analysis = await self.client.analyze(enriched)
        except AnalysisError as exc:
            logger.error("Analysis error: %s", exc)
            session = self._live(generation, ref)
            if session is not None:
                message, needs_credential = describe_failure(exc)
                session.set_error(message, needs_credential)
                self._emit("error", session)
            return

        # Stage 3: record, then publish to the live session only
        try:
            self.history.record(enriched, analysis)
        except OSError as exc:
            logger.warning("Could not save analysis to history: %s", exc)
        session = self._live(generation, ref)
        if session is None:
            logger.debug("Dropping analysis for superseded alert %s", alert.id[:8])
            return
        session.update_analysis(analysis)
        self._emit("analysis", session)
        del session

        if self.remote is not None:
            await self.remote.notify(enriched, analysis)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Alert pipeline failed", exc_info=exc)
