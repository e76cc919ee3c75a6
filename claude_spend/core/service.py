"""
Cached access to analysis results.

Serves the full batch result, single-session lookups and refreshes. The
result is computed on first use and kept until refresh() is called.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .aggregation import Session
from .analysis import DashboardData, analyze_sessions
from .billing import BillingContext, is_subscription, resolve_billing_context
from claude_spend.config.loader import EnvironmentSettings, SpendConfig, read_environment
from claude_spend.storage.repository import LocalSessionRepository

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when a session id matches no analysed session."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


@dataclass(frozen=True)
class SessionLookup:
    """One session plus the run-wide billing information."""
    session: Session
    billing_context: BillingContext
    is_equivalent_cost: bool


class UsageService:
    """Computes, caches and serves usage analysis results."""

    def __init__(
        self,
        repository: Optional[LocalSessionRepository] = None,
        config: Optional[SpendConfig] = None,
        environment: Optional[EnvironmentSettings] = None,
        billing_override: Optional[str] = None,
    ):
        """Initialize the service.

        Args:
            repository: Session source (defaults to the configured data dir)
            config: Run settings (defaults to SpendConfig())
            environment: Environment settings (defaults to the process environment)
            billing_override: Explicit billing value, takes precedence over
                the environment and the config file
        """
        self.config = config or SpendConfig()
        self.repository = repository or LocalSessionRepository(self.config.data_dir)
        self.environment = environment if environment is not None else read_environment()
        self.billing_override = billing_override
        self._cached: Optional[DashboardData] = None
        self._lock = threading.Lock()

    def resolve_billing(self) -> BillingContext:
        """Resolve the billing context once for a run."""
        override = (
            self.billing_override
            or self.environment.billing_override
            or self.config.billing
        )
        return resolve_billing_context(
            override=override,
            external_credential_present=self.environment.external_credential_present,
            credential_record=self.repository.load_credentials(),
        )

    def _compute(self) -> DashboardData:
        billing_context = self.resolve_billing()
        return analyze_sessions(
            self.repository.list_sessions(),
            billing_context,
            first_prompts=self.repository.load_first_prompts(),
            max_workers=self.config.max_workers,
            top_prompt_limit=self.config.top_prompts,
            project_top_prompt_limit=self.config.project_top_prompts,
        )

    def get_dashboard(self) -> DashboardData:
        """Full batch result, computed on first call."""
        with self._lock:
            if self._cached is None:
                self._cached = self._compute()
            return self._cached

    def refresh(self) -> DashboardData:
        """Discard the cached result and re-run the whole pipeline."""
        with self._lock:
            self._cached = None
            self._cached = self._compute()
            logger.info("Refreshed analysis: %d sessions", len(self._cached.sessions))
            return self._cached

    def get_session(self, session_id: str) -> SessionLookup:
        """Look up one analysed session.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        data = self.get_dashboard()
        for session in data.sessions:
            if session.session_id == session_id:
                return SessionLookup(
                    session=session,
                    billing_context=data.billing_context,
                    is_equivalent_cost=is_subscription(data.billing_context),
                )
        raise SessionNotFoundError(session_id)
