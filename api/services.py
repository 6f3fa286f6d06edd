"""
Service initialization and dependency injection for the API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Any, Optional

from config.settings import get_settings, Settings
from database import session as db_session
from lead_scoring.bant_extractor import BantExtractor
from lead_scoring.intent_classifier import IntentClassifier
from lead_scoring.scoring_model import LeadScorer
from llm.conversation_store import (
    BantQuestionStore,
    ConversationStore,
    InMemoryBantQuestionStore,
    InMemoryConversationStore,
    InMemoryScoringConfigStore,
    ScoringConfigStore,
)
from llm.db_conversation_store import DbBantQuestionStore, DbConversationStore, DbScoringConfigStore
from llm.db_token_ledger import DbLedgerBackend
from llm.dispatcher import ConversationDispatcher
from llm.model_tiers import resolve_tier
from llm.orchestrator import ModelOrchestrator
from llm.providers import OpenAIProvider
from llm.token_estimator import TokenEstimator
from llm.token_ledger import TokenLedger

from .middleware.metrics import record_model_call

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.provider: Optional[Any] = None
        self.ledger: Optional[TokenLedger] = None
        self.orchestrator: Optional[ModelOrchestrator] = None
        self.intent_classifier: Optional[IntentClassifier] = None
        self.bant_extractor: Optional[BantExtractor] = None
        self.lead_scorer: Optional[LeadScorer] = None
        self.conversation_store: Optional[ConversationStore] = None
        self.scoring_config_store: Optional[ScoringConfigStore] = None
        self.bant_question_store: Optional[BantQuestionStore] = None
        self.dispatcher: Optional[ConversationDispatcher] = None
        self.persistent = False
        self._initialized = False

    def initialize(self, provider: Optional[Any] = None, force: bool = False):
        """
        Initialize all services.

        Args:
            provider: Completion transport to use instead of OpenAI
            force: Rebuild even if already initialized
        """
        if self._initialized and not force:
            return

        self.settings = get_settings()
        self.persistent = db_session.is_initialized()
        logger.info(f"Initializing services (persistent storage: {self.persistent})")

        try:
            self._init_provider(provider)
            self._init_storage()
            self._init_orchestrator()
            self._init_lead_scoring()
            self._init_dispatcher()
            self._initialized = True
            logger.info("All services initialized successfully")
        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            # Allow API to start even if some services fail
            self._initialized = True
            logger.warning("API starting in degraded mode")

    def _init_provider(self, provider: Optional[Any]):
        """Initialize the completion transport."""
        s = self.settings

        if provider is not None:
            self.provider = provider
            logger.info(f"Using injected provider: {type(provider).__name__}")
            return

        if not s.openai_api_key:
            self.provider = None
            logger.warning("OPENAI_API_KEY not set, chat disabled")
            return

        self.provider = OpenAIProvider(api_key=s.openai_api_key, timeout=s.request_timeout)

    def _init_storage(self):
        """Pick database or in-memory stores."""
        if self.persistent:
            self.ledger = TokenLedger(backend=DbLedgerBackend(), listeners=[record_model_call])
            self.conversation_store = DbConversationStore()
            self.scoring_config_store = DbScoringConfigStore()
            self.bant_question_store = DbBantQuestionStore()
        else:
            self.ledger = TokenLedger(listeners=[record_model_call])
            self.conversation_store = InMemoryConversationStore()
            self.scoring_config_store = InMemoryScoringConfigStore()
            self.bant_question_store = InMemoryBantQuestionStore()
        logger.info(f"Storage ready: {type(self.conversation_store).__name__}")

    def _init_orchestrator(self):
        """Initialize the model call orchestrator."""
        s = self.settings
        if self.provider is None:
            self.orchestrator = None
            return

        self.orchestrator = ModelOrchestrator(
            provider=self.provider,
            ledger=self.ledger,
            tier_models=s.tier_models,
            primary_tier=resolve_tier(s.primary_tier),
            fallback_tier=resolve_tier(s.fallback_tier),
            embed_model=s.embed_model,
            estimator=TokenEstimator(),
            backoff_base=s.retry_backoff_base,
            backoff_max=s.retry_backoff_max,
        )
        logger.info(
            f"Model orchestrator ready: primary={s.primary_tier}, fallback={s.fallback_tier}"
        )

    def _init_lead_scoring(self):
        """Initialize lead scoring components."""
        s = self.settings
        self.lead_scorer = LeadScorer(
            warm=s.lead_threshold_warm,
            hot=s.lead_threshold_hot,
            priority=s.lead_threshold_priority,
        )
        if self.orchestrator is None:
            return

        self.intent_classifier = IntentClassifier(
            self.orchestrator,
            attempts=s.classification_attempts,
            history_turns=s.history_turns,
        )
        self.bant_extractor = BantExtractor(self.orchestrator)
        logger.info("Lead scoring services ready")

    def _init_dispatcher(self):
        """Initialize the conversation dispatcher."""
        if self.orchestrator is None:
            self.dispatcher = None
            return

        self.dispatcher = ConversationDispatcher(
            orchestrator=self.orchestrator,
            classifier=self.intent_classifier,
            extractor=self.bant_extractor,
            scorer=self.lead_scorer,
            store=self.conversation_store,
            config_store=self.scoring_config_store,
            history_turns=self.settings.history_turns,
            question_store=self.bant_question_store,
        )
        logger.info("Conversation dispatcher ready")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.dispatcher is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "provider": self.provider is not None,
            "persistent_storage": self.persistent,
            "lead_scoring": self.lead_scorer is not None,
            "dispatcher": self.dispatcher is not None,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services(provider: Optional[Any] = None, force: bool = False) -> Services:
    """Initialize all services (called at startup)."""
    _services.initialize(provider=provider, force=force)
    return _services
