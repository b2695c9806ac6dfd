"""
Pipeline Service - Business Logic

Builds the ingest pipeline from environment configuration and runs poll
cycles. Shared by the Celery task, the CLI script and the HTTP routes.
"""

from typing import Optional

from sqlalchemy.orm import sessionmaker

from cache_manager import ResponseCache
from config.llm_config import load_llm_config, load_symbol_resolver_mode
from config.pipeline_config import PipelineConfig, load_imap_config, load_pipeline_config
from database import emails as email_db
from database.base import get_session_factory, session_scope
from ingest.email_parsing import AIExtractor, EmailPipeline
from ingest.imap_client import ImapClient
from ingest.llm_providers import create_llm_provider
from ingest.logging_config import get_logger
from ingest.persistence_gate import PersistenceGate
from ingest.review_queue import ReviewQueue
from ingest.symbol_resolver import create_symbol_resolver
from ingest.types import CycleReport

logger = get_logger(__name__)


def build_llm_components():
    """
    Provider, AI extractor and symbol resolver from LLM_* settings.

    Returns:
        (provider or None, AIExtractor or None, resolver)
    """
    pipeline_config = load_pipeline_config()
    llm_config = load_llm_config()
    mode = load_symbol_resolver_mode()

    if llm_config is None:
        logger.info("No LLM provider configured; AI fallback disabled")
        return None, None, create_symbol_resolver(mode)

    provider = create_llm_provider(llm_config)
    cache = None
    if llm_config.cache_enabled:
        cache = ResponseCache(ttl=int(llm_config.cache_ttl_hours * 3600))

    extractor = AIExtractor(
        provider,
        cache=cache,
        max_body_chars=llm_config.max_body_chars,
        default_currency=pipeline_config.default_currency,
        option_fee_per_contract=pipeline_config.option_fee_per_contract,
    )
    return provider, extractor, create_symbol_resolver(mode, provider, cache)


def build_pipeline(
    session_factory: Optional[sessionmaker] = None,
    mailbox=None,
    config: Optional[PipelineConfig] = None,
) -> EmailPipeline:
    """Wire an EmailPipeline from the environment; arguments override."""
    session_factory = session_factory or get_session_factory()
    config = config or load_pipeline_config()
    mailbox = mailbox or ImapClient(load_imap_config())

    _, extractor, resolver = build_llm_components()
    gate = PersistenceGate(session_factory, archiver=mailbox, config=config)

    return EmailPipeline(
        mailbox=mailbox,
        session_factory=session_factory,
        gate=gate,
        review_queue=ReviewQueue(session_factory, gate),
        ai_extractor=extractor,
        resolver=resolver,
        config=config,
    )


def run_poll_cycle(
    session_factory: Optional[sessionmaker] = None, pipeline: Optional[EmailPipeline] = None
) -> CycleReport:
    """
    Run one cycle from the stored cursor and advance the cursor afterwards.

    Raises:
        ServiceUnavailableError: Mailbox unreachable
        PersistenceError: Database failure (cursor not advanced)
    """
    session_factory = session_factory or get_session_factory()
    pipeline = pipeline or build_pipeline(session_factory)
    mailbox_name = mailbox_cursor_key(pipeline)

    with session_scope(session_factory) as session:
        since_cursor = email_db.get_cursor(session, mailbox_name)

    report = pipeline.run_cycle(since_cursor)

    with session_scope(session_factory) as session:
        email_db.save_cursor(session, mailbox_name, report.next_cursor)
        session.commit()

    return report


def get_inbox_status(session_factory: Optional[sessionmaker] = None) -> dict:
    session_factory = session_factory or get_session_factory()
    with session_scope(session_factory) as session:
        counts = email_db.get_inbox_status_counts(session)
    return counts


def mailbox_cursor_key(pipeline: EmailPipeline) -> str:
    config = getattr(pipeline.mailbox, "config", None)
    if config is None:
        return "INBOX"
    return f"{config.username}@{config.host}/{config.mailbox}"
