"""Process wiring and the scheduled entry points"""

import asyncio
from functools import partial
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from ledger_core.config import Settings, settings as default_settings
from ledger_core.infrastructure.database.session import create_db_engine, create_session_factory, init_db
from ledger_core.infrastructure.observability.logging import setup_logging
from ledger_core.jobs.installments import JOB_NAME as INSTALLMENT_JOB, reduce_installment_debt
from ledger_core.jobs.recurring import JOB_NAME as RECURRING_JOB, create_recurring_expenses
from ledger_core.jobs.runner import ScheduledJobRunner
from ledger_core.services.ledger import LedgerService
from ledger_core.services.portfolio import PortfolioService


def create_session_factory_from_settings(settings: Optional[Settings] = None) -> sessionmaker:
    """Build the store for a process and make sure its tables exist"""
    settings = settings or default_settings
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return create_session_factory(engine)


def create_services(settings: Optional[Settings] = None) -> tuple[LedgerService, PortfolioService]:
    """Services for the UI/API layer, sharing one store"""
    settings = settings or default_settings
    session_factory = create_session_factory_from_settings(settings)
    return LedgerService(session_factory, settings), PortfolioService(session_factory, settings)


def _run_scheduled(job_name: str, job, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or default_settings
    setup_logging(settings.log_level, settings.service_name)
    session_factory = create_session_factory_from_settings(settings)
    runner = ScheduledJobRunner(settings=settings)
    result = asyncio.run(runner.run(job_name, partial(job, session_factory, settings)))
    return result.as_dict()


def reduce_installment_debt_entrypoint() -> Dict[str, Any]:
    """Monthly schedule (1st of the month, 00:00 UTC)"""
    return _run_scheduled(INSTALLMENT_JOB, reduce_installment_debt)


def create_recurring_expenses_entrypoint() -> Dict[str, Any]:
    """Daily schedule (00:00 UTC)"""
    return _run_scheduled(RECURRING_JOB, create_recurring_expenses)
