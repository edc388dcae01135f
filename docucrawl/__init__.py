"""
docucrawl
=========
Journey-driven documentation crawler.

A job runs through code analysis, product analysis, route discovery,
journey planning, a capped browser crawl, screen analysis and document
assembly.  The crawl engine drives one browser session through planned
user journeys, capturing pages, modals, tabs and drawers while handling
login, session expiry, duplicate screens and records created along the way.

CLI Usage:
    python -m docucrawl <url> [options]
"""

from .budget import BudgetController, CostModel
from .engine import CrawlEngine, CrawlRequest
from .errors import (
    AuthenticationError, BudgetExhaustedError, CollaboratorError, DocuCrawlError,
    NavigationError, SchemaMismatchError, SessionExpiredError, StepExecutionError, UploadError,
)
from .models import Credentials, Job, JobInput, JobStatus, Screen
from .orchestrator import JobOrchestrator, JobRunner
from .run_config import RunConfig
from .store import InMemoryJobStore, JsonFileJobStore

__version__ = "0.1.0"

__all__ = [
    'JobOrchestrator',
    'JobRunner',
    'CrawlEngine',
    'CrawlRequest',
    'BudgetController',
    'CostModel',
    'RunConfig',
    'InMemoryJobStore',
    'JsonFileJobStore',
    # Models
    'Credentials',
    'Job',
    'JobInput',
    'JobStatus',
    'Screen',
    # Errors
    'DocuCrawlError',
    'AuthenticationError',
    'SessionExpiredError',
    'BudgetExhaustedError',
    'StepExecutionError',
    'NavigationError',
    'SchemaMismatchError',
    'CollaboratorError',
    'UploadError',
]
