"""
Error taxonomy for docucrawl.

Step-level errors (``StepExecutionError`` / ``NavigationError``) are caught
inside the crawl engine and recorded as ``CrawlError`` entries.  Everything
else propagates to the orchestrator, which fails the job.
"""


class DocuCrawlError(Exception):
    """Base class for all docucrawl errors."""


class BudgetExhaustedError(DocuCrawlError):
    """The owner has no credits left, or no journey fits the budget."""


class AuthenticationError(DocuCrawlError):
    """Login could not be completed (or re-established)."""


class SessionExpiredError(AuthenticationError):
    """The session expired again right after a re-authentication."""


class StepExecutionError(DocuCrawlError):
    """A single journey step failed; the crawl continues."""


class NavigationError(StepExecutionError):
    """Navigating to a step's target route failed."""


class CollaboratorError(DocuCrawlError):
    """An external collaborator could not be reached or failed to answer."""


class SchemaMismatchError(DocuCrawlError):
    """A collaborator answered with a payload that does not match its schema."""

    def __init__(self, schema: str, detail: str):
        super().__init__(f"{schema} response does not match schema: {detail}")
        self.schema = schema
        self.detail = detail


class UploadError(DocuCrawlError):
    """The content store rejected an artifact."""
