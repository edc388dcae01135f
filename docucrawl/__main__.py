#!/usr/bin/env python3
"""
Command-line runner for docucrawl
=================================
Creates one job for a web application, runs it through every stage and
prints the outcome.

All configuration flows through ``RunConfig``: ``DOCUCRAWL_*`` environment
variables first, explicit flags on top.

Run with: python -m docucrawl https://app.example.com --username me@example.com
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from .collaborators import DescriptionPrdAnalyzer, PlanFileJourneyPlanner, RouteFileCodeAnalyzer, RouteJourneyPlanner
from .content_store import HttpContentStore, LocalContentStore
from .docx_exporter import DocxAssembler
from .driver import browser_session_factory
from .errors import BudgetExhaustedError
from .models import Credentials, JobInput, JobStatus
from .orchestrator import JobOrchestrator
from .run_config import RunConfig
from .store import JsonFileJobStore

# .env next to the package, else the CWD
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path if _env_path.exists() else None)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="docucrawl - browse a web app by user journey and generate screenshot documentation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m docucrawl https://app.example.com
  python -m docucrawl https://app.example.com --username me@example.com --max-screens 20
  python -m docucrawl https://app.example.com --repo routes.json --journeys plan.json
        """,
    )
    parser.add_argument("url", help="Application URL")
    parser.add_argument("--description", type=str, help="Short product description")
    parser.add_argument("--app-name", type=str, help="Product name used in the documentation")
    parser.add_argument("--repo", type=str, metavar="PATH", help="Route plan JSON (or a directory holding routes.json)")
    parser.add_argument("--journeys", type=str, metavar="PATH", help="Journey plan JSON; routes are toured when omitted")
    parser.add_argument("--max-screens", type=int, help="Screen cap for the job (default: 50)")
    parser.add_argument("--min-screens", type=int, help="Fail the crawl below this many screens (default: 2)")
    parser.add_argument("--dedup-threshold", type=float, help="Similarity above which a screen is a duplicate (default: 0.95)")
    parser.add_argument("--max-journeys", type=int, help="Upper bound on planned journeys (default: 6)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")

    auth_group = parser.add_argument_group("Authentication")
    auth_group.add_argument("--login-url", type=str, metavar="URL", help="Login page URL (auto-detected when omitted)")
    auth_group.add_argument("--username", type=str, help="Login username (or DOCUCRAWL_USERNAME)")
    auth_group.add_argument("--password", type=str, help="Login password (or DOCUCRAWL_PASSWORD; prompted when missing)")

    out_group = parser.add_argument_group("Storage")
    out_group.add_argument("--owner", type=str, default="local", help="Credit account for the job (default: local)")
    out_group.add_argument("--state-dir", type=str, default=".docucrawl", help="Job state directory")
    out_group.add_argument("--artifacts-dir", type=str, default="artifacts", help="Screenshot directory")
    out_group.add_argument("--docs-dir", type=str, default="docs", help="Generated DOCX directory")
    return parser


def _resolve_credentials(args) -> Credentials:
    username = args.username or os.environ.get("DOCUCRAWL_USERNAME")
    password = args.password or os.environ.get("DOCUCRAWL_PASSWORD")
    if username and not password and sys.stdin.isatty():
        password = getpass.getpass(f"Password for {username}: ")
    return Credentials(username=username or "", password=password or "")


def _content_store(args):
    base_url = os.environ.get("DOCUCRAWL_STORAGE_URL")
    api_key = os.environ.get("DOCUCRAWL_STORAGE_KEY")
    if base_url and api_key:
        logger.info(f"[STORE] Uploading screenshots to {base_url}")
        return HttpContentStore(base_url, api_key)
    return LocalContentStore(args.artifacts_dir)


def print_summary(job) -> None:
    print("\n" + "=" * 65)
    print("JOB COMPLETE" if job.status is JobStatus.COMPLETED else "JOB FAILED")
    print("=" * 65)
    print(f"  Job:                 {job.id}")
    print(f"  Status:              {job.status.value}")
    if job.error:
        print(f"  Error:               {job.error}")
    result = job.result or {}
    if result:
        print(f"  Screens:             {result.get('total_screens', 0)}")
        print(f"  Journeys:            {result.get('journeys_documented', 0)}/{result.get('journeys_total', 0)}")
        print(f"  Avg confidence:      {result.get('avg_confidence', 0):.1f}")
        print(f"  Quality score:       {job.quality_score:.0f}" + ("  (flagged for review)" if job.flagged_for_review else ""))
        print(f"  Cost:                ${result.get('actual_cost_cents', 0) / 100:.2f}")
        print(f"  Duration:            {result.get('duration_seconds', 0)}s")
        if result.get("docs_url"):
            print(f"  Documentation:       {result['docs_url']}")
        for err in result.get("crawl_errors", []):
            print(f"  Step failed:         {err['journey_id']}#{err['step_index']} {err['error'][:60]}")
    print("=" * 65)


def main() -> int:
    args = _build_parser().parse_args()
    url = args.url
    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    config = RunConfig.from_cli_args(args)
    config.log_summary()

    store = JsonFileJobStore(args.state_dir, default_credits=config.default_credits_cents)
    orchestrator = JobOrchestrator(
        store,
        _content_store(args),
        browser_session_factory(config),
        config,
        code_analyzer=RouteFileCodeAnalyzer(),
        prd_analyzer=DescriptionPrdAnalyzer(),
        planner=PlanFileJourneyPlanner(args.journeys) if args.journeys else RouteJourneyPlanner(),
        assembler=DocxAssembler(args.docs_dir),
    )
    job_input = JobInput(
        app_url=url,
        login_url=args.login_url,
        credentials=_resolve_credentials(args),
        repo_ref=args.repo,
        product_description=args.description,
        app_name=args.app_name,
        max_screens=args.max_screens,
    )

    async def _run():
        job = await orchestrator.create_job(args.owner, job_input)
        return await orchestrator.run(job.id)

    try:
        job = asyncio.run(_run())
    except BudgetExhaustedError as exc:
        logger.error(f"[BUDGET] {exc}")
        return 2
    print_summary(job)
    return 0 if job.status is JobStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
