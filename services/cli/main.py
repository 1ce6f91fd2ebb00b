"""CLI entry point for Adjutant."""

import asyncio
import json
import signal
from enum import IntEnum
from typing import List, Optional

import typer

from shared.app_logging.logger import setup_logging
from shared.database.store import DocumentStore, get_document_store
from shared.errors import ArticleNotFound, ConfigurationInvalid, ProfileValidationError, StorageUnavailable
from shared.schemas.article import article_id
from shared.utils.run_guard import RunInProgress

from services.analyzer.gateway import ModelGateway
from services.analyzer.main import rerate_articles, run_pipeline
from services.learner.learner import (
    LearnerStatus,
    ProfileLearner,
    delete_profile,
    get_profile,
    update_profile_manual,
)
from services.learner.ratings import check_threshold, rate_article, unrate_article

logger = setup_logging("cli")

app = typer.Typer(help="Feed ingestion, LLM scoring and preference learning.", no_args_is_help=True)
profile_app = typer.Typer(help="Show or edit the preference profile.", no_args_is_help=True)
app.add_typer(profile_app, name="profile")


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    NOOP = 3


def get_store() -> DocumentStore:
    return get_document_store()


def get_gateway() -> ModelGateway:
    return ModelGateway()


def _fail(message: str) -> None:
    typer.echo(f"✗ {message}", err=True)
    raise typer.Exit(code=ExitCode.FAILURE)


def _open_store() -> DocumentStore:
    try:
        return get_store()
    except StorageUnavailable as e:
        _fail(str(e))


async def _with_stop_event(factory):
    """Run a batch coroutine; Ctrl-C stops it at the next article boundary."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
    except (NotImplementedError, RuntimeError):
        pass
    try:
        return await factory(stop_event)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@app.command()
def run() -> None:
    """Run the pipeline over all configured sources."""
    store = _open_store()
    try:
        report = asyncio.run(_with_stop_event(lambda stop: run_pipeline(store=store, gateway=get_gateway(), stop_event=stop)))
    except (ConfigurationInvalid, StorageUnavailable) as e:
        _fail(str(e))

    typer.echo(json.dumps(report.as_dict(), indent=2))
    if report.status == "failure":
        raise typer.Exit(code=ExitCode.FAILURE)
    if report.status == "noop":
        typer.echo("Nothing new to process.")
        raise typer.Exit(code=ExitCode.NOOP)


@app.command()
def rerate() -> None:
    """Re-score stored articles against the current profile."""
    store = _open_store()
    try:
        report = asyncio.run(_with_stop_event(lambda stop: rerate_articles(store=store, gateway=get_gateway(), stop_event=stop)))
    except (ConfigurationInvalid, StorageUnavailable) as e:
        _fail(str(e))

    typer.echo(json.dumps(report.as_dict(), indent=2))
    if report.total == 0:
        raise typer.Exit(code=ExitCode.NOOP)
    if report.failed and not (report.rescored or report.topic_filtered):
        raise typer.Exit(code=ExitCode.FAILURE)


@app.command()
def learn() -> None:
    """Generate or regenerate the profile from ratings."""
    store = _open_store()
    try:
        result = asyncio.run(ProfileLearner(store, get_gateway()).run())
    except (ConfigurationInvalid, StorageUnavailable) as e:
        _fail(str(e))

    if result.status == LearnerStatus.SAVED:
        typer.echo(f"✓ Profile saved: {result.message}")
        return
    if result.status in (LearnerStatus.INSUFFICIENT_DATA, LearnerStatus.BUSY):
        typer.echo(result.message)
        raise typer.Exit(code=ExitCode.NOOP)
    _fail(f"{result.message} {', '.join(result.issues)}".strip())


@app.command()
def threshold() -> None:
    """Show whether enough ratings exist to learn a profile."""
    result = check_threshold(_open_store())
    typer.echo(
        f"Relevant: {result.relevant_count}/{result.min_relevant}  "
        f"Not relevant: {result.not_relevant_count}/{result.min_not_relevant}"
    )
    typer.echo(result.message)
    if not result.met:
        raise typer.Exit(code=ExitCode.NOOP)


@app.command()
def rate(
    article: str = typer.Argument(..., help="Article URL or identifier"),
    relevant: Optional[bool] = typer.Option(None, "--relevant/--not-relevant", help="Rating to record"),
    clear: bool = typer.Option(False, "--clear", help="Remove the rating"),
) -> None:
    """Rate an article as relevant or not relevant, or clear its rating."""
    if clear == (relevant is not None):
        _fail("Pass exactly one of --relevant, --not-relevant or --clear")

    doc_id = article_id(article) if "://" in article else article
    store = _open_store()
    try:
        if clear:
            updated = unrate_article(store, doc_id)
        else:
            updated = rate_article(store, doc_id, relevant)
    except ArticleNotFound:
        _fail(f"No article found for {article}")
    typer.echo(f"✓ {updated.title}: {updated.relevance.value}")


@profile_app.command("show")
def profile_show() -> None:
    """Print the current profile."""
    profile = get_profile(_open_store())
    if profile is None:
        typer.echo("No profile exists.")
        raise typer.Exit(code=ExitCode.NOOP)
    typer.echo(json.dumps(profile.to_document(), indent=2))


@profile_app.command("set")
def profile_set(
    like: List[str] = typer.Option([], "--like", help="A preference the profile should favor"),
    dislike: List[str] = typer.Option([], "--dislike", help="A preference the profile should avoid"),
) -> None:
    """Replace the profile with the given likes and dislikes."""
    try:
        profile = asyncio.run(update_profile_manual(_open_store(), list(like), list(dislike)))
    except ProfileValidationError as e:
        _fail("Profile rejected: " + "; ".join(e.issues))
    except RunInProgress:
        _fail("A profile update is already in progress")
    typer.echo(f"✓ Profile saved with {len(profile.likes)} likes and {len(profile.dislikes)} dislikes")


@profile_app.command("delete")
def profile_delete() -> None:
    """Delete the profile; later runs fall back to topic-only scoring."""
    if not delete_profile(_open_store()):
        typer.echo("No profile exists.")
        raise typer.Exit(code=ExitCode.NOOP)
    typer.echo("✓ Profile deleted")


if __name__ == "__main__":
    app()
