import pytest
from typer.testing import CliRunner

from services.analyzer.crud import get_article, save_article
from services.cli import main
from services.cli.main import ExitCode, app
from shared.errors import StorageUnavailable
from shared.schemas.article import Article, Relevance, article_id

runner = CliRunner()

URL = "https://blog.example/posts/eval-harness"


@pytest.fixture
def cli_store(settings, store, monkeypatch):
    monkeypatch.setattr(main, "get_store", lambda: store)
    return store


def seed(store, url=URL):
    save_article(
        store,
        Article(
            id=article_id(url),
            url=url,
            title="Building an eval harness",
            source_name="Example Blog",
            rss_excerpt="How we test prompt changes before they reach production.",
        ),
    )


def test_run_without_credentials_fails(cli_store, settings):
    settings.openai.api_key = ""
    result = runner.invoke(app, ["run"])
    assert result.exit_code == ExitCode.FAILURE
    assert "OPENAI_API_KEY" in result.output


def test_rate_by_url_then_clear(cli_store):
    seed(cli_store)

    result = runner.invoke(app, ["rate", URL, "--not-relevant"])
    assert result.exit_code == ExitCode.SUCCESS
    assert "not_relevant" in result.output
    assert get_article(cli_store, article_id(URL)).relevance == Relevance.NOT_RELEVANT

    result = runner.invoke(app, ["rate", article_id(URL), "--clear"])
    assert result.exit_code == ExitCode.SUCCESS
    assert get_article(cli_store, article_id(URL)).relevance == Relevance.UNRATED


def test_rate_needs_exactly_one_choice(cli_store):
    seed(cli_store)
    assert runner.invoke(app, ["rate", URL]).exit_code == ExitCode.FAILURE
    assert runner.invoke(app, ["rate", URL, "--relevant", "--clear"]).exit_code == ExitCode.FAILURE


def test_rate_unknown_article(cli_store):
    result = runner.invoke(app, ["rate", "https://nowhere.example/x", "--relevant"])
    assert result.exit_code == ExitCode.FAILURE
    assert "No article found" in result.output


def test_threshold_and_learn_report_noop_below_minimum(cli_store):
    seed(cli_store)
    runner.invoke(app, ["rate", URL, "--relevant"])

    result = runner.invoke(app, ["threshold"])
    assert result.exit_code == ExitCode.NOOP
    assert "Need 1 more relevant and 2 more not relevant ratings" in result.output

    result = runner.invoke(app, ["learn"])
    assert result.exit_code == ExitCode.NOOP


def test_profile_commands(cli_store):
    assert runner.invoke(app, ["profile", "show"]).exit_code == ExitCode.NOOP

    result = runner.invoke(
        app, ["profile", "set", "--like", "evaluation harnesses", "--dislike", "hype threads"]
    )
    assert result.exit_code == ExitCode.SUCCESS

    result = runner.invoke(app, ["profile", "show"])
    assert result.exit_code == ExitCode.SUCCESS
    assert "evaluation harnesses" in result.output

    rejected = runner.invoke(app, ["profile", "set", "--like", "AI"])
    assert rejected.exit_code == ExitCode.FAILURE
    assert "Profile rejected" in rejected.output

    assert runner.invoke(app, ["profile", "delete"]).exit_code == ExitCode.SUCCESS
    assert runner.invoke(app, ["profile", "delete"]).exit_code == ExitCode.NOOP


@pytest.mark.parametrize("args", [["run"], ["rerate"], ["learn"], ["threshold"], ["profile", "show"]])
def test_unreachable_database_is_a_clean_failure(settings, monkeypatch, args):
    def down():
        raise StorageUnavailable("Database unreachable: connection refused")

    monkeypatch.setattr(main, "get_store", down)

    result = runner.invoke(app, args)

    assert result.exit_code == ExitCode.FAILURE
    assert "Database unreachable" in result.output
    assert not isinstance(result.exception, StorageUnavailable)
