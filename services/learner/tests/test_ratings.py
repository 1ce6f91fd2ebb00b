import pytest

from services.analyzer.crud import get_article, save_article
from services.learner.ratings import check_threshold, rate_article, unrate_article
from shared.errors import ArticleNotFound
from shared.schemas.article import Article, Relevance, article_id

URL = "https://blog.example/posts/feature-stores"


@pytest.fixture
def stored(settings, store):
    article = Article(
        id=article_id(URL),
        url=URL,
        title="Do you need a feature store?",
        source_name="Example Blog",
        rss_excerpt="A look at when feature stores pay off and when they are overhead.",
    )
    save_article(store, article)
    return article


def test_rate_and_unrate(store, stored):
    rated = rate_article(store, stored.id, relevant=False)
    assert rated.relevance == Relevance.NOT_RELEVANT
    assert get_article(store, stored.id).relevance == Relevance.NOT_RELEVANT

    cleared = unrate_article(store, stored.id)
    assert cleared.relevance == Relevance.UNRATED
    # clearing still records when the rating changed
    assert cleared.rated_at is not None
    assert cleared.rated_at >= rated.rated_at


def test_rating_unknown_article(settings, store):
    with pytest.raises(ArticleNotFound):
        rate_article(store, "0" * 64, relevant=True)
    with pytest.raises(ArticleNotFound):
        unrate_article(store, "0" * 64)


def test_check_threshold_counts_ratings(settings, store, stored):
    threshold = check_threshold(store, settings)
    assert not threshold.met
    assert threshold.message == "Need 2 more relevant and 2 more not relevant ratings"

    rate_article(store, stored.id, relevant=True)
    threshold = check_threshold(store, settings)
    assert threshold.relevant_count == 1
    assert threshold.as_dict()["message"] == "Need 1 more relevant and 2 more not relevant ratings"
