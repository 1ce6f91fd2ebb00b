from shared.app_logging.logger import get_logger
from shared.config.settings import Settings, get_settings
from shared.database.store import ARTICLES, DocumentStore
from shared.errors import ArticleNotFound
from shared.schemas.article import Article, Relevance, utcnow
from shared.schemas.profile import RatingThreshold

logger = get_logger("learner.ratings")


def _load(store: DocumentStore, doc_id: str) -> Article:
    doc = store.get(ARTICLES, doc_id)
    if doc is None:
        raise ArticleNotFound(doc_id)
    return Article.from_document(doc)


def rate_article(store: DocumentStore, doc_id: str, relevant: bool) -> Article:
    """Record an explicit relevance rating."""
    article = _load(store, doc_id)
    article.relevance = Relevance.RELEVANT if relevant else Relevance.NOT_RELEVANT
    article.rated_at = utcnow()
    store.put(ARTICLES, doc_id, article.to_document())
    logger.info(f"Rated {doc_id[:12]} as {article.relevance.value}")
    return article


def unrate_article(store: DocumentStore, doc_id: str) -> Article:
    """Clear a rating. The time of the change is still recorded."""
    article = _load(store, doc_id)
    article.relevance = Relevance.UNRATED
    article.rated_at = utcnow()
    store.put(ARTICLES, doc_id, article.to_document())
    logger.info(f"Cleared rating for {doc_id[:12]}")
    return article


def check_threshold(store: DocumentStore, settings: Settings = None) -> RatingThreshold:
    settings = settings or get_settings()
    return RatingThreshold(
        relevant_count=len(store.query(ARTICLES, relevance=Relevance.RELEVANT.value)),
        not_relevant_count=len(store.query(ARTICLES, relevance=Relevance.NOT_RELEVANT.value)),
        min_relevant=settings.profile.min_relevant_ratings,
        min_not_relevant=settings.profile.min_not_relevant_ratings,
    )
