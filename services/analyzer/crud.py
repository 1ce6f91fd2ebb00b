from typing import List

from shared.app_logging.logger import get_logger
from shared.database.store import ARTICLES, SKIPPED, DocumentStore
from shared.schemas.article import Article, article_id, utcnow

logger = get_logger("analyzer.crud")


def save_article(store: DocumentStore, article: Article) -> bool:
    """Insert a finalized article. Returns False if the id was already stored."""
    created = store.add(ARTICLES, article.id, article.to_document())
    if created:
        store.delete(SKIPPED, article.id)
        logger.info(f"Inserted Article {article.id[:12]} ({article.url})")
    else:
        logger.info(f"🔁 Article {article.id[:12]} already stored, leaving it unchanged")
    return created


def replace_article(store: DocumentStore, article: Article) -> None:
    store.put(ARTICLES, article.id, article.to_document())
    logger.info(f"Updated Article {article.id[:12]}")


def get_article(store: DocumentStore, doc_id: str):
    doc = store.get(ARTICLES, doc_id)
    return Article.from_document(doc) if doc else None


def list_articles(store: DocumentStore, **filters) -> List[Article]:
    return [Article.from_document(doc) for doc in store.query(ARTICLES, **filters)]


def record_skip(store: DocumentStore, url: str, stage: str, reason: str, issues: List[str], retry_count: int = 0) -> None:
    """Keep a diagnostic record for an article that was not saved.

    The article itself stays absent, so a later run retries it through the
    normal dedup check.
    """
    doc = {
        "url": url,
        "stage": stage,
        "reason": reason or "unknown",
        "issues": list(issues),
        "retry_count": retry_count,
        "skipped_at": utcnow().isoformat(),
    }
    store.put(SKIPPED, article_id(url), doc)


def list_skipped(store: DocumentStore) -> List[dict]:
    return store.query(SKIPPED)
