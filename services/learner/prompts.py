from typing import List, Optional

from shared.schemas.article import Article, Relevance
from shared.schemas.profile import UserProfile

SUMMARY_CHARS = 400


def _describe(article: Article) -> str:
    summary = (article.ai_summary or article.rss_excerpt or "")[:SUMMARY_CHARS]
    return f"- {article.title}: {summary}"


def profile_prompt(
    rated: List[Article],
    existing: Optional[UserProfile],
    max_items: int,
    min_length: int,
) -> str:
    relevant = [a for a in rated if a.relevance == Relevance.RELEVANT]
    not_relevant = [a for a in rated if a.relevance == Relevance.NOT_RELEVANT]

    sections = [
        "Build a reading-preference profile from the articles a user rated.",
        "Articles rated RELEVANT:\n" + "\n".join(_describe(a) for a in relevant),
        "Articles rated NOT RELEVANT:\n" + "\n".join(_describe(a) for a in not_relevant),
    ]
    if existing is not None:
        sections.append(
            "The current profile, which you should revise rather than replace blindly:\n"
            f"Likes: {existing.likes}\n"
            f"Dislikes: {existing.dislikes}\n"
            f"Last change: {existing.changelog}"
        )
    sections.append(
        "Respond with a JSON object only:\n"
        '{ "likes": ["<preference phrase>", ...], '
        '"dislikes": ["<preference phrase>", ...], '
        '"changelog": "<one sentence on what changed and why>" }\n'
        f"Each list must have between 1 and {max_items} entries, and every entry "
        f"must be a descriptive phrase of at least {min_length} characters."
    )
    return "\n\n".join(sections)
