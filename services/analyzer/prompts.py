from typing import List

from shared.schemas.article import Category
from shared.schemas.profile import UserProfile

_CATEGORIES = ", ".join(f"'{c.value}'" for c in Category)


def topic_filter_prompt(topic: str, title: str, content: str) -> str:
    return (
        "You are screening articles for a reader.\n"
        f"The reader's topic of interest is: {topic}\n\n"
        f"Title: {title}\n"
        f"Content: {content}\n\n"
        "Is this article relevant to the reader's topic? Answer with exactly one word: yes or no."
    )


def topic_filter_retry_prompt(prompt: str, previous: str) -> str:
    return (
        f"{prompt}\n\n"
        f"Your previous answer was ambiguous: {previous!r}. "
        "Reply with the single word yes or the single word no."
    )


def summarize_prompt(title: str, content: str) -> str:
    return (
        "Summarize the following article and classify it.\n\n"
        f"Title: {title}\n"
        f"Content: {content}\n\n"
        "Respond with a JSON object only:\n"
        '{ "summary": "<20 to 100 word summary in your own words>", '
        f'"category": "<one of: {_CATEGORIES}>" }}'
    )


def profile_score_prompt(profile: UserProfile, title: str, content: str) -> str:
    likes = "\n".join(f"- {item}" for item in profile.likes) or "- (none)"
    dislikes = "\n".join(f"- {item}" for item in profile.dislikes) or "- (none)"
    return (
        "Score how interesting this article is for a specific reader.\n\n"
        f"The reader likes:\n{likes}\n\n"
        f"The reader dislikes:\n{dislikes}\n\n"
        f"Title: {title}\n"
        f"Content: {content}\n\n"
        "Respond with a JSON object only:\n"
        '{ "score": <integer 1-10, 10 = must read>, '
        '"summary": "<20 to 100 word summary in your own words>", '
        f'"category": "<one of: {_CATEGORIES}>", '
        '"reasoning": "<one sentence referring to the likes and dislikes>" }'
    )


def with_issues(prompt: str, issues: List[str]) -> str:
    """Append the violated constraints so the next attempt can correct them."""
    return (
        f"{prompt}\n\n"
        "Your previous response was rejected. Fix these problems: "
        f"{', '.join(issues)}"
    )
