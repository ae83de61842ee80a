"""
Social Reader - X/Twitter API v2 search through tweepy

Read-only. Results are treated as eventually consistent and possibly
incomplete: callers must not assume a page is exhaustive.

tweepy is synchronous; every call runs in the default executor and is
bounded by asyncio.wait_for so one hung request cannot stall a cycle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from core.constitution import TEMPO_RULES
from core.models import SocialEvent

logger = logging.getLogger("monibot.social")

_TWEET_FIELDS = ["author_id", "created_at", "referenced_tweets", "conversation_id"]


class SocialReadError(Exception):
    """Search failed or timed out. Infrastructure failure: retry next cycle."""
    pass


@dataclass
class SearchPage:
    """
    Events oldest first. truncated=True means the page limit was hit with
    more results pending: everything between the caller's since_id and
    oldest_id is still unfetched.
    """
    events: list[SocialEvent] = field(default_factory=list)
    newest_id: Optional[str] = None
    oldest_id: Optional[str] = None
    truncated: bool = False


def _ref_attr(ref, name: str):
    if isinstance(ref, dict):
        return ref.get(name)
    return getattr(ref, name, None)


def _to_event(tweet, usernames: dict[str, str]) -> Optional[SocialEvent]:
    author_id = str(getattr(tweet, "author_id", "") or "")
    handle = usernames.get(author_id)
    if not handle:
        return None

    quoted_id = None
    is_repost = False
    for ref in getattr(tweet, "referenced_tweets", None) or []:
        ref_type = _ref_attr(ref, "type")
        if ref_type == "quoted":
            quoted_id = str(_ref_attr(ref, "id"))
        elif ref_type == "retweeted":
            is_repost = True

    conversation_id = getattr(tweet, "conversation_id", None)
    return SocialEvent(
        id=str(tweet.id),
        author_id=author_id,
        author_handle=handle,
        text=getattr(tweet, "text", "") or "",
        created_at=getattr(tweet, "created_at", None),
        quoted_event_id=quoted_id,
        is_repost=is_repost,
        conversation_id=str(conversation_id) if conversation_id else None,
    )


class SocialReader:
    """
    Usage:
        reader = SocialReader.from_bearer_token(token)
        page = await reader.search("@monibot send -is:retweet", since_id=cursor)
    """

    def __init__(self, client, timeout_seconds: float = 20.0, max_pages: int = TEMPO_RULES.MAX_SEARCH_PAGES):
        self._client = client
        self._timeout = timeout_seconds
        self._max_pages = max_pages

    @classmethod
    def from_bearer_token(cls, bearer_token: str, **kwargs) -> "SocialReader":
        import tweepy
        client = tweepy.Client(bearer_token=bearer_token, wait_on_rate_limit=False)
        logger.info("Twitter initialized (bearer token, read-only)")
        return cls(client, **kwargs)

    def _search_sync(self, query: str, since_id: Optional[str], until_id: Optional[str],
                     max_results: int, next_token: Optional[str]):
        kwargs = {
            "query": query,
            "max_results": max_results,
            "tweet_fields": _TWEET_FIELDS,
            "expansions": ["author_id"],
            "user_fields": ["username"],
        }
        if since_id:
            kwargs["since_id"] = since_id
        if until_id:
            kwargs["until_id"] = until_id
        if next_token:
            kwargs["next_token"] = next_token
        return self._client.search_recent_tweets(**kwargs)

    async def search(self, query: str, since_id: Optional[str] = None, until_id: Optional[str] = None,
                     max_results: int = TEMPO_RULES.SEARCH_PAGE_SIZE) -> SearchPage:
        """Events with since_id < id < until_id, oldest first, with author handles expanded."""
        loop = asyncio.get_running_loop()
        page = SearchPage()
        seen: set[str] = set()
        next_token = None

        for _ in range(self._max_pages):
            try:
                resp = await asyncio.wait_for(
                    loop.run_in_executor(
                        None, self._search_sync, query, since_id, until_id, max_results, next_token,
                    ),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                raise SocialReadError(f"search timed out after {self._timeout}s: {query}")
            except Exception as e:
                raise SocialReadError(f"search failed: {type(e).__name__}: {e}") from e

            meta = resp.meta or {}
            if page.newest_id is None and meta.get("newest_id"):
                page.newest_id = str(meta["newest_id"])
            if meta.get("oldest_id"):
                page.oldest_id = str(meta["oldest_id"])

            users = (resp.includes or {}).get("users", []) or []
            usernames = {str(u.id): u.username for u in users}

            for tweet in resp.data or []:
                event = _to_event(tweet, usernames)
                if event is None:
                    logger.debug(f"Tweet {tweet.id}: author not expanded, ignoring")
                    continue
                if event.id not in seen:
                    seen.add(event.id)
                    page.events.append(event)

            next_token = meta.get("next_token")
            if not next_token:
                break

        page.events.sort(key=lambda e: int(e.id) if e.id.isdigit() else 0)
        if page.oldest_id is None and page.events:
            page.oldest_id = page.events[0].id
        if next_token:
            page.truncated = True
            logger.warning(f"Search hit the {self._max_pages}-page limit, older results left for later: {query}")
        return page
