"""Cheap rule-based filtering before any embedding or LLM spend."""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, NamedTuple
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 10
SPAM_DOMAINS = ('bit.ly', 't.co', 'tinyurl.com')


class Removal(NamedTuple):
    article_id: int
    title: str
    url: str
    reason: str  # short_title | invalid_url | spam_domain | title_dupe | stale


class PrefilterResult(NamedTuple):
    kept: list
    removed: List[Removal]


def freshness_window_hours(account_age_days, settings):
    """New accounts get a longer window so their first digest is not empty."""
    if account_age_days < settings.new_account_age_days:
        return settings.new_account_freshness_window_hours
    return settings.freshness_window_hours


def _hostname(url):
    try:
        parts = urlsplit(url or '')
    except ValueError:
        return None
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        return None
    return parts.hostname


def _is_spam(hostname):
    return any(hostname == d or hostname.endswith('.' + d) for d in SPAM_DOMAINS)


def _aware(dt):
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def prefilter_articles(articles, settings, account_age_days=0.0, now=None):
    """
    Apply, in order: short title, invalid URL, spam domain, title duplicate
    (trimmed, case-insensitive; first occurrence wins), stale publish time.
    Articles without a publish time are never stale.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=freshness_window_hours(account_age_days, settings))

    seen = set()
    kept = []
    removed = []

    for article in articles:
        title = article.title or ''

        def drop(reason):
            removed.append(Removal(article.id, title, article.url, reason))

        if len(title.strip()) < MIN_TITLE_LENGTH:
            drop('short_title')
            continue

        hostname = _hostname(article.url)
        if hostname is None:
            drop('invalid_url')
            continue
        if _is_spam(hostname):
            drop('spam_domain')
            continue

        title_key = title.strip().lower()
        if title_key in seen:
            drop('title_dupe')
            continue
        seen.add(title_key)

        if article.published_at and _aware(article.published_at) < cutoff:
            drop('stale')
            continue

        kept.append(article)

    if removed:
        reasons = {}
        for r in removed:
            reasons[r.reason] = reasons.get(r.reason, 0) + 1
        logger.info(f"[Prefilter] kept {len(kept)}, removed {len(removed)} {reasons}")
    return PrefilterResult(kept=kept, removed=removed)
