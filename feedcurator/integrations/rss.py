import logging
from datetime import datetime, timezone
from calendar import timegm
import feedparser
import requests
from feedcurator.utils.text import clean_text
from feedcurator.utils.urls import normalize_url

logger = logging.getLogger(__name__)

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36'
)
ACCEPT = 'application/rss+xml, application/atom+xml, application/xml, text/xml, */*'


class FeedFetchError(Exception):
    """The feed could not be downloaded or parsed."""


def _entry_time(entry):
    for key in ('published_parsed', 'updated_parsed'):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None


def _entry_content(entry):
    if entry.get('content'):
        value = entry['content'][0].get('value')
        if value:
            return clean_text(value)
    for key in ('summary', 'description'):
        if entry.get(key):
            return clean_text(entry[key])
    return None


def parse_feed(source_id, body, max_items=None):
    """
    Parse feed bytes into RawArticle dicts:
    {source_id, title, url, content, external_id, published_at}.
    Entries without a title or link are dropped.
    """
    feed = feedparser.parse(body)
    if feed.bozo and not feed.entries:
        raise FeedFetchError(f"Malformed feed: {feed.bozo_exception}")

    entries = feed.entries[:max_items] if max_items else feed.entries
    articles = []
    for entry in entries:
        title = clean_text(entry.get('title', ''))
        link = entry.get('link')
        if not title or not link:
            continue

        url = normalize_url(link)
        articles.append({
            'source_id': source_id,
            'title': title,
            'url': url,
            'content': _entry_content(entry),
            'external_id': url,
            'published_at': _entry_time(entry),
        })
    return articles


def fetch_feed(source_id, url, max_items=None, timeout=10):
    """
    Download and parse one feed. Runs in worker threads, so it never touches
    the database. Raises FeedFetchError on network or parse failure.
    """
    try:
        resp = requests.get(
            url,
            headers={'User-Agent': USER_AGENT, 'Accept': ACCEPT},
            timeout=timeout,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise FeedFetchError(f"Fetch failed for {url}: {e}") from e

    articles = parse_feed(source_id, resp.content, max_items=max_items)
    logger.debug(f"Fetched {len(articles)} entries from {url}")
    return articles
