import re
from html import unescape


def clean_text(html_or_text):
    """Strip HTML tags and normalize whitespace."""
    text = re.sub(r'<[^>]+>', ' ', html_or_text or '')
    text = unescape(text)
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def truncate_chars(text, max_chars):
    """Truncate text to max_chars characters."""
    text = text or ''
    return text if len(text) <= max_chars else text[:max_chars]


def strip_wrapping_quotes(text):
    """Remove one pair of quotes a model may wrap its answer in."""
    return re.sub(r'^["\']|["\']$', '', (text or '').strip()).strip()
