import logging
from feedcurator.integrations.llm_gateway import (
    BudgetExhaustedError,
    LLMProviderError,
    LLMUnavailableError,
)
from feedcurator.models.user_article import DEFAULT_REASON_PREFIX
from feedcurator.utils.json_recovery import parse_json_array
from feedcurator.utils.text import truncate_chars

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5
SCORING_MAX_TOKENS = 8192
PROMPT_CONTENT_CHARS = 300
REASON_MAX_CHARS = 512


def default_result(article, cause):
    """Neutral fail-open score for an article the model did not judge."""
    return {
        'article_id': article.id,
        'relevance_score': NEUTRAL_SCORE,
        'relevance_reason': f'{DEFAULT_REASON_PREFIX} ({cause})',
        'summary': truncate_chars(article.raw_content, 200) or article.title,
        'is_serendipity': False,
    }


def _format_articles(articles):
    return '\n---\n'.join(
        f"ID: {a.id}\nTitle: {a.title}\nURL: {a.url}\n"
        f"Content: {truncate_chars(a.raw_content, PROMPT_CONTENT_CHARS)}"
        for a in articles
    )


def build_scoring_prompt(main, serendipity, interests, exclusions=(), preferences=()):
    """
    main / serendipity: lists of Article.
    interests: Interest rows (category, description, weight).
    """
    interest_names = ', '.join(i.category for i in interests) or 'none'
    interest_list = '\n'.join(
        f"- {i.category} (weight: {i.weight}): {i.description or 'No description'}"
        for i in interests
    ) or 'No explicit interests.'
    exclusion_list = '\n'.join(
        f"- {e.category}: {e.description or 'No description'}" for e in exclusions
    ) or 'None.'
    pref_list = '\n'.join(
        f"- {p.preference_text} (confidence: {p.confidence})" for p in preferences
    ) or 'No learned preferences yet.'

    sections = [
        "You are a content curator for a daily digest app. Score and summarize articles "
        "based on the user's interest profile.",
        f"## User's Explicit Interests\n{interest_list}",
        f"## Topics The User Does Not Want\n{exclusion_list}",
        f"## User's Learned Preferences\n{pref_list}",
        "## Instructions\n\n"
        "For each article, provide:\n"
        "1. **relevance_score** (0.0 to 1.0): How relevant to the user\n"
        "2. **summary** (2-3 sentences): Concise, informative summary\n"
        "3. **relevance_reason**: MUST be one of these exact formats:\n"
        f'   - "Matches: [Interest Name]" where [Interest Name] is one of: {interest_names}\n'
        '   - "Serendipity" ONLY for true serendipity items\n'
        "4. **is_serendipity** (boolean): ALMOST ALWAYS false. True for AT MOST 1-2 articles per "
        "batch, only when the article matches no stated interest but is still genuinely valuable.\n\n"
        "Articles on topics the user does not want should score below 0.3.\n\n"
        "### Scoring Guidelines\n"
        "- 0.8-1.0: Directly matches primary interests, high-quality content\n"
        "- 0.6-0.8: Good match, relevant and worth reading\n"
        "- 0.4-0.6: Weak match or serendipity candidate\n"
        "- 0.0-0.4: Not relevant enough to include",
    ]
    if main:
        sections.append(f"## Articles to Score\n{_format_articles(main)}")
    if serendipity:
        sections.append(
            "## Serendipity Candidates\n"
            "These articles are only loosely related to the stated interests. Judge whether each "
            "offers unexpected value: a major event, a cross-domain insight, something this reader "
            "would be glad to have seen. Use \"Serendipity\" and is_serendipity=true only when it "
            "does; otherwise score it low.\n\n"
            f"{_format_articles(serendipity)}"
        )
    sections.append(
        "Respond ONLY with a JSON array (no markdown code fences):\n"
        "[\n"
        "  {\n"
        '    "article_id": 123,\n'
        '    "relevance_score": 0.85,\n'
        '    "summary": "...",\n'
        '    "relevance_reason": "Matches: AI / LLMs",\n'
        '    "is_serendipity": false\n'
        "  }\n"
        "]"
    )
    return '\n\n'.join(sections)


def _coerce_item(item):
    """Validate one model result. Returns (article_id_str, fields) or None."""
    if not isinstance(item, dict) or item.get('article_id') is None:
        return None
    try:
        score = float(item.get('relevance_score'))
    except (TypeError, ValueError):
        return None
    if score != score:
        return None

    reason = item.get('relevance_reason')
    is_serendipity = item.get('is_serendipity') is True or str(item.get('is_serendipity')).lower() == 'true'
    if not isinstance(reason, str) or not reason.strip():
        reason = 'Serendipity' if is_serendipity else 'Matches: unspecified'
    summary = item.get('summary')

    return str(item['article_id']).strip(), {
        'relevance_score': min(max(score, 0.0), 1.0),
        'relevance_reason': truncate_chars(reason.strip(), REASON_MAX_CHARS),
        'summary': summary.strip() if isinstance(summary, str) and summary.strip() else None,
        'is_serendipity': is_serendipity,
    }


class RelevanceScorer:
    def __init__(self, gateway, batch_size=10):
        self.gateway = gateway
        self.batch_size = max(int(batch_size), 1)

    def score(self, candidates, interests, exclusions=(), preferences=(), reader_id=None):
        """
        candidates: list of (Article, is_serendipity).
        Returns one result dict per candidate; batches that fail produce
        neutral defaults instead of being dropped.
        """
        results = []
        for i in range(0, len(candidates), self.batch_size):
            batch = candidates[i:i + self.batch_size]
            results.extend(self._score_batch(batch, interests, exclusions, preferences, reader_id))
        return results

    def _score_batch(self, batch, interests, exclusions, preferences, reader_id):
        articles = [article for article, _ in batch]
        main = [article for article, serendipity in batch if not serendipity]
        serendipity = [article for article, flagged in batch if flagged]
        prompt = build_scoring_prompt(main, serendipity, interests, exclusions, preferences)

        try:
            response = self.gateway.complete(
                prompt, max_tokens=SCORING_MAX_TOKENS, purpose='relevance_scoring', reader_id=reader_id,
            )
        except LLMUnavailableError as e:
            logger.warning(f"[Relevance] LLM unavailable, neutral scores for {len(batch)} articles: {e}")
            return [default_result(a, 'API unavailable') for a in articles]
        except BudgetExhaustedError as e:
            logger.warning(f"[Relevance] {e}; neutral scores for {len(batch)} articles")
            return [default_result(a, 'budget exhausted') for a in articles]
        except LLMProviderError as e:
            logger.error(f"[Relevance] Scoring call failed (status={e.status}): {e}")
            return [default_result(a, 'scoring error') for a in articles]

        parsed = parse_json_array(response['content'])
        if not parsed.ok:
            logger.error(
                f"[Relevance] Unparseable scoring response ({parsed.error}): "
                f"{(response['content'] or '')[:500]}"
            )
            return [default_result(a, 'unparseable response') for a in articles]
        if parsed.strategy != 'direct':
            logger.info(f"[Relevance] Scoring response recovered via '{parsed.strategy}'")

        by_id = {}
        for item in parsed.value:
            coerced = _coerce_item(item)
            if coerced:
                by_id.setdefault(coerced[0], coerced[1])

        results = []
        missing = 0
        for article in articles:
            fields = by_id.get(str(article.id))
            if fields is None:
                missing += 1
                results.append(default_result(article, 'missing from response'))
                continue
            result = {'article_id': article.id, **fields}
            if result['summary'] is None:
                result['summary'] = truncate_chars(article.raw_content, 200) or article.title
            results.append(result)

        if missing:
            logger.warning(f"[Relevance] {missing}/{len(articles)} articles missing from response")
        return results
