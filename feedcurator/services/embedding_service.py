import logging
import time
import numpy as np
from flask import current_app
from feedcurator.extensions import db
from feedcurator.models.cost import EMBEDDING_PURPOSE, LLMCallLog
from feedcurator.models.user import Exclusion, Interest
from feedcurator.services.vector_store import VectorStore
from feedcurator.utils.text import truncate_chars

logger = logging.getLogger(__name__)

# Provider batch ceiling (OpenAI accepts up to 2048 inputs per request)
MAX_BATCH_INPUTS = 2048
ARTICLE_CONTENT_CHARS = 500

# USD per 1M input tokens
EMBEDDING_PRICING = {
    'text-embedding-3-small': 0.02,
    'text-embedding-3-large': 0.13,
}


class EmbeddingProviderError(Exception):
    """The embedding provider could not produce vectors for a batch."""


def build_article_text(article):
    """'{title}. {first 500 chars of content}', or the title alone."""
    title = (article.title or '').strip()
    content = truncate_chars((article.raw_content or '').strip(), ARTICLE_CONTENT_CHARS)
    if content:
        return f"{title}. {content}"
    return title


def build_profile_text(profile):
    """Embedding text for an interest or exclusion.

    Expanded description wins; otherwise 'category: description', otherwise the
    bare category. Weight is never part of the text.
    """
    if profile.expanded_description and profile.expanded_description.strip():
        return profile.expanded_description.strip()
    if profile.description and profile.description.strip():
        return f"{profile.category}: {profile.description.strip()}"
    return profile.category


class EmbeddingService:
    def __init__(self, app_config=None, store=None, dimensions=None):
        config = app_config or current_app.config
        self.provider = config.get('EMBEDDING_PROVIDER', 'openai')
        self.model = config.get('EMBEDDING_MODEL', 'text-embedding-3-small')
        self.dim = dimensions or config.get('EMBEDDING_DIMENSIONS', 512)
        self.timeout = config.get('EMBEDDING_REQUEST_TIMEOUT_SECONDS', 60)
        self.api_key = config.get('OPENAI_API_KEY')
        self.store = store or VectorStore(dimensions=self.dim)

    def embed_texts(self, texts):
        """Batch embed texts. Returns (list of numpy arrays, tokens used).

        Batches are sent one after another, never concurrently.
        """
        if not texts:
            return [], 0

        if self.provider != 'openai':
            raise EmbeddingProviderError(f"Unknown embedding provider: {self.provider}")

        vectors = []
        tokens = 0
        for i in range(0, len(texts), MAX_BATCH_INPUTS):
            batch = texts[i:i + MAX_BATCH_INPUTS]
            batch_vectors, batch_tokens = self._embed_openai(batch)
            if len(batch_vectors) != len(batch):
                raise EmbeddingProviderError(
                    f"Provider returned {len(batch_vectors)} vectors for {len(batch)} inputs"
                )
            vectors.extend(batch_vectors)
            tokens += batch_tokens
        return vectors, tokens

    def _embed_openai(self, batch):
        """Embed one batch via the OpenAI API."""
        import openai

        if not self.api_key:
            raise EmbeddingProviderError("OPENAI_API_KEY not configured")

        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        start_ms = int(time.time() * 1000)
        try:
            response = client.embeddings.create(
                model=self.model,
                input=batch,
                dimensions=self.dim,
            )
        except openai.OpenAIError as e:
            logger.error(f"Embedding call failed ({len(batch)} inputs): {e}")
            raise EmbeddingProviderError(str(e)) from e

        latency_ms = int(time.time() * 1000) - start_ms
        data = sorted(response.data, key=lambda item: item.index)
        usage = getattr(response, 'usage', None)
        tokens = getattr(usage, 'total_tokens', 0) or 0
        logger.info(f"Embedding call: {len(batch)} inputs | {tokens} tokens | {latency_ms}ms")
        return [np.array(item.embedding, dtype=np.float32) for item in data], tokens

    def embed_articles(self, articles):
        """Embed and store articles that have no stored vector yet.

        Returns {article_id: vector} for the newly embedded articles, in the
        order given. Raises EmbeddingProviderError when the provider fails.
        """
        articles = list(articles)
        existing = self.store.existing_ids('article', [a.id for a in articles])
        pending = [a for a in articles if a.id not in existing]
        if not pending:
            return {}

        texts = [build_article_text(a) for a in pending]
        vectors, tokens = self.embed_texts(texts)

        generated = {}
        for article, text, vec in zip(pending, texts, vectors):
            self.store.store('article', article.id, text, vec)
            generated[article.id] = vec
        self._log_usage(tokens, EMBEDDING_PURPOSE)
        db.session.commit()

        logger.info(f"[Embed] {len(generated)} new article embeddings ({len(existing)} already stored)")
        return generated

    def embed_profile(self, kind, profile, reader_id=None):
        """Compute and store the vector for one interest or exclusion."""
        text = build_profile_text(profile)
        vectors, tokens = self.embed_texts([text])
        self.store.store(kind, profile.id, text, vectors[0])
        self._log_usage(tokens, EMBEDDING_PURPOSE, reader_id=reader_id)
        db.session.commit()
        return vectors[0]

    def ensure_profile_embeddings(self, reader):
        """Embed any of the reader's interests/exclusions that lack a vector.

        Idempotent; run before each reader's scoring so an invalidated or
        failed refresh is picked up on the next cycle.
        """
        created = 0
        for kind, model in (('interest', Interest), ('exclusion', Exclusion)):
            query = model.query.filter_by(reader_id=reader.id)
            if model is Interest:
                query = query.filter_by(is_active=True)
            profiles = query.all()
            existing = self.store.existing_ids(kind, [p.id for p in profiles])
            missing = [p for p in profiles if p.id not in existing]
            if not missing:
                continue

            texts = [build_profile_text(p) for p in missing]
            vectors, tokens = self.embed_texts(texts)
            for profile, text, vec in zip(missing, texts, vectors):
                self.store.store(kind, profile.id, text, vec)
            self._log_usage(tokens, EMBEDDING_PURPOSE, reader_id=reader.id)
            db.session.commit()
            created += len(missing)

        if created:
            logger.info(f"[Embed] Reader {reader.id}: {created} profile embeddings refreshed")
        return created

    def _log_usage(self, tokens, purpose, reader_id=None):
        if not tokens:
            return
        cost = round((tokens / 1_000_000) * EMBEDDING_PRICING.get(self.model, 0.02), 6)
        db.session.add(LLMCallLog(
            call_purpose=purpose,
            provider=self.provider,
            model=self.model,
            prompt_tokens=tokens,
            completion_tokens=0,
            total_tokens=tokens,
            cost_usd=cost,
            reader_id=reader_id,
        ))
