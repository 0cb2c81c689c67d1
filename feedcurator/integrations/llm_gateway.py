import logging
import time
from datetime import date, datetime, timezone
from flask import current_app
from feedcurator.extensions import db
from feedcurator.models.cost import EMBEDDING_PURPOSE, LLMCallLog
from feedcurator.utils.text import strip_wrapping_quotes

logger = logging.getLogger(__name__)

# Pricing per 1M tokens (input, output)
MODEL_PRICING = {
    'gpt-4o-mini': {'input': 0.15, 'output': 0.60},
    'gpt-4o': {'input': 2.50, 'output': 10.00},
    'gpt-4.1-mini': {'input': 0.40, 'output': 1.60},
    'gpt-4.1-nano': {'input': 0.10, 'output': 0.40},
    # Anthropic
    'claude-sonnet-4-20250514': {'input': 3.00, 'output': 15.00},
    'claude-3-5-haiku-latest': {'input': 0.80, 'output': 4.00},
    # xAI Grok models
    'grok-3-mini-fast': {'input': 0.30, 'output': 0.50},
    'grok-3-mini': {'input': 0.30, 'output': 0.50},
    'grok-3': {'input': 3.00, 'output': 15.00},
}
DEFAULT_PRICING = {'input': 2.0, 'output': 10.0}

XAI_BASE_URL = 'https://api.x.ai/v1'
PROVIDERS = ('openai', 'anthropic', 'xai')
MAX_RETRIES = 3

SYSTEM_PROMPT = (
    'Always respond with valid JSON. Do not include any text outside of the JSON '
    'structure unless the request explicitly asks for plain text.'
)


class LLMProviderError(Exception):
    """A provider call failed. ``status`` is the HTTP status when there was one."""

    def __init__(self, message, status=None, provider=None):
        self.status = status
        self.provider = provider
        super().__init__(message)

    @property
    def retryable(self):
        # Rate limits and server-side failures only; timeouts are not retried
        return self.status is not None and (self.status == 429 or 500 <= self.status < 600)


class LLMUnavailableError(Exception):
    """The selected provider has no credentials configured."""


class BudgetExhaustedError(Exception):
    def __init__(self, used=None, budget=None):
        self.used = used
        self.budget = budget
        super().__init__(f"Daily token budget exhausted ({used}/{budget})")


class LLMGateway:
    def __init__(self, app_config=None, provider=None):
        config = app_config or current_app.config
        self.provider = (provider or config.get('LLM_PROVIDER') or 'openai').lower()
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

        self.daily_budget_tokens = config.get('LLM_DAILY_TOKEN_BUDGET', 2_000_000)
        self.timeout = config.get('LLM_REQUEST_TIMEOUT_SECONDS', 120)
        self.retry_delays = tuple(config.get('LLM_RETRY_DELAYS', (2, 5, 10)))

        self.api_key = config.get('OPENAI_API_KEY')
        self.model = config.get('LLM_MODEL', 'gpt-4.1-mini')
        self.anthropic_api_key = config.get('ANTHROPIC_API_KEY')
        self.anthropic_model = config.get('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514')
        self.xai_api_key = config.get('XAI_API_KEY')
        self.xai_model = config.get('XAI_MODEL', 'grok-3-mini-fast')

    @property
    def available(self):
        """Check if the selected provider is configured."""
        return bool({
            'openai': self.api_key,
            'anthropic': self.anthropic_api_key,
            'xai': self.xai_api_key,
        }[self.provider])

    @property
    def active_model(self):
        return {
            'openai': self.model,
            'anthropic': self.anthropic_model,
            'xai': self.xai_model,
        }[self.provider]

    def complete(self, prompt, max_tokens=4096, purpose='completion', reader_id=None, system=SYSTEM_PROMPT):
        """
        Central LLM call. Checks budget, makes call with retry, logs cost.
        Returns: {content, prompt_tokens, completion_tokens, total_tokens, cost_usd, provider, model}
        Raises: LLMUnavailableError, BudgetExhaustedError, LLMProviderError.
        """
        if not self.available:
            raise LLMUnavailableError(f"No API key configured for provider '{self.provider}'")

        remaining = self._get_remaining_budget()
        if remaining <= 0:
            raise BudgetExhaustedError(self.daily_budget_tokens - remaining, self.daily_budget_tokens)

        effective_max = min(max_tokens, max(remaining, 100))

        attempt = 0
        while True:
            try:
                result = self._dispatch(prompt, system, effective_max, purpose)
                break
            except LLMProviderError as e:
                if not e.retryable or attempt >= MAX_RETRIES:
                    raise
                delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                attempt += 1
                logger.warning(
                    f"{self.provider} returned {e.status} ({purpose}); "
                    f"retry {attempt}/{MAX_RETRIES} in {delay}s"
                )
                time.sleep(delay)

        cost = self._compute_cost(result['prompt_tokens'], result['completion_tokens'], result['model'])
        self._log_call(purpose, result, cost, reader_id)

        return {
            'content': result['content'],
            'prompt_tokens': result['prompt_tokens'],
            'completion_tokens': result['completion_tokens'],
            'total_tokens': result['prompt_tokens'] + result['completion_tokens'],
            'cost_usd': cost,
            'provider': self.provider,
            'model': result['model'],
        }

    def _dispatch(self, prompt, system, max_tokens, purpose):
        if self.provider == 'anthropic':
            return self._call_anthropic(prompt, system, max_tokens, purpose)
        if self.provider == 'xai':
            return self._call_xai(prompt, system, max_tokens, purpose)
        return self._call_openai(prompt, system, max_tokens, purpose)

    def _call_openai(self, prompt, system, max_tokens, purpose):
        """Make an OpenAI API call."""
        import openai
        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)

        start_ms = int(time.time() * 1000)
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=_messages(prompt, system),
                max_completion_tokens=max_tokens,
            )
        except openai.APIStatusError as e:
            logger.error(f"OpenAI call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), status=e.status_code, provider='openai') from e
        except openai.OpenAIError as e:
            logger.error(f"OpenAI call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), provider='openai') from e

        return _openai_result(response, self.model, start_ms)

    def _call_xai(self, prompt, system, max_tokens, purpose):
        """Make an xAI/Grok API call (OpenAI-compatible endpoint)."""
        import openai
        client = openai.OpenAI(
            api_key=self.xai_api_key,
            base_url=XAI_BASE_URL,
            timeout=self.timeout,
            max_retries=0,
        )

        start_ms = int(time.time() * 1000)
        try:
            response = client.chat.completions.create(
                model=self.xai_model,
                messages=_messages(prompt, system),
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as e:
            logger.error(f"xAI/Grok call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), status=e.status_code, provider='xai') from e
        except openai.OpenAIError as e:
            logger.error(f"xAI/Grok call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), provider='xai') from e

        return _openai_result(response, self.xai_model, start_ms)

    def _call_anthropic(self, prompt, system, max_tokens, purpose):
        """Make an Anthropic Messages API call."""
        import anthropic
        client = anthropic.Anthropic(
            api_key=self.anthropic_api_key,
            timeout=self.timeout,
            max_retries=0,
        )

        start_ms = int(time.time() * 1000)
        try:
            response = client.messages.create(
                model=self.anthropic_model,
                max_tokens=max_tokens,
                system=system,
                messages=[{'role': 'user', 'content': prompt}],
            )
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), status=e.status_code, provider='anthropic') from e
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic call failed ({purpose}): {e}")
            raise LLMProviderError(str(e), provider='anthropic') from e

        text = ''.join(
            block.text for block in response.content if getattr(block, 'type', None) == 'text'
        )
        return {
            'content': text,
            'prompt_tokens': response.usage.input_tokens,
            'completion_tokens': response.usage.output_tokens,
            'model': self.anthropic_model,
            'latency_ms': int(time.time() * 1000) - start_ms,
        }

    def _compute_cost(self, prompt_tokens, completion_tokens, model=None):
        """Compute USD cost based on model pricing."""
        pricing = MODEL_PRICING.get(model or self.active_model, DEFAULT_PRICING)
        input_cost = (prompt_tokens / 1_000_000) * pricing['input']
        output_cost = (completion_tokens / 1_000_000) * pricing['output']
        return round(input_cost + output_cost, 6)

    def _get_remaining_budget(self):
        """Get remaining generation token budget for today."""
        today = date.today()
        today_start = datetime(today.year, today.month, today.day, tzinfo=timezone.utc)

        used = db.session.query(
            db.func.coalesce(db.func.sum(LLMCallLog.total_tokens), 0)
        ).filter(
            LLMCallLog.created_at >= today_start,
            LLMCallLog.call_purpose != EMBEDDING_PURPOSE,
        ).scalar()
        return self.daily_budget_tokens - used

    def _log_call(self, purpose, result, cost, reader_id=None):
        """Insert LLMCallLog row."""
        total = result['prompt_tokens'] + result['completion_tokens']
        log = LLMCallLog(
            call_purpose=purpose,
            provider=self.provider,
            model=result['model'],
            prompt_tokens=result['prompt_tokens'],
            completion_tokens=result['completion_tokens'],
            total_tokens=total,
            cost_usd=cost,
            latency_ms=result['latency_ms'],
            reader_id=reader_id,
        )
        db.session.add(log)
        db.session.commit()
        logger.info(
            f"LLM call: {purpose} | {self.provider}/{result['model']} | "
            f"{total} tokens | ${cost:.4f} | {result['latency_ms']}ms"
        )

    def expand_description(self, category, description=None, reader_id=None):
        """Expand a short interest into a dense paragraph for embedding.

        Returns None when the provider is unavailable or fails; the caller
        falls back to the unexpanded text.
        """
        prompt = (
            "You are helping build a content recommendation system. Given this interest "
            "category and description, write a single dense paragraph (150-200 words) that "
            "captures the FULL semantic range of topics this person would want to read about.\n\n"
            "Include: subtopics, related terminology, adjacent concepts, key entities (companies, "
            "organizations, technologies), typical article subjects, and the kinds of headlines "
            "someone with this interest would click on.\n\n"
            "Do NOT use bullet points or lists. Write it as a flowing paragraph optimized for "
            "semantic similarity matching.\n\n"
            f'Interest: "{category}"\n'
            f'Description: "{description or "No additional description provided."}"\n\n'
            "Expanded description:"
        )
        try:
            result = self.complete(
                prompt, max_tokens=1024, purpose='interest_expansion',
                reader_id=reader_id, system='Respond with plain text only.',
            )
        except (LLMProviderError, LLMUnavailableError, BudgetExhaustedError) as e:
            logger.warning(f"Interest expansion failed for '{category}': {e}")
            return None

        text = strip_wrapping_quotes(result['content'])
        return text or None


def _messages(prompt, system):
    return [
        {'role': 'system', 'content': system},
        {'role': 'user', 'content': prompt},
    ]


def _openai_result(response, model, start_ms):
    usage = response.usage
    return {
        'content': response.choices[0].message.content or '',
        'prompt_tokens': getattr(usage, 'prompt_tokens', 0) or 0,
        'completion_tokens': getattr(usage, 'completion_tokens', 0) or 0,
        'model': model,
        'latency_ms': int(time.time() * 1000) - start_ms,
    }
