"""
Research Client - one research request per catalog model, with retry and
model fallback.

Retry policy per model in the chain:
- RateLimited / retryable UpstreamError (5xx, timeout, network):
  retry up to max_retries with exponential backoff (base * 2^attempt, capped)
- non-retryable UpstreamError (e.g. 404 model not found): move to next model
- InvalidCredentials: raised immediately, never retried
When every model in the chain is exhausted the last error is raised.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from model_enrichment import config as settings
from model_enrichment.enrichment.cost import cost_from_usage, estimate_call_cost, PRICING_USD_PER_1M
from model_enrichment.enrichment.llm_client import LLMClient, LLMResponse, get_llm_client
from model_enrichment.enrichment.models import EnrichmentConfig, Provider, RawResearch
from model_enrichment.enrichment.prompts import CREDENTIAL_CHECK_PROMPT, build_research_prompt
from model_enrichment.errors import InvalidCredentials, UpstreamError

logger = logging.getLogger(__name__)


class ResearchClient:
    """Sends research requests for catalog models to the configured provider."""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_retries: int = settings.RESEARCH_MAX_RETRIES,
        backoff_base_secs: float = settings.RESEARCH_BACKOFF_BASE_SECS,
        backoff_max_secs: float = settings.RESEARCH_BACKOFF_MAX_SECS,
        timeout_secs: float = settings.RESEARCH_TIMEOUT_SECS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            llm_client: Backend override (tests); otherwise chosen per provider
            max_retries: Retries per model after the first attempt
            backoff_base_secs: First backoff delay
            backoff_max_secs: Backoff ceiling
            timeout_secs: Per-call HTTP timeout
            sleep: Sleep function (injected in tests)
        """
        self._override = llm_client
        self._clients: Dict[Provider, LLMClient] = {}
        self.max_retries = max_retries
        self.backoff_base_secs = backoff_base_secs
        self.backoff_max_secs = backoff_max_secs
        self.timeout_secs = timeout_secs
        self._sleep = sleep

    def _client_for(self, provider: Provider) -> LLMClient:
        if self._override is not None:
            return self._override
        if provider not in self._clients:
            self._clients[provider] = get_llm_client(provider)
        return self._clients[provider]

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base_secs * (2 ** attempt), self.backoff_max_secs)

    def check_credentials(self, config: EnrichmentConfig) -> None:
        """
        Validate the run's API key with one synthetic request.

        Only credential rejections are fatal here; a transient upstream
        failure is logged and left for the per-entity retry policy.

        Raises:
            ConfigError: No key configured
            InvalidCredentials: Provider rejected the key
        """
        api_key = config.resolve_api_key()
        client = self._client_for(config.provider)
        try:
            client.complete(
                CREDENTIAL_CHECK_PROMPT,
                model=config.model,
                api_key=api_key,
                timeout_secs=self.timeout_secs,
                max_output_tokens=16,
            )
        except InvalidCredentials:
            raise
        except UpstreamError as e:
            logger.warning("Credential check inconclusive (provider=%s): %s",
                           config.provider.value, e)
        logger.info("Credential check passed: provider=%s model=%s",
                    config.provider.value, config.model)

    def research(self, entity: Dict[str, Any], config: EnrichmentConfig) -> RawResearch:
        """
        Research one catalog model.

        Args:
            entity: Model document (must contain "id")
            config: Run configuration

        Returns:
            RawResearch with the provider text and call cost

        Raises:
            InvalidCredentials: Key rejected
            RateLimited / UpstreamError: All retries and fallbacks exhausted
        """
        api_key = config.resolve_api_key()
        prompt = build_research_prompt(entity, config.quality_tier)
        client = self._client_for(config.provider)
        last_error: Optional[UpstreamError] = None
        total_attempts = 0

        chain = config.model_chain()
        for position, model in enumerate(chain):
            if position > 0:
                logger.info("Falling back to model %s for %s", model, entity.get("id"))
            for attempt in range(self.max_retries + 1):
                total_attempts += 1
                try:
                    response = client.complete(
                        prompt,
                        model=model,
                        api_key=api_key,
                        timeout_secs=self.timeout_secs,
                    )
                except InvalidCredentials:
                    raise
                except UpstreamError as e:
                    last_error = e
                    if not e.retryable:
                        logger.warning("Research for %s on %s not retryable: %s",
                                       entity.get("id"), model, e)
                        break
                    if attempt < self.max_retries:
                        delay = self.backoff_delay(attempt)
                        logger.warning(
                            "Research for %s on %s failed (attempt %d/%d), retrying in %.1fs: %s",
                            entity.get("id"), model, attempt + 1, self.max_retries + 1, delay, e,
                        )
                        self._sleep(delay)
                        continue
                    logger.error("Research for %s on %s exhausted retries: %s",
                                 entity.get("id"), model, e)
                    break

                return RawResearch(
                    text=response.text,
                    model_used=model,
                    cost=self._call_cost(response, config),
                    prompt_tokens=response.prompt_tokens,
                    completion_tokens=response.completion_tokens,
                    attempts=total_attempts,
                )

        raise last_error

    @staticmethod
    def _call_cost(response: LLMResponse, config: EnrichmentConfig) -> float:
        if response.model in PRICING_USD_PER_1M and (response.prompt_tokens or response.completion_tokens):
            return cost_from_usage(
                response.model,
                response.prompt_tokens,
                response.completion_tokens,
                response.thinking_tokens,
            )
        return estimate_call_cost(response.model, config.quality_tier)


__all__ = ["ResearchClient"]
