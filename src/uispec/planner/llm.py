"""LLM-backed planner over any LangChain language model."""

from collections.abc import AsyncIterator
from typing import Any

from langchain_core.language_models import BaseLanguageModel

from ..core import PlanningConfig, ResponseBuffer, Settings, ValidationError, get_logger, get_settings
from ..spec.models import SpecNode
from ..spec.parser import SpecParser
from .base import Planner, PlannerError, PlannerInput, PlanUpdate
from .cache import PlanCache
from .prompt import build_prompt

logger = get_logger(__name__)


def _token_text(chunk: Any) -> str:
    return chunk.content if hasattr(chunk, "content") else str(chunk)


class LLMPlanner:
    """
    Plans trees by prompting a language model.

    Supports one-shot planning and streaming. While streaming, the growing
    response is parsed leniently after every batch of tokens and yielded as
    provisional trees; only the final, fully validated tree is marked final.
    On model or parse failure the optional fallback planner is used.
    """

    def __init__(
        self,
        llm: BaseLanguageModel,
        parser: SpecParser | None = None,
        fallback: Planner | None = None,
        settings: Settings | None = None,
        enable_cache: bool | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.llm = llm
        self.parser = parser or SpecParser()
        self.fallback = fallback
        self.batch_size = settings.stream_batch_size
        use_cache = settings.plan_cache_enabled if enable_cache is None else enable_cache
        self.cache = PlanCache(settings.plan_cache_size, settings.plan_cache_ttl) if use_cache else None
        logger.info("initialized", mode="llm", cache=use_cache, fallback=fallback is not None)

    def _model(self, config: PlanningConfig | None):
        if config is not None and config.temperature is not None:
            return self.llm.bind(temperature=config.temperature)
        return self.llm

    @staticmethod
    def _prompt(request: PlannerInput) -> str:
        return request.prompt or build_prompt(request)

    async def plan(self, request: PlannerInput, config: PlanningConfig | None = None) -> SpecNode:
        """
        Produce a tree for ``request``.

        Raises:
            PlannerError: Model call failed or output unusable, and no fallback succeeded
        """
        final = None
        async for update in self._generate(request, config, provisional=False):
            if update.final:
                final = update.tree
        if final is None:
            raise PlannerError("Planner produced no tree")
        return final

    async def stream(self, request: PlannerInput, config: PlanningConfig | None = None) -> AsyncIterator[PlanUpdate]:
        async for update in self._generate(request, config, provisional=True):
            yield update

    async def _generate(
        self, request: PlannerInput, config: PlanningConfig | None, provisional: bool
    ) -> AsyncIterator[PlanUpdate]:
        prompt = self._prompt(request)
        key = PlanCache.key_for(request, prompt) if self.cache else None

        if self.cache and key:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("cache_hit", action=request.action)
                yield PlanUpdate(tree=cached, final=True)
                return

        try:
            tree = None
            async for update in self._call_model(prompt, config, provisional):
                if update.final:
                    tree = update.tree
                else:
                    yield update
        except PlannerError as e:
            if self.fallback is None:
                raise
            logger.warning("llm_failed", error=str(e))
            tree = await self.fallback.plan(request, config)
            yield PlanUpdate(tree=tree, final=True)
            return

        if self.cache and key:
            self.cache.set(key, tree)
        yield PlanUpdate(tree=tree, final=True)

    async def _call_model(
        self, prompt: str, config: PlanningConfig | None, provisional: bool
    ) -> AsyncIterator[PlanUpdate]:
        logger.info("llm_generate", prompt_length=len(prompt))
        response = ResponseBuffer(batch_size=self.batch_size)

        try:
            async for chunk in self._model(config).astream(prompt):
                batch = response.feed(_token_text(chunk))
                if batch is None:
                    continue
                tree = self.parser.parse_partial(response.text) if provisional else None
                yield PlanUpdate(tree=tree, chunk=batch)
        except Exception as e:
            logger.error("llm_stream_failed", error=str(e))
            raise PlannerError(f"Model call failed: {e}") from e

        rest = response.drain()
        if rest:
            yield PlanUpdate(tree=self.parser.parse_partial(response.text) if provisional else None, chunk=rest)

        logger.info("llm_complete", tokens=response.tokens, content_length=response.chars)
        content = response.text

        try:
            tree = self.parser.parse(content)
        except ValidationError as e:
            logger.error("llm_parse_failed", error=str(e), content_preview=content[:500])
            raise PlannerError(f"Unusable planner output: {e}") from e

        logger.info("llm_parse_success", root_id=tree.id)
        yield PlanUpdate(tree=tree, final=True)


__all__ = ["LLMPlanner"]
