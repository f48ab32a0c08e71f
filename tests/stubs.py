"""Shared test doubles."""

import asyncio

from better_dm.llm import GenerationOptions, LLMError


class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping stage name → list of responses (in call order).
    A queued Exception instance is raised instead of returned. A stage with
    nothing queued raises LLMError, like an unreachable backend.
    """

    def __init__(self, responses: dict[str, list] | None = None) -> None:
        self._queues: dict[str, list] = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, str]] = []
        self.options: list[GenerationOptions | None] = []

    async def __call__(self, stage: str, prompt: str, options: GenerationOptions | None = None) -> str:
        self.calls.append((stage, prompt))
        self.options.append(options)
        queue = self._queues.get(stage)
        if not queue:
            raise LLMError(f"StubLLM: no response queued for stage={stage!r}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed — catches missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


class GatedLLM(StubLLM):
    """StubLLM whose narrator stage blocks until release() is called."""

    def __init__(self, responses: dict[str, list] | None = None) -> None:
        super().__init__(responses)
        self.entered = asyncio.Event()
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def __call__(self, stage: str, prompt: str, options: GenerationOptions | None = None) -> str:
        if stage == "narrator":
            self.entered.set()
            await self._gate.wait()
        return await super().__call__(stage, prompt, options)
