"""
AI Strategy Selection

A strategy is one (API key, model) pair. When a call fails because the key
ran out of quota or the model is unavailable, the pipeline rotates to the
next strategy and tries again.

ROTATION ORDER: every model under the current key first, then the next key
with the first model again. Switching models is cheaper than switching
billing accounts.

    (0,0) -> (0,1) -> ... -> (0,M-1) -> (1,0) -> ... -> (K-1,M-1)

The last pair is terminal: rotate_strategy() keeps returning False there.
State is never reset; build a new selector to start over.

CONCURRENCY: one selector is shared by every in-flight document. The current
pair is stored as a single tuple so readers never see a half-applied
rotation, and rotations are serialized by a lock taken without blocking.
A caller that finds the lock held gets False right away instead of
queueing behind it and rotating a second time.
"""

import threading
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from finance_ingestion.config.settings import GeminiSettings
from finance_ingestion.errors import AIServiceUnavailableError

logger = structlog.get_logger(__name__)


class StrategyConfig(BaseModel):
    """The strategy a generation call should use."""

    model_config = ConfigDict(frozen=True)

    key_index: int = Field(ge=0)
    model_index: int = Field(ge=0)
    model: str
    api_key: str = Field(repr=False, exclude=True)

    @property
    def position(self) -> tuple[int, int]:
        return (self.key_index, self.model_index)


class AIStrategySelector:
    """
    Holds the ordered keys and models and the current position among them.

    Usage:
        selector = AIStrategySelector(["key-a", "key-b"], ["flash", "pro"])
        config = selector.get_current_config()
        ...quota error...
        if not selector.rotate_strategy(expected=config):
            give up
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        models: Sequence[str],
    ):
        self._api_keys = [k for k in api_keys if k]
        self._models = [m for m in models if m]
        self._position: tuple[int, int] = (0, 0)
        self._rotation_lock = threading.Lock()

        logger.info(
            "strategy_selector_created",
            keys=len(self._api_keys),
            models=self._models,
        )

    @classmethod
    def from_settings(cls, settings: GeminiSettings) -> "AIStrategySelector":
        return cls(settings.api_key_list, settings.model_list)

    @property
    def key_count(self) -> int:
        return len(self._api_keys)

    @property
    def model_count(self) -> int:
        return len(self._models)

    @property
    def position(self) -> tuple[int, int]:
        """Current (key_index, model_index)."""
        return self._position

    @property
    def is_exhausted(self) -> bool:
        """True once the last (key, model) pair is current."""
        return self._next_position(self._position) is None

    def is_available(self) -> bool:
        """Check if at least one key and one model are configured."""
        return bool(self._api_keys) and bool(self._models)

    def get_current_config(self) -> StrategyConfig:
        """
        Return the strategy to use for the next call.

        Raises:
            AIServiceUnavailableError: If no key or model is configured
        """
        if not self.is_available():
            raise AIServiceUnavailableError(
                "Serviço de IA não configurado. Configure a chave GEMINI_API_KEYS."
            )
        key_index, model_index = self._position
        return StrategyConfig(
            key_index=key_index,
            model_index=model_index,
            model=self._models[model_index],
            api_key=self._api_keys[key_index],
        )

    def rotate_strategy(self, expected: Optional[StrategyConfig] = None) -> bool:
        """
        Advance to the next strategy.

        Args:
            expected: The strategy the caller saw failing. When another
                caller already rotated past it, nothing is consumed and True
                is returned so the caller retries with the newer strategy.

        Returns:
            True if a next strategy is now current.
            False if the strategies are exhausted, or another rotation is in
            progress. Callers must treat False as final for their attempt.
        """
        if not self._rotation_lock.acquire(blocking=False):
            logger.warning("strategy_rotation_rejected", reason="rotation in progress")
            return False

        try:
            current = self._position
            if expected is not None and expected.position != current:
                logger.info(
                    "strategy_already_rotated",
                    failed=list(expected.position),
                    current=list(current),
                )
                return True

            following = self._next_position(current)
            if following is None:
                logger.error(
                    "strategy_rotation_exhausted",
                    key_index=current[0],
                    model=self._models[current[1]] if self._models else None,
                )
                return False

            self._position = following
            logger.info(
                "strategy_rotated",
                key_index=following[0],
                model_index=following[1],
                model=self._models[following[1]],
            )
            return True
        finally:
            self._rotation_lock.release()

    def _next_position(self, position: tuple[int, int]) -> Optional[tuple[int, int]]:
        if not self.is_available():
            return None
        key_index, model_index = position
        if model_index + 1 < len(self._models):
            return (key_index, model_index + 1)
        if key_index + 1 < len(self._api_keys):
            return (key_index + 1, 0)
        return None
