"""Model registry and resolver.

Maps the model ids a client may ask for onto concrete backends and decides,
per request, which one actually runs. Resolution never fails: unknown or
unavailable models fall back to the system default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from therapychat.config import Settings
from therapychat.llm.hosted import BYOKChatModel, HostedChatModel
from therapychat.llm.ollama import OllamaChatModel

if TYPE_CHECKING:
    from therapychat.chat.request import ChatRequest

logger = logging.getLogger(__name__)

ModelHandle = HostedChatModel | OllamaChatModel | BYOKChatModel
ToolChoiceHeader = Literal["auto", "none"]


@dataclass(frozen=True)
class ModelSpec:
    id: str
    label: str
    kind: Literal["hosted", "local", "byok"]
    supports_web_search: bool = False


@dataclass(frozen=True)
class ResolvedModel:
    model_to_use: ModelHandle
    effective_model_id: str
    has_web_search: bool
    tool_choice_header: ToolChoiceHeader
    # Built for this request only; the caller closes it when the stream ends.
    request_scoped: bool = False


class ModelRegistry:
    """Static set of selectable models plus their constructed backends."""

    def __init__(
        self,
        settings: Settings,
        specs: list[ModelSpec],
        handles: dict[str, ModelHandle],
    ):
        self.settings = settings
        self._specs = {spec.id: spec for spec in specs}
        self._handles = handles
        self.default_model_id = settings.default_model_id
        self.analytical_model_id = settings.analytical_model_id
        self.local_model_id = settings.local_model_id
        self.byok_model_id = settings.byok_model_id

    # -- construction --

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelRegistry:
        specs = [
            ModelSpec(settings.default_model_id, "Default", "hosted"),
            ModelSpec(
                settings.analytical_model_id,
                "Analytical (web search)",
                "hosted",
                supports_web_search=True,
            ),
            ModelSpec(settings.byok_model_id, "Your own key", "byok"),
        ]
        handles: dict[str, ModelHandle] = {
            spec.id: HostedChatModel(
                spec.id,
                api_key=settings.hosted_api_key,
                base_url=settings.hosted_base_url,
            )
            for spec in specs
            if spec.kind == "hosted"
        }

        if settings.local_model_enabled:
            specs.append(ModelSpec(settings.local_model_id, "Local", "local"))
            try:
                handles[settings.local_model_id] = OllamaChatModel(
                    settings.ollama_base_url, settings.ollama_model
                )
            except Exception:
                logger.warning(
                    "Local model adapter unavailable, falling back to default model",
                    exc_info=True,
                )

        return cls(settings, specs, handles)

    # -- queries --

    @property
    def specs(self) -> list[ModelSpec]:
        return list(self._specs.values())

    def get_spec(self, model_id: str) -> ModelSpec | None:
        return self._specs.get(model_id)

    @property
    def local_model(self) -> OllamaChatModel | None:
        handle = self._handles.get(self.local_model_id)
        return handle if isinstance(handle, OllamaChatModel) else None

    @property
    def local_available(self) -> bool:
        return self.local_model_id in self._handles

    def is_available(self, model_id: str) -> bool:
        """Whether ``model_id`` can currently be served (BYOK still needs a caller key)."""
        spec = self._specs.get(model_id)
        if spec is None:
            return False
        return spec.kind == "byok" or model_id in self._handles

    def mark_local_unavailable(self) -> None:
        self._handles.pop(self.local_model_id, None)

    async def probe_local(self) -> None:
        """Run the local health check and drop the adapter unless it is healthy."""
        local = self.local_model
        if local is None:
            return
        health = await local.check_health()
        if not health.ok:
            logger.warning(
                "Local model probe failed (%s): %s", health.code, health.message
            )
            self.mark_local_unavailable()
            await local.aclose()

    # -- resolution --

    def _is_selectable(self, model_id: str | None, byok_key: str | None) -> bool:
        if not model_id:
            return False
        spec = self._specs.get(model_id)
        if spec is None:
            return False
        if spec.kind == "byok":
            return bool(byok_key)
        return model_id in self._handles

    def resolve(self, request: ChatRequest) -> ResolvedModel:
        requested = request.model
        model_id = requested if self._is_selectable(requested, request.byok_key) else None
        if model_id is None:
            if requested:
                logger.info(
                    "Falling back to default model",
                    extra={"requested_model": requested, "model_id": self.default_model_id},
                )
            model_id = self.default_model_id

        has_web_search = False
        if request.web_search_requested:
            spec = self._specs[model_id]
            if not spec.supports_web_search:
                model_id = self.analytical_model_id
            has_web_search = True

        return ResolvedModel(
            model_to_use=self._handle_for(model_id, request.byok_key),
            effective_model_id=model_id,
            has_web_search=has_web_search,
            tool_choice_header="auto" if has_web_search else "none",
            request_scoped=self._specs[model_id].kind == "byok",
        )

    def _handle_for(self, model_id: str, byok_key: str | None) -> ModelHandle:
        spec = self._specs[model_id]
        if spec.kind == "byok":
            return BYOKChatModel(
                model_id,
                api_key=byok_key,
                base_url=self.settings.byok_base_url,
                provider_model=self.settings.byok_provider_model,
            )
        return self._handles[model_id]

    async def aclose(self) -> None:
        for handle in self._handles.values():
            await handle.aclose()
