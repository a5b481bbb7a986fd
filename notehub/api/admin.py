"""Admin API endpoints for the mutable model configuration."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from notehub.services.model_selector import ModelConfig, ModelConfigStore, get_model_config_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

ConfigStoreDep = Annotated[ModelConfigStore, Depends(get_model_config_store)]


class ModelConfigBody(BaseModel):
    """Model configuration as stored in Redis."""

    model_config = ConfigDict(populate_by_name=True)

    default_model: str = Field(..., min_length=1, alias="defaultModel")
    fallback_models: list[str] = Field(default_factory=list, alias="fallbackModels")
    max_tokens: int | None = Field(default=None, gt=0, alias="maxTokens")

    def to_config(self) -> ModelConfig:
        return ModelConfig(
            default_model=self.default_model,
            fallback_models=list(self.fallback_models),
            max_tokens=self.max_tokens,
        )


class ModelConfigResponse(BaseModel):
    """Current configuration; null when none is stored."""

    config: dict[str, Any] | None


@router.get("/model-config", response_model=ModelConfigResponse)
async def get_model_config(store: ConfigStoreDep) -> ModelConfigResponse:
    config = await store.load()
    return ModelConfigResponse(config=config.to_dict() if config else None)


@router.put("/model-config", response_model=ModelConfigResponse)
async def put_model_config(body: ModelConfigBody, store: ConfigStoreDep) -> ModelConfigResponse:
    """Replace the configuration. Takes effect on the next model call."""
    config = body.to_config()
    try:
        await store.save(config)
    except Exception as e:
        logger.error(f"Failed to save model config: {e}")
        raise HTTPException(status_code=503, detail="Model configuration store unavailable") from e
    return ModelConfigResponse(config=config.to_dict())
