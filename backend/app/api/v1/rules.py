# AI 生成规则的形状校验 + 规则 dry-run 模拟

from __future__ import annotations
from typing import Any, Dict, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.v1.deps import container, current_shop
from app.core.container import AppContainer
from app.integrations.shopify.errors import ShopifyError
from app.services.rules_service import simulate_rule
from app.services.validation import RecipeValidationError, validate_generated_rule


router = APIRouter(prefix="/rules", tags=["rules"])


class GeneratedRuleRequest(BaseModel):
    kind: Literal["tagging", "metafield"]
    resourceType: Optional[str] = None
    output: Union[str, Dict[str, Any]] = Field(description="外部生成服务的原始输出（可能带 ```json 代码块）")


class SimulateRequest(BaseModel):
    rule: Dict[str, Any]
    sampleSize: int = Field(default=10, ge=1, le=50)


@router.post("/validate-generated")
def validate_generated(body: GeneratedRuleRequest, shop: str = Depends(current_shop)):
    try:
        rule = validate_generated_rule(body.output, body.kind, body.resourceType)
    except RecipeValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})
    return {"valid": True, "rule": rule}


@router.post("/simulate")
def simulate(body: SimulateRequest, shop: str = Depends(current_shop), c: AppContainer = Depends(container)):
    try:
        matches = simulate_rule(c.client_for(shop), body.rule, sample_size=body.sampleSize)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ShopifyError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"matches": matches, "count": len(matches)}
