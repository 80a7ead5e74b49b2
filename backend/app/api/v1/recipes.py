# recipe 调试面：只评估条件，不调用 Shopify，不写日志

from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import current_shop
from app.db.session import get_db
from app.repository import recipe_repo
from app.services.recipe_engine import RecipeEngine


router = APIRouter(prefix="/recipes", tags=["recipes"])


class RecipeDraft(BaseModel):
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    actions: List[Dict[str, Any]] = Field(default_factory=list)


class PreviewRequest(BaseModel):
    recipeId: Optional[str] = None
    recipe: Optional[RecipeDraft] = None
    resource: Dict[str, Any] = Field(default_factory=dict)


@router.post("/preview")
def preview_recipe(body: PreviewRequest, shop: str = Depends(current_shop), db: Session = Depends(get_db)):
    if body.recipeId:
        recipe = recipe_repo.get(db, shop, body.recipeId)
        if recipe is None:
            raise HTTPException(status_code=404, detail="Recipe not found")
    elif body.recipe is not None:
        recipe = body.recipe.model_dump()
    else:
        raise HTTPException(status_code=422, detail="recipeId or recipe is required")

    return RecipeEngine.preview_recipe(recipe, body.resource).to_dict()
