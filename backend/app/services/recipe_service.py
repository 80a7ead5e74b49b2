# recipe 保存/开关：先校验再落库（recipe CRUD 路由不在本服务范围，这里供脚本/其它服务调用）

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.db.model.recipe import Recipe
from app.repository import recipe_repo
from app.services.validation import RecipeValidationError, validate_recipe


logger = logging.getLogger(__name__)


def create_recipe(db: Session, shop: str, data: Dict[str, Any]) -> Recipe:
    validate_recipe(data)
    row = recipe_repo.create(db, shop, data)
    logger.info("recipe.created shop=%s id=%s event=%s", shop, row.id, row.trigger_event)
    return row


def update_recipe(db: Session, shop: str, recipe_id: str, data: Dict[str, Any]) -> Optional[Recipe]:
    row = recipe_repo.get(db, shop, recipe_id)
    if row is None:
        return None
    merged = row.to_dict()
    merged.update({k: v for k, v in data.items() if k != "stats"})
    validate_recipe(merged)
    return recipe_repo.update_fields(db, shop, recipe_id, data)


def toggle_recipe(db: Session, shop: str, recipe_id: str, enabled: bool) -> Optional[Recipe]:
    row = recipe_repo.get(db, shop, recipe_id)
    if row is None:
        return None
    if enabled and (not row.conditions or not row.actions):
        raise RecipeValidationError(["an enabled recipe needs at least one condition and one action"])
    recipe_repo.set_enabled(db, shop, recipe_id, enabled)
    db.refresh(row)
    return row


def find_active_by_event(db: Session, shop: str, event: str) -> List[Recipe]:
    return recipe_repo.find_active_by_event(db, shop, event)


def find_by_shop_and_category(db: Session, shop: str, category: Optional[str] = None) -> List[Recipe]:
    return recipe_repo.find_by_shop_and_category(db, shop, category)
