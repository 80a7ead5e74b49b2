# 商品成本 / 毛利：列表（带本页统计）+ 批量改成本

from __future__ import annotations
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import container, current_shop
from app.core.container import AppContainer
from app.db.session import get_db
from app.integrations.shopify.errors import ShopifyError
from app.services import cogs_service


router = APIRouter(prefix="/cogs", tags=["cogs"])


class CostUpdate(BaseModel):
    inventoryItemId: str = Field(min_length=1)
    cost: Union[str, float]


class CostUpdateRequest(BaseModel):
    updates: List[CostUpdate] = Field(default_factory=list, max_length=250)


@router.get("/products")
def list_products(
    shop: str = Depends(current_shop),
    c: AppContainer = Depends(container),
    page_info: Optional[str] = Query(None, description="上一页返回的 startCursor / endCursor"),
    direction: Literal["next", "previous"] = "next",
    filter: Optional[Literal["all", "low_margin"]] = None,
    query: Optional[str] = None,
):
    try:
        return cogs_service.get_products_with_costs(
            c.client_for(shop), cursor=page_info, direction=direction, filter=filter, query=query,
        )
    except ShopifyError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/costs")
def update_costs(
    body: CostUpdateRequest,
    shop: str = Depends(current_shop),
    db: Session = Depends(get_db),
    c: AppContainer = Depends(container),
):
    updates = [u.model_dump() for u in body.updates]
    result = cogs_service.update_product_costs(db, c.client_for(shop), shop=shop, updates=updates)
    return {"success": not result["errors"], **result}
