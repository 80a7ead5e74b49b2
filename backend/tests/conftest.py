# 测试公共夹具：sqlite 内存库 + 内存版 Shopify 客户端 + 进程级容器替换

from __future__ import annotations

import itertools, json, os, re
from typing import Any, Dict, List, Optional

# 导入 app 之前先指向 sqlite，避免进程级 engine 去连 PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.container import AppContainer, set_container
from app.db.base import Base
from app.db import model  # noqa: F401  注册所有表
from app.db.session import build_session_factory
from app.integrations.shopify.errors import ShopifyUserError


SHOP = "demo-store.myshopify.com"

_GID_TO_RESOURCE = {"Product": "products", "Customer": "customers", "Order": "orders"}
_LABEL = {"products": "title", "customers": "displayName", "orders": "name"}
_QUERY_RE = re.compile(r"^\{\s*(\w+)\(query:\s*(\".*\")\)", re.S)
_MUTATION_RE = re.compile(r"\{\s*(\w+)\(")


def _match_filter(search: str, tags: List[str]) -> bool:
    # 只支持 bulk 查询会用到的三种写法：tag:"A" / NOT tag:"A" / tag:"a" OR tag:"b"
    for term in search.split(" OR "):
        term = term.strip()
        negate = term.startswith("NOT ")
        if negate:
            term = term[4:].strip()
        tag = json.loads(term[len("tag:"):])
        if (tag in tags) != negate:
            return True
    return False


class FakeShopifyClient:
    """
    内存里的店铺：resources[资源类型][gid] = {"id", 展示名, "tags"}。
    bulk 查询按标签筛选并生成结果快照；bulk mutation 提交时直接改内存里的 tags。
    """

    def __init__(self, shop: str = SHOP):
        self.shop = shop
        self.resources: Dict[str, Dict[str, Dict[str, Any]]] = {"products": {}, "customers": {}, "orders": {}}
        self.operations: Dict[str, Dict[str, Any]] = {}
        self.queries: List[str] = []
        self.mutations: List[List[Dict[str, Any]]] = []
        self.uploads: Dict[str, bytes] = {}
        self.calls: List[tuple] = []
        self.metafields: Dict[tuple, str] = {}
        self.subscriptions: List[dict] = []
        self.samples: Dict[str, List[dict]] = {}

        self.running_polls = 0              # 每个 bulk 在 COMPLETED 前先返回几次 RUNNING
        self.status_override: Optional[str] = None
        self.errors: Dict[str, Exception] = {}
        self.row_errors: Dict[str, str] = {}    # gid -> bulk mutation 结果里的 userErrors message
        self.cost_products: List[dict] = []          # products_with_costs 返回的商品节点
        self.cost_page_info: Dict[str, Any] = {"hasNextPage": False, "hasPreviousPage": False}
        self.cost_errors: Dict[str, str] = {}        # inventoryItemId -> userErrors message
        self.costs: Dict[str, str] = {}
        self._ids = itertools.count(1)

    # ---------- 造数据 ----------
    def add_resource(self, resource_type: str, numeric_id: int, tags: List[str], label: str = "") -> str:
        type_name = {v: k for k, v in _GID_TO_RESOURCE.items()}[resource_type]
        gid = f"gid://shopify/{type_name}/{numeric_id}"
        self.resources[resource_type][gid] = {
            "id": gid,
            _LABEL[resource_type]: label or f"{type_name} {numeric_id}",
            "tags": list(tags),
        }
        return gid

    def tags_of(self, gid: str) -> List[str]:
        resource_type = _GID_TO_RESOURCE[gid.split("/")[3]]
        return list(self.resources[resource_type][gid]["tags"])

    def _maybe_fail(self, name: str) -> None:
        if name in self.errors:
            raise self.errors[name]

    def _new_operation(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        op_id = f"gid://shopify/BulkOperation/{next(self._ids)}"
        self.operations[op_id] = {"rows": rows, "polls": 0}
        return {"id": op_id, "status": "CREATED"}

    # ---------- bulk ----------
    def run_bulk_query(self, query_doc: str) -> dict:
        self._maybe_fail("run_bulk_query")
        self.queries.append(query_doc)
        m = _QUERY_RE.match(query_doc)
        resource_type, search = m.group(1), json.loads(m.group(2))
        rows = [
            json.loads(json.dumps(node))
            for node in self.resources[resource_type].values()
            if _match_filter(search, node["tags"])
        ]
        return self._new_operation(rows)

    def staged_upload_create(self, filename: str = "bulk_op_vars") -> dict:
        key = f"tmp/uploads/{next(self._ids)}.jsonl"
        return {"url": "https://uploads.example.test/", "parameters": [{"name": "key", "value": key}]}

    def upload_staged_file(self, target: dict, content: bytes, *, filename: str = "bulk_op_vars") -> str:
        key = target["parameters"][0]["value"]
        self.uploads[key] = content
        return key

    def run_bulk_mutation(self, mutation: str, staged_upload_path: str) -> dict:
        self._maybe_fail("run_bulk_mutation")
        lines = [json.loads(line) for line in self.uploads[staged_upload_path].decode("utf-8").splitlines() if line]
        name = _MUTATION_RE.search(mutation).group(1)
        applied, results = [], []
        for n, line in enumerate(lines):
            variables = next(iter(line.values()))
            gid = variables["id"]
            applied.append({"id": gid, "tags": list(variables["tags"])})
            # 结果文件：每行一个 mutation 响应，带 userErrors 的行不改数据
            error = self.row_errors.get(gid)
            if error:
                results.append({"data": {name: {"userErrors": [{"field": ["tags"], "message": error}]}},
                                "__lineNumber": n})
                continue
            resource_type = _GID_TO_RESOURCE[gid.split("/")[3]]
            self.resources[resource_type][gid]["tags"] = list(variables["tags"])
            results.append({"data": {name: {"userErrors": []}}, "__lineNumber": n})
        self.mutations.append(applied)
        return self._new_operation(results)

    def get_bulk_operation_by_id(self, bulk_gid: str) -> dict:
        op = self.operations.get(bulk_gid)
        if op is None:
            return {}
        op["polls"] += 1
        if self.status_override:
            return {"id": bulk_gid, "status": self.status_override, "errorCode": "INTERNAL_SERVER_ERROR",
                    "objectCount": 0, "url": None}
        if op["polls"] <= self.running_polls:
            return {"id": bulk_gid, "status": "RUNNING", "objectCount": 0, "url": None}
        rows = op["rows"]
        return {
            "id": bulk_gid,
            "status": "COMPLETED",
            "errorCode": None,
            "objectCount": len(rows),
            "url": f"https://results.example.test/{bulk_gid.rsplit('/', 1)[-1]}.jsonl" if rows else None,
        }

    def download_jsonl_stream(self, url: str):
        op_num = url.rsplit("/", 1)[-1].split(".")[0]
        for row in self.operations[f"gid://shopify/BulkOperation/{op_num}"]["rows"]:
            yield json.dumps(row)

    def cancel_bulk_operation(self, bulk_gid: str) -> dict:
        return {"id": bulk_gid, "status": "CANCELING"}

    # ---------- 单资源 mutation ----------
    def tags_add(self, resource_gid: str, tags) -> dict:
        self._maybe_fail("tags_add")
        self.calls.append(("tags_add", resource_gid, list(tags)))
        return {"node": {"id": resource_gid}}

    def tags_remove(self, resource_gid: str, tags) -> dict:
        self._maybe_fail("tags_remove")
        self.calls.append(("tags_remove", resource_gid, list(tags)))
        return {"node": {"id": resource_gid}}

    def metafields_set(self, metas: List[dict]) -> dict:
        self._maybe_fail("metafields_set")
        self.calls.append(("metafields_set", metas))
        for m in metas:
            self.metafields[(m["ownerId"], m["namespace"], m["key"])] = m["value"]
        return {"metafields": metas}

    def metafields_delete(self, identifiers: List[dict]) -> dict:
        self.calls.append(("metafields_delete", identifiers))
        for i in identifiers:
            self.metafields.pop((i["ownerId"], i["namespace"], i["key"]), None)
        return {"deletedMetafields": identifiers}

    def get_metafield_id(self, owner_gid: str, namespace: str, key: str) -> Optional[str]:
        if (owner_gid, namespace, key) in self.metafields:
            return f"gid://shopify/Metafield/{abs(hash((owner_gid, namespace, key))) % 10000}"
        return None

    # ---------- 其它查询 ----------
    def active_subscriptions(self) -> List[dict]:
        self._maybe_fail("active_subscriptions")
        return list(self.subscriptions)

    def sample_resources(self, resource_type: str, *, first: int = 10) -> List[dict]:
        return list(self.samples.get(resource_type, []))[:first]

    # ---------- COGS ----------
    def products_with_costs(self, **kwargs) -> Dict[str, Any]:
        self._maybe_fail("products_with_costs")
        self.calls.append(("products_with_costs", kwargs))
        return {"nodes": list(self.cost_products), "pageInfo": dict(self.cost_page_info)}

    def inventory_item_update(self, inventory_item_id: str, cost: str) -> dict:
        self._maybe_fail("inventory_item_update")
        self.calls.append(("inventory_item_update", inventory_item_id, cost))
        if inventory_item_id in self.cost_errors:
            message = self.cost_errors[inventory_item_id]
            raise ShopifyUserError("inventoryItemUpdate", [{"field": ["input", "cost"], "message": message}])
        self.costs[inventory_item_id] = cost
        return {"inventoryItem": {"id": inventory_item_id, "unitCost": {"amount": cost}}}


@pytest.fixture()
def session_factory():
    # 方法 1：sqlite 内存库，StaticPool 让所有会话共用同一个连接
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield build_session_factory(engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_client():
    return FakeShopifyClient()


@pytest.fixture()
def container(session_factory, fake_client):
    c = AppContainer(session_factory, client_factory=lambda shop: fake_client)
    set_container(c)
    try:
        yield c
    finally:
        set_container(None)


@pytest.fixture()
def shop() -> str:
    return SHOP
