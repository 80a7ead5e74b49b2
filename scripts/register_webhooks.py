#!/usr/bin/env python3
from __future__ import annotations
import os, sys, json, argparse

from app.core.container import get_container
from app.services.webhook_service import METAFIELD_TOPICS, TAGGING_TOPICS


'''
运维小脚本：给一个店铺补齐 webhook 订阅（幂等，已存在同回调地址则 noop）
    - 回调地址 = {host}/api/v1/webhooks/shopify/{topic}
    - host 取 --host，或环境变量 SHOPIFY_WEBHOOK_HOST
    - 用法（在 backend/ 目录下）：
    PYTHONPATH=. python ../scripts/register_webhooks.py --shop demo.myshopify.com \
    --host "https://<your-public-domain>"
'''

BASE_TOPICS = ["bulk_operations/finish"]


def _enum_name(topic: str) -> str:
    # orders/create -> ORDERS_CREATE
    return topic.replace("/", "_").upper()


def main():
    ap = argparse.ArgumentParser(description="Ensure Shopify webhook subscriptions for one shop.")
    ap.add_argument("--shop", required=True, help="xxx.myshopify.com")
    ap.add_argument("--host", help="Public HTTPS host, e.g. https://xxxx.ngrok.io")
    args = ap.parse_args()

    host = (args.host or os.getenv("SHOPIFY_WEBHOOK_HOST") or "").rstrip("/")
    if not host:
        print("ERROR: provide --host or set SHOPIFY_WEBHOOK_HOST", file=sys.stderr)
        sys.exit(2)

    topics = sorted(set(BASE_TOPICS) | set(TAGGING_TOPICS) | set(METAFIELD_TOPICS))
    client = get_container().client_for(args.shop)
    results = []
    for topic in topics:
        callback = f"{host}/api/v1/webhooks/shopify/{topic}"
        results.append(client.ensure_webhook(_enum_name(topic), callback))
    print(json.dumps(results, ensure_ascii=False, indent=2))

if __name__ == "__main__":
    main()
