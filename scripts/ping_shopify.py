import sys

from app.core.container import get_container

if __name__ == "__main__":
    shop = sys.argv[1] if len(sys.argv) > 1 else "demo.myshopify.com"
    cli = get_container().client_for(shop)
    data = cli.ping()
    print(data)


# 运行（backend/ 目录下）
# export $(grep -v '^#' .env | xargs)   # 若你用 .env
# PYTHONPATH=. python ../scripts/ping_shopify.py xxx.myshopify.com



# 看到返回 shop.name / myshopifyDomain / plan.displayName 说明域名、版本、token 都 OK
