# app/infrastructure/ratelimit/redis_token_bucket.py
from __future__ import annotations
import time, logging
from typing import Callable, Optional, Tuple

import redis


logger = logging.getLogger(__name__)


class RedisTokenBucketLimiter:
    """
    按店铺共享的令牌桶限流（多进程/多 worker 共享），单位：rpm。
    key: {prefix}:{env}:{shop}:v1

    acquire_once() 原子步骤（Lua）：
      1) 用 Redis 服务器时间（TIME）计算补桶
      2) 若 tokens >= 1 则消耗 1 个并 allowed=1；否则返回需要等待的毫秒 wait_ms
      3) 持久化 tokens/ts，并设置 TTL（空闲自动清理）
    """

    LUA_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_per_ms = tonumber(ARGV[2])
    local ttl_ms = tonumber(ARGV[3])

    -- 使用 Redis 服务器时间，避免多主机时钟偏差
    local t = redis.call('TIME')
    local now = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)

    local data = redis.call('HMGET', key, 'tokens', 'ts')
    local tokens = tonumber(data[1])
    local ts = tonumber(data[2])

    if tokens == nil or ts == nil then
        tokens = capacity
        ts = now
    else
        local delta = now - ts
        if delta < 0 then delta = 0 end
        tokens = math.min(capacity, tokens + delta * refill_per_ms)
        ts = now
    end

    local allowed = 0
    local wait_ms = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    else
        wait_ms = math.ceil((1 - tokens) / refill_per_ms)
        if wait_ms < 0 then wait_ms = 0 end
    end

    redis.call('HSET', key, 'tokens', tokens, 'ts', ts)
    if ttl_ms > 0 then
      redis.call('PEXPIRE', key, ttl_ms)
    end
    return {allowed, tokens, wait_ms}
    """


    def __init__(self, client, key: str, max_rpm: int, burst: int = 5,
                 ttl_ms: int = 120000, max_wait_ms: Optional[int] = 5000):
        self.r = client
        self.key = key
        self.capacity = max(1, int(burst))
        self.refill_per_ms = float(max_rpm) / 60_000.0
        self.ttl_ms = int(ttl_ms)
        self.max_wait_ms = max_wait_ms
        self._sha = self.r.script_load(self.LUA_SCRIPT)


    """
       从 settings 读取开关/Redis URL/速率/桶容量/前缀，为某个店铺构造 limiter；关闭时返回 None。
    """
    @classmethod
    def from_settings(cls, *, shop: str) -> RedisTokenBucketLimiter | None:
        from app.core.config import settings

        if not settings.SHOPIFY_RL_ENABLED:
            return None

        url = settings.redis_for_counters
        if not url:
            logger.warning("shopify.rl.disabled reason=no_redis_url shop=%s", shop)
            return None

        r = redis.from_url(url, decode_responses=True)
        key = f"{settings.SHOPIFY_RL_KEY_PREFIX}:{settings.ENVIRONMENT}:{shop}:v1"
        return cls(
            client=r,
            key=key,
            max_rpm=settings.SHOPIFY_RL_MAX_RPM,
            burst=settings.SHOPIFY_RL_BURST,
            ttl_ms=120000,
            max_wait_ms=settings.SHOPIFY_RL_MAX_WAIT_MS,
        )


    """
        执行 Lua（带 NOSCRIPT 兜底重载）。
    """
    def _eval(self) -> Tuple[bool, int]:
        try:
            res = self.r.evalsha(
                self._sha, 1, self.key, self.capacity, self.refill_per_ms, self.ttl_ms
            )
        except redis.exceptions.NoScriptError:
            # Redis 重启后脚本缓存丢失：重载再试一次
            self._sha = self.r.script_load(self.LUA_SCRIPT)
            res = self.r.evalsha(
                self._sha, 1, self.key, self.capacity, self.refill_per_ms, self.ttl_ms
            )
        allowed = int(res[0]) == 1
        wait_ms = 0 if allowed else max(0, int(float(res[2])))
        if (self.max_wait_ms is not None) and (wait_ms > self.max_wait_ms):
            wait_ms = self.max_wait_ms
        return allowed, wait_ms


    """
        尝试消费 1 个令牌；返回 (allowed, wait_ms)。
    """
    def acquire_once(self) -> tuple[bool, int]:
        return self._eval()


    """
        阻塞直到拿到令牌（每次最多等 max_wait_ms），最多 max_tries 次；拿不到返回 False，由调用方决定是否照发。
    """
    def acquire(self, *, max_tries: int = 10, sleep: Callable[[float], None] = time.sleep) -> bool:
        for _ in range(max(1, max_tries)):
            allowed, wait_ms = self.acquire_once()
            if allowed:
                return True
            sleep(max(wait_ms, 10) / 1000.0)
        logger.warning("shopify.rl.exhausted key=%s tries=%s", self.key, max_tries)
        return False
