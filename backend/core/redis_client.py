import redis
import json
from typing import Optional, List
from config import settings

redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)

def test_connection() -> bool:
    try:
        return bool(redis_client.ping())
    except redis.RedisError:
        return False

def cache_key(scope_key: str) -> str:
    return f"{settings.cache_key_prefix}:{scope_key}"

def load_cached_orders(scope_key: str, client=None) -> Optional[List[dict]]:
    """Get the persisted order list for an agent scope"""
    raw = (client or redis_client).get(cache_key(scope_key))
    return json.loads(raw) if raw else None

def save_cached_orders(scope_key: str, orders: List[dict], client=None, ttl: Optional[int] = None):
    """Persist an agent's order list (optional TTL in seconds)"""
    (client or redis_client).set(cache_key(scope_key), json.dumps(orders), ex=ttl)
