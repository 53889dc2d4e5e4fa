import redis.asyncio as redis

from partysync.config import get_settings

# from_url does not connect until the first command
redis_client = redis.from_url(get_settings().redis_url, decode_responses=True)
