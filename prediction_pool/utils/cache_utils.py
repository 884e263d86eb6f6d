"""
Standings cache

Leaderboard queries are cached per season; every pass that changes points
clears the cache afterwards.
"""

import functools

import redis
from flask import current_app

from prediction_pool import cache


def cached_query(model_name, timeout=300):
    """
    Cache a query function's result, keyed on its arguments

    Args:
        model_name: Model the query reads, part of the cache key
        timeout: Cache timeout in seconds
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            key_parts = [str(arg) for arg in args]
            key_parts += [f"{k}={v}" for k, v in sorted(kwargs.items())]
            cache_key = f"query:{model_name}:{f.__name__}:{':'.join(key_parts)}"

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Query cache hit: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(cache_key, result, timeout=timeout)
            return result

        return wrapped

    return decorator


def invalidate_standings_cache(reason):
    """
    Drop cached standings after points change

    Backend errors are logged and not raised.
    """
    try:
        cache.clear()
        current_app.logger.info(f"Standings cache cleared: {reason}")
    except redis.exceptions.RedisError as e:
        current_app.logger.error(f"Failed to clear standings cache ({reason}): {e}")
