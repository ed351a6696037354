from .client import RedisClient, decode_stream_data, ensure_consumer_group

__all__ = ["RedisClient", "decode_stream_data", "ensure_consumer_group"]
