"""流式响应：增量解码器 (decoder) 与请求生命周期 (engine)。"""

from podcast_assistant.streaming.decoder import FALLBACK_NOTICE, IncrementalDecoder, decode_chunk
from podcast_assistant.streaming.engine import StreamingResponseEngine

__all__ = ["FALLBACK_NOTICE", "IncrementalDecoder", "StreamingResponseEngine", "decode_chunk"]
