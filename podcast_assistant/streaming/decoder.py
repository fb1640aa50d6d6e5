"""流式响应的增量解码器。

Gemini 的 streamGenerateContent 以 JSON 记录序列返回结果，记录之间用
“可选逗号 + 换行”分隔（整体外层可能带有数组的 ``[`` 与 ``]``）。网络读取的
边界与记录边界无关：一条记录可能被拆到多个块里，一个块也可能包含多条记录。

解码规则：

1. 新文本追加到缓冲区末尾；
2. 按分隔符 ``,?\\r?\\n`` 把缓冲区切成候选片段；
3. 最后一个片段后面还没有分隔符，它可能只是记录的前半段，原样留在缓冲区；
4. 其余每个片段单独尝试解析为一条完整的 JSON 记录：
   - 成功：若记录在 ``candidates[0].content.parts[0].text`` 处有文本，立即产出；
     然后从缓冲区移除该片段以及紧随其后的分隔符；
   - 失败：片段连同分隔符原样留在缓冲区，等下一次读取后重试；
5. 除了成功解析的记录及其分隔符，任何字符都不会被丢弃。

流结束时先把最后一个片段也当作完整片段解析一次；若整个流从未产出过文本，
再在剩余缓冲区上做一次宽松的 ``"text": "..."`` 匹配，仍然一无所获时产出
唯一一条兜底提示。
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from podcast_assistant.domain.exceptions import TransientParseIncomplete


RECORD_DELIMITER = re.compile(r",?\r?\n")
LENIENT_TEXT_FIELD = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)+)"')

FALLBACK_NOTICE = (
    "I'm sorry, but I couldn't generate a proper response. "
    "Please try again or check your API key."
)


@dataclass
class DecodeStep:
    """一次 decode_chunk 的结果。

    - fragments: 本次按到达顺序解析出的文本片段。
    - remaining: 尚未解析的缓冲区内容，下次读取时原样传回。
    - consumed: 本次从缓冲区移除的字符数。
    """

    fragments: List[str] = field(default_factory=list)
    remaining: str = ""
    consumed: int = 0


def split_segments(buffer: str) -> List[Tuple[str, str]]:
    """把缓冲区切成 (片段, 分隔符) 列表，最后一个片段的分隔符为空串。"""
    parts: List[Tuple[str, str]] = []
    pos = 0
    for match in RECORD_DELIMITER.finditer(buffer):
        parts.append((buffer[pos:match.start()], match.group()))
        pos = match.end()
    parts.append((buffer[pos:], ""))
    return parts


def _candidates(text: str) -> Iterator[str]:
    yield text
    opened = text[1:].lstrip() if text.startswith("[") else None
    closed = text[:-1].rstrip() if text.endswith("]") else None
    if opened is not None:
        yield opened
    if closed is not None:
        yield closed
    if opened is not None and closed is not None:
        yield opened[:-1].rstrip()


def decode_records(segment: str) -> List[Dict[str, Any]]:
    """把单个片段解析为记录列表；不是完整记录时抛出 TransientParseIncomplete。"""
    text = segment.strip()
    if not text:
        raise TransientParseIncomplete("empty segment")
    for candidate in _candidates(text):
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return [value]
        if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            return value
    raise TransientParseIncomplete(text[:50])


def extract_text(record: Dict[str, Any]) -> Optional[str]:
    """取出 candidates[0].content.parts[0].text，缺失或为空时返回 None。"""
    try:
        text = record["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(text, str) and text:
        return text
    return None


def decode_chunk(buffer: str, new_text: str, final: bool = False) -> DecodeStep:
    """纯函数：(缓冲区, 新文本) -> (产出片段, 剩余缓冲区)。

    final 为 False 时，没有分隔符的尾部片段不做解析；流结束后以 final=True
    调用一次，把尾部片段也按完整记录处理。
    """
    step = DecodeStep()
    kept: List[str] = []
    for segment, separator in split_segments(buffer + new_text):
        if not separator and not final:
            kept.append(segment)
            continue
        try:
            records = decode_records(segment)
        except TransientParseIncomplete:
            kept.append(segment + separator)
            continue
        for record in records:
            text = extract_text(record)
            if text is not None:
                step.fragments.append(text)
        step.consumed += len(segment) + len(separator)
    step.remaining = "".join(kept)
    return step


def salvage_text(buffer: str) -> List[str]:
    """宽松匹配缓冲区中的 "text" 字段，结构不完整时也尽量取出文本。"""
    found: List[str] = []
    for match in LENIENT_TEXT_FIELD.finditer(buffer):
        raw = match.group(1)
        try:
            text = json.loads(f'"{raw}"')
        except json.JSONDecodeError:
            text = raw
        if text:
            found.append(text)
    return found


class IncrementalDecoder:
    """单个流独占的解码状态。

    buffer 为未解析的尾部文本，consumed 为已移除的字符总数（即在逻辑流中
    最后一次消费到的偏移），emitted 为已产出的片段数。
    """

    def __init__(self) -> None:
        self.buffer = ""
        self.consumed = 0
        self.emitted = 0
        self.salvaged = False
        self.fallback_used = False
        self._finished = False

    def feed(self, text: str) -> List[str]:
        if self._finished:
            raise RuntimeError("Decoder already finished")
        step = decode_chunk(self.buffer, text)
        self.buffer = step.remaining
        self.consumed += step.consumed
        self.emitted += len(step.fragments)
        return step.fragments

    def finish(self) -> List[str]:
        """流结束时调用：先解析尾部片段，整个流从未产出文本时再补救或兜底。"""
        if self._finished:
            return []
        self._finished = True
        step = decode_chunk(self.buffer, "", final=True)
        self.buffer = step.remaining
        self.consumed += step.consumed
        self.emitted += len(step.fragments)
        if self.emitted:
            return step.fragments
        fragments = salvage_text(self.buffer)
        if fragments:
            self.salvaged = True
        else:
            fragments = [FALLBACK_NOTICE]
            self.fallback_used = True
        self.emitted += len(fragments)
        return fragments
