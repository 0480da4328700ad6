import re
from abc import ABC, abstractmethod
from typing import Dict, List

INDEXED_LINE_RE = re.compile(r"^\[(\d+)\]\s*(.*)")

def encode_indexed(texts: List[str]) -> str:
    return "\n".join(f"[{i}] {t}" for i, t in enumerate(texts))

def parse_indexed(text: str, size: int) -> Dict[int, str]:
    """Map ``[i] translation`` lines back to batch positions; anything else is dropped."""
    out: Dict[int, str] = {}
    for line in (text or "").split("\n"):
        m = INDEXED_LINE_RE.match(line.strip())
        if not m:
            continue
        i = int(m.group(1))
        value = m.group(2).strip()
        if 0 <= i < size and value:
            out[i] = value
    return out

class BatchTranslator(ABC):
    @abstractmethod
    async def translate_batch(self, src_texts: List[str], target_lang: str) -> Dict[int, str]:
        ...

    async def aclose(self) -> None:
        return None
