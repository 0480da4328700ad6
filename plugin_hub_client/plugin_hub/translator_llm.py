# plugin_hub/translator_llm.py
from __future__ import annotations
import json, logging
from typing import Any, Dict, List, Optional
import httpx

from .errors import NetworkError, RequestTimeout, error_for_status
from .translator_base import BatchTranslator, encode_indexed, parse_indexed

DEFAULT_BASE_URL = "https://api.siliconflow.cn/v1"
DEFAULT_MODEL = "deepseek-ai/DeepSeek-V3"

# Only {lang_label} is a formatting slot.
PROMPT_TEMPLATE = (
    "You are a professional multilingual translation assistant.\n"
    "Translate the following GitHub project descriptions into {lang_label}.\n"
    "# STRICT RULES:\n"
    "1. Every output line MUST start with the matching [index] from the input.\n"
    "2. Return a line for every input, even if it is very short or only technical terms.\n"
    "3. Keep the wording concise and idiomatic; keep technical terms as they are.\n"
    "4. Return only the translations, no explanations, preface or summary.\n"
    "Example output:\n"
    "[0] 这是一个 AI 项目\n"
    "[1] 另一个工具库"
)

LANG_LABELS = {
    "zh": "中文 (Chinese)",
    "en": "英文 (English)",
    "jp": "日文 (Japanese)",
    "kr": "韩文 (Korean)",
}

def _completion_text(data: Any) -> str:
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""

async def _post_chat(client: httpx.AsyncClient, url: str, api_key: str, body: Dict[str, Any]) -> Any:
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
    try:
        resp = await client.post(url, headers=headers, json=body)
    except httpx.TimeoutException as e:
        raise RequestTimeout(f"Translation request timed out: {e}") from e
    except httpx.RequestError as e:
        raise NetworkError(f"Translation request failed: {e}") from e
    if resp.status_code // 100 != 2:
        raise error_for_status(resp.status_code, resp.text)
    try:
        return resp.json()
    except ValueError:
        return None

class ChatCompletionTranslator(BatchTranslator):
    """Batch translator speaking the OpenAI-compatible chat completions API.

    Items are sent as ``[i] text`` lines and the reply is mapped back by the
    same markers, so order is preserved even if the model drops a line.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        temperature: float = 0.1,
        max_tokens: int = 1000,
        client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger | None = None,
    ):
        if not api_key:
            raise RuntimeError("No LLM API key configured (SILICON_CLOUD_API_KEY / DEEPSEEK_API_KEY / OPENAI_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.url = base_url.rstrip("/") + "/chat/completions"
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.logger = logger or logging.getLogger("plugin-hub")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    def _fmt_messages(self, src_texts: List[str], target_lang: str) -> List[Dict[str, str]]:
        lang_label = LANG_LABELS.get(target_lang, target_lang)
        return [
            {"role": "system", "content": PROMPT_TEMPLATE.format(lang_label=lang_label)},
            {"role": "user", "content": encode_indexed(src_texts)},
        ]

    async def translate_batch(self, src_texts: List[str], target_lang: str) -> Dict[int, str]:
        if not src_texts:
            return {}
        body = {
            "model": self.model,
            "messages": self._fmt_messages(src_texts, target_lang),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        data = await _post_chat(self.client, self.url, self.api_key, body)
        text = _completion_text(data)
        if not text:
            self.logger.warning(f"Unexpected completion body: {json.dumps(data, ensure_ascii=False)[:200]}")
        out = parse_indexed(text, len(src_texts))
        if len(out) < len(src_texts):
            missing = [i for i in range(len(src_texts)) if i not in out]
            self.logger.warning(
                f"Model returned {len(out)} of {len(src_texts)} items; "
                f"missing indices: {missing[:10]}{'...' if len(missing) > 10 else ''}"
            )
        return out

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
