import json
import logging
import re
from typing import Any

import httpx

from app.core.config import settings
from app.schemas.outline import StructuredOutline

logger = logging.getLogger(__name__)


OUTLINE_SYSTEM_PROMPT = """你是一位专业的课程架构师。你的任务是从杂乱的讲义文本中重构出清晰的知识树。
第一步：（提取层级）首先识别课程名和当前讲座主题。
第二步：（归纳模块）分析文本的逻辑流。如果没有明确的章节标题，请根据内容语义，将知识点归类到 3-5 个“核心模块”中。不要创建“其他”或“杂项”这种模块，必须赋予有意义的概括性标题。
第三步：（提取概念）在第二步创建的每个模块下，提取文件中的原子知识点（Concepts/algorithms/formula and so on）。概念名尽量沿用原文中的措辞。
注意：保持原意：模块标题最好引用原文，如果原文没有，则进行高层次的总结。
你必须返回严格的 **JSON** 格式（JSON Format）格式如下：{
  "courseName": string, // 课程名称（如“计算机组成原理”）
  "lectureTitle": string, // 本次课的主题（如“Lecture 3: 流水线技术”）
  "modules": [ // 核心模块（如果文中没有显式标题，请 AI 归纳总结）
    {
      "title": string, // 模块名（如“流水线冒险处理”）
      "concepts": [ // 该模块下的具体知识点
        {
          "name": string, // 概念名（如“数据冒险”）
          "description": string // 一句话解释
        }
      ]
    }
  ]
}"""

_MOCK_CONCEPTS_PER_MODULE = 4
_MOCK_MAX_MODULES = 5


def _mock_outline_payload(text: str) -> dict:
    """Build an outline from the text's own lines, for mock/testing mode."""
    lines = [ln.strip() for ln in text.splitlines() if len(ln.strip()) >= 2]
    if not lines:
        return {}

    course_name, lecture_title = lines[0], lines[1] if len(lines) > 1 else ""
    body = lines[2:] or lines

    modules = []
    step = _MOCK_CONCEPTS_PER_MODULE
    for m_idx in range(0, min(len(body), step * _MOCK_MAX_MODULES), step):
        concepts = []
        for line in body[m_idx : m_idx + step]:
            head, sep, tail = line.partition(":")
            name = head if sep and head.strip() else " ".join(line.split()[:3])
            concepts.append({"name": name.strip(), "description": (tail or line).strip()[:160]})
        modules.append({"title": f"Module {m_idx // step + 1}", "concepts": concepts})

    return {"courseName": course_name[:120], "lectureTitle": lecture_title[:120], "modules": modules}


class LLMClient:
    def __init__(self):
        self.provider = settings.llm_provider.lower()
        self._http_client: httpx.Client | None = None

    @property
    def http_client(self) -> httpx.Client:
        """Lazily-created, reusable httpx client with connection pooling."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(
                timeout=settings.llm_timeout_seconds,
                trust_env=False,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    def close(self):
        if self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    # ---- low-level helpers ----

    def _extract_json_string(self, raw: str) -> str:
        """Strip markdown code fences and extract JSON object for parsing."""
        s = raw.strip()
        m = re.search(r"^```(?:json)?\s*\n?(.*?)\n?```\s*$", s, re.DOTALL)
        if m:
            s = m.group(1).strip()
        start = s.find("{")
        if start == -1:
            return s
        depth = 0
        for i in range(start, len(s)):
            if s[i] == "{":
                depth += 1
            elif s[i] == "}":
                depth -= 1
                if depth == 0:
                    return s[start : i + 1]
        return s

    def _call_llm_raw(self, system: str, user: str) -> str:
        """Call the LLM and return raw content string (OpenAI-compatible or Anthropic)."""
        if self.provider == "anthropic":
            return self._call_anthropic_raw(system, user)
        return self._call_openai_raw(system, user)

    def _api_token(self) -> str:
        """Credential for the configured provider; a missing one is a config error, not retryable."""
        if self.provider == "anthropic":
            token = settings.anthropic_auth_token or settings.llm_api_key
            if not token:
                raise ValueError("LLM_API_ERROR: missing anthropic auth token")
            return token
        if not settings.llm_api_key:
            raise ValueError("LLM_API_ERROR: missing llm api key")
        return settings.llm_api_key

    def _call_openai_raw(self, system: str, user: str) -> str:
        payload = {
            "model": settings.llm_model,
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

        url = f"{settings.llm_base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self._api_token()}", "Content-Type": "application/json"}

        resp = self.http_client.post(url, headers=headers, json=payload)
        if not resp.is_success:
            detail = resp.text[:500]
            raise ValueError(f"LLM_API_ERROR ({resp.status_code}): {detail}")
        data = resp.json()

        return data.get("choices", [{}])[0].get("message", {}).get("content", "") or ""

    def _call_anthropic_raw(self, system: str, user: str) -> str:
        payload = {
            "model": settings.llm_model,
            "max_tokens": settings.llm_max_tokens,
            "temperature": 0.1,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }

        url = f"{settings.anthropic_base_url.rstrip('/')}/v1/messages"
        headers = {
            "x-api-key": self._api_token(),
            "anthropic-version": settings.anthropic_version,
            "content-type": "application/json",
        }

        resp = self.http_client.post(url, headers=headers, json=payload)
        if not resp.is_success:
            detail = resp.text[:500]
            raise ValueError(f"LLM_API_ERROR ({resp.status_code}): {detail}")
        data = resp.json()

        blocks = data.get("content", [])
        text_parts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
        return "\n".join([p for p in text_parts if p]).strip()

    # ---- JSON parsing ----

    def _parse_json_lenient(self, content: str) -> Any:
        """Parse raw LLM output into JSON, or {} when nothing parseable comes back."""
        for candidate in (content.strip(), self._extract_json_string(content)):
            if not candidate:
                continue
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
        snippet = content.strip()[:200]
        logger.warning("Outline JSON parse failed, using empty outline. Raw snippet: %r", snippet)
        return {}

    # ---- outline structuring ----

    def structure_outline(self, text: str) -> StructuredOutline:
        """Ask the model to organize lecture text into course / lecture / modules / concepts."""
        if self.provider == "mock":
            return StructuredOutline.from_untrusted(_mock_outline_payload(text))

        self._api_token()
        last_error: Exception | None = None
        for attempt in range(settings.llm_max_retries + 1):
            try:
                raw = self._call_llm_raw(OUTLINE_SYSTEM_PROMPT, text)
            except (ValueError, httpx.HTTPError) as exc:
                last_error = exc
                logger.warning("structure_outline attempt %d failed: %s", attempt + 1, exc)
                continue
            return StructuredOutline.from_untrusted(self._parse_json_lenient(raw))

        if isinstance(last_error, httpx.HTTPError):
            raise ValueError(f"LLM_API_ERROR: {last_error}") from last_error
        if last_error:
            raise last_error
        raise ValueError("LLM_API_ERROR: outline generation failed")
