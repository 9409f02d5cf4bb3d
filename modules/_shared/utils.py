# modules/_shared/utils.py
from __future__ import annotations

import contextlib
import glob
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

log = logging.getLogger(__name__)


def _truthy(s: str | None) -> bool:
    return (s or "").strip().lower() in {"1", "true", "yes", "on"}


def _get_float_env(name: str | None, default: float | None) -> float | None:
    if not name:
        return default
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except Exception:
        log.warning("Invalid float in %s=%r; using default %s", name, raw, default)
        return default


class LlmNotConfiguredError(RuntimeError):
    """No API key available when the chat client was first needed."""


@dataclass
class OpenAIChat:
    """
    Thin facade over openai.chat.completions.

    - constructed explicitly and passed to whoever needs it; the SDK client is
      built on first use, after checking that an API key is present
    - one user-role message per request, fixed model and token budget
    - temperature from `temp_env` when that env var is set
    - optional markdown archival of raw responses controlled by LLM_MD_* envs
    """

    model: str
    api_key: str | None = field(default=None, repr=False)
    max_tokens: int = 4096
    temp_env: str | None = None
    api_key_env: str = "OPENAI_API_KEY"
    timeout: float = 60.0
    _client: Any = field(default=None, init=False, repr=False)

    @property
    def configured(self) -> bool:
        return bool(self._resolve_key())

    def _resolve_key(self) -> str | None:
        return self.api_key or (os.getenv(self.api_key_env) or "").strip() or None

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self._resolve_key()
            if not api_key:
                raise LlmNotConfiguredError(f"{self.api_key_env} not set")
            from openai import OpenAI  # local import to keep tests light

            self._client = OpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def complete(self, prompt: str) -> str:
        """Send `prompt` as a single user message and return the reply text."""
        client = self._get_client()
        temp = _get_float_env(self.temp_env, None)

        log.debug("OpenAIChat.complete(model=%r, max_tokens=%d)", self.model, self.max_tokens)
        params: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
        }
        if temp is not None:
            params["temperature"] = temp
        resp = client.chat.completions.create(**params)
        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        log.debug("OpenAIChat.complete() received %d chars", len(content))

        self._archive(content)
        return content

    def _archive(self, content: str) -> None:
        try:
            if not _truthy(os.getenv("LLM_MD_ENABLE")):
                return
            md_dir = os.getenv("LLM_MD_DIR", "./local/state/llm")
            prefix = os.getenv("LLM_MD_PREFIX", "llm")
            max_keep = int(os.getenv("LLM_MD_MAX", "0"))  # 0 = unlimited
            os.makedirs(md_dir, exist_ok=True)
            ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
            safe_prefix = re.sub(r"[^a-zA-Z0-9._-]+", "-", prefix).strip("-")
            fname = f"{safe_prefix + '-' if safe_prefix else ''}{ts}.md"
            out_path = os.path.join(md_dir, fname)
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(content + "\n")
            log.debug("Wrote LLM markdown to %s", out_path)
            if max_keep > 0:
                pattern = os.path.join(md_dir, f"{safe_prefix + '-' if safe_prefix else ''}*.md")
                files = sorted(glob.glob(pattern), key=os.path.getmtime, reverse=True)
                for old in files[max_keep:]:
                    with contextlib.suppress(Exception):
                        os.remove(old)
        except Exception as werr:
            log.debug("LLM markdown write skipped: %r", werr)
