# modules/_shared/utils.py
from __future__ import annotations

import base64
import contextlib
import glob
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone

log = logging.getLogger(__name__)


class AIConfigError(RuntimeError):
    """The AI backend cannot be used as configured (e.g. missing API key)."""


def _truthy(s: str | None) -> bool:
    return (s or "").strip().lower() in {"1", "true", "yes", "on"}


def _get_float_env(name: str | None, default: float) -> float:
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


@dataclass
class OpenAIChat:
    """
    Thin facade over openai.chat.completions with:
      - model loaded from env via `model_env`, else `default_model`, else the
        literal `model_env` string
      - temperature from `temp_env` (if set) else `temperature`
      - a local request timeout; the SDK's own retries are disabled so the
        caller's retry policy is the only one in play
      - optional raw-response archival controlled by LLM_RAW_* envs
    """

    model_env: str
    temp_env: str
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.0
    timeout_sec: float = 60.0
    default_model: str | None = None

    def ensure_configured(self) -> None:
        if not os.getenv(self.api_key_env):
            raise AIConfigError(f"{self.api_key_env} not set")

    def generate(self, prompt: str, image_bytes: bytes | None = None, image_mime: str = "image/png") -> str:
        """Single completion for `prompt`, optionally with one inline image."""
        if image_bytes:
            b64 = base64.b64encode(image_bytes).decode("ascii")
            content: object = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{image_mime};base64,{b64}"}},
            ]
        else:
            content = prompt
        return self._complete([{"role": "user", "content": content}])

    def _complete(self, messages: list[dict]) -> str:
        from openai import OpenAI  # local import to keep tests light

        self.ensure_configured()
        model = os.getenv(self.model_env) or self.default_model or self.model_env
        temp = _get_float_env(self.temp_env, self.temperature)

        log.debug("OpenAIChat(model=%r, temperature=%s, timeout=%s)", model, temp, self.timeout_sec)
        client = OpenAI(api_key=os.getenv(self.api_key_env), timeout=self.timeout_sec, max_retries=0)
        resp = client.chat.completions.create(model=model, messages=messages, temperature=temp)
        content = (resp.choices[0].message.content or "").strip()
        log.debug("OpenAIChat received %d chars", len(content))

        _archive_raw(content)
        return content


def _archive_raw(content: str) -> None:
    """Write the raw model answer to LLM_RAW_DIR when LLM_RAW_ENABLE is set."""
    try:
        if not _truthy(os.getenv("LLM_RAW_ENABLE")):
            return
        raw_dir = os.getenv("LLM_RAW_DIR", "/app/local/state/llm")
        prefix = os.getenv("LLM_RAW_PREFIX", "llm")
        max_keep = int(os.getenv("LLM_RAW_MAX", "0"))  # 0 = unlimited
        os.makedirs(raw_dir, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        safe_prefix = re.sub(r"[^a-zA-Z0-9._-]+", "-", prefix).strip("-")
        stem = f"{safe_prefix}-" if safe_prefix else ""
        out_path = os.path.join(raw_dir, f"{stem}{ts}.txt")
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(content + "\n")
        log.debug("Wrote raw LLM answer to %s", out_path)
        if max_keep > 0:
            files = sorted(glob.glob(os.path.join(raw_dir, f"{stem}*.txt")), key=os.path.getmtime, reverse=True)
            for old in files[max_keep:]:
                with contextlib.suppress(Exception):
                    os.remove(old)
    except Exception as werr:
        log.debug("LLM raw archive skipped: %r", werr)
