from __future__ import annotations

import base64
import io
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests
from PIL import Image

from qa_agents.errors import OracleError

try:
    from google.adk.agents import LlmAgent
    from google.adk.models.lite_llm import LiteLlm
except Exception as exc:  # noqa: BLE001
    raise ImportError(
        "google-adk is required. Install with `pip install google-adk litellm`."
    ) from exc

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_IMAGE_DIMENSION = 640


def _model_for(model: str) -> Any:
    # Use LiteLlm wrapper for Ollama models
    if isinstance(model, str) and model.startswith("ollama/"):
        return LiteLlm(model=model)
    return model


def _model_name(agent: LlmAgent) -> str:
    model = getattr(agent, "model", "")
    # Extract model string if it's a LiteLlm object
    if hasattr(model, "model"):
        model = model.model
    return str(model)


def build_agent(name: str, model: str, instruction: str, description: str = "") -> LlmAgent:
    """
    ADK agent definition carrying the model and its system directive. The
    oracles below read both back and make the call over REST.
    """
    return LlmAgent(
        name=name,
        model=_model_for(model),
        description=description,
        instruction=instruction,
    )


def prepare_image(data: bytes) -> str:
    """
    Normalize a screenshot for vision models: RGB, at most 640px on the long
    side, JPEG, base64-encoded.
    """
    img = Image.open(io.BytesIO(data))

    if img.mode == "RGBA":
        rgb_img = Image.new("RGB", img.size, (255, 255, 255))
        rgb_img.paste(img, mask=img.split()[3])
        img = rgb_img
    elif img.mode != "RGB":
        img = img.convert("RGB")

    if img.width > MAX_IMAGE_DIMENSION or img.height > MAX_IMAGE_DIMENSION:
        ratio = min(MAX_IMAGE_DIMENSION / img.width, MAX_IMAGE_DIMENSION / img.height)
        img = img.resize((int(img.width * ratio), int(img.height * ratio)), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=85)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def _call_ollama(model: str, system: str, prompt: str, images: List[str], timeout: int) -> str:
    model_name = model.split("ollama/", 1)[1] if "ollama/" in model else model
    host = os.environ.get("OLLAMA_HOST", "http://localhost:11434").rstrip("/")
    if not host.startswith("http"):
        host = f"http://{host}"

    payload: Dict[str, Any] = {"model": model_name, "prompt": prompt, "system": system, "stream": False}
    if images:
        payload["images"] = images

    start = time.time()
    try:
        resp = requests.post(f"{host}/api/generate", json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise OracleError(f"Ollama request failed: {exc}") from exc
    logger.debug("oracle: ollama %s answered in %.1fs (status=%s)", model_name, time.time() - start, resp.status_code)

    if resp.status_code != 200:
        raise OracleError(f"Ollama http {resp.status_code}: {resp.text[:200]}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise OracleError(f"Ollama returned non-JSON body: {exc}") from exc
    return data.get("response", "")


def _call_gemini(model: str, system: str, prompt: str, images: List[str], timeout: int) -> str:
    api_key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GOOGLE_API_KEY_1")
    if not api_key:
        raise OracleError("GOOGLE_API_KEY is not set")

    parts: List[Dict[str, Any]] = [{"text": prompt}]
    for img in images:
        parts.append({"inline_data": {"mime_type": "image/jpeg", "data": img}})
    payload = {
        "systemInstruction": {"parts": [{"text": system}]},
        "contents": [{"role": "user", "parts": parts}],
    }
    try:
        resp = requests.post(GEMINI_URL.format(model=model), params={"key": api_key}, json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise OracleError(f"Gemini request failed: {exc}") from exc
    if resp.status_code != 200:
        raise OracleError(f"Gemini {model} -> {resp.status_code}: {resp.text[:200]}")

    candidates = resp.json().get("candidates") or []
    if not candidates:
        raise OracleError(f"Gemini {model} -> no candidates")
    texts = [p.get("text", "") for p in candidates[0].get("content", {}).get("parts") or [] if isinstance(p, dict)]
    return "\n".join(t for t in texts if t)


def call_model(model: str, system: str, prompt: str, images: Optional[List[str]] = None, timeout: int = 60) -> str:
    """Route to Ollama for ollama/... models, Gemini REST otherwise. Raises OracleError."""
    if model.startswith("ollama/"):
        return _call_ollama(model, system, prompt, images or [], timeout)
    return _call_gemini(model, system, prompt, images or [], timeout)


class TextOracle:
    """Text in, text out. The agent's instruction is the default system directive."""

    def __init__(self, agent: LlmAgent, timeout: int = 60) -> None:
        self.agent = agent
        self.timeout = timeout

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        directive = system if system is not None else str(getattr(self.agent, "instruction", ""))
        return call_model(_model_name(self.agent), directive, prompt, timeout=self.timeout)


class VisionOracle:
    """Image plus text in, text out."""

    def __init__(self, agent: LlmAgent, timeout: int = 90) -> None:
        self.agent = agent
        self.timeout = timeout

    def analyze(self, prompt: str, image: Optional[bytes], system: Optional[str] = None) -> str:
        directive = system if system is not None else str(getattr(self.agent, "instruction", ""))
        images: List[str] = []
        if image:
            try:
                images.append(prepare_image(image))
            except (OSError, ValueError) as exc:
                raise OracleError(f"Unreadable screenshot: {exc}") from exc
        return call_model(_model_name(self.agent), directive, prompt, images=images, timeout=self.timeout)
