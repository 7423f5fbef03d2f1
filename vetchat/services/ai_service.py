"""
Gemini service for the veterinary assistant chat and PDF report analysis.
Uses the google-genai client (Vertex AI when a project is configured, else an API key).
Streaming functions are sync generators; ai_stream_service runs them off the event loop.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Iterator

from vetchat.config import get_settings

logger = logging.getLogger(__name__)

# Lazy client to avoid import/credentials errors at import time
_gemini_client = None


def _get_client():
    global _gemini_client
    if _gemini_client is not None:
        return _gemini_client
    try:
        from google import genai
        from google.oauth2 import service_account
    except ImportError as e:
        raise RuntimeError(
            "Google GenAI not installed. pip install google-genai google-auth"
        ) from e

    settings = get_settings()
    if settings.vertex_project_id:
        credentials = None
        if settings.vertex_credentials_path:
            path = Path(settings.vertex_credentials_path)
            if path.is_file():
                credentials = service_account.Credentials.from_service_account_file(
                    str(path),
                    scopes=["https://www.googleapis.com/auth/cloud-platform"],
                )
        _gemini_client = genai.Client(
            vertexai=True,
            project=settings.vertex_project_id,
            location=settings.vertex_location,
            credentials=credentials,
        )
    elif settings.google_api_key:
        _gemini_client = genai.Client(api_key=settings.google_api_key)
    else:
        raise RuntimeError("Neither vertex_project_id nor google_api_key is configured")
    return _gemini_client


def is_overload_error(exc: BaseException) -> bool:
    """True for upstream quota / overload responses (HTTP 429 from the model API)."""
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    return code == 429


# ---- Assistant: chat ----

ASSISTANT_SYSTEM_PROMPT = """You are a friendly veterinary assistant helping pet owners.

Your role:
- Answer questions about pet health, nutrition, behaviour and care in clear, plain language.
- Help owners understand symptoms and lab results, and what to ask their veterinarian.
- Be concise, supportive and honest about uncertainty.

Rules:
- You are not a substitute for a veterinarian. For emergencies (breathing difficulty, seizures,
  suspected poisoning, heavy bleeding) tell the owner to contact a vet or emergency clinic now.
- Never prescribe medication doses.
- Answer in the same language as the user when possible; otherwise use English."""


def with_system_prompt(messages: list[dict]) -> list[dict]:
    """Prepend the assistant system prompt unless the caller already leads with a system message."""
    if messages and messages[0].get("role") == "system":
        return list(messages)
    return [{"role": "system", "content": ASSISTANT_SYSTEM_PROMPT}, *messages]


def _build_chat_request(messages: list[dict]) -> tuple[str, list]:
    """Split role/content pairs into (system_instruction, Gemini contents). assistant -> model."""
    from google.genai import types

    system_parts = []
    contents = []
    for m in messages:
        role = m.get("role", "user")
        content = m.get("content") or ""
        if role == "system":
            if content.strip():
                system_parts.append(content)
            continue
        if not content.strip():
            continue
        gemini_role = "model" if role == "assistant" else "user"
        contents.append(types.Content(role=gemini_role, parts=[types.Part.from_text(text=content)]))
    return "\n\n".join(system_parts), contents


def _iter_text(stream: Iterator[Any], stop_event: threading.Event | None) -> Iterator[str]:
    """Yield non-empty text deltas until the stream ends or stop_event is set; always closes upstream."""
    try:
        for chunk in stream:
            if stop_event is not None and stop_event.is_set():
                break
            if not chunk:
                continue
            text = getattr(chunk, "text", None)
            if not text and chunk.candidates:
                c = chunk.candidates[0]
                if c.content and c.content.parts:
                    text = getattr(c.content.parts[0], "text", None)
            if text:
                yield text
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()


def generate_chat_stream(messages: list[dict], stop_event: threading.Event | None = None) -> Iterator[str]:
    """
    Stream the assistant reply for an oldest-first role/content history.
    The system prompt is added once (see with_system_prompt). Yields text fragments as they arrive.
    """
    client = _get_client()
    settings = get_settings()
    from google.genai.types import GenerateContentConfig

    system_instruction, contents = _build_chat_request(with_system_prompt(messages))
    stream = client.models.generate_content_stream(
        model=settings.gemini_model,
        contents=contents,
        config=GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=settings.chat_temperature,
            max_output_tokens=settings.max_output_tokens,
        ),
    )
    yield from _iter_text(stream, stop_event)


# ---- Reports: PDF analysis ----

ANALYSIS_SYSTEM_INSTRUCTION = """You are a veterinary assistant reviewing a pet's medical report (PDF).

Your task:
- Summarise the report: patient, date, tests performed.
- List results outside reference ranges and explain in plain language what they may indicate.
- Suggest questions the owner could ask their veterinarian.
- Do not diagnose with certainty and do not prescribe medication.
- Format the answer in Markdown with short sections and bullet lists."""


def generate_report_analysis_stream(
    file_bytes: bytes,
    mime_type: str = "application/pdf",
    stop_event: threading.Event | None = None,
) -> Iterator[str]:
    """Stream a Markdown analysis of an uploaded report."""
    client = _get_client()
    settings = get_settings()
    from google.genai import types
    from google.genai.types import GenerateContentConfig

    contents = [
        types.Content(
            role="user",
            parts=[
                types.Part.from_bytes(data=file_bytes, mime_type=mime_type),
                types.Part.from_text(text="Please analyse this medical report."),
            ],
        )
    ]
    stream = client.models.generate_content_stream(
        model=settings.gemini_model,
        contents=contents,
        config=GenerateContentConfig(
            system_instruction=ANALYSIS_SYSTEM_INSTRUCTION,
            temperature=settings.analysis_temperature,
            max_output_tokens=settings.max_output_tokens,
        ),
    )
    yield from _iter_text(stream, stop_event)
