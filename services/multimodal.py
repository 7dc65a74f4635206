"""Multimodal helpers: normalize turn parts and convert them per backend.

Stored turns keep binary content by reference; before a provider call
every reference is resolved to a base64 payload (:func:`normalize_parts`).
The converters at the bottom turn normalized parts into pydantic-ai user
content or OpenAI-format content blocks for litellm.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re

from pydantic_ai.messages import BinaryContent, UserContent

from errors import InputValidationError, NexusError
from models.conversation import InlineData, Part
from services.blob_store import BlobStore, fetch_reference

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(;[\w=-]+)*;base64,(?P<data>.*)$", re.S)


def _empty_text() -> Part:
    return Part(text="")


def decode_data_uri(value: str, default_mime: str = DEFAULT_MIME_TYPE) -> tuple[str, bytes]:
    """Split a ``data:<mime>;base64,<payload>`` string (or bare base64).

    Raises:
        InputValidationError: If the payload is not valid base64.
    """
    mime_type = default_mime
    payload = value.strip()
    match = _DATA_URI_RE.match(payload)
    if match:
        mime_type = match.group("mime") or default_mime
        payload = match.group("data")
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputValidationError(f"Invalid base64 payload: {exc}") from exc


async def normalize_parts(parts: list[Part | None], blob_store: BlobStore) -> list[Part]:
    """Resolve references to payloads and drop unusable parts.

    Always returns at least one part (an empty text part if nothing survives).
    """
    cleaned: list[Part] = []
    for part in parts:
        if part is None or not part.is_usable:
            continue
        if part.text:
            cleaned.append(Part(text=part.text))
            continue

        inline = part.inline_data
        mime_type = inline.mime_type or DEFAULT_MIME_TYPE
        if inline.data:
            cleaned.append(Part(inline_data=InlineData(mime_type=mime_type, data=inline.data)))
            continue

        try:
            payload = await fetch_reference(blob_store, inline.ref)
        except NexusError as exc:
            logger.warning("Dropping unresolvable inline part %s: %s", inline.ref, exc)
            continue
        cleaned.append(Part(inline_data=InlineData(
            mime_type=mime_type,
            data=base64.b64encode(payload).decode("ascii"),
        )))

    if not cleaned:
        cleaned.append(_empty_text())
    return cleaned


async def offload_inline_payloads(parts: list[Part], blob_store: BlobStore) -> list[Part]:
    """Move direct base64 payloads into the blob store, keeping references.

    Used before a turn is persisted so history does not carry raw binaries.
    """
    stored: list[Part] = []
    for part in parts:
        inline = part.inline_data
        if inline is None or not inline.data:
            stored.append(part)
            continue
        _, raw = decode_data_uri(inline.data, inline.mime_type)
        ref = await blob_store.put(raw, content_type=inline.mime_type)
        stored.append(Part.from_bytes_ref(ref, inline.mime_type))
    return stored


def prefix_sender(parts: list[Part], sender_name: str | None) -> list[Part]:
    """Prefix the first text part with ``"<sender>: "`` (e.g. ``"system: "``).

    Returns a new list; if there is no text part one is appended.
    """
    if not sender_name:
        return list(parts)
    result = list(parts)
    for i, part in enumerate(result):
        if part.text is not None and part.inline_data is None:
            result[i] = Part(text=f"{sender_name}: {part.text}")
            return result
    result.append(Part(text=f"{sender_name}: "))
    return result


# ── Backend converters ───────────────────────────────────────


def to_user_content(parts: list[Part]) -> list[UserContent]:
    """Normalized parts → pydantic-ai user content."""
    content: list[UserContent] = []
    for part in parts:
        if part.inline_data is not None and part.inline_data.data:
            content.append(BinaryContent(
                data=base64.b64decode(part.inline_data.data),
                media_type=part.inline_data.mime_type,
            ))
        else:
            content.append(part.text or "")
    return content


def to_openai_content(parts: list[Part]) -> list[dict]:
    """Normalized parts → OpenAI-format content blocks (litellm)."""
    blocks: list[dict] = []
    for part in parts:
        inline = part.inline_data
        if inline is None or not inline.data:
            blocks.append({"type": "text", "text": part.text or ""})
            continue
        data_uri = f"data:{inline.mime_type};base64,{inline.data}"
        if inline.mime_type.startswith("image/"):
            blocks.append({"type": "image_url", "image_url": {"url": data_uri}})
        else:
            blocks.append({"type": "file", "file": {"file_data": data_uri}})
    return blocks
