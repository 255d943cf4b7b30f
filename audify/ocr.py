"""OCR of page images via Gemini."""

import logging
import os

from google import genai
from google.genai import types

from audify.constants import OCR_MODEL, OCR_PROMPT, OCR_TIMEOUT_SECONDS
from audify.errors import NoTextFoundError, OCRError

logger = logging.getLogger(__name__)


def get_client(timeout: float = OCR_TIMEOUT_SECONDS) -> genai.Client:
    """Create a Gemini client from GEMINI_API_KEY (or GOOGLE_API_KEY)."""
    api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    if not api_key:
        raise OCRError("Gemini API key missing. Set GEMINI_API_KEY in your environment.")
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout * 1000)),
    )


def extract_text(
    image_bytes: bytes,
    mime_type: str,
    client: genai.Client | None = None,
    model: str = OCR_MODEL,
) -> str:
    """Return the plain text found in one page image.

    Raises NoTextFoundError when the model finds nothing legible and
    OCRError when the service call itself fails.
    """
    if client is None:
        client = get_client()

    logger.debug("OCR request: %d bytes (%s)", len(image_bytes), mime_type)
    try:
        response = client.models.generate_content(
            model=model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                OCR_PROMPT,
            ],
        )
    except Exception as e:
        raise OCRError(f"Failed to extract text from the image: {e}") from e

    text = (response.text or "").strip()
    if not text:
        raise NoTextFoundError("OCR returned an empty response.")
    return text
