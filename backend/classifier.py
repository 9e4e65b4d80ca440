import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from dotenv import load_dotenv
load_dotenv()
import json
import logging
import os
import re

from errors import ClassificationParseError, ClassificationServiceError, InvalidBin
from schemas import BINS, Classification, ContaminationResult

logger = logging.getLogger(__name__)

# ── Gemini Vision API Configuration ──
# Set your API key as an environment variable: GEMINI_API_KEY
# Get a free key at: https://aistudio.google.com/apikey
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
CLASSIFIER_TIMEOUT = float(os.getenv("CLASSIFIER_TIMEOUT", "30"))

_gemini_model = None

WASTE_PROMPT = """You are an expert in waste management and recycling. Analyze this image and provide:
1. The type of waste (e.g., plastic, paper, glass, metal, organic, etc.)
2. An estimate of the quantity or amount (in kg or lb or liters)
3. Your confidence level in this assessment (as a number between 0 and 1)
4. The bin it goes in (choose from: recyclables, landfill, organics)

DO NOT ENTER ANY OTHER WORDS FOR THE QUANTITY. ONLY 10 kg or 0.5 kg things like that, or a range like 0.5-10 kg.

Respond in JSON format like this:
{
  "wasteType": "type of waste",
  "quantity": "estimated quantity with unit",
  "confidence": confidence level as a number between 0 and 1,
  "bin": "bin name"
}
"""

CONTAMINATION_PROMPT = """You are an expert in waste management and recycling. The user is assessing contamination for the "{bin}" bin. Analyze the image and estimate:
1) contaminationPercentage: the fraction of visible items that do NOT belong in the "{bin}" bin (a number between 0 and 1)
2) contaminationSummary: a short sentence (max 20 words) describing the main contaminants
Optionally include:
3) confidence: number between 0 and 1
4) wasteType: overall dominant waste type
5) quantity: estimated quantity with unit

Respond in pure JSON:
{{
  "contaminationPercentage": number,
  "contaminationSummary": "short description",
  "confidence": number,
  "wasteType": "string",
  "quantity": "string"
}}
"""

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _get_gemini_model():
    """Lazy-load and cache the Gemini model."""
    global _gemini_model
    if not GEMINI_API_KEY:
        raise ClassificationServiceError("GEMINI_API_KEY is not configured")
    if _gemini_model is None:
        genai.configure(api_key=GEMINI_API_KEY)
        _gemini_model = genai.GenerativeModel(GEMINI_MODEL)
    return _gemini_model


def _generate(prompt: str, image_bytes: bytes, mime_type: str) -> str:
    """Send one prompt plus the inline image, return the reply text."""
    model = _get_gemini_model()
    try:
        response = model.generate_content(
            [prompt, {"mime_type": mime_type, "data": image_bytes}],
            generation_config=genai.types.GenerationConfig(
                temperature=0.1,
                max_output_tokens=500,
            ),
            request_options={"timeout": CLASSIFIER_TIMEOUT},
        )
    except google_exceptions.DeadlineExceeded as e:
        raise ClassificationServiceError(f"Classification timed out after {CLASSIFIER_TIMEOUT:g}s") from e
    except Exception as e:
        logger.error("[Gemini AI] Request failed: %s", e)
        raise ClassificationServiceError(f"Classification service failed: {e}") from e

    try:
        return response.text
    except ValueError as e:
        # Blocked or empty candidates carry no text part
        raise ClassificationParseError("Model reply contained no text") from e


def strip_code_fences(text: str) -> str:
    text = text.strip()
    match = _FENCE.match(text)
    return match.group(1) if match else text


def parse_reply(text: str) -> dict:
    try:
        parsed = json.loads(strip_code_fences(text))
    except (TypeError, ValueError) as e:
        raise ClassificationParseError("Model reply is not valid JSON") from e
    if not isinstance(parsed, dict):
        raise ClassificationParseError("Model reply is not a JSON object")
    return parsed


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _required_text(parsed: dict, key: str) -> str:
    value = parsed.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ClassificationParseError(f"Missing or invalid '{key}' in model reply")
    return value.strip()


def _required_fraction(parsed: dict, key: str) -> float:
    value = parsed.get(key)
    if not _is_number(value) or not 0 <= value <= 1:
        raise ClassificationParseError(f"'{key}' must be a number between 0 and 1")
    return float(value)


def parse_classification(text: str) -> Classification:
    parsed = parse_reply(text)
    bin_name = _required_text(parsed, "bin").lower()
    if bin_name not in BINS:
        raise ClassificationParseError(f"Unknown bin '{bin_name}'")

    return Classification(
        waste_type=_required_text(parsed, "wasteType"),
        quantity=_required_text(parsed, "quantity"),
        confidence=_required_fraction(parsed, "confidence"),
        bin=bin_name,
    )


def parse_contamination(text: str, target_bin: str) -> ContaminationResult:
    parsed = parse_reply(text)
    result = ContaminationResult(
        target_bin=target_bin,
        contamination_percentage=_required_fraction(parsed, "contaminationPercentage"),
        contamination_summary=_required_text(parsed, "contaminationSummary"),
    )

    # Optional extras are kept only when well-typed
    confidence = parsed.get("confidence")
    if _is_number(confidence) and 0 <= confidence <= 1:
        result.confidence = float(confidence)
    for key, field in (("wasteType", "waste_type"), ("quantity", "quantity")):
        value = parsed.get(key)
        if isinstance(value, str) and value.strip():
            setattr(result, field, value.strip())
    return result


# ── Main Entry Points ──

def classify(image_bytes: bytes, mime_type: str) -> Classification:
    """Waste type, quantity, confidence and bin for one photo."""
    result = parse_classification(_generate(WASTE_PROMPT, image_bytes, mime_type))
    logger.info("[Gemini AI] %s, %s -> %s (%.0f%% confidence)",
                result.waste_type, result.quantity, result.bin, result.confidence * 100)
    return result


def classify_contamination(image_bytes: bytes, mime_type: str, target_bin: str) -> ContaminationResult:
    """Fraction of items in a photo of `target_bin` that do not belong there."""
    target_bin = (target_bin or "").strip().lower()
    if target_bin not in BINS:
        raise InvalidBin(f"Unknown bin '{target_bin}'")

    prompt = CONTAMINATION_PROMPT.format(bin=target_bin)
    result = parse_contamination(_generate(prompt, image_bytes, mime_type), target_bin)
    logger.info("[Gemini AI] %s bin contamination %.0f%%", target_bin, result.contamination_percentage * 100)
    return result
