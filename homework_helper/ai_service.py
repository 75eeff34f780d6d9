import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

import openai
from openai import OpenAI
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from . import config, prompts
from .errors import ParseError, UpstreamCallError, UpstreamConfigError
from .schemas import CorrectionVerdict, KnowledgeSummary, OcrResult, PracticeSheet

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

OCR_MAX_TOKENS = 4096
CORRECTION_MAX_TOKENS = 2048
GENERATION_MAX_TOKENS = 4096


def get_client() -> OpenAI:
    api_key = config.llm_api_key()
    if not api_key:
        logger.warning("LLM client not initialized: missing API key")
        raise UpstreamConfigError("AI service is not configured")
    # No automatic retries; callers re-invoke explicitly.
    return OpenAI(
        api_key=api_key,
        base_url=config.llm_base_url(),
        timeout=config.llm_timeout_sec(),
        max_retries=0,
    )


def complete(model: str, messages: List[Dict[str, Any]], max_tokens: int) -> str:
    """One blocking chat completion; returns the reply text."""
    client = get_client()
    try:
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
        )
    except openai.APIError as e:
        logger.error(f"Model call failed ({model}): {e}")
        raise UpstreamCallError(f"Model call failed: {e}") from e

    if not response.choices:
        raise UpstreamCallError("Model returned no choices")
    content = response.choices[0].message.content
    if not isinstance(content, str) or not content.strip():
        raise UpstreamCallError("Model returned an empty reply")
    return content


def clean_json_response(content: str) -> str:
    """Removes markdown code blocks if present."""
    match = re.search(r'```json\s*([\s\S]*?)\s*```', content)
    if match:
        return match.group(1).strip()

    match = re.search(r'```\s*([\s\S]*?)\s*```', content)
    if match:
        return match.group(1).strip()

    return content.strip()


def _first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pulls one JSON object out of free-form model text.
    Tries the first '{' through the last '}' and falls back to the first balanced span.
    """
    cleaned = clean_json_response(text or "")
    candidates = []
    first, last = cleaned.find("{"), cleaned.rfind("}")
    if first != -1 and last > first:
        candidates.append(cleaned[first:last + 1])
    balanced = _first_balanced_object(cleaned)
    if balanced and balanced not in candidates:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    logger.error(f"No JSON object found in model reply: {text!r}")
    raise ParseError("Model reply did not contain a JSON object", raw_text=text or "")


def parse_model_reply(text: str, schema: Type[T]) -> T:
    data = extract_json_object(text)
    try:
        return schema.model_validate(data)
    except SchemaValidationError as e:
        logger.error(f"Model reply failed {schema.__name__} validation: {e}; raw={text!r}")
        raise ParseError(f"Model reply failed validation: {schema.__name__}", raw_text=text) from e


# ==========================================
# OCR
# ==========================================

def run_ocr(image_data_url: str) -> Tuple[str, OcrResult]:
    """Returns the raw reply text and the validated recognition result."""
    messages = [
        {"role": "system", "content": prompts.OCR_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompts.build_ocr_user_prompt()},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
        },
    ]
    text = complete(config.ocr_model(), messages, OCR_MAX_TOKENS)
    logger.info(f"OCR reply received ({len(text)} chars)")
    return text, parse_model_reply(text, OcrResult)


# ==========================================
# GRADING
# ==========================================

def grade_question(subject: str, question_type: str, content: str, student_answer: str) -> CorrectionVerdict:
    messages = [
        {"role": "system", "content": prompts.CORRECTION_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": prompts.build_correction_user_prompt(subject, question_type, content, student_answer),
        },
    ]
    text = complete(config.text_model(), messages, CORRECTION_MAX_TOKENS)
    return parse_model_reply(text, CorrectionVerdict)


# ==========================================
# GENERATION
# ==========================================

def generate_practice_sheet(mistakes: Sequence, question_count: int) -> PracticeSheet:
    prompt = prompts.build_practice_prompt(mistakes, question_count)
    text = complete(config.text_model(), [{"role": "user", "content": prompt}], GENERATION_MAX_TOKENS)
    return parse_model_reply(text, PracticeSheet)


def summarize_knowledge_point(name: str, subject: str, mistakes: Sequence) -> KnowledgeSummary:
    messages = [
        {"role": "system", "content": prompts.KNOWLEDGE_EXTRACTION_PROMPT},
        {"role": "user", "content": prompts.build_knowledge_prompt(name, subject, mistakes)},
    ]
    text = complete(config.text_model(), messages, GENERATION_MAX_TOKENS)
    return parse_model_reply(text, KnowledgeSummary)
