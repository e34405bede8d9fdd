"""
AI proxy operations.

Each operation returns an AIResult and never raises across this boundary:
callers (credit deduction, practice creation) decide what a failure means.
"""
from typing import Any, Dict, Generic, List, Optional, TypeVar
import base64
import logging
import re

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError
import httpx

from storyline.core.metrics import ai_calls_total
from storyline.features.ai import prompts
from storyline.features.ai.client import (
    AIClientError,
    AIResponseFormatError,
    chat_json,
    chat_text,
    firecrawl_scrape,
    speech,
    transcription,
)
from storyline.models.answer import QUESTIONS_PER_PRACTICE
from storyline.models.feedback import parse_feedback
from storyline.models.guidance import GuidedAction, GuidedDraft, GuidingQuestions, VaultQuestion

logger = logging.getLogger(__name__)

MAX_TTS_CHARS = 4000
MIN_EXTRACTED_DESCRIPTION = 100
_SUSPICIOUS_COMPANY = ("careers", "jobs", "com", "www", "http")

T = TypeVar("T")


class AIResult(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True)

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


def _ok(operation: str, data: Any) -> AIResult:
    ai_calls_total.inc(labels={"operation": operation, "outcome": "success"})
    return AIResult(success=True, data=data)


def _fail(operation: str, error: str) -> AIResult:
    ai_calls_total.inc(labels={"operation": operation, "outcome": "error"})
    logger.warning("[ai] call failed", extra={"operation": operation, "error_message": error})
    return AIResult(success=False, error=error)


def generate_questions(
    job_title: str,
    job_description: str,
    *,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
    resume_text: Optional[str] = None,
    count: int = QUESTIONS_PER_PRACTICE,
    client: Optional[OpenAI] = None,
) -> AIResult[List[str]]:
    """Generate `count` behavioral questions tailored to the job."""
    try:
        payload = chat_json(
            prompts.questions_system_prompt(job_title, count, company_name, company_description),
            prompts.questions_user_prompt(job_title, job_description, company_name, resume_text),
            client=client,
        )
    except AIClientError as e:
        return _fail("generate_questions", str(e))

    raw = payload.get("questions")
    if not isinstance(raw, list):
        return _fail("generate_questions", "OpenAI did not return the expected data structure")
    questions = []
    for item in raw:
        # Accept both bare strings and {"question": ...} objects
        text = item.get("question") if isinstance(item, dict) else item
        if isinstance(text, str) and text.strip():
            questions.append(text.strip())
    if len(questions) < count:
        return _fail("generate_questions", f"Expected {count} questions, got {len(questions)}")
    return _ok("generate_questions", questions[:count])


def generate_answer_feedback(
    question: str,
    answer_text: str,
    *,
    question_type: Optional[str] = "behavioral",
    job_title: Optional[str] = None,
    company_name: Optional[str] = None,
    job_description: Optional[str] = None,
    client: Optional[OpenAI] = None,
) -> AIResult[Any]:
    """Evaluate one answer. data is a LegacyFeedback or EnhancedFeedback."""
    if not answer_text or not answer_text.strip():
        return _fail("generate_answer_feedback", "Answer text is required")
    try:
        payload = chat_json(
            prompts.feedback_system_prompt(question, question_type, job_title, company_name, job_description),
            prompts.feedback_user_prompt(question, answer_text),
            temperature=0.1,
            client=client,
        )
    except AIClientError as e:
        return _fail("generate_answer_feedback", str(e))

    if "competencyFocus" not in payload and "scoreBreakdown" in payload:
        payload["competencyFocus"] = prompts.detect_competency(question)
    try:
        feedback = parse_feedback(payload)
    except PydanticValidationError as e:
        return _fail("generate_answer_feedback", f"Invalid feedback structure: {e.error_count()} errors")
    return _ok("generate_answer_feedback", feedback)


def generate_question_vault(
    job_title: str,
    *,
    job_description: Optional[str] = None,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
    resume_text: Optional[str] = None,
    cover_letter_text: Optional[str] = None,
    count: int = QUESTIONS_PER_PRACTICE,
    client: Optional[OpenAI] = None,
) -> AIResult[List[VaultQuestion]]:
    """Prep questions with explanations, STAR model answers and follow-ups."""
    if not job_title:
        return _fail("generate_question_vault", "Job title is required")
    try:
        payload = chat_json(
            prompts.vault_system_prompt(job_title, company_name, company_description, job_description),
            prompts.vault_user_prompt(count, company_name, resume_text, cover_letter_text),
            max_tokens=4000,
            client=client,
        )
    except AIClientError as e:
        return _fail("generate_question_vault", str(e))

    raw = payload.get("behavioralQuestions")
    if not isinstance(raw, list):
        raw = payload.get("questions")
    if not isinstance(raw, list):
        return _fail("generate_question_vault", "OpenAI did not return the expected data structure")
    questions = []
    for item in raw:
        if isinstance(item, str):
            item = {"question": item}
        if not isinstance(item, dict):
            continue
        try:
            question = VaultQuestion.model_validate({**item, "type": "generated"})
        except PydanticValidationError:
            logger.info("[ai] skipping malformed vault question", exc_info=True)
            continue
        if question.question.strip():
            questions.append(question)
    if not questions:
        return _fail("generate_question_vault", "No usable questions in response")
    return _ok("generate_question_vault", questions[:count])


def generate_guiding_questions(
    question_text: str,
    question_type: Optional[str] = "behavioral",
    *,
    user_input: Optional[str] = None,
    resume_text: Optional[str] = None,
    feedback: Optional[Any] = None,
    client: Optional[OpenAI] = None,
) -> AIResult[GuidingQuestions]:
    """
    Five coaching questions that help the user draft an answer.

    An unparseable model reply falls back to question-like lines in the
    text, then to a default set; only transport failures are errors.
    """
    if not question_text:
        return _fail("generate_guiding_questions", "Question text is required")
    question_type = question_type or "behavioral"
    system = prompts.GUIDING_QUESTIONS_SYSTEM_PROMPT
    user = prompts.guiding_questions_user_prompt(
        question_text, question_type, user_input, resume_text, _feedback_parts(feedback)
    )

    fallback = False
    try:
        payload = chat_json(system, user, temperature=0.7, max_tokens=1000, client=client)
        guiding = _string_list(payload.get("guidingQuestions"))
    except AIResponseFormatError as e:
        guiding = _question_lines(e.raw)
    except AIClientError as e:
        return _fail("generate_guiding_questions", str(e))

    if len(guiding) < 3:
        guiding = list(prompts.DEFAULT_GUIDING_QUESTIONS)
        fallback = True
    return _ok(
        "generate_guiding_questions",
        GuidingQuestions(
            guiding_questions=guiding,
            question_type=question_type,
            structure=prompts.structure_for(question_type),
            fallback=fallback,
        ),
    )


# Applied in order; each strips at most one leading phrase
_INTRO_PREFIXES = (
    re.compile(r"^(Sure|Certainly|Absolutely|Of course)!\s*", re.IGNORECASE),
    re.compile(r"^(Here'?s|Here is|Below is|Following is)\s+", re.IGNORECASE),
    re.compile(
        r"^((a|an|the|your|my)\s+)?"
        r"((slightly|enhanced|improved|updated|revised|refined|polished|clearer|better|more|structured)\s+)+"
        r"(version|response|answer|draft)(\s+of your (response|answer|thoughts))?\s*:\s*",
        re.IGNORECASE,
    ),
    re.compile(r"^(Response|Answer|Suggestion|Improvement|Enhancement)\s*:\s*", re.IGNORECASE),
)


def strip_intro(text: str, original: str) -> str:
    """Drop a leading 'Here's your answer:' style phrase and wrapping quotes."""
    cleaned = text.strip()
    for pattern in _INTRO_PREFIXES:
        cleaned = pattern.sub("", cleaned, count=1).strip()
    if len(cleaned) < 10:
        cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned or original


def refine_guided_response(
    question_text: str,
    user_thoughts: str,
    *,
    question_type: Optional[str] = "behavioral",
    previous_response: Optional[str] = None,
    feedback: Optional[Any] = None,
    client: Optional[OpenAI] = None,
) -> AIResult[GuidedDraft]:
    """Turn the user's raw thoughts into a modestly improved answer draft."""
    if not user_thoughts or not user_thoughts.strip():
        return _fail("refine_guided_response", "User thoughts are required")
    question_type = question_type or "behavioral"
    parts = _feedback_parts(feedback) if previous_response else None
    words = len(user_thoughts.split())
    max_words = min(max(round(words * prompts.refine_target_multiplier(bool(previous_response))), 75), 200)
    try:
        text = chat_text(
            prompts.refine_system_prompt(bool(previous_response), parts is not None),
            prompts.refine_user_prompt(question_text, question_type, user_thoughts, previous_response, parts, max_words),
            temperature=0.4,
            max_tokens=700,
            client=client,
        )
    except AIClientError as e:
        return _fail("refine_guided_response", str(e))
    if not text:
        return _fail("refine_guided_response", "Empty response from OpenAI")

    draft = strip_intro(text, user_thoughts)
    if parts is not None:
        message = "Your response has been improved based on previous feedback and your new thoughts."
    else:
        message = (
            "Your response has been incrementally improved based on your thoughts. "
            "Continue refining for a stronger answer."
        )
    return _ok("refine_guided_response", GuidedDraft(generated_response=draft, feedback=message))


def guided_response(
    action: GuidedAction,
    question_text: str,
    *,
    question_type: Optional[str] = "behavioral",
    user_input: Optional[str] = None,
    resume_text: Optional[str] = None,
    previous_response: Optional[str] = None,
    feedback: Optional[Any] = None,
    client: Optional[OpenAI] = None,
) -> AIResult[Any]:
    """Guiding questions or a refined draft, depending on `action`."""
    if action is GuidedAction.GENERATE_QUESTIONS:
        return generate_guiding_questions(
            question_text,
            question_type,
            user_input=user_input or previous_response,
            resume_text=resume_text,
            feedback=feedback,
            client=client,
        )
    return refine_guided_response(
        question_text,
        user_input or "",
        question_type=question_type,
        previous_response=previous_response,
        feedback=feedback,
        client=client,
    )


def _feedback_parts(feedback: Any):
    """(pros, cons, suggestions) from stored feedback, or None when there is nothing to use."""
    if feedback is None:
        return None
    pros = list(getattr(feedback, "pros", None) or [])
    cons = list(getattr(feedback, "cons", None) or [])
    suggestions = getattr(feedback, "improvement_suggestions", None) or getattr(feedback, "suggestions", None)
    if not (pros or cons or suggestions):
        return None
    return pros, cons, suggestions


def _string_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [item.strip() for item in raw if isinstance(item, str) and item.strip()]


def _question_lines(raw: Optional[str]) -> List[str]:
    lines = (line.strip().lstrip("-*0123456789. )").strip() for line in (raw or "").splitlines())
    return [line for line in lines if line.endswith("?") and len(line) > 10][:5]


def text_to_speech(text: str, voice: Optional[str] = None, *, client: Optional[OpenAI] = None) -> AIResult[Dict[str, str]]:
    if not text:
        return _fail("text_to_speech", "Text is required")
    if len(text) > MAX_TTS_CHARS:
        return _fail("text_to_speech", f"Text is too long (max {MAX_TTS_CHARS} characters)")
    try:
        audio = speech(text, voice, client=client)
    except AIClientError as e:
        return _fail("text_to_speech", str(e))
    return _ok(
        "text_to_speech",
        {"audio_content": base64.b64encode(audio).decode("ascii"), "mime_type": "audio/mp3"},
    )


def transcribe_audio(audio: bytes, filename: str = "recording.webm", *, client: Optional[OpenAI] = None) -> AIResult[str]:
    if not audio:
        return _fail("transcribe_audio", "Audio is required")
    try:
        text = transcription(audio, filename, client=client)
    except AIClientError as e:
        return _fail("transcribe_audio", str(e))
    if not text:
        return _fail("transcribe_audio", "No transcription text received")
    return _ok("transcribe_audio", text)


def clean_markdown(markdown: str) -> str:
    text = re.sub(r"#{1,6}\s", "", markdown)
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    text = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", text)
    text = re.sub(r"`(.*?)`", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _company_from_metadata(metadata: Dict[str, Any]) -> str:
    name = metadata.get("ogTitle") or metadata.get("title") or ""
    name = re.sub(r"\s*-\s*.*(job|position|role|career|hiring).*$", "", name, flags=re.IGNORECASE)
    name = re.sub(r"^.*(at|@)\s+", "", name, flags=re.IGNORECASE)
    return name.strip()


def _extract_structured(content: str, client: Optional[OpenAI]) -> Optional[Dict[str, str]]:
    if len(content) < MIN_EXTRACTED_DESCRIPTION:
        return None
    try:
        extracted = chat_json(None, prompts.scrape_extraction_prompt(content), temperature=0.1, max_tokens=2000, client=client)
    except AIClientError:
        logger.info("[ai] structured job extraction unavailable", exc_info=True)
        return None

    title = (extracted.get("jobTitle") or "").strip()
    company = (extracted.get("companyName") or "").strip()
    description = (extracted.get("jobDescription") or "").strip()
    if not title or not company or len(description) < MIN_EXTRACTED_DESCRIPTION:
        return None
    if any(marker in company.lower() for marker in _SUSPICIOUS_COMPANY):
        return None
    return {
        "job_title": title,
        "company_name": company,
        "job_description": description,
        "company_description": (extracted.get("companyDescription") or "").strip(),
    }


def scrape_job_page(
    url: str,
    *,
    http_client: Optional[httpx.Client] = None,
    client: Optional[OpenAI] = None,
    extract: bool = True,
) -> AIResult[Dict[str, Any]]:
    """
    Scrape a job posting.

    data carries the cleaned page text plus, when the LLM extraction
    succeeds, an `extracted` block with title, company and description.
    """
    if not url:
        return _fail("scrape_job_page", "URL is required")
    try:
        page = firecrawl_scrape(url, http_client=http_client)
    except AIClientError as e:
        return _fail("scrape_job_page", str(e))

    markdown = page.get("markdown") or ""
    metadata = page.get("metadata") or {}
    data: Dict[str, Any] = {
        "job_description": clean_markdown(markdown) or None,
        "company_name": _company_from_metadata(metadata) or None,
        "company_description": metadata.get("ogDescription") or metadata.get("description") or None,
        "extracted": None,
    }
    if extract and markdown:
        data["extracted"] = _extract_structured(markdown, client)
    return _ok("scrape_job_page", data)

