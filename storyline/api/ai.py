"""
AI proxy API.

- POST /api/ai/tts: text to base64 mp3
- POST /api/ai/transcribe: base64 audio to text
- POST /api/ai/scrape: job posting URL to description/company fields

Upstream failures map to 502 with the provider's message.
"""
from typing import Any, Dict, Optional
import base64
import binascii

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storyline.core.auth import CurrentUser, get_current_user
from storyline.core.errors import UpstreamError, ValidationError
from storyline.features.ai import service as ai_service


router = APIRouter(prefix="/api/ai", tags=["ai"])


class TTSRequest(BaseModel):
    text: str = Field(min_length=1, max_length=ai_service.MAX_TTS_CHARS)
    voice: Optional[str] = None


class TTSResponse(BaseModel):
    audio_content: str
    mime_type: str


class TranscribeRequest(BaseModel):
    audio_base64: str = Field(min_length=1)
    filename: str = "recording.webm"


class TranscribeResponse(BaseModel):
    text: str


class ScrapeRequest(BaseModel):
    url: str = Field(min_length=1)


def _unwrap(result: "ai_service.AIResult") -> Any:
    if not result.success:
        raise UpstreamError(result.error or "AI provider error")
    return result.data


@router.post("/tts", response_model=TTSResponse)
def text_to_speech(body: TTSRequest, user: CurrentUser = Depends(get_current_user)):
    return _unwrap(ai_service.text_to_speech(body.text, body.voice))


@router.post("/transcribe", response_model=TranscribeResponse)
def transcribe(body: TranscribeRequest, user: CurrentUser = Depends(get_current_user)):
    try:
        audio = base64.b64decode(body.audio_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("audio_base64 is not valid base64")
    return TranscribeResponse(text=_unwrap(ai_service.transcribe_audio(audio, body.filename)))


@router.post("/scrape")
def scrape(body: ScrapeRequest, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    data = _unwrap(ai_service.scrape_job_page(body.url))
    return {"success": True, **data}
