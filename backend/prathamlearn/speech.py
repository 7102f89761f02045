"""Google Cloud speech helpers for the non-realtime voice fallbacks."""

from __future__ import annotations

import logging
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import speech_v1p1beta1 as speech
from google.cloud import texttospeech

from .errors import UpstreamGenerationFailed
from .settings import settings

logger = logging.getLogger(__name__)

_ENCODINGS = {
    "audio/webm": speech.RecognitionConfig.AudioEncoding.WEBM_OPUS,
    "audio/ogg": speech.RecognitionConfig.AudioEncoding.OGG_OPUS,
    "audio/wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/x-wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/flac": speech.RecognitionConfig.AudioEncoding.FLAC,
    "audio/mpeg": speech.RecognitionConfig.AudioEncoding.MP3,
}
_OPUS = (speech.RecognitionConfig.AudioEncoding.WEBM_OPUS, speech.RecognitionConfig.AudioEncoding.OGG_OPUS)


def language_code_for(lang: Optional[str]) -> str:
    return settings.speech_language_hi if lang == "hi" else settings.speech_language_en


def transcribe_audio(content: bytes, mime_type: Optional[str], lang: Optional[str] = None) -> str:
    """Recognize a short clip and return the joined best transcript."""
    base_mime = (mime_type or "").split(";")[0].strip().lower()
    encoding = _ENCODINGS.get(base_mime, speech.RecognitionConfig.AudioEncoding.ENCODING_UNSPECIFIED)
    config = speech.RecognitionConfig(
        encoding=encoding,
        language_code=language_code_for(lang),
        enable_automatic_punctuation=True,
        model="default",
    )
    if encoding in _OPUS:
        config.sample_rate_hertz = 48000
    try:
        client = speech.SpeechClient()
        response = client.recognize(config=config, audio=speech.RecognitionAudio(content=content))
    except (GoogleAPIError, GoogleAuthError) as e:
        logger.warning("[VOICE] Transcription failed: %s", e)
        raise UpstreamGenerationFailed("transcription failed") from e
    return " ".join(r.alternatives[0].transcript.strip() for r in response.results if r.alternatives).strip()


def synthesize_speech(text: str, lang: Optional[str] = None, voice_name: Optional[str] = None) -> bytes:
    """Render text as MP3 audio."""
    language_code = language_code_for(lang)
    voice_name = voice_name or settings.tts_voice_name
    if voice_name:
        voice = texttospeech.VoiceSelectionParams(language_code=language_code, name=voice_name)
    else:
        voice = texttospeech.VoiceSelectionParams(
            language_code=language_code,
            ssml_gender=texttospeech.SsmlVoiceGender.FEMALE,
        )
    audio_config = texttospeech.AudioConfig(
        audio_encoding=texttospeech.AudioEncoding.MP3,
        # Slightly slower for young listeners
        speaking_rate=0.92,
    )
    try:
        client = texttospeech.TextToSpeechClient()
        response = client.synthesize_speech(
            input=texttospeech.SynthesisInput(text=text),
            voice=voice,
            audio_config=audio_config,
        )
    except (GoogleAPIError, GoogleAuthError) as e:
        logger.warning("[VOICE] TTS failed: %s", e)
        raise UpstreamGenerationFailed("tts failed") from e
    return response.audio_content
