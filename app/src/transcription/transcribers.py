"""
Speech-to-text backends.

Each backend exposes ``transcribe(audio, filename=None) -> str`` and
raises ``TranscriptionProviderError`` for provider failures.  Blank
results are returned as-is; deciding what "no speech" means is the
orchestrator's job.

* ``WhisperTranscriber`` – local faster-whisper model (default).
* ``RivaTranscriber``    – NVIDIA Riva cloud ASR over gRPC.
"""

import io
import logging
import os
import subprocess
import tempfile
from typing import Optional

import grpc
import riva.client
from faster_whisper import WhisperModel

from configs.config import get_config
from src.transcription.errors import TranscriptionProviderError

logger = logging.getLogger(__name__)
cfg = get_config()

# gRPC message size: large enough for a full upload
MAX_GRPC_MESSAGE_LENGTH = 64 * 1024 * 1024

# ── Model cache ──────────────────────────────────────────────────────────
_model_cache: dict = {}


def get_model(model_name: str) -> WhisperModel:
    """Return a cached WhisperModel, loading it on first access."""
    if model_name not in _model_cache:
        logger.info("Loading WhisperModel '%s'…", model_name)
        _model_cache[model_name] = WhisperModel(
            model_name,
            device="cpu",
            compute_type="int8",
            cpu_threads=4,
            num_workers=2,
        )
        logger.info("WhisperModel '%s' loaded successfully", model_name)
    return _model_cache[model_name]


class WhisperTranscriber:
    """Transcribe in-process with faster-whisper."""

    def __init__(self, model_name: Optional[str] = None, language: Optional[str] = None) -> None:
        model_name = model_name or cfg.WHISPER_MODEL
        if model_name not in cfg.WHISPER_ALLOWED_MODELS:
            logger.warning(
                "Unknown Whisper model %r, falling back to 'medium'", model_name
            )
            model_name = "medium"
        self.model_name = model_name
        self.language = language

    def transcribe(self, audio: bytes, filename: Optional[str] = None) -> str:
        logger.info(
            "Whisper transcription of %s (%.2f MB) with model %s",
            filename or "audio", len(audio) / (1024 * 1024), self.model_name,
        )
        try:
            model = get_model(self.model_name)
            segments, info = model.transcribe(
                io.BytesIO(audio),
                language=self.language,
                beam_size=5,
                vad_filter=True,
                vad_parameters=dict(min_silence_duration_ms=500),
            )
            text = " ".join(seg.text.strip() for seg in segments).strip()
        except Exception as exc:
            logger.error("Whisper transcription failed: %s", exc, exc_info=True)
            raise TranscriptionProviderError(
                f"Whisper transcription failed: {exc}"
            ) from exc

        logger.info(
            "Whisper returned %d characters (detected language: %s)",
            len(text), info.language,
        )
        return text


# ── Riva ─────────────────────────────────────────────────────────────────


def extract_audio(source_path: str, audio_path: str) -> None:
    """Convert any input to mono 16 kHz WAV."""
    logger.info("Converting %s to %s", source_path, audio_path)
    try:
        subprocess.run(
            [
                "ffmpeg", "-y",
                "-i", source_path,
                "-ac", "1",
                "-ar", "16000",
                "-threads", "4",
                audio_path,
            ],
            check=True,
            capture_output=True,
        )
    except subprocess.CalledProcessError as exc:
        logger.error("Audio conversion failed: %s", exc, exc_info=True)
        raise


class RivaTranscriber:
    """Transcribe through the NVIDIA Riva offline recognition API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        server: Optional[str] = None,
        function_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else cfg.NVIDIA_API_KEY
        self.server = server or cfg.NVIDIA_RIVA_SERVER
        self.function_id = function_id or cfg.NVIDIA_RIVA_FUNCTION_ID
        self.language = language or cfg.RIVA_LANGUAGE

    def _build_service(self):
        if not self.api_key:
            raise TranscriptionProviderError(
                "NVIDIA_API_KEY is not set; cannot reach the Riva API"
            )

        # metadata_args must be List[List[str]] per riva.client.Auth
        metadata = [
            ["function-id", self.function_id],
            ["authorization", f"Bearer {self.api_key}"],
        ]
        options = [
            ("grpc.max_receive_message_length", MAX_GRPC_MESSAGE_LENGTH),
            ("grpc.max_send_message_length", MAX_GRPC_MESSAGE_LENGTH),
        ]
        auth = riva.client.Auth(
            use_ssl=True,
            uri=self.server,
            metadata_args=metadata,
            options=options,
        )
        return riva.client.ASRService(auth)

    def _build_config(self):
        return riva.client.RecognitionConfig(
            language_code=self.language,
            max_alternatives=1,
            profanity_filter=False,
            enable_automatic_punctuation=True,
            verbatim_transcripts=True,
        )

    def transcribe(self, audio: bytes, filename: Optional[str] = None) -> str:
        asr_service = self._build_service()
        config = self._build_config()
        suffix = os.path.splitext(filename or "")[1] or ".m4a"

        with tempfile.TemporaryDirectory() as workdir:
            source_path = os.path.join(workdir, f"input{suffix}")
            wav_path = os.path.join(workdir, "audio.wav")
            with open(source_path, "wb") as fh:
                fh.write(audio)

            try:
                extract_audio(source_path, wav_path)
                riva.client.add_audio_file_specs_to_config(config, wav_path)
                with open(wav_path, "rb") as fh:
                    audio_data = fh.read()

                logger.info(
                    "Sending %.1f MB to Riva (%s)",
                    len(audio_data) / (1024 * 1024), self.language,
                )
                response = asr_service.offline_recognize(audio_data, config)
            except grpc.RpcError as exc:
                logger.error("Riva gRPC error: %s", exc.details())
                raise TranscriptionProviderError(
                    f"Riva gRPC error: {exc.details()}"
                ) from exc
            except subprocess.CalledProcessError as exc:
                raise TranscriptionProviderError(
                    f"Riva audio conversion failed: {exc}"
                ) from exc

        text = " ".join(
            res.alternatives[0].transcript.strip()
            for res in response.results
            if len(res.alternatives) > 0
        ).strip()
        logger.info("Riva returned %d results", len(response.results))
        return text


def build_transcriber(backend: Optional[str] = None):
    """Instantiate the configured speech-to-text backend."""
    backend = (backend or cfg.TRANSCRIPTION_BACKEND).lower()
    if backend == "riva":
        return RivaTranscriber()
    if backend == "whisper":
        return WhisperTranscriber()
    raise ValueError(f"Unknown transcription backend: {backend}")
