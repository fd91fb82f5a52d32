"""
Audio API Router - synchronous narration audio conversion.
"""

import base64
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from app.auth import verify_api_key
from app.errors import ExternalToolFailed
from app.schemas.responses import PcmToMp3Response
from app.services.audio_converter import pcm_to_mp3

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audio", tags=["Audio"])


@router.post("/pcm-to-mp3", response_model=PcmToMp3Response)
async def convert_pcm_to_mp3(
    file: UploadFile = File(..., description="Raw s16le PCM, 24 kHz mono"),
    _: None = Depends(verify_api_key),
) -> PcmToMp3Response:
    """Convert raw speech-synthesizer PCM to MP3 and return it base64-encoded."""
    pcm = await file.read()

    try:
        mp3 = await pcm_to_mp3(pcm)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExternalToolFailed as e:
        logger.error(f"PCM conversion failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Could not convert audio",
        )

    return PcmToMp3Response(
        audio_base64=base64.b64encode(mp3).decode("ascii"),
        size_bytes=len(mp3),
    )
