"""
FastAPI routers for the assembler.
"""

from app.routers import audio, health, pipeline

__all__ = ["health", "pipeline", "audio"]
