"""Decoders turning activity file bytes into metadata."""

from .base import Decoder, NullDecoder

__all__ = ["Decoder", "NullDecoder"]
