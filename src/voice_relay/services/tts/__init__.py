"""
TTS (Text-to-Speech) Services Package.

This package contains modules for the streaming speech pipeline:

- text_segmenter: Groups streaming LLM deltas into sentences for synthesis
- chunk_transmitter: Paces synthesized audio onto the caller's channel

Architecture Overview:

    ┌─────────────┐     ┌───────────────────┐     ┌─────────────┐
    │ LLM Stream  │────▶│ SentenceSegmenter │────▶│ TTSService  │
    └─────────────┘     └───────────────────┘     └─────────────┘
                                                         │
                                                         ▼
                                                ┌──────────────────┐
                                                │ ChunkTransmitter │
                                                └──────────────────┘
                                                         │
                                                         ▼
                                                  ┌─────────────┐
                                                  │  WebSocket  │
                                                  └─────────────┘

The pipeline is designed for minimal time-to-first-audio:
1. SentenceSegmenter emits a sentence as soon as terminal punctuation arrives
2. The sentence is synthesized while the model keeps streaming text
3. Audio is sliced into 4 KiB binary frames and paced onto the socket
4. Every step re-checks the session epoch so barge-in silences stale replies
"""

from .chunk_transmitter import ChunkTransmitter, iter_chunks
from .text_segmenter import SentenceSegmenter

__all__ = ["ChunkTransmitter", "SentenceSegmenter", "iter_chunks"]
