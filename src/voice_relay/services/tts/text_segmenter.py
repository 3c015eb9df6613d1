"""
Sentence Segmenter for the Streaming Speech Pipeline.

This module groups streamed language-model deltas into complete sentences
so each one can be synthesized as soon as it is finished.

Architecture:
    Generator deltas → SentenceSegmenter.feed() → synthesis per sentence

A sentence is complete when the accumulated buffer ends in terminal
punctuation (``.``, ``!`` or ``?``), optionally followed by whitespace. The
check is made against the whole buffer after each delta, so punctuation in
the middle of a delta does not split it.

Usage:
    segmenter = SentenceSegmenter()

    # During generation:
    async for delta in generator.stream(prompt, transcript):
        for sentence in segmenter.feed(delta):
            await speak(sentence)

    # After the stream ends:
    final = segmenter.flush()
    if final:
        await speak(final)
"""

import re
from typing import Iterator, Optional


class SentenceSegmenter:
    """
    Stateful, single-use sentence accumulator for one generation.

    The segmenter is owned by exactly one GenerationStream and is discarded
    with it. Once ``flush()`` has been called it is closed and refuses
    further input.
    """

    TERMINAL_PATTERN = re.compile(r"[.!?]\s*$")

    def __init__(self) -> None:
        self._buffer = ""
        self._closed = False
        self._sentences_emitted = 0

    def feed(self, delta: str) -> Iterator[str]:
        """
        Append a delta and yield the buffered sentence if it is now complete.

        Args:
            delta: Text delta from the generator stream

        Yields:
            At most one completed sentence, stripped of surrounding whitespace
        """
        if self._closed:
            raise RuntimeError("SentenceSegmenter has already been flushed")
        if not delta:
            return

        self._buffer += delta
        if not self.TERMINAL_PATTERN.search(self._buffer):
            return

        sentence = self._take()
        if sentence:
            yield sentence

    def flush(self) -> Optional[str]:
        """
        Emit any remaining text and close the segmenter.

        Returns:
            The remaining text if non-blank, None otherwise
        """
        self._closed = True
        return self._take() or None

    def _take(self) -> str:
        sentence = self._buffer.strip()
        self._buffer = ""
        if sentence:
            self._sentences_emitted += 1
        return sentence

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sentences_emitted(self) -> int:
        """Number of sentences emitted so far, including the flushed one."""
        return self._sentences_emitted

    @property
    def buffer_size(self) -> int:
        """Current buffer size in characters."""
        return len(self._buffer)
