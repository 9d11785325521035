"""Sentence segmentation for streaming replies into speech.

Streamed model output is buffered until it contains complete sentences;
the complete-sentence prefix is handed to playback while the rest keeps
waiting for more fragments.
"""

from __future__ import annotations

import re

# Last run of terminators in the buffer; everything up to it is complete.
_LAST_TERMINATOR_RE = re.compile(r"[.!?]+(?!.*[.!?])", re.DOTALL)


def split_complete_sentences(buffer: str) -> tuple[str, str]:
    """Split ``buffer`` into its longest complete-sentence prefix and the rest.

    The split is lossless: ``complete + remainder == buffer``. A run of marks
    such as ``"?!"`` or ``"..."`` stays together in the complete part.

    Returns:
        ``(complete, remainder)``; ``complete`` is empty when the buffer holds
        no sentence-terminating mark.
    """
    match = _LAST_TERMINATOR_RE.search(buffer)
    if match is None:
        return "", buffer
    end = match.end()
    return buffer[:end], buffer[end:]
