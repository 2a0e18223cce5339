"""Subtitle timeline lookups."""

from __future__ import annotations

from typing import Sequence, Tuple

from domain.captions import Subtitle, Word

WORD_WINDOW_TOLERANCE_SECONDS = 0.1


class SubtitleTimeline:
    """Subtitles in file order with optional word-level timing."""

    def __init__(
        self, subtitles: Sequence[Subtitle], words: Sequence[Word] = ()
    ) -> None:
        self.subtitles: Tuple[Subtitle, ...] = tuple(subtitles)
        self.words: Tuple[Word, ...] = tuple(
            sorted(words, key=lambda word: word.start_seconds)
        )

    def active_at(self, timestamp: float) -> Subtitle | None:
        """Return the first subtitle whose interval contains timestamp.

        Subtitles are walked in the order they were given, not re-sorted, so
        when intervals overlap the one listed first in the file wins.
        """
        for subtitle in self.subtitles:
            if subtitle.contains(timestamp):
                return subtitle
        return None

    def words_for(
        self,
        subtitle: Subtitle,
        tolerance_seconds: float = WORD_WINDOW_TOLERANCE_SECONDS,
    ) -> Tuple[Word, ...]:
        """Words spoken during the subtitle.

        A word belongs to the subtitle when its midpoint lies within the
        window widened by tolerance, or when it overlaps the exact window by
        more than tolerance. A neighbouring subtitle's word that only grazes
        the widened edge is left out.
        """
        window_start = subtitle.start_seconds
        window_end = subtitle.end_seconds
        matched = []
        for word in self.words:
            midpoint = (word.start_seconds + word.end_seconds) / 2.0
            overlap = min(word.end_seconds, window_end) - max(
                word.start_seconds, window_start
            )
            if (
                window_start - tolerance_seconds
                <= midpoint
                <= window_end + tolerance_seconds
                or overlap > tolerance_seconds
            ):
                matched.append(word)
        return tuple(matched)
