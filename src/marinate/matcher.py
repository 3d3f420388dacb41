"""Context-aware text anchoring for suggestions.

Suggestions reference spans of a note by literal text plus ~50 characters of
surrounding context. The note keeps changing after a suggestion is
generated, so the matcher finds the best remaining candidate instead of
requiring an exact match, and reports absence only when the literal text is
gone entirely.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models.suggestion import (
    AdvancePhaseContent,
    AppendContent,
    CompressionContent,
    CritiqueContent,
    InsertContent,
    PromoteContent,
    QuestionContent,
    RewriteContent,
    Suggestion,
)

EXACT_CONTEXT_BONUS = 100


@dataclass(frozen=True)
class Span:
    """Half-open character range [start, end) within a document."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def _occurrences(needle: str, haystack: str) -> list[int]:
    # Non-overlapping, left to right.
    found: list[int] = []
    pos = haystack.find(needle)
    while pos != -1:
        found.append(pos)
        pos = haystack.find(needle, pos + len(needle))
    return found


def _suffix_overlap(expected: str, actual: str) -> int:
    count = 0
    for e, a in zip(reversed(expected), reversed(actual)):
        if e != a:
            break
        count += 1
    return count


def _prefix_overlap(expected: str, actual: str) -> int:
    count = 0
    for e, a in zip(expected, actual):
        if e != a:
            break
        count += 1
    return count


def _context_score(start: int, end: int, context_before: str, context_after: str, text: str) -> int:
    score = 0
    if context_before:
        actual_before = text[max(0, start - len(context_before)):start]
        if actual_before == context_before:
            score += EXACT_CONTEXT_BONUS
        else:
            score += _suffix_overlap(context_before, actual_before)
    if context_after:
        actual_after = text[end:end + len(context_after)]
        if actual_after == context_after:
            score += EXACT_CONTEXT_BONUS
        else:
            score += _prefix_overlap(context_after, actual_after)
    return score


def find_span(
    original: str,
    context_before: str,
    context_after: str,
    document_text: str,
) -> Span | None:
    """Locate ``original`` in ``document_text``, using context to disambiguate.

    A single occurrence is returned without consulting context. With several
    occurrences, each is scored against the expected context and the highest
    score wins; ties go to the earliest occurrence.

    Returns:
        The located Span, or None if ``original`` does not occur at all
    """
    if not original or not document_text:
        return None

    starts = _occurrences(original, document_text)
    if not starts:
        return None
    if len(starts) == 1:
        return Span(starts[0], starts[0] + len(original))

    best: Span | None = None
    best_score = -1
    for start in starts:
        end = start + len(original)
        score = _context_score(start, end, context_before, context_after, document_text)
        if score > best_score:
            best_score = score
            best = Span(start, end)
    return best


def locate_suggestion(suggestion: Suggestion, document_text: str) -> Span | None:
    """Find the span of the note a suggestion refers to.

    Insert suggestions resolve to the empty span just after their anchor.
    Variants that do not target note text (append, question, promote,
    advancePhase) return None.
    """
    content = suggestion.content
    if isinstance(content, (RewriteContent, CompressionContent)):
        return find_span(content.original, content.context_before, content.context_after, document_text)
    if isinstance(content, CritiqueContent):
        return find_span(content.target_text, content.context_before, content.context_after, document_text)
    if isinstance(content, InsertContent):
        anchor = find_span(content.after_context, "", "", document_text)
        if anchor is None:
            return None
        return Span(anchor.end, anchor.end)
    if isinstance(content, (AppendContent, QuestionContent, PromoteContent, AdvancePhaseContent)):
        return None
    raise TypeError(f"Unhandled suggestion content: {type(content).__name__}")


def anchor_position(suggestion: Suggestion, document_text: str) -> int:
    """Offset at which to render a suggestion's annotation.

    Anchored variants render just after their span; everything else, and
    anything whose anchor can no longer be found, renders at the end.
    """
    span = locate_suggestion(suggestion, document_text)
    if span is None:
        return len(document_text)
    return span.end


def apply_suggestion(suggestion: Suggestion, document_text: str) -> str | None:
    """Return the note text with an accepted suggestion applied.

    Returns:
        The edited text, or None when the suggestion is not a text edit or
        its anchor can no longer be found
    """
    content = suggestion.content
    if isinstance(content, (RewriteContent, CompressionContent)):
        span = locate_suggestion(suggestion, document_text)
        if span is None:
            return None
        return document_text[:span.start] + content.replacement + document_text[span.end:]
    if isinstance(content, AppendContent):
        separator = "" if not document_text or document_text.endswith("\n") else "\n"
        return document_text + separator + content.text
    if isinstance(content, InsertContent):
        if not content.after_context:
            return document_text + content.text
        span = locate_suggestion(suggestion, document_text)
        if span is None:
            return None
        return document_text[:span.start] + content.text + document_text[span.start:]
    if isinstance(content, (CritiqueContent, QuestionContent, PromoteContent, AdvancePhaseContent)):
        return None
    raise TypeError(f"Unhandled suggestion content: {type(content).__name__}")
