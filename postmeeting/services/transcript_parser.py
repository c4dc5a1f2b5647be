"""
Normalization of transcript and participant payloads returned by the bot provider.

The provider has shipped several transcript formats over time. Each known JSON
layout is a shape matcher; matchers are tried in order and the first one that
yields text wins.
"""
import csv
import io
import json
import re
from typing import Any, Dict, List, Optional, Sequence

from postmeeting.schemas import Attendee
from postmeeting.utils import as_list, safe_dict_get


class TranscriptShape:
    """A known transcript JSON layout."""

    name = "base"

    def extract(self, payload: Any) -> Optional[str]:
        raise NotImplementedError

    @staticmethod
    def _join(parts: Sequence[Any]) -> Optional[str]:
        texts = [p for p in parts if isinstance(p, str) and p]
        return " ".join(texts) if texts else None


class WordArrayShape(TranscriptShape):
    """Root array of turns, each carrying ``words[].text`` or a plain ``text``."""

    name = "word_array"

    def extract(self, payload: Any) -> Optional[str]:
        if not isinstance(payload, list):
            return None
        parts = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            words = item.get("words")
            if isinstance(words, list):
                text = self._join([safe_dict_get(w, "text") for w in words])
                if text:
                    parts.append(text)
            elif isinstance(item.get("text"), str):
                parts.append(item["text"])
        return self._join(parts)


class TextFieldShape(TranscriptShape):
    """Object with a top-level ``text`` string."""

    name = "text"

    def extract(self, payload: Any) -> Optional[str]:
        text = safe_dict_get(payload, "text")
        return text if isinstance(text, str) else None


class SegmentsShape(TranscriptShape):
    """Object with ``segments[].text``."""

    name = "segments"

    def extract(self, payload: Any) -> Optional[str]:
        segments = safe_dict_get(payload, "segments")
        if not isinstance(segments, list):
            return None
        return self._join([safe_dict_get(s, "text") for s in segments])


class ResultsShape(TranscriptShape):
    """Speech-to-text style ``results[].alternatives[0].transcript``."""

    name = "results"

    def extract(self, payload: Any) -> Optional[str]:
        results = safe_dict_get(payload, "results")
        if not isinstance(results, list):
            return None
        return self._join([
            safe_dict_get(r, "alternatives", 0, "transcript") or safe_dict_get(r, "text")
            for r in results
        ])


class UtterancesShape(TranscriptShape):
    """Diarized ``utterances[].text``."""

    name = "utterances"

    def extract(self, payload: Any) -> Optional[str]:
        utterances = safe_dict_get(payload, "utterances")
        if not isinstance(utterances, list):
            return None
        return self._join([safe_dict_get(u, "text") for u in utterances])


TRANSCRIPT_SHAPES: List[TranscriptShape] = [
    WordArrayShape(),
    TextFieldShape(),
    SegmentsShape(),
    ResultsShape(),
    UtterancesShape(),
]


def extract_from_payload(payload: Any, shapes: Sequence[TranscriptShape] = None) -> Optional[str]:
    """Run the shape matchers over already-decoded JSON; None when nothing matches."""
    for shape in shapes or TRANSCRIPT_SHAPES:
        text = shape.extract(payload)
        if text and text.strip():
            return text
    return None


def extract_transcript_text(body: str) -> Optional[str]:
    """
    Turn a downloaded transcript body into plain text.

    JSON bodies are run through the shape matchers. Anything else, including
    JSON in an unknown layout, falls back to the raw body when it is non-empty.
    """
    if not body or not body.strip():
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    return extract_from_payload(payload) or body


def inline_transcript(record: Dict[str, Any]) -> Optional[str]:
    """Transcript text embedded directly in a bot record, if any."""
    text = safe_dict_get(record, "transcripts", 0, "text") or safe_dict_get(record, "transcript", "text")
    if isinstance(text, str) and text.strip():
        return text
    return None


def _url_fields(item: Any, keys: Sequence[str]) -> List[str]:
    return [item[k] for k in keys if isinstance(item, dict) and isinstance(item.get(k), str) and item[k]]


def collect_transcript_sources(record: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Walk a bot record and list every place a transcript may live, in lookup order.

    Each entry is ``{"text": ...}`` for text nested under a recording, or
    ``{"url": ...}`` for a download location.
    """
    sources: List[Dict[str, str]] = []
    for t in as_list(safe_dict_get(record, "transcripts")):
        sources.extend({"url": u} for u in _url_fields(t, ("download_url", "url", "file_url")))

    for rec in as_list(safe_dict_get(record, "recordings")):
        candidates = [
            safe_dict_get(rec, "media_shortcuts", "transcript", "data", "download_url"),
            safe_dict_get(rec, "media_shortcuts", "transcript", "data", "provider_data_download_url"),
            safe_dict_get(rec, "media_shortcuts", "transcript", "data", "url"),
            safe_dict_get(rec, "media_shortcuts", "transcript", "download_url"),
            safe_dict_get(rec, "transcript", "download_url"),
            safe_dict_get(rec, "transcript", "url"),
        ]
        sources.extend({"url": u} for u in candidates if isinstance(u, str) and u)
        for t in as_list(safe_dict_get(rec, "transcripts")):
            text = safe_dict_get(t, "text")
            if isinstance(text, str) and text.strip():
                sources.append({"text": text})
            sources.extend({"url": u} for u in _url_fields(t, ("download_url", "url", "file_url")))
    return sources


def collect_transcript_urls(record: Dict[str, Any]) -> List[str]:
    """Every transcript download URL referenced by a bot record."""
    return [s["url"] for s in collect_transcript_sources(record) if "url" in s]


def collect_participant_urls(record: Dict[str, Any]) -> List[str]:
    """Participant list download URLs referenced by a bot record."""
    urls = []
    for rec in as_list(safe_dict_get(record, "recordings")):
        url = (
            safe_dict_get(rec, "media_shortcuts", "participant_events", "data", "participants_download_url")
            or safe_dict_get(rec, "media_shortcuts", "participant_events", "participants_download_url")
            or safe_dict_get(rec, "participant_events", "participants_download_url")
        )
        if isinstance(url, str) and url:
            urls.append(url)
    top = safe_dict_get(record, "participant_events") or safe_dict_get(record, "participants")
    url = safe_dict_get(top, "participants_download_url")
    if isinstance(url, str) and url:
        urls.append(url)
    return urls


EMAIL_KEYS = ("email", "user_email", "mail", "address")
NAME_KEYS = ("name", "display_name", "user_name", "username", "full_name")
ANGLE_ADDRESS_RE = re.compile(r"([^,\n<]+)?\s*<([^>]+@[^>]+)>")


def _first_str(item: Dict[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = item.get(key)
        if value:
            return str(value)
    return ""


def _participant(email: str, name: str) -> Attendee:
    return Attendee(email=email or name, name=name or None)


def _parse_json_participants(body: str) -> List[Attendee]:
    try:
        payload = json.loads(body)
    except ValueError:
        return []
    items = payload if isinstance(payload, list) else as_list(safe_dict_get(payload, "participants"))
    found = []
    for item in items:
        if not isinstance(item, dict):
            continue
        email, name = _first_str(item, EMAIL_KEYS), _first_str(item, NAME_KEYS)
        if email or name:
            found.append(_participant(email, name))
    return found


def _parse_tabular_participants(body: str) -> List[Attendee]:
    lines = [line for line in body.splitlines() if line]
    if len(lines) < 2:
        return []
    delimiter = "\t" if "\t" in lines[0] else ","
    rows = list(csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter))
    header = [h.strip().lower() for h in rows[0]]
    email_idx = next((i for i, h in enumerate(header) if "email" in h), -1)
    name_idx = next((i for i, h in enumerate(header) if "name" in h), -1)
    if email_idx < 0 and name_idx < 0:
        return []

    found = []
    for row in rows[1:]:
        cols = [c.strip() for c in row]
        email = cols[email_idx] if 0 <= email_idx < len(cols) else ""
        name = cols[name_idx] if 0 <= name_idx < len(cols) else ""
        if email or name:
            found.append(_participant(email, name))
    return found


def _parse_free_text_participants(body: str) -> List[Attendee]:
    found = []
    for match in ANGLE_ADDRESS_RE.finditer(body):
        name = (match.group(1) or "").strip()
        email = (match.group(2) or "").strip()
        found.append(_participant(email, name))
    return found


def parse_participants(body: str) -> List[Attendee]:
    """
    Parse a participants download.

    Tries JSON (array or ``{"participants": [...]}``), then CSV/TSV with a
    header row, then a ``Name <email>`` scan. The first parser that finds
    anyone wins.
    """
    if not body or not body.strip():
        return []
    for parser in (_parse_json_participants, _parse_tabular_participants, _parse_free_text_participants):
        found = parser(body)
        if found:
            return found
    return []


def dedupe_participants(participants: List[Attendee]) -> List[Attendee]:
    """Drop repeats by lower-cased email (or name), keeping the first occurrence."""
    seen = set()
    unique = []
    for p in participants:
        key = (p.email or p.name or "").lower()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(p)
    return unique
