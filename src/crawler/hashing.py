from __future__ import annotations

import hashlib
import json
import re

from src.crawler.extractor import ExtractedData

_DATE_RE = re.compile(r"\d{1,4}[-/]\d{1,2}[-/]\d{1,4}")
_TIME_RE = re.compile(r"\d{1,2}:\d{2}(?::\d{2})?")
_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.I
)
_URL_QUERY_RE = re.compile(r"(https?://[^\s?#\"']+)[?#][^\s\"']*")
_WHITESPACE_RE = re.compile(r"\s+")


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def normalize_content(content: str) -> str:
    """Strip volatile fragments so cosmetic page churn does not look like a change."""
    normalized = _URL_QUERY_RE.sub(r"\1", content)
    normalized = _UUID_RE.sub("", normalized)
    normalized = _DATE_RE.sub("", normalized)
    normalized = _TIME_RE.sub("", normalized)
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def get_normalized_hash(content: str) -> str:
    return hash_content(normalize_content(content))


def hash_extracted_data(data: ExtractedData) -> str:
    canonical = json.dumps(data.to_dict(), sort_keys=True, ensure_ascii=False)
    return get_normalized_hash(canonical)
