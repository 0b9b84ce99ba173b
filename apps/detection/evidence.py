# apps/detection/evidence.py
"""
Typed evidence attached to detection signals and behavior log entries.

Each shape is a frozen dataclass; `evidence_to_dict` / `evidence_from_dict`
are the only (de)serializers for the JSON columns that store them.
The serialized form carries a "kind" tag so rows can be read back without
knowing which producer wrote them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, Tuple, Union

from apps.detection.constants import (
    SPAM_BURST,
    REPEATED_UNWANTED_CONTACT,
    TRAUMA_RISK_PHRASE,
    PRESSURE_LANGUAGE,
    IMPERSONATION,
    BLOCK_EVASION,
    COORDINATED_HARASSMENT,
)


@dataclass(frozen=True)
class SpamBurstEvidence:
    messages_last_minute: int
    threshold: int


@dataclass(frozen=True)
class RepeatedContactEvidence:
    unanswered_attempts: int
    threshold: int


@dataclass(frozen=True)
class PhraseMatchEvidence:
    matched_phrases: Tuple[str, ...]


@dataclass(frozen=True)
class ImpersonationEvidence:
    display_name: str
    impersonated_name: str
    similarity: float


@dataclass(frozen=True)
class BlockEvasionEvidence:
    device_fingerprint: str
    blocked_account_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ProviderEvidence:
    source: str
    level: str
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenericEvidence:
    payload: Dict[str, Any] = field(default_factory=dict)


Evidence = Union[
    SpamBurstEvidence,
    RepeatedContactEvidence,
    PhraseMatchEvidence,
    ImpersonationEvidence,
    BlockEvasionEvidence,
    ProviderEvidence,
    GenericEvidence,
]

_KINDS = {
    cls.__name__: cls
    for cls in (
        SpamBurstEvidence,
        RepeatedContactEvidence,
        PhraseMatchEvidence,
        ImpersonationEvidence,
        BlockEvasionEvidence,
        ProviderEvidence,
        GenericEvidence,
    )
}

EVIDENCE_BY_SIGNAL_TYPE = {
    SPAM_BURST: SpamBurstEvidence,
    REPEATED_UNWANTED_CONTACT: RepeatedContactEvidence,
    TRAUMA_RISK_PHRASE: PhraseMatchEvidence,
    PRESSURE_LANGUAGE: PhraseMatchEvidence,
    IMPERSONATION: ImpersonationEvidence,
    BLOCK_EVASION: BlockEvasionEvidence,
    COORDINATED_HARASSMENT: ProviderEvidence,
}


def evidence_to_dict(evidence: Evidence | None) -> dict:
    if evidence is None:
        return {}
    data = asdict(evidence)
    for key, value in data.items():
        if isinstance(value, tuple):
            data[key] = list(value)
    data["kind"] = type(evidence).__name__
    return data


def evidence_from_dict(signal_type: str | None, data: dict | None) -> Evidence:
    """
    Rebuild evidence from a JSON column. The stored "kind" wins over the
    signal type; anything that does not fit a typed shape becomes GenericEvidence.
    """
    data = dict(data or {})
    cls = _KINDS.get(data.pop("kind", None)) or EVIDENCE_BY_SIGNAL_TYPE.get(signal_type)
    if cls is None or cls is GenericEvidence:
        return GenericEvidence(payload=data.get("payload", data))

    names = {f.name for f in fields(cls)}
    kwargs = {}
    for name in names:
        if name not in data:
            continue
        value = data[name]
        kwargs[name] = tuple(value) if isinstance(value, list) else value
    try:
        return cls(**kwargs)
    except TypeError:
        return GenericEvidence(payload=data)
