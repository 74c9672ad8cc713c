"""Mirror sinks kept eventually consistent with the authoritative store."""

from __future__ import annotations

from .airtable import AirtableConfig, AirtableMirrorSink, build_match_formula
from .errors import AirtableConfigError, MirrorSyncError
from .sink import DisabledMirrorSink, MirrorRecord, MirrorSink

__all__ = [
    "AirtableConfig",
    "AirtableConfigError",
    "AirtableMirrorSink",
    "DisabledMirrorSink",
    "MirrorRecord",
    "MirrorSink",
    "MirrorSyncError",
    "build_match_formula",
]
