"""Selective import/export of one tenant's vocabulary data."""

from Lexicarium.transfer.codec import DecodedBundle, decode_bundle, encode_bundle
from Lexicarium.transfer.committer import (
    BatchCommitter,
    BatchResult,
    RecordError,
    RecordSkip,
    Remap,
)
from Lexicarium.transfer.notify import CallbackNotifier, ChangeNotifier
from Lexicarium.transfer.references import UnresolvedReference
from Lexicarium.transfer.scopes import Scope
from Lexicarium.transfer.service import (
    export_bundle,
    export_bundle_with_database,
    import_bundle,
    import_bundle_with_database,
)

__all__ = [
    "BatchCommitter",
    "BatchResult",
    "CallbackNotifier",
    "ChangeNotifier",
    "DecodedBundle",
    "RecordError",
    "RecordSkip",
    "Remap",
    "Scope",
    "UnresolvedReference",
    "decode_bundle",
    "encode_bundle",
    "export_bundle",
    "export_bundle_with_database",
    "import_bundle",
    "import_bundle_with_database",
]
