"""Storage key space for documents.

Two regimes share one bucket:

* personal: ``{base}/{user_id}/{folder}/{segments...}/{ms}_{name}``
* client-scoped: ``{base}/{client_root}/{document_number}/{segments...}/{name}``

Every issued key starts with a prefix its caller is entitled to, so a
prefix comparison is enough to authorize reads and deletes of keys that
come back from clients.
"""
import re
import time
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass

from backoffice.core.config import Settings
from backoffice.core.errors import Forbidden, InvalidInput, NotFound

FILE_NAME_MAX_LENGTH = 120
DOCUMENT_NUMBER_MAX_LENGTH = 64
SEGMENT_MAX_LENGTH = 64
DEFAULT_FILE_NAME = "archivo"

_FILE_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")
_SEGMENT_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._ -]+")
_DASH_RUN_RE = re.compile(r"-{2,}")
_SPACE_RUN_RE = re.compile(r"\s+")


def _strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sanitize_file_name(name, max_length: int = FILE_NAME_MAX_LENGTH) -> str:
    value = _strip_diacritics(str(name or "")).strip()
    value = _FILE_UNSAFE_RE.sub("-", value)
    value = _DASH_RUN_RE.sub("-", value)
    value = value.lstrip(".-").rstrip("-")
    return value[:max_length]


def canonical_document_number(value) -> str | None:
    """Form a client document number takes both in the database and in keys."""
    number = sanitize_file_name(value, DOCUMENT_NUMBER_MAX_LENGTH).rstrip("-")
    return number or None


def sanitize_segment(segment, max_length: int = SEGMENT_MAX_LENGTH) -> str:
    value = _strip_diacritics(str(segment or "")).strip()
    value = _SPACE_RUN_RE.sub(" ", value)
    value = _SEGMENT_UNSAFE_RE.sub("-", value)
    value = _DASH_RUN_RE.sub("-", value)
    value = value.lstrip(".- ").rstrip("- ")
    return value[:max_length].rstrip(" ")


def split_logical_path(raw) -> list[str]:
    """Split a caller-supplied folder path, rejecting traversal outright."""
    text = str(raw or "").replace("\\", "/")
    parts = [part.strip() for part in text.split("/")]
    if any(".." in part for part in parts):
        raise InvalidInput("Invalid path")
    return [part for part in parts if part and part != "."]


@dataclass(frozen=True)
class StorageActor:
    user_id: str
    is_admin: bool = False
    # Document number of the caller's own Client record, if any.
    document_number: str | None = None


@dataclass(frozen=True)
class ResolvedFolder:
    root: str
    segments: tuple[str, ...] = ()
    document_number: str | None = None
    client_scoped: bool = False

    @property
    def path(self) -> str:
        parts = [self.root]
        if self.document_number:
            parts.append(self.document_number)
        parts.extend(self.segments)
        return "/".join(parts)


@dataclass(frozen=True)
class ResolvedKey:
    key: str
    folder: ResolvedFolder
    file_name: str


class KeyNamespace:
    def __init__(
        self,
        base_prefix: str,
        allowed_folders: list[str],
        *,
        client_root: str = "clientes",
        exact_name_uploads: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_prefix = base_prefix.strip().strip("/")
        if not self.base_prefix or ".." in self.base_prefix:
            raise ValueError("base_prefix must be a non-empty relative path")
        self.client_root = client_root.strip().strip("/")
        self.allowed_folders = [f for f in allowed_folders if f]
        self.default_folder = self.allowed_folders[0] if self.allowed_folders else "documentos_iniciales"
        self.exact_name_uploads = exact_name_uploads
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyNamespace":
        return cls(
            settings.s3_base_prefix,
            settings.docs_allowed_folders,
            client_root=settings.docs_client_root,
            exact_name_uploads=settings.docs_exact_name_uploads,
        )

    def _actor_segment(self, actor: StorageActor) -> str:
        value = str(actor.user_id or "").strip()
        if not value or "/" in value or "\\" in value or value in {".", ".."}:
            raise InvalidInput("Invalid user id")
        return value

    def _match_root(self, name: str) -> str | None:
        lowered = name.lower()
        if lowered == self.client_root.lower():
            return self.client_root
        for folder in self.allowed_folders:
            if folder.lower() == lowered:
                return folder
        return None

    def _document_number_for(self, actor: StorageActor, requested: str | None) -> str | None:
        if actor.is_admin:
            return requested
        own = canonical_document_number(actor.document_number)
        if not own:
            raise NotFound("Client not found")
        return own

    def parse_folder(self, actor: StorageActor, logical_folder) -> ResolvedFolder:
        parts = split_logical_path(logical_folder)
        if not parts:
            return ResolvedFolder(root=self.default_folder)
        root = self._match_root(parts[0])
        if root is None:
            raise InvalidInput("Subfolder not allowed")
        rest = parts[1:]
        if root == self.client_root:
            requested = canonical_document_number(rest[0]) if rest else None
            segments = tuple(s for s in (sanitize_segment(p) for p in rest[1:]) if s)
            return ResolvedFolder(
                root=root,
                segments=segments,
                document_number=self._document_number_for(actor, requested),
                client_scoped=True,
            )
        segments = tuple(s for s in (sanitize_segment(p) for p in rest) if s)
        return ResolvedFolder(root=root, segments=segments)

    def user_prefix(self, actor: StorageActor) -> str:
        return f"{self.base_prefix}/{self._actor_segment(actor)}/"

    def client_space_prefix(self) -> str:
        return f"{self.base_prefix}/{self.client_root}/"

    def client_prefix(self, document_number: str) -> str:
        number = canonical_document_number(document_number)
        if not number:
            raise InvalidInput("Client document number required")
        return f"{self.client_space_prefix()}{number}/"

    def folder_prefix(self, actor: StorageActor, folder: ResolvedFolder) -> str:
        if folder.client_scoped:
            head = [self.base_prefix, self.client_root]
            if folder.document_number:
                head.append(folder.document_number)
            return "/".join([*head, *folder.segments]) + "/"
        return "/".join([self.base_prefix, self._actor_segment(actor), folder.root, *folder.segments]) + "/"

    def resolve_prefix(self, actor: StorageActor, logical_folder=None) -> str:
        """Prefix for listings; no folder means the caller's whole personal space."""
        if not split_logical_path(logical_folder):
            return self.user_prefix(actor)
        return self.folder_prefix(actor, self.parse_folder(actor, logical_folder))

    def resolve_key(self, actor: StorageActor, logical_folder, file_name) -> ResolvedKey:
        folder = self.parse_folder(actor, logical_folder)
        if folder.client_scoped and not folder.document_number:
            raise InvalidInput("Client document number required")
        safe_name = sanitize_file_name(file_name) or DEFAULT_FILE_NAME
        if folder.client_scoped and self.exact_name_uploads:
            stored_name = safe_name
        else:
            stored_name = f"{int(self._clock() * 1000)}_{safe_name}"
        key = self.folder_prefix(actor, folder) + stored_name
        return ResolvedKey(key=key, folder=folder, file_name=safe_name)

    def document_number_of(self, key: str) -> str | None:
        space = self.client_space_prefix()
        if not key.startswith(space):
            return None
        number = key[len(space):].split("/", 1)[0]
        return number or None

    def authorize_key(self, actor: StorageActor, key) -> str:
        """Validate a caller-supplied key for download or deletion."""
        normalized = str(key or "").strip()
        if not normalized:
            raise InvalidInput("Key required")
        if any(part in {"..", "."} or ".." in part for part in normalized.split("/")):
            raise InvalidInput("Invalid path")
        if not normalized.startswith(f"{self.base_prefix}/"):
            raise Forbidden("You do not have access to this resource")
        if actor.is_admin:
            return normalized
        if normalized.startswith(self.user_prefix(actor)):
            return normalized
        if normalized.startswith(self.client_space_prefix()):
            own = canonical_document_number(actor.document_number)
            if not own:
                raise NotFound("Document not found")
            if normalized.startswith(self.client_prefix(own)):
                return normalized
        raise Forbidden("You do not have access to this resource")
