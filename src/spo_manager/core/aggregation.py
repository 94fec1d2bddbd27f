"""Document tree traversal and size roll-ups for the document report."""

from pathlib import PurePosixPath
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from .models import DocumentEntry, DocumentInfo, FolderListing, ListInfo, site_collection_url

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")

ListFolder = Callable[[str, str], Awaitable[FolderListing]]


async def walk_folders(
    list_folder: ListFolder, site_url: str, root_folder_url: str, include_subfolders: bool = True
) -> AsyncIterator[DocumentInfo]:
    """Yield every file under ``root_folder_url``, depth first.

    With ``include_subfolders`` off only the root folder is listed.

    Uses an explicit stack so folder depth is not bounded by the interpreter's
    recursion limit. Each folder is fetched only when the consumer reaches it.
    """
    stack = [root_folder_url]
    while stack:
        folder_url = stack.pop()
        listing = await list_folder(site_url, folder_url)
        for document in listing.files:
            yield document
        if include_subfolders:
            # Reversed so subfolders are visited in listing order.
            stack.extend(reversed(listing.folders))


def folder_path_segments(library_root_url: str, file_url: str) -> List[str]:
    """Folder names between the library root and the file, outermost first."""
    root = library_root_url.rstrip("/").lower()
    parent = str(PurePosixPath(file_url).parent)
    if parent.lower() == root:
        return []
    if parent.lower().startswith(root + "/"):
        relative = parent[len(root) + 1:]
    else:
        relative = parent.lstrip("/")
    return [segment for segment in relative.split("/") if segment]


def file_extension(file_name: str) -> str:
    return PurePosixPath(file_name).suffix.lstrip(".").lower()


def normalize_extensions(extensions: Iterable[str]) -> List[str]:
    return [ext.strip().lstrip(".").lower() for ext in extensions if ext.strip().lstrip(".")]


def matches_extension_filter(file_name: str, extensions: List[str]) -> bool:
    """An empty filter matches every file."""
    if not extensions:
        return True
    return file_extension(file_name) in extensions


def build_document_entry(
    site_url: str, library: ListInfo, document: DocumentInfo, include_version_count: bool = True
) -> DocumentEntry:
    return DocumentEntry(
        site_collection_url=site_collection_url(site_url),
        site_url=site_url,
        library_title=library.title,
        folder_path=folder_path_segments(library.server_relative_url, document.server_relative_url),
        file_name=document.name,
        size_bytes=document.size_bytes,
        created=document.created,
        last_modified=document.modified,
        extension=file_extension(document.name),
        server_relative_url=document.server_relative_url,
        created_by=document.created_by,
        modified_by=document.modified_by,
        version_count=document.version_count if include_version_count else 0,
    )


def summarize_documents(entries: Iterable[DocumentEntry]) -> Dict[str, Dict[str, int]]:
    """Document count and total size per library title."""
    summary: Dict[str, Dict[str, int]] = {}
    for entry in entries:
        bucket = summary.setdefault(entry.library_title, {"documents": 0, "size_bytes": 0})
        bucket["documents"] += 1
        bucket["size_bytes"] += entry.size_bytes
    return summary


def format_size(size_bytes: Optional[int]) -> str:
    """Human readable size, e.g. 1536 -> "1.5 KB"."""
    size = float(size_bytes or 0)
    unit = 0
    while size >= 1024 and unit < len(SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    text = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[unit]}"
