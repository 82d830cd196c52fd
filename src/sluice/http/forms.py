"""Form data parsing — URL-encoded and multipart.

Implements ``MultiValueMapping`` for consistent access across
``Headers``, ``QueryParams``, and ``FormData``.

URL-encoded forms use stdlib ``urllib.parse``. Multipart bodies go
through ``python-multipart``; uploaded file content stays in memory up
to ``max_memory`` bytes per file and is spooled to a temporary file
beyond that.
"""

import tempfile
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any
from urllib.parse import parse_qs

from python_multipart.multipart import MultipartParser, parse_options_header

from sluice.config import DEFAULT_MAX_MULTIPART_MEMORY

FORM_URLENCODED = "application/x-www-form-urlencoded"
MULTIPART_FORM_DATA = "multipart/form-data"


@dataclass(slots=True)
class UploadFile:
    """An uploaded file from a multipart form submission.

    ``file`` is a ``SpooledTemporaryFile`` positioned at the start of the
    content. It lives as long as the request; call ``close()`` to release
    it early.
    """

    filename: str
    content_type: str
    size: int
    file: IO[bytes] = field(repr=False)

    async def read(self) -> bytes:
        """Return the whole file content."""
        self.file.seek(0)
        return self.file.read()

    async def save(self, path: Path) -> None:
        """Write the file content to disk.

        Args:
            path: Destination file path. Parent directories must exist.
        """
        self.file.seek(0)
        with path.open("wb") as out:
            while chunk := self.file.read(64 * 1024):
                out.write(chunk)

    @property
    def in_memory(self) -> bool:
        """False once the content outgrew the memory threshold."""
        return not getattr(self.file, "_rolled", True)

    def close(self) -> None:
        self.file.close()


class FormData(Mapping[str, str]):
    """Immutable parsed form data.

    Implements ``Mapping[str, str]`` and the ``MultiValueMapping`` protocol.
    Holds both string field values and uploaded files.

    ``__getitem__`` returns the first value for a key (string fields only).
    ``get_list`` returns all values for a key.
    ``files`` provides access to uploaded files by field name.

    Usage::

        form = await ctx.form_values()
        username = form["username"]
        avatar = form.files.get("avatar")  # UploadFile or None
    """

    __slots__ = ("_data", "_files")

    def __init__(
        self,
        data: dict[str, list[str]] | None = None,
        files: dict[str, UploadFile] | None = None,
    ) -> None:
        object.__setattr__(self, "_data", data or {})
        object.__setattr__(self, "_files", files or {})

    @property
    def files(self) -> Mapping[str, UploadFile]:
        """Uploaded files by field name."""
        return self._files

    def __getitem__(self, key: str) -> str:
        return self._data[key][0]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"FormData({{{items}}})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        """Return the first value for *key*, or *default* if missing."""
        values = self._data.get(key)
        if values:
            return values[0]
        return default

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key* (checkboxes, multi-selects)."""
        return list(self._data.get(key, []))

    def close(self) -> None:
        """Release every uploaded file."""
        for upload in self._files.values():
            upload.close()


def media_type(content_type: str) -> str:
    """Lowercased media type without parameters."""
    return content_type.lower().split(";")[0].strip()


async def parse_form_data(
    body: bytes,
    content_type: str,
    max_memory: int = DEFAULT_MAX_MULTIPART_MEMORY,
) -> FormData:
    """Parse form body into FormData.

    Args:
        body: Raw request body bytes.
        content_type: The Content-Type header value.
        max_memory: Bytes of each uploaded file kept in memory before
            spooling to disk.

    Raises:
        ValueError: If the content type is not a form encoding or the
            multipart body is malformed.
    """
    kind = media_type(content_type)

    if kind == FORM_URLENCODED:
        return _parse_urlencoded(body)

    if kind == MULTIPART_FORM_DATA:
        return _parse_multipart(body, content_type, max_memory)

    msg = f"Unsupported form content type: {content_type!r}"
    raise ValueError(msg)


def _parse_urlencoded(body: bytes) -> FormData:
    return FormData(parse_qs(body.decode("utf-8"), keep_blank_values=True))


class _MultipartCollector:
    """Callback target for ``MultipartParser``.

    Header names and values may arrive in several pieces; they are
    joined on ``on_header_end``. The part's destination (field buffer or
    spooled file) is chosen once all its headers are known.
    """

    def __init__(self, max_memory: int) -> None:
        self.max_memory = max_memory
        self.data: dict[str, list[str]] = {}
        self.files: dict[str, UploadFile] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._headers: dict[str, str] = {}
        self._name: str | None = None
        self._filename: str | None = None
        self._buffer = bytearray()
        self._file: Any = None
        self._size = 0

    def callbacks(self) -> dict[str, Any]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
        }

    def on_part_begin(self) -> None:
        self._headers = {}
        self._name = None
        self._filename = None
        self._buffer = bytearray()
        self._file = None
        self._size = 0

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field.extend(data[start:end])

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value.extend(data[start:end])

    def on_header_end(self) -> None:
        name = self._header_field.decode("latin-1").lower()
        self._headers[name] = self._header_value.decode("latin-1")
        self._header_field.clear()
        self._header_value.clear()

    def on_headers_finished(self) -> None:
        disposition = self._headers.get("content-disposition", "")
        _, params = parse_options_header(disposition.encode("latin-1"))
        name = params.get(b"name")
        if name is not None:
            self._name = name.decode("utf-8")
        filename = params.get(b"filename")
        if filename is not None:
            self._filename = filename.decode("utf-8")
            self._file = tempfile.SpooledTemporaryFile(max_size=self.max_memory)

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        chunk = data[start:end]
        if self._file is not None:
            self._file.write(chunk)
            self._size += len(chunk)
        else:
            self._buffer.extend(chunk)

    def on_part_end(self) -> None:
        if self._name is None:
            if self._file is not None:
                self._file.close()
            return
        if self._file is not None:
            self._file.seek(0)
            # Last upload for a repeated field name wins
            previous = self.files.get(self._name)
            if previous is not None:
                previous.close()
            self.files[self._name] = UploadFile(
                filename=self._filename or "",
                content_type=self._headers.get("content-type", "application/octet-stream"),
                size=self._size,
                file=self._file,
            )
        else:
            value = self._buffer.decode("utf-8", errors="replace")
            self.data.setdefault(self._name, []).append(value)


def _parse_multipart(body: bytes, content_type: str, max_memory: int) -> FormData:
    _, options = parse_options_header(content_type.encode("latin-1"))
    boundary = options.get(b"boundary")
    if boundary is None:
        msg = "Multipart form data missing boundary parameter"
        raise ValueError(msg)

    collector = _MultipartCollector(max_memory)
    parser = MultipartParser(boundary, collector.callbacks())
    try:
        parser.write(body)
        parser.finalize()
    except Exception as exc:
        FormData(collector.data, collector.files).close()
        msg = f"Malformed multipart body: {exc}"
        raise ValueError(msg) from exc
    return FormData(collector.data, collector.files)
