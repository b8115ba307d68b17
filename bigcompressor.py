#!/usr/bin/env python3
"""
Big Compressor - chunked directory archiver
Splits a directory tree into size-bounded chunks, archives each chunk as a tar
stream and compresses it with LZ4 frames.

Output Modes:
- One file per chunk (<destination>_0, <destination>_1, ...)
- One combined file with chunks delimited by a separator marker
- One combined file with length-prefixed chunks
"""

import argparse
import difflib
import io
import os
import re
import stat
import struct
import sys
import tarfile
import time
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Union
import logging

import lz4.frame

try:
    from rich.console import Console
    from rich.progress import (
        Progress,
        SpinnerColumn,
        TextColumn,
        BarColumn,
        TimeElapsedColumn,
        MofNCompleteColumn,
    )

    HAS_RICH = True
except ImportError:
    HAS_RICH = False
    Console = None
    Progress = None

try:
    from tqdm import tqdm

    HAS_TQDM = True
except ImportError:
    HAS_TQDM = False
    tqdm = None


__version__ = "1.0.0"
__author__ = "Big Compressor Project"
__license__ = "MIT"

# Literal written after every chunk in combined marker mode
CHUNK_SEPARATOR = b"_cHuNK_"

# Header of a combined file using length-prefixed chunks
FRAMED_MAGIC = b"BGCZ\x01"
FRAME_LENGTH = struct.Struct(">Q")

# LZ4 frame layout: magic, FLG, BD, header checksum, then size-prefixed blocks
LZ4_FRAME_MAGIC = b"\x04\x22\x4d\x18"
LZ4_HEADER_SIZE = 7
LZ4_BLOCK_HEADER = struct.Struct("<I")

# Smallest possible LZ4 frame: 7 byte header + 4 byte end mark
MIN_TOKEN_LENGTH = 11

DEFAULT_BUFFER_SIZE = 64 * 1024
FRAMING_MODES = ("marker", "length")

logger = logging.getLogger("bigcompressor")


@dataclass(frozen=True)
class Entry:
    """One file or directory found under the source root"""

    path: Path
    relative: str
    mode: int
    is_dir: bool
    size: int = 0
    mtime: int = 0


@dataclass
class Chunk:
    """Ordered group of entries compressed as one unit"""

    index: int
    entries: List[Entry] = field(default_factory=list)
    total_size: int = 0

    def add(self, entry: Entry) -> None:
        self.entries.append(entry)
        if not entry.is_dir:
            self.total_size += entry.size

    @property
    def file_count(self) -> int:
        return sum(1 for entry in self.entries if not entry.is_dir)


class BigCompressorError(Exception):
    """Base exception for big compressor errors"""

    recoverable = True


class WalkError(BigCompressorError):
    """The source tree could not be listed or stat'ed"""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class ChunkError(BigCompressorError):
    """Failure tied to a single chunk"""

    def __init__(
        self, message: str, chunk_index: Optional[int] = None, path: Optional[str] = None
    ):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.path = path


class ChunkEncodeError(ChunkError):
    """A chunk could not be archived, compressed or written"""

    pass


class ChunkDecodeError(ChunkError):
    """A chunk is corrupt, truncated or could not be replayed"""

    pass


class ScanBufferOverflowError(BigCompressorError):
    """A chunk does not fit in the configured scan buffer"""

    def __init__(self, message: str, offset: int = 0, limit: int = 0):
        super().__init__(message)
        self.offset = offset
        self.limit = limit


class ReplayAbortedError(BigCompressorError):
    """Destination directories could not be created; the whole run stops"""

    recoverable = False


class SecurityError(BigCompressorError):
    """Security-related errors such as path traversal attempts"""

    pass


def chunk_file_name(destination: Union[str, Path], index: int) -> Path:
    """Name of the per-chunk output file for a chunk index"""
    return Path(f"{destination}_{index}")


def walk_entries(
    root: Union[str, Path], on_skip: Optional[Callable[[Path], None]] = None
) -> Iterator[Entry]:
    """
    Lazily walk a directory tree in pre-order.

    Siblings are visited in sorted name order. The root itself is not yielded.
    Symlinks and special files are skipped and reported through ``on_skip``.

    Raises:
        WalkError: If a directory cannot be listed or an entry cannot be stat'ed
    """
    root = Path(root)

    def walk(directory: Path) -> Iterator[Entry]:
        try:
            with os.scandir(directory) as listing:
                items = sorted(listing, key=lambda item: item.name)
        except OSError as e:
            raise WalkError(f"Cannot scan directory {directory}: {e}", path=directory) from e

        for item in items:
            path = Path(item.path)
            try:
                st = item.stat(follow_symlinks=False)
            except OSError as e:
                raise WalkError(f"Cannot stat {path}: {e}", path=path) from e

            relative = path.relative_to(root).as_posix()
            if stat.S_ISDIR(st.st_mode):
                yield Entry(
                    path=path,
                    relative=relative,
                    mode=stat.S_IMODE(st.st_mode),
                    is_dir=True,
                    mtime=int(st.st_mtime),
                )
                yield from walk(path)
            elif stat.S_ISREG(st.st_mode):
                yield Entry(
                    path=path,
                    relative=relative,
                    mode=stat.S_IMODE(st.st_mode),
                    is_dir=False,
                    size=st.st_size,
                    mtime=int(st.st_mtime),
                )
            else:
                logger.debug(f"Skipping non-regular entry: {relative}")
                if on_skip is not None:
                    on_skip(path)

    return walk(root)


def plan_chunks(entries: Iterable[Entry], max_chunk_size: int) -> List[Chunk]:
    """
    Partition entries into chunks of at most ``max_chunk_size`` file bytes.

    A file that would push the current chunk over the limit starts a new
    chunk; a file larger than the limit on its own still gets a chunk of its
    own. Directories weigh nothing and travel with the next file. An empty
    walk yields a single empty chunk.
    """
    if not isinstance(max_chunk_size, int) or max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be a positive integer, got {max_chunk_size!r}")

    chunks = [Chunk(index=0)]
    pending_dirs: List[Entry] = []

    for entry in entries:
        if entry.is_dir:
            pending_dirs.append(entry)
            continue

        current = chunks[-1]
        if current.entries and current.total_size + entry.size > max_chunk_size:
            current = Chunk(index=len(chunks))
            chunks.append(current)

        for directory in pending_dirs:
            current.add(directory)
        pending_dirs = []
        current.add(entry)

    for directory in pending_dirs:
        chunks[-1].add(directory)

    return chunks


def scan_tokens(
    stream: BinaryIO,
    separator: bytes,
    max_buffer_size: int,
    read_size: int = DEFAULT_BUFFER_SIZE,
) -> Iterator[bytes]:
    """
    Split a stream on ``separator``, yielding the bytes between separators.

    A token may be up to ``max_buffer_size`` bytes long; only that plus one
    separator is held while looking for the next separator. Trailing bytes
    after the last separator are yielded if any.

    Raises:
        ScanBufferOverflowError: If a token is longer than ``max_buffer_size``
    """
    window = bytearray()
    search_from = 0
    consumed = 0
    at_eof = False

    def overflow() -> ScanBufferOverflowError:
        return ScanBufferOverflowError(
            f"No chunk separator within {max_buffer_size} bytes at offset {consumed}; "
            f"the scan buffer is too small or the separator is missing",
            offset=consumed,
            limit=max_buffer_size,
        )

    # A token of max_buffer_size bytes still needs room for its separator
    window_limit = max_buffer_size + len(separator)

    while True:
        position = window.find(separator, search_from)
        if position >= 0:
            token = bytes(window[:position])
            del window[: position + len(separator)]
            consumed += position + len(separator)
            search_from = 0
            yield token
            continue

        if at_eof:
            if len(window) > max_buffer_size:
                raise overflow()
            if window:
                yield bytes(window)
            return

        # Only the tail can still start a separator once more data arrives
        search_from = max(0, len(window) - len(separator) + 1)
        room = window_limit - len(window)
        if room <= 0:
            if stream.read(1):
                raise overflow()
            at_eof = True
            continue

        data = stream.read(min(read_size, room))
        if not data:
            at_eof = True
        window += data


def read_framed_tokens(stream: BinaryIO, max_buffer_size: int) -> Iterator[bytes]:
    """Yield length-prefixed chunks from a stream positioned after FRAMED_MAGIC"""
    index = 0
    offset = len(FRAMED_MAGIC)
    while True:
        prefix = stream.read(FRAME_LENGTH.size)
        if not prefix:
            return
        if len(prefix) < FRAME_LENGTH.size:
            raise ChunkDecodeError(
                f"Truncated length prefix at offset {offset}", chunk_index=index
            )

        (length,) = FRAME_LENGTH.unpack(prefix)
        if length > max_buffer_size:
            raise ScanBufferOverflowError(
                f"Chunk {index} is {length} bytes, larger than the {max_buffer_size} byte scan buffer",
                offset=offset,
                limit=max_buffer_size,
            )

        token = stream.read(length)
        if len(token) < length:
            raise ChunkDecodeError(
                f"Chunk {index} truncated: expected {length} bytes, got {len(token)}",
                chunk_index=index,
            )

        yield token
        offset += FRAME_LENGTH.size + length
        index += 1


def lz4_frame_length(data: bytes) -> Optional[int]:
    """
    Size of the LZ4 frame at the start of data, read from its headers only.

    Block contents are skipped, not decompressed, so a corrupt block is only
    noticed when the frame is decoded.

    Returns:
        The frame size in bytes, or None if data ends inside the frame

    Raises:
        ValueError: If data does not start with an LZ4 frame header
    """
    head = bytes(data[: len(LZ4_FRAME_MAGIC)])
    if head != LZ4_FRAME_MAGIC[: len(head)]:
        raise ValueError("missing LZ4 frame magic number")
    if len(data) < LZ4_HEADER_SIZE:
        return None

    flags = data[len(LZ4_FRAME_MAGIC)]
    if flags >> 6 != 1:
        raise ValueError(f"unsupported LZ4 frame version (flags 0x{flags:02x})")

    offset = LZ4_HEADER_SIZE
    if flags & 0x08:  # content size
        offset += 8
    if flags & 0x01:  # dictionary id
        offset += 4
    block_checksum = 4 if flags & 0x10 else 0

    while True:
        if offset + LZ4_BLOCK_HEADER.size > len(data):
            return None
        (block_size,) = LZ4_BLOCK_HEADER.unpack_from(data, offset)
        offset += LZ4_BLOCK_HEADER.size
        if block_size == 0:  # end mark
            break
        # High bit flags an uncompressed block
        offset += (block_size & 0x7FFFFFFF) + block_checksum

    if flags & 0x04:  # content checksum
        offset += 4
    if offset > len(data):
        return None
    return offset


class _CompressorSink:
    """Write-only file object feeding an LZ4 frame compressor into a buffer"""

    def __init__(self, compressor: lz4.frame.LZ4FrameCompressor, buffer: io.BytesIO):
        self._compressor = compressor
        self._buffer = buffer

    def write(self, data: bytes) -> int:
        self._buffer.write(self._compressor.compress(data))
        return len(data)


class _FrameReader:
    """Read-only file object decompressing one LZ4 frame held in memory"""

    def __init__(
        self, decompressor: lz4.frame.LZ4FrameDecompressor, data: bytes, read_size: int
    ):
        self._decompressor = decompressor
        self._data = memoryview(data)
        self._offset = 0
        self._read_size = read_size
        self._pending = b""
        self._position = 0

    @property
    def remaining(self) -> int:
        """Compressed bytes not consumed by the frame"""
        unused = self._decompressor.unused_data or b""
        return len(self._data) - self._offset + len(unused)

    def _fill(self) -> bool:
        if self._decompressor.eof or self._offset >= len(self._data):
            return False
        piece = self._data[self._offset : self._offset + self._read_size].tobytes()
        self._offset += len(piece)
        self._pending = self._pending[self._position :] + self._decompressor.decompress(piece)
        self._position = 0
        return True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            while self._fill():
                pass
            size = len(self._pending) - self._position

        while len(self._pending) - self._position < size and self._fill():
            pass

        data = self._pending[self._position : self._position + size]
        self._position += len(data)
        return data


class BigCompressor:
    """Chunked directory compressor session

    One instance owns the chunk buffer, the LZ4 compressor and decompressor
    and the copy buffer, all reused from chunk to chunk. Do not share an
    instance between concurrent operations.
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = config or {}

        self.console = Console() if HAS_RICH else None

        self.verbose = self.config.get("verbose", False)
        self.logger = self._setup_logging()

        max_chunk_size = self.config.get("max_chunk_size")
        self.max_chunk_size = (
            self._parse_size(max_chunk_size) if max_chunk_size is not None else None
        )
        if self.max_chunk_size is not None and self.max_chunk_size <= 0:
            raise ValueError(f"max_chunk_size must be positive: {max_chunk_size}")

        max_scan = self.config.get("max_scan_buffer_size")
        self.max_scan_buffer_size = (
            self._parse_size(max_scan) if max_scan is not None else None
        )
        if self.max_scan_buffer_size is not None and self.max_scan_buffer_size <= 0:
            raise ValueError(f"max_scan_buffer_size must be positive: {max_scan}")

        self.combine_chunks = bool(self.config.get("combine_chunks", False))

        self.framing = self.config.get("framing", "marker")
        if self.framing not in FRAMING_MODES:
            raise ValueError(
                f"Unknown framing '{self.framing}', expected one of {', '.join(FRAMING_MODES)}"
            )

        self.compression_level = self.config.get(
            "compression_level", lz4.frame.COMPRESSIONLEVEL_MIN
        )
        self.copy_buffer_size = self._parse_size(
            self.config.get("buffer_size", DEFAULT_BUFFER_SIZE)
        )
        if self.copy_buffer_size <= 0:
            self.copy_buffer_size = DEFAULT_BUFFER_SIZE
        self.dry_run = self.config.get("dry_run", False)

        # TTY detection for progress bars (disable in non-interactive terminals like CI/CD)
        self.is_tty = sys.stdout.isatty()

        # Reused across chunks, reset before each one
        self._buffer = io.BytesIO()
        self._compressor = lz4.frame.LZ4FrameCompressor(
            compression_level=self.compression_level, content_checksum=True
        )
        self._decompressor = lz4.frame.LZ4FrameDecompressor()
        self._copy_buffer = bytearray(self.copy_buffer_size)

        self._reset_stats()

    def _setup_logging(self) -> logging.Logger:
        """Setup structured logging"""
        level = logging.DEBUG if self.verbose else logging.INFO

        logger.setLevel(level)

        # Avoid duplicate handlers
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger

    def _reset_stats(self) -> None:
        self.stats = {
            "chunks_written": 0,
            "files_processed": 0,
            "bytes_processed": 0,
            "files_skipped": 0,
            "files_restored": 0,
            "tokens_skipped": 0,
            "tokens_rejoined": 0,
        }

    def _parse_size(self, size_str: Union[str, int]) -> int:
        """Parse human-readable size to bytes with validation"""
        if isinstance(size_str, int) and not isinstance(size_str, bool):
            if size_str < 0:
                raise ValueError(f"Size cannot be negative: {size_str}")
            return size_str
        if not isinstance(size_str, str):
            raise ValueError(f"Size must be a string or integer, got {type(size_str)}")

        size_str = size_str.upper().strip()
        if size_str.endswith("B"):
            size_str = size_str[:-1]

        match = re.match(r"^(\d*\.?\d+)([KMGT]?)$", size_str)
        if not match:
            raise ValueError(f"Invalid size format: {size_str}")

        number, unit = match.groups()
        multipliers = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}

        return int(float(number) * multipliers[unit])

    def _format_size(self, size: int) -> str:
        """Format size in human-readable format"""
        if size < 0:
            return "0B"

        for unit in ["B", "KB", "MB", "GB", "TB"]:
            if size < 1024.0:
                return f"{size:.1f}{unit}"
            size /= 1024.0
        return f"{size:.1f}PB"

    def _track(
        self, items: Iterable, total: Optional[int], description: str, progress: bool
    ) -> Iterator:
        """Iterate over items while showing a progress bar when available"""
        # Disable rich/tqdm progress bars in non-TTY environments (CI/CD)
        use_rich_progress = progress and HAS_RICH and self.console and self.is_tty
        use_tqdm_progress = (
            progress and HAS_TQDM and tqdm and self.is_tty and not use_rich_progress
        )

        if use_rich_progress:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self.console,
            ) as progress_bar:
                task = progress_bar.add_task(description, total=total)
                for item in items:
                    yield item
                    progress_bar.update(task, advance=1)
        elif use_tqdm_progress:
            with tqdm(total=total, desc=description, unit="chunks") as pbar:
                for item in items:
                    yield item
                    pbar.update(1)
        elif progress:
            count = 0
            for item in items:
                yield item
                count += 1
                print(f"{description}: {count}/{total if total else '?'}", end="\r")
            print()
        else:
            yield from items

    def _require(self, value: Optional[int], name: str) -> int:
        if value is None:
            raise BigCompressorError(f"Configuration value '{name}' is required")
        return value

    def _reset_buffer(self) -> None:
        self._buffer.seek(0)
        self._buffer.truncate()

    def plan(self, source_path: Union[str, Path]) -> List[Chunk]:
        """Walk the source tree and materialize the whole chunk plan"""
        max_chunk_size = self._require(self.max_chunk_size, "max_chunk_size")

        def note_skipped(path: Path) -> None:
            self.stats["files_skipped"] += 1

        return plan_chunks(walk_entries(source_path, on_skip=note_skipped), max_chunk_size)

    def compress(
        self,
        source_path: Union[str, Path],
        output_path: Union[str, Path],
        progress: bool = True,
    ) -> List[Chunk]:
        """Compress a directory tree into chunk files or one combined file

        Returns:
            The chunk plan that was written

        Raises:
            BigCompressorError: On any walk, encode or write failure
        """
        source_path = Path(source_path).resolve()
        output_path = Path(output_path).resolve()

        if not source_path.exists():
            raise BigCompressorError(f"Source path does not exist: {source_path}")
        if not source_path.is_dir():
            raise BigCompressorError(f"Source path is not a directory: {source_path}")

        start_time = time.time()
        self._reset_stats()

        self.logger.info(f"Scanning source directory: {source_path}")
        chunks = self.plan(source_path)
        self.logger.debug(f"Planned {len(chunks)} chunks")

        if self.dry_run:
            self._dry_run_compress(chunks)
            return chunks

        output_path.parent.mkdir(parents=True, exist_ok=True)

        combined = open(output_path, "wb") if self.combine_chunks else None
        try:
            if combined is not None and self.framing == "length":
                combined.write(FRAMED_MAGIC)

            for chunk in self._track(chunks, len(chunks), "Compressing chunks", progress):
                try:
                    self.encode_chunk(source_path, chunk)
                    if combined is None:
                        self._write_chunk_file(output_path, chunk)
                    else:
                        self._append_chunk(combined, chunk)
                finally:
                    self._reset_buffer()

                self.stats["chunks_written"] += 1
                self.stats["files_processed"] += chunk.file_count
                self.stats["bytes_processed"] += chunk.total_size
                self.logger.debug(
                    f"Chunk {chunk.index}: {len(chunk.entries)} entries, "
                    f"{self._format_size(chunk.total_size)}"
                )
        finally:
            if combined is not None:
                combined.close()

        if combined is None:
            self._remove_stale_chunks(output_path, len(chunks))

        elapsed = time.time() - start_time
        self.logger.info(
            f"Successfully compressed {self.stats['files_processed']} files "
            f"into {self.stats['chunks_written']} chunks"
        )
        self.logger.info(f"Total size: {self._format_size(self.stats['bytes_processed'])}")
        self.logger.info(f"Processing time: {elapsed:.2f}s")
        self.logger.info(f"Output: {output_path}")

        return chunks

    def _build_header(self, entry: Entry) -> tarfile.TarInfo:
        info = tarfile.TarInfo(entry.relative)
        info.mode = entry.mode
        info.mtime = entry.mtime
        if entry.is_dir:
            info.type = tarfile.DIRTYPE
            info.size = 0
        else:
            info.type = tarfile.REGTYPE
            info.size = entry.size
        return info

    def encode_chunk(self, source_path: Path, chunk: Chunk) -> None:
        """Archive and compress one chunk into the chunk buffer"""
        self._reset_buffer()
        self._compressor.reset()

        current = None
        try:
            self._buffer.write(self._compressor.begin())
            sink = _CompressorSink(self._compressor, self._buffer)

            # The tar trailer must reach the compressor before the frame is flushed
            with tarfile.open(
                fileobj=sink, mode="w|", copybufsize=self.copy_buffer_size
            ) as tar:
                for entry in chunk.entries:
                    current = entry
                    info = self._build_header(entry)
                    if entry.is_dir:
                        tar.addfile(info)
                    else:
                        with open(entry.path, "rb") as data:
                            tar.addfile(info, data)

            self._buffer.write(self._compressor.flush())

        except (OSError, tarfile.TarError, RuntimeError) as e:
            where = f" ({current.relative})" if current is not None else ""
            raise ChunkEncodeError(
                f"Cannot encode chunk {chunk.index}{where}: {e}",
                chunk_index=chunk.index,
                path=current.relative if current is not None else None,
            ) from e

    def _write_chunk_file(self, output_path: Path, chunk: Chunk) -> None:
        target = chunk_file_name(output_path, chunk.index)
        try:
            with open(target, "wb") as f, self._buffer.getbuffer() as view:
                f.write(view)
        except OSError as e:
            raise ChunkEncodeError(
                f"Cannot write chunk {chunk.index} to {target}: {e}",
                chunk_index=chunk.index,
                path=str(target),
            ) from e

    def _append_chunk(self, combined: BinaryIO, chunk: Chunk) -> None:
        try:
            with self._buffer.getbuffer() as view:
                if self.framing == "length":
                    combined.write(FRAME_LENGTH.pack(len(view)))
                    combined.write(view)
                else:
                    combined.write(view)
                    combined.write(CHUNK_SEPARATOR)
        except OSError as e:
            raise ChunkEncodeError(
                f"Cannot append chunk {chunk.index} to {combined.name}: {e}",
                chunk_index=chunk.index,
                path=str(combined.name),
            ) from e

    def _remove_stale_chunks(self, output_path: Path, first_index: int) -> None:
        """Delete chunk files left behind by an earlier run with more chunks"""
        index = first_index
        while True:
            stale = chunk_file_name(output_path, index)
            if not stale.is_file():
                break
            try:
                stale.unlink()
            except OSError as e:
                raise ChunkEncodeError(
                    f"Cannot remove stale chunk file {stale}: {e}",
                    chunk_index=index,
                    path=str(stale),
                ) from e
            index += 1

        if index > first_index:
            self.logger.info(f"Removed {index - first_index} stale chunk files")

    def _dry_run_compress(self, chunks: List[Chunk]) -> None:
        """Print the chunk plan without writing anything"""
        self.logger.info("DRY RUN - Chunks that would be written:")

        for chunk in chunks:
            line = (
                f"  chunk {chunk.index}: {chunk.file_count} files, "
                f"{len(chunk.entries) - chunk.file_count} directories, "
                f"{self._format_size(chunk.total_size)}"
            )
            if HAS_RICH and self.console:
                self.console.print(line)
            else:
                print(line)
            if self.verbose:
                for entry in chunk.entries:
                    print(f"    {entry.relative}{'/' if entry.is_dir else ''}")

        total = sum(chunk.total_size for chunk in chunks)
        files = sum(chunk.file_count for chunk in chunks)
        print(f"\nWould write {len(chunks)} chunks, {files} files ({self._format_size(total)})")

    def decompress(
        self,
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        progress: bool = True,
    ) -> int:
        """Restore files from a combined file, a chunk file or a chunk file series

        Returns:
            Number of files restored

        Raises:
            BigCompressorError: On scan, decode or replay failure
        """
        input_path = Path(input_path).resolve()
        output_path = Path(output_path).resolve()
        self._require(self.max_scan_buffer_size, "max_scan_buffer_size")

        if input_path.is_file():
            sources = [input_path]
        elif not input_path.exists() and chunk_file_name(input_path, 0).is_file():
            sources = self._chunk_series(input_path)
        elif input_path.exists():
            raise BigCompressorError(f"Input path is not a file: {input_path}")
        else:
            raise BigCompressorError(f"Input file does not exist: {input_path}")

        start_time = time.time()
        self._reset_stats()

        output_path.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Decompressing: {input_path}")
        self.logger.info(f"Output directory: {output_path}")

        chunk_index = 0
        for source in sources:
            with open(source, "rb") as f:
                tokens = self._chunk_tokens(f, chunk_index)
                for token in self._track(tokens, None, "Decompressing chunks", progress):
                    self.stats["files_restored"] += self.decode_chunk(
                        token, output_path, chunk_index
                    )
                    chunk_index += 1

        elapsed = time.time() - start_time
        self.logger.info(
            f"Successfully restored {self.stats['files_restored']} files "
            f"from {chunk_index} chunks to: {output_path}"
        )
        self.logger.info(f"Processing time: {elapsed:.2f}s")

        return self.stats["files_restored"]

    def _chunk_series(self, prefix: Path) -> List[Path]:
        sources = []
        index = 0
        while chunk_file_name(prefix, index).is_file():
            sources.append(chunk_file_name(prefix, index))
            index += 1
        self.logger.debug(f"Found {len(sources)} chunk files for {prefix}")
        return sources

    def _chunk_tokens(self, f: BinaryIO, first_index: int) -> Iterator[bytes]:
        """Pick the framing of an input file and yield its chunks"""
        if f.read(len(FRAMED_MAGIC)) == FRAMED_MAGIC:
            self.logger.debug("Detected length-prefixed framing")
            return read_framed_tokens(f, self.max_scan_buffer_size)

        f.seek(0)
        tokens = scan_tokens(
            f, CHUNK_SEPARATOR, self.max_scan_buffer_size, self.copy_buffer_size
        )
        return self._rejoin_tokens(tokens, first_index)

    def _rejoin_tokens(self, tokens: Iterable[bytes], first_index: int) -> Iterator[bytes]:
        """
        Turn scanner tokens into whole compressed chunks.

        Short tokens are discarded as noise. A token holding only the start of
        an LZ4 frame means the separator also occurs inside the compressed
        data, so it is glued back to the following token. A frame that ends
        before its token does means the separator overlapped the end of the
        chunk; the bytes after the real separator start the next chunk.
        """
        chunk_index = first_index
        pending = None

        for token in tokens:
            if pending is None:
                if len(token) < MIN_TOKEN_LENGTH:
                    self.stats["tokens_skipped"] += 1
                    self.logger.debug(f"Discarding {len(token)} byte token")
                    continue
                candidate = token
            else:
                candidate = pending + CHUNK_SEPARATOR + token
                if len(candidate) > self.max_scan_buffer_size:
                    raise ScanBufferOverflowError(
                        f"Chunk {chunk_index} exceeds the {self.max_scan_buffer_size} "
                        f"byte scan buffer",
                        limit=self.max_scan_buffer_size,
                    )
            pending = None

            while candidate:
                length = self._frame_length(candidate, chunk_index)
                if length is None:
                    self.stats["tokens_rejoined"] += 1
                    self.logger.warning(
                        f"Chunk separator found inside chunk {chunk_index} data, "
                        f"rejoining with the next token"
                    )
                    pending = candidate
                    break

                rest = candidate[length:]
                if rest and not rest.startswith(CHUNK_SEPARATOR):
                    raise ChunkDecodeError(
                        f"Chunk {chunk_index} has {len(rest)} unexpected trailing bytes",
                        chunk_index=chunk_index,
                    )

                yield candidate[:length]
                chunk_index += 1
                candidate = rest[len(CHUNK_SEPARATOR) :]

        if pending is not None:
            raise ChunkDecodeError(
                f"Input ended inside chunk {chunk_index}", chunk_index=chunk_index
            )

    def _frame_length(self, token: bytes, chunk_index: int) -> Optional[int]:
        """Size of the LZ4 frame at the start of token, None if it is cut short"""
        try:
            return lz4_frame_length(token)
        except ValueError as e:
            raise ChunkDecodeError(
                f"Corrupt chunk {chunk_index}: {e}", chunk_index=chunk_index
            ) from e

    def decode_chunk(self, token: bytes, output_path: Path, chunk_index: int = 0) -> int:
        """Decompress one chunk and replay its regular files under output_path

        Returns:
            Number of files written
        """
        self._decompressor.reset()
        reader = _FrameReader(self._decompressor, token, self.copy_buffer_size)
        restored = 0
        name = None
        try:
            with tarfile.open(fileobj=reader, mode="r|") as tar:
                for member in tar:
                    name = member.name
                    if not member.isreg():
                        self.logger.debug(f"Not materializing {member.name}")
                        continue
                    self._replay_file(tar, member, output_path)
                    restored += 1

            # The content checksum is only checked once the frame end is reached
            name = None
            while reader.read(self.copy_buffer_size):
                pass
            if not self._decompressor.eof:
                raise ChunkDecodeError(
                    f"Chunk {chunk_index} ends inside its LZ4 frame", chunk_index=chunk_index
                )
            if reader.remaining:
                raise ChunkDecodeError(
                    f"Chunk {chunk_index} has {reader.remaining} bytes after its LZ4 frame",
                    chunk_index=chunk_index,
                )
        except (OSError, tarfile.TarError, RuntimeError, EOFError) as e:
            where = f" ({name})" if name else ""
            raise ChunkDecodeError(
                f"Cannot decode chunk {chunk_index}{where}: {e}",
                chunk_index=chunk_index,
                path=name,
            ) from e

        return restored

    def _replay_file(self, tar: tarfile.TarFile, member: tarfile.TarInfo, output_path: Path):
        target = self._sanitize_path(output_path, member.name)

        if not target.parent.is_dir():
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ReplayAbortedError(
                    f"Cannot create directory {target.parent} for {member.name}: {e}"
                ) from e

        mode = member.mode & 0o7777
        source = tar.extractfile(member)
        view = memoryview(self._copy_buffer)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as out:
            # Not subject to umask, unlike the mode given to os.open
            os.fchmod(out.fileno(), mode)
            while True:
                n = source.readinto(view)
                if not n:
                    break
                out.write(view[:n])

        if self.verbose:
            self.logger.debug(f"Restored: {member.name}")

    def _sanitize_path(self, base_dir: Path, unsafe_relative_path: str) -> Path:
        """
        Sanitize and validate extraction path to prevent path traversal attacks.

        Args:
            base_dir: The base output directory
            unsafe_relative_path: The relative path recorded in the archive

        Returns:
            Safe absolute path within base_dir

        Raises:
            SecurityError: If the path would escape the base directory
        """
        base_dir = base_dir.resolve()

        # Normalize the unsafe path: remove leading slashes, handle backslashes
        normalized_path = unsafe_relative_path.replace("\\", "/")
        normalized_path = normalized_path.lstrip("/")

        if "\x00" in normalized_path:
            raise SecurityError(
                f"Path contains null bytes (potential injection): {repr(unsafe_relative_path)}"
            )

        target_path = (base_dir / normalized_path).resolve()

        try:
            target_path.relative_to(base_dir)
        except ValueError:
            raise SecurityError(
                f"Path traversal attempt detected: '{unsafe_relative_path}' "
                f"would escape output directory '{base_dir}'"
            )

        if target_path == base_dir:
            raise SecurityError(f"Archive member has an empty path: {repr(unsafe_relative_path)}")

        return target_path


def create_config_file(config_path: Path) -> bool:
    """Create a default configuration file"""
    default_config = """# Big Compressor Configuration
# Uncomment and modify values as needed

# Maximum uncompressed bytes per chunk (e.g., "64M", "500K", "1G")
# max_chunk_size = "64M"

# Largest chunk the decompressor will buffer while looking for boundaries
# max_scan_buffer_size = "256M"

# Write one combined file instead of one file per chunk
# combine_chunks = false

# Chunk delimiting in combined files: marker or length
# framing = "marker"

# LZ4 compression level (0-16, higher = better compression but slower)
# compression_level = 0

# Buffer size for file I/O operations (in bytes)
# buffer_size = 65536

# verbose = false
"""

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            f.write(default_config)
        return True
    except (OSError, PermissionError) as e:
        print(f"Error creating config file: {e}")
        return False


def load_config_file(config_path: Path) -> Dict:
    """Load configuration from file with error handling"""
    if not config_path.exists():
        return {}

    config = {}
    line_num = 0
    try:
        with open(config_path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                if "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("\"'")

                    if value.lower() in ("true", "false"):
                        config[key] = value.lower() == "true"
                    elif value.isdigit():
                        config[key] = int(value)
                    else:
                        config[key] = value

    except (OSError, UnicodeDecodeError) as e:
        print(f"Warning: Error loading config file on line {line_num}: {e}")

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with comprehensive error handling"""
    parser = argparse.ArgumentParser(
        description="Split a directory into size-bounded LZ4-compressed tar chunks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One file per chunk: backup/data_0, backup/data_1, ...
  %(prog)s compress ./data backup/data -s 64M

  # One combined file
  %(prog)s compress ./data backup/data.bgc -s 64M --combine

  # Combined file with length-prefixed chunks
  %(prog)s compress ./data backup/data.bgc --combine --framing length

  # Restore from a combined file or a chunk file series
  %(prog)s decompress backup/data.bgc ./restored
  %(prog)s decompress backup/data ./restored

  # Show the chunk plan only
  %(prog)s compress ./data backup/data -s 8M --dry-run -v
        """,
    )

    parser.add_argument(
        "operation", nargs="?", help="Operation to perform (compress or decompress)"
    )
    parser.add_argument("input_path", nargs="?", help="Source directory or compressed input")
    parser.add_argument("output_path", nargs="?", help="Output prefix, file or directory")

    parser.add_argument(
        "-s", "--max-chunk-size", default=None, help="Maximum uncompressed bytes per chunk"
    )
    parser.add_argument(
        "-c", "--combine", action="store_true", default=None, help="Write one combined file"
    )
    parser.add_argument(
        "--framing",
        choices=FRAMING_MODES,
        default=None,
        help="Chunk delimiting in combined files",
    )
    parser.add_argument(
        "-b",
        "--max-scan-buffer",
        default=None,
        help="Largest chunk buffered while decompressing",
    )
    parser.add_argument(
        "--compression-level",
        type=int,
        default=None,
        choices=range(0, 17),
        help="LZ4 compression level",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Show the chunk plan only"
    )
    parser.add_argument(
        "--no-progress", action="store_true", help="Disable progress bars"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path.home() / ".config" / "bigcompressor" / "config",
        help="Configuration file path",
    )
    parser.add_argument(
        "--create-config", action="store_true", help="Create default config"
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args(argv)

    if args.create_config:
        if create_config_file(args.config):
            print(f"Created default configuration file: {args.config}")
            return 0
        print(f"Failed to create configuration file: {args.config}")
        return 1

    if not args.operation or not args.input_path or not args.output_path:
        parser.error("operation, input_path, and output_path are required")

    # Fuzzy command matching for typos
    valid_operations = ["compress", "decompress"]
    if args.operation not in valid_operations:
        close_matches = difflib.get_close_matches(
            args.operation, valid_operations, n=1, cutoff=0.6
        )
        if close_matches:
            print(
                f"Unknown command '{args.operation}'. Did you mean '{close_matches[0]}'?",
                file=sys.stderr,
            )
        else:
            print(
                f"Unknown command '{args.operation}'. Valid commands: {', '.join(valid_operations)}",
                file=sys.stderr,
            )
        return 1

    try:
        config = {
            "max_chunk_size": "64M",
            "max_scan_buffer_size": "256M",
            "combine_chunks": False,
            "framing": "marker",
        }
        config.update(load_config_file(args.config))

        # Command line arguments win over the config file
        overrides = {
            "max_chunk_size": args.max_chunk_size,
            "max_scan_buffer_size": args.max_scan_buffer,
            "combine_chunks": args.combine,
            "framing": args.framing,
            "compression_level": args.compression_level,
        }
        config.update({key: value for key, value in overrides.items() if value is not None})
        if args.verbose:
            config["verbose"] = True
        if args.dry_run:
            config["dry_run"] = True

        compressor = BigCompressor(config)
        progress = not args.no_progress

        if args.operation == "compress":
            compressor.compress(args.input_path, args.output_path, progress=progress)
        else:
            compressor.decompress(args.input_path, args.output_path, progress=progress)

        return 0

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except ScanBufferOverflowError as e:
        logger.error(f"{e} (try a larger --max-scan-buffer)")
        return 1
    except ReplayAbortedError as e:
        logger.error(f"Cannot continue: {e}")
        return 1
    except (BigCompressorError, OSError, ValueError) as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            logger.error(traceback.format_exc())
        return 1


def cli_main():
    """Entry point for console scripts"""
    return main()


if __name__ == "__main__":
    sys.exit(cli_main())
