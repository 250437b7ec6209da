"""
Default archive reader for ARC files (.arc.gz)
Records are read with warcio; each one is turned into an ArchiveRecord
holding the ARC header fields and the raw payload bytes.
"""

import gzip
import os
import zlib
from dataclasses import dataclass, field
from typing import Dict, Iterator

from warcio.archiveiterator import ArchiveIterator
from warcio.recordloader import ArchiveLoadFailed
from warcio.statusandheaders import StatusAndHeadersParserException

from traitor.common.errors import ArchiveReadError

FILEDESC_PREFIX = "filedesc://"


@dataclass
class ArchiveRecord:
    """One document from an archive: header metadata plus raw payload"""
    header: Dict[str, str] = field(default_factory=dict)
    payload: bytes = b""

    @property
    def url(self) -> str:
        return self.header.get('url', '')

    @property
    def content_type(self) -> str:
        return self.header.get('content_type', '')

    def text(self, encoding: str = 'utf-8') -> str:
        """Payload decoded leniently."""
        return self.payload.decode(encoding, errors='ignore')


def record_header(rec_headers) -> Dict[str, str]:
    """
    ARC header fields of a warcio record

    Raises:
        ArchiveReadError: If the record length is not a non-negative integer
    """
    length = (rec_headers.get_header('length') or '').strip()
    if not length.isdigit():
        raise ArchiveReadError(f"Malformed ARC record length: {length!r}")

    return {
        'url': rec_headers.get_header('uri') or '',
        'ip': rec_headers.get_header('ip-address') or '',
        'date': rec_headers.get_header('archive-date') or '',
        'content_type': rec_headers.get_header('content-type') or '',
        'length': length,
    }


def read_arc_records(path: str) -> Iterator[ArchiveRecord]:
    """
    Iterate over the records of an .arc.gz file

    Args:
        path: Path to the archive

    Yields:
        ArchiveRecord for every document (the filedesc version block is skipped)

    Raises:
        ArchiveReadError: If the file cannot be opened, decompressed or parsed
    """
    try:
        with open(path, 'rb') as f:
            for record in ArchiveIterator(f, no_record_parse=True):
                if record.rec_type == 'arc_header':
                    continue
                header = record_header(record.rec_headers)
                if header['url'].startswith(FILEDESC_PREFIX):
                    continue

                length = int(header['length'])
                payload = record.raw_stream.read()
                if len(payload) < length:
                    raise ArchiveReadError(
                        f"Truncated ARC record in {path}: expected {length} bytes, got {len(payload)}")
                yield ArchiveRecord(header=header, payload=payload)
    except ArchiveReadError:
        raise
    except (ArchiveLoadFailed, StatusAndHeadersParserException, OSError, EOFError, zlib.error) as e:
        raise ArchiveReadError(f"Cannot read archive {path}: {e}") from e


def write_arc_records(path: str, records, filedesc: bool = True):
    """
    Write records as an .arc.gz file, one gzip member per record.
    Used to build sample inputs and test fixtures.

    Args:
        path: Destination file
        records: Iterable of (url, payload_bytes) or ArchiveRecord
        filedesc: Whether to start the file with a version block
    """
    with open(path, 'wb') as out:
        if filedesc:
            block = b"1 0 traitor\nURL IP-address Archive-date Content-type Archive-length\n"
            head = f"filedesc://{os.path.basename(path)} 0.0.0.0 20120101000000 text/plain {len(block)}\n".encode('latin-1')
            out.write(gzip.compress(head + block + b"\n"))
        for record in records:
            if isinstance(record, ArchiveRecord):
                url, payload = record.url, record.payload
                mime = record.content_type or 'text/html'
            else:
                url, payload = record
                mime = 'text/html'
            head = f"{url} 0.0.0.0 20120101000000 {mime} {len(payload)}\n".encode('latin-1')
            out.write(gzip.compress(head + payload + b"\n"))
