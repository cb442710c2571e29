"""
UTF-8 Sanitizer

Filters the COPY byte stream so that PostgreSQL only ever sees valid
UTF-8. Invalid byte sequences (legacy latin1 artifacts stored in utf8mb4
columns, truncated multibyte characters) are dropped, or replaced with
U+FFFD under the 'replace' policy. The filter never raises: the transfer
always completes, and the damage is reported as counts.

Decoding uses the 'surrogateescape' handler, which maps every undecodable
byte to exactly one lone surrogate in U+DC80..U+DCFF. Counting and
removing those surrogates gives the same result as `iconv -c`.
"""

from collections import Counter
from typing import Any, List, Optional, Tuple
import logging
import re

logger = logging.getLogger(__name__)

POLICIES = ('drop', 'replace')

REPLACEMENT_CHARACTER = '\ufffd'

# Lone surrogates produced by surrogateescape for bytes 0x80..0xFF
_ESCAPED_BYTE_RE = re.compile('[\udc80-\udcff]')


class Utf8Sanitizer:
    """
    Lossy UTF-8 validating filter with drop accounting.

    Usage:
        sanitizer = Utf8Sanitizer(policy='drop')
        clean = sanitizer.sanitize_row(raw_line, row_key=42)
        ...
        sanitizer.log_summary('text_content')
    """

    def __init__(self, policy: str = 'drop', sample_limit: int = 20):
        """
        Initialize the sanitizer.

        Args:
            policy: 'drop' removes invalid bytes; 'replace' substitutes U+FFFD
            sample_limit: Maximum affected rows remembered for the report
        """
        if policy not in POLICIES:
            raise ValueError(f"Invalid encoding policy '{policy}': must be one of {', '.join(POLICIES)}")

        self.policy = policy
        self.sample_limit = sample_limit
        self.bytes_in = 0
        self.bytes_out = 0
        self.dropped_bytes = 0
        self.affected_rows = 0
        self.byte_counts: Counter = Counter()
        self.samples: List[Tuple[Any, str]] = []

    def sanitize_row(self, data: bytes, row_key: Any = None) -> bytes:
        """
        Sanitize one complete COPY row.

        Args:
            data: Encoded row, including its trailing newline
            row_key: Identifier recorded if this row loses bytes (identity
                value when the table has one, otherwise the row number)

        Returns:
            Valid UTF-8 bytes
        """
        self.bytes_in += len(data)
        try:
            data.decode('utf-8')
        except UnicodeDecodeError:
            cleaned, dropped = self._clean(data.decode('utf-8', errors='surrogateescape'))
            self.affected_rows += 1
            if len(self.samples) < self.sample_limit:
                self.samples.append((row_key, ' '.join(f'{b:02x}' for b in dropped)))
            data = cleaned.encode('utf-8')

        self.bytes_out += len(data)
        return data

    @property
    def dropped_ratio(self) -> float:
        """Fraction of input bytes that were invalid."""
        return self.dropped_bytes / self.bytes_in if self.bytes_in else 0.0

    def stats(self) -> dict:
        """Counters suitable for a transfer result dict."""
        return {
            'encoding_policy': self.policy,
            'bytes_in': self.bytes_in,
            'bytes_out': self.bytes_out,
            'dropped_bytes': self.dropped_bytes,
            'affected_rows': self.affected_rows,
            'top_invalid_bytes': [f'0x{b:02x}' for b, _ in self.byte_counts.most_common(10)],
            'affected_row_samples': [key for key, _ in self.samples],
        }

    def log_summary(self, table_name: Optional[str] = None) -> None:
        """Log the drop accounting; warns when any byte was invalid."""
        label = f" in {table_name}" if table_name else ""
        if not self.dropped_bytes:
            logger.info(f"✓ No invalid UTF-8 bytes{label}")
            return

        action = "Dropped" if self.policy == 'drop' else "Replaced"
        logger.warning(
            f"⚠ {action} {self.dropped_bytes:,} invalid UTF-8 bytes{label} "
            f"({self.dropped_ratio * 100:.4f}% of {self.bytes_in:,} bytes, "
            f"{self.affected_rows:,} rows affected)"
        )
        histogram = ', '.join(f"0x{b:02x}×{n:,}" for b, n in self.byte_counts.most_common(10))
        logger.warning(f"  Invalid byte distribution: {histogram}")
        for row_key, hex_bytes in self.samples:
            logger.warning(f"  Row {row_key}: {hex_bytes}")

    def _clean(self, text: str) -> Tuple[str, bytes]:
        """Strip or replace escaped bytes; returns (clean text, dropped bytes)."""
        dropped = bytearray()

        def _substitute(match) -> str:
            byte = ord(match.group(0)) - 0xDC00
            dropped.append(byte)
            self.byte_counts[byte] += 1
            return REPLACEMENT_CHARACTER if self.policy == 'replace' else ''

        cleaned = _ESCAPED_BYTE_RE.sub(_substitute, text)
        self.dropped_bytes += len(dropped)
        return cleaned, bytes(dropped)
