"""Tests for checksum.py."""

import hashlib
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from checksum import ChecksumMap, compute_checksum


class TestComputeChecksum:
    """Test content hashing."""

    def test_bytes_hashed_directly(self):
        assert compute_checksum(b'abc') == hashlib.sha256(b'abc').hexdigest()

    def test_str_hashed_as_utf8(self):
        assert compute_checksum('abc') == compute_checksum(b'abc')

    def test_mapping_independent_of_insertion_order(self):
        a = {'tls.crt': b'cert', 'tls.key': b'key'}
        b = {'tls.key': b'key', 'tls.crt': b'cert'}
        assert compute_checksum(a) == compute_checksum(b)

    def test_different_content_differs(self):
        assert compute_checksum({'k': b'1'}) != compute_checksum({'k': b'2'})


class TestChecksumMap:
    """Test single-writer slots."""

    def test_track_records_and_returns(self):
        checksums = ChecksumMap()
        value = checksums.track('checksum/secret-a', b'data')
        assert checksums.get('checksum/secret-a') == value
        assert 'checksum/secret-a' in checksums
        assert len(checksums) == 1

    def test_same_value_twice_is_noop(self):
        checksums = ChecksumMap()
        checksums.set('k', 'v')
        checksums.set('k', 'v')
        assert checksums.get('k') == 'v'

    def test_different_value_rejected(self):
        checksums = ChecksumMap()
        checksums.set('k', 'v')
        with pytest.raises(ValueError):
            checksums.set('k', 'w')

    def test_annotations_sorted_snapshot(self):
        checksums = ChecksumMap()
        checksums.set('b', '2')
        checksums.set('a', '1')
        annotations = checksums.annotations()
        assert list(annotations) == ['a', 'b']
        annotations['c'] = '3'
        assert 'c' not in checksums

    def test_concurrent_writers_distinct_keys(self):
        checksums = ChecksumMap()
        threads = [threading.Thread(target=checksums.track, args=(f'k{i}', str(i))) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(checksums) == 20
