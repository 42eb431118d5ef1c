"""
Classifier Tests - Verify content classification.

Tests:
- Stat checks (empty, too large, not a regular file)
- Binary, generated, minified and vendored heuristics
- Filtering levels
- max_file_count cap
- Bounded line reader, raw-byte fingerprints and read_file()
"""

from dataclasses import replace

import pytest

import ingestion.classifier as classifier_module
from ingestion.classifier import (
    BinaryHeuristic,
    BoundedLineReader,
    ContentClassifier,
    GeneratedHeuristic,
    MinifiedHeuristic,
    VendorHeuristic,
    build_heuristics,
    detect_language,
)
from ingestion.config import IndexerConfig
from ingestion.fingerprint import fingerprint
from ingestion.models import (
    FileRecord,
    FilterAggressiveness,
    RejectReason,
    Rejection,
    SizeClass,
)
from ingestion.scaling import SCALING_TABLE

from conftest import write


MINIFIED_JS = "var a=1;" + "a=function(b,c){return(b+c)}(a,1);" * 200 + "\n"


@pytest.fixture
def small_scaling():
    return SCALING_TABLE[SizeClass.SMALL]


@pytest.fixture
def classifier(repo, test_config, small_scaling):
    return ContentClassifier(repo, test_config, small_scaling)


class TestStatChecks:
    """Tests for the cheap checks that run before reading."""

    def test_accepts_source(self, repo, classifier):
        """A plain source file becomes a FileRecord."""
        write(repo, "src/main.py", "def main():\n    return 1\n")

        result = classifier.classify("src/main.py")

        assert isinstance(result, FileRecord)
        assert result.path == "src/main.py"
        assert result.language == "python"
        assert result.size == len("def main():\n    return 1\n")
        assert result.line_count == 3
        assert result.content.startswith("def main")

    def test_empty(self, repo, classifier):
        """Zero-byte files are rejected as EMPTY."""
        write(repo, "empty.py", "")

        assert classifier.classify("empty.py").reason == RejectReason.EMPTY

    def test_too_large(self, repo, test_config, small_scaling):
        """Files over max_file_size are rejected before being read."""
        write(repo, "big.txt", "x" * 200)
        classifier = ContentClassifier(repo, test_config, replace(small_scaling, max_file_size=100))

        result = classifier.classify("big.txt")

        assert isinstance(result, Rejection)
        assert result.reason == RejectReason.TOO_LARGE

    def test_size_at_limit_accepted(self, repo, test_config, small_scaling):
        """A file exactly at the limit is accepted."""
        write(repo, "edge.txt", "x " * 50)
        classifier = ContentClassifier(repo, test_config, replace(small_scaling, max_file_size=100))

        assert isinstance(classifier.classify("edge.txt"), FileRecord)

    def test_directory_not_regular(self, repo, classifier):
        """A directory is not a regular file."""
        (repo / "somedir").mkdir()

        assert classifier.classify("somedir").reason == RejectReason.NOT_REGULAR_FILE

    def test_missing_file_unreadable(self, classifier):
        """A candidate deleted since enumeration is UNREADABLE, not an exception."""
        assert classifier.classify("gone.py").reason == RejectReason.UNREADABLE


class TestBinary:
    """Tests for binary detection."""

    def test_nul_byte(self, repo, classifier):
        """A NUL byte marks the file binary."""
        write(repo, "blob.dat2", b"abc\x00def")

        assert classifier.classify("blob.dat2").reason == RejectReason.BINARY

    def test_invalid_utf8(self, repo, classifier):
        """Bytes that are not UTF-8 mark the file binary."""
        write(repo, "latin.txt", b"caf\xe9 au lait\n")

        assert classifier.classify("latin.txt").reason == RejectReason.BINARY

    def test_binary_extension(self):
        """Known binary extensions are rejected from the path alone."""
        assert BinaryHeuristic().classify("lib/app.wasm", b"text") == RejectReason.BINARY

    def test_control_characters(self):
        """Mostly control characters is binary."""
        sample = b"\x01\x02\x03\x04ab"

        assert BinaryHeuristic().classify("x.txt", sample) == RejectReason.BINARY

    def test_multibyte_cut_at_sample_edge(self):
        """A UTF-8 character split by the sample boundary is still text."""
        sample = "héllo wörld ✓".encode("utf-8")[:-1]

        assert BinaryHeuristic().classify("x.txt", sample) is None

    def test_utf8_text_accepted(self, repo, classifier):
        """Non-ASCII UTF-8 text is fine."""
        write(repo, "notes.md", "Ünïcödé notes ✓\n")

        assert isinstance(classifier.classify("notes.md"), FileRecord)


class TestGenerated:
    """Tests for generated-code detection."""

    def test_generated_marker(self, repo, classifier):
        """A "DO NOT EDIT" header marks generated code."""
        write(repo, "api.pb.go", "// Code generated by protoc-gen-go. DO NOT EDIT.\npackage api\n")

        assert classifier.classify("api.pb.go").reason == RejectReason.GENERATED

    def test_marker_below_header_ignored(self):
        """Markers deep in the file don't count."""
        body = "\n".join(["x = 1"] * 30 + ["# @generated"])
        heuristic = GeneratedHeuristic(["@generated"], header_lines=5)

        assert heuristic.classify("a.py", body.encode()) is None

    def test_standard_markers_wider(self):
        """STANDARD catches banners PERMISSIVE lets through."""
        sample = b"# This file was automatically generated by a script\nx = 1\n"
        permissive = build_heuristics(FilterAggressiveness.PERMISSIVE)[1]
        standard = build_heuristics(FilterAggressiveness.STANDARD)[1]

        assert permissive.classify("a.py", sample) is None
        assert standard.classify("a.py", sample) == RejectReason.GENERATED


class TestMinified:
    """Tests for minified-code detection."""

    def test_minified_rejected(self, repo, classifier):
        """One huge line with no whitespace is minified."""
        write(repo, "bundle.js", MINIFIED_JS)

        assert classifier.classify("bundle.js").reason == RejectReason.MINIFIED

    def test_normal_code_accepted(self):
        """Ordinary code is not minified."""
        sample = ("def f(a, b):\n    return a + b\n\n" * 100).encode()

        assert MinifiedHeuristic().classify("a.py", sample) is None

    def test_short_sample_never_minified(self):
        """Tiny files are never judged minified."""
        assert MinifiedHeuristic().classify("a.js", b"a=1;b=2;") is None

    def test_aggressive_lower_threshold(self):
        """AGGRESSIVE flags long dense lines that PERMISSIVE allows."""
        line = "x=" + "a+b*c-d/e" * 40   # ~360 chars, no spaces
        sample = ((line + "\n") * 5).encode()
        permissive = build_heuristics(FilterAggressiveness.PERMISSIVE)[2]
        aggressive = build_heuristics(FilterAggressiveness.AGGRESSIVE)[2]

        assert permissive.classify("a.js", sample) is None
        assert aggressive.classify("a.js", sample) == RejectReason.MINIFIED


class TestVendor:
    """Tests for vendored-code detection."""

    def test_vendor_dir_rejected(self, repo, classifier):
        """Files under vendor/ are rejected even on small codebases."""
        write(repo, "vendor/b.js", "function b() { return 2; }\n")

        assert classifier.classify("vendor/b.js").reason == RejectReason.VENDORED

    def test_vendor_match_is_per_segment(self):
        """Only whole directory names count."""
        heuristic = VendorHeuristic(["vendor"])

        assert heuristic.classify("src/vendors_api.py", b"") is None
        assert heuristic.classify("src/vendor.py", b"") is None
        assert heuristic.classify("a/Vendor/x.py", b"") == RejectReason.VENDORED

    def test_aggressive_wider_dirs(self):
        """AGGRESSIVE adds external/, deps/ and friends."""
        permissive = build_heuristics(FilterAggressiveness.PERMISSIVE)[3]
        aggressive = build_heuristics(FilterAggressiveness.AGGRESSIVE)[3]

        for path in ["external/lib.c", "deps/x.js", "ios/Pods/A/a.m", "Carthage/B/b.swift"]:
            assert permissive.classify(path, b"") is None
            assert aggressive.classify(path, b"") == RejectReason.VENDORED


class TestClassifyAll:
    """Tests for classifying a candidate set."""

    def test_partitions(self, sample_repo, repo, classifier):
        """Candidates split into accepted and rejected with reasons."""
        candidates = [
            "README.md", "config.json", "data.bin2", "empty.txt",
            "src/main.py", "src/lib/util.ts", "vendor/lib.js",
        ]

        result = classifier.classify_all(candidates)

        assert sorted(r.path for r in result.accepted) == [
            "README.md", "config.json", "src/lib/util.ts", "src/main.py",
        ]
        assert result.rejected_by_reason() == {
            RejectReason.BINARY: 1,
            RejectReason.EMPTY: 1,
            RejectReason.VENDORED: 1,
        }
        assert result.dropped_over_limit == 0

    def test_max_file_count(self, repo, test_config, small_scaling):
        """Acceptance stops at max_file_count; the rest are dropped."""
        for i in range(5):
            write(repo, f"f{i}.py", f"x = {i}\n")
        classifier = ContentClassifier(repo, test_config, replace(small_scaling, max_file_count=3))

        result = classifier.classify_all([f"f{i}.py" for i in range(5)])

        assert len(result.accepted) == 3
        assert result.dropped_over_limit == 2
        assert result.rejected == []


class TestStreaming:
    """Tests for the bounded line reader."""

    def test_reader_truncates(self, temp_dir):
        """Iteration stops at max_lines and flags truncation."""
        path = write(temp_dir, "long.txt", "".join(f"line {i}\n" for i in range(50)))

        with BoundedLineReader(path, max_lines=10) as reader:
            lines = list(reader)

        assert lines == [f"line {i}" for i in range(10)]
        assert reader.truncated is True

    def test_reader_not_truncated(self, temp_dir):
        """Short files are read whole."""
        path = write(temp_dir, "short.txt", "a\nb\n")

        with BoundedLineReader(path, max_lines=10) as reader:
            lines = list(reader)

        assert lines == ["a", "b"]
        assert reader.truncated is False

    def test_reader_closes_on_early_exit(self, temp_dir):
        """Abandoning iteration still releases the file."""
        path = write(temp_dir, "long.txt", "x\n" * 100)

        with BoundedLineReader(path, max_lines=50) as reader:
            for line in reader:
                break

        assert reader._raw.closed

    def test_reader_fingerprint_covers_whole_file(self, temp_dir):
        """The digest includes the bytes past the line cap."""
        data = "".join(f"line {i}\n" for i in range(50)).encode()
        path = write(temp_dir, "long.txt", data)

        with BoundedLineReader(path, max_lines=10) as reader:
            list(reader)

        assert reader.truncated is True
        assert reader.fingerprint == fingerprint(data)

    def test_reader_fingerprint_unset_on_early_exit(self, temp_dir):
        """A partially read file has no digest."""
        path = write(temp_dir, "long.txt", "x\n" * 100)

        with BoundedLineReader(path, max_lines=50) as reader:
            for line in reader:
                break

        assert reader.fingerprint is None

    def test_reader_closes_when_first_read_fails(self, temp_dir, monkeypatch):
        """A failing first read does not leak the handle."""
        path = write(temp_dir, "a.txt", "a\n")

        class BrokenHandle:
            closed = False

            def read(self, size=-1):
                raise OSError("read failed")

            def close(self):
                self.closed = True

        handle = BrokenHandle()
        monkeypatch.setattr(classifier_module, "open", lambda *a, **kw: handle, raising=False)

        with pytest.raises(OSError):
            BoundedLineReader(path, max_lines=10)

        assert handle.closed

    def test_streaming_classification(self, repo, small_scaling):
        """Large files are streamed and capped when streaming is enabled."""
        config = IndexerConfig(
            data_dir=repo.parent / "stores",
            stream_large_files=True,
            large_file_threshold=100,
            max_stream_lines=5,
        )
        write(repo, "big.py", "".join(f"value_{i} = {i}\n" for i in range(100)))
        classifier = ContentClassifier(repo, config, small_scaling)

        result = classifier.classify("big.py")

        assert isinstance(result, FileRecord)
        assert result.truncated is True
        assert result.line_count == 5
        assert result.content.splitlines()[-1] == "value_4 = 4"

    def test_streaming_binary_first_chunk(self, repo, small_scaling):
        """In streaming mode the binary check uses the first chunk."""
        config = IndexerConfig(
            data_dir=repo.parent / "stores",
            stream_large_files=True,
            large_file_threshold=10,
        )
        write(repo, "mixed.txt", b"\x00\x01binary header" + b"text\n" * 50)
        classifier = ContentClassifier(repo, config, small_scaling)

        assert classifier.classify("mixed.txt").reason == RejectReason.BINARY

    def test_streaming_fingerprint_of_raw_bytes(self, repo, small_scaling):
        """A truncated record still carries the digest of the whole file."""
        config = IndexerConfig(
            data_dir=repo.parent / "stores",
            stream_large_files=True,
            large_file_threshold=10,
            max_stream_lines=2,
        )
        path = write(repo, "a.py", "x = 1\ny = 2\nz = 3\n")
        classifier = ContentClassifier(repo, config, small_scaling)

        result = classifier.classify("a.py")

        assert result.truncated is True
        assert result.fingerprint == fingerprint(path.read_bytes())


class TestReadFile:
    """Tests for the unfiltered single-file accessor."""

    def test_reads_text(self, repo, classifier):
        """read_file returns a record for text files, bypassing other filters."""
        write(repo, "vendor/x.js", "var x = 1;\n")

        record = classifier.read_file("vendor/x.js")

        assert record is not None
        assert record.path == "vendor/x.js"
        assert record.content == "var x = 1;\n"

    def test_absolute_path(self, repo, classifier):
        """Absolute paths inside the root are made relative."""
        path = write(repo, "src/a.py", "a = 1\n")

        assert classifier.read_file(path).path == "src/a.py"

    def test_rejects_binary(self, repo, classifier):
        """read_file still refuses binary content."""
        write(repo, "blob.txt", b"\x00\x00\x00")

        assert classifier.read_file("blob.txt") is None

    def test_missing(self, classifier):
        """Missing files give None."""
        assert classifier.read_file("nope.txt") is None

    def test_whole_read_fingerprint(self, repo, classifier):
        """Records carry the digest of the bytes on disk."""
        path = write(repo, "src/a.py", "a = 1\r\nb = 2\n")

        assert classifier.classify("src/a.py").fingerprint == fingerprint(path.read_bytes())
        assert classifier.read_file("src/a.py").fingerprint == fingerprint(path.read_bytes())


class TestLanguage:
    """Tests for language detection."""

    @pytest.mark.parametrize("path,language", [
        ("src/main.rs", "rust"),
        ("app.tsx", "typescript"),
        ("Dockerfile", "dockerfile"),
        ("docker/Dockerfile.dev", "dockerfile"),
        ("Makefile", "makefile"),
        ("notes.unknownext", None),
    ])
    def test_detect(self, path, language):
        assert detect_language(path) == language
