"""Tests for compression codec resolution and streaming."""

import gzip
import io

import fsspec.compression
import pytest

from transfers.lib.codecs import (
    CompressionCodec,
    FsspecCodec,
    codec_for_path,
    get_codec,
    list_codecs,
    register_codec,
)
from transfers.lib.errors import ConfigurationError


class TestCodecResolution:
    """Tests for codec lookup by name and alias."""

    @pytest.mark.parametrize("name", ["gzip", "gz", "GzipCodec", "GZIP"])
    def test_gzip_aliases(self, name: str) -> None:
        """Hadoop-style and short names resolve to the same codec."""
        codec = get_codec(name)
        assert codec.name == "gzip"
        assert codec.extension == ".gz"

    def test_default_is_gzip(self) -> None:
        assert get_codec(None).name == "gzip"

    def test_bzip2_alias(self) -> None:
        codec = get_codec("BZip2Codec")
        assert codec.name == "bz2"
        assert codec.extension == ".bz2"

    def test_unknown_codec(self) -> None:
        """Unknown names raise ConfigurationError listing what is available."""
        with pytest.raises(ConfigurationError, match="not available"):
            get_codec("rot13")

    def test_zip_is_not_a_stream_codec(self) -> None:
        with pytest.raises(ConfigurationError):
            get_codec("zip")

    def test_listing(self) -> None:
        names = list_codecs()
        assert {"gzip", "bz2", "lzma", "xz"} <= set(names)
        assert "zip" not in names

    def test_codec_for_path(self) -> None:
        """Codecs are inferred from file extensions."""
        assert codec_for_path("part-r-00000.gz").name == "gzip"
        assert codec_for_path("part-r-00000.bz2").name == "bz2"
        assert codec_for_path("part-r-00000") is None
        assert codec_for_path("part-r-00000.seq") is None


class TestCodecStreams:
    """Tests for compress/decompress through the codec interface."""

    @pytest.mark.parametrize("name", ["gzip", "bz2", "xz"])
    def test_round_trip(self, name: str) -> None:
        codec = get_codec(name)
        data = b"10,10.0,10\n" * 100
        compressed = codec.compress(data)
        assert compressed != data
        assert codec.decompress(compressed) == data

    def test_gzip_output_is_standard(self) -> None:
        """Files written by the gzip codec open with the gzip module."""
        assert gzip.decompress(get_codec("gzip").compress(b"hello")) == b"hello"

    def test_closing_wrapper_keeps_raw_stream_open(self) -> None:
        """The caller owns the raw stream."""
        raw = io.BytesIO()
        writer = get_codec("gzip").compress_stream(raw)
        writer.write(b"data")
        writer.close()
        assert not raw.closed
        assert gzip.decompress(raw.getvalue()) == b"data"

    def test_custom_codec_registration(self) -> None:
        """Registered codecs resolve by name, alias and extension."""

        class IdentityCodec(CompressionCodec):
            name = "identity"
            extension = ".id"

            def compress_stream(self, raw):
                return raw

            def decompress_stream(self, raw):
                return raw

        codec = register_codec(IdentityCodec(), "IdentityCodec")
        assert get_codec("IdentityCodec") is codec
        assert codec_for_path("file.id") is codec
        assert "identity" in list_codecs()


class _ClosesTarget:
    """Backend stream that closes what it wraps, as zstandard's streams do."""

    def __init__(self, target, mode="rb"):
        self.target = target

    def write(self, data):
        return self.target.write(data)

    def read(self, size=-1):
        return self.target.read(size)

    def close(self):
        self.target.close()


@pytest.fixture
def closing_codec():
    fsspec.compression.register_compression("closes-target", _ClosesTarget, [], force=True)
    try:
        yield FsspecCodec("closes-target", extension=".ct")
    finally:
        fsspec.compression.compr.pop("closes-target", None)


class TestEveryCodec:
    """Every available codec honours the stream contract."""

    @pytest.mark.parametrize("name", list_codecs())
    def test_round_trip(self, name: str) -> None:
        codec = get_codec(name)
        data = b"10,10.0,10\n" * 1000
        assert codec.decompress(codec.compress(data)) == data
        assert codec.decompress(codec.compress(b"")) == b""

    @pytest.mark.parametrize("name", list_codecs())
    def test_raw_stream_stays_open(self, name: str) -> None:
        codec = get_codec(name)
        raw = io.BytesIO()
        writer = codec.compress_stream(raw)
        writer.write(b"first,")
        writer.write(b"second")
        writer.close()
        assert not raw.closed

        compressed = io.BytesIO(raw.getvalue())
        reader = codec.decompress_stream(compressed)
        assert reader.read() == b"first,second"
        reader.close()
        assert not compressed.closed

    def test_backend_that_closes_its_target(self, closing_codec) -> None:
        """A backend closing the stream it wraps cannot close the caller's stream."""
        assert closing_codec.compress(b"abc") == b"abc"
        assert closing_codec.decompress(b"abc") == b"abc"

        raw = io.BytesIO()
        writer = closing_codec.compress_stream(raw)
        writer.write(b"x")
        writer.close()
        assert not raw.closed
        assert raw.getvalue() == b"x"
