import functools
import shutil
from pathlib import Path

import pytest
from PIL import Image

from tinyimg import image_processor
from tinyimg.codec import EncodeSettings, decode
from tinyimg.errors import CodecFailure, DecodeError, IoError, PostCompressionWarning
from tinyimg.fileio import read_bytes
from tinyimg.image_processor import ImageProcessor
from tinyimg.metric import fuzz_difference
from tinyimg.quality_search import QualitySearcher, SearchBounds


class RecordingRecompressor:
    def __init__(self):
        self.calls = []

    def __call__(self, path, fmt=None):
        self.calls.append((Path(path), fmt))
        return 0


def failing_recompressor(path, fmt=None):
    raise RuntimeError("optimizer crashed")


@pytest.fixture
def recompressor():
    return RecordingRecompressor()


@pytest.fixture
def processor(recompressor):
    return ImageProcessor(recompressor=recompressor)


def test_process_writes_output_within_tolerance(write_image, tmp_path, processor, recompressor):
    source = write_image("in.jpg", format="JPEG", quality=100)
    dest = tmp_path / "out.jpg"

    result = processor.process(source, dest, eps=0.02)

    assert dest.exists()
    assert 1 <= result.quality <= 100
    assert result.iterations <= 7
    assert result.final_size == dest.stat().st_size
    original = decode(read_bytes(source))
    assert fuzz_difference(original, decode(read_bytes(dest))) <= 0.02
    assert recompressor.calls == [(dest.resolve(), "JPEG")]


def test_process_is_deterministic(write_image, tmp_path, processor):
    source = write_image("in.jpg", format="JPEG", quality=100)

    first = processor.process(source, tmp_path / "a.jpg", eps=0.02)
    second = processor.process(source, tmp_path / "b.jpg", eps=0.02)

    assert first.quality == second.quality
    assert (tmp_path / "a.jpg").read_bytes() == (tmp_path / "b.jpg").read_bytes()


def test_in_place_overwrite_shrinks_file(write_image, tmp_path, processor):
    source = write_image("photo.jpg", size=(160, 120), format="JPEG", quality=100)
    backup = tmp_path / "backup.jpg"
    shutil.copyfile(source, backup)

    result = processor.process(source, source, eps=0.02)

    assert result.output_path == source
    assert source.stat().st_size <= backup.stat().st_size
    before = decode(read_bytes(backup))
    after = decode(read_bytes(source))
    assert fuzz_difference(before, after) <= 0.02 + 1e-9


def test_output_format_follows_destination_extension(write_image, tmp_path, processor, recompressor):
    source = write_image("in.png", format="PNG")
    dest = tmp_path / "out.webp"

    processor.process(source, dest)

    with Image.open(dest) as img:
        assert img.format == "WEBP"
    assert recompressor.calls[0][1] == "WEBP"


def test_missing_source_is_io_error(tmp_path, processor):
    with pytest.raises(IoError) as excinfo:
        processor.process(tmp_path / "missing.jpg", tmp_path / "out.jpg")
    assert excinfo.value.stage == "read"
    assert excinfo.value.path == tmp_path / "missing.jpg"


def test_unsupported_extension_rejected(tmp_path, processor):
    f = tmp_path / "bad.txt"
    f.write_text("data")
    with pytest.raises(IoError):
        processor.process(f, tmp_path / "out.png")


def test_corrupt_source_is_decode_error(tmp_path, processor):
    bad = tmp_path / "corrupt.png"
    bad.write_bytes(b"\x89PNG\r\n\x1a\n not really")
    dest = tmp_path / "out.png"

    with pytest.raises(DecodeError) as excinfo:
        processor.process(bad, dest)

    assert excinfo.value.path == bad
    assert not dest.exists()


def test_missing_destination_directory_is_io_error(write_image, tmp_path, processor):
    source = write_image("in.jpg", format="JPEG")
    with pytest.raises(IoError) as excinfo:
        processor.process(source, tmp_path / "nope" / "out.jpg")
    assert excinfo.value.stage == "write"


def test_failed_write_leaves_no_partial_file(write_image, tmp_path, processor, monkeypatch):
    source = write_image("in.jpg", format="JPEG")
    dest = tmp_path / "out.jpg"
    dest.write_bytes(b"previous content")

    def refuse(src, dst):
        raise PermissionError("read-only destination")

    monkeypatch.setattr("tinyimg.fileio.os.replace", refuse)

    with pytest.raises(IoError) as excinfo:
        processor.process(source, dest)

    assert excinfo.value.stage == "write"
    assert dest.read_bytes() == b"previous content"
    assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]


def test_codec_failure_during_search(write_image, tmp_path, monkeypatch, processor):
    source = write_image("in.jpg", format="JPEG")

    def broken(source, quality, settings):
        raise OSError("encoder unavailable")

    monkeypatch.setattr(
        "tinyimg.image_processor.QualitySearcher", functools.partial(QualitySearcher, encoder=broken)
    )

    with pytest.raises(CodecFailure) as excinfo:
        processor.process(source, tmp_path / "out.jpg")
    assert excinfo.value.path == source
    assert excinfo.value.stage == "search"
    assert not (tmp_path / "out.jpg").exists()


def test_lossless_failure_is_a_warning(write_image, tmp_path, caplog):
    source = write_image("in.jpg", format="JPEG", quality=100)
    dest = tmp_path / "out.jpg"
    processor = ImageProcessor(recompressor=failing_recompressor)

    with caplog.at_level("WARNING"):
        result = processor.process(source, dest)

    assert len(result.warnings) == 1
    assert isinstance(result.warnings[0], PostCompressionWarning)
    assert "Lossless pass failed" in caplog.text
    assert result.final_size == result.encoded_size == dest.stat().st_size
    decode(read_bytes(dest))


def test_custom_bounds_are_used(write_image, tmp_path, recompressor):
    source = write_image("in.jpg", format="JPEG")
    processor = ImageProcessor(bounds=SearchBounds(80, 81), recompressor=recompressor)

    result = processor.process(source, tmp_path / "out.jpg")

    assert result.quality == 81
    assert result.iterations == 0


def test_probe_hook_is_forwarded(write_image, tmp_path, recompressor):
    source = write_image("in.jpg", format="JPEG")
    probes = []
    processor = ImageProcessor(recompressor=recompressor, on_probe=lambda *p: probes.append(p))

    result = processor.process(source, tmp_path / "out.jpg")

    assert len(probes) == result.iterations > 0


def test_settings_downscale_reference(write_image, tmp_path, recompressor):
    source = write_image("in.png", size=(64, 48), format="PNG")
    processor = ImageProcessor(EncodeSettings(format="PNG", max_dimension=16), recompressor=recompressor)

    processor.process(source, tmp_path / "out.png")

    with Image.open(tmp_path / "out.png") as img:
        assert max(img.size) == 16


def test_batch_isolates_failures(write_image, tmp_path, processor):
    first = write_image("a.jpg", format="JPEG", quality=100)
    corrupt = tmp_path / "b.jpg"
    corrupt.write_bytes(b"\xff\xd8\xff garbage")
    third = write_image("c.jpg", format="JPEG", quality=100)
    jobs = [(p, p.with_name(p.stem + "_tiny.jpg")) for p in (first, corrupt, third)]

    outcomes = processor.process_batch(jobs, eps=0.02)

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, DecodeError)
    assert outcomes[1].result is None
    for outcome in (outcomes[0], outcomes[2]):
        assert outcome.output_path.exists()
        decode(read_bytes(outcome.output_path))
    assert not (tmp_path / "b_tiny.jpg").exists()


def test_batch_continues_past_unresolvable_path(write_image, tmp_path, processor):
    first = write_image("a.jpg", format="JPEG", quality=100)
    loop = tmp_path / "loop.jpg"
    loop.symlink_to(loop)
    third = write_image("c.jpg", format="JPEG", quality=100)
    jobs = [(p, p.with_name(p.stem + "_tiny.jpg")) for p in (first, loop, third)]

    outcomes = processor.process_batch(jobs, eps=0.02)

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, IoError)
    assert outcomes[1].error.stage == "read"
    assert outcomes[1].error.path == loop
    assert (tmp_path / "c_tiny.jpg").exists()


def test_batch_continues_past_unexpected_encoder_error(write_image, tmp_path, processor, monkeypatch):
    first = write_image("a.jpg", format="JPEG", quality=100)
    second = write_image("b.png", format="PNG")
    real_encode = image_processor.encode

    def encode_rejecting_png(reference, quality, settings):
        if settings.format == "PNG":
            raise TypeError("unsupported image mode")
        return real_encode(reference, quality, settings)

    monkeypatch.setattr(image_processor, "encode", encode_rejecting_png)
    jobs = [(first, tmp_path / "a_tiny.jpg"), (second, tmp_path / "b_tiny.png"), (first, tmp_path / "c_tiny.jpg")]

    outcomes = processor.process_batch(jobs, eps=0.02)

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, CodecFailure)
    assert outcomes[1].error.stage == "encode"
    assert isinstance(outcomes[1].error.__cause__, TypeError)
    assert not (tmp_path / "b_tiny.png").exists()
    assert (tmp_path / "c_tiny.jpg").exists()


def test_batch_logs_failures(tmp_path, processor, caplog):
    with caplog.at_level("ERROR"):
        outcomes = processor.process_batch([(tmp_path / "x.jpg", tmp_path / "x.jpg")])
    assert not outcomes[0].ok
    assert "Failed to process" in caplog.text
    assert "x.jpg" in caplog.text
