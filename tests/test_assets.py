import io
import threading
from pathlib import Path

import pytest

import csdn2md.assets as assets
from csdn2md.assets import AssetSink


def _png_bytes() -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(10, 200, 10)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_localize_rejects_non_string_arguments():
    sink = AssetSink()

    with pytest.raises(TypeError):
        sink.localize_image(None, "assets")
    with pytest.raises(TypeError):
        sink.localize_svg(b"<svg/>", "assets")


def test_localize_image_cleans_url_and_deduplicates():
    sink = AssetSink()

    first = sink.localize_image("https://img.example.com/a.jpeg?x-oss-process=image", "assets")
    second = sink.localize_image("https://img.example.com/a.jpeg#pic_center", "assets")
    third = sink.localize_image("https://img.example.com/b.gif", "assets")

    assert first == second == "./assets/1.jpeg"
    assert third == "./assets/2.gif"
    assert [entry.logical_path for entry in sink.entries()] == ["./assets/1.jpeg", "./assets/2.gif"]


def test_owner_scopes_do_not_collide():
    sink = AssetSink()

    first = sink.localize_image("https://img.example.com/a.png", "assets", "01_")
    second = sink.localize_image("https://img.example.com/a.png", "assets", "02_")

    assert first == "./assets/01_1.png"
    assert second == "./assets/02_1.png"
    assert len(sink.entries()) == 2


def test_unsupported_extension_is_dropped(monkeypatch, caplog):
    monkeypatch.setattr(assets.LOG, "propagate", True)
    caplog.set_level("WARNING", logger="csdn2md")
    sink = AssetSink()

    assert sink.localize_image("https://img.example.com/render.php", "img") == "./img/1"
    assert "Unsupported image format" in caplog.text


def test_pending_entries_keep_the_source_url():
    sink = AssetSink()
    sink.localize_image("https://img.example.com/a.png", "assets")

    (entry,) = sink.entries()
    assert entry.is_pending
    assert entry.payload is None
    assert entry.source_url == "https://img.example.com/a.png"
    assert entry.mime_type == "image/png"


def test_fetcher_payload_is_sniffed_when_url_has_no_extension():
    calls = []
    payload = _png_bytes()

    def fetcher(url):
        calls.append(url)
        return payload

    sink = AssetSink(fetcher)
    path = sink.localize_image("https://img.example.com/image/abc", "pics")
    again = sink.localize_image("https://img.example.com/image/abc", "pics")

    assert path == again == "./pics/1.png"
    assert calls == ["https://img.example.com/image/abc"]
    assert sink.entries()[0].payload == payload


def test_fetch_failures_propagate():
    def fetcher(url):
        raise RuntimeError("boom")

    sink = AssetSink(fetcher)

    with pytest.raises(RuntimeError, match="boom"):
        sink.localize_image("https://img.example.com/a.png", "assets")
    assert sink.entries() == []


def test_localize_svg_deduplicates_by_content():
    sink = AssetSink()

    first = sink.localize_svg("<svg><rect/></svg>", "assets", "3_")
    second = sink.localize_svg("<svg><rect/></svg>", "assets", "3_")
    third = sink.localize_svg("<svg><circle/></svg>", "assets", "3_")

    assert first == second == "./assets/3_1.svg"
    assert third == "./assets/3_2.svg"


def test_drain_and_reset():
    sink = AssetSink()
    sink.localize_image("https://img.example.com/a.png", "assets")

    assert len(sink.drain()) == 1
    assert sink.entries() == []
    # Dedup table survives a drain, so the same URL keeps its path.
    assert sink.localize_image("https://img.example.com/a.png", "assets") == "./assets/1.png"

    sink.reset()
    assert sink.localize_image("https://img.example.com/b.png", "assets") == "./assets/1.png"


def test_write_to_skips_pending_entries(tmp_path: Path):
    payload = _png_bytes()
    sink = AssetSink(lambda url: payload)
    sink.localize_image("https://img.example.com/a.png", "assets")
    sink.localize_svg("<svg></svg>", "assets")

    pending = AssetSink()
    pending.localize_image("https://img.example.com/a.png", "assets")

    written = sink.write_to(tmp_path)

    assert written == [tmp_path / "assets" / "1.png", tmp_path / "assets" / "2.svg"]
    assert (tmp_path / "assets" / "1.png").read_bytes() == payload
    assert (tmp_path / "assets" / "2.svg").read_text(encoding="utf-8") == "<svg></svg>"
    assert pending.write_to(tmp_path / "other") == []
    assert not (tmp_path / "other").exists()


def test_concurrent_localization_assigns_unique_paths():
    sink = AssetSink()
    results = []
    lock = threading.Lock()

    def worker(offset):
        local = [sink.localize_image(f"https://img.example.com/{offset}-{i}.png", "assets") for i in range(25)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 200
    assert len(set(results)) == 200
