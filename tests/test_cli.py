import io
import json
from pathlib import Path

import pytest

import csdn2md.cli as cli
import csdn2md.core as core
from csdn2md.version import __version__


def _png_bytes() -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (3, 3), color=(0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def _write_article(path: Path, *, title: str, body: str, info: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "<html><body>"
        f'<h1 id="articleContentId">{title}</h1>'
        f'<div class="bar-content">{info}</div>'
        f'<div id="content_views">{body}</div>'
        "</body></html>\n",
        encoding="utf-8",
    )
    return path


def test_help_and_version(capsys):
    assert cli.main([]) == 0
    assert "Usage:" in capsys.readouterr().out

    assert cli.main(["--help"]) == 0
    assert "--input FILE" in capsys.readouterr().out

    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == __version__
    assert cli.main(["--ver"]) == 0
    assert capsys.readouterr().out.strip() == __version__


def test_unknown_option_prints_usage(capsys):
    assert cli.main(["--bogus"]) == 2
    assert "Usage:" in capsys.readouterr().out


def test_missing_required_options(tmp_path: Path, capsys):
    article = _write_article(tmp_path / "a.html", title="A", body="<p>x</p>")

    assert cli.main(["--input", str(article)]) == 6
    assert "--input and --to-dir are required" in capsys.readouterr().err


def test_missing_input_file(tmp_path: Path, capsys):
    code = cli.main(["--input", str(tmp_path / "nope.html"), "--to-dir", str(tmp_path / "out")])

    assert code == 6
    assert "Input file not found" in capsys.readouterr().err


def test_output_path_must_be_a_directory(tmp_path: Path, capsys):
    article = _write_article(tmp_path / "a.html", title="A", body="<p>x</p>")
    target = tmp_path / "out.txt"
    target.write_text("busy", encoding="utf-8")

    assert cli.main(["--input", str(article), "--to-dir", str(target)]) == 7
    assert "not a directory" in capsys.readouterr().err


def test_options_file_errors(tmp_path: Path, capsys):
    article = _write_article(tmp_path / "a.html", title="A", body="<p>x</p>")
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(article), "--to-dir", str(out_dir), "--options", str(tmp_path / "x.json")]) == 6
    assert "Options file not found" in capsys.readouterr().err

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"unknown_flag": True}), encoding="utf-8")
    assert cli.main(["--input", str(article), "--to-dir", str(out_dir), "--options", str(bad)]) == 6
    assert "unknown_flag" in capsys.readouterr().err


def test_single_article_is_written(tmp_path: Path):
    article = _write_article(
        tmp_path / "a.html",
        title="Hello",
        body="<h2>Intro</h2><p>Some <b>bold</b> text</p>",
        info="Posted by me",
    )
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(article), "--to-dir", str(out_dir)]) == 0

    md_text = (out_dir / "Hello.md").read_text(encoding="utf-8")
    assert md_text == "# Hello\n\n> Posted by me\n> 文章链接：\n\n## Intro\n\nSome **bold** text\n"


def test_options_file_and_flags_combine(tmp_path: Path):
    article = _write_article(tmp_path / "a.html", title="Hello", body='<p id="main-toc">toc</p><p>x</p>')
    options = tmp_path / "options.json"
    options.write_text(json.dumps({"add_title": False}), encoding="utf-8")
    out_dir = tmp_path / "out"

    code = cli.main(
        ["--input", str(article), "--to-dir", str(out_dir), "--options", str(options), "--no-info-blockquote", "--disable-toc"]
    )

    assert code == 0
    assert (out_dir / "Hello.md").read_text(encoding="utf-8") == "x\n"


def test_batch_merge_writes_one_document(tmp_path: Path):
    first = _write_article(tmp_path / "in" / "1.html", title="A", body="<p>alpha</p>")
    second = _write_article(tmp_path / "in" / "2.html", title="B", body="<p>beta</p>")
    out_dir = tmp_path / "out"

    code = cli.main(
        [
            "--input",
            str(first),
            str(second),
            "--to-dir",
            str(out_dir),
            "--merge",
            "--merge-name",
            "column",
            "--no-info-blockquote",
        ]
    )

    assert code == 0
    assert sorted(p.name for p in out_dir.iterdir()) == ["column.md"]
    assert (out_dir / "column.md").read_text(encoding="utf-8") == "# A\n\nalpha\n\n\n\n# B\n\nbeta\n"


def test_batch_without_merge_uses_serial_prefixes(tmp_path: Path):
    first = _write_article(tmp_path / "in" / "1.html", title="A", body="<p>alpha</p>")
    second = _write_article(tmp_path / "in" / "2.html", title="B", body="<p>beta</p>")
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(first), str(second), "--to-dir", str(out_dir)]) == 0
    assert sorted(p.name for p in out_dir.iterdir()) == ["1_A.md", "2_B.md"]


def test_fetch_images_writes_assets(tmp_path: Path, monkeypatch):
    payload = _png_bytes()
    fetched = []

    def fake_fetch(url):
        fetched.append(url)
        return payload

    monkeypatch.setattr(core, "fetch_url", fake_fetch)
    article = _write_article(
        tmp_path / "a.html",
        title="Pics",
        body='<p><img src="https://img.example.com/p.png?x=1"></p>',
    )
    out_dir = tmp_path / "out"

    code = cli.main(["--input", str(article), "--to-dir", str(out_dir), "--fetch-images", "--no-info-blockquote"])

    assert code == 0
    assert fetched == ["https://img.example.com/p.png"]
    assert (out_dir / "Pics.md").read_text(encoding="utf-8") == "# Pics\n\n![](./assets/1.png)\n"
    assert (out_dir / "assets" / "1.png").read_bytes() == payload


@pytest.mark.parametrize("flag", ["--save-images", "--fetch-images"])
def test_save_images_fetches_and_writes_assets(tmp_path: Path, monkeypatch, flag):
    payload = _png_bytes()
    monkeypatch.setattr(core, "fetch_url", lambda url: payload)
    article = _write_article(tmp_path / "a.html", title="Pics", body='<p><img src="https://img.example.com/p.png"></p>')
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(article), "--to-dir", str(out_dir), flag, "--no-info-blockquote"]) == 0
    assert (out_dir / "Pics.md").read_text(encoding="utf-8") == "# Pics\n\n![](./assets/1.png)\n"
    assert (out_dir / "assets" / "1.png").read_bytes() == payload


def test_options_file_save_images_fetches(tmp_path: Path, monkeypatch):
    payload = _png_bytes()
    monkeypatch.setattr(core, "fetch_url", lambda url: payload)
    article = _write_article(tmp_path / "a.html", title="Pics", body='<p><img src="https://img.example.com/p.png"></p>')
    options = tmp_path / "options.json"
    options.write_text(json.dumps({"save_images_locally": True}), encoding="utf-8")
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(article), "--to-dir", str(out_dir), "--options", str(options)]) == 0
    assert (out_dir / "assets" / "1.png").read_bytes() == payload


def test_fetch_failure_maps_to_conversion_exit_code(tmp_path: Path, monkeypatch, capsys):
    def failing_fetch(url):
        raise core.Csdn2MdError(f"Unable to fetch {url}")

    monkeypatch.setattr(core, "fetch_url", failing_fetch)
    article = _write_article(tmp_path / "a.html", title="Pics", body='<p><img src="https://img.example.com/p.png"></p>')

    assert cli.main(["--input", str(article), "--to-dir", str(tmp_path / "out"), "--fetch-images"]) == 8
    assert "Conversion failed" in capsys.readouterr().err


def test_page_without_article_fails_conversion(tmp_path: Path, capsys):
    page = tmp_path / "frag.html"
    page.write_text("<p>loose fragment</p>", encoding="utf-8")

    assert cli.main(["--input", str(page), "--to-dir", str(tmp_path / "out")]) == 8
    assert "not found" in capsys.readouterr().err


@pytest.mark.parametrize("flag", sorted(cli.FLAG_OPTIONS))
def test_every_flag_is_accepted(tmp_path: Path, flag):
    article = _write_article(tmp_path / "a.html", title="T", body="<p>x</p>")
    out_dir = tmp_path / "out"

    assert cli.main(["--input", str(article), "--to-dir", str(out_dir), f"--{flag.replace('_', '-')}"]) == 0
