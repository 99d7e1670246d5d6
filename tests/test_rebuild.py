import json

import pytest

import sasswatch
from sasswatch import (
    ChangeEvent,
    CompileError,
    EventKind,
    ReadError,
    Reporter,
    WriteError,
    rebuild,
)


def test_rebuild_writes_plain_css(make_config):
    config = make_config()

    result = rebuild(config)

    css = config.output_path.read_text()
    assert css == result.css
    assert ".x" in css
    assert "color: red" in css
    assert "sourceMappingURL" not in css
    assert result.source_map is None
    assert not config.map_path.exists()


def test_rebuild_is_idempotent(make_config):
    config = make_config()

    rebuild(config)
    first = config.output_path.read_bytes()
    rebuild(config)

    assert config.output_path.read_bytes() == first


def test_rebuild_resolves_imports_from_input_directory(make_config, style_dir):
    (style_dir / "_vars.scss").write_text("$accent: #336699;\n")
    (style_dir / "a.scss").write_text('@import "vars";\n.x { color: $accent; }\n')
    config = make_config()

    rebuild(config)

    assert "#336699" in config.output_path.read_text()


def test_rebuild_compiles_indented_syntax(make_config, style_dir):
    source = style_dir / "b.sass"
    source.write_text(".y\n  margin: 0\n")
    config = make_config(input_path=source)

    rebuild(config)

    assert "margin: 0" in config.output_path.read_text()


def test_rebuild_with_source_map(make_config):
    config = make_config(source_map=True)

    result = rebuild(config)

    css = config.output_path.read_text()
    assert css.endswith("\n/*# sourceMappingURL=a.css.map */")
    assert css.count("sourceMappingURL") == 1
    source_map = json.loads(config.map_path.read_text())
    assert source_map["version"] == 3
    assert source_map["mappings"]
    assert any(src.endswith("a.scss") for src in source_map["sources"])
    assert json.loads(result.source_map) == source_map


def test_minify_is_not_longer_than_plain(make_config, tmp_path, style_dir):
    (style_dir / "a.scss").write_text(
        "/* header */\n.x {\n  color: red;\n  margin: 0 auto;\n}\n\n.y .z { padding: 1px; }\n"
    )
    plain = rebuild(make_config())
    minified = rebuild(make_config(output_path=tmp_path / "a.min.css", minify=True))

    assert len(minified.css) <= len(plain.css)
    assert ".x{color:red;margin:0 auto}" in minified.css


def test_minify_with_source_map_replaces_map(make_config):
    config = make_config(minify=True, source_map=True)

    result = rebuild(config)

    css = config.output_path.read_text()
    assert css.startswith(".x{color:red}")
    assert css.endswith("/*# sourceMappingURL=a.css.map */")
    assert json.loads(config.map_path.read_text())["version"] == 3
    assert result.source_map == config.map_path.read_text()


def test_rebuild_reports_before_and_after(make_config, console, output):
    config = make_config()
    event = ChangeEvent(EventKind.CHANGED, config.watch_root / "a.scss")

    rebuild(config, event, Reporter(console))

    lines = output.getvalue().splitlines()
    assert len(lines) == 2
    assert "[file changed: a.scss]" in lines[0]
    assert lines[1].endswith(" done")


def test_unreadable_input_raises_read_error(make_config, style_dir):
    config = make_config()
    (style_dir / "a.scss").unlink()

    with pytest.raises(ReadError):
        rebuild(config)
    assert not config.output_path.exists()


def test_compile_error_is_typed_and_nothing_written(make_config, style_dir):
    (style_dir / "a.scss").write_text(".x { color: red;\n")
    config = make_config()

    with pytest.raises(CompileError):
        rebuild(config)
    assert not config.output_path.exists()


def test_unwritable_output_raises_write_error(make_config, tmp_path):
    target = tmp_path / "taken"
    target.mkdir()
    config = make_config(output_path=target)

    with pytest.raises(WriteError):
        rebuild(config)


def test_source_map_written_before_css(make_config, monkeypatch):
    config = make_config(source_map=True)
    written = []
    real_write = sasswatch.write_text

    def recording_write(path, text):
        written.append(path)
        real_write(path, text)

    monkeypatch.setattr(sasswatch, "write_text", recording_write)

    rebuild(config)

    assert written == [config.map_path, config.output_path]


def test_input_removed_before_source_map_compile_is_read_error(make_config, style_dir):
    config = make_config(source_map=True)
    source = (style_dir / "a.scss").read_text()
    (style_dir / "a.scss").unlink()

    with pytest.raises(ReadError):
        sasswatch.compile_source(config, source)


def test_minify_with_source_map_compiles_once(make_config, monkeypatch):
    calls = []
    real_compile = sasswatch.sass.compile

    def counting_compile(**kwargs):
        calls.append(kwargs)
        return real_compile(**kwargs)

    monkeypatch.setattr(sasswatch.sass, "compile", counting_compile)

    rebuild(make_config(minify=True, source_map=True))

    assert len(calls) == 1
    assert calls[0]["output_style"] == "compressed"


def test_minify_without_source_map_compresses_compiled_css(make_config, monkeypatch):
    calls = []
    real_compile = sasswatch.sass.compile

    def counting_compile(**kwargs):
        calls.append(kwargs)
        return real_compile(**kwargs)

    monkeypatch.setattr(sasswatch.sass, "compile", counting_compile)

    result = rebuild(make_config(minify=True))

    assert [c["output_style"] for c in calls] == ["expanded", "compressed"]
    assert result.css.startswith(".x{color:red}")
