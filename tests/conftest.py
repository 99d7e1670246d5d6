import io

import pytest
from rich.console import Console

from sasswatch import WatchConfig


@pytest.fixture()
def output():
    return io.StringIO()


@pytest.fixture()
def console(output):
    return Console(file=output, width=200, color_system=None, highlight=False)


@pytest.fixture()
def style_dir(tmp_path):
    src = tmp_path / "scss"
    src.mkdir()
    (src / "a.scss").write_text(".x{color:red;}\n")
    return src


@pytest.fixture()
def make_config(tmp_path, style_dir):
    def _make(**overrides):
        options = {
            "input_path": style_dir / "a.scss",
            "output_path": tmp_path / "css" / "a.css",
        }
        options.update(overrides)
        return WatchConfig(**options)

    return _make
