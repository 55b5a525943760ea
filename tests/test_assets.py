from perseus.assets import AssetPipeline, CopyBundler
from perseus.content import FileContentLoader
from perseus.protocols import Bundler, ContentLoader, Converter, LayoutRenderer
from perseus.renderers import MarkdownConverter
from perseus.templates import LayoutEngine


def test_copy_bundler_keeps_relative_layout(tmp_path):
    static = tmp_path / "public"
    (static / "img").mkdir(parents=True)
    (static / "img" / "logo.svg").write_text("<svg/>", encoding="utf-8")
    (static / "robots.txt").write_text("custom", encoding="utf-8")

    outputs = AssetPipeline(static, tmp_path / "dist").run()

    assert sorted(p.relative_to(tmp_path / "dist").as_posix() for p in outputs) == [
        "img/logo.svg",
        "robots.txt",
    ]
    assert (tmp_path / "dist" / "img" / "logo.svg").read_text(encoding="utf-8") == "<svg/>"


def test_missing_static_dir_is_skipped(tmp_path):
    assert AssetPipeline(tmp_path / "missing", tmp_path / "dist").run() == []


def test_custom_bundler_receives_sorted_files(tmp_path):
    static = tmp_path / "public"
    static.mkdir()
    for name in ("b.css", "a.js"):
        (static / name).write_text(name, encoding="utf-8")

    class RecordingBundler:
        def __init__(self):
            self.calls = []

        def bundle(self, files, output_dir):
            self.calls.append(([f.name for f in files], output_dir))
            return [output_dir / "bundle.js"]

    bundler = RecordingBundler()
    outputs = AssetPipeline(static, tmp_path / "dist", bundler=bundler).run()

    assert bundler.calls == [(["a.js", "b.css"], tmp_path / "dist")]
    assert outputs == [tmp_path / "dist" / "bundle.js"]
    assert isinstance(bundler, Bundler)


def test_default_collaborators_satisfy_protocols(tmp_path):
    assert isinstance(CopyBundler(tmp_path), Bundler)
    assert isinstance(MarkdownConverter(), Converter)
    assert isinstance(FileContentLoader(), ContentLoader)
    assert isinstance(LayoutEngine(tmp_path), LayoutRenderer)
