import asyncio

import pytest

from perseus.content import ContentFile, ContentProcessor
from perseus.plugins import Plugin, PluginPipeline
from perseus.routes import RouteTableBuilder, RouteTableSlot, normalize_request_path


def write_pages(root, files):
    for relative, text in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


@pytest.fixture
def pages(tmp_path):
    root = tmp_path / "pages"
    write_pages(
        root,
        {
            "index.md": "# Home\n",
            "about.md": "---\ntitle: About\n---\nAbout us\n",
            "guide/index.md": "# Guide\n",
            "guide/setup.mdx": "## Setup\n",
            "guide/notes.txt": "not content",
        },
    )
    return root


def test_build_maps_every_content_file(pages):
    table = RouteTableBuilder(ContentProcessor()).build(pages)
    assert sorted(table) == ["/", "/about", "/guide", "/guide/setup"]
    assert table["/about"].metadata == {"title": "About"}
    assert table["/guide/setup"].path == pages / "guide" / "setup.mdx"


def test_build_is_deterministic(pages):
    first = RouteTableBuilder(ContentProcessor(enable_cache=False)).build(pages)
    second = RouteTableBuilder(ContentProcessor(enable_cache=False)).build(pages)
    assert list(first) == list(second)
    assert first == second


def test_sync_and_async_builds_agree(pages):
    builder = RouteTableBuilder(ContentProcessor(enable_cache=False))
    assert builder.build(pages) == asyncio.run(builder.build_async(pages))


def test_failing_file_is_left_out(pages):
    (pages / "broken.md").write_bytes(b"\xff\xfe\x00")

    def transform(markup):
        if "boom" in markup:
            raise RuntimeError("boom")
        return markup

    write_pages(pages, {"explode.md": "boom\n"})
    builder = RouteTableBuilder(
        ContentProcessor(pipeline=PluginPipeline([Plugin("boom", transform=transform)]))
    )

    table = asyncio.run(builder.build_async(pages))
    assert sorted(table) == ["/", "/about", "/guide", "/guide/setup"]
    assert sorted(builder.build(pages)) == sorted(table)


def test_process_content_file_sees_every_routed_file(pages):
    seen = []
    pipeline = PluginPipeline([Plugin("observe", process_content_file=seen.append)])
    builder = RouteTableBuilder(ContentProcessor(pipeline=pipeline))

    table = asyncio.run(builder.build_async(pages))

    assert sorted(f.route for f in seen) == sorted(table)


def test_failing_process_content_file_hook_excludes_file(pages):
    def reject_about(content_file):
        if content_file.route == "/about":
            raise ValueError("no about page")

    pipeline = PluginPipeline([Plugin("reject", process_content_file=reject_about)])
    table = asyncio.run(RouteTableBuilder(ContentProcessor(pipeline=pipeline)).build_async(pages))
    assert "/about" not in table
    assert "/" in table


def test_missing_pages_dir_gives_empty_table(tmp_path):
    builder = RouteTableBuilder(ContentProcessor())
    assert builder.build(tmp_path / "missing") == {}
    assert asyncio.run(builder.build_async(tmp_path / "missing")) == {}


def test_route_conflict_keeps_first_file_in_sorted_order(tmp_path):
    root = tmp_path / "pages"
    write_pages(root, {"a.md": "# Flat\n", "a/index.md": "# Nested\n"})
    table = RouteTableBuilder(ContentProcessor()).build(root)
    assert list(table) == ["/a"]
    assert table["/a"].path == root / "a" / "index.md"


def test_slot_swap_publishes_whole_table(tmp_path):
    first = {"/": ContentFile(path=tmp_path / "index.md", route="/", raw_body="")}
    second = {"/b": ContentFile(path=tmp_path / "b.md", route="/b", raw_body="")}
    slot = RouteTableSlot(first)

    previous = slot.swap(second)

    assert dict(previous) == first
    assert slot.routes() == ["/b"]
    assert slot.get("/") is None
    assert len(slot) == 1

    second["/c"] = second["/b"]
    assert "/c" not in slot.current
    with pytest.raises(TypeError):
        slot.current["/x"] = second["/b"]


def test_empty_slot():
    slot = RouteTableSlot()
    assert len(slot) == 0
    assert slot.routes() == []


@pytest.mark.parametrize(
    ("request_path", "route"),
    [
        ("/", "/"),
        ("", "/"),
        ("/index.html", "/"),
        ("/about", "/about"),
        ("/about/", "/about"),
        ("/about.html", "/about"),
        ("/about.html?x=1#top", "/about"),
        ("/guide/index.html", "/guide"),
        ("/guide/index", "/guide"),
        ("/a%20b", "/a b"),
        ("/guide/../about", "/about"),
        ("/../../etc/passwd", "/etc/passwd"),
    ],
)
def test_normalize_request_path(request_path, route):
    assert normalize_request_path(request_path) == route
