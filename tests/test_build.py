import pytest

from perseus.build import build_site, load_config
from perseus.errors import BuildError, PluginHookError
from perseus.plugins import Plugin


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    write(tmp_path / "perseus.yaml", "title: Test Site\nurl: https://example.com/\n")
    write(tmp_path / "pages" / "index.md", "# Welcome\n")
    write(tmp_path / "pages" / "about.md", "---\ntitle: About\n---\nAbout us\n")
    write(tmp_path / "pages" / "guide" / "setup.md", "## Install\n\nRun it.\n")
    write(tmp_path / "public" / "css" / "site.css", "body {}\n")
    return tmp_path


def test_build_writes_every_route(project):
    result = build_site(project)
    dist = project / "dist"

    assert result.output_dir == dist
    assert sorted(result.routes) == ["/", "/about", "/guide/setup"]
    assert "Welcome" in (dist / "index.html").read_text(encoding="utf-8")

    about = (dist / "about" / "index.html").read_text(encoding="utf-8")
    assert "<title>About | Test Site</title>" in about
    assert "<p>About us</p>" in about
    assert '<h2 id="install">Install</h2>' in (dist / "guide" / "setup" / "index.html").read_text(
        encoding="utf-8"
    )
    assert (dist / "css" / "site.css").read_text(encoding="utf-8") == "body {}\n"


def test_build_writes_crawler_files(project):
    build_site(project)
    dist = project / "dist"

    sitemap = (dist / "sitemap.xml").read_text(encoding="utf-8")
    assert "<loc>https://example.com/</loc>" in sitemap
    assert "<loc>https://example.com/guide/setup</loc>" in sitemap
    assert (dist / "robots.txt").read_text(encoding="utf-8") == (
        "User-agent: *\nAllow: /\n\nSitemap: https://example.com/sitemap.xml\n"
    )
    assert not (dist / "rss.xml").exists()


def test_build_without_url_skips_feeds(project):
    write(project / "perseus.yaml", "title: Test Site\n")
    build_site(project)
    dist = project / "dist"
    assert not (dist / "sitemap.xml").exists()
    assert not (dist / "robots.txt").exists()


def test_dated_pages_produce_rss(project):
    write(project / "pages" / "news.md", "---\ntitle: Dated\ndate: 2024-01-02\n---\nNews\n")
    build_site(project)
    rss = (project / "dist" / "rss.xml").read_text(encoding="utf-8")
    assert "<title>Dated</title>" in rss
    assert "<pubDate>Tue, 02 Jan 2024 00:00:00 +0000</pubDate>" in rss


def test_custom_layouts(project):
    write(
        project / "layouts" / "default.html",
        "<main>{{ content }}</main><nav>{% for r in routes %}{{ r }};{% endfor %}</nav>",
    )
    write(project / "layouts" / "plain.html", "PLAIN {{ page.title }}")
    write(project / "pages" / "plain.md", "---\nlayout: plain\ntitle: Bare\n---\nText\n")

    build_site(project)
    dist = project / "dist"

    assert (dist / "about" / "index.html").read_text(encoding="utf-8") == (
        "<main><p>About us</p>\n</main><nav>/;/about;/guide/setup;/plain;</nav>"
    )
    assert (dist / "plain" / "index.html").read_text(encoding="utf-8") == "PLAIN Bare"


def test_plugin_hooks_run_around_the_build(project):
    events = []

    def transform(markup):
        events.append("transform")
        return markup.replace("<p>", '<p class="x">')

    plugin = Plugin(
        "record",
        build_start=lambda: events.append("build_start"),
        transform=transform,
        process_content_file=lambda content_file: events.append(content_file.route),
        build_end=lambda: events.append("build_end"),
    )
    build_site(project, plugins=[plugin])

    assert events[0] == "build_start"
    assert events[-1] == "build_end"
    assert sorted(e for e in events if e.startswith("/")) == ["/", "/about", "/guide/setup"]
    assert events.count("transform") == 3
    assert '<p class="x">About us</p>' in (project / "dist" / "about" / "index.html").read_text(
        encoding="utf-8"
    )


def test_failing_build_start_aborts(project):
    def broken():
        raise RuntimeError("no credentials")

    with pytest.raises(PluginHookError) as excinfo:
        build_site(project, plugins=[Plugin("deploy", build_start=broken)])

    assert excinfo.value.plugin_name == "deploy"
    assert not (project / "dist" / "index.html").exists()


def test_missing_pages_directory(tmp_path):
    with pytest.raises(BuildError) as excinfo:
        build_site(tmp_path)
    assert excinfo.value.source_path == tmp_path / "pages"


def test_template_syntax_error_names_the_page(project):
    write(project / "layouts" / "default.html", "{% if %}")
    with pytest.raises(BuildError) as excinfo:
        build_site(project)
    assert excinfo.value.message.startswith("Template syntax error on line 1")
    assert excinfo.value.source_path.suffix == ".md"


def test_undefined_variable_error(project):
    write(project / "layouts" / "default.html", "{{ page.nothing.here }}")
    with pytest.raises(BuildError) as excinfo:
        build_site(project)
    assert excinfo.value.message.startswith("Undefined variable:")


def test_output_override_without_cleaning(project, tmp_path):
    out = tmp_path / "elsewhere"
    write(out / "keep.txt", "keep")
    result = build_site(project, output_dir_override=out, clean_output=False)
    assert result.output_dir == out
    assert (out / "keep.txt").exists()
    assert (out / "about" / "index.html").exists()


def test_build_cleans_output_by_default(project):
    write(project / "dist" / "stale.html", "old")
    build_site(project)
    assert not (project / "dist" / "stale.html").exists()


def test_load_config_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config["pages_dir"] == "pages"
    assert config["port"] == 3000
    assert config["hmr_port"] == 3001
    assert config["cache"] == {"enabled": True, "max_size": 100, "ttl": 60}


def test_load_config_merges_nested_sections(tmp_path):
    write(tmp_path / "perseus.yaml", "port: 4000\ncache:\n  ttl: 5\nwatch:\n  debounce_ms: 50\n")
    config = load_config(tmp_path)
    assert config["hmr_port"] == 4001
    assert config["cache"] == {"enabled": True, "max_size": 100, "ttl": 5}
    assert config["watch"]["debounce_ms"] == 50
    assert ".md" in config["watch"]["extensions"]


def test_load_config_ignores_non_mapping(tmp_path):
    write(tmp_path / "perseus.yaml", "- one\n- two\n")
    assert load_config(tmp_path)["title"] == "Perseus Site"


def test_load_config_does_not_share_defaults(tmp_path):
    load_config(tmp_path)["cache"]["ttl"] = 1
    assert load_config(tmp_path)["cache"]["ttl"] == 60
