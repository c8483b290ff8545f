"""Page parsing and URL/filename helpers."""

import pytest

from sitecrawl import (
    ResourceKind,
    build_filename,
    derive_folder_name,
    is_non_text_resource,
    is_probably_html,
    normalize_url,
    origin_of,
    parse_page,
    resource_base_name,
)

PAGE = "https://example.com/docs/guide/"


def test_relative_links_resolve_against_the_page_not_the_origin():
    parsed = parse_page('<a href="intro">i</a><a href="../faq">f</a><a href="/top">t</a>', PAGE)
    assert parsed.anchor_links == (
        "https://example.com/docs/guide/intro",
        "https://example.com/docs/faq",
        "https://example.com/top",
    )


def test_stylesheets_are_recognised_by_rel_token():
    html = (
        '<link rel="stylesheet" href="a.css">'
        '<link rel="Alternate Stylesheet" href="b.css">'
        '<link rel="preload" href="c.css">'
        '<link rel="stylesheet">'
        '<link rel="stylesheet" href="  ">'
    )
    parsed = parse_page(html, PAGE)
    assert parsed.stylesheet_links == (
        "https://example.com/docs/guide/a.css",
        "https://example.com/docs/guide/b.css",
    )
    assert parsed.anchor_links == ()


def test_protocol_relative_and_fragment_stylesheets_are_left_out():
    html = '<link rel="stylesheet" href="//cdn.com/a.css"><link rel="stylesheet" href="x.css#v2">'
    assert parse_page(html, PAGE).stylesheet_links == ()


def test_fragment_mailto_and_script_anchors_are_left_out():
    html = (
        '<a href="#top">top</a><a href="MAILTO:me@example.com">m</a>'
        '<a href="javascript:alert(1)">j</a><a href="">empty</a><a name="anchor">n</a>'
    )
    assert parse_page(html, PAGE).anchor_links == ()


def test_off_origin_anchors_are_returned_for_the_caller_to_filter():
    assert parse_page('<a href="https://other.com/x">x</a>', PAGE).anchor_links == ("https://other.com/x",)


def test_base_tag_overrides_page_url():
    html = '<head><base href="/static/"></head><link rel="stylesheet" href="site.css"><a href="p">p</a>'
    parsed = parse_page(html, PAGE)
    assert parsed.stylesheet_links == ("https://example.com/static/site.css",)
    assert parsed.anchor_links == ("https://example.com/static/p",)


def test_duplicates_are_collapsed_in_document_order():
    html = '<a href="/b">1</a><a href="/a">2</a><a href="/b/">3</a><a href="/a#x">4</a>'
    assert parse_page(html, PAGE).anchor_links == ("https://example.com/b", "https://example.com/a")


def test_malformed_markup_does_not_raise():
    html = b'<html><body><a href="/ok">ok<div><a href="http://[::1">bad</a><link rel=stylesheet href=/s.css'
    parsed = parse_page(html, PAGE)
    assert "https://example.com/ok" in parsed.anchor_links
    assert all("[" not in url for url in parsed.anchor_links)


def test_empty_content_yields_no_links():
    parsed = parse_page(b"", PAGE)
    assert parsed.anchor_links == ()
    assert parsed.stylesheet_links == ()


@pytest.mark.parametrize(
    "url, expected",
    [
        ("HTTPS://Example.COM:443/a/", "https://example.com/a"),
        ("http://example.com:80", "http://example.com/"),
        ("https://example.com//a//b#frag", "https://example.com/a/b"),
        ("https://example.com/p?b=2&a=1", "https://example.com/p?a=1&b=2"),
        ("https://user:pw@example.com/x", "https://example.com/x"),
        ("mailto:x@y.com", "mailto:x@y.com"),
    ],
)
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


def test_origin_of_keeps_non_default_ports():
    assert origin_of("https://example.com:8443/a") == "https://example.com:8443"
    assert origin_of("https://example.com:443/a") == "https://example.com"
    assert origin_of("mailto:x@y.com") == ""


def test_folder_name_replaces_dots_in_hostname():
    assert derive_folder_name("https://www.example.co.uk:8080/x") == "www_example_co_uk"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com/css/style.css", "style.css"),
        ("https://example.com/css/style.css?v=3", "style.css"),
        ("https://example.com/docs/", "docs"),
        ("https://example.com/", "example.com"),
        ("https://example.com/My%20Theme.CSS", "my-theme.css"),
    ],
)
def test_resource_base_name(url, expected):
    assert resource_base_name(url) == expected


def test_page_filenames_always_end_in_html():
    assert build_filename("example_com", 3, "https://example.com/about", ResourceKind.PAGE) == "example_com_3_about.html"
    assert build_filename("example_com", 4, "https://example.com/x.html", ResourceKind.PAGE) == "example_com_4_x.html"


def test_stylesheet_filenames_keep_their_extension():
    assert build_filename("example_com", 1, "https://example.com/a.min.css", ResourceKind.STYLESHEET) == (
        "example_com_1_a-min.css"
    )
    assert build_filename("example_com", 2, "https://fonts.example.net/css", ResourceKind.STYLESHEET) == (
        "example_com_2_css.css"
    )


def test_non_text_resources_are_recognised_from_the_path():
    assert is_non_text_resource("https://example.com/files/Report.PDF")
    assert is_non_text_resource("https://example.com/app.js?v=1")
    assert not is_non_text_resource("https://example.com/style.css")
    assert not is_non_text_resource("https://example.com/pdf-guide")


def test_is_probably_html():
    assert is_probably_html("https://example.com/a", "text/html; charset=utf-8")
    assert is_probably_html("https://example.com/a", "")
    assert is_probably_html("https://example.com/a.htm", "text/plain")
    assert not is_probably_html("https://example.com/feed", "application/rss+xml")
