#!/usr/bin/env python3
"""Tests for OriginScraper."""
import pytest

from origin_scraper import (
    OriginScraper,
    OriginUnavailable,
    parse_directory_listing,
    parse_file_listing,
)

BASE = "https://origin.test/storage"


def make_scraper(session, **kwargs):
    kwargs.setdefault("image_probe", lambda url: {"width": 10, "height": 5})
    kwargs.setdefault("video_probe", lambda url: {"width": 1920, "height": 1080})
    return OriginScraper(BASE, session=session, **kwargs)


def test_directory_listing_excludes_reserved_folders(make_listing):
    html = make_listing("a/", "b/", "_template/", "../")
    assert parse_directory_listing(html) == ["a", "b"]


def test_directory_listing_ignores_files_sort_links_and_absolute_paths(make_listing):
    html = make_listing("../", "./", "?C=N;O=D", "/storage/", "readme.txt", "my%20project/", "a/", "a/")
    assert parse_directory_listing(html) == ["my project", "a"]


def test_file_listing_keeps_files_only(make_listing):
    html = make_listing("../", "sub/", "b.png", "a%20b.jpg", "?C=M;O=A")
    assert parse_file_listing(html) == ["b.png", "a b.jpg"]


def test_scrape_yields_candidate_projects_in_listing_order(fake_session, make_listing):
    session = fake_session(
        {
            f"{BASE}/": make_listing("b/", "a/", "_template/", "../"),
            f"{BASE}/a/manifest.json": {"title": "A"},
            f"{BASE}/b/manifest.json": {"title": "B"},
            f"{BASE}/_template/manifest.json": {"title": "template"},
        }
    )
    projects = make_scraper(session).scrape()

    assert [p["id"] for p in projects] == ["b", "a"]
    assert f"{BASE}/_template/manifest.json" not in session.calls


def test_manifest_404_drops_project_without_raising(fake_session, make_listing):
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/", "b/"),
            f"{BASE}/a/manifest.json": (404, "missing"),
            f"{BASE}/b/manifest.json": {"title": "B"},
        }
    )
    projects = make_scraper(session).scrape()
    assert [p["id"] for p in projects] == ["b"]


def test_invalid_manifest_json_drops_project(fake_session, make_listing, connection_error):
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/", "b/", "c/", "d/"),
            f"{BASE}/a/manifest.json": "{not json",
            f"{BASE}/b/manifest.json": ["not", "an", "object"],
            f"{BASE}/c/manifest.json": connection_error,
            f"{BASE}/d/manifest.json": {"title": "D"},
        }
    )
    assert [p["id"] for p in make_scraper(session).scrape()] == ["d"]


def test_root_listing_failure_is_origin_unavailable(fake_session, connection_error):
    with pytest.raises(OriginUnavailable):
        make_scraper(fake_session({f"{BASE}/": (503, "down")})).scrape()

    with pytest.raises(OriginUnavailable):
        make_scraper(fake_session({f"{BASE}/": connection_error})).scrape()


def test_media_listing_failure_keeps_project_with_empty_media(fake_session, make_listing):
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/"),
            f"{BASE}/a/manifest.json": {"title": "A", "date": "June 1, 2022"},
            f"{BASE}/a/media/": (500, "boom"),
        }
    )
    [project] = make_scraper(session).scrape()
    assert project["media"] == []
    assert project["primaryImage"] is None
    assert project["date"] == "2022-06-01"


def test_media_classification_ordering_and_resolution(fake_session, make_listing):
    media = f"{BASE}/a/media/"
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/"),
            f"{BASE}/a/manifest.json": {"title": "A"},
            media: make_listing("../", "z.png", "clip.MP4", "about.md", "b.jpg", "data.csv", "broken.md"),
            f"{media}about.md": "# About\n",
            f"{media}broken.md": (500, "nope"),
        }
    )
    [project] = make_scraper(session).scrape()

    assert [(m["filename"], m["type"]) for m in project["media"]] == [
        ("about.md", "notes"),
        ("b.jpg", "image"),
        ("broken.md", "notes"),
        ("clip.MP4", "video"),
        ("z.png", "image"),
    ]
    by_name = {m["filename"]: m for m in project["media"]}
    assert by_name["about.md"]["content"] == "# About\n"
    assert by_name["broken.md"]["content"] == ""
    assert by_name["clip.MP4"]["dimensions"] == {"width": 1920, "height": 1080}
    assert by_name["b.jpg"]["url"] == f"{media}b.jpg"
    assert "dimensions" not in by_name["about.md"]
    assert project["primaryImage"] == {
        "url": f"{media}b.jpg",
        "filename": "b.jpg",
        "dimensions": {"width": 10, "height": 5},
    }


def test_item_probe_failures_leave_null_dimensions(fake_session, make_listing):
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/"),
            f"{BASE}/a/manifest.json": {},
            f"{BASE}/a/media/": make_listing("a.png", "b.webm"),
        }
    )
    scraper = make_scraper(session, image_probe=lambda url: None, video_probe=lambda url: None)
    [project] = scraper.scrape()
    assert [m["dimensions"] for m in project["media"]] == [None, None]
    assert project["primaryImage"]["dimensions"] is None


def test_default_image_probe_reads_real_image_header(fake_session, make_listing, make_image):
    media = f"{BASE}/a/media/"
    session = fake_session(
        {
            f"{BASE}/": make_listing("a/"),
            f"{BASE}/a/manifest.json": {},
            media: make_listing("photo.png", "bad.png"),
            f"{media}photo.png": make_image(size=(64, 32)),
            f"{media}bad.png": b"not an image",
        }
    )
    scraper = OriginScraper(BASE, session=session, video_probe=lambda url: None)
    [project] = scraper.scrape()
    dims = {m["filename"]: m["dimensions"] for m in project["media"]}
    assert dims == {"bad.png": None, "photo.png": {"width": 64, "height": 32}}
    # "bad.png" sorts first; its dimensions are probed again for the primary image.
    assert project["primaryImage"]["filename"] == "bad.png"
    assert project["primaryImage"]["dimensions"] is None


def test_folder_names_are_url_encoded_in_requests(fake_session, make_listing):
    session = fake_session(
        {
            f"{BASE}/": make_listing("my%20project/"),
            f"{BASE}/my%20project/manifest.json": {"title": "Spaced"},
        }
    )
    [project] = make_scraper(session).scrape()
    assert project["id"] == "my project"
    assert f"{BASE}/my%20project/media/" in session.calls
