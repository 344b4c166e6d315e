import os

import pytest
from PIL import Image

from cache_store import CacheStore, MemoryStorage
from share_images import (
    CANVAS_SIZE,
    ShareImageInputMissing,
    ShareImageService,
    compose_grid,
    cover_fit,
    grid_for,
)

ORIGIN = "https://origin.test/storage"
STUDIO = "https://origin.test/studio-photos/"
NOW = 1_700_000_000.0


def project(pid, date, tags=(), people=(), image=True):
    record = {"id": pid, "date": date, "tags": list(tags), "credits": [{"name": n} for n in people]}
    record["primaryImage"] = (
        {"url": f"{ORIGIN}/{pid}/media/cover.png", "filename": "cover.png", "dimensions": None} if image else None
    )
    return record


@pytest.fixture
def service_factory(tmp_path, fake_session, make_image):
    def build(projects=None, routes=None, cache_dir=None):
        store = CacheStore(MemoryStorage(), clock=lambda: NOW)
        if projects is not None:
            store.write_snapshot(projects)
        all_routes = {}
        for record in projects or []:
            if record.get("primaryImage"):
                all_routes[record["primaryImage"]["url"]] = make_image(size=(80, 40))
        all_routes.update(routes or {})
        session = fake_session(all_routes)
        service = ShareImageService(
            store, cache_dir or tmp_path, session=session, origin_base_url=ORIGIN, studio_photos_url=STUDIO
        )
        return service, store, session

    return build


@pytest.mark.parametrize(
    "count, expected",
    [(1, (1, 1)), (2, (2, 1)), (3, (3, 1)), (4, (2, 2)), (5, (3, 2)), (6, (3, 2))],
)
def test_grid_for(count, expected):
    assert grid_for(count) == expected


def test_cover_fit_fills_target():
    fitted = cover_fit(Image.new("RGB", (100, 1000), (0, 0, 255)), (60, 30))
    assert fitted.size == (60, 30)
    assert fitted.getpixel((0, 0)) == (0, 0, 255)


def test_compose_grid_is_canvas_sized_and_places_cells():
    red = Image.new("RGB", (50, 50), (255, 0, 0))
    green = Image.new("RGB", (50, 50), (0, 255, 0))
    canvas = compose_grid([red, green])
    assert canvas.size == CANVAS_SIZE
    assert canvas.getpixel((10, 10)) == (255, 0, 0)
    assert canvas.getpixel((1190, 620)) == (0, 255, 0)


def test_homepage_image_is_a_1200x630_jpeg(service_factory):
    service, _, _ = service_factory([project("a", "2024-01-01"), project("b", "2023-01-01")])
    path = service.get("homepage")

    assert path.name == "homepage.jpg"
    with Image.open(path) as img:
        assert img.format == "JPEG"
        assert img.size == (1200, 630)


def test_homepage_uses_at_most_six_newest_images(service_factory):
    projects = [project(f"p{i}", f"202{i}-01-01") for i in range(8)]
    service, _, session = service_factory(projects)
    service.get("homepage")

    downloaded = sorted(url for url in session.calls if url.endswith("cover.png"))
    assert downloaded == sorted(f"{ORIGIN}/p{i}/media/cover.png" for i in range(2, 8))


def test_cached_image_is_reused_until_snapshot_changes(service_factory):
    service, store, session = service_factory([project("a", "2024-01-01")])
    first = service.get("homepage")
    calls = len(session.calls)

    assert service.get("homepage") == first
    assert len(session.calls) == calls

    store.clock = lambda: NOW + 60
    store.write_snapshot([project("a", "2024-01-01")])
    assert not service.is_cache_valid(first)
    service.get("homepage")
    assert len(session.calls) > calls


def test_cached_image_is_stamped_with_snapshot_time(service_factory):
    service, store, _ = service_factory([project("a", "2024-01-01")])
    path = service.get("homepage")
    assert path.stat().st_mtime_ns // 1_000_000 == int(NOW * 1000)

    # An older snapshot (earlier clock) must not validate a newer file either.
    store.clock = lambda: NOW - 3600
    store.write_snapshot([project("a", "2024-01-01")])
    assert not service.is_cache_valid(path)


def test_image_rendered_across_a_snapshot_swap_is_not_reused(service_factory, monkeypatch):
    service, store, session = service_factory([project("a", "2024-01-01")])
    original_download = service._download_images

    def download_then_swap(urls):
        images = original_download(urls)
        store.clock = lambda: NOW + 60
        store.write_snapshot([project("a", "2024-01-01")])
        service.clear()
        return images

    monkeypatch.setattr(service, "_download_images", download_then_swap)
    path = service.get("homepage")
    assert path.is_file()
    assert not service.is_cache_valid(path)

    monkeypatch.setattr(service, "_download_images", original_download)
    calls = len(session.calls)
    service.get("homepage")
    assert len(session.calls) > calls
    assert service.is_cache_valid(path)


def test_clear_removes_all_cached_images(service_factory):
    service, _, _ = service_factory([project("a", "2024-01-01", tags=["Glow"])])
    service.get("homepage")
    service.get("tag", "Glow")
    assert service.clear() == 2
    assert not any(service.root.iterdir())
    assert service.clear() == 0


def test_tag_and_person_scopes_filter_projects(service_factory):
    projects = [
        project("glow", "2024-01-01", tags=["Glow"], people=["Ada"]),
        project("dark", "2023-01-01", tags=["Dark"]),
    ]
    service, _, session = service_factory(projects)

    path = service.get("tag", "glow")
    assert path.name == "tag-glow.jpg"
    assert f"{ORIGIN}/dark/media/cover.png" not in session.calls

    assert service.get("person", "ada").name == "person-ada.jpg"
    with pytest.raises(ShareImageInputMissing):
        service.get("tag", "Nothing")
    with pytest.raises(ShareImageInputMissing):
        service.get("person", "Nobody")


def test_project_scope_uses_primary_image(service_factory):
    service, _, _ = service_factory([project("a", None), project("b", None, image=False)])
    path = service.get("project", "a")
    assert path.name == "project-a.jpg"
    with Image.open(path) as img:
        assert img.size == CANVAS_SIZE

    with pytest.raises(ShareImageInputMissing):
        service.get("project", "b")
    with pytest.raises(ShareImageInputMissing):
        service.get("project", "unknown")


def test_missing_snapshot_or_images_raise_input_missing(service_factory):
    service, _, _ = service_factory(None)
    with pytest.raises(ShareImageInputMissing):
        service.get("homepage")

    service, _, _ = service_factory([project("a", None, image=False)])
    with pytest.raises(ShareImageInputMissing):
        service.get("homepage")


def test_undownloadable_images_are_skipped(service_factory, tmp_path):
    projects = [project("ok", "2024-01-01"), project("broken", "2023-01-01"), project("gone", "2022-01-01")]
    service, _, _ = service_factory(
        projects,
        routes={
            f"{ORIGIN}/broken/media/cover.png": b"not an image",
            f"{ORIGIN}/gone/media/cover.png": (404, "gone"),
        },
    )
    assert service.get("homepage").is_file()

    service, _, _ = service_factory(
        [project("broken", None)],
        routes={f"{ORIGIN}/broken/media/cover.png": b"nope"},
        cache_dir=tmp_path / "second",
    )
    with pytest.raises(ShareImageInputMissing):
        service.get("homepage")


def test_images_outside_origin_are_not_fetched(service_factory):
    foreign = project("x", None)
    foreign["primaryImage"]["url"] = "https://evil.test/x.png"
    service, _, session = service_factory([foreign])
    with pytest.raises(ShareImageInputMissing):
        service.get("homepage")
    assert "https://evil.test/x.png" not in session.calls


def test_space_image_uses_first_studio_photo(service_factory, make_listing, make_image):
    service, _, session = service_factory(
        None,
        routes={
            STUDIO: make_listing("../", "b.jpg", "a%20room.png", "notes.txt"),
            f"{STUDIO}a%20room.png": make_image(size=(300, 300)),
        },
    )
    path = service.get("space")
    assert path.name == "space.jpg"
    assert f"{STUDIO}b.jpg" not in session.calls
    with Image.open(path) as img:
        assert img.size == CANVAS_SIZE


def test_space_image_without_photos_is_input_missing(service_factory, make_listing):
    service, _, _ = service_factory(None, routes={STUDIO: make_listing("../", "readme.txt")})
    with pytest.raises(ShareImageInputMissing):
        service.get("space")

    service, _, _ = service_factory(None, routes={STUDIO: (500, "down")})
    with pytest.raises(ShareImageInputMissing):
        service.get("space")


def test_failed_save_leaves_no_partial_file(service_factory, monkeypatch):
    service, _, _ = service_factory([project("a", None)])

    import share_images

    def explode(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(share_images.os, "replace", explode)
    with pytest.raises(OSError):
        service.get("homepage")
    assert [p for p in service.root.iterdir()] == []
    assert not os.path.exists(service.cache_path("homepage"))
