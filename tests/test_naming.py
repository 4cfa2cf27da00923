import pytest

from print_assets.services.naming import build_output_paths, extract_slug, resolve_slug, size_label, slugify_name


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Diseño Épico!!", "diseno-epico"),
        ("  My   Cat  ", "my-cat"),
        ("___", ""),
        (None, ""),
    ],
)
def test_slugify_name(value, expected):
    assert slugify_name(value) == expected


def test_slug_length_is_capped():
    assert len(slugify_name("a" * 200)) == 80


def test_size_label_rounds_half_away():
    assert size_label(92, 42) == "92x42"
    assert size_label(92.5, 41.49) == "93x41"


def test_extract_slug_from_upload_name():
    assert extract_slug("original/2025/05/my-cat-90x40-classic-deadbeef.png") == "my-cat"
    assert extract_slug("https://cdn.example.com/a/b/sunset-beach-50x40-glasspad-0a1b2c3d.jpg?x=1") == "sunset-beach"


def test_extract_slug_fallback():
    assert extract_slug("uploads/random.png") == "design"
    assert extract_slug(None) == "design"


def test_resolve_slug_prefers_job_name():
    assert resolve_slug(design_name="Job Name", descriptor_name="Editor", asset_ref=None) == "job-name"
    assert resolve_slug(design_name="", descriptor_name="Editor Name", asset_ref=None) == "editor-name"
    assert (
        resolve_slug(design_name=None, descriptor_name="!!", asset_ref="o/2025/01/cat-3x2-pro-abcdef12.png")
        == "cat"
    )


def test_build_output_paths():
    paths = build_output_paths(job_id="job123", slug="my-cat", w_cm=92, h_cm=42, material="Classic")
    assert paths == {
        "print_raster": "outputs/print/job123/my-cat-92x42-classic.jpg",
        "pdf": "outputs/print/job123/my-cat-92x42-classic.pdf",
        "mockup": "outputs/mock/job123/my-cat-1080.png",
    }


def test_build_output_paths_defaults_and_prefix():
    paths = build_output_paths(job_id="a/b c", slug="", w_cm=10, h_cm=10, material=None, prefix="")
    assert paths["print_raster"] == "print/a-b-c/design-10x10-material.jpg"
    assert paths["mockup"] == "mock/a-b-c/design-1080.png"


def test_paths_are_stable():
    kwargs = dict(job_id="J1", slug="x", w_cm=30.2, h_cm=20.7, material="pro", prefix="out")
    assert build_output_paths(**kwargs) == build_output_paths(**kwargs)
