import os
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from scanner import ScanStats, scan_photos


def _touch(path: Path, mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"not really a jpeg")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def test_finds_supported_extensions_recursively(tmp_path):
    _touch(tmp_path / "a.jpg")
    _touch(tmp_path / "sub" / "b.JPEG")
    _touch(tmp_path / "sub" / "deeper" / "c.png")
    _touch(tmp_path / "sub" / "d.webp")
    _touch(tmp_path / "notes.txt")
    _touch(tmp_path / "movie.mp4")

    names = sorted(Path(p.path).name for p in scan_photos(tmp_path))
    assert names == ["a.jpg", "b.JPEG", "c.png", "d.webp"]


def test_paths_are_absolute(tmp_path):
    _touch(tmp_path / "a.jpg")
    [photo] = list(scan_photos(tmp_path))
    assert os.path.isabs(photo.path)
    assert photo.path == os.path.abspath(tmp_path / "a.jpg")


def test_skips_hidden_and_synology_entries(tmp_path):
    _touch(tmp_path / ".hidden.jpg")
    _touch(tmp_path / ".cache" / "x.jpg")
    _touch(tmp_path / "@eaDir" / "thumb.jpg")
    _touch(tmp_path / "keep.jpg")

    assert [Path(p.path).name for p in scan_photos(tmp_path)] == ["keep.jpg"]


def test_skips_excluded_folders(tmp_path):
    _touch(tmp_path / "_photoframe_omitted" / "gone.jpg")
    _touch(tmp_path / "2024" / "kept.jpg")

    names = [Path(p.path).name for p in scan_photos(tmp_path)]
    assert names == ["kept.jpg"]


def test_custom_exclusions_override_default(tmp_path):
    _touch(tmp_path / "_photoframe_omitted" / "back.jpg")
    _touch(tmp_path / "private" / "secret.jpg")

    names = [Path(p.path).name for p in scan_photos(tmp_path, excluded_names={"private"})]
    assert names == ["back.jpg"]


def test_does_not_follow_symlinks(tmp_path):
    real = tmp_path / "real"
    _touch(real / "a.jpg")
    os.symlink(real, tmp_path / "loop")
    os.symlink(real / "a.jpg", tmp_path / "link.jpg")
    # Directory cycle
    os.symlink(tmp_path, real / "up")

    paths = [p.path for p in scan_photos(tmp_path)]
    assert paths == [os.path.abspath(real / "a.jpg")]


def test_visits_newest_folders_first(tmp_path):
    _touch(tmp_path / "2019" / "old.jpg")
    _touch(tmp_path / "2024" / "new.jpg")
    _touch(tmp_path / "2021" / "mid.jpg")

    names = [Path(p.path).name for p in scan_photos(tmp_path)]
    assert names == ["new.jpg", "mid.jpg", "old.jpg"]


def test_records_mtime_as_created(tmp_path):
    mtime = time.mktime((2020, 6, 15, 12, 0, 0, 0, 0, -1))
    _touch(tmp_path / "a.jpg", mtime)

    [photo] = list(scan_photos(tmp_path))
    assert photo.created.endswith("Z")
    assert abs(photo.created_at.timestamp() - mtime) < 0.001


def test_missing_root_yields_nothing(tmp_path):
    assert list(scan_photos(tmp_path / "not-mounted")) == []


def test_generator_is_lazy_and_restartable(tmp_path):
    _touch(tmp_path / "a.jpg")
    _touch(tmp_path / "b.jpg")

    gen = scan_photos(tmp_path)
    first = next(gen)
    assert first.path.endswith("b.jpg")

    assert len(list(scan_photos(tmp_path))) == 2
    assert len(list(scan_photos(tmp_path))) == 2


def test_counts_dirs_and_files(tmp_path):
    _touch(tmp_path / "a.jpg")
    _touch(tmp_path / "x" / "b.jpg")
    _touch(tmp_path / "x" / "y" / "c.txt")

    stats = ScanStats()
    list(scan_photos(tmp_path, stats=stats))
    assert stats.files == 2
    assert stats.dirs == 3


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any directory")
def test_unreadable_directory_is_skipped(tmp_path):
    _touch(tmp_path / "ok" / "a.jpg")
    locked = tmp_path / "locked"
    _touch(locked / "b.jpg")
    locked.chmod(0)
    try:
        names = [Path(p.path).name for p in scan_photos(tmp_path)]
    finally:
        locked.chmod(0o755)
    assert names == ["a.jpg"]
