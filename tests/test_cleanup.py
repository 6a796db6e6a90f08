import os
import time

from flux_studio.cleanup import sweep

DAY = 24 * 60 * 60


def test_sweep_removes_only_old_files(tmp_path):
    uploads = tmp_path / "uploads"
    generated = tmp_path / "generated"
    uploads.mkdir()
    generated.mkdir()
    now = time.time()

    old_upload = uploads / "image-1.png"
    old_upload.write_bytes(b"x")
    os.utime(old_upload, (now - 8 * DAY, now - 8 * DAY))
    old_artifact = generated / "generate-1.jpg"
    old_artifact.write_bytes(b"x")
    os.utime(old_artifact, (now - 30 * DAY, now - 30 * DAY))
    fresh = generated / "generate-2.jpg"
    fresh.write_bytes(b"x")
    os.utime(fresh, (now - 2 * DAY, now - 2 * DAY))

    removed = sweep([uploads, generated, tmp_path / "missing"], max_age_days=7, now=now)

    assert sorted(removed) == sorted([old_upload, old_artifact])
    assert fresh.exists()
    assert not old_upload.exists()


def test_sweep_skips_directories(tmp_path):
    sub = tmp_path / "sub"
    sub.mkdir()
    os.utime(sub, (0, 0))
    assert sweep([tmp_path], max_age_days=1) == []
    assert sub.exists()
