"""Tests for the local filesystem storage backend."""

import pytest


class TestLocalStorageService:
    @pytest.mark.asyncio
    async def test_put_get_delete(self, storage, settings):
        url = await storage.put("clipworks-clips", "clips/42/abc/x-clip.mp4", b"mp4", "video/mp4")

        assert url == f"{settings.local_storage_base_url}/clipworks-clips/clips/42/abc/x-clip.mp4"
        assert await storage.get("clipworks-clips", "clips/42/abc/x-clip.mp4") == b"mp4"
        assert await storage.delete("clipworks-clips", "clips/42/abc/x-clip.mp4") is True
        assert await storage.delete("clipworks-clips", "clips/42/abc/x-clip.mp4") is False

    @pytest.mark.asyncio
    async def test_resolve_path_finds_stored_file(self, storage):
        await storage.put("clipworks-uploads", "uploads/42/a.mp4", b"data", "video/mp4")

        path = storage.resolve_path("clipworks-uploads", "uploads/42/a.mp4")

        assert path.read_bytes() == b"data"

    def test_resolve_path_rejects_missing_file(self, storage):
        with pytest.raises(FileNotFoundError):
            storage.resolve_path("clipworks-uploads", "uploads/42/missing.mp4")

    def test_resolve_path_stays_inside_root(self, storage, tmp_path):
        (tmp_path / "secret.txt").write_text("x")

        with pytest.raises(FileNotFoundError):
            storage.resolve_path("clipworks-uploads", "../../secret.txt")
