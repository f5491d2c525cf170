"""Tests for the MCP tool layer"""

from unittest.mock import patch

import pytest
import requests

from managers.defaults_manager import DefaultsManager
from models.settings import ConverterSettings
from tools.asset import register_asset_tools
from tools.configuration import register_configuration_tools
from tools.conversion import register_conversion_tools
from tools.helpers import filename_from_url


@pytest.fixture
def tools(fake_mcp, manager, tmp_path, monkeypatch):
    for name in ("JPEG_QUALITY", "DEFAULT_QUALITY", "MAX_IMAGE_DIMENSION", "METHOD"):
        monkeypatch.delenv(f"WEBP_CONVERTER_{name}", raising=False)
    defaults_manager = DefaultsManager(config_file=tmp_path / "config.json")
    register_asset_tools(fake_mcp, manager)
    register_conversion_tools(fake_mcp, manager)
    register_configuration_tools(fake_mcp, manager, defaults_manager)
    return fake_mcp.tools


class TestRegistration:
    def test_all_tools_registered(self, tools):
        assert set(tools) == {
            "ingest_image",
            "get_asset",
            "resolve_image_url",
            "list_unconverted",
            "convert_image",
            "bulk_convert",
            "get_defaults",
            "set_defaults",
        }


class TestAssetTools:
    """Tests for ingest, lookup and inventory tools"""

    def test_ingest_local_file(self, tools, library, make_image):
        """Test a library file is ingested and converted"""
        (library / "photo.jpg").write_bytes(make_image("JPEG", size=(40, 20)))

        response = tools["ingest_image"]("photo.jpg")

        assert response["status"] == "converted"
        assert response["variant"] == {"file": "photo.webp", "width": 40, "height": 20, "mime-type": "image/webp"}
        assert response["asset"]["url"] == "https://host/uploads/photo.webp"
        assert response["asset"]["converted"] is True

    def test_ingest_url(self, tools, library, make_image):
        """Test a remote image is downloaded into the subfolder and converted"""
        data = make_image("PNG", size=(12, 12))
        with patch("tools.asset.fetch_asset_bytes", return_value=data) as mock_fetch:
            response = tools["ingest_image"]("https://example.com/media/logo.png?v=2", subfolder="2024/06")

        mock_fetch.assert_called_once_with("https://example.com/media/logo.png?v=2")
        assert response["status"] == "converted"
        assert (library / "2024" / "06" / "logo.png").read_bytes() == data
        assert (library / "2024" / "06" / "logo.webp").exists()
        assert response["asset"]["file"] == "2024/06/logo.png"

    def test_ingest_errors(self, tools, store, library, make_image, manager):
        """Test gate, path and download errors become error codes"""
        manager.settings = ConverterSettings(max_image_dimension=10)
        (library / "big.jpg").write_bytes(make_image("JPEG", size=(20, 20)))

        assert tools["ingest_image"]("big.jpg")["error_code"] == "IMAGE_TOO_LARGE"
        assert tools["ingest_image"]("../elsewhere.jpg")["error_code"] == "INVALID_SOURCE"
        with patch("tools.asset.fetch_asset_bytes", side_effect=requests.ConnectionError("down")):
            assert tools["ingest_image"]("https://example.com/a.jpg")["error_code"] == "INGEST_FAILED"
        assert len(store) == 0

    def test_ingest_url_failure_removes_download(self, tools, store, library, make_image):
        """Test a download that cannot be recorded does not stay in the library"""
        data = make_image("JPEG")
        with patch("tools.asset.fetch_asset_bytes", return_value=data), \
                patch.object(store, "add", side_effect=RuntimeError("store down")):
            response = tools["ingest_image"]("https://example.com/photo.jpg")

        assert response["error_code"] == "INGEST_FAILED"
        assert not (library / "photo.jpg").exists()
        assert len(store) == 0

    def test_get_asset_and_resolve(self, tools, add_asset):
        """Test asset lookup and URL resolution"""
        record = add_asset("2024/05/img.jpg")

        asset = tools["get_asset"](record.asset_id)
        assert asset["file"] == "2024/05/img.jpg"
        assert asset["converted"] is False
        assert asset["url"] == "https://host/uploads/2024/05/img.jpg"

        tools["convert_image"](record.asset_id)
        assert tools["resolve_image_url"](record.asset_id) == {
            "asset_id": record.asset_id,
            "url": "https://host/uploads/2024/05/img.webp",
        }
        assert tools["resolve_image_url"](record.asset_id, base_url="/cdn")["url"] == "/cdn/2024/05/img.webp"

    def test_unknown_asset(self, tools):
        assert "error" in tools["get_asset"]("missing")
        assert "error" in tools["resolve_image_url"]("missing")

    def test_list_unconverted(self, tools, add_asset, store):
        """Test the inventory lists pending images and honors the limit"""
        first = add_asset("a.jpg", size=(10, 20))
        add_asset("b.png", fmt="PNG")
        store.add(file="c.pdf", mime_type="application/pdf")

        listing = tools["list_unconverted"]()
        assert listing["count"] == 2
        assert listing["images"][0] == {
            "id": first.asset_id,
            "filename": "a.jpg",
            "type": "image/jpeg",
            "dimensions": "10 x 20",
        }
        assert tools["list_unconverted"](limit=1)["count"] == 1

        tools["convert_image"](first.asset_id)
        assert tools["list_unconverted"]()["count"] == 1


class TestConversionTools:
    """Tests for single and bulk conversion tools"""

    def test_convert_image_idempotent(self, tools, add_asset):
        record = add_asset("a.jpg")
        assert tools["convert_image"](record.asset_id)["status"] == "converted"

        again = tools["convert_image"](record.asset_id)
        assert again["status"] == "skipped"
        assert again["reason"] == "already-converted"

    def test_bulk_convert(self, tools, add_asset, store):
        """Test counts and the failure list"""
        good = add_asset("a.jpg")
        missing = store.add(file="missing.jpg", mime_type="image/jpeg", width=1, height=1)
        pdf = store.add(file="c.pdf", mime_type="application/pdf")

        response = tools["bulk_convert"]([good.asset_id, missing.asset_id, pdf.asset_id])

        assert (response["converted"], response["failed"], response["skipped"]) == (1, 1, 1)
        assert [f["asset_id"] for f in response["failures"]] == [missing.asset_id]
        assert response["failures"][0]["reason"] == "encode-failed"

    def test_bulk_convert_other_action(self, tools, add_asset, store):
        """Test other bulk actions are refused without touching assets"""
        record = add_asset("a.jpg")
        assert "error" in tools["bulk_convert"]([record.asset_id], action="trash")
        assert store.get(record.asset_id).is_converted is False


class TestConfigurationTools:
    """Tests for the defaults tools"""

    def test_get_defaults(self, tools):
        assert tools["get_defaults"]()["jpeg_quality"] == 90

    def test_set_defaults_updates_manager(self, tools, manager):
        """Test new defaults reach the conversion manager"""
        response = tools["set_defaults"]({"jpeg_quality": 70, "max_image_dimension": 1000})

        assert response == {"success": True, "updated": {"jpeg_quality": 70, "max_image_dimension": 1000}}
        assert manager.settings.jpeg_quality == 70
        assert manager.settings.max_image_dimension == 1000
        assert tools["get_defaults"]()["jpeg_quality"] == 70

    def test_set_defaults_invalid(self, tools, manager):
        response = tools["set_defaults"]({"method": 9})
        assert response["success"] is False
        assert manager.settings.method == 4

    def test_set_defaults_persist(self, tools, tmp_path):
        assert tools["set_defaults"]({"method": 6}, persist=True)["success"] is True
        assert (tmp_path / "config.json").exists()

    def test_set_defaults_persist_failure_applies_nothing(self, tools, manager):
        """Test a failed persist leaves runtime defaults and manager settings as they were"""
        with patch.object(DefaultsManager, "persist_defaults", return_value={"error": "disk full"}):
            response = tools["set_defaults"]({"jpeg_quality": 40}, persist=True)

        assert response["success"] is False
        assert "disk full" in response["errors"][0]
        assert tools["get_defaults"]()["jpeg_quality"] == 90
        assert manager.settings.jpeg_quality == 90

    def test_set_defaults_persist_invalid(self, tools, tmp_path):
        """Test invalid values are rejected before anything is written"""
        response = tools["set_defaults"]({"method": 9}, persist=True)
        assert response["success"] is False
        assert not (tmp_path / "config.json").exists()


class TestHelpers:
    def test_filename_from_url(self):
        assert filename_from_url("https://example.com/a/b/my%20pic.png?x=1") == "my pic.png"
        assert filename_from_url("https://example.com/") == ""
