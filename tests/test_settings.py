import tempfile
import unittest
from pathlib import Path

from errors import ConfigInvalid
from row_normalizer import SchemaVersion
from settings import DEFAULT_SHEET_RANGES, deep_merge, load_yaml_config, settings_from_mapping


class TestSettingsFromMapping(unittest.TestCase):
    def test_defaults(self):
        settings = settings_from_mapping({}, env={})
        self.assertEqual(settings.sheet_ranges, DEFAULT_SHEET_RANGES)
        self.assertEqual(settings.schema_version, SchemaVersion.CURRENT)
        self.assertEqual(settings.cache_ttl_seconds, 1800)
        self.assertEqual(settings.web_port, 3001)
        self.assertEqual(settings.max_cluster_radius, 80)

    def test_yaml_values(self):
        config = {
            "sheet": {"spreadsheet_id": "abc", "ranges": ["Clubs!A2:O"], "schema_version": "legacy"},
            "cache": {"path": "cache.db", "ttl_seconds": 600},
            "map": {"max_cluster_radius": 60, "image_base_path": "/static/img/"},
            "server": {"port": 8080},
        }
        settings = settings_from_mapping(config, env={})
        self.assertEqual(settings.spreadsheet_id, "abc")
        self.assertEqual(settings.sheet_ranges, ["Clubs!A2:O"])
        self.assertEqual(settings.schema_version, SchemaVersion.LEGACY)
        self.assertEqual(settings.cache_path, "cache.db")
        self.assertEqual(settings.cache_ttl_seconds, 600)
        self.assertEqual(settings.max_cluster_radius, 60)
        self.assertEqual(settings.image_base_path, "/static/img/")
        self.assertEqual(settings.web_port, 8080)

    def test_env_overrides_yaml(self):
        config = {"sheet": {"spreadsheet_id": "from-yaml"}, "server": {"port": 8080}}
        env = {"SPREADSHEET_ID": "from-env", "WEB_PORT": "9000", "SHEET_RANGES": "A!A2:O, B!A2:O"}
        settings = settings_from_mapping(config, env=env)
        self.assertEqual(settings.spreadsheet_id, "from-env")
        self.assertEqual(settings.web_port, 9000)
        self.assertEqual(settings.sheet_ranges, ["A!A2:O", "B!A2:O"])

    def test_invalid_values(self):
        for env in (
            {"WEB_PORT": "eighty"},
            {"CACHE_TTL_SECONDS": "-5"},
            {"MAX_CLUSTER_RADIUS": "0"},
            {"SCHEMA_VERSION": "v3"},
            {"SHEET_RANGES": " , "},
        ):
            with self.subTest(env=env):
                with self.assertRaises(ConfigInvalid):
                    settings_from_mapping({}, env=env)


class TestYamlConfig(unittest.TestCase):
    def test_deep_merge(self):
        base = {"sheet": {"spreadsheet_id": "a", "ranges": ["x"]}, "server": {"port": 1}}
        override = {"sheet": {"ranges": ["y"]}}
        self.assertEqual(
            deep_merge(base, override),
            {"sheet": {"spreadsheet_id": "a", "ranges": ["y"]}, "server": {"port": 1}},
        )

    def test_local_file_overrides(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp) / "config.yaml"
            local = Path(tmp) / "config.local.yaml"
            base.write_text("sheet:\n  spreadsheet_id: shared\ncache:\n  ttl_seconds: 900\n")
            local.write_text("sheet:\n  spreadsheet_id: mine\n")
            config = load_yaml_config(base, local)
        self.assertEqual(config["sheet"]["spreadsheet_id"], "mine")
        self.assertEqual(config["cache"]["ttl_seconds"], 900)

    def test_missing_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(load_yaml_config(Path(tmp) / "a.yaml", Path(tmp) / "b.yaml"), {})

    def test_bad_yaml(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp) / "config.yaml"
            base.write_text("sheet: [unclosed\n")
            with self.assertRaises(ConfigInvalid):
                load_yaml_config(base, Path(tmp) / "missing.yaml")

    def test_non_mapping(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp) / "config.yaml"
            base.write_text("- just\n- a list\n")
            with self.assertRaises(ConfigInvalid):
                load_yaml_config(base, Path(tmp) / "missing.yaml")


if __name__ == "__main__":
    unittest.main()
