import logging
import unittest


from row_normalizer import Rejected, SchemaVersion, has_social_link, normalize, parse_coordinate
from errors import ConfigInvalid


def make_row(lat="45.75", lon="4.85", name="Riverside Runners"):
    row = [name, "Lyon", "Lundi 18h", "Monday 6pm", "Sortie douce", "Easy run", "riverside.jpg",
           lat, lon, "https://instagram.com/rr", "", "https://riverside.example", "", "https://wa.me/1", "https://strava.com/clubs/rr"]
    return row


class TestNormalize(unittest.TestCase):
    def test_valid_row_becomes_point_feature(self):
        feature = normalize(make_row(), 0)
        self.assertEqual(feature["type"], "Feature")
        self.assertEqual(feature["geometry"]["type"], "Point")
        self.assertEqual(feature["geometry"]["coordinates"], [4.85, 45.75])
        props = feature["properties"]
        self.assertEqual(props["name"], "Riverside Runners")
        self.assertEqual(props["name_secondary"], "Riverside Runners")
        self.assertEqual(props["city"], "Lyon")
        self.assertEqual(props["frequency"], "Lundi 18h")
        self.assertEqual(props["frequency_secondary"], "Monday 6pm")
        self.assertEqual(props["description_secondary"], "Easy run")
        self.assertEqual(props["image"], "riverside.jpg")

    def test_non_numeric_latitude_rejected(self):
        with self.assertLogs("row_normalizer", level="WARNING"):
            result = normalize(make_row(lat="abc"), 3)
        self.assertIsInstance(result, Rejected)
        self.assertEqual(result.row_index, 3)
        self.assertEqual(result.raw["latitude"], "abc")
        self.assertIsNone(result.parsed["latitude"])
        self.assertEqual(result.parsed["longitude"], 4.85)

    def test_empty_longitude_rejected(self):
        with self.assertLogs("row_normalizer", level="WARNING"):
            result = normalize(make_row(lon=""), 0)
        self.assertIsInstance(result, Rejected)

    def test_missing_coordinate_columns_rejected(self):
        with self.assertLogs("row_normalizer", level="WARNING"):
            result = normalize(["Short row", "Paris"], 1)
        self.assertIsInstance(result, Rejected)

    def test_out_of_range_rejected(self):
        with self.assertLogs("row_normalizer", level="WARNING"):
            result = normalize(make_row(lat="95"), 0)
        self.assertIsInstance(result, Rejected)
        self.assertEqual(result.reason, "coordinates out of range")

    def test_numeric_cells_accepted(self):
        feature = normalize(make_row(lat=45.75, lon=4.85), 0)
        self.assertEqual(feature["geometry"]["coordinates"], [4.85, 45.75])

    def test_empty_name_accepted_with_warning(self):
        with self.assertLogs("row_normalizer", level="WARNING") as cm:
            feature = normalize(make_row(name="  "), 7)
        self.assertNotIsInstance(feature, Rejected)
        self.assertEqual(feature["properties"]["name"], "")
        self.assertTrue(any("no club name" in line for line in cm.output))

    def test_injected_logger_receives_diagnostics(self):
        log = logging.getLogger("custom.normalizer")
        with self.assertLogs("custom.normalizer", level="WARNING"):
            normalize(make_row(lat="x"), 0, log=log)

    def test_current_schema_social_columns(self):
        social = normalize(make_row(), 0, schema=SchemaVersion.CURRENT)["properties"]["social"]
        self.assertEqual(
            set(social),
            {"instagram", "facebook", "website", "tiktok", "whatsapp", "strava"},
        )
        self.assertEqual(social["whatsapp"], "https://wa.me/1")
        self.assertEqual(social["strava"], "https://strava.com/clubs/rr")
        self.assertEqual(social["facebook"], "")

    def test_legacy_schema_reads_linkedin(self):
        social = normalize(make_row(), 0, schema=SchemaVersion.LEGACY)["properties"]["social"]
        self.assertEqual(social["linkedin"], "https://wa.me/1")
        self.assertNotIn("whatsapp", social)
        self.assertNotIn("strava", social)

    def test_has_social_link_treats_empty_as_absent(self):
        feature = normalize(make_row(), 0)
        self.assertTrue(has_social_link(feature, "website"))
        self.assertFalse(has_social_link(feature, "facebook"))
        self.assertFalse(has_social_link(feature, "linkedin"))


class TestParseCoordinate(unittest.TestCase):
    def test_plain_and_padded(self):
        self.assertEqual(parse_coordinate(" 48.85 "), 48.85)

    def test_comma_decimal(self):
        self.assertEqual(parse_coordinate("45,75"), 45.75)

    def test_trailing_text_like_parse_float(self):
        self.assertEqual(parse_coordinate("2.35°"), 2.35)

    def test_rejects_non_numbers(self):
        self.assertIsNone(parse_coordinate(""))
        self.assertIsNone(parse_coordinate("N/A"))
        self.assertIsNone(parse_coordinate("inf"))


class TestSchemaVersion(unittest.TestCase):
    def test_parse(self):
        self.assertIs(SchemaVersion.parse("Legacy"), SchemaVersion.LEGACY)
        self.assertIs(SchemaVersion.parse(SchemaVersion.CURRENT), SchemaVersion.CURRENT)

    def test_unknown_version(self):
        with self.assertRaises(ConfigInvalid):
            SchemaVersion.parse("v3")


if __name__ == "__main__":
    unittest.main()
