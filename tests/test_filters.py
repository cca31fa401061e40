import unittest


from filters import FilterState, available_cities, canonical_day, feature_key, filter_features


def club(name, city, frequency="", frequency_secondary="", description="", description_secondary="", lon=2.35, lat=48.85):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": {
            "name": name,
            "name_secondary": name,
            "city": city,
            "frequency": frequency,
            "frequency_secondary": frequency_secondary,
            "description": description,
            "description_secondary": description_secondary,
            "image": "",
            "social": {},
        },
    }


CLUBS = [
    club("Canal Crew", "Paris", "Lundi et jeudi 19h", "Monday and Thursday 7pm", "Footing le long du canal", "Run along the canal"),
    club("Riverside Runners", "Lyon", "Samedi 9h", "Saturday 9am", "Sortie longue", "Long run", lon=4.85, lat=45.75),
    club("Parisian Milers", "paris 11e", "Mercredi 20h", "", "Fractionné", "", lon=2.38, lat=48.86),
    club("Promenade Pacers", "Nice", "Dimanche matin", "Sunday morning", "Bord de mer", "Seafront", lon=7.26, lat=43.7),
]


def names(features):
    return [f["properties"]["name"] for f in features]


class TestFilterFeatures(unittest.TestCase):
    def test_empty_state_matches_all(self):
        self.assertEqual(filter_features(CLUBS, FilterState()), CLUBS)

    def test_city_substring_case_insensitive(self):
        result = filter_features(CLUBS, FilterState(city="Paris"))
        expected = [f for f in CLUBS if "paris" in f["properties"]["city"].lower()]
        self.assertEqual(result, expected)
        self.assertEqual(names(result), ["Canal Crew", "Parisian Milers"])

    def test_day_in_primary_language(self):
        self.assertEqual(names(filter_features(CLUBS, FilterState(day="thursday"))), ["Canal Crew"])
        self.assertEqual(names(filter_features(CLUBS, FilterState(day="sunday"))), ["Promenade Pacers"])

    def test_day_in_secondary_language_falls_back_to_primary_text(self):
        state = FilterState(day="wednesday", language="en")
        self.assertEqual(names(filter_features(CLUBS, state)), ["Parisian Milers"])

    def test_english_day_name_in_primary_field_matches(self):
        clubs = [club("Mixed", "Lyon", frequency="Every Monday")]
        self.assertEqual(len(filter_features(clubs, FilterState(day="monday"))), 1)

    def test_substring_false_positive_is_kept(self):
        clubs = [club("Sundays", "Lyon", frequency="Sundaybest crew")]
        self.assertEqual(len(filter_features(clubs, FilterState(day="sunday"))), 1)

    def test_text_search_over_name_city_description(self):
        self.assertEqual(names(filter_features(CLUBS, FilterState(search_text="CANAL"))), ["Canal Crew"])
        self.assertEqual(names(filter_features(CLUBS, FilterState(search_text="nice"))), ["Promenade Pacers"])
        self.assertEqual(names(filter_features(CLUBS, FilterState(search_text="seafront", language="en"))), ["Promenade Pacers"])
        self.assertEqual(filter_features(CLUBS, FilterState(search_text="seafront")), [])

    def test_composition_is_intersection(self):
        by_city = filter_features(CLUBS, FilterState(city="paris"))
        by_day = filter_features(CLUBS, FilterState(day="monday"))
        both = filter_features(CLUBS, FilterState(city="paris", day="monday"))
        self.assertEqual(names(both), ["Canal Crew"])
        for f in both:
            self.assertIn(f, by_city)
            self.assertIn(f, by_day)

    def test_input_not_mutated(self):
        before = list(CLUBS)
        result = filter_features(CLUBS, FilterState(city="Lyon"))
        result.clear()
        self.assertEqual(CLUBS, before)


class TestFilterState(unittest.TestCase):
    def test_from_mapping(self):
        state = FilterState.from_mapping({"city": " Paris ", "day": "Lundi", "q": "canal", "lang": "EN"})
        self.assertEqual(state, FilterState(city="Paris", day="monday", search_text="canal", language="en"))

    def test_unknown_day_ignored(self):
        with self.assertLogs("filters", level="WARNING"):
            state = FilterState.from_mapping({"day": "someday"})
        self.assertEqual(state.day, "")

    def test_unknown_language_defaults(self):
        self.assertEqual(FilterState.from_mapping({"lang": "de"}).language, "fr")

    def test_cleared_keeps_language(self):
        state = FilterState(city="Paris", day="monday", search_text="x", language="en")
        cleared = state.cleared()
        self.assertTrue(cleared.is_empty())
        self.assertEqual(cleared.language, "en")

    def test_canonical_day(self):
        self.assertEqual(canonical_day("DIMANCHE"), "sunday")
        self.assertEqual(canonical_day("friday"), "friday")
        self.assertEqual(canonical_day(""), "")


class TestIdentity(unittest.TestCase):
    def test_key_independent_of_position(self):
        filtered = filter_features(CLUBS, FilterState(city="Nice"))
        self.assertEqual(feature_key(filtered[0]), feature_key(CLUBS[3]))
        self.assertNotEqual(feature_key(CLUBS[0]), feature_key(CLUBS[2]))

    def test_available_cities(self):
        self.assertEqual(available_cities(CLUBS), ["Lyon", "Nice", "Paris", "paris 11e"])


if __name__ == "__main__":
    unittest.main()
