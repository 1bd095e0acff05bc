from district_lookup.common.models import ResolutionStatus
from district_lookup.lookup.members import RepresentativeDirectory
from district_lookup.lookup.resolution import ResolutionEngine, ResolutionLayer, SubstitutionRule
from district_lookup.pipeline.registry import get_strategy


class SpyStore:
    """Answers containment queries from a per-layer row table and records every query."""

    srid = 4326

    def __init__(self, rows_by_layer):
        self.rows_by_layer = rows_by_layer
        self.queries = []

    def contains_point(self, layer, x, y, crs):
        self.queries.append((layer, x, y, crs))
        return [dict(row) for row in self.rows_by_layer.get(layer, [])]


LAYERS = [
    ResolutionLayer("county_council", "county_council", get_strategy("county_council")),
    ResolutionLayer("city_council", "pgh_council", get_strategy("pgh_council"), member_source="directory"),
    ResolutionLayer("school_district", "school_districts", get_strategy("school_districts")),
    ResolutionLayer("school_board", "school_board_districts", get_strategy("school_board_districts")),
    ResolutionLayer("ward", "pgh_wards", get_strategy("pgh_wards")),
]

DIRECTORY = RepresentativeDirectory(
    {
        "city_council": {"6": "Daniel Lavelle"},
        "school_board": {6: "Emma Yourd", "7": None},
    }
)


def _engine(rows_by_layer, substitutions=()):
    store = SpyStore(rows_by_layer)
    engine = ResolutionEngine(
        store,
        LAYERS,
        county="Allegheny",
        coverage_layer="municipalities",
        anchor_layer="county_council",
        directory=DIRECTORY,
        substitutions=substitutions,
    )
    return engine, store


def test_outside_coverage_short_circuits_without_other_queries():
    engine, store = _engine(
        {
            "municipalities": [],
            "county_council": [{"district": "1", "name": "District 1", "member": "X"}],
        }
    )

    result = engine.resolve(-80.5, 40.0)

    assert result.status is ResolutionStatus.UNSUPPORTED
    assert not result.supported
    assert result.to_dict()["districts"] is None
    assert [query[0] for query in store.queries] == ["municipalities"]


def test_municipality_in_another_county_is_out_of_coverage():
    engine, _store = _engine({"municipalities": [{"name": "Cranberry", "county": "Butler"}]})
    assert not engine.is_in_coverage_area(-80.1, 40.7)


def test_point_outside_city_has_null_city_council():
    engine, store = _engine(
        {
            "municipalities": [{"name": "Mt. Lebanon", "county": "allegheny"}],
            "county_council": [{"district": "5", "name": "District 5", "member": "Sue Means"}],
            "school_districts": [{"name": "Mt. Lebanon", "lea_code": None, "superintendent": None}],
        }
    )

    result = engine.resolve(-80.05, 40.37)

    assert result.status is ResolutionStatus.FOUND
    assert result.municipality == "Mt. Lebanon"
    assert result.county == "Allegheny"
    assert result.layers["city_council"] is None
    assert result.layers["county_council"].district == "5"
    assert result.layers["county_council"].member == "Sue Means"
    assert result.layers["school_district"].district == "Mt. Lebanon"
    assert result.layers["school_district"].name == "Mt. Lebanon"
    assert {query[3] for query in store.queries} == {4326}


def test_missing_anchor_is_not_found_even_with_other_matches():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "pgh_council": [{"district": "6", "name": "District 6", "member": None}],
        }
    )

    result = engine.resolve(-79.99, 40.44)

    assert result.status is ResolutionStatus.NOT_FOUND
    assert result.supported
    assert result.municipality == "Pittsburgh"
    assert result.to_dict()["districts"] is None


def test_overlapping_polygons_take_first_row():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "county_council": [
                {"district": "11", "name": "District 11", "member": "First"},
                {"district": "12", "name": "District 12", "member": "Second"},
            ],
        }
    )

    result = engine.resolve(-79.99, 40.44)
    assert result.layers["county_council"].district == "11"


def test_directory_members_and_record_members():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "county_council": [{"district": "13", "name": "District 13", "member": "Anita Prizio"}],
            "pgh_council": [{"district": "6", "name": "District 6", "member": "ignored"}],
            "school_board_districts": [{"district": "4", "member": "Yael Silk"}],
            "pgh_wards": [{"ward": "2"}],
        }
    )

    payload = engine.resolve(-79.9959, 40.4406).to_dict()

    assert payload["districts"]["city_council"] == {"district": "6", "name": "District 6", "member": "Daniel Lavelle"}
    assert payload["districts"]["school_board"] == {"district": "4", "name": None, "member": "Yael Silk"}
    assert payload["districts"]["ward"] == {"district": "2", "name": None, "member": None}


def test_no_cross_layer_substitution_by_default():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "county_council": [{"district": "13", "name": "District 13", "member": "A"}],
            "pgh_council": [{"district": "6", "name": "District 6", "member": None}],
        }
    )

    result = engine.resolve(-79.99, 40.44)
    assert result.layers["school_board"] is None


def test_configured_substitution_is_flagged_approximate():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "county_council": [{"district": "13", "name": "District 13", "member": "A"}],
            "pgh_council": [{"district": "6", "name": "District 6", "member": None}],
        },
        substitutions=[SubstitutionRule(layer="school_board", from_layer="city_council")],
    )

    match = engine.resolve(-79.99, 40.44).layers["school_board"]

    assert match.approximate
    assert match.district == "6"
    assert match.member == "Emma Yourd"
    assert match.to_dict()["approximate"] is True


def test_substitution_never_overrides_a_real_match():
    engine, _store = _engine(
        {
            "municipalities": [{"name": "Pittsburgh", "county": "Allegheny"}],
            "county_council": [{"district": "13", "name": "District 13", "member": "A"}],
            "pgh_council": [{"district": "6", "name": "District 6", "member": None}],
            "school_board_districts": [{"district": "7", "member": None}],
        },
        substitutions=[SubstitutionRule(layer="school_board", from_layer="city_council")],
    )

    match = engine.resolve(-79.99, 40.44).layers["school_board"]
    assert match.district == "7"
    assert not match.approximate


def test_directory_vacant_seat_and_unknown_district():
    assert DIRECTORY.member_for("school_board", "7") is None
    assert DIRECTORY.member_for("school_board", 6.0) == "Emma Yourd"
    assert DIRECTORY.member_for("city_council", "99") is None
    assert DIRECTORY.member_for("unknown_layer", "1") is None
