import pytest

from clubrec.event_mapping import EVENT_ORDER, event_label, event_sort_key, normalize_event_code


@pytest.mark.parametrize(
    "label, code",
    [
        ("50 NL", "50_FREE"),
        ("50 Nage Libre", "50_FREE"),
        ("50 m Nage Libre", "50_FREE"),
        ("1500 NL", "1500_FREE"),
        ("100 Dos", "100_BACK"),
        ("200 Brasse", "200_BREAST"),
        ("50 Br", "50_BREAST"),
        ("100 Pap.", "100_FLY"),
        ("100m Papillon", "100_FLY"),
        ("200 4 Nages", "200_IM"),
        ("400 4N", "400_IM"),
    ],
)
def test_normalize_event_code(label, code):
    assert normalize_event_code(label) == code


@pytest.mark.parametrize("label", ["4x50 NL", "4 x 100 4 Nages", "25 NL", "800 Dos", "Épreuve", "", None])
def test_relays_and_unknown_events_are_not_mapped(label):
    assert normalize_event_code(label) is None


def test_event_label():
    assert event_label("100_BACK") == "100 Dos"
    assert event_label("200_IM") == "200 4N"
    assert event_label("UNKNOWN") == "UNKNOWN"


def test_event_sort_key_orders_by_stroke_then_distance():
    codes = ["50_BACK", "UNKNOWN", "100_FREE", "50_FREE"]
    assert sorted(codes, key=event_sort_key) == ["50_FREE", "100_FREE", "50_BACK", "UNKNOWN"]
    assert EVENT_ORDER[0] == "50_FREE"
