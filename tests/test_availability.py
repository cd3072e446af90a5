import json
import logging
from datetime import time

from mercado_oficio.domain.scheduling.availability import parse_availability, windows_for_weekday


def test_parses_mapping_of_comma_joined_ranges():
    windows = parse_availability({"lunes": "09:00-13:00, 15:00-18:00", "Miércoles": "14:00-18:00"})

    assert [(w.weekday, w.start_time, w.end_time) for w in windows] == [
        ("LUNES", time(9, 0), time(13, 0)),
        ("LUNES", time(15, 0), time(18, 0)),
        ("MIERCOLES", time(14, 0), time(18, 0)),
    ]


def test_parses_structured_list():
    windows = parse_availability(
        [
            {"dia": "VIERNES", "horaInicio": "08:00", "horaFin": "12:00"},
            {"dia": "martes", "horaInicio": "10:30", "horaFin": "11:45"},
        ]
    )

    assert [w.as_dict() for w in windows] == [
        {"weekday": "MARTES", "startTime": "10:30", "endTime": "11:45"},
        {"weekday": "VIERNES", "startTime": "08:00", "endTime": "12:00"},
    ]


def test_parses_json_encoded_payload():
    raw = json.dumps({"sábado": "09:00-12:00"})

    windows = parse_availability(raw)

    assert len(windows) == 1
    assert windows[0].weekday == "SABADO"


def test_empty_input_yields_no_windows():
    assert parse_availability(None) == []
    assert parse_availability("") == []
    assert parse_availability({}) == []


def test_malformed_entries_are_logged_and_skipped(caplog):
    raw = {
        "lunes": "09:00-13:00, basura, 18:00-17:00",
        "funday": "10:00-11:00",
        "martes": "25:00-26:00",
    }

    with caplog.at_level(logging.WARNING):
        windows = parse_availability(raw)

    assert [(w.weekday, w.start_time) for w in windows] == [("LUNES", time(9, 0))]
    assert caplog.records, "skipped entries should be logged"


def test_unparseable_json_string_degrades_to_empty(caplog):
    with caplog.at_level(logging.WARNING):
        assert parse_availability("{not json") == []


def test_windows_for_weekday_filters():
    windows = parse_availability({"lunes": "09:00-13:00", "martes": "09:00-10:00"})

    monday = windows_for_weekday(windows, "LUNES")

    assert len(monday) == 1
    assert monday[0].contains(time(9, 0), time(13, 0))
    assert not monday[0].contains(time(12, 0), time(14, 0))
