import json
from datetime import date

from chugware_core import ContestSettings, contest_folder_name, load_settings, parse_contest_folder_name


def test_load_settings_missing_file_gives_defaults(tmp_path):
    settings, err = load_settings(tmp_path / "settings.json")
    assert err is None
    assert settings.clock_mode == "internal"
    assert settings.external_clock_baud == 9600


def test_load_settings_reads_known_keys_and_ignores_others(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "folder_path": "/data",
                "participant_file": "participants.json",
                "external_clock_port": "COM3",
                "external_clock_baud": 0,
                "clock_mode": "external",
                "window_geometry": "800x600",
            }
        ),
        encoding="utf-8",
    )
    settings, err = load_settings(path)
    assert err is None
    assert settings.folder_path == "/data"
    assert settings.external_clock_port == "COM3"
    # 0 means not configured
    assert settings.external_clock_baud == 9600
    assert settings.clock_mode == "external"


def test_load_settings_malformed_file_reports_io_error(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("not json", encoding="utf-8")
    settings, err = load_settings(path)
    assert settings == ContestSettings()
    assert err is not None and err.kind == "io"
    assert str(path) in err.message


def test_contest_folder_name_round_trip():
    folder = contest_folder_name("Spring Chug", date(2024, 4, 30))
    assert folder == "Spring_Chug_2024-04-30_Official"
    assert parse_contest_folder_name(folder) == ("Spring Chug", "2024-04-30", True)

    folder = contest_folder_name("Test", "2024-05-01", official=False)
    assert folder == "Test_2024-05-01_Unofficial"
    assert parse_contest_folder_name(folder) == ("Test", "2024-05-01", False)

    assert parse_contest_folder_name("random-folder") is None
