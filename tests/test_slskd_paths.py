from engine.slskd_paths import directory_of, normalize_slskd_path


def test_normalize_converts_backslashes_and_trailing_separators() -> None:
    assert normalize_slskd_path("Music\\Artist\\Album\\") == "Music/Artist/Album"
    assert normalize_slskd_path(None) is None
    assert normalize_slskd_path(".") == ""


def test_directory_of_windows_paths() -> None:
    assert directory_of("Music\\Artist\\Album\\01 - Intro.flac") == "Music/Artist/Album"
    assert directory_of("song.mp3") == ""
    assert directory_of(None) == ""
