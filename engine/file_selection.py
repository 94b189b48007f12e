"""Choose the concrete directory and files to download from one response."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from engine.audio_quality import extract_quality_info, is_music_file, should_reject_file
from engine.config import QualityPreferences, SearchConfig
from engine.slskd_paths import directory_of, normalize_slskd_path
from engine.types import CandidateFile, CandidateResponse, FileSelection


@dataclass(frozen=True)
class FileSelectionOptions:
    min_file_size_bytes: int = 0
    max_file_size_bytes: int = 0
    prefer_complete_albums: bool = True
    prefer_album_folder: bool = True
    min_files: int = 1
    quality_preferences: QualityPreferences | None = None


def options_for(config: SearchConfig, kind: str) -> FileSelectionOptions:
    return FileSelectionOptions(
        min_file_size_bytes=config.min_file_size_bytes,
        max_file_size_bytes=config.max_file_size_bytes,
        prefer_complete_albums=config.prefer_complete_albums,
        prefer_album_folder=config.prefer_album_folder,
        min_files=config.min_files_track if kind == "track" else config.min_files_album,
        quality_preferences=config.quality_preferences,
    )


def _size_ok(file: CandidateFile, options: FileSelectionOptions) -> bool:
    if file.size is None:
        return True
    if file.size < options.min_file_size_bytes:
        return False
    if options.max_file_size_bytes and file.size > options.max_file_size_bytes:
        return False
    return True


def qualifying_files(files: Iterable[CandidateFile], options: FileSelectionOptions) -> list[CandidateFile]:
    out = []
    for file in files:
        if not is_music_file(file.filename):
            continue
        if not _size_ok(file, options):
            continue
        if should_reject_file(extract_quality_info(file), options.quality_preferences):
            continue
        out.append(file)
    return out


def select_files(
    files: Iterable[CandidateFile],
    options: FileSelectionOptions,
    *,
    directory: str | None = None,
) -> FileSelection | None:
    """Return the files to download, or None when nothing meets ``min_files``.

    ``directory`` pins the selection to one remote folder.
    """
    min_files = max(1, int(options.min_files))
    eligible = qualifying_files(files, options)
    if directory is not None:
        wanted = normalize_slskd_path(directory)
        eligible = [f for f in eligible if directory_of(f.filename) == wanted]
    if len(eligible) < min_files:
        return None

    groups: dict[str, list[CandidateFile]] = {}
    for file in eligible:
        groups.setdefault(directory_of(file.filename), []).append(file)

    if not options.prefer_album_folder:
        counts = Counter(directory_of(f.filename) for f in eligible)
        # most_common keeps first-seen order on ties.
        common_dir = counts.most_common(1)[0][0]
        return FileSelection(directory=common_dir, files=tuple(eligible))

    complete = [(name, group) for name, group in groups.items() if len(group) >= min_files]
    if not complete:
        return None
    if options.prefer_complete_albums:
        name, group = max(complete, key=lambda item: len(item[1]))
    else:
        name, group = complete[0]
    return FileSelection(directory=name, files=tuple(group))


def select_for_response(
    response: CandidateResponse,
    config: SearchConfig,
    kind: str = "album",
    directory: str | None = None,
) -> FileSelection | None:
    return select_files(response.files, options_for(config, kind), directory=directory)
