"""Render streamed analysis responses to the console or to a JSON file."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO

from shipshape.common.models import Note, ShipshapeResponse

ResponseHandler = Callable[[ShipshapeResponse, str], None]

GLOBAL_GROUP = "Global"


def group_notes(response: ShipshapeResponse, directory: str) -> Dict[str, List[Note]]:
    """Group the notes of one response by absolute file path, path-less notes under ''."""
    groups: Dict[str, List[Note]] = {}
    for analysis in response.analyze_response:
        for note in analysis.note:
            path = ""
            if note.location is not None:
                path = os.path.normpath(os.path.join(directory, note.location.path))
            groups.setdefault(path, []).append(note)
    return groups


def format_note(note: Note) -> str:
    loc = ""
    text_range = note.location.range if note.location else None
    if text_range is not None and text_range.start_line is not None:
        if text_range.start_column is not None:
            loc = f"Line {text_range.start_line}, Col {text_range.start_column} "
        else:
            loc = f"Line {text_range.start_line} "
    sub_cat = f":{note.subcategory}" if note.subcategory else ""
    return f"{loc}[{note.category}{sub_cat}]\n\t{note.description}"


class ConsoleSink:
    """Print failures as warnings and notes grouped by file."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def __call__(self, response: ShipshapeResponse, directory: str) -> None:
        out = self.stream
        for analysis in response.analyze_response:
            for failure in analysis.failure:
                print(f"WARNING: Analyzer {failure.category} failed to run: {failure.failure_message}", file=out)

        for path, notes in group_notes(response, directory).items():
            print(path or GLOBAL_GROUP, file=out)
            for note in notes:
                print(format_note(note), file=out)
            print(file=out)


class JsonFileSink:
    """Write every response of the run to a file, one JSON document per line."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._started = False

    def __call__(self, response: ShipshapeResponse, directory: str) -> None:
        mode = "a" if self._started else "w"
        with open(self.path, mode, encoding="utf-8") as handle:
            handle.write(response.model_dump_json(exclude_none=True))
            handle.write("\n")
        self._started = True


def make_sink(json_output: str = "") -> ResponseHandler:
    """Console output unless a JSON output file was configured."""
    if json_output:
        return JsonFileSink(json_output)
    return ConsoleSink()
