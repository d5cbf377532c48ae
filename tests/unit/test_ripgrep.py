"""Tests for the ripgrep executor."""

import io
import logging
import shlex
import stat
import threading
from pathlib import Path

import pytest

from ebsmon.exceptions import SearchError
from ebsmon.models import MatchedFile, SearchOptions
from ebsmon.ripgrep import (
    ALL_FILES,
    RIPGREP_DEFAULTS,
    Ripgrep,
    describe_options,
    option_args,
    parse_matched_file,
)

PATHS = ["1/100/2/10/1000", "1/200/2/20/2000", "1/300/2/30/3000"]


@pytest.fixture
def unzipped(temp_dir):
    root = temp_dir / "unzipped"
    root.mkdir()
    return root


def recorded_args(temp_dir) -> list[str]:
    return (temp_dir / "args").read_text().splitlines()


def test_parse_matched_file():
    line = "1/4567/2/890/1234/content/background.js:12:eval(atob(x))"
    assert parse_matched_file(line) == MatchedFile(
        addon_type_id=1, addon_id=4567, version_id=890, file_id=1234
    )


def test_parse_matched_file_strips_leading_dot():
    assert parse_matched_file("./1/2/3/4/5/a.js:1:x").addon_id == 2


def test_parse_matched_file_malformed():
    """Non-numeric segments become None instead of raising."""
    matched = parse_matched_file("--")
    assert matched == MatchedFile(None, None, None, None)

    matched = parse_matched_file("1/abc/2/3:1:x")
    assert matched.addon_type_id == 1
    assert matched.addon_id is None
    assert matched.version_id == 3
    assert matched.file_id is None


def test_option_args():
    options = SearchOptions(fixed_strings=True, globs=("*.js", "!*.json"), context=2)
    assert option_args(options) == [
        "--fixed-strings", "--glob", "*.js", "--glob", "!*.json", "--context", "2",
    ]
    assert option_args(SearchOptions()) == []
    assert describe_options(SearchOptions()) == "(none)"


def test_option_args_are_not_shell_quoted():
    """Arguments go straight into the argument vector."""
    options = SearchOptions(globs=("*.js; rm -rf /",))
    assert option_args(options) == ["--glob", "*.js; rm -rf /"]


def test_run_collects_matches(temp_dir, unzipped, fake_rg):
    script = fake_rg(stdout=[
        "1/100/2/10/1000/a.js:3:eval(x)",
        "1/200/2/20/2000/b.js:7:eval(y)",
    ])
    output = io.StringIO()

    outcome = Ripgrep(unzipped, rg_binary=str(script)).run(
        PATHS, ["eval\\("], SearchOptions(globs=("*.js",)), output=output
    )

    assert [f.addon_id for f in outcome.files] == [100, 200]
    assert outcome.skipped == []
    assert output.getvalue() == (
        "1/100/2/10/1000/a.js:3:eval(x)\n1/200/2/20/2000/b.js:7:eval(y)\n"
    )

    args = recorded_args(temp_dir)
    assert args[0] == "-f"
    assert args[2:2 + len(RIPGREP_DEFAULTS)] == RIPGREP_DEFAULTS
    assert args[-5:] == ["--glob", "*.js", *PATHS]


def test_run_writes_pattern_file_and_cleans_up(temp_dir, unzipped, fake_rg):
    script = fake_rg()
    Ripgrep(unzipped, rg_binary=str(script)).run(PATHS, ["foo"], SearchOptions())

    patternfile = Path(recorded_args(temp_dir)[1])
    assert patternfile.name == "patternfile"
    assert not patternfile.parent.exists()


def test_run_cleans_up_on_failure(temp_dir, unzipped, fake_rg):
    script = fake_rg(stderr=["No files were searched, which means ripgrep probably applied a filter"])
    with pytest.raises(SearchError):
        Ripgrep(unzipped, rg_binary=str(script)).run(PATHS, ["foo"], SearchOptions())

    assert not Path(recorded_args(temp_dir)[1]).parent.exists()


def test_debug_keeps_temp_folder(temp_dir, unzipped, fake_rg):
    script = fake_rg()
    Ripgrep(unzipped, debug=True, rg_binary=str(script)).run(PATHS, ["foo"], SearchOptions())

    patternfile = Path(recorded_args(temp_dir)[1])
    assert patternfile.read_text() == "foo\n"
    assert (patternfile.parent / "rgfiles").read_text() == "\n".join(PATHS) + "\n"
    for child in patternfile.parent.iterdir():
        child.unlink()
    patternfile.parent.rmdir()


def test_no_files_searched_rejects(unzipped, fake_rg):
    message = "No files were searched, which means ripgrep probably applied a filter you didn't expect."
    script = fake_rg(stderr=[message], exit_code=2)
    with pytest.raises(SearchError, match="No files were searched"):
        Ripgrep(unzipped, rg_binary=str(script)).run([ALL_FILES], ["foo"], SearchOptions())


def test_nonzero_exit_is_not_an_error(unzipped, fake_rg):
    """Exit codes from the pipeline mix up "no match" with real problems."""
    script = fake_rg(exit_code=1)
    outcome = Ripgrep(unzipped, rg_binary=str(script)).run(PATHS, ["foo"], SearchOptions())
    assert outcome.files == []
    assert outcome.exit_code != 0


def test_missing_files_are_reported_not_fatal(temp_dir, unzipped, fake_rg, caplog):
    banned = temp_dir / "banned"
    (banned / "1/200/2/20").mkdir(parents=True)
    (banned / "1/200/2/20/2000").write_text("")
    script = fake_rg(
        stdout=["1/100/2/10/1000/a.js:1:foo"],
        stderr=[
            "rg: 1/200/2/20/2000: No such file or directory (os error 2)",
            "rg: 1/300/2/30/3000: No such file or directory (os error 2)",
        ],
        exit_code=2,
    )

    with caplog.at_level(logging.DEBUG, logger="ebsmon"):
        outcome = Ripgrep(unzipped, banned=banned, rg_binary=str(script)).run(
            PATHS, ["foo"], SearchOptions(), output=io.StringIO()
        )

    assert len(outcome.files) == 1
    assert outcome.missing == ["1/200/2/20/2000", "1/300/2/30/3000"]
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert warnings == ["File 1/300/2/30/3000 is missing from the unzipped tree"]


def test_missing_files_in_ripgrep_14_wording(temp_dir, unzipped, fake_rg, caplog):
    banned = temp_dir / "banned"
    (banned / "1/200/2/20").mkdir(parents=True)
    (banned / "1/200/2/20/2000").write_text("")
    script = fake_rg(
        stderr=[
            "rg: 1/200/2/20/2000: IO error for operation on 1/200/2/20/2000:"
            " No such file or directory (os error 2)",
        ],
        exit_code=2,
    )

    with caplog.at_level(logging.DEBUG, logger="ebsmon"):
        outcome = Ripgrep(unzipped, banned=banned, rg_binary=str(script)).run(
            PATHS, ["foo"], SearchOptions(), output=io.StringIO()
        )

    assert outcome.missing == ["1/200/2/20/2000"]
    assert not [r for r in caplog.records if r.levelno == logging.WARNING]


class FullDisk:
    def write(self, text):
        raise OSError("disk full")


def test_failing_sink_stops_the_pipeline(temp_dir, unzipped):
    """An error while writing output kills rg and still cleans up."""
    script = temp_dir / "endless-rg"
    script.write_text(
        "#!/bin/sh\n"
        f"printf '%s\\n' \"$@\" > {shlex.quote(str(temp_dir / 'args'))}\n"
        "while :; do printf '%s\\n' '1/100/2/10/1000/a.js:1:foo'; done\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    errors = []

    def search():
        try:
            Ripgrep(unzipped, rg_binary=str(script)).run(
                PATHS, ["foo"], SearchOptions(), output=FullDisk()
            )
        except OSError as e:
            errors.append(e)

    worker = threading.Thread(target=search, daemon=True)
    worker.start()
    worker.join(timeout=20)

    assert not worker.is_alive()
    assert [str(e) for e in errors] == ["disk full"]
    assert not Path(recorded_args(temp_dir)[1]).parent.exists()


def test_already_seen_suppresses_repeats(unzipped, fake_rg):
    script = fake_rg(stdout=[
        "1/100/2/10/1000/a.js:1:foo",
        "1/100/2/10/1000/b.js:9:foo",
        "1/200/2/20/2000/a.js:1:foo",
    ])
    ripgrep = Ripgrep(unzipped, rg_binary=str(script))
    already_seen = {200}
    output = io.StringIO()

    outcome = ripgrep.run(PATHS, ["foo"], SearchOptions(), output, already_seen)

    assert [f.addon_id for f in outcome.files] == [100]
    assert [f.addon_id for f in outcome.skipped] == [100, 200]
    assert already_seen == {100, 200}
    assert output.getvalue() == "1/100/2/10/1000/a.js:1:foo\n"


def test_fresh_sets_report_again(unzipped, fake_rg):
    """Separate runs do not share what they have seen."""
    script = fake_rg(stdout=["1/100/2/10/1000/a.js:1:foo"])
    ripgrep = Ripgrep(unzipped, rg_binary=str(script))

    first = ripgrep.run(PATHS, ["foo"], SearchOptions(), io.StringIO(), set())
    second = ripgrep.run(PATHS, ["foo"], SearchOptions(), io.StringIO(), set())

    assert len(first.files) == 1
    assert len(second.files) == 1


def test_context_lines_are_written_not_counted(unzipped, fake_rg):
    lines = [
        "1/100/2/10/1000/a.js-2-var x = 1;",
        "1/100/2/10/1000/a.js:3:foo()",
        "1/100/2/10/1000/a.js-4-}",
        "--",
    ]
    script = fake_rg(stdout=lines)
    output = io.StringIO()
    already_seen = set()
    outcome = Ripgrep(unzipped, rg_binary=str(script)).run(
        PATHS, ["foo"], SearchOptions(context=1), output, already_seen
    )
    assert [f.file_id for f in outcome.files] == [1000]
    assert outcome.skipped == []
    assert already_seen == {100}
    assert output.getvalue().splitlines() == lines


def test_console_output_without_sink(unzipped, fake_rg, capsys):
    script = fake_rg(stdout=["1/100/2/10/1000/a.js:3:foo[bar]"])
    Ripgrep(unzipped, rg_binary=str(script)).run(PATHS, ["foo"], SearchOptions())
    assert "1/100/2/10/1000/a.js:3:foo[bar]" in capsys.readouterr().out
