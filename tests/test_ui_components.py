import pytest  # noqa: F401

from tests import helpers  # noqa: F401  # ensures project root on sys.path
from moneywise import cli


class FakeStdScr:
    """Full-screen window that replays ``keys`` from ``getch``."""

    def __init__(self, keys=(), size=(24, 80)):
        self.keys = list(keys)
        self.size = size
        self.lines = []

    def getmaxyx(self):
        return self.size

    def addnstr(self, y, x, line, n, *attr):
        self.lines.append(line)

    def erase(self):
        self.lines = []

    def refresh(self):
        pass

    def keypad(self, flag):
        pass

    def getch(self):
        return self.keys.pop(0)

    def box(self):
        pass


class FakeWin:
    instances = []

    def __init__(self, strings=(), keys=()):
        self.calls = []
        self.strings = list(strings)
        self.keys = list(keys)
        self.text = []

    def box(self):
        pass

    def addnstr(self, y, x, line, n, *attr):
        self.text.append(line)

    def refresh(self):
        self.calls.append("refresh")

    def getstr(self, y, x, n):
        self.calls.append("getstr")
        return self.strings.pop(0)

    def getch(self):
        self.calls.append("getch")
        return self.keys.pop(0)

    def keypad(self, flag):
        pass


@pytest.fixture
def no_terminal(monkeypatch):
    monkeypatch.setattr(cli.curses, "curs_set", lambda n: None)
    monkeypatch.setattr(cli.curses, "echo", lambda: None)
    monkeypatch.setattr(cli.curses, "noecho", lambda: None)
    monkeypatch.setattr(cli.curses, "napms", lambda ms: None)


def _windows(monkeypatch, wins):
    queue = list(wins)
    monkeypatch.setattr(cli.curses, "newwin", lambda h, w, y, x: queue.pop(0))


def test_select_uses_scroll_menu(monkeypatch):
    captured = {}

    def fake_scroll(stdscr, entries, index, header=None, **kwargs):
        captured.update(entries=entries, index=index, header=header, boxed=kwargs.get("boxed"))
        return 1

    monkeypatch.setattr(cli, "scroll_menu", fake_scroll)

    result = cli.select(object(), "Pick", ["A", ("B title", "b"), "C"], default="b")

    assert captured == {"entries": ["A", "B title", "C"], "index": 1, "header": "Pick", "boxed": True}
    assert result == "b"


def test_select_cancelled(monkeypatch):
    monkeypatch.setattr(cli, "scroll_menu", lambda *a, **k: None)
    assert cli.select(object(), "Pick", ["A"]) is None


def test_text_prompt_curses(monkeypatch, no_terminal):
    first, second = FakeWin(strings=[b"hello"]), FakeWin(strings=[b""])
    _windows(monkeypatch, [first, second])

    stdscr = FakeStdScr()
    assert cli.text(stdscr, "Prompt") == "hello"
    assert first.calls == ["refresh", "getstr"]
    assert cli.text(stdscr, "Prompt", default="dflt") == "dflt"
    assert second.text == ["Prompt [dflt]: "]


def test_text_decodes_utf8(monkeypatch, no_terminal):
    _windows(monkeypatch, [FakeWin(strings=["Café".encode()])])
    assert cli.text(FakeStdScr(), "Note") == "Café"


def test_confirm_prompt_curses(monkeypatch, no_terminal):
    yes, no = FakeWin(keys=[10]), FakeWin(keys=[ord("x")])
    _windows(monkeypatch, [yes, no])

    stdscr = FakeStdScr()
    assert cli.confirm(stdscr, "Sure?") is True
    assert yes.calls == ["refresh", "getch"]
    assert cli.confirm(stdscr, "Sure?") is False


def test_toast_draws_message(monkeypatch, no_terminal):
    win = FakeWin()
    _windows(monkeypatch, [win])
    cli.toast(FakeStdScr(), "Saved")
    assert win.text == ["Saved"]


def test_scroll_menu_handles_curses_error(monkeypatch, no_terminal):
    class BrokenWin(FakeStdScr):
        def addnstr(self, *args, **kwargs):
            raise cli.curses.error

    index = cli.scroll_menu(BrokenWin(keys=[10], size=(0, 0)), ["A", "B"], 0, header="hdr")
    assert index == 0


def test_scroll_menu_quits_on_q(no_terminal):
    assert cli.scroll_menu(FakeStdScr(keys=[ord("q")]), ["A", "B"], 0) is None


def test_scroll_menu_navigation(no_terminal):
    keys = [cli.curses.KEY_DOWN, cli.curses.KEY_DOWN, cli.curses.KEY_DOWN, cli.curses.KEY_UP, 10]
    assert cli.scroll_menu(FakeStdScr(keys=keys), ["A", "B", "C"], 0) == 1
    assert cli.scroll_menu(FakeStdScr(keys=[cli.curses.KEY_END, 13]), ["A", "B", "C"], 0) == 2
    assert cli.scroll_menu(FakeStdScr(keys=[cli.curses.KEY_HOME, 10]), ["A", "B", "C"], 2) == 0


def test_scroll_menu_add_and_delete(no_terminal):
    assert cli.scroll_menu(FakeStdScr(keys=[ord("a"), 10]), ["A"], 0) == 0
    assert cli.scroll_menu(FakeStdScr(keys=[ord("a")]), ["A"], 0, allow_add=True) == -1
    keys = [cli.curses.KEY_DOWN, ord("d")]
    assert cli.scroll_menu(FakeStdScr(keys=keys), ["A", "B"], 0, allow_delete=True) == ("delete", 1)


def test_scroll_menu_boxed(monkeypatch, no_terminal):
    win = FakeWin(keys=[cli.curses.KEY_DOWN])
    again = FakeWin(keys=[10])
    _windows(monkeypatch, [win, again])
    assert cli.scroll_menu(FakeStdScr(), ["A", "B"], 0, header="Pick", boxed=True) == 1
    assert "Pick" in win.text
    assert "A" in win.text


def test_show_text_wraps(monkeypatch):
    captured = {}

    def fake_scroll(stdscr, entries, index, **kwargs):
        captured["entries"] = entries
        return None

    monkeypatch.setattr(cli, "scroll_menu", fake_scroll)
    cli.show_text(FakeStdScr(size=(24, 22)), "Reply", "one two three four five six\n\nseven")
    assert captured["entries"] == ["one two three four", "five six", "", "seven"]
