"""Screens the session loop renders to: curses for terminals, logs otherwise."""

import asyncio
import curses
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from .input import PLACEHOLDER, KeyEvent, KeyKind
from .logging import get_logger
from .models import Frame, TunnelRow, TunnelState

logger = get_logger(__name__)

T = TypeVar("T")

TITLE = "Rtun - SSH Tunnel Manager (hit q to quit)"
INPUT_TITLE = "New tunnel (enter to add, esc to cancel)"
LEGEND = " n: new tunnel  d: remove  up/down: select  q/esc: quit "
ESC_DELAY_MS = 25

# color pairs:
#   1: white (rows)
#   2: green (running)
#   3: yellow (starting / terminating)
#   4: red (errors)
#   5: cyan (titles)
#   6: dim (placeholder, hosts)
STATE_COLORS = {
    TunnelState.STARTING: 3,
    TunnelState.RUNNING: 2,
    TunnelState.TERMINATING: 3,
    TunnelState.EXITED: 4,
}


def centered_rect(
    height: int, width: int, percent_x: int, percent_y: int
) -> tuple[int, int, int, int]:
    """Return ``(y, x, h, w)`` of a rectangle centered in ``height`` x ``width``."""
    h = height * percent_y // 100
    w = width * percent_x // 100
    return (height - h) // 2, (width - w) // 2, h, w


def row_text(row: TunnelRow) -> str:
    return f"PORTS >>>> {row.local_port} -> {row.host}:{row.remote_port} [{row.state.value}]"


def decode_key(code: int) -> KeyEvent | None:
    """Map a curses key code to a key event.

    Returns:
        The decoded event, or None for no key / keys the session ignores
    """
    if code == -1:
        return None
    if code == 27:
        return KeyEvent(KeyKind.ESCAPE)
    if code in (curses.KEY_ENTER, 10, 13):
        return KeyEvent(KeyKind.ENTER)
    if code in (curses.KEY_BACKSPACE, 127, 8):
        return KeyEvent(KeyKind.BACKSPACE)
    if code == curses.KEY_UP:
        return KeyEvent(KeyKind.UP)
    if code == curses.KEY_DOWN:
        return KeyEvent(KeyKind.DOWN)
    if code == curses.KEY_DC:
        return KeyEvent(KeyKind.DELETE)
    if 32 <= code < 127:
        return KeyEvent.of(chr(code))
    return None


class CursesScreen:
    """Curses renderer with non-blocking key polling."""

    def __init__(self, stdscr: "curses.window"):
        self.stdscr = stdscr
        self.stdscr.nodelay(True)
        self.stdscr.keypad(True)
        curses.set_escdelay(ESC_DELAY_MS)
        try:
            curses.curs_set(0)
        except curses.error:
            pass  # terminal cannot hide the cursor
        self._colors = curses.has_colors()
        if self._colors:
            self.setup_colors()

    def setup_colors(self) -> None:
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, curses.COLOR_WHITE, -1)
        curses.init_pair(2, curses.COLOR_GREEN, -1)
        curses.init_pair(3, curses.COLOR_YELLOW, -1)
        curses.init_pair(4, curses.COLOR_RED, -1)
        curses.init_pair(5, curses.COLOR_CYAN, -1)
        curses.init_pair(6, 8 if curses.COLORS > 8 else curses.COLOR_WHITE, -1)

    def color(self, pair: int) -> int:
        return curses.color_pair(pair) if self._colors else 0

    def safe_addstr(self, y: int, x: int, text: str, attr: int = 0) -> None:
        """addstr that clips to the screen and ignores writes off its edge."""
        height, width = self.stdscr.getmaxyx()
        if y < 0 or y >= height or x < 0 or x >= width:
            return
        try:
            self.stdscr.addstr(y, x, text[: width - x], attr)
        except curses.error:
            pass  # writing the bottom-right cell moves the cursor off screen

    def draw_box(self, y: int, x: int, h: int, w: int, title: str, attr: int = 0) -> None:
        if h < 2 or w < 2:
            return
        try:
            self.stdscr.hline(y, x + 1, curses.ACS_HLINE, w - 2)
            self.stdscr.hline(y + h - 1, x + 1, curses.ACS_HLINE, w - 2)
            self.stdscr.vline(y + 1, x, curses.ACS_VLINE, h - 2)
            self.stdscr.vline(y + 1, x + w - 1, curses.ACS_VLINE, h - 2)
            self.stdscr.addch(y, x, curses.ACS_ULCORNER)
            self.stdscr.addch(y, x + w - 1, curses.ACS_URCORNER)
            self.stdscr.addch(y + h - 1, x, curses.ACS_LLCORNER)
            self.stdscr.addch(y + h - 1, x + w - 1, curses.ACS_LRCORNER)
        except curses.error:
            pass
        for row in range(y + 1, y + h - 1):
            self.safe_addstr(row, x + 1, " " * (w - 2))
        self.safe_addstr(y, x + 1, title[: max(0, w - 2)], attr | curses.A_BOLD)

    def draw_tunnels(self, frame: Frame, y: int, x: int, h: int, w: int) -> None:
        self.draw_box(y, x, h, w, TITLE, self.color(5))
        if not frame.rows:
            self.safe_addstr(y + 1, x + 2, "no tunnels, press n to add one"[: w - 4], self.color(6))
            return

        visible = frame.rows[: max(0, h - 2)]
        for offset, row in enumerate(visible):
            marker = ">>" if offset == frame.selected else "  "
            attr = self.color(STATE_COLORS[row.state])
            if offset == frame.selected:
                attr |= curses.A_BOLD
            self.safe_addstr(y + 1 + offset, x + 1, f"{marker}{row_text(row)}"[: w - 2], attr)

    def draw_hosts(self, hosts: list[str], y: int, x: int, w: int) -> None:
        if not hosts:
            return
        self.safe_addstr(y, x, "Hosts: " + ", ".join(hosts), self.color(6))

    def draw_input(self, frame: Frame, height: int, width: int) -> None:
        h = 5
        w = width * 60 // 100
        y, x = max(0, (height - h) // 2), (width - w) // 2
        self.draw_box(y, x, h, w, INPUT_TITLE, self.color(5))
        if frame.input_text:
            self.safe_addstr(y + 1, x + 2, frame.input_text[-(w - 4):], self.color(1))
        else:
            self.safe_addstr(y + 1, x + 2, PLACEHOLDER, self.color(6))
        if frame.input_error:
            self.safe_addstr(y + 3, x + 2, frame.input_error[: w - 4], self.color(4))

    def draw_footer(self, frame: Frame, height: int) -> None:
        if frame.shutting_down:
            text = f" shutting down, waiting for {len(frame.rows)} tunnel(s) "
            self.safe_addstr(height - 1, 0, text, self.color(3) | curses.A_BOLD)
            return
        if frame.status:
            self.safe_addstr(height - 2, 0, f" {frame.status}", self.color(4))
        self.safe_addstr(height - 1, 0, LEGEND, self.color(6))

    def render(self, frame: Frame) -> None:
        self.stdscr.erase()
        height, width = self.stdscr.getmaxyx()

        y, x, h, w = centered_rect(height, width, 50, 50)
        self.draw_tunnels(frame, y, x, h, w)
        self.draw_hosts(frame.hosts, y + h, x, w)
        if frame.input_text is not None:
            self.draw_input(frame, height, width)
        self.draw_footer(frame, height)

        self.stdscr.refresh()

    async def read_key(self, timeout: float) -> KeyEvent | None:
        code = self.stdscr.getch()
        if code == -1:
            await asyncio.sleep(timeout)
            return None
        return decode_key(code)


class HeadlessScreen:
    """Logs tunnel state changes instead of drawing; never produces keys."""

    def __init__(self) -> None:
        self._last_rows: list[tuple[str, TunnelState]] | None = None
        self._last_status: str | None = None

    def render(self, frame: Frame) -> None:
        rows = [(row.id, row.state) for row in frame.rows]
        if rows != self._last_rows:
            self._last_rows = rows
            logger.info("Tunnels", tunnels=[row_text(row) for row in frame.rows])
            if not rows and not frame.shutting_down:
                logger.warning("No tunnels running; waiting for SIGINT/SIGTERM")
        if frame.status != self._last_status:
            self._last_status = frame.status
            if frame.status:
                logger.warning(frame.status)

    async def read_key(self, timeout: float) -> KeyEvent | None:
        await asyncio.sleep(timeout)
        return None


def run_in_curses(main: Callable[[CursesScreen], Coroutine[Any, Any, T]]) -> T:
    """Run ``main`` inside an event loop with the terminal in curses mode.

    ``curses.wrapper`` restores the terminal on the way out, including on
    errors.
    """

    def _wrapped(stdscr: "curses.window") -> T:
        return asyncio.run(main(CursesScreen(stdscr)))

    return curses.wrapper(_wrapped)
