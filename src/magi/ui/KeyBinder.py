# magi/ui/KeyBinder.py
"""KeyBinder.py
==================
Translates terminal key presses into status-view action names.

Key specs come from the ``[keybindings]`` section of the configuration
(action -> spec or list of specs). A spec is a single character (``"s"``,
``"V"``), a modifier combination (``"ctrl+d"``), a named key (``"tab"``,
``"pagedown"``, ``"esc"``) or a raw integer key code. `get_key_input` reads
one key, folding ESC sequences into the same codes so arrow keys work on
terminals that do not report them through keypad mode.
"""

import curses
import logging
import re
from typing import Any, Optional

from magi.utils.logging_config import KEY_LOGGER


logger = logging.getLogger("magi")

ENTER_KEYS = (10, 13)
BACKSPACE_KEYS = (8, 127)
ESC = 27


# ==================== KeyBinder Class ====================
class KeyBinder:
    """Maps decoded key codes to action names.

    Attributes:
        keybindings (dict[str, list[int | str]]): Action -> decoded key codes.
        action_map (dict[int | str, str]): Decoded key code -> action.
    """

    # Keys do NOT include the leading ESC, get_key_input() strips it.
    ESCAPE_SEQUENCE_MAP: dict[str, str] = {
        "[A": "up", "[B": "down", "[C": "right", "[D": "left",
        "OA": "up", "OB": "down", "OC": "right", "OD": "left",
        "[H": "home", "[F": "end", "OH": "home", "OF": "end",
        "[1~": "home", "[4~": "end",
        "[5~": "pageup", "[6~": "pagedown", "[3~": "delete",
    }

    def __init__(self, config: dict[str, Any], stdscr: Optional["curses.window"] = None) -> None:
        self.config = config
        self.stdscr = stdscr
        self.tick_ms = int(config.get("ui", {}).get("tick_ms", 100))
        self.keybindings = self._load_keybindings()
        self.action_map = self._setup_action_map()

    def _load_keybindings(self) -> dict[str, list[int | str]]:
        parsed: dict[str, list[int | str]] = {}
        for action, spec in self.config.get("keybindings", {}).items():
            specs = spec if isinstance(spec, list) else [spec]
            codes: list[int | str] = []
            for item in specs:
                try:
                    code = self._decode_keystring(item)
                except ValueError as e:
                    logger.error(f"Ignoring keybinding {item!r} for {action!r}: {e}")
                    continue
                if code not in codes:
                    codes.append(code)
            if codes:
                parsed[action] = codes
            else:
                logger.warning(f"No valid key codes for action {action!r}; it will not be bound.")
        logger.debug(f"Loaded keybindings: {parsed}")
        return parsed

    def _setup_action_map(self) -> dict[int | str, str]:
        action_map: dict[int | str, str] = {}
        for action, codes in self.keybindings.items():
            for code in codes:
                if code in action_map:
                    logger.warning(
                        f"Key {code!r} bound to both {action_map[code]!r} and {action!r}; keeping the first."
                    )
                    continue
                action_map[code] = action
        return action_map

    def _decode_keystring(self, key_input: str | int) -> int | str:
        """Decodes a key spec into a curses key code or an ``alt-x`` string.

        Raises:
            ValueError: If the spec is empty or names an unknown key.
        """
        if isinstance(key_input, int):
            return key_input
        if not isinstance(key_input, str) or not key_input:
            raise ValueError(f"Invalid key spec {key_input!r}")

        # Single characters are case sensitive ("V" is not "v").
        if len(key_input) == 1:
            return ord(key_input)

        s = key_input.strip().lower()
        if s.startswith(("alt-", "alt+")):
            return "alt-" + s[4:]
        if s.startswith("ctrl+") and len(s) == 6:
            return ord(s[5]) & 0x1F

        named_keys_map: dict[str, int] = {
            "up": curses.KEY_UP,
            "down": curses.KEY_DOWN,
            "left": curses.KEY_LEFT,
            "right": curses.KEY_RIGHT,
            "home": curses.KEY_HOME,
            "end": getattr(curses, "KEY_END", curses.KEY_LL),
            "pageup": curses.KEY_PPAGE,
            "pagedown": curses.KEY_NPAGE,
            "delete": curses.KEY_DC,
            "backspace": curses.KEY_BACKSPACE,
            "tab": 9,
            "enter": 10,
            "return": 10,
            "space": ord(" "),
            "esc": ESC,
            "escape": ESC,
        }
        if s in named_keys_map:
            return named_keys_map[s]
        raise ValueError(f"Unknown key name {key_input!r}")

    def lookup(self, key: int | str) -> Optional[str]:
        """Returns the action bound to a decoded key, or None."""
        action = self.action_map.get(key)
        KEY_LOGGER.debug(f"key={key!r} action={action}")
        return action

    def get_key_input(self, window: Optional["curses.window"] = None) -> int | str:
        """Reads one key; ESC sequences are folded into curses key codes.

        Returns:
            int | str: A key code, ``"alt-<char>"``, 27 for a lone ESC, or
            ``curses.ERR`` when the read timed out.
        """
        target = window or self.stdscr
        if target is None:
            return curses.ERR
        try:
            ch = target.getch()
            if ch != ESC:
                return ch

            seq = ""
            target.nodelay(True)
            try:
                while True:
                    nx = target.getch()
                    if nx == curses.ERR or nx < 0:
                        break
                    seq += chr(nx) if nx <= 255 else ""
            finally:
                target.timeout(self.tick_ms)

            if not seq:
                return ESC
            if len(seq) == 1 and seq.isprintable():
                return f"alt-{seq}"

            mapped = self.ESCAPE_SEQUENCE_MAP.get(seq)
            if not mapped:
                mapped = self.ESCAPE_SEQUENCE_MAP.get("".join(re.findall(r"[\[O0-9;~A-Za-z]", seq)))
            if mapped:
                return self._decode_keystring(mapped)
            logger.debug(f"Unknown escape sequence: ESC + {seq!r}")
            return ESC
        except curses.error:
            return curses.ERR
