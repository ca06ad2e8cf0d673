#  rcfile.py
#  Marker blocks of environment variables in shell rc files.
#
#  See LICENSE for licence details.

import os
from typing import List, Mapping

__all__ = ['DEFAULT_BEGIN_MARKER', 'DEFAULT_END_MARKER', 'select_shell_rc', 'render_block',
           'strip_marker_blocks', 'has_marker_block', 'write_marker_block']

DEFAULT_BEGIN_MARKER = "# >>> SKY130 PDK >>>"
DEFAULT_END_MARKER = "# <<< SKY130 PDK <<<"


def select_shell_rc(home: str) -> str:
    """~/.zshrc if the user has one, ~/.bashrc otherwise."""
    zshrc = os.path.join(home, ".zshrc")
    if os.path.isfile(zshrc):
        return zshrc
    return os.path.join(home, ".bashrc")


def render_block(variables: Mapping[str, str], begin: str = DEFAULT_BEGIN_MARKER,
                 end: str = DEFAULT_END_MARKER) -> List[str]:
    """
    Lines of a marker block exporting the given variables, in order.
    >>> render_block({"PDK": "sky130A"}, "# >>>", "# <<<")
    ['# >>>', 'export PDK="sky130A"', '# <<<']
    """
    return [begin] + ['export {0}="{1}"'.format(k, v) for k, v in variables.items()] + [end]


def has_marker_block(text: str, begin: str = DEFAULT_BEGIN_MARKER) -> bool:
    return any(begin in line for line in text.splitlines())


def strip_marker_blocks(text: str, begin: str = DEFAULT_BEGIN_MARKER, end: str = DEFAULT_END_MARKER) -> str:
    """
    Remove every block from a line containing begin up to and including the
    next line containing end. A block without an end runs to the end of the text.
    """
    output = []  # type: List[str]
    in_block = False
    for line in text.splitlines(keepends=True):
        if in_block:
            if end in line:
                in_block = False
            continue
        if begin in line:
            in_block = True
            continue
        output.append(line)
    return "".join(output)


def write_marker_block(path: str, variables: Mapping[str, str], begin: str = DEFAULT_BEGIN_MARKER,
                       end: str = DEFAULT_END_MARKER) -> bool:
    """
    Replace the marker block in the rc file at path with a fresh one.
    The file is created if it does not exist.

    :return: True if a stale block was removed.
    """
    # rc files may hold bytes that are not UTF-8; they are written back untouched.
    text = ""
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8", errors="surrogateescape") as f:
            text = f.read()
    stale = has_marker_block(text, begin)
    if stale:
        text = strip_marker_blocks(text, begin, end)
    text = text.rstrip("\n")
    if text != "":
        text += "\n"
    text += "\n" + "\n".join(render_block(variables, begin, end)) + "\n"
    with open(path, "w", encoding="utf-8", errors="surrogateescape") as f:
        f.write(text)
    return stale
