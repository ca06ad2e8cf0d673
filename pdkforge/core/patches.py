#  patches.py
#  Source patches applied before building upstream tools.
#
#  See LICENSE for licence details.

import os
import re
from enum import Enum

__all__ = ['PatchResult', 'patch_txinput_text', 'patch_txinput']


class PatchResult(Enum):
    MISSING = "missing"
    ALREADY_PATCHED = "already patched"
    PATCHED = "patched"


def patch_txinput_text(text: str) -> str:
    """
    Port Magic's textio/txInput.c from the obsolete SVR4 termio interface to
    POSIX termios.
    """
    text = "#include <termios.h>\n#include <sys/ioctl.h>\n" + text
    text = text.replace("struct termio *", "struct termios *")
    text = re.sub(r"struct termio$", "struct termios", text, flags=re.MULTILINE)
    text = text.replace("struct termio ", "struct termios ")
    text = text.replace("TCGETA", "TCGETS")
    text = text.replace("TCSETAF", "TCSETSF")
    return text


def patch_txinput(path: str) -> PatchResult:
    """
    Patch txInput.c in place unless it already includes termios.h.

    :param path: Path to textio/txInput.c.
    :return: What was done.
    """
    if not os.path.isfile(path):
        return PatchResult.MISSING
    with open(path, "r", errors="surrogateescape") as f:
        text = f.read()
    if "termios.h" in text:
        return PatchResult.ALREADY_PATCHED
    with open(path, "w", errors="surrogateescape") as f:
        f.write(patch_txinput_text(text))
    return PatchResult.PATCHED
