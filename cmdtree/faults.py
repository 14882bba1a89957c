"""
cmdtree faults (configuration errors, parse faults) and rendering.

Scope
- ConfigurationError: programming mistakes in the host application (empty
  names, duplicated subcommands, a second default subcommand, redefined
  flags). Raised immediately while the tree is being built, never deferred
  into parsing.
- FaultCode: stable numeric identifiers for every user-facing fault.
- CommandException and subclasses: user-facing faults raised while parsing or
  running. They carry a message plus options and know how to render
  themselves through rich.
- trigger(): surface a fault, either raising it (continue-on-error) or
  exiting the process (exit-on-error).

Rendering
- Plain (non-colorful) by default so that text sinks receive readable lines:

      [ tool build — 11212 | Unknown Flag ]
      flag provided but not defined: -x
       → did you mean '-o'? run 'tool build -h' to see all options

- Colors are applied only when the command is colorful; the palette can be
  overridden with a __styles__ mapping in __main__.
"""
import copy
import sys
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Group
from rich.text import Text

from .utils import Unset


class ConfigurationError(ValueError):
    """
    The command tree is misconfigured.

    Raised during program setup (construction, registration, flag definition);
    it is a bug in the host application and is never rendered or retried.
    """


class FaultCode(IntEnum):
    """
    canonical fault codes (stable identifiers).

    grouping
    - help (100xx)
      • HELP_REQUESTED
    - routing (111xx)
      • UNKNOWN_SUBCOMMAND, UNIMPLEMENTED_COMMAND
    - flags (112xx)
      • BAD_FLAG_SYNTAX, UNKNOWN_FLAG, MISSING_FLAG_VALUE, INVALID_FLAG_VALUE
    """
    # --- help (10xxx) ---
    HELP_REQUESTED        = 10001

    # --- routing errors (111xx) ---
    UNKNOWN_SUBCOMMAND    = 11102
    UNIMPLEMENTED_COMMAND = 11103

    # --- flag errors (112xx) ---
    BAD_FLAG_SYNTAX       = 11211
    UNKNOWN_FLAG          = 11212
    MISSING_FLAG_VALUE    = 11217
    INVALID_FLAG_VALUE    = 11224

    def normalize(self):
        """
        return a host-normalized string for this code.

        the host application can provide a __codes__ mapping in __main__ to
        override numeric ids with friendlier labels.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class CommandException(Exception):
    """
    Base class of user-facing faults.

    The message is the one-line diagnostic; options carry the rendering
    context (prog, title, code, hint, colorful, exit) and any payload useful
    to the caller (input, suggestions, ...).
    """
    status = 2

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        self.message = message
        self.options = MappingProxyType(options)

    def __str__(self):
        return self.message or ""

    def __rich__(self):
        main = __import__("__main__")
        colorful = self.options.get("colorful", False)

        styles = defaultdict(str, {
            "prog-name": "bold #E6E6F0",
            "code": "bold #00E5FF",
            "error-title": "bold #FF4DA6",
            "error-message": "#C8C8D0",
            "hint-arrow": "#9CE19C dim",
            "hint": "italic #9CE19C",
        } | getattr(main, "__styles__", {}))

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            return Text(str(fragment), styles[style] if colorful else "")

        header = Text.assemble(
            "[ ",
            text(getattr(main, "__prog__", self.options.get("prog", "")), "prog-name"),
            " — ",
            text(code.normalize() if (code := self.options.get("code")) else "?", "code"),
            " | ",
            text(str(self.options.get("title", "error")).title(), "error-title"),
            " ]",
        )
        renders = [header, text(self.message, "error-message")]
        if hint := self.options.get("hint"):
            renders.append(Text.assemble(text(" → ", "hint-arrow"), text(hint, "hint")))
        return Group(*renders)

    def __trigger__(self):
        if not self.options.get("exit", False):
            raise self from None
        sys.exit(self.status)

    def __replace__(self, *unused, **overrides):
        assert not unused, "unused arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class HelpRequested(CommandException):
    """-h or -help was given and the command defines no such flag."""
    status = 0


class FlagParseError(CommandException): ...
class FlagSyntaxError(FlagParseError): ...
class UnknownFlagError(FlagParseError): ...
class MissingFlagValueError(FlagParseError): ...
class FlagValueError(FlagParseError): ...

class UnknownSubcommandError(CommandException): ...
class UnimplementedCommandError(CommandException): ...


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods.
    - options are merged into the fault via copy.replace() before triggering.
    - with exit=True the process exits with the fault status; otherwise the
      merged fault is raised.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    copy.replace(fault, **options).__trigger__()


__all__ = (
    "ConfigurationError",
    "FaultCode",
    "CommandException",
    "HelpRequested",
    "FlagParseError",
    "FlagSyntaxError",
    "UnknownFlagError",
    "MissingFlagValueError",
    "FlagValueError",
    "UnknownSubcommandError",
    "UnimplementedCommandError",
    "trigger",
)
