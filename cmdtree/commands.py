"""
cmdtree command layer: build command trees, parse argument lists, run actions.

What this module provides
- Command: one node of a command tree. It owns a FlagSet, an ordered mapping
  of child commands, an optional default child and an optional callback.
  • register(): attach children (optionally one default) during setup.
  • parse(): consume this node's flags, then route to a child by name,
    fall back to the default child, or stop here.
  • usage(): render help for this node to its output sink.
  • run(): call the callback with the resolved node.

- Factories and helpers:
  • command(...): build a Command from a function (decorator form).
  • root()/parse()/invoke(): process-wide root sugar over sys.argv.

Quick start
    from cmdtree import Command, invoke

    tool = Command("tool", summary="Tool builds and serves things.")
    verbose = tool.bool("v", descr="verbose output")

    @tool.command(descr="build the project")
    def build(command):
        print("building into", command["o"])

    build.string("o", "a.out", "output `FILE`")

    @tool.command(default=True, descr="start the server")
    def serve(command):
        print("serving")

    if __name__ == "__main__":
        invoke(tool)          # "tool -v build -o out.bin" or just "tool"

Parsing rules
- Flags of a node are parsed up to the first positional; the first positional
  selects a child, and the rest of the tokens are parsed by that child.
- Nodes without children keep extra positionals in .arguments (no fault).
- With no positional left, the default child is returned as-is: its own flags
  are not parsed and keep their defaults.

Fault handling
- Configuration mistakes raise ConfigurationError right away.
- Parse and run faults are rendered to the node output first; then they are
  raised (ErrorHandling.CONTINUE) or the process exits (ErrorHandling.EXIT,
  status 0 for help requests and 2 otherwise).
- A node without callback either faults (MissingCallback.ERROR) or prints its
  usage (MissingCallback.USAGE) when run.
- output, errors, missing and colorful are inherited from the parent when not
  given.
"""
import copy
import difflib
import functools
import inspect
import operator
import os.path
import re
import shlex
import sys
from collections import defaultdict
from collections.abc import Iterable
from datetime import timedelta
from enum import IntEnum

from rich.console import Console
from rich.text import Text

from .faults import *
from .flags import FlagSet
from .utils import *


class State(IntEnum):
    """Parse state of a node: never parsed, resolved here, or routed onwards."""
    UNPARSED = 0
    TERMINAL = 1
    DELEGATED = 2


class ErrorHandling(IntEnum):
    """What happens after a parse or run fault was rendered."""
    CONTINUE = 0  # raise the fault to the caller
    EXIT = 1      # sys.exit() with the fault status


class MissingCallback(IntEnum):
    """What run() does on a node without callback."""
    ERROR = 0  # render and surface UnimplementedCommandError
    USAGE = 1  # render usage and return None


class CommandType(type):
    """
    Metaclass that gives commands a __typename__, read-only properties for
    every name in __introspectable__, and stable __repr__/__rich_repr__.

    __displayable__ narrows what the representations show; it must never
    include the parent, or a repr would walk the tree up and down forever.
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
        )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({
                ", ".join(map(functools.partial(operator.mod, "%s=%r"), self.__rich_repr__()))
            })"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


def _sanitize_metadata(cls, metadata):
    """
    Internal: validate and normalize command metadata in place.

    - name: a non-empty string that does not look like a flag.
    - descr/summary: Unset or non-empty strings (trimmed); Unset becomes None.
    - callback: Unset or callable; Unset becomes None.
    - output: Unset or a writable text sink (kept Unset to inherit).
    - errors/missing: Unset or members (or values) of their enums.
    - colorful: Unset or bool.
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} name must be a string")
    elif not (name := name.strip()):
        raise ConfigurationError(f"{cls.__typename__} name cannot be empty")
    elif name.startswith("-"):
        raise ConfigurationError(f"{cls.__typename__} name {name!r} cannot start with '-'")
    metadata["name"] = name

    for field in ("descr", "summary"):
        if not isinstance(value := metadata[field], str | Text | Unset):
            raise TypeError(f"{cls.__typename__} {field!r} must be a string")
        elif isinstance(value, str) and not (value := value.strip()):
            raise ConfigurationError(f"{cls.__typename__} {field!r} cannot be empty")
        metadata[field] = coalesce(value)

    if (callback := metadata["callback"]) is not Unset and not callable(callback):
        raise TypeError(f"{cls.__typename__} 'callback' must be callable")
    metadata["callback"] = coalesce(callback)

    if (output := metadata["output"]) is not Unset and not callable(getattr(output, "write", None)):
        raise TypeError(f"{cls.__typename__} 'output' must be a writable text stream")

    for field, enum in (("errors", ErrorHandling), ("missing", MissingCallback)):
        if metadata[field] is not Unset:
            metadata[field] = enum(metadata[field])

    if not isinstance(metadata["colorful"], bool | Unset):
        raise TypeError(f"{cls.__typename__} 'colorful' must be a boolean")


def _tokenize(arguments):
    """
    Normalize parse() input into a list of tokens.

    - Unset: sys.argv[1:]
    - str: split like a shell would (shlex.split)
    - Iterable[str]: taken as-is
    """
    if arguments is Unset:
        return sys.argv[1:]
    if isinstance(arguments, str):
        return shlex.split(arguments)
    if isinstance(arguments, Iterable):
        tokens = list(arguments)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError("parse() argument must be a string or an iterable of strings")
        return tokens
    raise TypeError("parse() argument must be a string or an iterable of strings")


class Command(metaclass=CommandType):
    """
    One command or subcommand.

    Lifecycle
    - Constructed once during program setup (name, descr, summary, callback).
    - Flags are defined through bool()/string()/int()/float()/duration()/var()
      and children are wired with register() or the command() decorator.
    - parse() fills flag values and resolves the node to run; run() calls the
      callback of the resolved node.

    Invariants
    - The tree is acyclic and a command has at most one parent.
    - Children names are unique within their parent.
    - default is the name of an existing child, or None.
    """

    __introspectable__ = (
        "name",
        "descr",
        "summary",
        "callback",
        "flags",
        "parent",
        "children",
        "default",
        "state",
        "arguments",
    )

    __displayable__ = (
        "name",
        "descr",
        "default",
        "children",
        "state",
    )

    def __new__(
            cls,
            name,
            /,
            descr=Unset,
            summary=Unset,
            callback=Unset,
            *,
            output=Unset,
            errors=Unset,
            missing=Unset,
            colorful=Unset
    ):
        """
        Construct a Command.

        Parameters
        - name: str
          Lookup key under the parent and name of the flag set. Must not be
          empty (ConfigurationError).
        - descr: str | Text | Unset
          One-line description shown in the parent's subcommand listing.
        - summary: str | Text | Unset
          Longer text shown before subcommands and options in usage.
        - callback: Callable[[Command], Any] | Unset
          Action called by run() when this node is resolved.
        - output: TextIO | Unset
          Sink for usage and diagnostics. Inherited when Unset.
        - errors: ErrorHandling | Unset
          CONTINUE raises faults, EXIT leaves the process. Inherited when Unset.
        - missing: MissingCallback | Unset
          Behavior of run() without callback. Inherited when Unset.
        - colorful: bool | Unset
          Style rendered text. Inherited when Unset.
        """
        metadata = {
            "name": name,
            "descr": descr,
            "summary": summary,
            "callback": callback,
            "output": output,
            "errors": errors,
            "missing": missing,
            "colorful": colorful,
        }
        _sanitize_metadata(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        self._flags = FlagSet(self._name)
        self._parent = None
        self._children = {}
        self._default = None
        self._state = State.UNPARSED
        self._arguments = []
        return self

    @property
    def root(self):
        """The topmost command of the tree this command belongs to."""
        command = self
        while command.parent:
            command = command.parent
        return command

    @property
    def path(self):
        """Commands from the root down to this one."""
        path = [command := self]
        while command.parent:
            path.append(command := command.parent)
        return tuple(reversed(path))

    @property
    def route(self):
        """The command line prefix that reaches this command, e.g. 'tool build'."""
        return " ".join(step.name for step in self.path)

    def _inherit(self, name, default):
        if (value := getattr(self, "_" + name)) is not Unset:
            return value
        if self._parent:
            return getattr(self._parent, name)
        return default

    @property
    def output(self):
        return self._inherit("output", sys.stdout)

    @output.setter
    def output(self, output):
        if not callable(getattr(output, "write", None)):
            raise TypeError(f"{type(self).__typename__} 'output' must be a writable text stream")
        self._output = output

    @property
    def errors(self):
        return self._inherit("errors", ErrorHandling.CONTINUE)

    @property
    def missing(self):
        return self._inherit("missing", MissingCallback.ERROR)

    @property
    def colorful(self):
        return self._inherit("colorful", False)

    @property
    def values(self):
        """Current flag values of this node, by flag name."""
        return self._flags.values

    def __getitem__(self, name):
        return self._flags[name]

    def register(self, *children, default=False):
        """
        Attach children to this command.

        With default=True exactly one child must be given; it becomes the
        command returned by parse() when no positional argument is left.

        Everything is validated before anything is attached; a mistake raises
        ConfigurationError (duplicated name, second default, child already
        attached elsewhere, cycle) or TypeError (not a command).
        """
        if not children:
            raise TypeError("register() requires at least one command")
        if default and len(children) != 1:
            raise ConfigurationError(f"exactly one default subcommand can be registered at once for {self._name!r}")
        if default and self._default is not None:
            raise ConfigurationError(f"more than one default subcommand defined for {self._name!r}")

        names = set(self._children)
        for child in children:
            if not isinstance(child, Command):
                raise TypeError("register() arguments must be commands")
            if not child.name:
                raise ConfigurationError("subcommand has no name")
            if child.parent is not None:
                raise ConfigurationError(f"subcommand {child.name!r} is already registered under {child.parent.route!r}")
            if child in self.path:
                raise ConfigurationError(f"subcommand {child.name!r} cannot be registered under itself")
            if child.name in names:
                raise ConfigurationError(f"subcommand {child.name!r} redefined for {self._name!r}")
            names.add(child.name)

        for child in children:
            self._children[child.name] = child
            child._parent = self
        if default:
            self._default = children[0].name

    def command(self, name=Unset, /, descr=Unset, summary=Unset, *, default=False, **options):
        """
        Decorator building a child command from a function and registering it.

            @tool.command
            def build(command): ...

            @tool.command("up", default=True)
            def serve(command): ...
        """
        if callable(name):
            return self.command()(name)

        @rename("command")
        def wrapper(callback, /):
            child = command(name, descr, summary, **options)(callback)
            self.register(child, default=default)
            return child

        return wrapper

    def trigger(self, fault, /, *, usage=False, **options):
        """
        Render a fault to the output sink, then raise it or exit.

        Help requests are not rendered themselves; usage=True adds this
        command's usage after the fault.
        """
        fault = copy.replace(
            fault,
            **options,
            prog=self.route,
            colorful=self.colorful,
            exit=self.errors is ErrorHandling.EXIT,
        )
        if not isinstance(fault, HelpRequested):
            self._console().print(fault)
        if usage:
            self.usage()
        trigger(fault)

    def parse(self, arguments=Unset, /):
        """
        Parse arguments against this command and return the resolved command.

        arguments
        - Unset: sys.argv[1:]
        - str: split with shlex.split
        - Iterable[str]: used as-is

        Faults: FlagParseError/HelpRequested (usage is printed), and
        UnknownSubcommandError when the first positional names no child.
        """
        tokens = _tokenize(arguments)
        self._state = State.UNPARSED
        self._arguments = []

        try:
            remaining = self._flags.parse(tokens)
        except CommandException as fault:
            return self.trigger(fault, usage=True)

        if remaining:
            if not self._children:
                self._arguments = remaining
                self._state = State.TERMINAL
                return self

            name, *remaining = remaining
            try:
                child = self._children[name]
            except KeyError:
                suggestions = difflib.get_close_matches(name, self._children.keys(), 5)
                if suggestions:
                    hint = "did you mean %r? run '%s -h' to see available subcommands" % (suggestions[0], self.route)
                else:
                    hint = "run '%s -h' to see available subcommands" % self.route
                return self.trigger(UnknownSubcommandError(
                    "sub command %r not recognized" % name,
                    title="unknown subcommand",
                    code=FaultCode.UNKNOWN_SUBCOMMAND,
                    input=name,
                    suggestions=suggestions,
                    hint=hint,
                ))
            self._state = State.DELEGATED
            return child.parse(remaining)

        if self._default is not None:
            self._state = State.DELEGATED
            return self._children[self._default]

        self._state = State.TERMINAL
        return self

    def run(self):
        """
        Call the callback with this command and return its result unchanged.
        """
        if self._callback is None:
            if self.missing is MissingCallback.USAGE:
                self.usage()
                return None
            return self.trigger(UnimplementedCommandError(
                "command %r not implemented" % self._name,
                title="not implemented",
                code=FaultCode.UNIMPLEMENTED_COMMAND,
                input=self._name,
                hint="run '%s -h' to see what this command offers" % self.route,
            ))
        return self._callback(self)

    def _console(self):
        return Console(file=self.output, highlight=False, no_color=not self.colorful)

    def usage(self):
        """
        Render usage for this command to its output sink.

        Sections: the usage line, the summary, the subcommands (default
        marked with '*') and the options. Empty sections are left out.

        Palette keys (override with a __styles__ mapping in __main__)
        - usage-label, program-name, summary, section-label
        - children, default-marker, children-description
        - flag-name, typename, flag-description
        """
        console = self._console()
        styles = defaultdict(str, {
            "usage-label": "bold #00E6FF",
            "program-name": "bold #FF4D94",
            "summary": "italic #A3A3A3",
            "section-label": "bold #FFFFFF",
            "children": "bold #36C5F0",
            "default-marker": "bold #22C55E",
            "children-description": "#9CA3AF",
            "flag-name": "bold #00E6FF",
            "typename": "bold #FFD600",
            "flag-description": "#9CA3AF",
        } | getattr(__import__("__main__"), "__styles__", {}))

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            if isinstance(fragment, Text):
                return fragment.copy()
            return Text(str(fragment), styles[style] if self.colorful else "")

        width = console.width
        padding = 2
        indent = 18

        def entry(label, descr):
            # name column, then the description on the same line or, when the
            # name is too wide, on the next line at the description column
            section = Text(" " * padding).append_text(label)
            if descr:
                if len(section) >= indent - 1:
                    section.append("\n").append(" " * indent)
                else:
                    section.append(" " * (indent - len(section)))
                lines = descr.wrap(console, max(width - indent, 20))
                section.append_text(Text("\n" + " " * indent).join(lines))
            return section

        sections = []

        line = Text.assemble(text("usage", "usage-label"), ": ", text(self.route, "program-name"))
        if self._flags:
            line.append(" [options]")
        if self._children:
            line.append(" [command]" if self._default else " <command>")
        sections.append(line)

        if self._summary:
            sections.append(text(self._summary, "summary"))

        if self._children:
            children = Text.assemble(text("subcommands" if self._parent else "commands", "section-label"), ":")
            for name, child in self._children.items():
                marker = text("*", "default-marker") if name == self._default else Text(" ")
                label = Text.assemble(marker, " ", text(name, "children"))
                children.append("\n").append_text(entry(label, text(child.descr, "children-description")))
            sections.append(children)

        if self._flags:
            options = Text.assemble(text("options", "section-label"), ":")
            for flag in self._flags:
                label = text("-" + flag.name, "flag-name")
                if typename := flag.typename:
                    label.append(" ").append_text(text(typename, "typename"))
                options.append("\n").append_text(entry(label, text(flag.help, "flag-description")))
            sections.append(options)

        console.print(Text("\n\n").join(sections))

    # Flag definition shortcuts come last so the builtins above keep their meaning.

    def var(self, name, /, type, default=Unset, descr=Unset, *, metavar=Unset):
        return self._flags.var(name, type, default, descr, metavar=metavar)

    def bool(self, name, /, default=False, descr=Unset):
        return self._flags.bool(name, default, descr)

    def string(self, name, /, default="", descr=Unset, *, metavar=Unset):
        return self._flags.string(name, default, descr, metavar=metavar)

    def int(self, name, /, default=0, descr=Unset, *, metavar=Unset):
        return self._flags.int(name, default, descr, metavar=metavar)

    def float(self, name, /, default=0.0, descr=Unset, *, metavar=Unset):
        return self._flags.float(name, default, descr, metavar=metavar)

    def duration(self, name, /, default=timedelta(), descr=Unset, *, metavar=Unset):
        return self._flags.duration(name, default, descr, metavar=metavar)


def command(source=Unset, /, descr=Unset, summary=Unset, **options):
    """
    Build a Command from a function, or return a decorator that does.

    - @command: name from the function __name__.
    - @command("name", ...): explicit name.
    - descr/summary default to the first docstring line and the rest of it.
    - options are forwarded to Command (output, errors, missing, colorful).
    """
    if callable(source):
        return command()(source)

    @rename("command")
    def wrapper(callback, /):
        if not callable(callback):
            raise TypeError("@command() must be applied to a callable")
        head, _, tail = (inspect.getdoc(callback) or "").partition("\n")
        return Command(
            coalesce(source, callback.__name__),
            coalesce(descr, head.strip() or Unset),
            coalesce(summary, tail.strip() or Unset),
            callback,
            **options,
        )

    return wrapper


_root = Unset


def root(callback=Unset, /):
    """
    Return the process-wide root command, constructing it on first use.

    The root is named after the running program (sys.argv[0]), or "main" when
    that is missing or not a usable name (e.g. "-c" under python -c); a
    callback given here becomes (or replaces) the root action.
    """
    global _root
    if _root is Unset:
        name = os.path.basename(sys.argv[0]).strip() if sys.argv else ""
        _root = Command(name if name and not name.startswith("-") else "main")
    if callback is not Unset:
        if not callable(callback):
            raise TypeError("root() argument must be callable")
        _root._callback = callback
    return _root


def parse(arguments=Unset, /):
    """Parse arguments (sys.argv[1:] by default) against the process-wide root."""
    return root().parse(arguments)


def invoke(object, arguments=Unset, /):
    """
    Parse arguments against a command and run the resolved command.

    A plain callable is wrapped with command() first. Returns the result of
    the resolved command callback.
    """
    if isinstance(object, Command):
        return object.parse(arguments).run()
    if callable(object):
        return invoke(command(object), arguments)
    raise TypeError("invoke() first argument must be a command or a callable")


__all__ = (
    "Command",
    "State",
    "ErrorHandling",
    "MissingCallback",
    "command",
    "root",
    "parse",
    "invoke",
)

del CommandType
