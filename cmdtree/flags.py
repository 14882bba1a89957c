r"""
cmdtree flag primitive: typed flags and the per-command flag set.

Overview
- Flag: one named, typed option with a default, a help text and a current
  value (the destination filled while parsing).
- FlagSet: the flags recognized by one command, plus the parser that consumes
  them from the front of an argument list.
- Converters: boolean(), duration() and the builtins str/int/float.

Grammar (single-dash style, double dash accepted as an alias)
- "-name value", "-name=value", "--name value", "--name=value"
- boolean flags: "-name" (sets true) or "-name=false"; "-name false" is NOT
  a boolean assignment, "false" is left as a positional.
- parsing stops before the first token that does not start with "-" and
  before a lone "-"; a "--" token stops parsing and is consumed.
- "-h"/"-help" raise HelpRequested unless the flag set defines them.

Help text conventions
- a back-quoted word in the description names the value in usage:
      fs.string("config", descr="load settings from `FILE`")
  is listed as "-config FILE" with the description "load settings from FILE".
- otherwise the value is named after its type (string, int, float,
  duration); boolean flags show no value name.
- defaults are appended as "(default ...)" unless they are the zero value.

Quick example:
    >>> fs = FlagSet("build")
    >>> output = fs.string("o", "a.out", "output file")
    >>> fs.parse(["-o", "out.bin", "main.c"])
    ['main.c']
    >>> output.value
    'out.bin'
"""
import builtins
import difflib
import functools
import operator
import re
from collections import deque
from datetime import timedelta
from types import MappingProxyType

from rich.text import Text

from .faults import *
from .utils import *


def boolean(text, /):
    """
    Convert a textual boolean.

    Accepts 1, t, T, TRUE, true, True and 0, f, F, FALSE, false, False.
    """
    match text:
        case "1" | "t" | "T" | "TRUE" | "true" | "True":
            return True
        case "0" | "f" | "F" | "FALSE" | "false" | "False":
            return False
    raise ValueError("invalid syntax")


# microseconds per unit; timedelta cannot hold anything finer
_UNITS = {
    "ns": 1e-3,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1e3,
    "s": 1e6,
    "m": 60e6,
    "h": 3600e6,
}
_SEGMENT = r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)"


def duration(text, /):
    """
    Convert a duration string such as "300ms", "1.5h" or "2h45m".

    A sign may prefix the whole string; "0" alone is accepted without unit.
    """
    if text in ("0", "+0", "-0"):
        return timedelta()
    if not (match := re.fullmatch(r"([-+]?)((?:%s)+)" % _SEGMENT, text)):
        raise ValueError("invalid duration %r" % text)
    total = sum(float(number) * _UNITS[unit] for number, unit in re.findall(_SEGMENT, match[2]))
    try:
        return timedelta(microseconds=-total if match[1] == "-" else total)
    except OverflowError:
        raise ValueError("duration %r out of range" % text) from None


def _format_duration(value):
    """Render a timedelta the way duration() reads it back, e.g. 1h30m0s."""
    micro = value // timedelta(microseconds=1)
    sign = "-" if micro < 0 else ""
    micro = abs(micro)
    if not micro:
        return "0s"
    if micro < 1000:
        return "%s%dµs" % (sign, micro)
    if micro < 1_000_000:
        return sign + ("%.3f" % (micro / 1000)).rstrip("0").rstrip(".") + "ms"

    seconds, micro = divmod(micro, 1_000_000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    text = str(seconds) + (("." + "%06d" % micro).rstrip("0") if micro else "") + "s"
    if hours or minutes:
        text = "%dm" % minutes + text
    if hours:
        text = "%dh" % hours + text
    return sign + text


def integer(text, /):
    """
    Convert an integer, accepting 0x, 0o and 0b prefixes.

    A bare leading zero also reads as octal, so "010" is 8.
    """
    if re.fullmatch(r"[-+]?0[0-7_]*[0-7]", text):
        return int(text, 8)
    return int(text, 0)


# builtin types whose constructor is not a usable text converter
_CONVERTERS = {
    builtins.bool: boolean,
    builtins.int: integer,
    timedelta: duration,
}

_ZEROS = {
    boolean: False,
    str: "",
    integer: 0,
    builtins.float: 0.0,
    duration: timedelta(),
}

_TYPENAMES = {
    boolean: "",
    str: "string",
    integer: "int",
    builtins.float: "float",
    duration: "duration",
}


class FlagType(type):
    """
    Metaclass giving flags a __typename__, read-only mirrored properties for
    every name in __introspectable__, and stable __repr__/__rich_repr__.
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


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: validate and normalize flag metadata in place.

    - name: non-empty, must not start with "-" nor contain "=" or whitespace.
    - type: callable; bool and timedelta are swapped for their text converters.
    - default: Unset becomes the zero value of the type (None for custom types).
    - descr/metavar: Unset becomes None; empty strings are rejected.
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} name must be a string")
    elif not (name := name.strip()):
        raise ConfigurationError(f"{cls.__typename__} name cannot be empty")
    elif name.startswith("-") or re.search(r"[=\s]", name):
        raise ConfigurationError(f"{cls.__typename__} name {name!r} cannot start with '-' or contain '=' or spaces")
    metadata["name"] = name

    if not callable(type := metadata["type"]):
        raise TypeError(f"{cls.__typename__} 'type' must be callable")
    metadata["type"] = type = _CONVERTERS.get(type, type)

    metadata["default"] = coalesce(metadata["default"], _ZEROS.get(type))

    for field in ("descr", "metavar"):
        if not isinstance(value := metadata[field], str | Unset):
            raise TypeError(f"{cls.__typename__} {field!r} must be a string")
        elif isinstance(value, str) and not (value := value.strip()):
            raise ConfigurationError(f"{cls.__typename__} {field!r} cannot be empty")
        metadata[field] = coalesce(value)


class Flag(metaclass=FlagType):
    """
    A named, typed flag.

    The value starts as the default and is replaced by set() when the flag
    appears on the command line; reset() restores the default.
    """

    __introspectable__ = (
        "name",
        "type",
        "default",
        "descr",
        "metavar",
    )

    __displayable__ = (
        "name",
        "typename",
        "default",
        "value",
    )

    def __new__(cls, name, /, type=str, default=Unset, descr=Unset, *, metavar=Unset):
        metadata = {
            "name": name,
            "type": type,
            "default": default,
            "descr": descr,
            "metavar": metavar,
        }
        _sanitize_metadata(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        self._value = self._default
        return self

    @property
    def value(self):
        return self._value

    @property
    def boolean(self):
        """True for presence-style flags that do not consume the next token."""
        return self._type is boolean

    @property
    def typename(self):
        """The value name shown next to the flag in usage."""
        if self._metavar:
            return self._metavar
        if self._descr and (match := re.search(r"`([^`]*)`", self._descr)):
            return match[1]
        return _TYPENAMES.get(self._type, getattr(self._type, "__name__", "value"))

    @property
    def help(self):
        """Description with the value-naming back quotes removed, plus the default."""
        help = re.sub(r"`([^`]*)`", r"\1", self._descr or "", count=1)
        if self._default:
            if isinstance(self._default, str):
                default = repr(self._default)
            elif isinstance(self._default, builtins.bool):
                default = str(self._default).lower()
            elif isinstance(self._default, timedelta):
                default = _format_duration(self._default)
            else:
                default = str(self._default)
            help = ("%s (default %s)" % (help, default)).strip()
        return help

    def set(self, text, /):
        """Convert text through the flag type and store it as the value."""
        if not isinstance(text, str):
            raise TypeError("flag value must be a string")
        self._value = self._type(text)

    def reset(self):
        self._value = self._default

    def __rich__(self):
        label = Text("-" + self._name)
        if typename := self.typename:
            label.append(" " + typename)
        return label


class FlagSet:
    """
    The flags of one command and the parser over them.

    Flags are kept by name; iteration yields them in lexical order, which is
    also the order used in usage.
    """

    def __init__(self, name, /):
        self._name = name
        self._formal = {}
        self._actual = {}
        self._args = []
        self._parsed = False

    @property
    def name(self):
        return self._name

    @property
    def parsed(self):
        return self._parsed

    @property
    def args(self):
        """Arguments remaining after the last parse."""
        return list(self._args)

    @property
    def nargs(self):
        return len(self._args)

    def arg(self, index, /, default=""):
        try:
            return self._args[index]
        except IndexError:
            return default

    @property
    def actual(self):
        """Flags set during the last parse (or through set()), in lexical order."""
        return [self._actual[name] for name in sorted(self._actual)]

    @property
    def values(self):
        return MappingProxyType({name: flag.value for name, flag in self._formal.items()})

    def __iter__(self):
        return iter([self._formal[name] for name in sorted(self._formal)])

    def __len__(self):
        return len(self._formal)

    def __contains__(self, name):
        return name in self._formal

    def __getitem__(self, name):
        return self._formal[name].value

    def __repr__(self):
        return "flag-set(name=%r, flags=%r)" % (self._name, sorted(self._formal))

    def lookup(self, name, /):
        return self._formal.get(name)

    def define(self, name, /, type=str, default=Unset, descr=Unset, *, metavar=Unset):
        """
        Define a flag and return it; its value is the parse destination.

        Raises ConfigurationError when the name is already defined.
        """
        flag = Flag(name, type, default, descr, metavar=metavar)
        if flag.name in self._formal:
            raise ConfigurationError("%s flag redefined: %s" % (self._name, flag.name))
        self._formal[flag.name] = flag
        return flag

    def set(self, name, text, /):
        """Set a flag from text as if it had been given on the command line."""
        try:
            flag = self._formal[name]
        except KeyError:
            raise KeyError("no such flag -%s" % name) from None
        flag.set(text)
        self._actual[name] = flag

    def reset(self):
        """Restore every default and forget the previous parse."""
        for flag in self._formal.values():
            flag.reset()
        self._actual.clear()
        self._args = []
        self._parsed = False

    def parse(self, arguments, /):
        """
        Consume leading flags from arguments and return what remains.

        Raises a FlagParseError subclass on bad syntax, unknown flags, missing
        or unconvertible values, and HelpRequested for an undefined -h/-help.
        Values are reset to their defaults before parsing.
        """
        self.reset()
        self._parsed = True
        tokens = deque(arguments)

        while tokens:
            token = tokens[0]
            if len(token) < 2 or not token.startswith("-"):
                break
            tokens.popleft()
            if token == "--":
                break

            name = token[2:] if token.startswith("--") else token[1:]
            if not name or name.startswith(("-", "=")):
                raise FlagSyntaxError(
                    "bad flag syntax: %s" % token,
                    title="bad flag syntax",
                    code=FaultCode.BAD_FLAG_SYNTAX,
                    input=token,
                    hint="flags are written as -name, -name=value or -name value",
                )
            name, equals, value = name.partition("=")

            if (flag := self._formal.get(name)) is None:
                if name in ("h", "help"):
                    raise HelpRequested(
                        "help requested",
                        title="help requested",
                        code=FaultCode.HELP_REQUESTED,
                        input=token,
                    )
                suggestions = difflib.get_close_matches(name, self._formal.keys(), 5)
                if suggestions:
                    hint = "did you mean '-%s'? use -h to see all options" % suggestions[0]
                else:
                    hint = "use -h to see all options"
                raise UnknownFlagError(
                    "flag provided but not defined: -%s" % name,
                    title="unknown flag",
                    code=FaultCode.UNKNOWN_FLAG,
                    input=token,
                    suggestions=suggestions,
                    hint=hint,
                )

            if flag.boolean:
                text = value if equals else "true"
            elif equals:
                text = value
            elif tokens:
                text = tokens.popleft()
            else:
                raise MissingFlagValueError(
                    "flag needs an argument: -%s" % name,
                    title="missing flag value",
                    code=FaultCode.MISSING_FLAG_VALUE,
                    input=token,
                    hint="pass a value as -%s=<%s> or -%s <%s>" % (name, flag.typename, name, flag.typename),
                )

            try:
                flag.set(text)
            except (TypeError, ValueError, OverflowError) as error:
                kind = "boolean value" if flag.boolean else "value"
                raise FlagValueError(
                    "invalid %s %r for flag -%s: %s" % (kind, text, name, error),
                    title="invalid flag value",
                    code=FaultCode.INVALID_FLAG_VALUE,
                    input=token,
                    value=text,
                    hint="-%s expects a %s" % (name, flag.typename or "boolean"),
                ) from None
            self._actual[name] = flag

        self._args = list(tokens)
        return list(tokens)

    # Definition shortcuts come last so the builtins above keep their meaning.

    def var(self, name, /, type, default=Unset, descr=Unset, *, metavar=Unset):
        return self.define(name, type, default, descr, metavar=metavar)

    def bool(self, name, /, default=False, descr=Unset):
        return self.define(name, boolean, default, descr)

    def string(self, name, /, default="", descr=Unset, *, metavar=Unset):
        return self.define(name, str, default, descr, metavar=metavar)

    def int(self, name, /, default=0, descr=Unset, *, metavar=Unset):
        return self.define(name, integer, default, descr, metavar=metavar)

    def float(self, name, /, default=0.0, descr=Unset, *, metavar=Unset):
        return self.define(name, builtins.float, default, descr, metavar=metavar)

    def duration(self, name, /, default=timedelta(), descr=Unset, *, metavar=Unset):
        return self.define(name, duration, default, descr, metavar=metavar)


__all__ = (
    "Flag",
    "FlagSet",
    "boolean",
    "duration",
    "integer",
)

del FlagType
