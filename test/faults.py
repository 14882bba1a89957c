"""
Faults module behavioral tests (codes, rendering, trigger semantics).

Conventions
- Test method names follow CamelCase per project convention.
- Rendering is captured through a plain rich console writing into a buffer.
"""

from __future__ import annotations

import copy
import io
import sys
import unittest
from unittest import TestCase, mock

from rich.console import Console

from cmdtree.faults import (
    FaultCode,
    CommandException,
    HelpRequested,
    UnknownFlagError,
    FlagParseError,
    trigger,
)


def render(fault):
    buffer = io.StringIO()
    Console(file=buffer, width=120, highlight=False, no_color=True).print(fault)
    return buffer.getvalue()


class TestFaultCode(TestCase):

    def testNormalizeDefaultsToNumber(self):
        self.assertEqual(FaultCode.UNKNOWN_FLAG.normalize(), "11212")

    def testNormalizeUsesHostCodes(self):
        main = sys.modules["__main__"]
        with mock.patch.object(main, "__codes__", {FaultCode.UNKNOWN_FLAG: "E-FLAG"}, create=True):
            self.assertEqual(FaultCode.UNKNOWN_FLAG.normalize(), "E-FLAG")
            self.assertEqual(FaultCode.BAD_FLAG_SYNTAX.normalize(), "11211")


class TestCommandException(TestCase):

    def setUp(self):
        self.fault = UnknownFlagError(
            "flag provided but not defined: -x",
            prog="tool",
            code=FaultCode.UNKNOWN_FLAG,
            title="unknown flag",
            hint="run 'tool -h' to see all options",
        )

    def testStrIsMessage(self):
        self.assertEqual(str(self.fault), "flag provided but not defined: -x")
        self.assertEqual(str(CommandException()), "")

    def testOptionsAreReadOnly(self):
        with self.assertRaises(TypeError):
            self.fault.options["prog"] = "other"

    def testPlainRendering(self):
        text = render(self.fault)
        self.assertIn("[ tool — 11212 | Unknown Flag ]", text)
        self.assertIn("flag provided but not defined: -x", text)
        self.assertIn(" → run 'tool -h' to see all options", text)

    def testRenderingWithoutOptions(self):
        text = render(CommandException("boom"))
        self.assertIn("[  — ? | Error ]", text)
        self.assertIn("boom", text)
        self.assertNotIn("→", text)

    def testReplaceMergesOptions(self):
        replaced = copy.replace(self.fault, prog="tool build", exit=True)
        self.assertIsInstance(replaced, UnknownFlagError)
        self.assertIsNot(replaced, self.fault)
        self.assertEqual(replaced.message, self.fault.message)
        self.assertEqual(replaced.options["prog"], "tool build")
        self.assertEqual(replaced.options["title"], "unknown flag")
        self.assertTrue(replaced.options["exit"])
        self.assertEqual(self.fault.options["prog"], "tool")

    def testStatuses(self):
        self.assertEqual(CommandException.status, 2)
        self.assertEqual(FlagParseError.status, 2)
        self.assertEqual(HelpRequested.status, 0)


class TestTrigger(TestCase):

    def testRaisesMergedCopy(self):
        fault = UnknownFlagError("flag provided but not defined: -x", prog="tool")
        with self.assertRaises(UnknownFlagError) as context:
            trigger(fault, prog="tool build")
        self.assertIsNot(context.exception, fault)
        self.assertEqual(context.exception.options["prog"], "tool build")

    def testExitUsesFaultStatus(self):
        with self.assertRaises(SystemExit) as context:
            trigger(UnknownFlagError("bad"), exit=True)
        self.assertEqual(context.exception.code, 2)

    def testHelpExitsWithZero(self):
        with self.assertRaises(SystemExit) as context:
            trigger(HelpRequested(), exit=True)
        self.assertEqual(context.exception.code, 0)

    def testRejectsNonFaults(self):
        with self.assertRaises(TypeError):
            trigger(object())
        with self.assertRaises(TypeError):
            trigger(ValueError("plain"))


if __name__ == "__main__":
    unittest.main()
